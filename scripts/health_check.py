"""System health check: reports registry and scan status.

Checks:
- Database connectivity and registry size
- Confirmed / placeholder / dex-paid breakdown
- Data freshness (latest graduation, latest update)
- Chain scan checkpoint
- Redis connectivity (ranked-view channel subscribers)

Usage:
    python scripts/health_check.py
"""

import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import func, select, text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from config.settings import settings  # noqa: E402
from src.db.database import async_session_factory  # noqa: E402
from src.models.token import GraduatedToken  # noqa: E402
from src.parsers.persistence import count_tokens, load_checkpoint  # noqa: E402

STATUS_OK = "OK"
STATUS_WARN = "WARN"
STATUS_ERROR = "ERROR"


def _age_min(ts: datetime | None, now: datetime) -> float | None:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return round((now - ts).total_seconds() / 60, 1)


async def check_health() -> dict:
    """Run all health checks and return structured report."""
    report: dict = {"timestamp": datetime.now(UTC).isoformat(), "checks": {}}

    # 1. Database
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            report["checks"]["database"] = {"status": STATUS_OK}
            await _add_registry_stats(session, report)
            await _add_freshness(session, report)
            report["checks"]["checkpoint"] = await load_checkpoint(session)
    except Exception as e:
        report["checks"]["database"] = {"status": STATUS_ERROR, "error": str(e)}

    # 2. Redis
    if settings.enable_redis_publish:
        try:
            from src.db.redis import get_redis

            redis = await get_redis()
            await redis.ping()
            subs = await redis.pubsub_numsub(settings.redis_ranked_channel)
            report["checks"]["redis"] = {
                "status": STATUS_OK,
                "subscribers": subs[0][1] if subs else 0,
            }
        except Exception as e:
            report["checks"]["redis"] = {"status": STATUS_WARN, "error": str(e)}

    # 3. Configuration
    report["checks"]["features"] = {
        "chain_scan": bool(settings.chain_launch_contract and settings.chain_graduation_topic),
        "redis_publish": settings.enable_redis_publish,
        "suffixes": ",".join(sorted(settings.factory_suffix_set)),
    }

    return report


async def _add_registry_stats(session: AsyncSession, report: dict) -> None:
    """Row counts by registry status."""
    total = await count_tokens(session)
    confirmed = await count_tokens(session, confirmed_only=True)
    placeholders = await session.scalar(
        select(func.count(GraduatedToken.id)).where(GraduatedToken.placeholder.is_(True))
    )
    paid = await session.scalar(
        select(func.count(GraduatedToken.id)).where(GraduatedToken.dex_paid.is_(True))
    )
    report["checks"]["registry"] = {
        "total": total or 0,
        "confirmed": confirmed or 0,
        "placeholders": placeholders or 0,
        "dex_paid": paid or 0,
    }


async def _add_freshness(session: AsyncSession, report: dict) -> None:
    """Check how fresh the latest data is."""
    latest_graduation = await session.scalar(select(func.max(GraduatedToken.graduated_at)))
    latest_update = await session.scalar(select(func.max(GraduatedToken.updated_at)))

    now = datetime.now(UTC)
    update_age = _age_min(latest_update, now)
    report["checks"]["freshness"] = {
        "latest_graduation_age_min": _age_min(latest_graduation, now),
        "latest_update_age_min": update_age,
        "status": (
            STATUS_ERROR if update_age is None
            else STATUS_OK if update_age < 5
            else STATUS_WARN if update_age < 30
            else STATUS_ERROR
        ),
    }


def print_report(report: dict) -> None:
    """Pretty-print the health report."""
    print("=" * 60)
    print(f"HEALTH CHECK @ {report['timestamp']}")
    print("=" * 60)

    checks = report["checks"]

    db = checks.get("database", {})
    status = db.get("status", STATUS_ERROR)
    print(f"\n  Database: [{status}]")
    if "error" in db:
        print(f"    Error: {db['error']}")

    redis = checks.get("redis")
    if redis:
        print(f"  Redis:    [{redis.get('status', STATUS_ERROR)}]")
        if "error" in redis:
            print(f"    Error: {redis['error']}")
        else:
            print(f"    Ranked-view subscribers: {redis.get('subscribers', 0)}")

    registry = checks.get("registry", {})
    if registry:
        print("\n  Registry:")
        for name, count in registry.items():
            print(f"    {name:20s} {count:>8,}")

    freshness = checks.get("freshness", {})
    if freshness:
        print(f"\n  Data freshness: [{freshness.get('status')}]")
        print(f"    Latest update:     {freshness.get('latest_update_age_min') or 'N/A'} min ago")
        print(f"    Latest graduation: {freshness.get('latest_graduation_age_min') or 'N/A'} min ago")

    if "checkpoint" in checks:
        print(f"\n  Chain checkpoint: {checks['checkpoint'] or 'N/A'}")

    features = checks.get("features", {})
    if features:
        print("\n  Configuration:")
        for name, value in features.items():
            shown = ("ON" if value else "OFF") if isinstance(value, bool) else value
            print(f"    {name:20s} [{shown}]")

    print("\n" + "=" * 60)


async def main() -> None:
    report = await check_health()
    print_report(report)


if __name__ == "__main__":
    asyncio.run(main())
