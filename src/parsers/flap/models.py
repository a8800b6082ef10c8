"""Pydantic models for the Flap.sh GraphQL index responses."""

from decimal import Decimal

from pydantic import BaseModel


class FlapHolder(BaseModel):
    holder: str | None = None
    amount: Decimal | None = None

    model_config = {"extra": "ignore"}


class FlapAuthor(BaseModel):
    name: str | None = None
    pfp: str | None = None

    model_config = {"extra": "ignore"}


class FlapMetadata(BaseModel):
    description: str | None = None
    image: str | None = None
    website: str | None = None
    twitter: str | None = None
    telegram: str | None = None

    model_config = {"extra": "ignore"}


class FlapCoin(BaseModel):
    address: str
    name: str | None = None
    symbol: str | None = None
    listed: bool = False
    createdAt: int | None = None
    marketcap: Decimal | None = None
    reserve: Decimal | None = None
    supply: Decimal | None = None
    tax: Decimal | None = None
    creator: str | None = None
    beneficiary: str | None = None
    nHolders: int | None = None
    author: FlapAuthor | None = None
    holders: list[FlapHolder] | None = None
    metadata: FlapMetadata | None = None

    model_config = {"extra": "ignore"}


class FlapCoinList(BaseModel):
    coins: list[dict] | None = None

    model_config = {"extra": "ignore"}


class FlapBoard(BaseModel):
    verified: FlapCoinList | None = None
    newlyCreated: FlapCoinList | None = None
    graduating: FlapCoinList | None = None
    listed: FlapCoinList | None = None

    model_config = {"extra": "ignore"}

    def sections(self) -> list[tuple[str, list[dict]]]:
        """Board sections in precedence order (first section wins on dedup)."""
        out: list[tuple[str, list[dict]]] = []
        for name in ("verified", "newlyCreated", "graduating", "listed"):
            section: FlapCoinList | None = getattr(self, name)
            if section and section.coins:
                out.append((name, section.coins))
        return out
