"""Checkpointed scan of the launchpad's graduation event logs.

The checkpoint is the last block whose chunk was attempted. A first run
seeds it ``lookback_days`` behind the head; later runs only read new blocks,
in fixed-size chunks so the node's range limits are respected. A failing
chunk is skipped and the checkpoint still moves past it, which bounds the
per-cycle cost at the price of a possible gap. A scan that runs out of its
time budget stops before the pending chunk, so that chunk is retried next
cycle.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime

from loguru import logger

from src.parsers.candidates import (
    ChainScanResult,
    TokenCandidate,
    matches_fingerprint,
    normalize_address,
)
from src.parsers.chain.rpc import ChainRpcClient
from src.parsers.exceptions import DecodeError, TransientNetworkError
from src.parsers.precedence import Source

WORD_HEX = 64


class GraduationLogScanner:
    def __init__(
        self,
        rpc: ChainRpcClient,
        *,
        contract: str,
        topic: str,
        suffixes: set[str],
        chunk_blocks: int = 5000,
        max_chunks_per_cycle: int = 40,
        lookback_days: float = 3.0,
        block_time_sec: float = 3.0,
        token_topic_index: int = -1,
        token_data_word: int = 0,
        time_budget_sec: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rpc = rpc
        self._contract = contract.lower()
        self._topic = topic.lower()
        self._suffixes = suffixes
        self._chunk = max(chunk_blocks, 1)
        self._max_chunks = max(max_chunks_per_cycle, 1)
        self._lookback_blocks = int(lookback_days * 86400 / block_time_sec)
        self._block_time = block_time_sec
        self._topic_index = token_topic_index
        self._data_word = token_data_word
        self._budget = time_budget_sec
        self._clock = clock
        self._warned_disabled = False

    @property
    def enabled(self) -> bool:
        return bool(self._contract and self._topic)

    async def scan(self, checkpoint: int | None) -> ChainScanResult | None:
        """Scan blocks after ``checkpoint``; None if the chain head is unreachable."""
        if not self.enabled:
            if not self._warned_disabled:
                logger.warning("[CHAIN] Launch contract/topic not configured, log scan disabled")
                self._warned_disabled = True
            return ChainScanResult(checkpoint=checkpoint)

        deadline = time.monotonic() + self._budget if self._budget > 0 else None
        try:
            head = await asyncio.wait_for(self._rpc.block_number(), self._remaining(deadline))
        except (TransientNetworkError, asyncio.TimeoutError) as e:
            logger.warning(f"[CHAIN] Head unavailable this cycle: {str(e) or type(e).__name__}")
            return None

        if checkpoint is None:
            start = max(0, head - self._lookback_blocks)
            logger.info(f"[CHAIN] No checkpoint, seeding scan from block {start} (head {head})")
        else:
            start = checkpoint + 1

        result = ChainScanResult(checkpoint=checkpoint)
        if start > head:
            return result

        now = self._clock()
        seen: dict[str, TokenCandidate] = {}
        last = start - 1
        while start <= head and result.chunks_scanned + result.chunks_failed < self._max_chunks:
            end = min(start + self._chunk - 1, head)
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                logger.info(f"[CHAIN] Time budget spent, resuming at block {start} next cycle")
                break
            try:
                logs = await asyncio.wait_for(
                    self._rpc.get_logs(start, end, address=self._contract, topics=[self._topic]),
                    remaining,
                )
            except asyncio.TimeoutError:
                logger.info(f"[CHAIN] Time budget spent in chunk {start}-{end}, retrying next cycle")
                break
            except TransientNetworkError as e:
                result.chunks_failed += 1
                logger.warning(f"[CHAIN] Chunk {start}-{end} skipped: {e}")
            else:
                result.chunks_scanned += 1
                for entry in logs:
                    try:
                        event = self.decode(entry, head=head, now=now)
                    except DecodeError as e:
                        logger.debug(f"[CHAIN] Skipping malformed log: {e}")
                        continue
                    if event is None:
                        continue
                    prior = seen.get(event.address)
                    if prior is None or (event.graduation_block or 0) < (prior.graduation_block or 0):
                        seen[event.address] = event
            last = end
            start = end + 1

        result.checkpoint = last
        result.events = list(seen.values())
        logger.info(
            f"[CHAIN] Scanned to block {last} (head {head}): {len(result.events)} graduations, "
            f"chunks ok={result.chunks_scanned} failed={result.chunks_failed}"
        )
        return result

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - time.monotonic()

    def decode(self, entry: dict, *, head: int, now: float) -> TokenCandidate | None:
        """Extract the graduated token; None if it lacks the factory fingerprint."""
        if not isinstance(entry, dict):
            raise DecodeError(f"log entry is {type(entry).__name__}, not an object")
        topics = entry.get("topics") or []
        if not isinstance(topics, list) or not topics or str(topics[0]).lower() != self._topic:
            raise DecodeError(f"unexpected topics {str(topics)[:80]}")

        if self._topic_index >= 1:
            if len(topics) <= self._topic_index:
                raise DecodeError(f"missing topic {self._topic_index}")
            word = _strip_hex(str(topics[self._topic_index]))
        else:
            data = _strip_hex(str(entry.get("data") or ""))
            lo = self._data_word * WORD_HEX
            word = data[lo : lo + WORD_HEX]
            if len(word) != WORD_HEX:
                raise DecodeError(f"data too short for word {self._data_word}")

        address = normalize_address("0x" + word[-40:])
        if address is None:
            raise DecodeError(f"bad address word {word!r}")

        try:
            block = int(str(entry.get("blockNumber")), 16)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"bad blockNumber {entry.get('blockNumber')!r}") from e

        if not matches_fingerprint(address, self._suffixes):
            return None

        est_ts = now - max(head - block, 0) * self._block_time
        return TokenCandidate(
            address=address,
            source=Source.CHAIN,
            section="chain",
            name=address,
            graduated_at=datetime.fromtimestamp(est_ts, UTC),
            graduation_block=block,
        )


def _strip_hex(value: str) -> str:
    value = value.lower()
    return value[2:] if value.startswith("0x") else value
