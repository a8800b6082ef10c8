"""Failure taxonomy shared by the adapters and the reconciler.

None of these are fatal: every adapter catches them at its boundary and
reports "no update" (or a partial result) for the cycle.
"""


class RadarError(Exception):
    pass


class SourceError(RadarError):
    """A data source could not deliver for this cycle."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class TransientNetworkError(SourceError):
    pass


class PartialDataError(SourceError):
    """The index answered, but with a GraphQL ``errors`` array."""


class RateLimitError(SourceError):
    def __init__(self, source: str, retry_after: float | None = None) -> None:
        super().__init__(source, "rate limited")
        self.retry_after = retry_after


class DecodeError(RadarError):
    """A single log entry or payload row could not be decoded."""
