"""Failure taxonomy for venue quote requests."""


class QuoteError(Exception):
    """Base class for a failed quote request from a single venue."""

    def __init__(self, source: str, message: str):
        super().__init__(f"[{source}] {message}")
        self.source = source


class NetworkError(QuoteError):
    """Transient transport failure or timeout."""


class RateLimited(QuoteError):
    """The venue asked us to slow down (HTTP 429)."""


class InvalidPair(QuoteError):
    """The venue has no market for the requested pair."""


class ParseError(QuoteError):
    """The venue answered with a payload we could not interpret."""
