#!/usr/bin/env python3
import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional, Sequence

from analysis.models import Quote, TokenPair
from dex.base import DexSource
from dex.errors import InvalidPair, NetworkError, QuoteError, RateLimited

logger = logging.getLogger(__name__)


class QuoteAggregator:
    """Fans quote requests out over every (pair, source) combination and joins them."""

    def __init__(
        self,
        sources: Sequence[DexSource],
        *,
        max_concurrent_requests: int = 10,
        request_timeout: float = 30.0,
    ) -> None:
        if max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")
        self.sources = list(sources)
        self.max_concurrent_requests = max_concurrent_requests
        self.request_timeout = request_timeout
        self.in_flight = 0

    async def scan(
        self,
        pairs: Iterable[TokenPair],
        sources: Optional[Iterable[DexSource]] = None,
    ) -> Dict[TokenPair, List[Quote]]:
        """Fetches one quote per (pair, source) and returns successful quotes grouped by pair.

        Failures are logged and omitted; the call returns only after every fetch has
        finished, so callers never observe a partially populated result.
        """
        active_sources = list(sources) if sources is not None else self.sources
        pair_list = list(dict.fromkeys(pairs))
        gate = asyncio.Semaphore(self.max_concurrent_requests)

        started = time.monotonic()
        jobs = [(pair, source) for pair in pair_list for source in active_sources]
        results = await asyncio.gather(*(self._fetch(gate, source, pair) for pair, source in jobs))

        quotes_by_pair: Dict[TokenPair, List[Quote]] = {}
        for quote in results:
            if quote is not None:
                quotes_by_pair.setdefault(quote.pair, []).append(quote)

        succeeded = sum(1 for quote in results if quote is not None)
        logger.info(
            "Collected %d/%d quotes for %d pairs in %.2fs",
            succeeded, len(jobs), len(quotes_by_pair), time.monotonic() - started,
        )
        return quotes_by_pair

    async def _fetch(self, gate: asyncio.Semaphore, source: DexSource, pair: TokenPair) -> Optional[Quote]:
        async with gate:
            self.in_flight += 1
            try:
                quote = await asyncio.wait_for(source.quote(pair), timeout=self.request_timeout)
            except asyncio.TimeoutError:
                logger.warning("%s: quote for %s timed out after %ss", source.name, pair.name, self.request_timeout)
                return None
            except InvalidPair as exc:
                logger.debug("%s", exc)
                return None
            except (NetworkError, RateLimited) as exc:
                logger.warning("%s", exc)
                return None
            except QuoteError as exc:
                logger.error("%s", exc)
                return None
            except Exception as exc:
                logger.error("%s: unexpected error quoting %s: %s", source.name, pair.name, exc)
                return None
            finally:
                self.in_flight -= 1

        if quote.pair != pair:
            logger.error("%s returned a quote for %s when asked for %s", source.name, quote.pair.name, pair.name)
            return None
        return quote
