# monitor.py
import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence

from aggregator import QuoteAggregator
from analysis.detector import OpportunityDetector
from analysis.models import ArbitrageOpportunity, TokenPair
from config import MonitoringConfig
from services.token_cache import TokenCache

logger = logging.getLogger(__name__)

OpportunitySink = Callable[[List[ArbitrageOpportunity]], Any]


class MonitorState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    SHUTDOWN = "shutdown"


@dataclass
class CycleStats:
    cycle: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    quotes: int = 0
    opportunities: int = 0
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class MonitorLoop:
    """Runs scan cycles back to back at a fixed cadence until stopped."""

    def __init__(
        self,
        aggregator: QuoteAggregator,
        detector: OpportunityDetector,
        pairs: Sequence[TokenPair],
        config: MonitoringConfig = MonitoringConfig(),
        *,
        sinks: Iterable[OpportunitySink] = (),
        token_cache: Optional[TokenCache] = None,
        repository=None,
        history_size: int = 100,
        market_chain: str = 'ethereum',
    ):
        self.aggregator = aggregator
        self.detector = detector
        self.pairs = list(pairs)
        self.config = config
        self.sinks = list(sinks)
        self.token_cache = token_cache
        self.repository = repository
        self.market_chain = market_chain
        self.history: Deque[CycleStats] = deque(maxlen=history_size)
        self.cycles_completed = 0
        self._state = MonitorState.IDLE
        self._stop_event = asyncio.Event()
        self._cycle_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def last_cycle(self) -> Optional[CycleStats]:
        return self.history[-1] if self.history else None

    def stop(self) -> None:
        """Requests shutdown. Safe to call from a signal handler and more than once."""
        if not self._stop_event.is_set():
            logger.info("Shutdown requested")
        self._stop_event.set()

    async def run(self) -> None:
        """Runs cycles until :meth:`stop` is called or ``max_cycles`` is reached."""
        if self._state is MonitorState.SHUTDOWN:
            raise RuntimeError("MonitorLoop has already shut down")
        loop = asyncio.get_running_loop()
        logger.info(
            "Monitoring %d pair(s) across %d source(s) every %.1fs",
            len(self.pairs), len(self.aggregator.sources), self.config.scan_interval_seconds,
        )
        try:
            while not self._stop_event.is_set():
                started = loop.time()
                stats = CycleStats(cycle=self.cycles_completed + 1, started_at=datetime.now(timezone.utc))
                self._state = MonitorState.SCANNING
                self._cycle_task = asyncio.create_task(self._run_cycle_safely(stats))
                stop_waiter = asyncio.create_task(self._stop_event.wait())
                try:
                    await asyncio.wait({self._cycle_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    stop_waiter.cancel()

                if not self._cycle_task.done():
                    await self._cancel_cycle()
                    stats.error = stats.error or "cancelled by shutdown"
                    stats.finished_at = datetime.now(timezone.utc)
                    self.history.append(stats)
                    break

                self._cycle_task = None
                self.history.append(stats)
                self.cycles_completed += 1
                self._state = MonitorState.IDLE

                if self.config.max_cycles is not None and self.cycles_completed >= self.config.max_cycles:
                    logger.info("Reached %d cycle(s), stopping", self.cycles_completed)
                    break

                elapsed = loop.time() - started
                delay = max(0.0, self.config.scan_interval_seconds - elapsed)
                logger.debug("Cycle %d took %.2fs, next in %.2fs", stats.cycle, elapsed, delay)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._cycle_task is not None and not self._cycle_task.done():
                await self._cancel_cycle()
            self._state = MonitorState.SHUTDOWN
            logger.info("Monitor stopped after %d cycle(s)", self.cycles_completed)

    async def run_cycle(self, stats: Optional[CycleStats] = None) -> List[ArbitrageOpportunity]:
        """One scan: fetch, detect, deliver. Errors propagate to the caller."""
        if stats is None:
            stats = CycleStats(cycle=self.cycles_completed + 1, started_at=datetime.now(timezone.utc))
        quotes_by_pair = await self.aggregator.scan(self.pairs)
        stats.quotes = sum(len(quotes) for quotes in quotes_by_pair.values())
        opportunities = self.detector.detect(quotes_by_pair, self._market_context())
        stats.opportunities = len(opportunities)
        logger.info("Cycle %d: %d quote(s), %d opportunit%s", stats.cycle, stats.quotes,
                    len(opportunities), "y" if len(opportunities) == 1 else "ies")
        await self._deliver(opportunities)
        return opportunities

    async def _run_cycle_safely(self, stats: CycleStats) -> None:
        cycle_id = await self._record_scan_cycle_start()
        try:
            opportunities = await self.run_cycle(stats)
            await self._record_opportunities(cycle_id, opportunities)
        except Exception as exc:
            stats.error = str(exc) or type(exc).__name__
            logger.exception("Error during scan cycle %d: %s", stats.cycle, exc)
        finally:
            stats.finished_at = datetime.now(timezone.utc)
        await self._record_scan_cycle_finish(cycle_id, stats.opportunities)

    async def _cancel_cycle(self) -> None:
        task = self._cycle_task
        if task is None:
            return
        task.cancel()
        grace = self.config.shutdown_grace_seconds
        done, _ = await asyncio.wait({task}, timeout=grace)
        if not done:
            logger.warning("Scan cycle did not unwind within %.1fs, abandoning it", grace)
        elif not task.cancelled() and task.exception() is not None:
            logger.error("Scan cycle failed while shutting down: %s", task.exception())
        self._cycle_task = None

    def _market_context(self) -> Optional[Dict[str, Any]]:
        if self.token_cache is None or self.token_cache.snapshot is None:
            return None
        return self.token_cache.address_index(self.market_chain)

    async def _deliver(self, opportunities: List[ArbitrageOpportunity]) -> None:
        for sink in self.sinks:
            try:
                result = sink(opportunities)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("Opportunity sink %r failed: %s", sink, exc)

    async def _record_scan_cycle_start(self) -> Optional[int]:
        if not self.repository:
            return None
        try:
            return await self.repository.record_scan_cycle_start([pair.name for pair in self.pairs])
        except Exception as exc:
            logger.error("Failed to persist scan cycle start: %s", exc)
            return None

    async def _record_opportunities(self, cycle_id: Optional[int], opportunities: List[ArbitrageOpportunity]) -> None:
        if not self.repository or cycle_id is None or not opportunities:
            return
        try:
            await self.repository.record_opportunities(cycle_id, opportunities)
        except Exception as exc:
            logger.error("Failed to persist opportunities: %s", exc)

    async def _record_scan_cycle_finish(self, cycle_id: Optional[int], opportunities_found: int) -> None:
        if not self.repository or cycle_id is None:
            return
        try:
            await self.repository.record_scan_cycle_finish(cycle_id, opportunities_found)
        except Exception as exc:
            logger.error("Failed to persist scan cycle finish: %s", exc)
