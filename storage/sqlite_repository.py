"""SQLite-backed persistence layer for scan cycles and detected opportunities."""
from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from analysis.models import ArbitrageOpportunity
from storage.models import OpportunityRecord, ScanCycleRecord

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _serialize_list(values: Iterable[str]) -> str:
    return ",".join(sorted(set(values)))


def _deserialize_list(value: str) -> list[str]:
    return [item for item in value.split(",") if item]


def _format_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(ISO_FORMAT)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


class SQLiteRepository:
    """Provides async-friendly helpers for persisting scan history."""

    def __init__(self, db_path: Path | str = Path("data/scan_history.db")) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS scan_cycle (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                pairs TEXT NOT NULL,
                opportunities_found INTEGER NOT NULL DEFAULT 0
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS opportunity (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                scan_cycle_id INTEGER,
                pair TEXT NOT NULL,
                buy_venue TEXT NOT NULL,
                sell_venue TEXT NOT NULL,
                buy_price REAL NOT NULL,
                sell_price REAL NOT NULL,
                profit_percentage REAL NOT NULL,
                liquidity REAL NOT NULL,
                confidence_score REAL NOT NULL,
                gas_cost_estimate REAL NOT NULL,
                estimated_profit REAL NOT NULL,
                slippage_pct REAL NOT NULL,
                base_market_cap_rank INTEGER,
                detected_at TEXT NOT NULL,
                FOREIGN KEY (scan_cycle_id) REFERENCES scan_cycle(id) ON DELETE SET NULL
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_opportunity_pair_time
                ON opportunity(pair, detected_at);
            """,
        ]

        with self._lock:
            cursor = self._connection.cursor()
            for statement in statements:
                cursor.execute(statement)
            self._connection.commit()
            cursor.close()

    async def record_scan_cycle_start(self, pair_names: Iterable[str]) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._record_scan_cycle_start_sync, list(pair_names))

    def _record_scan_cycle_start_sync(self, pair_names: list[str]) -> int:
        started_at = _format_time(datetime.now(timezone.utc))
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO scan_cycle (started_at, pairs)
                VALUES (?, ?)
                """,
                (started_at, _serialize_list(pair_names)),
            )
            self._connection.commit()
            cycle_id = cursor.lastrowid
            cursor.close()
        return cycle_id

    async def record_scan_cycle_finish(self, scan_cycle_id: int, opportunities_found: int) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self._record_scan_cycle_finish_sync,
            scan_cycle_id,
            opportunities_found,
        )

    def _record_scan_cycle_finish_sync(self, scan_cycle_id: int, opportunities_found: int) -> None:
        finished_at = _format_time(datetime.now(timezone.utc))
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                UPDATE scan_cycle
                SET finished_at = ?, opportunities_found = ?
                WHERE id = ?
                """,
                (finished_at, opportunities_found, scan_cycle_id),
            )
            self._connection.commit()
            cursor.close()

    async def record_opportunities(
        self,
        scan_cycle_id: Optional[int],
        opportunities: Iterable[ArbitrageOpportunity],
    ) -> list[int]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._record_opportunities_sync,
            scan_cycle_id,
            list(opportunities),
        )

    def _record_opportunities_sync(
        self,
        scan_cycle_id: Optional[int],
        opportunities: list[ArbitrageOpportunity],
    ) -> list[int]:
        ids: list[int] = []
        with self._lock:
            cursor = self._connection.cursor()
            for opp in opportunities:
                cursor.execute(
                    """
                    INSERT INTO opportunity (
                        scan_cycle_id,
                        pair,
                        buy_venue,
                        sell_venue,
                        buy_price,
                        sell_price,
                        profit_percentage,
                        liquidity,
                        confidence_score,
                        gas_cost_estimate,
                        estimated_profit,
                        slippage_pct,
                        base_market_cap_rank,
                        detected_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        scan_cycle_id,
                        opp.pair_name,
                        opp.buy_venue,
                        opp.sell_venue,
                        opp.buy_price,
                        opp.sell_price,
                        opp.profit_percentage,
                        opp.liquidity,
                        opp.confidence_score,
                        opp.gas_cost_estimate,
                        opp.estimated_profit,
                        opp.slippage_pct,
                        opp.base_market_cap_rank,
                        _format_time(opp.detected_at),
                    ),
                )
                ids.append(cursor.lastrowid)
            self._connection.commit()
            cursor.close()
        return ids

    async def fetch_scan_cycle(self, scan_cycle_id: int) -> Optional[ScanCycleRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_scan_cycle_sync, scan_cycle_id)

    def _fetch_scan_cycle_sync(self, scan_cycle_id: int) -> Optional[ScanCycleRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute("SELECT * FROM scan_cycle WHERE id = ?", (scan_cycle_id,))
            row = cursor.fetchone()
            cursor.close()
        if row is None:
            return None
        return ScanCycleRecord(
            id=row["id"],
            started_at=_parse_time(row["started_at"]),
            finished_at=_parse_time(row["finished_at"]),
            pairs=_deserialize_list(row["pairs"]),
            opportunities_found=row["opportunities_found"],
        )

    async def fetch_recent_opportunities(
        self,
        limit: int = 50,
        *,
        pair: Optional[str] = None,
    ) -> list[OpportunityRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._fetch_recent_opportunities_sync,
            limit,
            pair.upper() if pair else None,
        )

    def _fetch_recent_opportunities_sync(self, limit: int, pair: Optional[str]) -> list[OpportunityRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM opportunity
                WHERE (? IS NULL OR pair = ?)
                ORDER BY detected_at DESC, id DESC
                LIMIT ?
                """,
                (pair, pair, limit),
            )
            rows = cursor.fetchall()
            cursor.close()
        records: list[OpportunityRecord] = []
        for row in rows:
            records.append(
                OpportunityRecord(
                    id=row["id"],
                    scan_cycle_id=row["scan_cycle_id"],
                    pair=row["pair"],
                    buy_venue=row["buy_venue"],
                    sell_venue=row["sell_venue"],
                    buy_price=row["buy_price"],
                    sell_price=row["sell_price"],
                    profit_percentage=row["profit_percentage"],
                    liquidity=row["liquidity"],
                    confidence_score=row["confidence_score"],
                    gas_cost_estimate=row["gas_cost_estimate"],
                    estimated_profit=row["estimated_profit"],
                    slippage_pct=row["slippage_pct"],
                    base_market_cap_rank=row["base_market_cap_rank"],
                    detected_at=_parse_time(row["detected_at"]),
                )
            )
        return records

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._connection.commit()
            self._connection.close()


__all__ = ["SQLiteRepository", "ScanCycleRecord", "OpportunityRecord"]
