"""
Persistence façade for retrieved assessed values and computed valuations.

Assessed values are upserted on (address, postal_code) and read back only
inside a staleness window measured on ``scraped_at``. Valuations are
append-only. The sqlite store runs its blocking calls in a worker thread.
"""
import asyncio
import json
import logging
import os
import sqlite3
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from .base import AssessedValueRecord, WozMetadata
from ..core.config import Settings, settings as default_settings
from ..core.utils import normalize_postal_code

logger = logging.getLogger(__name__)


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _fresh(record: AssessedValueRecord, max_age_days: int) -> bool:
    return _parse_ts(record.scraped_at) >= datetime.now(timezone.utc) - timedelta(days=max_age_days)


class MemoryStore:
    def __init__(self):
        self._woz: Dict[Tuple[str, str], dict] = {}
        self._valuations: List[dict] = []

    async def find_woz(self, address: str, postal_code: str, max_age_days: int) -> Optional[AssessedValueRecord]:
        row = self._woz.get((address, normalize_postal_code(postal_code)))
        if row is None:
            return None
        record = AssessedValueRecord.from_dict(row)
        return record if _fresh(record, max_age_days) else None

    async def upsert_woz(self, record: AssessedValueRecord) -> None:
        self._woz[(record.address, record.postal_code)] = record.to_dict()

    async def insert_valuation(self, address: str, postal_code: str, payload: dict) -> None:
        self._valuations.append({
            "address": address,
            "postal_code": normalize_postal_code(postal_code),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "payload": json.loads(json.dumps(payload, default=str)),
        })

    async def recent_valuations(self, address: str, postal_code: str, limit: int = 10) -> List[dict]:
        pc = normalize_postal_code(postal_code)
        rows = [v for v in self._valuations if v["address"] == address and v["postal_code"] == pc]
        return list(reversed(rows))[:limit]

    async def close(self) -> None:
        return None


WOZ_TABLE = """
CREATE TABLE IF NOT EXISTS woz_cache (
    address TEXT NOT NULL,
    postal_code TEXT NOT NULL,
    assessed_value INTEGER NOT NULL,
    reference_year INTEGER NOT NULL,
    object_type TEXT NOT NULL,
    surface_area REAL,
    scraped_at TEXT NOT NULL,
    scraped_epoch REAL NOT NULL,
    source_url TEXT NOT NULL,
    provenance TEXT NOT NULL,
    metadata TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (address, postal_code)
)
"""

VALUATION_TABLE = """
CREATE TABLE IF NOT EXISTS valuations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address TEXT NOT NULL,
    postal_code TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload TEXT NOT NULL
)
"""


class SqliteStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = asyncio.Lock()
        with self._conn:
            self._conn.execute(WOZ_TABLE)
            self._conn.execute(VALUATION_TABLE)
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_valuations_address ON valuations(address, postal_code)"
            )

    async def _run(self, fn, *args):
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

    def _find_woz(self, address: str, postal_code: str, cutoff: float) -> Optional[sqlite3.Row]:
        cur = self._conn.execute(
            "SELECT * FROM woz_cache WHERE address = ? AND postal_code = ? AND scraped_epoch >= ? "
            "ORDER BY scraped_epoch DESC LIMIT 1",
            (address, postal_code, cutoff),
        )
        return cur.fetchone()

    async def find_woz(self, address: str, postal_code: str, max_age_days: int) -> Optional[AssessedValueRecord]:
        # compared as epoch seconds; ISO strings with mixed offsets or precision do not sort
        cutoff = (datetime.now(timezone.utc) - timedelta(days=max_age_days)).timestamp()
        row = await self._run(self._find_woz, address, normalize_postal_code(postal_code), cutoff)
        if row is None:
            return None
        return AssessedValueRecord(
            address=row["address"],
            postal_code=row["postal_code"],
            assessed_value=row["assessed_value"],
            reference_year=row["reference_year"],
            object_type=row["object_type"],
            surface_area=row["surface_area"],
            scraped_at=row["scraped_at"],
            source_url=row["source_url"],
            provenance=row["provenance"],
            metadata=WozMetadata.from_dict(json.loads(row["metadata"])),
        )

    def _upsert_woz(self, record: AssessedValueRecord) -> None:
        scraped = _parse_ts(record.scraped_at)
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO woz_cache (address, postal_code, assessed_value, reference_year, object_type,
                                       surface_area, scraped_at, scraped_epoch, source_url, provenance, metadata,
                                       updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(address, postal_code) DO UPDATE SET
                    assessed_value = excluded.assessed_value,
                    reference_year = excluded.reference_year,
                    object_type = excluded.object_type,
                    surface_area = excluded.surface_area,
                    scraped_at = excluded.scraped_at,
                    scraped_epoch = excluded.scraped_epoch,
                    source_url = excluded.source_url,
                    provenance = excluded.provenance,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                (
                    record.address, record.postal_code, record.assessed_value, record.reference_year,
                    record.object_type, record.surface_area, scraped.isoformat(), scraped.timestamp(),
                    record.source_url, record.provenance, json.dumps(asdict(record.metadata)),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )

    async def upsert_woz(self, record: AssessedValueRecord) -> None:
        await self._run(self._upsert_woz, record)

    def _insert_valuation(self, address: str, postal_code: str, payload: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO valuations (address, postal_code, created_at, payload) VALUES (?, ?, ?, ?)",
                (address, postal_code, datetime.now(timezone.utc).isoformat(), payload),
            )

    async def insert_valuation(self, address: str, postal_code: str, payload: dict) -> None:
        await self._run(
            self._insert_valuation, address, normalize_postal_code(postal_code), json.dumps(payload, default=str)
        )

    def _recent_valuations(self, address: str, postal_code: str, limit: int) -> List[dict]:
        cur = self._conn.execute(
            "SELECT address, postal_code, created_at, payload FROM valuations "
            "WHERE address = ? AND postal_code = ? ORDER BY id DESC LIMIT ?",
            (address, postal_code, limit),
        )
        return [
            {**dict(row), "payload": json.loads(row["payload"])}
            for row in cur.fetchall()
        ]

    async def recent_valuations(self, address: str, postal_code: str, limit: int = 10) -> List[dict]:
        return await self._run(self._recent_valuations, address, normalize_postal_code(postal_code), limit)

    async def close(self) -> None:
        await self._run(self._conn.close)


def create_store(settings: Settings | None = None):
    """Factory picks memory or sqlite based on env flags."""
    settings = settings or default_settings
    if settings.STORE_BACKEND == "sqlite":
        return SqliteStore(settings.STORE_PATH)
    return MemoryStore()
