"""
history.py — append-only scan history via aiosqlite.

Table:
  scan_history  — one row per successful detection the user kept

The detection core never writes here; the caller (main.py, or the app layer)
builds a ScanRecord from a DetectionResult and appends it. Rows are never
updated or deleted. The analytics helpers only read.

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

from merger import DetectionResult

logger = logging.getLogger(__name__)

# Keep the DB in a dedicated data/ directory so a single volume mount
# (./data:/app/data) captures both the history and the log file.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "scan_history.db")
_lock = asyncio.Lock()          # serialise schema creation

PERIODS = ("today", "week", "month", "all")


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass
class ScanRecord:
    object_name: str
    confidence: float
    is_product: bool
    all_labels: list[str] = field(default_factory=list)   # secondary labels only
    shopping_url: Optional[str] = None
    backend: str = ""
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None                              # set once stored


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scan_history (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    object_name  TEXT    NOT NULL,
    confidence   REAL    NOT NULL DEFAULT 0,
    is_product   INTEGER NOT NULL DEFAULT 0,
    all_labels   TEXT    NOT NULL DEFAULT '[]',   -- JSON array, main label excluded
    shopping_url TEXT,
    backend      TEXT    NOT NULL DEFAULT '',
    scanned_at   TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_scan_history_at ON scan_history (scanned_at);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("History database initialised at %s", DB_PATH)


# ── Writes ────────────────────────────────────────────────────────────────────

def _utc_iso(moment: datetime) -> str:
    # stored as UTC so string comparison in SQL orders by time
    return moment.astimezone(timezone.utc).isoformat()


def record_from_result(result: DetectionResult, scanned_at: Optional[datetime] = None) -> ScanRecord:
    """History record for a detection: main label split from the rest, first link kept."""
    return ScanRecord(
        object_name=result.main_label,
        confidence=result.confidence,
        is_product=result.is_product,
        all_labels=list(result.secondary_labels),
        shopping_url=result.shopping_url,
        backend=result.backend,
        scanned_at=scanned_at or datetime.now(timezone.utc),
    )


async def append_scan(record: ScanRecord) -> ScanRecord:
    """Insert one record and return it with its id."""
    async with aiosqlite.connect(DB_PATH) as db:
        cursor = await db.execute(
            """INSERT INTO scan_history
               (object_name, confidence, is_product, all_labels, shopping_url, backend, scanned_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                record.object_name,
                record.confidence,
                1 if record.is_product else 0,
                json.dumps(record.all_labels),
                record.shopping_url,
                record.backend,
                _utc_iso(record.scanned_at),
            ),
        )
        await db.commit()
        record.id = cursor.lastrowid
    logger.info("Saved scan #%d: %s", record.id, record.object_name)
    return record


# ── Reads ─────────────────────────────────────────────────────────────────────

def since_for(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Start of an analytics window: today / week / month / all (None).
    "today" begins at local midnight; the result is always in UTC.
    """
    now = now or datetime.now(timezone.utc)
    if period == "today":
        midnight = now.astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    if period == "all":
        return None
    raise ValueError(f"Unknown period '{period}'. Choose from: {', '.join(PERIODS)}")


def _row_to_record(r: aiosqlite.Row) -> ScanRecord:
    return ScanRecord(
        id=r["id"],
        object_name=r["object_name"],
        confidence=r["confidence"],
        is_product=bool(r["is_product"]),
        all_labels=json.loads(r["all_labels"] or "[]"),
        shopping_url=r["shopping_url"],
        backend=r["backend"],
        scanned_at=datetime.fromisoformat(r["scanned_at"]),
    )


async def get_scans(since: Optional[datetime] = None, limit: Optional[int] = None) -> list[ScanRecord]:
    """Return scans newest first, optionally only those at or after `since`."""
    sql = "SELECT * FROM scan_history"
    params: list = []
    if since is not None:
        sql += " WHERE scanned_at >= ?"
        params.append(_utc_iso(since))
    sql += " ORDER BY scanned_at DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
    return [_row_to_record(r) for r in rows]


async def get_stats(since: Optional[datetime] = None, top: int = 5) -> dict:
    """Summary numbers for the analytics view."""
    where, params = ("WHERE scanned_at >= ?", [_utc_iso(since)]) if since else ("", [])
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            f"""SELECT COUNT(*), COALESCE(SUM(is_product), 0),
                       COALESCE(AVG(confidence), 0), COUNT(DISTINCT object_name)
                FROM scan_history {where}""",
            params,
        ) as cur:
            total, products, avg_conf, unique = await cur.fetchone()

        async with db.execute(
            f"""SELECT object_name, COUNT(*) AS n FROM scan_history {where}
                GROUP BY object_name ORDER BY n DESC, object_name ASC LIMIT ?""",
            params + [top],
        ) as cur:
            top_objects = [(row[0], row[1]) for row in await cur.fetchall()]

    return {
        "total_scans": total,
        "product_scans": products,
        "natural_scans": total - products,
        "average_confidence": int(round(avg_conf * 100)),
        "unique_objects": unique,
        "top_objects": top_objects,
    }
