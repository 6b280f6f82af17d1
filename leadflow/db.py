"""
Record storage.

Tables:
- records: one row per lead, structured fields stored as JSON text
- daily_stats: per-day counters (acquisitions, verdicts, errors)
- totals: all-time counters, single row

Two stores share the same interface: SQLiteRecordStore for real runs and
MemoryRecordStore for tests and throwaway runs.
"""

import copy
import os
import sqlite3
import threading
import time
from typing import Optional

from leadflow.records import Record, STAGES, utcnow_iso

COUNTER_FIELDS = ('acquired', 'qualified', 'disqualified', 'errors')

_RECORD_COLUMNS = (
    'id', 'external_id', 'identity_key', 'name', 'title', 'company',
    'location', 'about', 'stage', 'experience_json', 'education_json',
    'source_json', 'classification_json', 'classification_history_json',
    'campaign_ref_json', 'acceptance_json', 'followup_json',
    'created_at', 'updated_at',
)


def _check_counter(field: str) -> None:
    if field not in COUNTER_FIELDS:
        raise ValueError(f"Unknown counter: {field}")


def _empty_counters() -> dict:
    return {name: 0 for name in COUNTER_FIELDS}


class SQLiteRecordStore:
    """SQLite-backed store. Opens a short-lived connection per operation."""

    def __init__(self, path: str):
        self.path = path

    def _connect(self) -> sqlite3.Connection:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def init(self) -> None:
        """Create all tables and indexes."""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    external_id TEXT,
                    identity_key TEXT,
                    name TEXT,
                    title TEXT,
                    company TEXT,
                    location TEXT,
                    about TEXT,
                    stage TEXT NOT NULL DEFAULT 'new',
                    experience_json TEXT,
                    education_json TEXT,
                    source_json TEXT,
                    classification_json TEXT,
                    classification_history_json TEXT,
                    campaign_ref_json TEXT,
                    acceptance_json TEXT,
                    followup_json TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    claimed_by TEXT,
                    claimed_until REAL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_records_stage ON records(stage)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_records_identity ON records(identity_key)")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_stats (
                    day TEXT PRIMARY KEY,
                    acquired INTEGER DEFAULT 0,
                    qualified INTEGER DEFAULT 0,
                    disqualified INTEGER DEFAULT 0,
                    errors INTEGER DEFAULT 0
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS totals (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    acquired INTEGER DEFAULT 0,
                    qualified INTEGER DEFAULT 0,
                    disqualified INTEGER DEFAULT 0,
                    errors INTEGER DEFAULT 0
                )
            """)
            conn.execute("INSERT OR IGNORE INTO totals (id) VALUES (1)")

            conn.commit()
        finally:
            conn.close()

    # -----------------------------------------------------------------------
    # Records
    # -----------------------------------------------------------------------

    def get(self, record_id: str) -> Optional[Record]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
            return Record.from_row(dict(row)) if row else None
        finally:
            conn.close()

    def put(self, record: Record) -> None:
        """Insert or update a record in a single statement."""
        now = utcnow_iso()
        if not record.created_at:
            record.created_at = now
        record.updated_at = now

        row = record.to_row()
        columns = ', '.join(_RECORD_COLUMNS)
        placeholders = ', '.join('?' for _ in _RECORD_COLUMNS)
        updates = ', '.join(
            f"{col} = excluded.{col}" for col in _RECORD_COLUMNS if col not in ('id', 'created_at')
        )

        conn = self._connect()
        try:
            conn.execute(
                f"""
                INSERT INTO records ({columns}) VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET {updates}
                """,
                [row[col] for col in _RECORD_COLUMNS],
            )
            conn.commit()
        finally:
            conn.close()

    def query_by_stage(self, stage: str) -> list[Record]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM records WHERE stage = ? ORDER BY seq", (stage,)
            ).fetchall()
            return [Record.from_row(dict(row)) for row in rows]
        finally:
            conn.close()

    def list_all(self) -> list[Record]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM records ORDER BY seq").fetchall()
            return [Record.from_row(dict(row)) for row in rows]
        finally:
            conn.close()

    def find_by_identity(self, identity_key: str) -> Optional[Record]:
        if not identity_key:
            return None
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM records WHERE identity_key = ? ORDER BY seq LIMIT 1",
                (identity_key,),
            ).fetchone()
            return Record.from_row(dict(row)) if row else None
        finally:
            conn.close()

    def count_by_stage(self) -> dict:
        conn = self._connect()
        try:
            counts = {stage: 0 for stage in STAGES}
            for row in conn.execute("SELECT stage, COUNT(*) AS count FROM records GROUP BY stage"):
                counts[row['stage']] = row['count']
            return counts
        finally:
            conn.close()

    # -----------------------------------------------------------------------
    # Claims (per-record lease)
    # -----------------------------------------------------------------------

    def claim(self, record_id: str, owner: str, lease_seconds: float) -> bool:
        """Take a lease on a record. False if someone else holds a live lease."""
        now = time.time()
        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                UPDATE records
                SET claimed_by = ?, claimed_until = ?
                WHERE id = ?
                AND (claimed_until IS NULL OR claimed_until <= ? OR claimed_by = ?)
                """,
                (owner, now + lease_seconds, record_id, now, owner),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def release(self, record_id: str, owner: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                UPDATE records SET claimed_by = NULL, claimed_until = NULL
                WHERE id = ? AND claimed_by = ?
                """,
                (record_id, owner),
            )
            conn.commit()
        finally:
            conn.close()

    # -----------------------------------------------------------------------
    # Counters
    # -----------------------------------------------------------------------

    def increment_counter(self, day: str, field: str, ceiling: Optional[int] = None) -> bool:
        """
        Atomically bump a day counter and its all-time total.

        With a ceiling, the bump only happens while the day count is below
        it. Returns whether the counter moved.
        """
        _check_counter(field)
        conn = self._connect()
        try:
            conn.execute("INSERT OR IGNORE INTO daily_stats (day) VALUES (?)", (day,))
            if ceiling is None:
                cursor = conn.execute(
                    f"UPDATE daily_stats SET {field} = {field} + 1 WHERE day = ?",
                    (day,),
                )
            else:
                cursor = conn.execute(
                    f"UPDATE daily_stats SET {field} = {field} + 1 WHERE day = ? AND {field} < ?",
                    (day, ceiling),
                )
            moved = cursor.rowcount == 1
            if moved:
                conn.execute(f"UPDATE totals SET {field} = {field} + 1 WHERE id = 1")
            conn.commit()
            return moved
        finally:
            conn.close()

    def get_day_counters(self, day: str) -> dict:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM daily_stats WHERE day = ?", (day,)).fetchone()
            counters = _empty_counters()
            if row:
                counters.update({name: row[name] for name in COUNTER_FIELDS})
            return counters
        finally:
            conn.close()

    def get_totals(self) -> dict:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM totals WHERE id = 1").fetchone()
            totals = _empty_counters()
            if row:
                totals.update({name: row[name] for name in COUNTER_FIELDS})
            return totals
        finally:
            conn.close()

    def recent_days(self, limit: int = 7) -> list[dict]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM daily_stats ORDER BY day DESC LIMIT ?", (limit,)
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()


class MemoryRecordStore:
    """In-process store with the same interface as SQLiteRecordStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, Record] = {}
        self._claims: dict[str, tuple[str, float]] = {}
        self._days: dict[str, dict] = {}
        self._totals = _empty_counters()

    def init(self) -> None:
        pass

    def get(self, record_id: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record else None

    def put(self, record: Record) -> None:
        now = utcnow_iso()
        if not record.created_at:
            record.created_at = now
        record.updated_at = now
        with self._lock:
            existing = self._records.get(record.id)
            if existing:
                record.created_at = existing.created_at
            self._records[record.id] = copy.deepcopy(record)

    def query_by_stage(self, stage: str) -> list[Record]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values() if r.stage == stage]

    def list_all(self) -> list[Record]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]

    def find_by_identity(self, identity_key: str) -> Optional[Record]:
        if not identity_key:
            return None
        with self._lock:
            for record in self._records.values():
                if record.identity_key == identity_key:
                    return copy.deepcopy(record)
        return None

    def count_by_stage(self) -> dict:
        with self._lock:
            counts = {stage: 0 for stage in STAGES}
            for record in self._records.values():
                counts[record.stage] = counts.get(record.stage, 0) + 1
            return counts

    def claim(self, record_id: str, owner: str, lease_seconds: float) -> bool:
        now = time.time()
        with self._lock:
            if record_id not in self._records:
                return False
            held = self._claims.get(record_id)
            if held and held[0] != owner and held[1] > now:
                return False
            self._claims[record_id] = (owner, now + lease_seconds)
            return True

    def release(self, record_id: str, owner: str) -> None:
        with self._lock:
            held = self._claims.get(record_id)
            if held and held[0] == owner:
                del self._claims[record_id]

    def increment_counter(self, day: str, field: str, ceiling: Optional[int] = None) -> bool:
        _check_counter(field)
        with self._lock:
            counters = self._days.setdefault(day, _empty_counters())
            if ceiling is not None and counters[field] >= ceiling:
                return False
            counters[field] += 1
            self._totals[field] += 1
            return True

    def get_day_counters(self, day: str) -> dict:
        with self._lock:
            return dict(self._days.get(day, _empty_counters()))

    def get_totals(self) -> dict:
        with self._lock:
            return dict(self._totals)

    def recent_days(self, limit: int = 7) -> list[dict]:
        with self._lock:
            days = sorted(self._days, reverse=True)[:limit]
            return [{'day': day, **self._days[day]} for day in days]
