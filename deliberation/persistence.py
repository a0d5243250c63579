"""
Write-once persistence of deliberation audit trails.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite
from loguru import logger

from .errors import CouncilError


class AuditRecordExists(CouncilError):
    """An audit trail for this session has already been written."""


@dataclass
class AuditRecord:
    """A stored audit trail."""
    session_id: str
    timestamp: str
    state: str
    question: str
    payload: str
    id: Optional[int] = None
    failure_reason: Optional[str] = None

    @property
    def trail(self) -> Dict[str, Any]:
        return json.loads(self.payload) if self.payload else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "state": self.state,
            "failure_reason": self.failure_reason,
            "question": self.question,
            "trail": self.trail,
        }


class AuditSink(ABC):
    """
    Receives the complete audit trail of every terminal session.

    Sinks are write-once per session id: recording the same session twice
    raises ``AuditRecordExists``.
    """

    @abstractmethod
    async def record(self, session_id: str, trail: Dict[str, Any]):
        pass

    async def close(self):
        pass


class MemoryAuditSink(AuditSink):
    """Keeps audit trails in process memory."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}

    async def record(self, session_id: str, trail: Dict[str, Any]):
        if session_id in self.records:
            raise AuditRecordExists(session_id)
        # Stored as a JSON round trip so later mutation of the caller's dict
        # cannot leak in.
        self.records[session_id] = json.loads(json.dumps(trail, default=str))


class JsonAuditSink(AuditSink):
    """One pretty-printed JSON file per session in ``output_dir``."""

    def __init__(self, output_dir: str = "data/sessions"):
        self.output_dir = Path(output_dir)

    def path_for(self, session_id: str) -> Path:
        return self.output_dir / f"{session_id}.json"

    async def record(self, session_id: str, trail: Dict[str, Any]):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session_id)
        try:
            with open(path, "x", encoding="utf-8") as f:
                json.dump(trail, f, indent=2, default=str)
        except FileExistsError:
            raise AuditRecordExists(session_id) from None
        logger.debug(f"Audit trail written to {path}")


class CouncilDatabase(AuditSink):
    """
    SQLite-based audit store. Rows are only ever inserted.
    """

    def __init__(self, db_path: str = "data/council.db"):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self):
        """Initialize database tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS audit_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT UNIQUE NOT NULL,
                    timestamp TEXT,
                    state TEXT,
                    failure_reason TEXT,
                    question TEXT,
                    payload TEXT
                )
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_records(timestamp)
            """)
            await db.commit()
        self._initialized = True
        logger.info(f"Database initialized at {self.db_path}")

    async def record(self, session_id: str, trail: Dict[str, Any]):
        if not self._initialized:
            await self.initialize()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    INSERT INTO audit_records
                    (session_id, timestamp, state, failure_reason, question, payload)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    session_id,
                    datetime.now(timezone.utc).isoformat(),
                    trail.get("state"),
                    trail.get("failure_reason"),
                    trail.get("question"),
                    json.dumps(trail, default=str),
                ))
                await db.commit()
        except aiosqlite.IntegrityError:
            raise AuditRecordExists(session_id) from None

    async def get_record(self, session_id: str) -> Optional[AuditRecord]:
        """Get an audit record by session id."""
        if not self._initialized:
            await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM audit_records WHERE session_id = ?",
                (session_id,)
            ) as cursor:
                row = await cursor.fetchone()
                return AuditRecord(**dict(row)) if row else None

    async def recent(self, limit: int = 10, offset: int = 0) -> List[AuditRecord]:
        """Most recent audit records first."""
        if not self._initialized:
            await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM audit_records ORDER BY id DESC LIMIT ? OFFSET ?",
                (limit, offset)
            ) as cursor:
                rows = await cursor.fetchall()
                return [AuditRecord(**dict(row)) for row in rows]

    async def get_statistics(self) -> Dict[str, Any]:
        if not self._initialized:
            await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT state, COUNT(*) FROM audit_records GROUP BY state"
            ) as cursor:
                by_state = {row[0]: row[1] for row in await cursor.fetchall()}
        return {
            "total_sessions": sum(by_state.values()),
            "by_state": by_state,
            "db_path": str(self.db_path),
        }


class CompositeSink(AuditSink):
    """Fans one audit trail out to several sinks."""

    def __init__(self, sinks: Sequence[AuditSink]):
        self.sinks = list(sinks)

    async def record(self, session_id: str, trail: Dict[str, Any]):
        errors = []
        for sink in self.sinks:
            try:
                await sink.record(session_id, trail)
            except (AuditRecordExists, OSError, aiosqlite.Error) as e:
                logger.error(f"{type(sink).__name__} failed for session {session_id}: {e}")
                errors.append(e)
        if errors:
            raise errors[0]

    async def close(self):
        for sink in self.sinks:
            await sink.close()
