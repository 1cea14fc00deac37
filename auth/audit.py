"""
auth/audit.py -- Append-only audit trail for authentication events.

AuditLog owns the audit_logs table. It exposes record() and recent() and
nothing else: entries are never updated or deleted through this code.

record() raises on database errors like any other store method. Callers that
must not fail because of auditing (AuthService, the guard dependencies) go
through write_audit_entry(), which logs the failure on the "atlas.audit"
logger and returns False instead.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import AuditAction, AuditEntry
from auth.store import make_engine

logger = logging.getLogger("atlas.audit")

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actor", String(36), nullable=False),  # user id or "unknown"
    Column("action", String(32), nullable=False),
    Column("success", Boolean, nullable=False),
    Column("reason", String(64)),
    Column("ip_address", String(64), nullable=False),
    Column("user_agent", Text, nullable=False),
    Column("details", Text),  # JSON object
    Column("timestamp", String(32), nullable=False),
)


class AuditLog:
    """Append-only sink for AuditEntry records."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def record(self, entry: AuditEntry) -> int:
        """Insert entry and return its id. Raises on database errors."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    actor=entry.actor,
                    action=entry.action.value,
                    success=entry.success,
                    reason=entry.reason,
                    ip_address=entry.ip_address or "unknown",
                    user_agent=entry.user_agent or "unknown",
                    details=json.dumps(entry.details, sort_keys=True) if entry.details else None,
                    timestamp=entry.timestamp or datetime.now(timezone.utc).isoformat(),
                )
            )
        return result.inserted_primary_key[0]

    def recent(self, limit: int = 100, actor: str | None = None) -> list[AuditEntry]:
        """Return the newest entries first, optionally for one actor."""
        query = _audit_logs.select().order_by(_audit_logs.c.id.desc()).limit(limit)
        if actor is not None:
            query = query.where(_audit_logs.c.actor == actor)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def write_audit_entry(audit_log: AuditLog | None, entry: AuditEntry) -> bool:
    """Record entry without ever raising. Returns True if it was written."""
    if audit_log is None:
        return False
    try:
        audit_log.record(entry)
        return True
    except Exception:
        logger.exception(
            "Failed to write audit entry action=%s actor=%s success=%s",
            entry.action.value,
            entry.actor,
            entry.success,
        )
        return False


def _row_to_entry(row) -> AuditEntry:
    m = row._mapping
    return AuditEntry(
        id=m["id"],
        actor=m["actor"],
        action=AuditAction(m["action"]),
        success=bool(m["success"]),
        reason=m["reason"],
        ip_address=m["ip_address"],
        user_agent=m["user_agent"],
        details=json.loads(m["details"]) if m["details"] else {},
        timestamp=m["timestamp"],
    )
