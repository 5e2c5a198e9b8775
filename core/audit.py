"""
Append-only audit trail for invoices and their payments.

Rows record who did what to which entity and the values before and after.
The actor is always handed in by the caller. Writing a row is a side
channel: InvoiceService logs and swallows audit failures because the
invoice write they describe has already committed.
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc


class AuditAction(str, Enum):
    """What happened to the entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TRANSITION = "transition"
    PAYMENT = "payment"


class AuditEntity(str, Enum):
    """Audited entity kinds."""

    INVOICE = "invoice"
    PAYMENT = "invoice_payment"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Field-level diff of two JSON-ready snapshots.

    Args:
        old: Snapshot before the write
        new: Snapshot after the write
        exclude_fields: Keys to skip (defaults to {"updated_at"})

    Returns:
        {field: {"old": ..., "new": ...}} for every differing key
    """
    exclude = exclude_fields or {"updated_at"}
    return {
        key: {"old": old.get(key), "new": new.get(key)}
        for key in sorted(old.keys() | new.keys())
        if key not in exclude and old.get(key) != new.get(key)
    }


class AuditLogger:
    """
    Writes and reads audit_log rows.

    Pass snapshots through model_dump(mode="json") so Decimals, UUIDs and
    datetimes reach JSONB as plain values.
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: AuditEntity | str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        actor_id: UUID | None = None
    ) -> None:
        """
        Append one audit row.

        Shape of changes by action:
        - CREATE:     {"created": snapshot}
        - UPDATE:     compute_changes() output
        - TRANSITION: {"status": {"old", "new"}, plus the timestamp it set}
        - PAYMENT:    {"created": payment snapshot}
        - DELETE:     {"deleted": snapshot}

        actor_id is None for system-initiated writes.
        """
        self.postgres.execute(
            """
            INSERT INTO audit_log (id, actor_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                actor_id,
                AuditEntity(entity_type).value,
                entity_id,
                action.value,
                Json(changes),
                now_utc(),
            )
        )

    def history(
        self,
        entity_type: AuditEntity | str,
        entity_id: UUID,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Audit rows for one entity, newest first."""
        return self.postgres.execute(
            """
            SELECT id, actor_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (AuditEntity(entity_type).value, entity_id, limit)
        )
