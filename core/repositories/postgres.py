"""
Relational invoice store.

Tables: invoices, invoice_line_items, invoice_payments (see schema.sql).
Line items and payments reference invoices by foreign key with ON DELETE
CASCADE, which the compensating delete in create() relies on.
"""

import logging
from typing import Any
from uuid import UUID

from clients.postgres_client import PostgresClient, UniqueViolation
from core.exceptions import DuplicateInvoiceNumberError
from core.models import InvoiceFilter, InvoiceStatus, PaymentStatus
from core.repositories.base import InvoiceRepository

logger = logging.getLogger(__name__)

_INVOICE_COLUMNS = (
    "id", "invoice_number", "client_id", "designer_id", "project_id",
    "title", "description", "status",
    "subtotal_cents", "tax_rate", "tax_amount_cents", "total_amount_cents",
    "due_at", "sent_at", "paid_at", "cancelled_at",
    "payment_method", "payment_reference", "gateway_order_id",
    "notes", "terms", "created_at", "updated_at",
)

_LINE_ITEM_COLUMNS = (
    "id", "invoice_id", "position", "description",
    "quantity", "unit_price_cents", "item_type", "created_at",
)

_PAYMENT_COLUMNS = (
    "id", "invoice_id", "amount_cents", "payment_method", "status",
    "transaction_id", "gateway_order_id", "failure_reason", "processed_at",
)


def _placeholders(count: int) -> str:
    return ", ".join(["%s"] * count)


class PostgresInvoiceRepository(InvoiceRepository):
    """InvoiceRepository backed by PostgreSQL."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def _insert_invoice(self, row: dict[str, Any]) -> None:
        try:
            self.postgres.execute(
                f"""
                INSERT INTO invoices ({', '.join(_INVOICE_COLUMNS)})
                VALUES ({_placeholders(len(_INVOICE_COLUMNS))})
                """,
                tuple(row.get(col) for col in _INVOICE_COLUMNS)
            )
        except UniqueViolation as e:
            raise DuplicateInvoiceNumberError(
                f"Invoice number {row['invoice_number']} already issued"
            ) from e

    def _insert_line_items(self, rows: list[dict[str, Any]]) -> None:
        self.postgres.execute_many(
            f"""
            INSERT INTO invoice_line_items ({', '.join(_LINE_ITEM_COLUMNS)})
            VALUES ({_placeholders(len(_LINE_ITEM_COLUMNS))})
            """,
            [tuple(row[col] for col in _LINE_ITEM_COLUMNS) for row in rows]
        )

    def _purge_invoice(self, invoice_id: UUID) -> None:
        self.postgres.execute(
            "DELETE FROM invoices WHERE id = %s",
            (invoice_id,)
        )

    def _fetch_invoice(self, invoice_id: UUID) -> dict[str, Any] | None:
        return self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL",
            (invoice_id,)
        )

    def _fetch_line_items(self, invoice_id: UUID) -> list[dict[str, Any]]:
        return self.postgres.execute(
            """
            SELECT * FROM invoice_line_items
            WHERE invoice_id = %s
            ORDER BY position ASC
            """,
            (invoice_id,)
        )

    def _fetch_payments(self, invoice_id: UUID) -> list[dict[str, Any]]:
        return self.postgres.execute(
            """
            SELECT * FROM invoice_payments
            WHERE invoice_id = %s
            ORDER BY processed_at ASC
            """,
            (invoice_id,)
        )

    def _fetch_payment_by_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        return self.postgres.execute_single(
            "SELECT * FROM invoice_payments WHERE transaction_id = %s",
            (transaction_id,)
        )

    def _query_invoices(self, criteria: InvoiceFilter) -> list[dict[str, Any]]:
        conditions = ["deleted_at IS NULL"]
        params: list[Any] = []

        if criteria.client_id is not None:
            conditions.append("client_id = %s")
            params.append(criteria.client_id)
        if criteria.project_id is not None:
            conditions.append("project_id = %s")
            params.append(criteria.project_id)
        if criteria.statuses:
            conditions.append("status = ANY(%s)")
            params.append([InvoiceStatus(s).value for s in criteria.statuses])

        if criteria.order_by_due:
            order = "COALESCE(due_at, created_at) ASC"
        else:
            order = "created_at DESC"

        params.extend([criteria.limit, criteria.offset])

        return self.postgres.execute(
            f"""
            SELECT * FROM invoices
            WHERE {' AND '.join(conditions)}
            ORDER BY {order}
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )

    def _write_update(
        self,
        invoice_id: UUID,
        fields: dict[str, Any],
        item_rows: list[dict[str, Any]] | None,
        expected_status: InvoiceStatus | None,
    ) -> bool:
        set_parts = [f"{field} = %s" for field in fields]
        params: list[Any] = list(fields.values())
        params.append(invoice_id)

        guard = ""
        if expected_status is not None:
            guard = " AND status = %s"
            params.append(expected_status.value)

        with self.postgres.transaction() as cur:
            cur.execute(
                f"""
                UPDATE invoices
                SET {', '.join(set_parts)}
                WHERE id = %s AND deleted_at IS NULL{guard}
                RETURNING id
                """,
                tuple(params)
            )
            if cur.fetchone() is None:
                return False

            if item_rows is not None:
                cur.execute(
                    "DELETE FROM invoice_line_items WHERE invoice_id = %s",
                    (invoice_id,)
                )
                for row in item_rows:
                    cur.execute(
                        f"""
                        INSERT INTO invoice_line_items ({', '.join(_LINE_ITEM_COLUMNS)})
                        VALUES ({_placeholders(len(_LINE_ITEM_COLUMNS))})
                        """,
                        tuple(row[col] for col in _LINE_ITEM_COLUMNS)
                    )

        return True

    def _soft_delete(self, invoice_id: UUID, deleted_at) -> bool:
        rows = self.postgres.execute_returning(
            """
            UPDATE invoices
            SET deleted_at = %s, updated_at = %s
            WHERE id = %s AND status = %s AND deleted_at IS NULL
            RETURNING id
            """,
            (deleted_at, deleted_at, invoice_id, InvoiceStatus.DRAFT.value)
        )
        return bool(rows)

    def _lock_invoice(self, cur, invoice_id: UUID) -> str | None:
        """Row-lock a live invoice for the rest of the transaction; its status, or None."""
        cur.execute(
            "SELECT status FROM invoices WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
            (invoice_id,)
        )
        locked = cur.fetchone()
        return locked["status"] if locked else None

    def _insert_payment(self, row: dict[str, Any]) -> dict[str, Any] | None:
        with self.postgres.transaction() as cur:
            status = self._lock_invoice(cur, row["invoice_id"])
            if status is None or status == InvoiceStatus.CANCELLED.value:
                return None
            cur.execute(
                f"""
                INSERT INTO invoice_payments ({', '.join(_PAYMENT_COLUMNS)})
                VALUES ({_placeholders(len(_PAYMENT_COLUMNS))})
                RETURNING *
                """,
                tuple(row[col] for col in _PAYMENT_COLUMNS)
            )
            return dict(cur.fetchone())

    def _cancel(
        self, invoice_id: UUID, fields: dict[str, Any], expected_status: InvoiceStatus
    ) -> bool:
        # Payment inserts hold the same row lock until they commit
        with self.postgres.transaction() as cur:
            if self._lock_invoice(cur, invoice_id) != expected_status.value:
                return False
            cur.execute(
                "SELECT 1 FROM invoice_payments WHERE invoice_id = %s AND status = %s LIMIT 1",
                (invoice_id, PaymentStatus.COMPLETED.value)
            )
            if cur.fetchone() is not None:
                return False
            set_parts = [f"{field} = %s" for field in fields]
            cur.execute(
                f"UPDATE invoices SET {', '.join(set_parts)} WHERE id = %s",
                (*fields.values(), invoice_id)
            )
        return True

    def _mark_paid(
        self, invoice_id: UUID, fields: dict[str, Any], payment_row: dict[str, Any]
    ) -> dict[str, Any] | None:
        # One statement: the payment row only exists if the status flip won
        set_parts = [f"{field} = %s" for field in fields]
        payment_values = [payment_row[col] for col in _PAYMENT_COLUMNS if col != "invoice_id"]
        payment_columns = [col for col in _PAYMENT_COLUMNS if col != "invoice_id"]

        rows = self.postgres.execute_returning(
            f"""
            WITH paid AS (
                UPDATE invoices
                SET {', '.join(set_parts)}
                WHERE id = %s AND status = %s AND deleted_at IS NULL
                RETURNING id
            )
            INSERT INTO invoice_payments (invoice_id, {', '.join(payment_columns)})
            SELECT paid.id, {_placeholders(len(payment_columns))} FROM paid
            RETURNING *
            """,
            (
                *fields.values(),
                invoice_id, InvoiceStatus.SENT.value,
                *payment_values,
            )
        )
        return rows[0] if rows else None

    def _invoice_number_taken(self, invoice_number: str) -> bool:
        count = self.postgres.execute_scalar(
            "SELECT COUNT(*) FROM invoices WHERE invoice_number = %s",
            (invoice_number,)
        )
        return bool(count)
