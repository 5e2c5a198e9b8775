"""
In-process invoice store.

Backs local development and the service test suite. A single re-entrant
lock makes every primitive atomic, which gives the same guarantees the
relational store gets from single statements and transactions.
"""

import copy
import threading
from typing import Any
from uuid import UUID

from core.exceptions import DuplicateInvoiceNumberError
from core.models import InvoiceFilter, InvoiceStatus, PaymentStatus
from core.repositories.base import InvoiceRepository


class InMemoryInvoiceRepository(InvoiceRepository):
    """Dict-backed InvoiceRepository."""

    def __init__(self):
        self._lock = threading.RLock()
        self._invoices: dict[UUID, dict[str, Any]] = {}
        self._line_items: dict[UUID, list[dict[str, Any]]] = {}
        self._payments: dict[UUID, list[dict[str, Any]]] = {}
        self._issued_numbers: set[str] = set()

    def _insert_invoice(self, row: dict[str, Any]) -> None:
        with self._lock:
            if row["invoice_number"] in self._issued_numbers:
                raise DuplicateInvoiceNumberError(
                    f"Invoice number {row['invoice_number']} already issued"
                )
            self._issued_numbers.add(row["invoice_number"])
            self._invoices[row["id"]] = {**row, "deleted_at": None}
            self._line_items[row["id"]] = []
            self._payments[row["id"]] = []

    def _insert_line_items(self, rows: list[dict[str, Any]]) -> None:
        with self._lock:
            for row in rows:
                self._line_items[row["invoice_id"]].append(dict(row))

    def _purge_invoice(self, invoice_id: UUID) -> None:
        with self._lock:
            row = self._invoices.pop(invoice_id, None)
            self._line_items.pop(invoice_id, None)
            self._payments.pop(invoice_id, None)
            if row is not None:
                self._issued_numbers.discard(row["invoice_number"])

    def _fetch_invoice(self, invoice_id: UUID) -> dict[str, Any] | None:
        with self._lock:
            row = self._invoices.get(invoice_id)
            if row is None or row["deleted_at"] is not None:
                return None
            return copy.deepcopy(row)

    def _fetch_line_items(self, invoice_id: UUID) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._line_items.get(invoice_id, [])
            return [dict(r) for r in sorted(rows, key=lambda r: r["position"])]

    def _fetch_payments(self, invoice_id: UUID) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._payments.get(invoice_id, [])
            return [dict(r) for r in sorted(rows, key=lambda r: r["processed_at"])]

    def _fetch_payment_by_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        with self._lock:
            for rows in self._payments.values():
                for row in rows:
                    if row["transaction_id"] == transaction_id:
                        return dict(row)
            return None

    def _query_invoices(self, criteria: InvoiceFilter) -> list[dict[str, Any]]:
        with self._lock:
            rows = [r for r in self._invoices.values() if r["deleted_at"] is None]

        if criteria.client_id is not None:
            rows = [r for r in rows if r["client_id"] == criteria.client_id]
        if criteria.project_id is not None:
            rows = [r for r in rows if r["project_id"] == criteria.project_id]
        if criteria.statuses:
            wanted = {InvoiceStatus(s).value for s in criteria.statuses}
            rows = [r for r in rows if r["status"] in wanted]

        if criteria.order_by_due:
            rows.sort(key=lambda r: r["due_at"] or r["created_at"])
        else:
            rows.sort(key=lambda r: r["created_at"], reverse=True)

        window = rows[criteria.offset:criteria.offset + criteria.limit]
        return [copy.deepcopy(r) for r in window]

    def _write_update(
        self,
        invoice_id: UUID,
        fields: dict[str, Any],
        item_rows: list[dict[str, Any]] | None,
        expected_status: InvoiceStatus | None,
    ) -> bool:
        with self._lock:
            row = self._invoices.get(invoice_id)
            if row is None or row["deleted_at"] is not None:
                return False
            if expected_status is not None and row["status"] != expected_status.value:
                return False
            row.update(fields)
            if item_rows is not None:
                self._line_items[invoice_id] = [dict(r) for r in item_rows]
            return True

    def _soft_delete(self, invoice_id: UUID, deleted_at) -> bool:
        with self._lock:
            row = self._invoices.get(invoice_id)
            if row is None or row["status"] != InvoiceStatus.DRAFT.value:
                return False
            row["deleted_at"] = deleted_at
            row["updated_at"] = deleted_at
            return True

    def _insert_payment(self, row: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            invoice = self._invoices.get(row["invoice_id"])
            if (
                invoice is None
                or invoice["deleted_at"] is not None
                or invoice["status"] == InvoiceStatus.CANCELLED.value
            ):
                return None
            self._payments[row["invoice_id"]].append(dict(row))
            return dict(row)

    def _cancel(
        self, invoice_id: UUID, fields: dict[str, Any], expected_status: InvoiceStatus
    ) -> bool:
        with self._lock:
            row = self._invoices.get(invoice_id)
            if row is None or row["deleted_at"] is not None:
                return False
            if row["status"] != expected_status.value:
                return False
            if any(p["status"] == PaymentStatus.COMPLETED.value for p in self._payments[invoice_id]):
                return False
            row.update(fields)
            return True

    def _mark_paid(
        self, invoice_id: UUID, fields: dict[str, Any], payment_row: dict[str, Any]
    ) -> dict[str, Any] | None:
        with self._lock:
            row = self._invoices.get(invoice_id)
            if row is None or row["status"] != InvoiceStatus.SENT.value:
                return None
            row.update(fields)
            self._payments[invoice_id].append(dict(payment_row))
            return dict(payment_row)

    def _invoice_number_taken(self, invoice_number: str) -> bool:
        with self._lock:
            return invoice_number in self._issued_numbers
