"""Tests for the invoice audit trail."""

from unittest.mock import Mock
from uuid import uuid4

import pytest

from clients.postgres_client import PostgresClient
from core.audit import AuditAction, AuditEntity, AuditLogger, compute_changes


class TestComputeChanges:

    def test_detects_changed_fields(self):
        old = {"title": "Logo", "notes": "net 30"}
        new = {"title": "Logo", "notes": "net 15"}

        changes = compute_changes(old, new)

        assert changes == {"notes": {"old": "net 30", "new": "net 15"}}

    def test_detects_added_and_removed_fields(self):
        changes = compute_changes({"terms": "x"}, {"due_at": "2026-01-01"})

        assert changes["terms"] == {"old": "x", "new": None}
        assert changes["due_at"] == {"old": None, "new": "2026-01-01"}

    def test_ignores_updated_at_by_default(self):
        changes = compute_changes({"updated_at": 1}, {"updated_at": 2})

        assert changes == {}

    def test_custom_exclusions(self):
        changes = compute_changes(
            {"line_items": [1], "title": "a"},
            {"line_items": [2], "title": "b"},
            exclude_fields={"line_items"},
        )

        assert set(changes) == {"title"}


class TestAuditLogger:

    @pytest.fixture
    def postgres(self):
        return Mock(spec=PostgresClient)

    def test_log_change_writes_row(self, postgres):
        audit = AuditLogger(postgres)
        entity_id = uuid4()
        actor_id = uuid4()

        audit.log_change(
            AuditEntity.INVOICE, entity_id, AuditAction.TRANSITION,
            {"status": {"old": "draft", "new": "sent"}}, actor_id,
        )

        query, params = postgres.execute.call_args.args
        assert "INSERT INTO audit_log" in query
        assert params[1] == actor_id
        assert params[2] == "invoice"
        assert params[3] == entity_id
        assert params[4] == "transition"
        assert params[5].adapted == {"status": {"old": "draft", "new": "sent"}}

    def test_plain_entity_name_accepted(self, postgres):
        AuditLogger(postgres).log_change("invoice_payment", uuid4(), AuditAction.PAYMENT, {})

        params = postgres.execute.call_args.args[1]
        assert params[1] is None
        assert params[2] == "invoice_payment"
        assert params[4] == "payment"

    def test_unknown_entity_rejected(self, postgres):
        with pytest.raises(ValueError):
            AuditLogger(postgres).log_change("ticket", uuid4(), AuditAction.CREATE, {})

        postgres.execute.assert_not_called()

    def test_history_queries_by_entity(self, postgres):
        postgres.execute.return_value = []
        entity_id = uuid4()

        assert AuditLogger(postgres).history(AuditEntity.PAYMENT, entity_id, limit=10) == []
        assert postgres.execute.call_args.args[1] == ("invoice_payment", entity_id, 10)
