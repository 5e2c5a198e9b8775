"""Tests for PostgresClient. Database-backed tests skip without TEST_DATABASE_URL."""

from uuid import uuid4

import pytest

from clients.postgres_client import PostgresClient, UniqueViolation


class TestPostgresClientInit:
    """Connection pool initialization."""

    def test_empty_url_rejected(self):
        with pytest.raises(ValueError, match="database_url"):
            PostgresClient("")

    def test_creates_pool_with_valid_url(self, db):
        assert db.execute_scalar("SELECT 1") == 1


class TestExecuteMethods:
    """Query execution methods."""

    def test_execute_returns_list_of_dicts(self, db):
        rows = db.execute("SELECT 1 AS a, 'x' AS b")
        assert rows == [{"a": 1, "b": "x"}]

    def test_execute_empty_returns_empty_list(self, db):
        assert db.execute("SELECT 1 WHERE false") == []

    def test_execute_single_no_rows_returns_none(self, db):
        assert db.execute_single("SELECT 1 WHERE false") is None

    def test_uuid_params_round_trip(self, db):
        value = uuid4()
        assert db.execute_scalar("SELECT %s::uuid", (value,)) == value


class TestTransaction:

    def test_commits_all_statements(self, clean_db):
        a, b = uuid4(), uuid4()

        with clean_db.transaction() as cur:
            cur.execute("INSERT INTO projects (id, status) VALUES (%s, 'active')", (a,))
            cur.execute("INSERT INTO projects (id, status) VALUES (%s, 'active')", (b,))

        assert clean_db.execute_scalar("SELECT count(*) FROM projects") == 2

    def test_rolls_back_on_error(self, clean_db):
        project_id = uuid4()

        with pytest.raises(UniqueViolation):
            with clean_db.transaction() as cur:
                cur.execute("INSERT INTO projects (id, status) VALUES (%s, 'active')", (project_id,))
                cur.execute("INSERT INTO projects (id, status) VALUES (%s, 'active')", (project_id,))

        assert clean_db.execute_scalar("SELECT count(*) FROM projects") == 0


class TestExecuteMany:

    def test_inserts_every_row(self, clean_db):
        clean_db.execute_many(
            "INSERT INTO projects (id, status) VALUES (%s, %s)",
            [(uuid4(), "active") for _ in range(3)],
        )

        assert clean_db.execute_scalar("SELECT count(*) FROM projects") == 3
