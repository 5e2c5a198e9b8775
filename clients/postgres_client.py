"""
PostgreSQL access for the invoice store.

psycopg2 with a ThreadedConnectionPool shared per database URL. Every
execute* call borrows a connection, runs one statement and commits.
transaction() yields a cursor for the writes that must land together
(an invoice header with its line items, a line item replacement).

UUID and JSONB adaptation is registered once per process, so UUID
parameters and jsonb columns round-trip as Python values.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Sequence

import psycopg2
import psycopg2.errors
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

UniqueViolation = psycopg2.errors.UniqueViolation

Params = Sequence[Any] | Dict[str, Any] | None

_adapters_registered = False


def _register_adapters() -> None:
    global _adapters_registered
    if not _adapters_registered:
        psycopg2.extras.register_default_jsonb(globally=True)
        psycopg2.extras.register_uuid()
        _adapters_registered = True


class PostgresClient:
    """
    Pooled PostgreSQL client.

    Usage:
        db = PostgresClient(database_url)
        rows = db.execute("SELECT * FROM invoices WHERE client_id = %s", (client_id,))

        with db.transaction() as cur:
            cur.execute("INSERT INTO invoices ...", header)
            cur.executemany("INSERT INTO invoice_line_items ...", items)
    """

    _pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 2, max_connections: int = 20):
        if not database_url:
            raise ValueError("database_url is required")
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._pool()

    def _pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        with self._pools_lock:
            pool = self._pools.get(self._database_url)
            if pool is None:
                _register_adapters()
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._min_connections,
                    maxconn=self._max_connections,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                self._pools[self._database_url] = pool
                logger.info("Invoice store connection pool created")
            return pool

    @contextmanager
    def _connection(self):
        """Borrow a pooled connection; anything uncommitted on error is rolled back."""
        pool = self._pool()
        conn = pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    @contextmanager
    def _cursor(self, dict_rows: bool = True):
        """Cursor on its own connection, committed when the block exits cleanly."""
        factory = psycopg2.extras.RealDictCursor if dict_rows else None
        with self._connection() as conn:
            with conn.cursor(cursor_factory=factory) as cur:
                yield cur
            conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[psycopg2.extras.RealDictCursor]:
        """Several statements, one commit. Any exception rolls all of them back."""
        with self._cursor() as cur:
            yield cur

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run a statement; rows as dicts, or [] when it returns none."""
        with self._cursor() as cur:
            cur.execute(query, params)
            return [dict(row) for row in cur.fetchall()] if cur.description else []

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        """First row or None."""
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def execute_scalar(self, query: str, params: Params = None) -> Any:
        """First column of the first row, or None."""
        with self._cursor(dict_rows=False) as cur:
            cur.execute(query, params)
            row = cur.fetchone() if cur.description else None
            return row[0] if row else None

    def execute_returning(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """INSERT/UPDATE ... RETURNING; the returned rows, possibly none."""
        return self.execute(query, params)

    def execute_many(self, query: str, params_list: List[Sequence[Any]]) -> None:
        """One statement over many parameter rows, committed together."""
        with self._cursor(dict_rows=False) as cur:
            psycopg2.extras.execute_batch(cur, query, params_list)

    def close(self) -> None:
        """Close this URL's pool. A later call reopens it."""
        with self._pools_lock:
            pool = self._pools.pop(self._database_url, None)
            if pool is not None:
                pool.closeall()
