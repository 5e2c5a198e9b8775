"""
Project status synchronization.

When an invoice linked to a project is paid, the project advances to
DELIVERED. Projects belong to the project-management side of the system;
only their status column is touched here.
"""

import logging
from uuid import UUID

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

DELIVERED = "delivered"


class ProjectStatusSync:
    """Advances a project's status when its invoice is paid."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def invoice_paid(self, invoice_id: UUID, project_id: UUID) -> bool:
        """
        Mark the project delivered.

        Idempotent: a project already delivered is left alone.

        Args:
            invoice_id: Paid invoice (for logging)
            project_id: Linked project

        Returns:
            True if the project status changed, False if it already was
            delivered or does not exist
        """
        rows = self.postgres.execute_returning(
            """
            UPDATE projects
            SET status = %s, updated_at = %s
            WHERE id = %s AND status <> %s
            RETURNING id
            """,
            (DELIVERED, now_utc(), project_id, DELIVERED)
        )

        if rows:
            logger.info(f"Project {project_id} delivered (invoice {invoice_id} paid)")
            return True

        logger.info(f"Project {project_id} already delivered or missing (invoice {invoice_id})")
        return False
