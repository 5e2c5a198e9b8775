"""Invoice persistence."""

from core.repositories.base import InvoiceRepository
from core.repositories.memory import InMemoryInvoiceRepository
from core.repositories.postgres import PostgresInvoiceRepository
