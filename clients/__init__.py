# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_paypal_config,
)
from clients.postgres_client import PostgresClient
from clients.paypal_client import (
    PayPalClient,
    PayPalError,
    GatewayOrder,
    Captured,
    Recoverable,
    Failed,
)
