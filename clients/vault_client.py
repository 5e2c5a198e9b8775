"""
Invoicing secrets from HashiCorp Vault.

AppRole login from VAULT_ADDR / VAULT_ROLE_ID / VAULT_SECRET_ID (optional
VAULT_NAMESPACE). Secrets live in KV v2 under 'invoicing/':

    invoicing/database  url
    invoicing/paypal    client_id, client_secret, base_url (optional)

Anything missing stops startup. Values are cached for the life of the
process.
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "invoicing"

PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"

_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, str]] = {}


class VaultError(PermissionError):
    """A secret could not be read. Fatal at startup."""


class VaultClient:
    """AppRole-authenticated reader for the invoicing secret tree."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        """
        Log in using environment configuration.

        Raises:
            ValueError: Address or AppRole credentials not configured
            PermissionError: Login rejected
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError("VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required")

        client_kwargs = {"url": self.vault_addr}
        if namespace:
            client_kwargs["namespace"] = namespace
        self.client = hvac.Client(**client_kwargs)
        self._login(role_id, secret_id)

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

        logger.info(f"Vault client ready: {self.vault_addr}")

    def _login(self, role_id: str, secret_id: str) -> None:
        try:
            response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except (Unauthorized, Forbidden, InvalidPath) as e:
            logger.error(f"AppRole login failed: {e}")
            raise PermissionError(f"AppRole login failed: {e}")
        self.client.token = response["auth"]["client_token"]

    def read(self, path: str) -> Dict[str, str]:
        """
        All fields of the KV v2 secret at invoicing/<path>.

        Raises:
            VaultError: Path missing or access denied
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            logger.error(f"Secret path not found: {full_path}")
            raise VaultError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise VaultError(f"Access denied to secret '{full_path}': {e}")
        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """
        One field of invoicing/<path>.

        Raises:
            VaultError: Path missing or access denied
            KeyError: Field not present in the secret
        """
        data = self.read(path)
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'. "
                f"Available: {', '.join(data)}"
            )
        return data[field]


def _vault() -> VaultClient:
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


def _secret(path: str) -> Dict[str, str]:
    if path not in _secret_cache:
        _secret_cache[path] = _vault().read(path)
    return _secret_cache[path]


def _required(path: str, field: str) -> str:
    data = _secret(path)
    if not data.get(field):
        raise KeyError(f"Field '{field}' missing from secret '{_SECRET_PREFIX}/{path}'")
    return data[field]


def get_database_url() -> str:
    """PostgreSQL connection URL."""
    return _required("database", "url")


def get_paypal_config() -> Dict[str, str]:
    """
    PayPal REST credentials. base_url falls back to the sandbox.

    Returns:
        Dict with keys: client_id, client_secret, base_url
    """
    return {
        "client_id": _required("paypal", "client_id"),
        "client_secret": _required("paypal", "client_secret"),
        "base_url": _secret("paypal").get("base_url") or PAYPAL_SANDBOX_URL,
    }
