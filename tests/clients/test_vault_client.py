"""Tests for VaultClient - HashiCorp Vault secrets management."""

from unittest.mock import MagicMock, patch

import pytest
from hvac.exceptions import Forbidden, InvalidPath

import clients.vault_client as vault_module
from clients.vault_client import (
    PAYPAL_SANDBOX_URL,
    VaultClient,
    VaultError,
    get_database_url,
    get_paypal_config,
)


@pytest.fixture
def vault_env(monkeypatch):
    monkeypatch.setenv("VAULT_ADDR", "https://vault.test:8200")
    monkeypatch.setenv("VAULT_ROLE_ID", "role")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)


@pytest.fixture
def hvac_client(vault_env):
    """hvac.Client replaced with a MagicMock that authenticates."""
    with patch("clients.vault_client.hvac.Client") as client_class:
        client = client_class.return_value
        client.auth.approle.login.return_value = {"auth": {"client_token": "tok"}}
        client.is_authenticated.return_value = True
        yield client


@pytest.fixture(autouse=True)
def reset_vault_singleton():
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()
    yield
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()


def _secret(data):
    return {"data": {"data": data}}


class TestVaultClientInit:
    """Initialization and authentication."""

    def test_missing_vault_addr_raises(self, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR", raising=False)

        with pytest.raises(ValueError, match="VAULT_ADDR"):
            VaultClient()

    def test_missing_approle_credentials_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_SECRET_ID")

        with pytest.raises(ValueError, match="VAULT_ROLE_ID"):
            VaultClient()

    def test_login_failure_raises_permission_error(self, hvac_client):
        hvac_client.auth.approle.login.side_effect = Forbidden("bad role")

        with pytest.raises(PermissionError, match="AppRole"):
            VaultClient()

    def test_valid_approle_authenticates(self, hvac_client):
        client = VaultClient()

        assert client.client.token == "tok"
        hvac_client.auth.approle.login.assert_called_once_with(role_id="role", secret_id="secret")


class TestGetSecret:
    """Secret retrieval - paths automatically scoped to invoicing/."""

    def test_returns_field_value(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({"url": "postgresql://x"})

        assert VaultClient().get_secret("database", "url") == "postgresql://x"
        assert hvac_client.secrets.kv.v2.read_secret_version.call_args.kwargs["path"] == "invoicing/database"

    def test_missing_field_raises_key_error(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({"url": "x"})

        with pytest.raises(KeyError, match="password"):
            VaultClient().get_secret("database", "password")

    def test_missing_path_raises_permission_error(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath()

        with pytest.raises(PermissionError, match="invoicing/nope"):
            VaultClient().get_secret("nope", "url")

    def test_denied_path_raises_vault_error(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = Forbidden("denied")

        with pytest.raises(VaultError, match="invoicing/paypal"):
            VaultClient().read("paypal")


class TestConvenienceFunctions:

    def test_database_url_cached(self, hvac_client):
        read = hvac_client.secrets.kv.v2.read_secret_version
        read.return_value = _secret({"url": "postgresql://x"})

        assert get_database_url() == "postgresql://x"
        assert get_database_url() == "postgresql://x"
        assert read.call_count == 1

    def test_paypal_config(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({
            "client_id": "cid", "client_secret": "csecret", "base_url": "https://api-m.sandbox.paypal.com",
        })

        assert get_paypal_config() == {
            "client_id": "cid",
            "client_secret": "csecret",
            "base_url": "https://api-m.sandbox.paypal.com",
        }

    def test_paypal_config_single_read(self, hvac_client):
        read = hvac_client.secrets.kv.v2.read_secret_version
        read.return_value = _secret({"client_id": "cid", "client_secret": "csecret", "base_url": "https://x"})

        get_paypal_config()

        assert read.call_count == 1
        assert read.call_args.kwargs["path"] == "invoicing/paypal"

    def test_paypal_base_url_defaults_to_sandbox(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({
            "client_id": "cid", "client_secret": "csecret",
        })

        assert get_paypal_config()["base_url"] == PAYPAL_SANDBOX_URL

    def test_paypal_missing_secret_field_raises(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({"client_id": "cid"})

        with pytest.raises(KeyError, match="client_secret"):
            get_paypal_config()
