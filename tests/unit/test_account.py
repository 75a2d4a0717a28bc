"""Tests for the ACME account key store."""

from unittest.mock import MagicMock

import josepy as jose
import pytest
from botocore.exceptions import ClientError

from wildcert.issuer.account import AccountKeyStore
from wildcert.issuer.keys import generate_account_key


@pytest.fixture(scope="module")
def account_key() -> jose.JWKRSA:
    """Account key shared by the tests in this module."""
    return generate_account_key()


def _error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestAccountKeyStore:
    """Tests for AccountKeyStore."""

    def test_loads_existing_key(self, account_key):
        """Test an existing secret is parsed as a JWK."""
        client = MagicMock()
        client.get_secret_value.return_value = {
            "SecretString": account_key.json_dumps()
        }
        store = AccountKeyStore("wildcert/acme-account", secrets_client=client)

        assert store.load_or_create() == account_key
        client.create_secret.assert_not_called()

    def test_creates_missing_secret(self):
        """Test a new key is generated and stored when the secret is missing."""
        client = MagicMock()
        client.get_secret_value.side_effect = _error(
            "ResourceNotFoundException", "GetSecretValue"
        )
        store = AccountKeyStore("wildcert/acme-account", secrets_client=client)

        key = store.load_or_create()

        kwargs = client.create_secret.call_args.kwargs
        assert kwargs["Name"] == "wildcert/acme-account"
        assert jose.JWKRSA.json_loads(kwargs["SecretString"]) == key

    def test_concurrent_create(self, account_key):
        """Test losing the create race re-reads the winner's key."""
        client = MagicMock()
        client.get_secret_value.side_effect = [
            _error("ResourceNotFoundException", "GetSecretValue"),
            {"SecretString": account_key.json_dumps()},
        ]
        client.create_secret.side_effect = _error(
            "ResourceExistsException", "CreateSecret"
        )
        store = AccountKeyStore("wildcert/acme-account", secrets_client=client)

        assert store.load_or_create() == account_key
        assert client.get_secret_value.call_count == 2

    def test_other_errors_raise(self):
        """Test access errors are not mistaken for a missing secret."""
        client = MagicMock()
        client.get_secret_value.side_effect = _error("AccessDeniedException", "Get")
        store = AccountKeyStore("wildcert/acme-account", secrets_client=client)

        with pytest.raises(ClientError):
            store.load_or_create()
        client.create_secret.assert_not_called()

    def test_ephemeral_key(self):
        """Test no secret id gives a fresh key without touching AWS."""
        client = MagicMock()
        store = AccountKeyStore("", secrets_client=client)

        assert isinstance(store.load_or_create(), jose.JWKRSA)
        client.get_secret_value.assert_not_called()
