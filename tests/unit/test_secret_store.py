"""Tests for the Secrets Manager password store."""

import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from swarm_manager.exceptions import SecretStoreError
from swarm_manager.secret_store import SecretStore


def client_error(code: str, operation: str = "GetSecretValue") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def secretsmanager():
    return MagicMock()


@pytest.fixture
def store(secretsmanager):
    return SecretStore("prod/app", "us-east-1", client=secretsmanager)


def test_default_client_uses_region():
    with patch("boto3.client") as mock_client:
        SecretStore("prod/app", "us-east-1")

    mock_client.assert_called_once_with("secretsmanager", region_name="us-east-1")


def test_read_missing_secret(store, secretsmanager):
    secretsmanager.get_secret_value.side_effect = client_error("ResourceNotFoundException")

    assert store.read() is None


def test_merge_preserves_other_keys(store, secretsmanager):
    secretsmanager.get_secret_value.return_value = {
        "SecretString": json.dumps({"DB_PASSWORD": "db", "API_KEY": "api"})
    }

    document = store.merge_key("Infrastructure_CERTIFICATE_PASSWORD", "s3cret")

    assert document == {
        "DB_PASSWORD": "db",
        "API_KEY": "api",
        "Infrastructure_CERTIFICATE_PASSWORD": "s3cret",
    }
    kwargs = secretsmanager.put_secret_value.call_args.kwargs
    assert kwargs["SecretId"] == "prod/app"
    assert json.loads(kwargs["SecretString"]) == document
    secretsmanager.create_secret.assert_not_called()


def test_merge_replaces_existing_key(store, secretsmanager):
    secretsmanager.get_secret_value.return_value = {
        "SecretString": json.dumps({"Infrastructure_CERTIFICATE_PASSWORD": "old"})
    }

    document = store.merge_key("Infrastructure_CERTIFICATE_PASSWORD", "new")

    assert document == {"Infrastructure_CERTIFICATE_PASSWORD": "new"}


def test_merge_creates_missing_secret(store, secretsmanager):
    secretsmanager.get_secret_value.side_effect = client_error("ResourceNotFoundException")

    store.merge_key("Infrastructure_CERTIFICATE_PASSWORD", "s3cret")

    kwargs = secretsmanager.create_secret.call_args.kwargs
    assert kwargs["Name"] == "prod/app"
    assert json.loads(kwargs["SecretString"]) == {"Infrastructure_CERTIFICATE_PASSWORD": "s3cret"}
    secretsmanager.put_secret_value.assert_not_called()


def test_invalid_json_is_not_overwritten(store, secretsmanager):
    secretsmanager.get_secret_value.return_value = {"SecretString": "not json"}

    with pytest.raises(SecretStoreError):
        store.merge_key("Infrastructure_CERTIFICATE_PASSWORD", "s3cret")

    secretsmanager.put_secret_value.assert_not_called()


def test_non_object_document_is_rejected(store, secretsmanager):
    secretsmanager.get_secret_value.return_value = {"SecretString": "[1, 2]"}

    with pytest.raises(SecretStoreError):
        store.read()


def test_write_failure_raises(store, secretsmanager):
    secretsmanager.get_secret_value.return_value = {"SecretString": "{}"}
    secretsmanager.put_secret_value.side_effect = client_error(
        "AccessDeniedException", "PutSecretValue"
    )

    with pytest.raises(SecretStoreError):
        store.merge_key("Infrastructure_CERTIFICATE_PASSWORD", "s3cret")
