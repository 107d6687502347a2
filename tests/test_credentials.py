# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Credential bundle parsing and retrieval tests.
"""

import json

import pytest

from conftest import SECRET, SECRET_ID, FakeSecretStore
from mongobak.credentials import (
    DEFAULT_PORT,
    fetch_credentials,
    parse_credentials,
)
from mongobak.exceptions import CredentialError


def test_parse_full_secret():
    bundle = parse_credentials(json.dumps(SECRET), SECRET_ID)

    assert bundle.admin_username == "admin"
    assert bundle.admin_password == "s3cr3t-admin"
    assert bundle.app_username == "tasky_app"
    assert bundle.bucket == "tasky-backups"
    assert bundle.host == "localhost"
    assert bundle.port == DEFAULT_PORT
    assert bundle.database == "tasky"
    assert bundle.auth_source == "admin"
    assert bundle.address == "localhost:27017"


def test_passwords_hidden_from_repr():
    bundle = parse_credentials(json.dumps(SECRET), SECRET_ID)

    text = repr(bundle)
    assert "s3cr3t-admin" not in text
    assert "s3cr3t-app" not in text
    assert "admin" in text


@pytest.mark.parametrize("value", [None, "", "   ", "null"])
def test_missing_admin_password_is_credential_error(value):
    secret = {**SECRET, "MONGODB_ADMIN_PASSWORD": value}

    with pytest.raises(CredentialError) as exc_info:
        parse_credentials(json.dumps(secret), SECRET_ID)

    assert exc_info.value.details["missing"] == ["MONGODB_ADMIN_PASSWORD"]


def test_missing_bucket_without_override():
    secret = {k: v for k, v in SECRET.items() if k != "S3_BUCKET"}

    with pytest.raises(CredentialError) as exc_info:
        parse_credentials(json.dumps(secret), SECRET_ID)

    assert exc_info.value.details["missing"] == ["S3_BUCKET"]


def test_bucket_override_wins():
    secret = {k: v for k, v in SECRET.items() if k != "S3_BUCKET"}

    bundle = parse_credentials(json.dumps(secret), SECRET_ID, bucket_override="other-bucket")

    assert bundle.bucket == "other-bucket"


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"string"'])
def test_malformed_secret(raw):
    with pytest.raises(CredentialError):
        parse_credentials(raw, SECRET_ID)


@pytest.mark.parametrize("port", ["abc", "0", "70000"])
def test_invalid_port(port):
    with pytest.raises(CredentialError):
        parse_credentials(json.dumps({**SECRET, "MONGODB_PORT": port}), SECRET_ID)


def test_numeric_port_accepted():
    bundle = parse_credentials(json.dumps({**SECRET, "MONGODB_PORT": 27018}), SECRET_ID)

    assert bundle.port == 27018


@pytest.mark.asyncio
async def test_fetch_credentials_reads_secret_once():
    store = FakeSecretStore({SECRET_ID: SECRET})

    bundle = await fetch_credentials(store, SECRET_ID)

    assert bundle.admin_username == "admin"
    assert store.calls == [SECRET_ID]


@pytest.mark.asyncio
async def test_fetch_credentials_unreachable_store():
    store = FakeSecretStore({})

    with pytest.raises(CredentialError) as exc_info:
        await fetch_credentials(store, SECRET_ID)

    assert "unreachable" in exc_info.value.message
