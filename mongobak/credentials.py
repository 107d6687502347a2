# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Credentials - Credential bundle and secret store access.

The bundle is read once per run from a flat JSON secret. It lives in
process memory only and its passwords never appear in repr() or logs.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Protocol

import structlog

from mongobak.errors import explain_missing_bucket, explain_missing_secret_fields
from mongobak.exceptions import CredentialError

logger = structlog.get_logger()

# Secret JSON field names
ADMIN_USERNAME = "MONGODB_ADMIN_USERNAME"
ADMIN_PASSWORD = "MONGODB_ADMIN_PASSWORD"
APP_USERNAME = "MONGODB_USERNAME"
APP_PASSWORD = "MONGODB_PASSWORD"
HOST = "MONGODB_HOST"
PORT = "MONGODB_PORT"
DATABASE = "MONGODB_DATABASE"
AUTH_SOURCE = "MONGODB_AUTH_SOURCE"
BUCKET = "S3_BUCKET"

REQUIRED_FIELDS = (ADMIN_USERNAME, ADMIN_PASSWORD)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 27017
DEFAULT_DATABASE = "tasky"
DEFAULT_AUTH_SOURCE = "admin"


@dataclass(frozen=True)
class CredentialBundle:
    """Everything needed to reach the database and the backup bucket."""

    admin_username: str
    admin_password: str = field(repr=False)
    bucket: str
    app_username: str | None = None
    app_password: str | None = field(default=None, repr=False)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    database: str = DEFAULT_DATABASE
    auth_source: str = DEFAULT_AUTH_SOURCE

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class SecretStore(Protocol):
    """Anything that can return a secret's string value by name."""

    async def get_secret_string(self, secret_id: str) -> str: ...


class SecretsManagerStore:
    """SecretStore backed by AWS Secrets Manager."""

    def __init__(self, session: Any, region: str, endpoint_url: str | None = None):
        self._session = session
        self._region = region
        self._endpoint_url = endpoint_url

    async def get_secret_string(self, secret_id: str) -> str:
        try:
            async with self._session.create_client(
                "secretsmanager",
                region_name=self._region,
                endpoint_url=self._endpoint_url,
            ) as client:
                response = await client.get_secret_value(SecretId=secret_id)
        except Exception as e:
            raise CredentialError(
                f"Could not retrieve secret from Secrets Manager: {e}",
                details={"secret_id": secret_id},
            )

        secret = response.get("SecretString")
        if not secret:
            raise CredentialError(
                "Secret has no string value",
                details={"secret_id": secret_id},
            )
        return secret


def _field(data: Dict[str, Any], name: str) -> str | None:
    """Read a field, treating null and blank values as absent."""
    value = data.get(name)
    if value is None:
        return None
    value = str(value).strip()
    if not value or value == "null":
        return None
    return value


def _parse_port(value: str | None, secret_id: str) -> int:
    if value is None:
        return DEFAULT_PORT
    try:
        port = int(value)
    except ValueError:
        port = 0
    if not 0 < port < 65536:
        raise CredentialError(
            f"Invalid {PORT} in secret: {value!r}",
            details={"secret_id": secret_id},
        )
    return port


def parse_credentials(
    secret_string: str,
    secret_id: str,
    bucket_override: str | None = None,
) -> CredentialBundle:
    """
    Parse a secret's JSON object into a CredentialBundle.

    Args:
        secret_string: Raw secret value
        secret_id: Secret name (for error messages)
        bucket_override: Bucket to use instead of the secret's S3_BUCKET

    Returns:
        CredentialBundle

    Raises:
        CredentialError: If the JSON is malformed or required fields are missing
    """
    try:
        data = json.loads(secret_string)
    except (TypeError, ValueError) as e:
        raise CredentialError(
            f"Secret is not valid JSON: {e}",
            details={"secret_id": secret_id},
        )

    if not isinstance(data, dict):
        raise CredentialError(
            "Secret must be a flat JSON object",
            details={"secret_id": secret_id},
        )

    missing = [name for name in REQUIRED_FIELDS if _field(data, name) is None]
    if missing:
        raise CredentialError(
            explain_missing_secret_fields(secret_id, missing),
            details={"secret_id": secret_id, "missing": sorted(missing)},
        )

    bucket = bucket_override or _field(data, BUCKET)
    if not bucket:
        raise CredentialError(
            explain_missing_bucket(secret_id),
            details={"secret_id": secret_id, "missing": [BUCKET]},
        )

    return CredentialBundle(
        admin_username=_field(data, ADMIN_USERNAME),
        admin_password=_field(data, ADMIN_PASSWORD),
        bucket=bucket,
        app_username=_field(data, APP_USERNAME),
        app_password=_field(data, APP_PASSWORD),
        host=_field(data, HOST) or DEFAULT_HOST,
        port=_parse_port(_field(data, PORT), secret_id),
        database=_field(data, DATABASE) or DEFAULT_DATABASE,
        auth_source=_field(data, AUTH_SOURCE) or DEFAULT_AUTH_SOURCE,
    )


async def fetch_credentials(
    store: SecretStore,
    secret_id: str,
    bucket_override: str | None = None,
) -> CredentialBundle:
    """
    Read and parse the credential bundle for this run.

    Raises:
        CredentialError: If the store is unreachable or the secret is incomplete
    """
    logger.info("credentials_fetch_started", secret_id=secret_id)

    try:
        secret_string = await store.get_secret_string(secret_id)
    except CredentialError:
        raise
    except Exception as e:
        raise CredentialError(
            f"Secret store unreachable: {e}",
            details={"secret_id": secret_id},
        )

    bundle = parse_credentials(secret_string, secret_id, bucket_override)

    logger.info(
        "credentials_retrieved",
        secret_id=secret_id,
        admin_username=bundle.admin_username,
        address=bundle.address,
        bucket=bundle.bucket,
    )
    return bundle
