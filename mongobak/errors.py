# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for mongobak.

These helpers centralize wording for common configuration and credential
errors so that all modules present consistent, actionable messages.
"""

from typing import Iterable


def explain_missing_secret_fields(secret_id: str, fields: Iterable[str]) -> str:
    """
    Explain that the credentials secret lacks required fields.
    """

    names = ", ".join(sorted(fields))
    return (
        f"Secret {secret_id!r} is missing required fields: {names}. "
        "Add them to the secret's JSON object in AWS Secrets Manager."
    )


def explain_missing_bucket(secret_id: str) -> str:
    """
    Explain that no S3 bucket is known for the run.
    """

    return (
        "S3 bucket is not configured. "
        f"Add S3_BUCKET to secret {secret_id!r}, set the S3_BUCKET environment "
        "variable, or pass bucket=... to create_config()."
    )


def explain_invalid_retention_days_env(value: str | None) -> str:
    """
    Explain that MONGOBAK_RETENTION_DAYS is invalid.
    """

    return (
        f"Invalid MONGOBAK_RETENTION_DAYS value: {value!r}. "
        "It must be a positive integer number of days."
    )


def explain_invalid_integer_env(name: str, value: str | None) -> str:
    """
    Explain that an integer environment variable could not be parsed.
    """

    return f"Invalid {name} value: {value!r}. It must be a non-negative integer."


def explain_missing_tool(tool: str) -> str:
    """
    Explain that a MongoDB command-line tool is not installed.
    """

    return (
        f"{tool} not found on PATH. "
        "Install the MongoDB Shell and MongoDB Database Tools."
    )
