# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Exceptions - One exception type per workflow step.

Every error is terminal for the current run. The CLI maps each kind to
its own process exit code.
"""


class MongoBakError(Exception):
    """Base exception for all mongobak errors."""

    exit_code = 1

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(MongoBakError):
    """Raised when configuration is invalid."""

    exit_code = 2


class PrerequisiteError(MongoBakError):
    """Raised when a tool is missing, disk is short, or AWS identity is unreachable."""

    exit_code = 3


class CredentialError(MongoBakError):
    """Raised when the secret cannot be read or lacks required fields."""

    exit_code = 4


class ConnectivityError(MongoBakError):
    """Raised when the database health check fails."""

    exit_code = 5


class DumpError(MongoBakError):
    """Raised when mongodump fails or produces nothing."""

    exit_code = 6


class PackagingError(MongoBakError):
    """Raised when the dump cannot be archived."""

    exit_code = 7


class TransferError(MongoBakError):
    """Raised when S3 operations fail."""

    exit_code = 8


class RestoreError(MongoBakError):
    """Raised when restore operations fail."""

    exit_code = 9


class JournalError(MongoBakError):
    """Raised when the local run journal cannot be written."""

    exit_code = 10
