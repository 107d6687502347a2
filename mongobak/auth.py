# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
mongobak Auth - Secure a freshly installed mongod.

Creates the admin and application users (tolerating users that already
exist) and turns on authorization in mongod.conf, binding to all
interfaces. Every step is idempotent so the command can be re-run.
Restarting mongod after a configuration change is left to the operator.
"""

import json
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

import aiofiles
import structlog

from mongobak.credentials import CredentialBundle
from mongobak.exceptions import ConfigurationError, ConnectivityError
from mongobak.mongo import DatabaseShell

logger = structlog.get_logger()

ADMIN_ROLES: List[Any] = [
    {"role": "userAdminAnyDatabase", "db": "admin"},
    "readWriteAnyDatabase",
    "dbAdminAnyDatabase",
    "clusterAdmin",
]

PASSWORD_ENV = "MONGOBAK_NEW_USER_PASSWORD"

USER_CREATED = "created"
USER_EXISTS = "exists"
USER_SKIPPED = "skipped"

_AUTH_ENABLED = re.compile(r"^[ \t]*authorization:[ \t]*[\"']?enabled[\"']?[ \t]*$", re.M)
_AUTH_ANY = re.compile(r"^([ \t]*)authorization:.*$", re.M)
_BIND_IP = re.compile(r"^([ \t]*)bindIp:.*$", re.M)
_SECURITY = re.compile(r"^security:[ \t]*$", re.M)
_NET = re.compile(r"^net:[ \t]*$", re.M)


@dataclass
class AuthSetupResult:
    """Outcome of setup_authentication()."""

    admin_user: str
    app_user: str
    config_changed: bool
    restart_required: bool
    verified: bool
    config_backup: Path | None = None


def create_user_script(database: str, username: str, roles: List[Any]) -> str:
    """
    mongosh script creating one user, printing "created" or "exists".

    The password is read from the child environment, never from argv.
    """
    return (
        f"const target = db.getSiblingDB({json.dumps(database)});\n"
        "try {\n"
        "  target.createUser({\n"
        f"    user: {json.dumps(username)},\n"
        f"    pwd: process.env.{PASSWORD_ENV},\n"
        f"    roles: {json.dumps(roles)}\n"
        "  });\n"
        f"  print({json.dumps(USER_CREATED)});\n"
        "} catch (e) {\n"
        "  if (String(e.message).includes('already exists')) {\n"
        f"    print({json.dumps(USER_EXISTS)});\n"
        "  } else {\n"
        "    throw e;\n"
        "  }\n"
        "}\n"
    )


def authorization_enabled(conf_text: str) -> bool:
    return bool(_AUTH_ENABLED.search(conf_text))


def _insert_after(pattern: re.Pattern, text: str, line: str) -> str:
    match = pattern.search(text)
    return text[: match.end()] + "\n" + line + text[match.end():]


def apply_security_settings(conf_text: str) -> str:
    """
    Return mongod.conf text with authorization enabled and bindIp 0.0.0.0.

    Existing keys are rewritten in place; missing sections are appended.
    Text that already has both settings is returned unchanged.
    """
    text = conf_text

    if _BIND_IP.search(text):
        text = _BIND_IP.sub(r"\1bindIp: 0.0.0.0", text, count=1)
    elif _NET.search(text):
        text = _insert_after(_NET, text, "  bindIp: 0.0.0.0")
    else:
        text = text.rstrip("\n") + "\n\nnet:\n  bindIp: 0.0.0.0\n"

    if authorization_enabled(text):
        return text

    if _AUTH_ANY.search(text):
        return _AUTH_ANY.sub(r"\1authorization: enabled", text, count=1)
    if _SECURITY.search(text):
        return _insert_after(_SECURITY, text, "  authorization: enabled")
    return text.rstrip("\n") + "\n\nsecurity:\n  authorization: enabled\n"


async def read_mongod_conf(conf_path: Path) -> str:
    try:
        async with aiofiles.open(conf_path, "r") as f:
            return await f.read()
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read mongod configuration: {e}",
            details={"path": str(conf_path)},
        )


async def configure_mongod(conf_path: Path) -> tuple[bool, Path | None]:
    """
    Enable authorization and remote binding in mongod.conf.

    A copy of the original file is kept at <conf>.backup the first time
    the file is changed.

    Returns:
        (changed, backup path or None when nothing was changed)
    """
    original = await read_mongod_conf(conf_path)
    updated = apply_security_settings(original)

    if updated == original:
        logger.info("mongod_config_already_secured", path=str(conf_path))
        return False, None

    backup_path = conf_path.with_name(conf_path.name + ".backup")

    try:
        if not backup_path.exists():
            shutil.copy2(conf_path, backup_path)
        async with aiofiles.open(conf_path, "w") as f:
            await f.write(updated)
    except OSError as e:
        raise ConfigurationError(
            f"Cannot update mongod configuration: {e}",
            details={"path": str(conf_path)},
        )

    logger.info(
        "mongod_config_updated",
        path=str(conf_path),
        backup=str(backup_path),
    )
    return True, backup_path


async def _create_user(
    shell: DatabaseShell,
    credentials: CredentialBundle,
    connect_as: CredentialBundle | None,
    database: str,
    username: str,
    password: str,
    roles: List[Any],
) -> str:
    result = await shell.evaluate(
        create_user_script(database, username, roles),
        credentials=connect_as,
        host=credentials.host,
        port=credentials.port,
        env={PASSWORD_ENV: password},
    )

    lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    status = lines[-1] if lines else ""

    if not result.ok or status not in (USER_CREATED, USER_EXISTS):
        raise ConnectivityError(
            f"Failed to create MongoDB user {username!r}",
            details={"database": database, "output": result.tail()},
        )

    logger.info("mongodb_user_ensured", user=username, database=database, status=status)
    return status


async def setup_authentication(
    shell: DatabaseShell,
    credentials: CredentialBundle,
    conf_path: Path,
    health_check_timeout: float = 30.0,
) -> AuthSetupResult:
    """
    Create users and enable authorization on the local mongod.

    While authorization is still off, users are created over an
    unauthenticated connection; afterwards the admin credentials are used.

    Args:
        shell: mongosh wrapper
        credentials: Credential bundle with the users to create
        conf_path: mongod.conf to edit
        health_check_timeout: Timeout of the verification ping

    Returns:
        AuthSetupResult
    """
    conf_text = await read_mongod_conf(conf_path)
    connect_as = credentials if authorization_enabled(conf_text) else None

    admin_status = await _create_user(
        shell,
        credentials,
        connect_as,
        "admin",
        credentials.admin_username,
        credentials.admin_password,
        ADMIN_ROLES,
    )

    if credentials.app_username and credentials.app_password:
        app_status = await _create_user(
            shell,
            credentials,
            connect_as,
            credentials.database,
            credentials.app_username,
            credentials.app_password,
            [{"role": "readWrite", "db": credentials.database}],
        )
    else:
        logger.info("app_user_skipped", reason="no application user in secret")
        app_status = USER_SKIPPED

    changed, backup_path = await configure_mongod(conf_path)

    if changed:
        logger.warning(
            "mongod_restart_required",
            message="Restart mongod (systemctl restart mongod) to apply authorization",
        )
        verified = False
    else:
        await shell.ping(credentials, health_check_timeout)
        verified = True
        logger.info("authentication_verified", address=credentials.address)

    return AuthSetupResult(
        admin_user=admin_status,
        app_user=app_status,
        config_changed=changed,
        restart_required=changed,
        verified=verified,
        config_backup=backup_path,
    )
