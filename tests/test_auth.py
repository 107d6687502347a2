# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Database authentication setup tests.
"""

import json
from pathlib import Path

import pytest

from conftest import SECRET, SECRET_ID, FakeShell
from mongobak.auth import (
    PASSWORD_ENV,
    USER_EXISTS,
    USER_SKIPPED,
    apply_security_settings,
    authorization_enabled,
    configure_mongod,
    create_user_script,
    setup_authentication,
)
from mongobak.credentials import parse_credentials
from mongobak.exceptions import ConfigurationError, ConnectivityError


DEFAULT_CONF = """\
storage:
  dbPath: /var/lib/mongodb

net:
  port: 27017
  bindIp: 127.0.0.1

#security:
"""

SECURED_CONF = """\
net:
  port: 27017
  bindIp: 0.0.0.0

security:
  authorization: enabled
"""


# ============================================================================
# mongod.conf editing
# ============================================================================

def test_apply_security_settings_to_default_conf():
    text = apply_security_settings(DEFAULT_CONF)

    assert "bindIp: 0.0.0.0" in text
    assert "127.0.0.1" not in text
    assert authorization_enabled(text)
    assert "dbPath: /var/lib/mongodb" in text


def test_apply_security_settings_is_idempotent():
    once = apply_security_settings(DEFAULT_CONF)

    assert apply_security_settings(once) == once
    assert apply_security_settings(SECURED_CONF) == SECURED_CONF


def test_disabled_authorization_is_switched_on():
    text = apply_security_settings(SECURED_CONF.replace("enabled", "disabled"))

    assert authorization_enabled(text)
    assert "disabled" not in text


def test_commented_authorization_does_not_count():
    assert not authorization_enabled("#security:\n#  authorization: enabled\n")


def test_missing_sections_are_appended():
    text = apply_security_settings("storage:\n  dbPath: /data\n")

    assert "net:\n  bindIp: 0.0.0.0" in text
    assert "security:\n  authorization: enabled" in text


@pytest.mark.asyncio
async def test_configure_mongod_keeps_one_time_backup(temp_dir: Path):
    conf = temp_dir / "mongod.conf"
    conf.write_text(DEFAULT_CONF)

    changed, backup = await configure_mongod(conf)

    assert changed is True
    assert backup.read_text() == DEFAULT_CONF
    assert authorization_enabled(conf.read_text())

    changed_again, backup_again = await configure_mongod(conf)
    assert changed_again is False
    assert backup_again is None
    assert backup.read_text() == DEFAULT_CONF


@pytest.mark.asyncio
async def test_configure_missing_conf(temp_dir: Path):
    with pytest.raises(ConfigurationError):
        await configure_mongod(temp_dir / "absent.conf")


# ============================================================================
# User creation
# ============================================================================

def test_user_script_keeps_password_out_of_script():
    script = create_user_script("admin", "admin", [{"role": "clusterAdmin", "db": "admin"}])

    assert f"process.env.{PASSWORD_ENV}" in script
    assert 'getSiblingDB("admin")' in script
    assert "already exists" in script


@pytest.mark.asyncio
async def test_setup_before_authorization_uses_unauthenticated_shell(temp_dir: Path):
    conf = temp_dir / "mongod.conf"
    conf.write_text(DEFAULT_CONF)
    shell = FakeShell()
    credentials = parse_credentials(json.dumps(SECRET), SECRET_ID)

    result = await setup_authentication(shell, credentials, conf)

    assert [s["credentials"] for s in shell.scripts] == [None, None]
    assert shell.scripts[0]["env"] == {PASSWORD_ENV: "s3cr3t-admin"}
    assert shell.scripts[1]["env"] == {PASSWORD_ENV: "s3cr3t-app"}
    assert all("s3cr3t" not in s["script"] for s in shell.scripts)
    assert result.restart_required is True
    assert result.verified is False
    assert shell.pings == 0


@pytest.mark.asyncio
async def test_rerun_on_secured_server_verifies_login(temp_dir: Path):
    conf = temp_dir / "mongod.conf"
    conf.write_text(SECURED_CONF)
    shell = FakeShell()
    shell.evaluate_stdout = "exists\n"
    secret = {k: v for k, v in SECRET.items() if k != "MONGODB_PASSWORD"}
    credentials = parse_credentials(json.dumps(secret), SECRET_ID)

    result = await setup_authentication(shell, credentials, conf)

    assert shell.scripts[0]["credentials"] is credentials
    assert result.admin_user == USER_EXISTS
    assert result.app_user == USER_SKIPPED
    assert result.config_changed is False
    assert result.verified is True
    assert shell.pings == 1


@pytest.mark.asyncio
async def test_user_creation_failure(temp_dir: Path):
    conf = temp_dir / "mongod.conf"
    conf.write_text(DEFAULT_CONF)
    shell = FakeShell()
    shell.evaluate_stdout = "MongoServerError: not authorized\n"
    credentials = parse_credentials(json.dumps(SECRET), SECRET_ID)

    with pytest.raises(ConnectivityError):
        await setup_authentication(shell, credentials, conf)
