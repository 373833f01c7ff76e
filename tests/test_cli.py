"""
Tests for the CLI module.

Tests the command-line interface using Click's testing utilities against a
temporary configuration directory and the in-memory stores.
"""

import json
import logging
import os

import pytest
import yaml
from click.testing import CliRunner

from exchange_sync import __version__
from exchange_sync.cli import cli
from exchange_sync.cli.main import get_config_dir, get_config_file
from exchange_sync.storage.db import SyncDatabase
from exchange_sync.utils.logging import ROOT_LOGGER_NAME

BASIC_ACCOUNTS_YAML = """
accounts:
  - id: work
    email: me@example.com
    display_name: Work
    server:
      ews_url: https://mail.example.com/EWS/Exchange.asmx
      auth_method: basic
      username: me
      password_env: WORK_PW
"""

OAUTH_ACCOUNTS_YAML = """
accounts:
  - id: cloud
    email: me@cloud.example.com
    server:
      auth_method: oauth2
"""


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Drop handlers bound to the runner's streams after each invocation."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    """Empty config dir; quiet logging keeps command output parseable."""
    monkeypatch.setenv("EXCHANGE_SYNC_LOG_LEVEL", "ERROR")
    monkeypatch.delenv("EXCHANGE_SYNC_CONFIG_FILE", raising=False)
    monkeypatch.delenv("EXCHANGE_SYNC_DEBUG", raising=False)
    return tmp_path


@pytest.fixture
def basic_config_dir(config_dir, monkeypatch):
    monkeypatch.setenv("WORK_PW", "s3cret")
    (config_dir / "accounts.yaml").write_text(BASIC_ACCOUNTS_YAML)
    return config_dir


def invoke(runner, config_dir, *args, **kwargs):
    return runner.invoke(cli, ["--config-dir", str(config_dir), *args], **kwargs)


class TestHelperFunctions:
    """Tests for CLI helper functions."""

    def test_get_config_dir_with_custom_path(self, tmp_path):
        """Test get_config_dir resolves an explicit path."""
        assert get_config_dir(str(tmp_path)) == tmp_path.resolve()

    def test_get_config_file_default(self, tmp_path):
        """Test the default config file lives in the config dir."""
        assert get_config_file(tmp_path, None) == tmp_path / "config.yaml"

    def test_get_config_file_explicit(self, tmp_path):
        """Test an explicit config file wins."""
        custom = tmp_path / "custom.yaml"
        assert get_config_file(tmp_path, str(custom)) == custom


class TestCliGroup:
    """Tests for the main CLI group."""

    def test_cli_help(self, runner):
        """Test that CLI shows help with every command."""
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "Exchange / Office365 Sync" in result.output
        for command in ("accounts", "status", "sync", "reset", "daemon"):
            assert command in result.output

    def test_cli_version(self, runner):
        """Test that CLI shows version."""
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_invalid_config_warns_and_continues(self, runner, config_dir):
        """Test that a broken config.yaml falls back to defaults."""
        (config_dir / "config.yaml").write_text("page_delay: fast\n")

        result = invoke(runner, config_dir, "accounts")

        assert result.exit_code == 0
        assert "Warning: Configuration error" in result.output
        assert "No accounts configured" in result.output


class TestInitConfigCommand:
    """Tests for the init-config command."""

    def test_creates_config_and_accounts(self, runner, config_dir):
        """Test both files are written."""
        result = invoke(runner, config_dir, "init-config")

        assert result.exit_code == 0
        assert "Configuration file created successfully!" in result.output
        assert (config_dir / "config.yaml").exists()
        assert (config_dir / "accounts.yaml").exists()

    def test_refuses_to_overwrite(self, runner, config_dir):
        """Test an existing config needs --force."""
        (config_dir / "config.yaml").write_text("verbose: false\n")

        result = invoke(runner, config_dir, "init-config")

        assert result.exit_code == 1
        assert "--force" in result.output
        assert (config_dir / "config.yaml").read_text() == "verbose: false\n"

    def test_keeps_existing_accounts_file(self, runner, basic_config_dir):
        """Test init-config leaves a configured accounts.yaml alone."""
        result = invoke(runner, basic_config_dir, "init-config")

        assert result.exit_code == 0
        text = (basic_config_dir / "accounts.yaml").read_text()
        assert text == BASIC_ACCOUNTS_YAML

    def test_force_overwrites(self, runner, basic_config_dir):
        """Test --force rewrites both templates."""
        (basic_config_dir / "config.yaml").write_text("verbose: false\n")

        result = invoke(runner, basic_config_dir, "init-config", "--force")

        assert result.exit_code == 0
        assert "verbose: false" not in (basic_config_dir / "config.yaml").read_text()
        assert "Created accounts file" in result.output


class TestAccountsCommand:
    """Tests for the accounts command."""

    def test_no_accounts(self, runner, config_dir):
        """Test the hint shown without an accounts file."""
        result = invoke(runner, config_dir, "accounts")

        assert result.exit_code == 0
        assert "No accounts configured" in result.output
        assert "init-config" in result.output

    def test_lists_accounts(self, runner, basic_config_dir):
        """Test account details are listed."""
        result = invoke(runner, basic_config_dir, "accounts")

        assert result.exit_code == 0
        assert "work" in result.output
        assert "me@example.com" in result.output
        assert "Auth:     basic" in result.output
        assert "Syncs:    email, contacts, calendar" in result.output
        assert "s3cret" not in result.output

    def test_invalid_accounts_file(self, runner, config_dir):
        """Test a malformed accounts file is an error."""
        (config_dir / "accounts.yaml").write_text("accounts: {id: x}\n")

        result = invoke(runner, config_dir, "accounts")

        assert result.exit_code == 1
        assert "Error:" in result.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_never_synced(self, runner, basic_config_dir):
        """Test status before the first sync."""
        result = invoke(runner, basic_config_dir, "status")

        assert result.exit_code == 0
        assert "=== Exchange Sync Status ===" in result.output
        assert "me@example.com (work)" in result.output
        assert result.output.count("Never synced") == 3

    def test_shows_persisted_state(self, runner, basic_config_dir):
        """Test the last error comes from the sync database."""
        database = SyncDatabase(basic_config_dir / "sync.db")
        database.initialize()
        database.update_sync_state("work", "email", last_error="Server busy")
        database.close()

        result = invoke(runner, basic_config_dir, "status")

        assert result.exit_code == 0
        assert "Last error: Server busy" in result.output

    def test_disabled_entity(self, runner, config_dir):
        """Test disabled entity types are reported as such."""
        (config_dir / "accounts.yaml").write_text(
            BASIC_ACCOUNTS_YAML + "    sync_settings:\n      email: false\n"
        )

        result = invoke(runner, config_dir, "status")

        assert result.exit_code == 0
        assert "Email: disabled" in result.output

    def test_unknown_account(self, runner, basic_config_dir):
        """Test an unknown --account is a usage error."""
        result = invoke(runner, basic_config_dir, "status", "--account", "nope")

        assert result.exit_code == 2
        assert "Unknown account 'nope'" in result.output

    def test_check_reachable(self, runner, basic_config_dir):
        """Test --check reports a reachable mailbox."""
        result = invoke(runner, basic_config_dir, "status", "--check")

        assert result.exit_code == 0, result.output
        assert "Connection: ok" in result.output

    def test_check_unreachable(self, runner, config_dir):
        """Test --check reports an account whose credentials cannot be used."""
        (config_dir / "accounts.yaml").write_text(OAUTH_ACCOUNTS_YAML)

        result = invoke(runner, config_dir, "status", "--check")

        assert result.exit_code == 0, result.output
        assert "Connection: failed" in result.output

    def test_no_check_by_default(self, runner, basic_config_dir):
        """Test plain status does not contact the server."""
        result = invoke(runner, basic_config_dir, "status")

        assert "Connection:" not in result.output


class TestSyncCommand:
    """Tests for the sync command."""

    def test_no_accounts(self, runner, config_dir):
        """Test syncing with nothing configured."""
        result = invoke(runner, config_dir, "sync")

        assert result.exit_code == 0
        assert "No accounts configured." in result.output

    def test_sync_success(self, runner, basic_config_dir):
        """Test a sync against empty stores succeeds and records state."""
        result = invoke(runner, basic_config_dir, "sync")

        assert result.exit_code == 0, result.output
        assert "Sync Summary for me@example.com" in result.output

        saved = yaml.safe_load((basic_config_dir / "accounts.yaml").read_text())
        last_sync = saved["accounts"][0]["last_sync"]
        assert last_sync["email"] is not None
        assert last_sync["contacts"] is not None
        assert saved["accounts"][0]["server"]["password_env"] == "WORK_PW"

        status = invoke(runner, basic_config_dir, "status")
        assert "Never synced" not in status.output
        assert "0 synced, 0 errors" in status.output

    def test_sync_json(self, runner, basic_config_dir):
        """Test --json prints the result keyed by account id."""
        result = invoke(runner, basic_config_dir, "sync", "--json", "-e", "contacts")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["work"]["success"] is True
        assert list(data["work"]["results"]) == ["contacts"]

    def test_sync_failure_exits_nonzero(self, runner, config_dir):
        """Test an OAuth2 account without oauth_client_id fails the sync."""
        (config_dir / "accounts.yaml").write_text(OAUTH_ACCOUNTS_YAML)

        result = invoke(runner, config_dir, "sync", "--account", "cloud")

        assert result.exit_code == 1
        assert "Email: FAILED: OAuth2 is not configured" in result.output

    def test_unknown_account(self, runner, basic_config_dir):
        """Test an unknown --account is a usage error."""
        result = invoke(runner, basic_config_dir, "sync", "--account", "nope")

        assert result.exit_code == 2
        assert "Unknown account 'nope'" in result.output

    def test_invalid_entity(self, runner, basic_config_dir):
        """Test --entity only accepts known entity types."""
        result = invoke(runner, basic_config_dir, "sync", "-e", "tasks")

        assert result.exit_code == 2


class TestResetCommand:
    """Tests for the reset command."""

    def test_reset_clears_state(self, runner, basic_config_dir):
        """Test reset forgets database rows and last_sync timestamps."""
        assert invoke(runner, basic_config_dir, "sync").exit_code == 0

        result = invoke(runner, basic_config_dir, "reset", "--yes")

        assert result.exit_code == 0
        assert "Sync state reset for all accounts." in result.output
        saved = yaml.safe_load((basic_config_dir / "accounts.yaml").read_text())
        assert not any(saved["accounts"][0].get("last_sync", {}).values())

        database = SyncDatabase(basic_config_dir / "sync.db")
        assert database.list_account_ids() == []
        database.close()

    def test_reset_aborted(self, runner, basic_config_dir):
        """Test declining the confirmation changes nothing."""
        result = invoke(runner, basic_config_dir, "reset", input="n\n")

        assert result.exit_code == 0
        assert "Aborted." in result.output


class TestDaemonCommands:
    """Tests for the daemon command group."""

    def test_daemon_help(self, runner):
        """Test the daemon group lists its subcommands."""
        result = runner.invoke(cli, ["daemon", "--help"])

        assert result.exit_code == 0
        for command in ("start", "stop", "status"):
            assert command in result.output

    def test_status_not_running(self, runner, config_dir):
        """Test status without a PID file."""
        result = invoke(runner, config_dir, "daemon", "status")

        assert result.exit_code == 0
        assert "Daemon is not running." in result.output

    def test_status_running(self, runner, config_dir):
        """Test status with a PID file naming a live process."""
        (config_dir / "daemon.pid").write_text(str(os.getpid()))

        result = invoke(runner, config_dir, "daemon", "status")

        assert result.exit_code == 0
        assert f"Daemon is running (PID: {os.getpid()})" in result.output

    def test_status_invalid_pid_file(self, runner, config_dir):
        """Test a corrupt PID file is reported."""
        (config_dir / "daemon.pid").write_text("not-a-pid")

        result = invoke(runner, config_dir, "daemon", "status")

        assert result.exit_code == 1
        assert "Invalid PID" in result.output

    def test_stop_not_running(self, runner, config_dir):
        """Test stop without a running daemon."""
        result = invoke(runner, config_dir, "daemon", "stop")

        assert result.exit_code == 0
        assert "No running daemon found." in result.output

    def test_start_invalid_interval(self, runner, config_dir):
        """Test a malformed --interval is rejected before anything starts."""
        result = invoke(runner, config_dir, "daemon", "start", "--interval", "soon")

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert not (config_dir / "daemon.pid").exists()
