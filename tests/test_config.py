"""
Tests for configuration loading, validation, accounts files and templates.
"""

import re
import stat

import pytest
import yaml

from exchange_sync.config.accounts import (
    load_accounts,
    load_store_factory,
    read_password_envs,
    save_accounts,
)
from exchange_sync.config.generator import (
    generate_default_accounts,
    generate_default_config,
    save_accounts_template,
    save_config_file,
)
from exchange_sync.config.loader import (
    VALID_KEYS,
    ConfigError,
    ConfigLoader,
    Settings,
)
from exchange_sync.stores.memory import create_memory_stores
from exchange_sync.sync.account import EntityType


@pytest.fixture
def loader(tmp_path):
    return ConfigLoader(config_dir=tmp_path)


def write_yaml(path, text):
    path.write_text(text, encoding="utf-8")
    return path


class TestConfigLoader:
    """Tests for reading config.yaml."""

    def test_missing_file_is_empty(self, loader):
        """Test that a missing config file yields an empty dict."""
        assert loader.load() == {}

    def test_empty_file_is_empty(self, loader, tmp_path):
        """Test that an empty config file yields an empty dict."""
        write_yaml(tmp_path / "config.yaml", "")
        assert loader.load() == {}

    def test_load(self, loader, tmp_path):
        """Test loading values from the default path."""
        write_yaml(tmp_path / "config.yaml", "verbose: true\npage_delay: 0.5\n")
        assert loader.load() == {"verbose": True, "page_delay": 0.5}

    def test_load_from_custom_file(self, loader, tmp_path):
        """Test loading an explicit file."""
        custom = write_yaml(tmp_path / "other.yaml", "api_max_retries: 5\n")
        assert loader.load_and_validate(custom) == {"api_max_retries": 5}

    def test_invalid_yaml(self, loader, tmp_path):
        """Test that unparsable YAML raises ConfigError."""
        write_yaml(tmp_path / "config.yaml", "verbose: [unclosed\n")
        with pytest.raises(ConfigError, match="Failed to parse"):
            loader.load()

    def test_non_mapping(self, loader, tmp_path):
        """Test that a top-level list is rejected."""
        write_yaml(tmp_path / "config.yaml", "- a\n- b\n")
        with pytest.raises(ConfigError, match="YAML dictionary"):
            loader.load()

    def test_config_dir_from_environment(self, tmp_path, monkeypatch):
        """Test that the config dir follows EXCHANGE_SYNC_CONFIG_DIR."""
        monkeypatch.setenv("EXCHANGE_SYNC_CONFIG_DIR", str(tmp_path))
        assert ConfigLoader().config_path == tmp_path.resolve() / "config.yaml"


class TestValidation:
    """Tests for ConfigLoader.validate()."""

    def test_valid_config(self, loader):
        """Test a config using every kind of value."""
        loader.validate(
            {
                "verbose": False,
                "api_max_retries": 0,
                "api_initial_retry_delay": 2,
                "page_delay": 0.0,
                "contacts_batch_size": 25,
                "oauth_client_id": "abc",
                "store_factory": "pkg.mod:make",
            }
        )

    def test_unknown_keys_ignored(self, loader):
        """Test that unknown keys do not fail validation."""
        loader.validate({"future_option": 1})

    @pytest.mark.parametrize(
        "config,message",
        [
            ({"verbose": "yes"}, "expected bool"),
            ({"api_max_retries": "3"}, "expected int"),
            ({"api_max_retries": True}, "expected int"),
            ({"page_delay": "fast"}, "expected int or float"),
            ({"mail_batch_size": 0}, "mail_batch_size must be >= 1"),
            ({"log_retention_count": 0}, "log_retention_count must be >= 1"),
            ({"api_max_retries": -1}, "api_max_retries must be >= 0"),
            ({"token_refresh_margin": -5}, "token_refresh_margin must be >= 0"),
            ({"api_initial_retry_delay": -0.5}, "must be >= 0"),
            ({"store_factory": "no_colon"}, "module:callable"),
        ],
    )
    def test_invalid_values(self, loader, config, message):
        """Test type and range errors."""
        with pytest.raises(ConfigError, match=message):
            loader.validate(config)

    def test_generated_config_validates(self, loader):
        """Test that uncommenting every documented option gives a valid config."""
        lines = [
            line[2:]
            for line in generate_default_config().splitlines()
            if re.match(r"^# [a-z_]+: ", line)
        ]
        config = yaml.safe_load("\n".join(lines))

        assert set(config) == set(VALID_KEYS)
        loader.validate(config)


class TestSettings:
    """Tests for typed settings accessors."""

    def test_defaults(self, tmp_path):
        """Test defaults when the config is empty."""
        settings = Settings({}, tmp_path)

        assert settings.verbose is False
        assert settings.max_retries == 3
        assert settings.base_delay == 1.0
        assert settings.page_delay == 0.1
        assert settings.batch_sizes == {
            EntityType.EMAIL: 50,
            EntityType.CONTACTS: 100,
            EntityType.CALENDAR: 50,
        }
        assert settings.database_path == tmp_path / "sync.db"
        assert settings.accounts_path == tmp_path / "accounts.yaml"
        assert settings.pid_file == tmp_path / "daemon.pid"
        assert settings.log_dir is None
        assert settings.log_retention_count == 10
        assert settings.oauth_client_id is None
        assert settings.oauth_tenant == "common"
        assert settings.token_refresh_margin == 300
        assert settings.store_factory is None

    def test_overrides(self, tmp_path):
        """Test configured values and path resolution."""
        absolute = tmp_path / "elsewhere" / "state.db"
        settings = Settings(
            {
                "contacts_batch_size": 10,
                "database_path": str(absolute),
                "log_dir": "logs",
                "api_initial_retry_delay": 2,
            },
            tmp_path,
        )

        assert settings.batch_sizes[EntityType.CONTACTS] == 10
        assert settings.batch_sizes[EntityType.EMAIL] == 50
        assert settings.database_path == absolute
        assert settings.log_dir == tmp_path / "logs"
        assert settings.base_delay == 2.0


ACCOUNTS_YAML = """
accounts:
  - id: work
    email: me@example.com
    display_name: Work
    server:
      ews_url: https://outlook.office365.com/EWS/Exchange.asmx
      auth_method: oauth2
    sync_settings:
      calendar: false
      sync_interval: 600
    last_sync:
      contacts: "2024-06-01T10:00:00Z"
  - id: legacy
    email: me@legacy.example.com
    server:
      auth_method: basic
      username: me
      password_env: LEGACY_PW
"""


class TestAccountsFile:
    """Tests for loading and saving accounts.yaml."""

    def test_load_accounts(self, tmp_path, monkeypatch):
        """Test parsing entries and reading passwords from the environment."""
        monkeypatch.setenv("LEGACY_PW", "s3cret")
        path = write_yaml(tmp_path / "accounts.yaml", ACCOUNTS_YAML)

        work, legacy = load_accounts(path)

        assert work.display_name == "Work"
        assert work.enabled_entity_types() == [EntityType.EMAIL, EntityType.CONTACTS]
        assert work.sync_settings.sync_interval == 600
        assert work.last_sync.contacts.hour == 10
        assert legacy.display_name == "me@legacy.example.com"
        assert legacy.credentials.password == "s3cret"

    def test_missing_password_env(self, tmp_path, monkeypatch):
        """Test an unset password variable leaves the password empty."""
        monkeypatch.delenv("LEGACY_PW", raising=False)
        path = write_yaml(tmp_path / "accounts.yaml", ACCOUNTS_YAML)

        legacy = load_accounts(path)[1]

        assert legacy.credentials.password is None

    def test_missing_file(self, tmp_path):
        """Test that no accounts file means no accounts."""
        assert load_accounts(tmp_path / "accounts.yaml") == []

    @pytest.mark.parametrize(
        "text,message",
        [
            ("accounts: {id: x}\n", "'accounts' list"),
            ("accounts:\n  - just-a-string\n", r"accounts\[0\] must be a mapping"),
            ("accounts:\n  - id: x\n", r"accounts\[0\]: Account entries require"),
            (
                "accounts:\n  - {id: x, email: a@x.com}\n  - {id: x, email: b@x.com}\n",
                "Duplicate account id 'x'",
            ),
            (
                "accounts:\n  - {id: x, email: a@x.com, server: {auth_method: ntlm}}\n",
                "Unknown auth_method",
            ),
            ("accounts: [unclosed\n", "Failed to parse"),
        ],
    )
    def test_invalid_accounts(self, tmp_path, text, message):
        """Test shape and entry errors."""
        path = write_yaml(tmp_path / "accounts.yaml", text)
        with pytest.raises(ConfigError, match=message):
            load_accounts(path)

    def test_save_round_trip_keeps_password_env(self, tmp_path, monkeypatch):
        """Test saving keeps password_env and never writes the password."""
        monkeypatch.setenv("LEGACY_PW", "s3cret")
        path = write_yaml(tmp_path / "accounts.yaml", ACCOUNTS_YAML)
        accounts = load_accounts(path)

        save_accounts(path, accounts, read_password_envs(path))

        text = path.read_text()
        assert "s3cret" not in text
        assert read_password_envs(path) == {"legacy": "LEGACY_PW"}
        reloaded = load_accounts(path)
        assert [a.id for a in reloaded] == ["work", "legacy"]
        assert reloaded[0].last_sync.contacts == accounts[0].last_sync.contacts
        assert not (tmp_path / "accounts.yaml.tmp").exists()


class TestStoreFactory:
    """Tests for resolving the store backend."""

    def test_default_is_memory(self):
        """Test that no setting selects the in-memory stores."""
        assert load_store_factory(None) is create_memory_stores

    def test_import_by_path(self):
        """Test resolving a module:callable path."""
        factory = load_store_factory("exchange_sync.stores.memory:create_memory_stores")
        assert factory is create_memory_stores

    @pytest.mark.parametrize(
        "target,message",
        [
            ("no_such_module_for_tests:make", "Cannot import"),
            ("os:sep", "is not callable"),
            ("os:", "Invalid store_factory"),
        ],
    )
    def test_bad_targets(self, target, message):
        """Test unresolvable factories raise ConfigError."""
        with pytest.raises(ConfigError, match=message):
            load_store_factory(target)


class TestTemplates:
    """Tests for config and accounts templates."""

    def test_save_config_file(self, tmp_path):
        """Test writing the config template with owner-only permissions."""
        path = tmp_path / "new" / "config.yaml"

        success, error = save_config_file(path)

        assert success
        assert error is None
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert path.read_text() == generate_default_config()

    def test_existing_file_not_overwritten(self, tmp_path):
        """Test that an existing file needs overwrite=True."""
        path = write_yaml(tmp_path / "config.yaml", "verbose: true\n")

        success, error = save_config_file(path)
        assert not success
        assert "--force" in error
        assert path.read_text() == "verbose: true\n"

        success, _ = save_config_file(path, overwrite=True)
        assert success

    def test_accounts_template_loads_empty(self, tmp_path):
        """Test the accounts template is a valid, empty accounts file."""
        path = tmp_path / "accounts.yaml"
        success, _ = save_accounts_template(path)

        assert success
        assert load_accounts(path) == []
        assert "password_env" in generate_default_accounts()
