"""
Unit tests for configuration loading, validation and generation.
"""

from pathlib import Path

import pytest
import yaml

from gcontact_relay.config.generator import generate_default_config, save_config_file
from gcontact_relay.config.loader import ConfigError, ConfigLoader
from gcontact_relay.config.relay_config import (
    DEFAULT_LOCK_LEASE_SECONDS,
    DEFAULT_LOCK_TIMEOUT_MS,
    DEFAULT_SYNC_LABEL,
    ConfigurationError,
    PartyIdentity,
    RelayConfig,
    load_config,
)
from gcontact_relay.sync.record import ALL_FIELDS

PARTIES = ["alice@example.com", "bob@example.com"]


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path / "config"


def write_config(config_dir: Path, data) -> Path:
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / "config.yaml"
    path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data)
    return path


# ==============================================================================
# ConfigLoader
# ==============================================================================


class TestConfigLoader:
    """Tests for YAML loading."""

    def test_missing_file_returns_empty(self, config_dir):
        """A missing file is not an error."""
        assert ConfigLoader(config_dir=config_dir).load() == {}

    def test_empty_file_returns_empty(self, config_dir):
        write_config(config_dir, "")
        assert ConfigLoader(config_dir=config_dir).load() == {}

    def test_loads_dictionary(self, config_dir):
        write_config(config_dir, {"parties": PARTIES, "sync_label": "Family"})

        config = ConfigLoader(config_dir=config_dir).load()

        assert config["sync_label"] == "Family"

    def test_invalid_yaml_raises(self, config_dir):
        write_config(config_dir, "parties: [unclosed")
        with pytest.raises(ConfigError, match="parse YAML"):
            ConfigLoader(config_dir=config_dir).load()

    def test_non_dictionary_raises(self, config_dir):
        write_config(config_dir, "- a\n- b\n")
        with pytest.raises(ConfigError, match="YAML dictionary"):
            ConfigLoader(config_dir=config_dir).load()

    def test_load_from_explicit_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("sync_label: Custom\n")

        assert ConfigLoader().load_from_file(path) == {"sync_label": "Custom"}


class TestConfigValidation:
    """Tests for type and range validation."""

    @pytest.fixture
    def loader(self, config_dir):
        return ConfigLoader(config_dir=config_dir)

    def test_valid_config(self, loader):
        loader.validate(
            {
                "parties": PARTIES,
                "lock_timeout_ms": 0,
                "api_initial_retry_delay": 0.5,
                "daemon_interval": "15m",
            }
        )

    def test_unknown_keys_are_ignored(self, loader):
        loader.validate({"something_new": 1})

    def test_wrong_type(self, loader):
        with pytest.raises(ConfigError, match="expected int"):
            loader.validate({"lock_timeout_ms": "soon"})

    def test_bool_is_not_an_int(self, loader):
        with pytest.raises(ConfigError, match="lock_timeout_ms"):
            loader.validate({"lock_timeout_ms": True})

    def test_party_entries_must_be_strings(self, loader):
        with pytest.raises(ConfigError, match=r"parties\[1\]"):
            loader.validate({"parties": ["a", 2]})

    def test_negative_values_rejected(self, loader):
        with pytest.raises(ConfigError, match="log_retention_rows must be >= 0"):
            loader.validate({"log_retention_rows": -1})

    def test_positive_values_required(self, loader):
        with pytest.raises(ConfigError, match="api_page_size must be >= 1"):
            loader.validate({"api_page_size": 0})

    def test_lease_must_be_positive(self, loader):
        with pytest.raises(ConfigError, match="lock_lease_seconds must be >= 1"):
            loader.validate({"lock_lease_seconds": 0})

    def test_retry_delay_must_be_positive(self, loader):
        with pytest.raises(ConfigError, match="api_max_retry_delay"):
            loader.validate({"api_max_retry_delay": 0})


# ==============================================================================
# RelayConfig
# ==============================================================================


class TestRelayConfig:
    """Tests for the immutable relay configuration."""

    def test_defaults(self, config_dir):
        config = RelayConfig.from_dict({"parties": PARTIES}, config_dir=config_dir)

        assert config.parties == tuple(PARTIES)
        assert config.sync_label == DEFAULT_SYNC_LABEL
        assert config.lock_timeout_ms == DEFAULT_LOCK_TIMEOUT_MS
        assert config.sync_fields == ALL_FIELDS
        assert config.buffer_backend == "sqlite"
        assert config.buffer_path == config_dir.resolve() / "buffer.db"
        assert config.lock_file == config_dir.resolve() / "relay.lock"
        assert config.lock_lease_seconds == DEFAULT_LOCK_LEASE_SECONDS

    def test_is_immutable(self, config_dir):
        config = RelayConfig.from_dict({"parties": PARTIES}, config_dir=config_dir)
        with pytest.raises(AttributeError):
            config.sync_label = "Other"  # type: ignore[misc]

    def test_requires_two_parties(self, config_dir):
        with pytest.raises(ConfigurationError, match="Exactly two parties"):
            RelayConfig.from_dict({"parties": PARTIES[:1]}, config_dir=config_dir)

    def test_parties_must_be_distinct(self, config_dir):
        with pytest.raises(ConfigurationError, match="distinct"):
            RelayConfig.from_dict(
                {"parties": [PARTIES[0], PARTIES[0]]}, config_dir=config_dir
            )

    def test_parties_required(self, config_dir):
        with pytest.raises(ConfigurationError, match="parties must be a list"):
            RelayConfig.from_dict({}, config_dir=config_dir)

    def test_unknown_sync_field(self, config_dir):
        with pytest.raises(ConfigurationError, match="Unknown sync_fields: photos"):
            RelayConfig.from_dict(
                {"parties": PARTIES, "sync_fields": ["names", "photos"]},
                config_dir=config_dir,
            )

    def test_sync_fields_deduplicated(self, config_dir):
        config = RelayConfig.from_dict(
            {"parties": PARTIES, "sync_fields": ["names", "names", "urls"]},
            config_dir=config_dir,
        )
        assert config.sync_fields == ("names", "urls")

    def test_empty_label_rejected(self, config_dir):
        with pytest.raises(ConfigurationError, match="sync_label"):
            RelayConfig.from_dict(
                {"parties": PARTIES, "sync_label": "  "}, config_dir=config_dir
            )

    def test_sheet_backend_requires_spreadsheet(self, config_dir):
        with pytest.raises(ConfigurationError, match="spreadsheet_id"):
            RelayConfig.from_dict(
                {"parties": PARTIES, "buffer_backend": "sheet"}, config_dir=config_dir
            )

    def test_sheet_backend_has_no_buffer_path(self, config_dir):
        config = RelayConfig.from_dict(
            {"parties": PARTIES, "buffer_backend": "sheet", "spreadsheet_id": "abc"},
            config_dir=config_dir,
        )
        assert config.buffer_path is None
        assert config.lock_file is None

    def test_sheet_backend_keeps_explicit_lock_file(self, config_dir):
        config = RelayConfig.from_dict(
            {
                "parties": PARTIES,
                "buffer_backend": "sheet",
                "spreadsheet_id": "abc",
                "lock_file": "~/relay.lock",
            },
            config_dir=config_dir,
        )
        assert config.lock_file == Path("~/relay.lock").expanduser()

    def test_sqlite_backend_requires_buffer_path(self):
        with pytest.raises(ConfigurationError, match="buffer_path is required"):
            RelayConfig(
                sync_label="Synced",
                parties=tuple(PARTIES),
                lock_timeout_ms=0,
                log_retention_rows=10,
                log_error_max_length=100,
                sync_fields=ALL_FIELDS,
                lock_file=Path("relay.lock"),
            )

    def test_sqlite_backend_requires_lock_file(self):
        with pytest.raises(ConfigurationError, match="lock_file is required"):
            RelayConfig(
                sync_label="Synced",
                parties=tuple(PARTIES),
                lock_timeout_ms=0,
                log_retention_rows=10,
                log_error_max_length=100,
                sync_fields=ALL_FIELDS,
                buffer_path=Path("buffer.db"),
            )

    @pytest.mark.parametrize("lease", [0, -5, True, "900"])
    def test_invalid_lease_rejected(self, config_dir, lease):
        with pytest.raises(ConfigurationError, match="lock_lease_seconds"):
            RelayConfig.from_dict(
                {"parties": PARTIES, "lock_lease_seconds": lease},
                config_dir=config_dir,
            )

    def test_unknown_backend(self, config_dir):
        with pytest.raises(ConfigurationError, match="buffer_backend"):
            RelayConfig.from_dict(
                {"parties": PARTIES, "buffer_backend": "redis"}, config_dir=config_dir
            )

    def test_party_validation(self, config_dir):
        config = RelayConfig.from_dict({"parties": PARTIES}, config_dir=config_dir)

        assert config.party(PARTIES[0]) == PartyIdentity(PARTIES[0])
        assert config.other_party(PARTIES[0]).identifier == PARTIES[1]
        assert config.other_party(PartyIdentity(PARTIES[1])).identifier == PARTIES[0]
        with pytest.raises(ConfigurationError, match="Unknown party"):
            config.party("eve@example.com")


class TestLoadConfig:
    """Tests for load_config()."""

    def test_loads_from_directory(self, config_dir):
        write_config(config_dir, {"parties": PARTIES, "lock_timeout_ms": 100})

        config = load_config(config_dir)

        assert config.lock_timeout_ms == 100

    def test_missing_configuration(self, config_dir):
        with pytest.raises(ConfigurationError, match="init-config"):
            load_config(config_dir)

    def test_invalid_types(self, config_dir):
        write_config(config_dir, {"parties": PARTIES, "lock_timeout_ms": "x"})
        with pytest.raises(ConfigError):
            load_config(config_dir)


# ==============================================================================
# Generator
# ==============================================================================


class TestGenerator:
    """Tests for the default configuration file."""

    def test_generated_config_loads(self, config_dir):
        """The generated file should be valid as-is."""
        data = yaml.safe_load(generate_default_config(PARTIES))

        ConfigLoader(config_dir=config_dir).validate(data)
        config = RelayConfig.from_dict(data, config_dir=config_dir)
        assert config.parties == tuple(PARTIES)

    def test_placeholders_without_parties(self):
        data = yaml.safe_load(generate_default_config())
        assert len(data["parties"]) == 2

    def test_save_config_file(self, config_dir):
        path = config_dir / "config.yaml"

        success, error = save_config_file(path, parties=PARTIES)

        assert success
        assert error is None
        assert path.stat().st_mode & 0o777 == 0o600

    def test_save_refuses_to_overwrite(self, config_dir):
        path = write_config(config_dir, {"parties": PARTIES})

        success, error = save_config_file(path)

        assert not success
        assert "--force" in error

    def test_save_with_overwrite(self, config_dir):
        path = write_config(config_dir, "old: true\n")

        success, _ = save_config_file(path, overwrite=True)

        assert success
        assert "old" not in path.read_text()
