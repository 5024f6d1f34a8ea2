"""Tests for configuration loading (igdmap/config/config.py)."""

from __future__ import annotations

import json

import pytest
import toml

from igdmap.config.config import (
    ConfigManager,
    coerce_env_value,
    deep_merge,
    env_overrides,
    get_config,
    init_config,
    reset_config,
    set_config,
)
from igdmap.exceptions import ConfigurationError
from igdmap.models import Config, LogLevel, MappingProtocol

pytestmark = [pytest.mark.unit]


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_defaults_without_file(self):
        manager = ConfigManager()

        assert manager.config_file is None
        assert manager.config.discovery.multicast_address == "239.255.255.250"
        assert manager.config.discovery.multicast_port == 1900
        assert manager.config.mapping.ttl == 1800
        assert manager.config.mapping.description == "igdmap"

    def test_explicit_file(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text(
            toml.dumps(
                {
                    "discovery": {"multicast_port": 1901, "unique_locations": True},
                    "mapping": {"protocol": "udp", "ttl": 600},
                }
            )
        )

        config = ConfigManager(path).config

        assert config.discovery.multicast_port == 1901
        assert config.discovery.unique_locations is True
        assert config.mapping.protocol is MappingProtocol.UDP
        assert config.mapping.ttl == 600

    def test_found_in_working_directory(self, tmp_path):
        """Test that ./igdmap.toml is picked up automatically."""
        (tmp_path / "igdmap.toml").write_text('[http]\nrequest_timeout = 3.5\n')

        manager = ConfigManager()

        assert manager.config_file == tmp_path / "igdmap.toml"
        assert manager.config.http.request_timeout == 3.5

    def test_found_in_home(self, tmp_path, monkeypatch):
        config_dir = tmp_path / ".config" / "igdmap"
        config_dir.mkdir(parents=True)
        (config_dir / "igdmap.toml").write_text('[observability]\nlog_level = "debug"\n')
        (tmp_path / "work").mkdir()

        monkeypatch.chdir(tmp_path / "work")
        manager = ConfigManager()

        assert manager.config.observability.log_level is LogLevel.DEBUG

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[discovery\nmulticast_port = ")

        with pytest.raises(ConfigurationError):
            ConfigManager(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "invalid.toml"
        path.write_text("[discovery]\naccepted_services = []\n")

        with pytest.raises(ConfigurationError):
            ConfigManager(path)


class TestEnvironmentOverrides:
    """Tests for IGDMAP_* environment variables."""

    def test_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "igdmap.toml"
        path.write_text("[discovery]\nmulticast_port = 1901\n")
        monkeypatch.setenv("IGDMAP_MULTICAST_PORT", "1902")

        config = ConfigManager(path).config

        assert config.discovery.multicast_port == 1902

    def test_value_coercion(self, monkeypatch):
        monkeypatch.setenv("IGDMAP_MULTICAST_ADDRESS", "239.255.255.251")
        monkeypatch.setenv("IGDMAP_DISCOVERY_TIMEOUT", "2.5")
        monkeypatch.setenv("IGDMAP_UNIQUE_LOCATIONS", "yes")
        monkeypatch.setenv("IGDMAP_MAPPING_PORT_SCAN", "off")
        monkeypatch.setenv("IGDMAP_INTERFACES", "eth0, wlan0")
        monkeypatch.setenv("IGDMAP_LOG_LEVEL", "warning")
        monkeypatch.setenv("IGDMAP_MAPPING_PROTOCOL", "udp")

        config = ConfigManager().config

        assert config.discovery.multicast_address == "239.255.255.251"
        assert config.discovery.timeout == 2.5
        assert config.discovery.unique_locations is True
        assert config.mapping.port_scan is False
        assert config.discovery.interfaces == ["eth0", "wlan0"]
        assert config.observability.log_level is LogLevel.WARNING
        assert config.mapping.protocol is MappingProtocol.UDP

    def test_numeric_description_stays_string(self, monkeypatch):
        monkeypatch.setenv("IGDMAP_MAPPING_DESCRIPTION", "1234")

        assert ConfigManager().config.mapping.description == "1234"

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("IGDMAP_MULTICAST_PORT", "70000")

        with pytest.raises(ConfigurationError):
            ConfigManager()


class TestExport:
    """Tests for configuration export."""

    def test_toml_round_trip(self):
        manager = ConfigManager()

        data = toml.loads(manager.export("toml"))

        assert data["discovery"]["multicast_port"] == 1900
        assert data["mapping"]["protocol"] == "TCP"

    def test_json(self):
        data = json.loads(ConfigManager().export("json"))

        assert data["http"]["request_timeout"] == 10.0

    def test_unsupported_format(self):
        with pytest.raises(ConfigurationError):
            ConfigManager().export("yaml")


class TestGlobalConfig:
    """Tests for the module-level configuration accessors."""

    def test_get_config_lazily_loads(self):
        reset_config()

        assert isinstance(get_config(), Config)

    def test_init_and_set(self, tmp_path):
        path = tmp_path / "igdmap.toml"
        path.write_text("[mapping]\nttl = 60\n")

        manager = init_config(path)
        assert get_config() is manager.config
        assert get_config().mapping.ttl == 60

        replacement = Config()
        set_config(replacement)
        assert get_config() is replacement


class TestHelpers:
    """Tests for the merge and coercion helpers."""

    def test_deep_merge_keeps_sibling_keys(self):
        base = {"discovery": {"multicast_port": 1901, "timeout": 2.0}, "http": {}}

        merged = deep_merge(base, {"discovery": {"timeout": 5.0}})

        assert merged["discovery"] == {"multicast_port": 1901, "timeout": 5.0}
        assert base["discovery"]["timeout"] == 2.0

    @pytest.mark.parametrize(
        ("raw", "path", "expected"),
        [
            ("1900", "discovery.multicast_port", 1900),
            ("0.5", "http.request_timeout", 0.5),
            ("ON", "observability.structured_logging", True),
            ("no", "discovery.unique_locations", False),
            ("10.0.0.1", "discovery.multicast_address", "10.0.0.1"),
            ("a,,b", "discovery.interfaces", ["a", "b"]),
        ],
    )
    def test_coerce_env_value(self, raw, path, expected):
        assert coerce_env_value(raw, path) == expected

    def test_env_overrides_from_mapping(self):
        overrides = env_overrides({"IGDMAP_HTTP_TIMEOUT": "4", "UNRELATED": "x"})

        assert overrides == {"http": {"request_timeout": 4}}
