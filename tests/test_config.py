"""Tests for configuration loading from files and environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hostgate.core.config import (
    CertbotConfig,
    HostgateConfig,
    PlatformConfig,
    RateLimitingConfig,
    clear_config,
    flatten_config,
    get_config,
    load_config_from_file,
)


class TestSectionDefaults:
    """Test section default values."""

    def test_platform_defaults(self) -> None:
        config = PlatformConfig()
        assert config.upstream_port == 3008
        assert config.verification_label == "_platform-verification"
        assert config.token_prefix == "platform-verify-"
        assert "localhost" in config.blocked_domains
        assert config.entitled_plans == ["ENTERPRISE"]

    def test_certbot_defaults(self) -> None:
        config = CertbotConfig()
        assert config.certs_root == "/etc/letsencrypt/live"
        assert config.request_timeout == 120.0
        assert config.renew_timeout == 120.0
        assert config.revoke_timeout == 60.0
        assert config.renewal_threshold_days == 30

    def test_rate_limit_defaults(self) -> None:
        config = RateLimitingConfig()
        assert config.max_attempts == 5
        assert config.window_seconds == 3600.0
        assert config.backend == "memory"

    def test_token_entropy_floor(self) -> None:
        with pytest.raises(ValidationError):
            PlatformConfig(token_bytes=8)


class TestHostgateConfig:
    """Test the combined settings object."""

    def test_env_override_nested(self) -> None:
        """Test HOSTGATE_SECTION__FIELD env vars."""
        with patch.dict(
            os.environ,
            {
                "HOSTGATE_PLATFORM__DOMAIN": "shops.example.net",
                "HOSTGATE_RATE_LIMIT__MAX_ATTEMPTS": "9",
            },
        ):
            config = HostgateConfig()
        assert config.platform.domain == "shops.example.net"
        assert config.rate_limit.max_attempts == 9

    def test_to_display_dict_masks_secret(self) -> None:
        config = HostgateConfig(server={"cron_secret": "s3cret"})
        display = config.to_display_dict()

        assert display["server"]["cron_secret"] == "***"
        assert display["platform"]["domain"] == config.platform.domain

    def test_flatten(self) -> None:
        flat = flatten_config({"a": {"b": 1, "c": {"d": 2}}, "e": 3})
        assert flat == {"a.b": 1, "a.c.d": 2, "e": 3}


class TestConfigFiles:
    """Test YAML and TOML loading."""

    def test_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "hostgate.yaml"
        path.write_text(
            "platform:\n  domain: shops.example.net\n  upstream_port: 4000\n"
            "storage:\n  backend: memory\n"
        )

        config = HostgateConfig.from_file(path)

        assert config.platform.domain == "shops.example.net"
        assert config.platform.upstream_port == 4000
        assert config.storage.backend == "memory"

    def test_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "hostgate.toml"
        path.write_text('[certbot]\nuse_sudo = true\ncerts_root = "/srv/live"\n')

        config = HostgateConfig.from_file(path)

        assert config.certbot.use_sudo is True
        assert config.certbot.certs_root == "/srv/live"

    def test_env_beats_file(self, tmp_path: Path) -> None:
        path = tmp_path / "hostgate.yaml"
        path.write_text("platform:\n  domain: from-file.example\n  upstream_port: 4000\n")

        with patch.dict(os.environ, {"HOSTGATE_PLATFORM__DOMAIN": "from-env.example"}):
            config = HostgateConfig.from_file(path)

        assert config.platform.domain == "from-env.example"
        assert config.platform.upstream_port == 4000

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path: Path) -> None:
        path = tmp_path / "hostgate.ini"
        path.write_text("[x]")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config_from_file(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "hostgate.yaml"
        path.write_text("platform: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_from_file(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "hostgate.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config_from_file(path)


class TestGetConfig:
    """Test get_config() function."""

    def setup_method(self) -> None:
        clear_config()

    def teardown_method(self) -> None:
        clear_config()

    def test_get_config_caches_instance(self) -> None:
        assert get_config() is get_config()

    def test_clear_config_resets_cache(self) -> None:
        first = get_config()
        clear_config()
        assert get_config() is not first

    def test_get_config_from_path(self, tmp_path: Path) -> None:
        path = tmp_path / "hostgate.yaml"
        path.write_text("server:\n  port: 9999\n")

        assert get_config(path).server.port == 9999
