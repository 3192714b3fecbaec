"""Configuration types with environment variable support.

All settings can be configured via environment variables with the HOSTGATE_ prefix,
using a double underscore between section and field.
Example: HOSTGATE_PLATFORM__DOMAIN=shops.example.net sets platform.domain.

A YAML or TOML file can provide the same tree; environment variables win over it.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return data


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


DEFAULT_BLOCKED_DOMAINS = [
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "example.com",
    "test.com",
    "internal",
    "local",
]


class PlatformConfig(BaseModel):
    """Identity of the hosting platform and the custom-domain policy."""

    domain: str = Field(
        default="platform.example",
        description="Platform apex domain; tenants CNAME to {slug}.<domain>.",
    )
    upstream_port: int = Field(
        default=3008,
        ge=1,
        le=65535,
        description="Local port of the tenant application the proxy forwards to.",
    )
    verification_label: str = Field(
        default="_platform-verification",
        description="Label prepended to the domain for the ownership TXT record.",
    )
    token_prefix: str = Field(
        default="platform-verify-",
        description="Namespace prefix of generated verification tokens.",
    )
    token_bytes: int = Field(
        default=16,
        ge=16,
        description="Random bytes of entropy per verification token.",
    )
    blocked_domains: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_DOMAINS),
        description="Hostnames that can never be claimed (exact match).",
    )
    entitled_plans: list[str] = Field(
        default_factory=lambda: ["ENTERPRISE"],
        description="Subscription plans that include custom domains.",
    )
    default_contact_email: str = Field(
        default="admin@platform.example",
        description="ACME account email used when a tenant has none on file.",
    )


class DNSConfig(BaseModel):
    """Resolver settings for domain verification."""

    nameservers: list[str] = Field(
        default_factory=list,
        description="Explicit nameservers; empty uses the system resolver.",
    )
    timeout: float = Field(
        default=5.0,
        gt=0,
        description="Per-query timeout in seconds.",
    )
    tries: int = Field(
        default=2,
        ge=1,
        description="Attempts per nameserver before giving up.",
    )


class CertbotConfig(BaseModel):
    """ACME client invocation settings."""

    binary: str = Field(default="certbot", description="certbot executable.")
    use_sudo: bool = Field(default=False, description="Prefix certbot with sudo.")
    certs_root: str = Field(
        default="/etc/letsencrypt/live",
        description="Directory holding {domain}/{cert,fullchain,privkey,chain}.pem.",
    )
    request_timeout: float = Field(default=120.0, gt=0, description="Issuance timeout (seconds).")
    renew_timeout: float = Field(default=120.0, gt=0, description="Renewal timeout (seconds).")
    revoke_timeout: float = Field(default=60.0, gt=0, description="Delete timeout (seconds).")
    renewal_threshold_days: int = Field(
        default=30,
        ge=1,
        description="Renewal sweep renews certificates with fewer days left than this.",
    )


class ProxyConfig(BaseModel):
    """Reverse proxy (nginx) file layout and control commands."""

    nginx_binary: str = Field(default="nginx", description="nginx executable.")
    sites_available: str = Field(
        default="/etc/nginx/sites-available",
        description="Directory of generated site configs.",
    )
    sites_enabled: str = Field(
        default="/etc/nginx/sites-enabled",
        description="Directory of symlinks to enabled site configs.",
    )
    reload_command: list[str] = Field(
        default_factory=lambda: ["systemctl", "reload", "nginx"],
        description="Command that signals the running proxy to reload.",
    )
    acme_webroot: str = Field(
        default="/var/www/certbot",
        description="Webroot served for the ACME HTTP-01 challenge path.",
    )
    log_dir: str = Field(default="/var/log/nginx", description="Per-domain log directory.")
    command_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for config test and reload commands (seconds).",
    )
    use_sudo: bool = Field(default=False, description="Prefix nginx commands with sudo.")


class RateLimitingConfig(BaseModel):
    """Configuration for domain attempt rate limiting.

    The tenant window limits claim/verify attempts; the churn window limits how
    often one actor may claim domains and is never reset by domain removal.
    """

    max_attempts: int = Field(default=5, ge=1, description="Attempts per tenant per window.")
    window_seconds: float = Field(default=3600.0, gt=0, description="Tenant window length.")
    churn_max_claims: int = Field(default=20, ge=1, description="Claims per actor per churn window.")
    churn_window_seconds: float = Field(default=86400.0, gt=0, description="Churn window length.")
    backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Counter store. 'memory' is only correct for a single instance.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the shared counter store.",
    )
    max_entries: int = Field(
        default=10000,
        description="Maximum tracked keys before LRU eviction (memory backend).",
    )


class ServerConfig(BaseModel):
    """HTTP API settings."""

    host: str = Field(default="127.0.0.1", description="Bind address.")
    port: int = Field(default=8088, ge=1, le=65535, description="Bind port.")
    admin_actor_ids: list[str] = Field(
        default_factory=list,
        description="Actor ids granted the admin override.",
    )
    cron_secret: str | None = Field(
        default=None,
        description="Bearer secret for the sweep endpoints; unset disables them.",
    )
    actor_header: str = Field(
        default="X-Actor-Id",
        description="Header carrying the authenticated actor id from the gateway.",
    )


class StorageConfig(BaseModel):
    """Tenant record storage."""

    backend: Literal["json", "memory"] = Field(default="json", description="Store backend.")
    path: str = Field(default="tenants.json", description="JSON store file.")


class LoggingConfig(BaseModel):
    level: str = Field(default="info", description="debug, info, warning or error.")
    json_output: bool = Field(default=False, description="Render log lines as JSON.")


class HostgateConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.platform.domain)
        print(config.certbot.certs_root)
    """

    model_config = SettingsConfigDict(
        env_prefix="HOSTGATE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    dns: DNSConfig = Field(default_factory=DNSConfig)
    certbot: CertbotConfig = Field(default_factory=CertbotConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    rate_limit: RateLimitingConfig = Field(default_factory=RateLimitingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats values loaded from a config file.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def from_file(cls, path: str | Path) -> HostgateConfig:
        """Build configuration from a YAML/TOML file plus the environment."""
        return cls(**load_config_from_file(path))

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display."""
        data = self.model_dump()
        if data["server"]["cron_secret"]:
            data["server"]["cron_secret"] = "***"
        return data


_config: HostgateConfig | None = None


def get_config(path: str | Path | None = None) -> HostgateConfig:
    """Get the global configuration instance.

    The instance is created once and cached for the lifetime of the process.
    A path is only honoured on the first call (or after clear_config()).

    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = HostgateConfig.from_file(path) if path else HostgateConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    Useful for testing.
    """
    global _config
    _config = None
