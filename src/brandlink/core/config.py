"""Configuration types with environment variable support.

All settings can be configured via environment variables with the BRANDLINK_ prefix.
Example: BRANDLINK_CNAME_TARGET=cname.example.net sets the platform CNAME target.

Settings may also come from a YAML or TOML file grouped by section:

    domains:
      storage_path: /var/lib/brandlink/domains.json
      max_failed_checks: 5
    server:
      port: 8080
      api_tokens:
        secret-token: acme
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict


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
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict) and key != "api_tokens":
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class DomainSettings(BaseSettings):
    """Custom domain storage and verification settings."""

    model_config = SettingsConfigDict(
        env_prefix="BRANDLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    storage_path: str | None = Field(
        default="domains.json",
        description="JSON file holding domain records. Empty for in-memory storage.",
    )
    cname_target: str = Field(
        default="cname.brandlink.link",
        description="Platform hostname tenant records must point to.",
    )
    dns_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for each DNS query (seconds).",
    )
    dns_nameservers: list[str] = Field(
        default_factory=list,
        description="Resolvers used for verification. Empty for system resolvers.",
    )
    max_failed_checks: int = Field(
        default=3,
        ge=1,
        description="Consecutive failed checks before a domain is marked failed.",
    )
    auto_promote: bool = Field(
        default=False,
        description="Activate domains in the background once verified.",
    )
    allow_delete_default: bool = Field(
        default=False,
        description="Allow deleting a tenant's default domain.",
    )
    unique_across_tenants: bool = Field(
        default=True,
        description="Reject a hostname already registered by another tenant.",
    )
    sweep_delay: float = Field(
        default=1.0,
        ge=0,
        description="Pause between checks during a verification sweep (seconds).",
    )


class ApiClientSettings(BaseSettings):
    """Remote domain API client settings."""

    model_config = SettingsConfigDict(
        env_prefix="BRANDLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_base_url: str = Field(
        default="http://127.0.0.1:8000",
        description="Base URL of the domain API.",
    )
    api_token: str | None = Field(
        default=None,
        repr=False,
        description="Bearer token sent with every request.",
    )
    api_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout (seconds).",
    )


class ServerSettings(BaseSettings):
    """Domain API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="BRANDLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(
        default="127.0.0.1",
        description="Address the API server binds to.",
    )
    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port the API server listens on.",
    )
    api_tokens: dict[str, str] = Field(
        default_factory=dict,
        repr=False,
        description="Bearer token to tenant id mapping.",
    )


class BrandlinkConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance. Values from ``config_file``
    are passed to each section as init arguments and override the
    environment.

    Example:
        config = get_config()
        print(config.domains.cname_target)
        print(config.server.port)
    """

    model_config = SettingsConfigDict(
        env_prefix="BRANDLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config_file: str | None = Field(
        default=None,
        description="Optional YAML or TOML file with domains/api/server sections.",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level.",
    )

    _file_data: dict[str, Any] | None = PrivateAttr(default=None)

    def _section(self, name: str) -> dict[str, Any]:
        if self._file_data is None:
            self._file_data = load_config_from_file(self.config_file) if self.config_file else {}
        section = self._file_data.get(name) or {}
        if not isinstance(section, dict):
            raise ValueError(f"Config section '{name}' must be a mapping")
        return section

    @property
    def domains(self) -> DomainSettings:
        """Get domain configuration."""
        return DomainSettings(**self._section("domains"))

    @property
    def api(self) -> ApiClientSettings:
        """Get API client configuration."""
        return ApiClientSettings(**self._section("api"))

    @property
    def server(self) -> ServerSettings:
        """Get server configuration."""
        return ServerSettings(**self._section("server"))

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display.

        Secrets are masked.
        """
        api = self.api.model_dump()
        if api["api_token"]:
            api["api_token"] = "***"
        server = self.server.model_dump()
        server["api_tokens"] = {
            f"{token[:4]}***": tenant for token, tenant in server["api_tokens"].items()
        }
        return {
            "domains": self.domains.model_dump(),
            "api": api,
            "server": server,
        }

    def to_env_dict(self) -> dict[str, str]:
        """Export current configuration as environment variable dictionary."""
        result = {}
        for section in (self.domains, self.api, self.server):
            for key, value in section.model_dump().items():
                if value is None:
                    value = ""
                elif isinstance(value, bool):
                    value = str(value).lower()
                elif isinstance(value, (list, dict)):
                    value = json.dumps(value)
                result[f"BRANDLINK_{key.upper()}"] = str(value)
        return result


_config: BrandlinkConfig | None = None


def get_config() -> BrandlinkConfig:
    """Get the global configuration instance.

    Returns a cached instance of BrandlinkConfig that reads from environment variables.
    The instance is created once and cached for the lifetime of the process.

    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = BrandlinkConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    Useful for testing.
    """
    global _config
    _config = None
