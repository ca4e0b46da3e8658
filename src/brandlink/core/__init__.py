"""Core."""

from .config import (
    ApiClientSettings,
    BrandlinkConfig,
    DomainSettings,
    ServerSettings,
    clear_config,
    flatten_config,
    get_config,
    load_config_from_file,
)

__all__ = [
    "ApiClientSettings",
    "BrandlinkConfig",
    "DomainSettings",
    "ServerSettings",
    "clear_config",
    "flatten_config",
    "get_config",
    "load_config_from_file",
]
