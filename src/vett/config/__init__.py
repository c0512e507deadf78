"""Configuration models and settings resolution."""

from vett.config.app import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_REGISTRY_URL,
    Settings,
    TelemetryConfig,
    VettConfig,
    get_vett_home,
    parse_env_bool,
    resolve_settings,
)

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_REGISTRY_URL",
    "Settings",
    "TelemetryConfig",
    "VettConfig",
    "get_vett_home",
    "parse_env_bool",
    "resolve_settings",
]
