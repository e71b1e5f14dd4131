"""Configuration package for the FE-1 prep core."""

from fe1prep.config.app_config import (
    AppConfig,
    GradingConfig,
    ProviderConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "GradingConfig",
    "ProviderConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]
