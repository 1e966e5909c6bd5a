"""
Configuration package for the resilience layer.
Provides centralized configuration management with environment overrides,
feature flags and per-domain policies.
"""

from .config import (
    CacheConfig,
    Config,
    DomainOverride,
    DomainPolicy,
    FeatureFlags,
    GitHubCredentials,
    HistoryConfig,
    NotificationConfig,
    RecoveryConfig,
    RemoteAPIConfig,
    RetryPolicyConfig,
    StoreConfig,
    config,
    initialize_config,
)
from .environments import environment_manager


def get_flag(name: str) -> bool:
    return config.get_feature_flag(name)


def is_enabled(name: str) -> bool:
    return bool(get_flag(name))


__all__ = [
    # Main configuration
    "config",
    "Config",
    "initialize_config",
    "environment_manager",
    # Sections
    "CacheConfig",
    "RetryPolicyConfig",
    "NotificationConfig",
    "RemoteAPIConfig",
    "HistoryConfig",
    "RecoveryConfig",
    "StoreConfig",
    "FeatureFlags",
    "GitHubCredentials",
    "DomainOverride",
    "DomainPolicy",
    # Feature flags
    "get_flag",
    "is_enabled",
]
