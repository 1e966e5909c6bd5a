"""
Configuration management for the resilience layer.
Provides centralized configuration with environment variable overrides,
feature flags and per-domain retry/notification policies.
"""

import os
from dataclasses import dataclass, field, replace

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so all os.getenv calls see variables
from dotenv import load_dotenv

load_dotenv()


def _env_bool(value: str) -> bool:
    return value.lower() == "true"


def _env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class GitHubCredentials(BaseSettings):
    """
    Credentials for the remote REST API.
    token:
        Optional personal access token. Unauthenticated calls work but are
        rate limited much earlier (the 403 path).
    """

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")

    token: str | None = Field(default=None)
    user_agent: str = "cocopilot-resilience/1.0"


@dataclass
class CacheConfig:
    """Expiring cache configuration."""

    default_ttl_seconds: float = 300.0  # 5 minutes
    domain_ttl_seconds: dict[str, float] = field(
        default_factory=lambda: {
            "repository_stats": 300.0,
            "activity_feed": 300.0,
            "commit_history": 300.0,
            "pull_requests": 300.0,
            "issues": 300.0,
            "contributor_stats": 600.0,
            "changelog": 900.0,
        }
    )

    def __post_init__(self):
        if env_ttl := os.getenv("CACHE_DEFAULT_TTL"):
            self.default_ttl_seconds = float(env_ttl)

    def ttl_for(self, domain: str | None) -> float:
        if domain is None:
            return self.default_ttl_seconds
        return self.domain_ttl_seconds.get(domain, self.default_ttl_seconds)


@dataclass
class RetryPolicyConfig:
    """Retry/backoff defaults for remote calls."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    non_retryable_statuses: tuple[int, ...] = (404, 410)
    max_in_flight: int = 32

    def __post_init__(self):
        if env_retries := os.getenv("RETRY_MAX_RETRIES"):
            self.max_retries = int(env_retries)
        if env_delay := os.getenv("RETRY_BASE_DELAY"):
            self.base_delay_seconds = float(env_delay)
        if env_max_delay := os.getenv("RETRY_MAX_DELAY"):
            self.max_delay_seconds = float(env_max_delay)
        if env_in_flight := os.getenv("RETRY_MAX_IN_FLIGHT"):
            self.max_in_flight = int(env_in_flight)


@dataclass
class NotificationConfig:
    """Notification gate configuration."""

    min_interval_seconds: float = 1.0
    lease_timeout_seconds: float = 5.0
    renderer: str = "logging"  # logging, streamlit, memory

    def __post_init__(self):
        if env_interval := os.getenv("NOTIFICATION_MIN_INTERVAL"):
            self.min_interval_seconds = float(env_interval)
        if env_timeout := os.getenv("NOTIFICATION_TIMEOUT"):
            self.lease_timeout_seconds = float(env_timeout)
        if env_renderer := os.getenv("NOTIFICATION_RENDERER"):
            self.renderer = env_renderer.lower()


@dataclass
class RemoteAPIConfig:
    """Remote REST API configuration."""

    base_url: str = "https://api.github.com"
    owner: str = "acbart"
    repo: str = "cocopilot"
    per_page: int = 10
    bulk_per_page: int = 100
    timeout_seconds: float = 10.0
    known_hosts: list[str] = field(default_factory=lambda: ["api.github.com"])
    silent_hosts: list[str] = field(
        default_factory=lambda: ["google-analytics.com", "googletagmanager.com"]
    )

    def __post_init__(self):
        if env_url := os.getenv("REMOTE_API_BASE_URL"):
            self.base_url = env_url
        if env_owner := os.getenv("REMOTE_API_OWNER"):
            self.owner = env_owner
        if env_repo := os.getenv("REMOTE_API_REPO"):
            self.repo = env_repo
        if env_timeout := os.getenv("REMOTE_API_TIMEOUT"):
            self.timeout_seconds = float(env_timeout)
        if env_hosts := os.getenv("REMOTE_API_KNOWN_HOSTS"):
            self.known_hosts = _env_list(env_hosts)
        if env_silent := os.getenv("REMOTE_API_SILENT_HOSTS"):
            self.silent_hosts = _env_list(env_silent)


@dataclass
class HistoryConfig:
    """Bounded error history configuration."""

    capacity: int = 100

    def __post_init__(self):
        if env_capacity := os.getenv("ERROR_HISTORY_CAPACITY"):
            self.capacity = int(env_capacity)


@dataclass
class RecoveryConfig:
    """Recovery orchestrator configuration."""

    critical_patterns: list[str] = field(
        default_factory=lambda: [r"network", r"failed to fetch", r"load resource", r"script error"]
    )
    notify_on_fallback: bool = True
    # a DEGRADED domain gets one attempt without backoff for this long; 0 disables
    degraded_cooldown_seconds: float = 0.0

    def __post_init__(self):
        if env_patterns := os.getenv("RECOVERY_CRITICAL_PATTERNS"):
            self.critical_patterns = _env_list(env_patterns)
        if env_notify := os.getenv("RECOVERY_NOTIFY_ON_FALLBACK"):
            self.notify_on_fallback = _env_bool(env_notify)
        if env_cooldown := os.getenv("RECOVERY_DEGRADED_COOLDOWN"):
            self.degraded_cooldown_seconds = float(env_cooldown)


@dataclass
class StoreConfig:
    """Local key-value store configuration."""

    dsn: str = "sqlite:///./data/local_store.db"
    key_prefix: str = "cocopilot"
    echo: bool = False

    def __post_init__(self):
        if env_dsn := os.getenv("LOCAL_STORE_DSN"):
            self.dsn = env_dsn
        if env_prefix := os.getenv("LOCAL_STORE_PREFIX"):
            self.key_prefix = env_prefix


@dataclass
class FeatureFlags:
    """Feature flags for optional widgets that can be disabled on failure."""

    enable_github_activity: bool = True
    enable_repository_stats: bool = True
    enable_analytics_dashboard: bool = True
    enable_advanced_search: bool = True
    enable_onboarding_tour: bool = True
    enable_performance_monitor: bool = True
    enable_enhanced_mobile: bool = True
    enable_global_failure_channels: bool = True

    def __post_init__(self):
        """Override feature flags from environment variables."""
        for flag_name in self.__dataclass_fields__:
            env_var = f"FEATURE_{flag_name.upper()}"
            if env_value := os.getenv(env_var):
                setattr(self, flag_name, _env_bool(env_value))


@dataclass
class DomainOverride:
    """Per-domain deviations from the global retry/notification defaults."""

    max_retries: int | None = None
    base_delay_seconds: float | None = None
    ttl_seconds: float | None = None
    min_interval_seconds: float | None = None
    lease_timeout_seconds: float | None = None


@dataclass(frozen=True)
class DomainPolicy:
    """Effective policy for one data domain."""

    domain: str | None
    max_retries: int
    base_delay_seconds: float
    max_delay_seconds: float
    ttl_seconds: float
    min_interval_seconds: float
    lease_timeout_seconds: float


@dataclass
class Config:
    """Main configuration class that aggregates all configuration sections."""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Configuration sections
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryPolicyConfig = field(default_factory=RetryPolicyConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    remote_api: RemoteAPIConfig = field(default_factory=RemoteAPIConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    feature_flags: FeatureFlags = field(default_factory=FeatureFlags)
    credentials: GitHubCredentials = field(default_factory=GitHubCredentials)
    domain_overrides: dict[str, DomainOverride] = field(default_factory=dict)

    # Application settings
    app_name: str = "cocopilot-resilience"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    def __post_init__(self):
        """Override main config from environment variables."""
        if env_environment := os.getenv("ENVIRONMENT"):
            self.environment = env_environment
            self.debug = env_environment == "development"

        if env_log_level := os.getenv("LOG_LEVEL"):
            self.log_level = env_log_level

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def get_feature_flag(self, flag_name: str) -> bool:
        """Get a feature flag value by name."""
        return getattr(self.feature_flags, flag_name, False)

    def policy_for(self, domain: str | None = None) -> DomainPolicy:
        """
        Resolve the effective policy for a data domain.

        Global defaults apply unless the domain has an entry in
        ``domain_overrides``; only the fields set on the override win.
        """
        policy = DomainPolicy(
            domain=domain,
            max_retries=self.retry.max_retries,
            base_delay_seconds=self.retry.base_delay_seconds,
            max_delay_seconds=self.retry.max_delay_seconds,
            ttl_seconds=self.cache.ttl_for(domain),
            min_interval_seconds=self.notifications.min_interval_seconds,
            lease_timeout_seconds=self.notifications.lease_timeout_seconds,
        )
        override = self.domain_overrides.get(domain) if domain else None
        if override is None:
            return policy
        changes = {k: v for k, v in vars(override).items() if v is not None}
        return replace(policy, **changes)

    def validate(self) -> None:
        """Validate configuration settings."""
        errors: list[str] = []
        if self.retry.max_retries < 0:
            errors.append("retry.max_retries must be >= 0")
        if self.retry.base_delay_seconds < 0:
            errors.append("retry.base_delay_seconds must be >= 0")
        if self.retry.max_in_flight < 1:
            errors.append("retry.max_in_flight must be at least 1")
        if self.cache.default_ttl_seconds <= 0:
            errors.append("cache.default_ttl_seconds must be positive")
        if self.notifications.min_interval_seconds < 0:
            errors.append("notifications.min_interval_seconds must be >= 0")
        if self.notifications.lease_timeout_seconds <= 0:
            errors.append("notifications.lease_timeout_seconds must be positive")
        if self.notifications.renderer not in ("logging", "streamlit", "memory"):
            errors.append(f"notifications.renderer '{self.notifications.renderer}' is unknown")
        if self.recovery.degraded_cooldown_seconds < 0:
            errors.append("recovery.degraded_cooldown_seconds must be >= 0")
        if not (10 <= self.history.capacity <= 100):
            errors.append("history.capacity must be between 10 and 100")
        for domain, override in self.domain_overrides.items():
            if override.max_retries is not None and override.max_retries < 0:
                errors.append(f"domain_overrides[{domain}].max_retries must be >= 0")
            if override.ttl_seconds is not None and override.ttl_seconds <= 0:
                errors.append(f"domain_overrides[{domain}].ttl_seconds must be positive")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    def apply_environment_overrides(self) -> None:
        """Apply environment-specific configuration overrides."""
        if self.environment == "testing":
            self.retry.base_delay_seconds = 0.0
            self.notifications.renderer = "memory"
            self.store.dsn = "sqlite:///:memory:"

        elif self.environment == "production":
            self.debug = False
            self.notifications.renderer = "streamlit"


def initialize_config(environment: str | None = None) -> Config:
    """Initialize configuration with environment-specific settings."""
    from .environments import environment_manager

    base_config = Config()
    environment = environment or os.getenv("ENVIRONMENT", base_config.environment)
    base_config.environment = environment

    config_with_env = environment_manager.apply_environment(base_config, environment)
    config_with_env.apply_environment_overrides()
    config_with_env.validate()
    return config_with_env


# Global configuration instance
config = initialize_config()

