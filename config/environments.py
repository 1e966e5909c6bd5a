"""
Environment-specific configuration management.
Provides configuration overrides for different deployment environments.
"""

import json
import logging
from dataclasses import dataclass, field, is_dataclass
from pathlib import Path
from typing import Any

import yaml

from .config import Config, DomainOverride

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent


@dataclass
class EnvironmentConfig:
    """Environment-specific configuration overrides."""

    name: str
    overrides: dict[str, Any] = field(default_factory=dict)

    def apply_to_config(self, config: Config) -> Config:
        """Apply environment-specific overrides to the base configuration."""
        for key, value in self.overrides.items():
            if key == "domain_overrides" and isinstance(value, dict):
                for domain, fields in value.items():
                    config.domain_overrides[domain] = DomainOverride(**(fields or {}))
            elif hasattr(config, key):
                current = getattr(config, key)
                if isinstance(value, dict) and (is_dataclass(current) or hasattr(current, "__dict__")):
                    # Handle nested configuration objects
                    for nested_key, nested_value in value.items():
                        if hasattr(current, nested_key):
                            setattr(current, nested_key, nested_value)
                        else:
                            logger.warning("Unknown config key %s.%s in environment %s", key, nested_key, self.name)
                else:
                    setattr(config, key, value)
            else:
                logger.warning("Unknown config key %s in environment %s", key, self.name)
        return config


class EnvironmentManager:
    """Manages environment-specific configurations."""

    def __init__(self, config_dir: str | Path = DEFAULT_CONFIG_DIR):
        self.config_dir = Path(config_dir)
        self.environments: dict[str, EnvironmentConfig] = {}
        self._load_environment_configs()

    def _load_environment_configs(self) -> None:
        """Load environment-specific configuration files."""
        env_dir = self.config_dir / "environments"
        if not env_dir.exists():
            return

        for env_file in sorted(env_dir.glob("*.json")):
            try:
                with open(env_file, encoding="utf-8") as f:
                    overrides = json.load(f)
                self.register(env_file.stem, overrides)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load environment config %s: %s", env_file, e)

        for env_file in sorted(env_dir.glob("*.yaml")):
            try:
                with open(env_file, encoding="utf-8") as f:
                    overrides = yaml.safe_load(f)
                self.register(env_file.stem, overrides or {})
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load environment config %s: %s", env_file, e)

    def register(self, name: str, overrides: dict[str, Any]) -> EnvironmentConfig:
        env_config = EnvironmentConfig(name=name, overrides=overrides)
        self.environments[name] = env_config
        return env_config

    def get_environment_config(self, environment: str) -> EnvironmentConfig | None:
        """Get configuration for a specific environment."""
        return self.environments.get(environment)

    def apply_environment(self, config: Config, environment: str) -> Config:
        """Apply environment-specific configuration to base config."""
        env_config = self.get_environment_config(environment)
        if env_config:
            return env_config.apply_to_config(config)
        return config

    def list_environments(self) -> list[str]:
        """List available environment configurations."""
        return list(self.environments.keys())


# Global environment manager
environment_manager = EnvironmentManager()
