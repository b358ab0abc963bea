"""
Configuration loader for the Estimate Engine.

Loads settings from estimate_config.yaml and provides typed access
to all configuration sections.
"""
import os
from decimal import ROUND_HALF_UP
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "estimate_config.yaml"

CONFIG_PATH_ENV = "ESTIMATE_ENGINE_CONFIG"


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class EstimateConfig:
    """
    Configuration manager for the Estimate Engine.

    Loads YAML configuration and provides typed access to all sections.
    Use get_config() to obtain the singleton instance.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._explicit_path = config_path is not None
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            if self._explicit_path:
                raise ConfigurationError(f"Config file not found: {self._config_path}")
            # Installed without the bundled file: every property has a default
            self._config = {}
            return

        try:
            with open(self._config_path, 'r') as f:
                self._config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load()
        get_config.cache_clear()

    @property
    def version(self) -> str:
        """Configuration file version."""
        return self._config.get("version", "unknown")

    # =========================================================================
    # Database
    # =========================================================================

    @property
    def database(self) -> dict:
        """Database connection settings."""
        return self._config.get("database", {})

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return self.database.get("url", "sqlite:///./estimates.db")

    @property
    def database_echo(self) -> bool:
        """Whether SQLAlchemy echoes SQL statements."""
        return bool(self.database.get("echo", False))

    # =========================================================================
    # Money / Decimal precision
    # =========================================================================

    @property
    def money(self) -> dict:
        """Decimal precision settings."""
        return self._config.get("money", {})

    @property
    def currency_places(self) -> int:
        """Decimal places kept on materialized money amounts."""
        return int(self.money.get("currency_places", 2))

    @property
    def quantity_places(self) -> int:
        """Decimal places kept on quantities and unit prices."""
        return int(self.money.get("quantity_places", 4))

    @property
    def percent_places(self) -> int:
        """Decimal places kept on margin percentages."""
        return int(self.money.get("percent_places", 4))

    @property
    def rounding(self) -> str:
        """decimal module rounding mode name."""
        return self.money.get("rounding", ROUND_HALF_UP)

    # =========================================================================
    # RBAC
    # =========================================================================

    @property
    def rbac(self) -> dict:
        """Role-based access settings."""
        return self._config.get("rbac", {})

    @property
    def view_cost_resource(self) -> str:
        """Resource name of the cost visibility capability."""
        return self.rbac.get("view_cost_resource", "estimates")

    @property
    def view_cost_action(self) -> str:
        """Action name of the cost visibility capability."""
        return self.rbac.get("view_cost_action", "view_cost")

    @property
    def role_grants(self) -> Dict[str, List[str]]:
        """Role name -> list of 'resource:action' grants."""
        return self.rbac.get("role_grants", {})

    def get_role_grants(self, role: str) -> List[str]:
        """Get the grants configured for a role (empty when unknown)."""
        return list(self.role_grants.get(role, []) or [])

    @property
    def trust_role_header(self) -> bool:
        """Whether the HTTP API may take actor roles from the X-Actor-Roles header."""
        return bool(self.rbac.get("trust_role_header", False))

    # =========================================================================
    # Pagination
    # =========================================================================

    @property
    def pagination(self) -> dict:
        """Pagination defaults."""
        return self._config.get("pagination", {})

    @property
    def default_page_size(self) -> int:
        return int(self.pagination.get("default_limit", 10))

    @property
    def max_page_size(self) -> int:
        return int(self.pagination.get("max_limit", 100))

    # =========================================================================
    # Logging
    # =========================================================================

    @property
    def logging(self) -> dict:
        """Logging configuration."""
        return self._config.get("logging", {})

    @property
    def log_level(self) -> str:
        return self.logging.get("level", "INFO")

    @property
    def log_format(self) -> str:
        return self.logging.get(
            "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # =========================================================================
    # Raw Access
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level config value by key."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Dictionary-style access to config."""
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        return key in self._config


@lru_cache(maxsize=1)
def get_config(config_path: Optional[str] = None) -> EstimateConfig:
    """
    Get the singleton configuration instance.

    Args:
        config_path: Optional path to config file. Only used on first call.
            Falls back to the ESTIMATE_ENGINE_CONFIG environment variable.

    Returns:
        EstimateConfig singleton instance
    """
    config_path = config_path or os.environ.get(CONFIG_PATH_ENV)
    path = Path(config_path) if config_path else None
    return EstimateConfig(path)


def reload_config() -> EstimateConfig:
    """Reload configuration from disk and return new instance."""
    get_config.cache_clear()
    return get_config()
