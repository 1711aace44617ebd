"""Configuration management for the consent core.

This module provides configuration loading and validation for consent
storage, Consent Mode signals, enforcement timing, banner behaviour, the
cookie reference database and integration detection.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import Category, CONSENT_CATEGORIES, RegistryEntry

logger = logging.getLogger(__name__)


# EU member states plus Norway, Iceland, Liechtenstein and the UK
EEA_REGIONS = [
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR",
    "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK",
    "SI", "ES", "SE",
    "NO", "IS", "LI", "GB",
]

OPEN_COOKIE_DATABASE_URL = (
    "https://raw.githubusercontent.com/jkwakman/Open-Cookie-Database/master/open-cookie-database.csv"
)


class RegionMode(str, Enum):
    """Where restrictive Consent Mode defaults apply."""
    LOCAL = "local"          # Configured local regions only
    REGIONAL = "regional"    # EEA + UK
    GLOBAL = "global"        # Everywhere (no region scope)


class StorageConfig(BaseModel):
    """Consent record storage configuration."""

    storage_key: str = Field(
        default="cookie_consent",
        description="Cookie name and local cache key holding the consent record"
    )
    schema_version: str = Field(
        default="1.0.0",
        description="Current consent schema version; older records are re-asked"
    )
    cookie_max_age_seconds: int = Field(
        default=31536000,
        description="Lifetime of the consent cookie"
    )
    cookie_path: str = Field(default="/", description="Path of the consent cookie")
    same_site: str = Field(default="Lax", description="SameSite attribute of the consent cookie")
    cache_path: Optional[str] = Field(
        default=None,
        description="JSON file backing the local fallback cache (in-memory when unset)"
    )

    @field_validator("storage_key")
    @classmethod
    def validate_storage_key(cls, v):
        if not v or any(c in v for c in ";=, \t"):
            raise ValueError("storage_key must be a valid cookie name")
        return v


class SignalConfig(BaseModel):
    """Google Consent Mode signal configuration."""

    region_mode: RegionMode = Field(
        default=RegionMode.LOCAL,
        description="Scope of restrictive defaults"
    )
    local_regions: List[str] = Field(
        default_factory=lambda: ["NO"],
        description="Region codes used in local mode"
    )
    regional_regions: List[str] = Field(
        default_factory=lambda: list(EEA_REGIONS),
        description="Region codes used in regional mode"
    )
    wait_for_update_ms: int = Field(
        default=500,
        description="How long tags wait for a consent update before firing"
    )
    url_passthrough: bool = Field(default=False, description="Emit url_passthrough with defaults")
    ads_data_redaction: bool = Field(default=False, description="Emit ads_data_redaction with defaults")


class EnforcementConfig(BaseModel):
    """Cookie enforcement configuration."""

    sweep_interval_seconds: float = Field(
        default=2.0,
        description="Interval between enforcement sweeps"
    )
    neutralize_trackers: bool = Field(
        default=True,
        description="Replace tracker entry points with no-ops when consent is missing"
    )
    report_unknown: bool = Field(
        default=True,
        description="Report unclassified cookies to the admin registry"
    )


class CategoryText(BaseModel):
    """Display texts for one consent category."""

    title: str
    description: str = ""


def _default_category_texts() -> Dict[str, CategoryText]:
    return {
        Category.NECESSARY.value: CategoryText(
            title="Necessary",
            description="These cookies are required for the website to function and cannot be disabled."
        ),
        Category.ANALYTICS.value: CategoryText(
            title="Analytics",
            description="These cookies help us understand how visitors use the website."
        ),
        Category.FUNCTIONAL.value: CategoryText(
            title="Functional",
            description="These cookies enable enhanced functionality and personalisation."
        ),
        Category.MARKETING.value: CategoryText(
            title="Marketing",
            description="These cookies track visitors across websites to show relevant ads."
        ),
    }


class BannerConfig(BaseModel):
    """Consent banner behaviour."""

    idle_timeout_seconds: float = Field(
        default=3.0,
        description="Upper bound on how long banner display may be deferred"
    )
    bot_detection: bool = Field(
        default=True,
        description="Skip the banner and grant consent for crawlers"
    )
    categories: Dict[str, CategoryText] = Field(default_factory=_default_category_texts)


class ReferenceDatabaseConfig(BaseModel):
    """Open Cookie Database integration."""

    enabled: bool = Field(default=False, description="Use the reference database as a fallback layer")
    url: str = Field(default=OPEN_COOKIE_DATABASE_URL, description="CSV download URL")
    cache_path: str = Field(
        default="data/open-cookie-database.csv",
        description="Local copy of the CSV"
    )
    timeout_seconds: float = Field(default=30.0, description="Download timeout")


class IntegrationConfig(BaseModel):
    """Integration detection inputs."""

    active_plugins: List[str] = Field(
        default_factory=list,
        description="Identifiers of active host plugins (e.g. woocommerce)"
    )
    disabled_integrations: List[str] = Field(
        default_factory=list,
        description="Integration ids to ignore even when detected"
    )


class ConsentConfiguration(BaseModel):
    """Complete consent configuration.

    Loads and validates consent configuration from YAML files, with support
    for environment-specific overrides.
    """

    storage: StorageConfig = Field(default_factory=StorageConfig)
    signals: SignalConfig = Field(default_factory=SignalConfig)
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)
    banner: BannerConfig = Field(default_factory=BannerConfig)
    reference_db: ReferenceDatabaseConfig = Field(default_factory=ReferenceDatabaseConfig)
    integrations: IntegrationConfig = Field(default_factory=IntegrationConfig)

    # Admin-categorized cookies (registry snapshot)
    registry: List[RegistryEntry] = Field(default_factory=list)

    # Shared secret for privileged request-layer operations
    admin_token: Optional[str] = Field(default=None)

    # Browser origins allowed to call the consent API cross-origin
    cors_origins: List[str] = Field(
        default_factory=list,
        description="Allowed CORS origins; empty allows same-origin requests only"
    )

    environment: str = Field(default="development", description="Current environment")
    debug: bool = Field(default=False)

    def get_category_text(self, category: Category) -> CategoryText:
        """Get display texts for a category."""
        text = self.banner.categories.get(category.value)
        if text is None:
            return CategoryText(title=category.value.capitalize())
        return text

    def validate_consent_config(self) -> List[str]:
        """Validate cross-field configuration and return issues."""
        issues = []

        if self.enforcement.sweep_interval_seconds <= 0:
            issues.append("enforcement.sweep_interval_seconds must be positive")

        if self.banner.idle_timeout_seconds <= 0:
            issues.append("banner.idle_timeout_seconds must be positive")

        if self.signals.wait_for_update_ms < 0:
            issues.append("signals.wait_for_update_ms cannot be negative")

        if self.signals.region_mode == RegionMode.LOCAL and not self.signals.local_regions:
            issues.append("Local region mode requires at least one local region")

        if self.signals.region_mode == RegionMode.REGIONAL and not self.signals.regional_regions:
            issues.append("Regional region mode requires at least one region")

        names = [entry.name for entry in self.registry]
        if len(names) != len(set(names)):
            issues.append("Duplicate cookie names in registry")

        for entry in self.registry:
            if entry.category == Category.UNKNOWN:
                issues.append(f"Registry entry {entry.name} cannot use the unknown category")
            elif entry.category is not None and not entry.is_categorized:
                issues.append(f"Registry entry {entry.name} has a category but status {entry.status.value}")

        for key in self.banner.categories:
            if key not in {c.value for c in CONSENT_CATEGORIES}:
                issues.append(f"Banner texts reference unknown category: {key}")

        return issues


class ConsentConfigLoader:
    """Loads consent configuration from YAML files with environment support."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize config loader.

        Args:
            config_dir: Directory containing config files. Defaults to project config/ dir.
        """
        if config_dir is None:
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = Path(config_dir)
        self.environment = os.getenv('CONSENT_ENV', 'development')

    def load_config(self, environment: Optional[str] = None) -> ConsentConfiguration:
        """Load consent configuration for specified environment.

        Args:
            environment: Environment name. Defaults to CONSENT_ENV or 'development'.

        Returns:
            Loaded and validated consent configuration.

        Raises:
            FileNotFoundError: If the base config file is not found.
            ValueError: If configuration is invalid.
        """
        env = environment or self.environment

        base_config_path = self.config_dir / "consent.yaml"
        if not base_config_path.exists():
            raise FileNotFoundError(f"Base consent config not found: {base_config_path}")

        with open(base_config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        env_config_path = self.config_dir / f"consent.{env}.yaml"
        if env_config_path.exists():
            logger.info(f"Loading environment config: {env_config_path}")
            with open(env_config_path, 'r', encoding='utf-8') as f:
                env_config = yaml.safe_load(f) or {}
            config_data = self._deep_merge(config_data, env_config)

        # Environment sections embedded in the base file
        environments = config_data.pop('environments', {}) or {}
        if env in environments:
            config_data = self._deep_merge(config_data, environments[env] or {})

        config_data['environment'] = env

        try:
            config = ConsentConfiguration(**config_data)
        except Exception as e:
            raise ValueError(f"Invalid consent configuration: {e}")

        issues = config.validate_consent_config()
        if issues:
            logger.warning(f"Configuration validation issues: {issues}")

        logger.info(f"Loaded consent configuration for environment: {env}")
        return config

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def create_default_config(self) -> ConsentConfiguration:
        """Create a default consent configuration."""
        return ConsentConfiguration(environment=self.environment)


_config_loader = ConsentConfigLoader()
_config_cache: Optional[ConsentConfiguration] = None


def get_consent_config(environment: Optional[str] = None, force_reload: bool = False) -> ConsentConfiguration:
    """Get consent configuration for the specified environment.

    Args:
        environment: Environment name. If None, uses CONSENT_ENV or 'development'.
        force_reload: Force reload from files, ignoring cache.

    Returns:
        Consent configuration instance.
    """
    global _config_cache

    if force_reload or _config_cache is None:
        try:
            _config_cache = _config_loader.load_config(environment)
        except FileNotFoundError:
            logger.warning("Consent config file not found, using default configuration")
            _config_cache = _config_loader.create_default_config()
        except Exception as e:
            logger.error(f"Failed to load consent config: {e}")
            logger.warning("Using default configuration")
            _config_cache = _config_loader.create_default_config()

    return _config_cache


def load_consent_config_from_file(config_path: Path, environment: Optional[str] = None) -> ConsentConfiguration:
    """Load consent configuration from a specific file's directory.

    Args:
        config_path: Path to the consent.yaml file.
        environment: Optional environment override.

    Returns:
        Consent configuration instance.
    """
    loader = ConsentConfigLoader(Path(config_path).parent)
    return loader.load_config(environment)


def validate_consent_config(config_path: Path) -> List[str]:
    """Validate a consent configuration file.

    Args:
        config_path: Path to the consent config file.

    Returns:
        List of validation issues (empty if valid).
    """
    try:
        config = load_consent_config_from_file(config_path)
        return config.validate_consent_config()
    except Exception as e:
        return [f"Configuration error: {e}"]
