"""
Flask-FormWizard engine configuration

Dataclass based configuration for the wizard engine: validation timing,
navigation rules and progress persistence, with named presets and Flask
``app.config`` integration.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..const import DEFAULT_DEBOUNCE_DELAY_MS


@dataclass
class WizardBehaviorConfig:
    """Navigation and validation behavior"""

    # Validation
    debounce_delay: int = DEFAULT_DEBOUNCE_DELAY_MS  # milliseconds
    validation_timeout: Optional[float] = None  # seconds, None waits forever
    validate_on_step_change: bool = True

    # Navigation
    require_step_completion: bool = True
    skip_unmet_entry_steps: bool = True

    # Persistence
    save_on_step_change: bool = True

    # Submission
    check_required_metadata: bool = False


@dataclass
class WizardPersistenceConfig:
    """Progress persistence configuration"""

    storage_backend: str = "memory"  # memory, database


@dataclass
class WizardEngineConfig:
    """Complete engine configuration"""

    behavior: WizardBehaviorConfig = field(default_factory=WizardBehaviorConfig)
    persistence: WizardPersistenceConfig = field(default_factory=WizardPersistenceConfig)

    debug_mode: bool = False
    url_prefix: str = "/formwizard"

    def validate_config(self) -> List[str]:
        """
        Validate the configuration and return any issues found

        Returns:
            List of validation error messages
        """
        errors = []

        if self.behavior.debounce_delay < 0:
            errors.append("Debounce delay must not be negative")

        if self.behavior.validation_timeout is not None and self.behavior.validation_timeout <= 0:
            errors.append("Validation timeout must be positive when set")

        if self.persistence.storage_backend not in ("memory", "database"):
            errors.append(
                f"Unknown storage backend '{self.persistence.storage_backend}'"
            )

        if not self.url_prefix.startswith("/"):
            errors.append("URL prefix must start with '/'")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'WizardEngineConfig':
        """Create configuration from dictionary"""
        return cls(
            behavior=WizardBehaviorConfig(**config_dict.get('behavior', {})),
            persistence=WizardPersistenceConfig(**config_dict.get('persistence', {})),
            debug_mode=config_dict.get('debug_mode', False),
            url_prefix=config_dict.get('url_prefix', '/formwizard'),
        )

    def merge_with(self, other_config: 'WizardEngineConfig') -> 'WizardEngineConfig':
        """
        Merge this configuration with another, with the other taking precedence

        Args:
            other_config: Configuration to merge with

        Returns:
            New merged configuration
        """
        return self.merge_dict(other_config.to_dict())

    def merge_dict(self, overrides: Dict[str, Any]) -> 'WizardEngineConfig':
        def deep_merge(dict1, dict2):
            result = dict1.copy()
            for key, value in dict2.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = deep_merge(result[key], value)
                else:
                    result[key] = value
            return result

        return WizardEngineConfig.from_dict(deep_merge(self.to_dict(), overrides))


# Pre-defined configuration presets
WIZARD_CONFIG_PRESETS = {
    "strict": WizardEngineConfig(
        behavior=WizardBehaviorConfig(
            validation_timeout=10.0,
            require_step_completion=True,
            check_required_metadata=True,
        ),
        persistence=WizardPersistenceConfig(storage_backend="database"),
    ),

    "relaxed": WizardEngineConfig(
        behavior=WizardBehaviorConfig(
            debounce_delay=500,
            validate_on_step_change=False,
            require_step_completion=False,
        ),
    ),
}


def get_wizard_config(preset_name: str = "default") -> WizardEngineConfig:
    """
    Get an engine configuration by preset name

    Args:
        preset_name: Name of the preset configuration

    Returns:
        WizardEngineConfig instance

    Raises:
        ValueError: for an unknown preset name
    """
    if preset_name == "default":
        return WizardEngineConfig()

    if preset_name not in WIZARD_CONFIG_PRESETS:
        raise ValueError(
            f"Unknown preset '{preset_name}'. Available presets: "
            f"{['default'] + list(WIZARD_CONFIG_PRESETS.keys())}"
        )

    return WizardEngineConfig.from_dict(WIZARD_CONFIG_PRESETS[preset_name].to_dict())


def create_custom_config(preset_name: str = "default", **kwargs) -> WizardEngineConfig:
    """
    Create a custom engine configuration

    Args:
        preset_name: preset the overrides are applied to
        **kwargs: section dictionaries (``behavior``, ``persistence``) or
            top-level settings

    Returns:
        WizardEngineConfig instance
    """
    return get_wizard_config(preset_name).merge_dict(kwargs)


def config_from_flask(app_config: Mapping[str, Any]) -> WizardEngineConfig:
    """
    Build the engine configuration from Flask ``app.config`` keys

    ``FORMWIZARD_PRESET`` selects the preset; ``FORMWIZARD_DEBOUNCE_MS``,
    ``FORMWIZARD_VALIDATION_TIMEOUT``, ``FORMWIZARD_STORAGE_BACKEND`` and
    ``FORMWIZARD_URL_PREFIX`` override single values.
    """
    behavior: Dict[str, Any] = {}
    persistence: Dict[str, Any] = {}
    overrides: Dict[str, Any] = {}
    if app_config.get("FORMWIZARD_DEBOUNCE_MS") is not None:
        behavior["debounce_delay"] = int(app_config["FORMWIZARD_DEBOUNCE_MS"])
    if app_config.get("FORMWIZARD_VALIDATION_TIMEOUT") is not None:
        behavior["validation_timeout"] = float(app_config["FORMWIZARD_VALIDATION_TIMEOUT"])
    if app_config.get("FORMWIZARD_STORAGE_BACKEND"):
        persistence["storage_backend"] = app_config["FORMWIZARD_STORAGE_BACKEND"]
    if app_config.get("FORMWIZARD_URL_PREFIX"):
        overrides["url_prefix"] = app_config["FORMWIZARD_URL_PREFIX"]
    if behavior:
        overrides["behavior"] = behavior
    if persistence:
        overrides["persistence"] = persistence
    return create_custom_config(app_config.get("FORMWIZARD_PRESET", "default"), **overrides)
