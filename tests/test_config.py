"""
Engine configuration tests
"""

import pytest

from flask_formwizard.config.wizard import (
    config_from_flask,
    create_custom_config,
    get_wizard_config,
    WizardBehaviorConfig,
    WizardEngineConfig,
)


class TestWizardEngineConfig:
    def test_defaults(self):
        config = WizardEngineConfig()
        assert config.behavior.debounce_delay == 300
        assert config.behavior.validation_timeout is None
        assert config.behavior.require_step_completion
        assert config.persistence.storage_backend == "memory"
        assert config.url_prefix == "/formwizard"
        assert config.validate_config() == []

    def test_validate_config(self):
        config = WizardEngineConfig(
            behavior=WizardBehaviorConfig(debounce_delay=-1, validation_timeout=0),
            url_prefix="wizard",
        )
        config.persistence.storage_backend = "redis"
        errors = config.validate_config()
        assert len(errors) == 4
        assert "Unknown storage backend 'redis'" in errors

    def test_dict_round_trip(self):
        config = create_custom_config(behavior={"debounce_delay": 50}, debug_mode=True)
        assert WizardEngineConfig.from_dict(config.to_dict()) == config

    def test_merge_with(self):
        base = get_wizard_config("strict")
        merged = base.merge_with(WizardEngineConfig(url_prefix="/forms"))
        assert merged.url_prefix == "/forms"
        assert merged.behavior.validation_timeout is None


class TestPresets:
    """Test named presets and overrides"""

    def test_strict(self):
        config = get_wizard_config("strict")
        assert config.behavior.validation_timeout == 10.0
        assert config.behavior.check_required_metadata
        assert config.persistence.storage_backend == "database"

    def test_presets_are_copies(self):
        config = get_wizard_config("relaxed")
        config.behavior.debounce_delay = 1
        assert get_wizard_config("relaxed").behavior.debounce_delay == 500

    def test_unknown_preset(self):
        with pytest.raises(ValueError) as excinfo:
            get_wizard_config("turbo")
        assert "strict" in str(excinfo.value)

    def test_custom_overrides_keep_other_values(self):
        config = create_custom_config("strict", behavior={"debounce_delay": 20})
        assert config.behavior.debounce_delay == 20
        assert config.behavior.validation_timeout == 10.0
        assert config.persistence.storage_backend == "database"


class TestFlaskConfig:
    def test_empty_app_config(self):
        assert config_from_flask({}) == WizardEngineConfig()

    def test_app_config_keys(self):
        config = config_from_flask({
            "FORMWIZARD_PRESET": "relaxed",
            "FORMWIZARD_DEBOUNCE_MS": "120",
            "FORMWIZARD_VALIDATION_TIMEOUT": 2,
            "FORMWIZARD_STORAGE_BACKEND": "database",
            "FORMWIZARD_URL_PREFIX": "/api/wizard",
        })
        assert config.behavior.debounce_delay == 120
        assert config.behavior.validation_timeout == 2.0
        assert not config.behavior.require_step_completion
        assert config.persistence.storage_backend == "database"
        assert config.url_prefix == "/api/wizard"
