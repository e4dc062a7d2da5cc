"""
Tests for step data normalization
"""

from flask_formwizard.forms.normalization import (
    flatten_all_steps,
    is_empty_value,
    normalize_all,
    normalize_step,
)


class TestNormalizeStep:
    """Test that every declared field gets an explicit value"""

    def test_defaults_and_none(self, configuration):
        basics = configuration.steps[0]
        assert normalize_step(basics, {}) == {
            "name": None,
            "category": None,
            "rarity": "common",
            "loreText": None,
        }

    def test_present_key_wins_even_when_none(self, configuration):
        basics = configuration.steps[0]
        assert normalize_step(basics, {"rarity": None})["rarity"] is None

    def test_undeclared_keys_dropped(self, configuration):
        basics = configuration.steps[0]
        result = normalize_step(basics, {"name": "Axe", "legacy": 1})
        assert "legacy" not in result
        assert result["name"] == "Axe"

    def test_idempotent(self, configuration):
        basics = configuration.steps[0]
        once = normalize_step(basics, {"name": "Axe"})
        assert normalize_step(basics, once) == once


class TestNormalizeAll:
    """Test normalization across steps"""

    def test_every_step_present(self, configuration):
        result = normalize_all(configuration, {1: {"enchantments": []}})
        assert sorted(result) == [0, 1, 2]
        assert result[1] == {"enchantments": []}
        assert result[2] == {"notes": None}

    def test_flatten_later_step_wins(self):
        flat = flatten_all_steps({0: {"a": 1, "b": 2}, 1: {"b": 3}})
        assert flat == {"a": 1, "b": 3}


class TestIsEmptyValue:
    """Test emptiness used by required checks"""

    def test_empty_values(self):
        assert is_empty_value(None)
        assert is_empty_value("")
        assert is_empty_value("   ")
        assert is_empty_value([])

    def test_non_empty_values(self):
        assert not is_empty_value(0)
        assert not is_empty_value(False)
        assert not is_empty_value("x")
        assert not is_empty_value([None])
        assert not is_empty_value({})
