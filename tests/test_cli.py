"""
Tests for the formwizard command line tools
"""

import copy
import json

import pytest
from click.testing import CliRunner

from conftest import ITEM_CONFIGURATION, ITEM_METADATA, JOIN_METADATA
from flask_formwizard.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


def write_definitions(tmp_path, configurations, metadata=None):
    path = tmp_path / "definitions.json"
    path.write_text(json.dumps({"configurations": configurations, "metadata": metadata or []}))
    return str(path)


def broken_configuration():
    configuration = copy.deepcopy(ITEM_CONFIGURATION)
    configuration["id"] = 7
    configuration["isDefault"] = False
    configuration["steps"][2]["fields"].append({"fieldName": "tags", "fieldType": "List"})
    return configuration


def warning_configuration():
    configuration = copy.deepcopy(ITEM_CONFIGURATION)
    configuration["stepOrderJson"] = json.dumps(["step-review", "step-gone"])
    return configuration


class TestCheckConfig:
    """Test the check-config command"""

    def test_healthy(self, runner, tmp_path):
        path = write_definitions(tmp_path, [ITEM_CONFIGURATION], [ITEM_METADATA, JOIN_METADATA])
        result = runner.invoke(cli, ["check-config", path])
        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        assert "0 errors, 0 warnings" in result.output

    def test_errors_fail(self, runner, tmp_path):
        path = write_definitions(tmp_path, [broken_configuration()])
        result = runner.invoke(cli, ["check-config", path])
        assert result.exit_code == 1
        assert "List fields need an elementType" in result.output
        assert "1 errors, 0 warnings" in result.output

    def test_duplicate_defaults(self, runner, tmp_path):
        second = dict(copy.deepcopy(ITEM_CONFIGURATION), id=2)
        path = write_definitions(tmp_path, [ITEM_CONFIGURATION, second])
        result = runner.invoke(cli, ["check-config", path])
        assert result.exit_code == 1
        assert "2 active default configurations for itemblueprint" in result.output

    def test_strict_warnings(self, runner, tmp_path):
        path = write_definitions(tmp_path, [warning_configuration()])
        relaxed = runner.invoke(cli, ["check-config", path])
        assert relaxed.exit_code == 0
        assert "unknown step 'step-gone'" in relaxed.output
        strict = runner.invoke(cli, ["check-config", path, "--strict"])
        assert strict.exit_code == 1

    def test_unloadable_file(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{oops")
        result = runner.invoke(cli, ["check-config", str(path)])
        assert result.exit_code == 2

    def test_invalid_configuration(self, runner, tmp_path):
        path = write_definitions(tmp_path, [{"steps": []}])
        result = runner.invoke(cli, ["check-config", path])
        assert result.exit_code == 2


class TestShowOrder:
    """Test the show-order command"""

    def test_lists_steps_and_fields(self, runner, tmp_path):
        path = write_definitions(tmp_path, [warning_configuration()])
        result = runner.invoke(cli, ["show-order", path])
        assert result.exit_code == 0, result.output
        lines = [line for line in result.output.splitlines() if line.strip()]
        assert lines[2] == "1. Review"
        assert "2. Basics" in lines
        assert "     - name (String) *" in lines
        assert "3. Enchantments [many-to-many]" in lines

    def test_filter_by_id(self, runner, tmp_path):
        path = write_definitions(tmp_path, [ITEM_CONFIGURATION, broken_configuration()])
        result = runner.invoke(cli, ["show-order", path, "--configuration-id", "7"])
        assert result.exit_code == 0
        assert "     - tags (List)" in result.output
        missing = runner.invoke(cli, ["show-order", path, "--configuration-id", "99"])
        assert missing.exit_code == 1
        assert "No matching configuration" in missing.output
