"""
Tests for DTO schemas and the static collaborators
"""

import json

import pytest

from conftest import ITEM_CONFIGURATION, run
from flask_formwizard.exceptions import ConfigurationError
from flask_formwizard.forms.providers import (
    load_configuration,
    load_entity_metadata,
    MemoryEntityStore,
    read_definitions_file,
    StaticConfigurationProvider,
    StaticMetadataProvider,
)
from flask_formwizard.forms.schemas import (
    PagedResultSchema,
    progress_schema,
    validation_result_schema,
)
from flask_formwizard.models.forms import FormSubmissionProgress, PagedResult


class TestConfigurationSchema:
    """Test loading camelCase configuration DTOs"""

    def test_nested_load(self, configuration):
        assert configuration.entity_type_name == "ItemBlueprint"
        assert configuration.is_default
        basics, enchantments, _ = configuration.steps
        assert basics.stable_id == "step-basics"
        assert basics.fields[0].validations[0].error_message == "Name {name} is taken"
        assert basics.fields[0].validations[0].is_blocking
        assert basics.fields[3].dependency_condition_json is not None
        assert enchantments.is_many_to_many_relationship
        assert enchantments.child_form_steps[0].fields[0].default_value == 1

    def test_unknown_keys_ignored(self):
        configuration = load_configuration({
            "entityTypeName": "Thing",
            "createdBy": "someone",
            "steps": [{"stepName": "One", "color": "red", "fields": []}],
        })
        assert configuration.steps[0].step_name == "One"

    def test_invalid_condition_type(self):
        with pytest.raises(ConfigurationError) as excinfo:
            load_configuration({
                "entityTypeName": "Thing",
                "steps": [{
                    "stepName": "One",
                    "conditions": [{"conditionType": "Exit", "conditionJson": "{}"}],
                }],
            })
        assert "errors" in excinfo.value.details

    def test_missing_entity_type(self):
        with pytest.raises(ConfigurationError):
            load_configuration({"steps": []})

    def test_entity_metadata(self, item_metadata):
        assert item_metadata.get_field("CATEGORY").is_related_entity
        assert item_metadata.get_field("rarity").has_default_value
        assert item_metadata.field_names[:2] == ["id", "name"]

    def test_invalid_metadata(self):
        with pytest.raises(ConfigurationError):
            load_entity_metadata({"fields": []})


class TestProgressSchema:
    def test_dump_uses_camel_case(self):
        progress = FormSubmissionProgress(
            form_configuration_id=1,
            id="p-1",
            current_step_index=2,
            status="Paused",
            child_progresses=[FormSubmissionProgress(form_configuration_id=2, id="c-1")],
        )
        dumped = progress_schema.dump(progress)
        assert dumped["formConfigurationId"] == 1
        assert dumped["currentStepIndex"] == 2
        assert dumped["status"] == "Paused"
        assert dumped["childProgresses"][0]["id"] == "c-1"

    def test_load(self):
        progress = progress_schema.load({
            "formConfigurationId": 1,
            "allStepsDataJson": json.dumps({"0": {"name": "Axe"}, "meta": {}}),
            "status": "Completed",
        })
        assert progress.is_terminal
        assert progress.all_steps_data() == {0: {"name": "Axe"}}

    def test_entity_id_keeps_its_type(self):
        for entity_id in (5, "a-17", None):
            progress = FormSubmissionProgress(
                form_configuration_id=1,
                entity_id=FormSubmissionProgress.encode_entity_id(entity_id),
            )
            assert progress.decoded_entity_id() == entity_id
        assert FormSubmissionProgress(form_configuration_id=1, entity_id="x9").decoded_entity_id() == "x9"


class TestValidationResultSchema:
    def test_load(self):
        result = validation_result_schema.load({
            "isValid": False,
            "isBlocking": True,
            "message": "Region {region} is outside",
            "placeholders": {"region": "north"},
            "metadata": {"checked": 3},
        })
        assert result.blocks
        assert result.placeholders == {"region": "north"}
        assert result.metadata == {"checked": 3}


class TestStaticConfigurationProvider:
    """Test lookup rules of the static configuration provider"""

    @pytest.fixture
    def provider(self):
        return StaticConfigurationProvider([
            ITEM_CONFIGURATION,
            {
                "id": 2,
                "entityTypeName": "ItemBlueprint",
                "isDefault": True,
                "isActive": False,
                "steps": [{"stepName": "Old", "isReusable": True, "fields": [
                    {"fieldName": "legacy", "isReusable": True}
                ]}],
            },
        ])

    def test_get_by_id_compares_as_string(self, provider):
        assert run(provider.get_configuration("1")).id == 1
        assert run(provider.get_configuration(1)).id == 1
        assert run(provider.get_configuration(3)) is None

    def test_returns_copies(self, provider):
        first = run(provider.get_configuration(1))
        first.steps.clear()
        assert len(run(provider.get_configuration(1)).steps) == 3

    def test_default_ignores_inactive(self, provider):
        assert run(provider.get_default_configuration("itemblueprint")).id == 1
        assert run(provider.get_default_configuration("Category")) is None

    def test_ambiguous_default(self, provider):
        provider.add(dict(ITEM_CONFIGURATION, id=5))
        with pytest.raises(ConfigurationError):
            run(provider.get_default_configuration("ItemBlueprint"))

    def test_reusable_items(self, provider):
        assert [step.step_name for step in run(provider.get_reusable_steps())] == ["Old"]
        assert [item.field_name for item in run(provider.get_reusable_fields())] == ["legacy"]


class TestDefinitionsFile:
    def test_object_layout(self, tmp_path):
        path = tmp_path / "definitions.json"
        path.write_text(json.dumps({
            "configurations": [ITEM_CONFIGURATION],
            "metadata": [{"entityName": "ItemBlueprint", "fields": []}],
        }))
        configurations = StaticConfigurationProvider.from_json_file(str(path))
        metadata = StaticMetadataProvider.from_json_file(str(path))
        assert len(configurations.configurations) == 1
        assert run(metadata.get_entity_metadata("ITEMBLUEPRINT")).entity_name == "ItemBlueprint"
        assert run(metadata.get_entity_metadata("")) is None

    def test_list_layout(self, tmp_path):
        path = tmp_path / "definitions.json"
        path.write_text(json.dumps([ITEM_CONFIGURATION]))
        assert read_definitions_file(str(path)) == {"configurations": [ITEM_CONFIGURATION]}

    def test_unreadable(self, tmp_path):
        with pytest.raises(ConfigurationError):
            read_definitions_file(str(tmp_path / "missing.json"))
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            read_definitions_file(str(path))
        path.write_text('"text"')
        with pytest.raises(ConfigurationError):
            read_definitions_file(str(path))


class TestMemoryEntityStore:
    """Test the in-memory entity source and browser"""

    @pytest.fixture
    def store(self):
        return MemoryEntityStore({
            "EnchantmentDefinition": [
                {"id": 1, "name": "Sharpness"},
                {"id": 2, "name": "Smite"},
                {"id": 3, "name": "Unbreaking"},
            ]
        })

    def test_fetch(self, store):
        assert run(store.fetch_by_id("enchantmentdefinition", "2")) == {"id": 2, "name": "Smite"}
        assert run(store.fetch_by_id("EnchantmentDefinition", 9)) is None

    def test_create_assigns_free_id(self, store):
        created = run(store.create("EnchantmentDefinition", {"id": 1, "name": "Fortune"}))
        assert created == {"id": 4, "name": "Fortune"}

    def test_update(self, store):
        updated = run(store.update("EnchantmentDefinition", 2, {"name": "Smite II", "id": 99}))
        assert updated == {"id": 2, "name": "Smite II"}
        with pytest.raises(KeyError):
            run(store.update("EnchantmentDefinition", 42, {}))

    def test_browse_pages_and_search(self, store):
        page = run(store.browse("EnchantmentDefinition", page=2, page_size=2))
        assert [item["id"] for item in page.items] == [3]
        assert page.total_count == 3
        found = run(store.browse("EnchantmentDefinition", search="SMI"))
        assert [item["name"] for item in found.items] == ["Smite"]

    def test_paged_result_dump(self):
        dumped = PagedResultSchema().dump(
            PagedResult(items=[{"id": 1}], page=1, page_size=10, total_count=1)
        )
        assert dumped == {"items": [{"id": 1}], "pageNumber": 1, "pageSize": 10, "totalCount": 1}
