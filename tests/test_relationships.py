"""
Tests for many-to-many relationship steps
"""

import json

import pytest

from flask_formwizard.const import CHILD_PROGRESS_ID_KEY, RELATED_ENTITY_ID_KEY, RELATED_ENTITY_KEY
from flask_formwizard.exceptions import EntityMetadataError
from flask_formwizard.forms.metadata import find_foreign_key_field_name, find_navigation_property_name
from flask_formwizard.forms.providers import load_entity_metadata
from flask_formwizard.forms.relationships import (
    extract_related_entity_id,
    get_many_to_many_step_issues,
    MISSING_JOIN_ENTITY_TYPE,
    MISSING_JOIN_FIELDS,
    RelationshipEditor,
    resolve_join_foreign_key,
)
from flask_formwizard.models.forms import FormStep, FormSubmissionProgress


@pytest.fixture
def editor(configuration, join_metadata):
    return RelationshipEditor(configuration.steps[1], join_metadata, "ItemBlueprint")


def child_progress(progress_id, data, entity_type_name="ItemBlueprintEnchantment"):
    return FormSubmissionProgress(
        id=progress_id,
        form_configuration_id="join",
        entity_type_name=entity_type_name,
        all_steps_data_json=json.dumps({"0": data}),
        status="Completed",
    )


class TestForeignKeyLookups:
    def test_find_foreign_key_field_name(self, join_metadata):
        assert find_foreign_key_field_name(
            "EnchantmentDefinition", join_metadata.fields
        ) == "enchantmentDefinitionId"
        assert find_foreign_key_field_name("Town", join_metadata.fields) is None

    def test_find_navigation_property_name(self, join_metadata):
        assert find_navigation_property_name(
            "enchantmentDefinitionId", join_metadata.fields
        ) == "enchantmentDefinition"
        assert find_navigation_property_name("level", join_metadata.fields) is None

    def test_resolve_join_foreign_key_skips_parent(self, join_metadata):
        assert resolve_join_foreign_key(join_metadata, "ItemBlueprint") == (
            "EnchantmentDefinition",
            "enchantmentDefinitionId",
        )

    def test_resolve_join_foreign_key_self_referential(self):
        metadata = load_entity_metadata({
            "entityName": "DistrictNeighbour",
            "fields": [
                {"fieldName": "districtId", "fieldType": "Int32"},
                {
                    "fieldName": "district",
                    "isRelatedEntity": True,
                    "relatedEntityType": "District",
                },
                {"fieldName": "neighbourId", "fieldType": "Int32"},
                {
                    "fieldName": "neighbour",
                    "isRelatedEntity": True,
                    "relatedEntityType": "District",
                },
            ],
        })
        assert resolve_join_foreign_key(metadata, "District") == ("District", "neighbourId")

    def test_resolve_join_foreign_key_without_metadata(self):
        with pytest.raises(EntityMetadataError) as excinfo:
            resolve_join_foreign_key(None, "ItemBlueprint")
        assert "Join entity metadata is missing" in str(excinfo.value)


class TestStepIssues:
    def test_plain_step_has_no_issues(self):
        assert get_many_to_many_step_issues(FormStep(step_name="plain")) == []

    def test_missing_join_information(self):
        step = FormStep(step_name="m2m", is_many_to_many_relationship=True)
        codes = [issue["code"] for issue in get_many_to_many_step_issues(step)]
        assert codes == [MISSING_JOIN_ENTITY_TYPE, MISSING_JOIN_FIELDS]

    def test_sub_configuration_satisfies_join_fields(self):
        step = FormStep(
            step_name="m2m",
            is_many_to_many_relationship=True,
            join_entity_type="Join",
            sub_configuration_id=4,
        )
        assert get_many_to_many_step_issues(step) == []


class TestRelationshipEditor:
    """Test adding, editing and removing relationship entries"""

    def test_add_sets_foreign_key_and_defaults(self, editor):
        entries = editor.add_relationships([], [{"id": 7, "name": "Sharpness"}])
        assert entries == [{
            "level": 1,
            "enchantmentDefinitionId": 7,
            RELATED_ENTITY_ID_KEY: 7,
            RELATED_ENTITY_KEY: {"id": 7, "name": "Sharpness"},
        }]

    def test_add_skips_existing(self, editor):
        entries = editor.add_relationships([], [{"id": 7}])
        entries = editor.add_relationships(entries, [{"id": 7}, {"id": 8}, {"name": "no id"}])
        assert [entry[RELATED_ENTITY_ID_KEY] for entry in entries] == [7, 8]

    def test_add_without_metadata_fails(self, configuration):
        editor = RelationshipEditor(configuration.steps[1], None, "ItemBlueprint")
        with pytest.raises(EntityMetadataError):
            editor.add_relationships([], [{"id": 7}])

    def test_update_and_remove(self, editor):
        entries = editor.add_relationships([], [{"id": 7}, {"id": 8}])
        updated = editor.update_relationship(entries, 1, "level", 4)
        assert updated[1]["level"] == 4
        assert entries[1]["level"] == 1
        remaining = editor.remove_relationship(updated, 0)
        assert [entry[RELATED_ENTITY_ID_KEY] for entry in remaining] == [8]

    def test_out_of_range_and_transient_keys(self, editor):
        entries = editor.add_relationships([], [{"id": 7}])
        with pytest.raises(IndexError):
            editor.remove_relationship(entries, 3)
        with pytest.raises(ValueError):
            editor.update_relationship(entries, 0, RELATED_ENTITY_ID_KEY, 9)

    def test_apply_child_result(self, editor):
        entries = editor.add_relationships([], [{"id": 7}])
        result = editor.apply_child_result(entries, 0, "child-1", {"level": 5, "id": 99})
        assert result[0]["level"] == 5
        assert result[0][CHILD_PROGRESS_ID_KEY] == "child-1"
        assert "id" not in result[0]


class TestMergeChildProgresses:
    """Test merging join-entry child sessions on resume"""

    def test_match_by_child_progress_id(self, editor):
        entries = editor.apply_child_result(
            editor.add_relationships([], [{"id": 7}]), 0, "child-1", {"level": 2}
        )
        merged = editor.merge_child_progresses(entries, [child_progress("child-1", {"level": 6})])
        assert len(merged) == 1
        assert merged[0]["level"] == 6

    def test_match_by_related_id(self, editor):
        entries = editor.add_relationships([], [{"id": 7}])
        merged = editor.merge_child_progresses(
            entries, [child_progress("child-2", {"enchantmentDefinitionId": 7, "level": 3})]
        )
        assert len(merged) == 1
        assert merged[0]["level"] == 3
        assert merged[0][CHILD_PROGRESS_ID_KEY] == "child-2"

    def test_unmatched_child_appends_entry(self, editor):
        merged = editor.merge_child_progresses(
            [], [child_progress("child-3", {RELATED_ENTITY_ID_KEY: 8, "level": 2})]
        )
        assert merged == [{
            "level": 2,
            "enchantmentDefinitionId": 8,
            RELATED_ENTITY_ID_KEY: 8,
            CHILD_PROGRESS_ID_KEY: "child-3",
        }]

    def test_other_entity_types_ignored(self, editor):
        merged = editor.merge_child_progresses(
            [], [child_progress("child-4", {RELATED_ENTITY_ID_KEY: 8}, entity_type_name="Category")]
        )
        assert merged == []

    def test_unresolvable_child_skipped(self, editor):
        assert editor.merge_child_progresses([], [child_progress("child-5", {"level": 2})]) == []

    def test_merge_is_idempotent(self, editor):
        children = [
            child_progress("child-6", {RELATED_ENTITY_ID_KEY: 8, "level": 2}),
            child_progress("child-7", {"enchantmentDefinitionId": 7, "level": 4}),
        ]
        entries = editor.add_relationships([], [{"id": 7}])
        once = editor.merge_child_progresses(entries, children)
        twice = editor.merge_child_progresses(once, children)
        assert once == twice
        assert len(twice) == 2


class TestExtractRelatedEntityId:
    def test_priority(self):
        assert extract_related_entity_id({RELATED_ENTITY_ID_KEY: 1, "fkId": 2}, "fkId") == 1
        assert extract_related_entity_id({"FKID": 2}, "fkId") == 2
        assert extract_related_entity_id({RELATED_ENTITY_KEY: {"id": 3}}, "fkId") == 3
        assert extract_related_entity_id({}, "fkId") is None
