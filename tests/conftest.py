"""
Shared fixtures for the form wizard tests

The sample domain is an item blueprint wizard: a basics step with a related
category, a many-to-many enchantments step backed by the
ItemBlueprintEnchantment join entity, and a review step.
"""

import asyncio
import copy
import json

import pytest

from flask_formwizard.config.wizard import create_custom_config
from flask_formwizard.forms.interfaces import ValidationService
from flask_formwizard.forms.persistence import MemoryProgressStore
from flask_formwizard.forms.providers import (
    load_configuration,
    load_entity_metadata,
    MemoryEntityStore,
    StaticConfigurationProvider,
    StaticMetadataProvider,
)
from flask_formwizard.forms.wizard import WizardCollaborators
from flask_formwizard.models.forms import PlaceholderResolutionResponse, ValidationResult


LORE_CONDITION = json.dumps({
    "conditions": [{"fieldName": "rarity", "operator": "Equals", "value": "legendary"}],
    "logic": "AND",
})

ITEM_CONFIGURATION = {
    "id": 1,
    "entityTypeName": "ItemBlueprint",
    "configurationName": "Item blueprint",
    "isDefault": True,
    "steps": [
        {
            "id": 10,
            "stepGuid": "step-basics",
            "stepName": "Basics",
            "title": "Basics",
            "fields": [
                {
                    "id": 100,
                    "fieldName": "name",
                    "label": "Name",
                    "fieldType": "String",
                    "isRequired": True,
                    "validations": [
                        {
                            "id": 1000,
                            "validationType": "UniqueName",
                            "errorMessage": "Name {name} is taken",
                            "isBlocking": True,
                        }
                    ],
                },
                {"id": 101, "fieldName": "category", "fieldType": "Object", "objectType": "Category"},
                {"id": 102, "fieldName": "rarity", "fieldType": "String", "defaultValue": "common"},
                {
                    "id": 103,
                    "fieldName": "loreText",
                    "label": "Lore",
                    "fieldType": "String",
                    "isRequired": True,
                    "dependencyConditionJson": LORE_CONDITION,
                },
            ],
        },
        {
            "id": 11,
            "stepGuid": "step-enchantments",
            "stepName": "Enchantments",
            "isManyToManyRelationship": True,
            "relatedEntityPropertyName": "enchantments",
            "joinEntityType": "ItemBlueprintEnchantment",
            "fields": [
                {
                    "id": 110,
                    "fieldName": "enchantments",
                    "fieldType": "List",
                    "elementType": "Object",
                    "objectType": "ItemBlueprintEnchantment",
                }
            ],
            "childFormSteps": [
                {
                    "stepName": "Join fields",
                    "fields": [
                        {"id": 111, "fieldName": "level", "fieldType": "Integer", "defaultValue": 1}
                    ],
                }
            ],
        },
        {
            "id": 12,
            "stepGuid": "step-review",
            "stepName": "Review",
            "fields": [{"id": 120, "fieldName": "notes", "fieldType": "String"}],
        },
    ],
}

ITEM_METADATA = {
    "entityName": "ItemBlueprint",
    "fields": [
        {"fieldName": "id", "fieldType": "Int32", "isNullable": False},
        {"fieldName": "name", "fieldType": "String", "isNullable": False},
        {"fieldName": "categoryId", "fieldType": "Int32", "isNullable": True},
        {
            "fieldName": "category",
            "fieldType": "Category",
            "isRelatedEntity": True,
            "relatedEntityType": "Category",
        },
        {"fieldName": "rarity", "fieldType": "String", "hasDefaultValue": True},
    ],
}

JOIN_METADATA = {
    "entityName": "ItemBlueprintEnchantment",
    "fields": [
        {"fieldName": "id", "fieldType": "Int32", "isNullable": False},
        {"fieldName": "itemBlueprintId", "fieldType": "Int32", "isNullable": False},
        {
            "fieldName": "itemBlueprint",
            "fieldType": "ItemBlueprint",
            "isRelatedEntity": True,
            "relatedEntityType": "ItemBlueprint",
        },
        {"fieldName": "enchantmentDefinitionId", "fieldType": "Int32", "isNullable": False},
        {
            "fieldName": "enchantmentDefinition",
            "fieldType": "EnchantmentDefinition",
            "isRelatedEntity": True,
            "relatedEntityType": "EnchantmentDefinition",
        },
        {"fieldName": "level", "fieldType": "Int32", "isNullable": False},
    ],
}

ENTITIES = {
    "Category": [{"id": 3, "name": "Weapons"}, {"id": 4, "name": "Armor"}],
    "EnchantmentDefinition": [
        {"id": 7, "name": "Sharpness"},
        {"id": 8, "name": "Unbreaking"},
    ],
}


class FakeValidationService(ValidationService):
    """
    Validation service answering from a ``field_id -> result`` table

    A table value may be a ``ValidationResult`` or a callable taking the
    request. Unknown fields are valid.
    """

    def __init__(self, results=None, delay=0.0, error=None, resolved=None):
        self.results = results or {}
        self.delay = delay
        self.error = error
        self.resolved = resolved or {}
        self.requests = []
        self.placeholder_requests = []

    async def validate_field(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        outcome = self.results.get(request.field_id, ValidationResult(is_valid=True))
        return outcome(request) if callable(outcome) else outcome

    async def resolve_placeholders(self, request):
        self.placeholder_requests.append(request)
        return PlaceholderResolutionResponse(
            resolved_placeholders=dict(self.resolved),
            total_placeholders_requested=len(request.placeholder_paths),
        )


def run(coroutine):
    return asyncio.run(coroutine)


@pytest.fixture
def configuration_dto():
    return copy.deepcopy(ITEM_CONFIGURATION)


@pytest.fixture
def configuration(configuration_dto):
    return load_configuration(configuration_dto)


@pytest.fixture
def item_metadata():
    return load_entity_metadata(copy.deepcopy(ITEM_METADATA))


@pytest.fixture
def join_metadata():
    return load_entity_metadata(copy.deepcopy(JOIN_METADATA))


@pytest.fixture
def validation_service():
    return FakeValidationService()


@pytest.fixture
def engine_config():
    return create_custom_config(behavior={"debounce_delay": 10})


def make_collaborators(validation_service=None, configurations=None, entities=None):
    entity_store = MemoryEntityStore(copy.deepcopy(entities if entities is not None else ENTITIES))
    return WizardCollaborators(
        configuration_provider=StaticConfigurationProvider(
            copy.deepcopy(configurations if configurations is not None else [ITEM_CONFIGURATION])
        ),
        metadata_provider=StaticMetadataProvider(
            [copy.deepcopy(ITEM_METADATA), copy.deepcopy(JOIN_METADATA)]
        ),
        validation_service=validation_service or FakeValidationService(),
        progress_store=MemoryProgressStore(),
        entity_source=entity_store,
        entity_browser=entity_store,
    )


@pytest.fixture
def collaborators(validation_service):
    return make_collaborators(validation_service)
