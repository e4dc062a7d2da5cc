"""
Static collaborators backed by dictionaries or JSON files.

The JSON layout accepted by ``from_json_file`` is::

    {"configurations": [<FormConfiguration DTO>, ...],
     "metadata": [<EntityMetadata DTO>, ...]}
"""
import copy
import itertools
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from marshmallow import ValidationError

from ..exceptions import ConfigurationError
from ..models.forms import EntityMetadata, FormConfiguration, FormField, FormStep, PagedResult
from .interfaces import (
    ConfigurationProvider,
    EntityBrowser,
    EntityDataSource,
    MetadataProvider,
)
from .schemas import configuration_schema, entity_metadata_schema

log = logging.getLogger(__name__)

ConfigurationSource = Union[FormConfiguration, Dict[str, Any]]
MetadataSource = Union[EntityMetadata, Dict[str, Any]]


def load_configuration(data: ConfigurationSource) -> FormConfiguration:
    """
    Load a configuration DTO.

    Raises:
        ConfigurationError: when the DTO does not match the configuration schema
    """
    if isinstance(data, FormConfiguration):
        return data
    try:
        return configuration_schema.load(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid form configuration: {e.messages}", {"errors": e.messages}
        ) from e


def load_entity_metadata(data: MetadataSource) -> EntityMetadata:
    if isinstance(data, EntityMetadata):
        return data
    try:
        return entity_metadata_schema.load(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid entity metadata: {e.messages}", {"errors": e.messages}
        ) from e


def read_definitions_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf8") as f:
            content = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e
    if isinstance(content, list):
        content = {"configurations": content}
    if not isinstance(content, dict):
        raise ConfigurationError(f"{path} must contain an object or a list")
    return content


class StaticConfigurationProvider(ConfigurationProvider):
    def __init__(self, configurations: Iterable[ConfigurationSource] = ()):
        self.configurations: List[FormConfiguration] = [
            load_configuration(item) for item in configurations
        ]

    @classmethod
    def from_json_file(cls, path: str) -> "StaticConfigurationProvider":
        return cls(read_definitions_file(path).get("configurations", []))

    def add(self, configuration: ConfigurationSource) -> FormConfiguration:
        loaded = load_configuration(configuration)
        self.configurations.append(loaded)
        return loaded

    async def get_configuration(self, configuration_id: Any) -> Optional[FormConfiguration]:
        for configuration in self.configurations:
            if configuration.id is not None and str(configuration.id) == str(configuration_id):
                return copy.deepcopy(configuration)
        return None

    async def get_default_configuration(self, entity_type_name: str) -> Optional[FormConfiguration]:
        candidates = [
            configuration for configuration in self.configurations
            if configuration.is_active
            and configuration.is_default
            and configuration.entity_type_name.lower() == entity_type_name.lower()
        ]
        if len(candidates) > 1:
            raise ConfigurationError(
                f"Several default configurations exist for {entity_type_name}",
                {"entity_type_name": entity_type_name},
            )
        return copy.deepcopy(candidates[0]) if candidates else None

    async def get_reusable_steps(self) -> List[FormStep]:
        return [
            copy.deepcopy(step)
            for configuration in self.configurations
            for step in configuration.steps
            if step.is_reusable
        ]

    async def get_reusable_fields(self) -> List[FormField]:
        return [
            copy.deepcopy(form_field)
            for configuration in self.configurations
            for form_field in configuration.all_fields()
            if form_field.is_reusable
        ]


class StaticMetadataProvider(MetadataProvider):
    def __init__(self, metadata: Iterable[MetadataSource] = ()):
        self.metadata: Dict[str, EntityMetadata] = {}
        for item in metadata:
            loaded = load_entity_metadata(item)
            self.metadata[loaded.entity_name.lower()] = loaded

    @classmethod
    def from_json_file(cls, path: str) -> "StaticMetadataProvider":
        return cls(read_definitions_file(path).get("metadata", []))

    async def get_entity_metadata(self, entity_type_name: str) -> Optional[EntityMetadata]:
        if not entity_type_name:
            return None
        return self.metadata.get(entity_type_name.lower())


class MemoryEntityStore(EntityDataSource, EntityBrowser):
    """
    In-memory entity data source and browser.

    Entities are plain dictionaries grouped by entity type name; created
    entities get sequential integer ids.
    """

    def __init__(self, entities: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.entities: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        for entity_type_name, items in (entities or {}).items():
            for item in items:
                self._put(entity_type_name, dict(item))

    def _bucket(self, entity_type_name: str) -> Dict[Any, Dict[str, Any]]:
        return self.entities.setdefault(entity_type_name.lower(), {})

    def _put(self, entity_type_name: str, entity: Dict[str, Any]) -> Dict[str, Any]:
        if entity.get("id") is None:
            bucket = self._bucket(entity_type_name)
            entity["id"] = next(self._ids)
            while str(entity["id"]) in {str(key) for key in bucket}:
                entity["id"] = next(self._ids)
        self._bucket(entity_type_name)[str(entity["id"])] = entity
        return entity

    async def fetch_by_id(self, entity_type_name: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        entity = self._bucket(entity_type_name).get(str(entity_id))
        return copy.deepcopy(entity) if entity is not None else None

    async def create(self, entity_type_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        entity = copy.deepcopy(payload)
        entity.pop("id", None)
        return copy.deepcopy(self._put(entity_type_name, entity))

    async def update(self, entity_type_name: str, entity_id: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
        bucket = self._bucket(entity_type_name)
        if str(entity_id) not in bucket:
            raise KeyError(f"{entity_type_name} {entity_id} not found")
        entity = bucket[str(entity_id)]
        stored_id = entity["id"]
        entity.update(copy.deepcopy(payload))
        entity["id"] = stored_id
        return copy.deepcopy(entity)

    async def browse(
        self,
        entity_type_name: str,
        page: int = 1,
        page_size: int = 25,
        search: Optional[str] = None,
    ) -> PagedResult:
        items = list(self._bucket(entity_type_name).values())
        if search:
            needle = search.lower()
            items = [
                item for item in items
                if any(needle in str(value).lower() for value in item.values())
            ]
        page = max(page, 1)
        start = (page - 1) * page_size
        return PagedResult(
            items=copy.deepcopy(items[start:start + page_size]),
            page=page,
            page_size=page_size,
            total_count=len(items),
        )
