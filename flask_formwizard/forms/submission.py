"""
Submission normalization.

Turns the flattened wizard state into the payload sent to the entity data
source: embedded related objects become foreign-key scalars, relationship
lists become clean join records, and UI-only keys are stripped. Anything that
cannot be mapped raises ``NormalizationError`` instead of being dropped.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..const import (
    FOREIGN_KEY_LIST_SUFFIX,
    FOREIGN_KEY_SUFFIX,
    LOGMSG_ERR_NORMALIZATION,
    TRANSIENT_ENTRY_KEYS,
)
from ..exceptions import EntityMetadataError, NormalizationError
from ..models.forms import EntityMetadata, FormConfiguration, FormField, FormStep
from .metadata import find_foreign_key_field_name
from .normalization import is_empty_value
from .relationships import extract_related_entity_id, resolve_join_foreign_key

log = logging.getLogger(__name__)


def to_foreign_key_name(navigation_property_name: str) -> str:
    if navigation_property_name.endswith(FOREIGN_KEY_SUFFIX):
        return navigation_property_name
    return navigation_property_name + FOREIGN_KEY_SUFFIX


def to_foreign_key_list_name(collection_name: str) -> str:
    """``items`` -> ``itemIds``, ``tag`` -> ``tagIds``"""
    if collection_name.endswith(FOREIGN_KEY_LIST_SUFFIX):
        return collection_name
    if collection_name.endswith("s"):
        return collection_name[:-1] + FOREIGN_KEY_LIST_SUFFIX
    return collection_name + FOREIGN_KEY_LIST_SUFFIX


def _is_embedded_object(value: Any) -> bool:
    return isinstance(value, Mapping)


class SubmissionNormalizer:
    """
    Maps flattened wizard data to an entity payload.

    Args:
        configuration: the form configuration the data was collected with
        entity_metadata: metadata of the configuration's entity type
        join_metadata: metadata of every join entity type used by the
            configuration's many-to-many steps, keyed by entity type name
    """

    def __init__(
        self,
        configuration: FormConfiguration,
        entity_metadata: Optional[EntityMetadata] = None,
        join_metadata: Optional[Dict[str, EntityMetadata]] = None,
    ):
        self.configuration = configuration
        self.entity_metadata = entity_metadata
        self.join_metadata = join_metadata or {}

    def normalize(self, raw: Mapping[str, Any], entity_id: Any = None) -> Dict[str, Any]:
        """
        Build the entity payload.

        Args:
            raw: flattened wizard data
            entity_id: id of the edited entity, injected as ``id`` when given

        Raises:
            NormalizationError: naming the field that could not be mapped
        """
        try:
            payload = self._normalize(raw)
        except NormalizationError as e:
            log.error(LOGMSG_ERR_NORMALIZATION.format(
                self.configuration.entity_type_name, e.message
            ))
            raise
        if entity_id is not None:
            payload["id"] = entity_id
        return payload

    def _normalize(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        join_steps = self._join_steps_by_field()

        for step in self.configuration.steps:
            for form_field in step.fields:
                name = form_field.field_name
                if name not in raw:
                    continue
                value = raw[name]
                if name in join_steps:
                    payload[name] = self.normalize_join_entries(join_steps[name], name, value)
                elif form_field.is_object:
                    self._normalize_object(form_field, value, payload)
                elif form_field.is_object_collection:
                    self._normalize_collection(form_field, value, payload)
                elif self._is_related_by_metadata(name):
                    self._normalize_object(form_field, value, payload)
                else:
                    payload[name] = value

        for key, value in raw.items():
            if key in payload or key in TRANSIENT_ENTRY_KEYS:
                continue
            if self.configuration.find_field(key) is not None:
                continue
            if key.endswith(FOREIGN_KEY_SUFFIX) and _is_embedded_object(value):
                payload[key] = self._extract_id(key, value)
            else:
                payload[key] = value
        return payload

    def _join_steps_by_field(self) -> Dict[str, FormStep]:
        steps = {}
        for step in self.configuration.steps:
            if step.is_many_to_many_relationship and step.related_entity_property_name:
                steps[step.related_entity_property_name] = step
        return steps

    def _is_related_by_metadata(self, field_name: str) -> bool:
        if self.entity_metadata is None:
            return False
        meta = self.entity_metadata.get_field(field_name)
        return meta is not None and meta.is_related_entity

    def _extract_id(self, field_name: str, value: Any, index: Optional[int] = None) -> Any:
        if not _is_embedded_object(value):
            return value
        entity_id = value.get("id")
        if entity_id is None:
            raise NormalizationError(
                f"Field {field_name} holds a related object without an id",
                field_name=field_name,
                entity_type_name=self.configuration.entity_type_name,
                index=index,
            )
        return entity_id

    def _foreign_key_for(self, field_name: str) -> str:
        if self.entity_metadata is not None and not field_name.endswith(FOREIGN_KEY_SUFFIX):
            declared = find_foreign_key_field_name(field_name, self.entity_metadata.fields)
            if declared:
                return declared
        return to_foreign_key_name(field_name)

    def _normalize_object(self, form_field: FormField, value: Any, payload: Dict[str, Any]) -> None:
        name = form_field.field_name
        if value is None or (_is_embedded_object(value) and not value):
            if name.endswith(FOREIGN_KEY_SUFFIX):
                payload[name] = None
            return
        payload[self._foreign_key_for(name)] = self._extract_id(name, value)

    def _normalize_collection(self, form_field: FormField, value: Any, payload: Dict[str, Any]) -> None:
        name = form_field.field_name
        if value is None:
            return
        if not isinstance(value, (list, tuple)):
            payload[name] = value
            return
        payload[to_foreign_key_list_name(name)] = [
            self._extract_id(name, item, index)
            for index, item in enumerate(value)
            if item is not None
        ]

    def normalize_join_entries(self, step: FormStep, field_name: str, entries: Any) -> List[Dict[str, Any]]:
        """
        Convert relationship entries into join records.

        Raises:
            NormalizationError: when the join metadata is absent or an entry
                has no resolvable related entity id
        """
        if entries is None:
            return []
        if not isinstance(entries, (list, tuple)):
            raise NormalizationError(
                f"Relationship {field_name} must be a list",
                field_name=field_name,
                entity_type_name=step.join_entity_type,
            )
        if not entries:
            return []
        join_type = step.join_entity_type
        metadata = self.join_metadata.get(join_type) if join_type else None
        if metadata is None:
            raise NormalizationError(
                f"Join entity metadata is missing for {join_type or 'an undeclared join type'} "
                f"(relationship {field_name})",
                field_name=field_name,
                entity_type_name=join_type,
            )
        try:
            _, foreign_key = resolve_join_foreign_key(
                metadata, self.configuration.entity_type_name
            )
        except EntityMetadataError as e:
            raise NormalizationError(
                f"{e.message} (relationship {field_name})",
                field_name=field_name,
                entity_type_name=join_type,
            ) from e

        records = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                raise NormalizationError(
                    f"Relationship {field_name} entry {index} is not an object",
                    field_name=field_name,
                    entity_type_name=join_type,
                    index=index,
                )
            related_id = extract_related_entity_id(dict(entry), foreign_key)
            if _is_embedded_object(related_id):
                related_id = related_id.get("id")
            if related_id is None:
                raise NormalizationError(
                    f"Relationship {field_name} entry {index} is missing a related "
                    f"entity selection",
                    field_name=field_name,
                    entity_type_name=join_type,
                    index=index,
                )
            record = {
                key: value for key, value in entry.items()
                if key not in TRANSIENT_ENTRY_KEYS and key.lower() != foreign_key.lower()
            }
            if record.get("id") is None:
                record.pop("id", None)
            record[foreign_key] = related_id
            records.append(record)
        return records


def validate_required_fields(
    payload: Mapping[str, Any], entity_metadata: EntityMetadata
) -> List[str]:
    """
    Names of non-nullable metadata fields without default that the payload
    leaves empty. Related-entity navigation properties are skipped since the
    payload carries their foreign keys instead.
    """
    missing = []
    for meta in entity_metadata.fields:
        if meta.is_nullable or meta.has_default_value or meta.is_related_entity:
            continue
        if meta.field_name.lower() == "id":
            continue
        value = payload.get(meta.field_name)
        if value is None:
            lowered = meta.field_name.lower()
            value = next(
                (item for key, item in payload.items() if key.lower() == lowered), None
            )
        if is_empty_value(value):
            missing.append(meta.field_name)
    return missing


def check_required_fields(
    payload: Mapping[str, Any], entity_metadata: EntityMetadata
) -> None:
    """Raise NormalizationError when ``validate_required_fields`` finds gaps"""
    missing = validate_required_fields(payload, entity_metadata)
    if missing:
        raise NormalizationError(
            f"Missing required fields for {entity_metadata.entity_name}: {', '.join(missing)}",
            field_name=missing[0],
            entity_type_name=entity_metadata.entity_name,
        )
