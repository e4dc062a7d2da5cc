"""
Many-to-many relationship steps.

A relationship step stores, under its relationship property, a list of join
records in serialized ``RelationshipEntry`` form. Entries are created when the
user selects related entities, edited through the join fields, optionally
filled by a nested child session, and removed individually. They never get a
real identity before the parent submission succeeds.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..const import (
    FOREIGN_KEY_SUFFIX,
    LOGMSG_WAR_CHILD_PROGRESS_UNRESOLVED,
    RELATED_ENTITY_ID_KEY,
    RELATED_ENTITY_KEY,
    TRANSIENT_ENTRY_KEYS,
)
from ..exceptions import EntityMetadataError
from ..models.forms import (
    EntityMetadata,
    FieldMetadata,
    FormStep,
    FormSubmissionProgress,
    RelationshipEntry,
)
from .metadata import find_foreign_key_field_name

log = logging.getLogger(__name__)

MISSING_JOIN_ENTITY_TYPE = "missing-join-entity-type"
MISSING_JOIN_FIELDS = "missing-join-fields"


def get_many_to_many_step_issues(step: FormStep) -> List[Dict[str, str]]:
    """Configuration problems of a many-to-many step, empty for other steps"""
    if not step.is_many_to_many_relationship:
        return []
    issues = []
    if not step.join_entity_type:
        issues.append({
            "code": MISSING_JOIN_ENTITY_TYPE,
            "message": "Join entity type is required for many-to-many steps.",
        })
    if not step.sub_configuration_id and not step.child_form_steps:
        issues.append({
            "code": MISSING_JOIN_FIELDS,
            "message": (
                "Provide join fields by adding child steps or linking a join "
                "entity form configuration."
            ),
        })
    return issues


def relationship_field_name(step: FormStep) -> Optional[str]:
    return step.related_entity_property_name or None


def _related_entity_field(
    join_metadata: EntityMetadata, parent_entity_type: Optional[str]
) -> Optional[FieldMetadata]:
    parent = (parent_entity_type or "").lower()
    back_references = []
    for meta in join_metadata.fields:
        if not meta.is_related_entity or not meta.related_entity_type:
            continue
        if parent and meta.related_entity_type.lower() == parent:
            back_references.append(meta)
            continue
        return meta
    # self-referential join: the navigation not named after the parent type
    for meta in back_references:
        if meta.field_name.lower() != parent:
            return meta
    return None


def resolve_join_foreign_key(
    join_metadata: Optional[EntityMetadata], parent_entity_type: Optional[str] = None
) -> Tuple[str, str]:
    """
    Find the related entity type and foreign-key field of a join entity.

    The related entity is the navigation property of the join entity that does
    not point back at the parent entity type.

    Returns:
        ``(related_entity_type, foreign_key_field_name)``

    Raises:
        EntityMetadataError: when the metadata is missing or declares no usable
            related entity with a foreign key
    """
    if join_metadata is None:
        raise EntityMetadataError("Join entity metadata is missing")
    navigation = _related_entity_field(join_metadata, parent_entity_type)
    if navigation is None:
        raise EntityMetadataError(
            f"Join entity {join_metadata.entity_name} declares no related entity",
            entity_type_name=join_metadata.entity_name,
        )
    related_type = navigation.related_entity_type
    if related_type.lower() == (parent_entity_type or "").lower():
        # <Parent>Id is the parent's own key here
        candidates = [navigation.field_name]
    else:
        candidates = [related_type, navigation.field_name]
    foreign_key = None
    for candidate in candidates:
        foreign_key = find_foreign_key_field_name(candidate, join_metadata.fields)
        if foreign_key is not None:
            break
    if foreign_key is None:
        raise EntityMetadataError(
            f"Join entity {join_metadata.entity_name} has no foreign key for "
            f"{related_type} (expected {related_type}{FOREIGN_KEY_SUFFIX})",
            entity_type_name=join_metadata.entity_name,
        )
    return related_type, foreign_key


def _get_case_insensitive(data: Dict[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    lowered = key.lower()
    for candidate, value in data.items():
        if str(candidate).lower() == lowered:
            return value
    return None


def extract_related_entity_id(data: Dict[str, Any], foreign_key_field: Optional[str] = None) -> Any:
    """Related entity id of a join record: explicit id, foreign key, or embedded entity"""
    related_id = data.get(RELATED_ENTITY_ID_KEY)
    if related_id is None and foreign_key_field:
        related_id = _get_case_insensitive(data, foreign_key_field)
    if related_id is None:
        related_entity = data.get(RELATED_ENTITY_KEY)
        if isinstance(related_entity, dict):
            related_id = related_entity.get("id")
    return related_id


def _same_id(left: Any, right: Any) -> bool:
    return left is not None and right is not None and str(left) == str(right)


class RelationshipEditor:
    """
    Edits the relationship list of one many-to-many step.

    All operations take the current serialized entry list and return a new
    list; the input is never mutated.
    """

    def __init__(
        self,
        step: FormStep,
        join_metadata: Optional[EntityMetadata] = None,
        parent_entity_type: Optional[str] = None,
    ):
        self.step = step
        self.join_metadata = join_metadata
        self.parent_entity_type = parent_entity_type
        self._resolved: Optional[Tuple[str, str]] = None

    @property
    def field_name(self) -> Optional[str]:
        return relationship_field_name(self.step)

    def _resolve(self) -> Tuple[str, str]:
        if self._resolved is None:
            self._resolved = resolve_join_foreign_key(self.join_metadata, self.parent_entity_type)
        return self._resolved

    @property
    def related_entity_type(self) -> str:
        return self._resolve()[0]

    @property
    def foreign_key_field(self) -> str:
        return self._resolve()[1]

    def default_join_values(self) -> Dict[str, Any]:
        """Defaults of the join fields declared by the step's child steps"""
        defaults = {}
        for child_step in self.step.child_form_steps:
            for form_field in child_step.fields:
                if form_field.default_value is not None:
                    defaults[form_field.field_name] = form_field.default_value
        return defaults

    def add_relationships(
        self, entries: Optional[List[Dict[str, Any]]], selected_entities: Iterable[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Append an entry for every selected entity not already present.

        Raises:
            EntityMetadataError: when the join foreign key cannot be resolved
        """
        foreign_key = self.foreign_key_field
        result = [dict(entry) for entry in entries or []]
        present = {str(entry.get(RELATED_ENTITY_ID_KEY)) for entry in result}
        for entity in selected_entities:
            entity_id = entity.get("id")
            if entity_id is None or str(entity_id) in present:
                continue
            values = self.default_join_values()
            values[foreign_key] = entity_id
            entry = RelationshipEntry(
                related_entity_id=entity_id,
                related_entity=dict(entity),
                values=values,
            )
            result.append(entry.to_dict())
            present.add(str(entity_id))
        return result

    def remove_relationship(self, entries: List[Dict[str, Any]], index: int) -> List[Dict[str, Any]]:
        if index < 0 or index >= len(entries):
            raise IndexError(f"No relationship at index {index}")
        return [dict(entry) for position, entry in enumerate(entries) if position != index]

    def update_relationship(
        self, entries: List[Dict[str, Any]], index: int, field_name: str, value: Any
    ) -> List[Dict[str, Any]]:
        if index < 0 or index >= len(entries):
            raise IndexError(f"No relationship at index {index}")
        if field_name in TRANSIENT_ENTRY_KEYS:
            raise ValueError(f"{field_name} cannot be edited")
        result = [dict(entry) for entry in entries]
        result[index][field_name] = value
        return result

    def apply_child_result(
        self,
        entries: List[Dict[str, Any]],
        index: int,
        child_progress_id: Optional[str],
        values: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Write the values of a completed join-entry session back into an entry"""
        if index < 0 or index >= len(entries):
            raise IndexError(f"No relationship at index {index}")
        result = [dict(entry) for entry in entries]
        entry = RelationshipEntry.from_dict(result[index])
        entry.values.update(_join_values(values))
        if child_progress_id is not None:
            entry.child_progress_id = child_progress_id
        result[index] = entry.to_dict()
        return result

    def merge_child_progresses(
        self,
        entries: Optional[List[Dict[str, Any]]],
        child_progresses: Iterable[FormSubmissionProgress],
    ) -> List[Dict[str, Any]]:
        """
        Merge join-entry child sessions back into the relationship list.

        Children of other entity types are ignored. A child matches an entry by
        its progress id, or else by the related entity id found in its data; a
        match updates the entry, a child with a resolvable related id and no
        match appends a new entry. Merging twice gives the same list.
        """
        join_type = (self.step.join_entity_type or "").lower()
        foreign_key = self._foreign_key_or_none()
        result = [RelationshipEntry.from_dict(entry) for entry in entries or []]

        for child in child_progresses:
            if (child.entity_type_name or "").lower() != join_type:
                continue
            data = child.flattened_data()
            related_id = extract_related_entity_id(data, foreign_key)
            target = next(
                (entry for entry in result if _same_id(entry.child_progress_id, child.id)),
                None,
            )
            if target is None:
                target = next(
                    (entry for entry in result if _same_id(entry.related_entity_id, related_id)),
                    None,
                )
            if target is not None:
                target.values.update(_join_values(data))
                target.child_progress_id = child.id
                continue
            if related_id is None:
                log.warning(LOGMSG_WAR_CHILD_PROGRESS_UNRESOLVED.format(child.id))
                continue
            values = self.default_join_values()
            values.update(_join_values(data))
            if foreign_key:
                values[foreign_key] = related_id
            related_entity = data.get(RELATED_ENTITY_KEY)
            result.append(RelationshipEntry(
                related_entity_id=related_id,
                related_entity=related_entity if isinstance(related_entity, dict) else None,
                values=values,
                child_progress_id=child.id,
            ))
        return [entry.to_dict() for entry in result]

    def _foreign_key_or_none(self) -> Optional[str]:
        if self.join_metadata is None:
            return None
        try:
            return self.foreign_key_field
        except EntityMetadataError as e:
            log.warning(f"Relationship step {self.step.step_name}: {e.message}")
            return None


def _join_values(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value for key, value in (data or {}).items()
        if key not in TRANSIENT_ENTRY_KEYS and key != "id"
    }
