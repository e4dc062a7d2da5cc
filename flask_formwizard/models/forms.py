"""
Form wizard domain models.

Plain dataclasses describing form configurations, entity metadata, validation
rules and results, relationship entries and persisted submission progress.
Collaborator DTOs are converted into these types by the marshmallow schemas in
``flask_formwizard.forms.schemas``; the engine itself only sees snake_case
attributes.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..const import (
    CHILD_PROGRESS_ID_KEY,
    LOGMSG_WAR_UNPARSABLE_STEP_DATA,
    RELATED_ENTITY_ID_KEY,
    RELATED_ENTITY_KEY,
)

log = logging.getLogger(__name__)

StepData = Dict[str, Any]
AllStepsData = Dict[int, StepData]


class FieldType(str, Enum):
    """Field types a form field can declare."""
    STRING = "String"
    INTEGER = "Integer"
    BOOLEAN = "Boolean"
    DATETIME = "DateTime"
    DECIMAL = "Decimal"
    ENUM = "Enum"
    OBJECT = "Object"
    LIST = "List"
    HYBRID_MATERIAL_PICKER = "HybridMinecraftMaterialRefPicker"
    HYBRID_ENCHANTMENT_PICKER = "HybridMinecraftEnchantmentRefPicker"


class ConditionOperator(str, Enum):
    EQUALS = "Equals"
    NOT_EQUALS = "NotEquals"
    GREATER_THAN = "GreaterThan"
    LESS_THAN = "LessThan"
    CONTAINS = "Contains"
    IS_EMPTY = "IsEmpty"
    IS_NOT_EMPTY = "IsNotEmpty"


class ConditionType(str, Enum):
    ENTRY = "Entry"
    COMPLETION = "Completion"


class FormSubmissionStatus(str, Enum):
    """Persisted status of a form submission progress."""
    IN_PROGRESS = "InProgress"
    PAUSED = "Paused"
    COMPLETED = "Completed"
    ABANDONED = "Abandoned"


TERMINAL_STATUSES = (FormSubmissionStatus.COMPLETED, FormSubmissionStatus.ABANDONED)


@dataclass
class ValidationRule:
    """A validation rule attached to a form field."""
    validation_type: str
    form_field_id: Any = None
    id: Any = None
    depends_on_field_id: Any = None
    dependency_path: Optional[str] = None
    config_json: str = "{}"
    error_message: str = ""
    success_message: Optional[str] = None
    is_blocking: bool = True
    requires_dependency_filled: bool = False


@dataclass
class ValidationResult:
    """Outcome of one validation execution for a field."""
    is_valid: bool
    is_blocking: bool = False
    message: Optional[str] = None
    placeholders: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def blocks(self) -> bool:
        return not self.is_valid and self.is_blocking

    @classmethod
    def execution_failure(cls, message: str) -> 'ValidationResult':
        """Blocking result used when the rule check itself could not run"""
        return cls(is_valid=False, is_blocking=True, message=message)


@dataclass
class StepCondition:
    condition_type: str
    condition_json: str
    id: Any = None
    error_message: Optional[str] = None
    is_active: bool = True


@dataclass
class FormField:
    """
    A single field of a form step.

    ``field_name`` is the data key the value is stored under; ``stable_id`` is
    the identifier referenced by the step's field order list.
    """
    field_name: str
    field_type: str = FieldType.STRING.value
    label: str = ""
    id: Any = None
    field_guid: Optional[str] = None
    order: int = 0
    is_required: bool = False
    is_read_only: bool = False
    default_value: Any = None
    element_type: Optional[str] = None
    object_type: Optional[str] = None
    dependency_condition_json: Optional[str] = None
    settings_json: Optional[str] = None
    sub_configuration_id: Any = None
    is_reusable: bool = False
    source_field_id: Any = None
    is_linked_to_source: bool = False
    can_create: bool = False
    min_selection: Optional[int] = None
    max_selection: Optional[int] = None
    validations: List[ValidationRule] = field(default_factory=list)

    @property
    def stable_id(self) -> str:
        for candidate in (self.field_guid, self.id):
            if candidate is not None and candidate != "":
                return str(candidate)
        return self.field_name

    @property
    def is_collection(self) -> bool:
        return self.field_type == FieldType.LIST

    @property
    def is_object(self) -> bool:
        return self.field_type == FieldType.OBJECT

    @property
    def is_object_collection(self) -> bool:
        return self.is_collection and (
            self.element_type == FieldType.OBJECT or bool(self.object_type)
        )

    @property
    def has_rules(self) -> bool:
        return bool(self.validations)


@dataclass
class FormStep:
    """One page of a wizard; either a plain field group or a many-to-many editor."""
    step_name: str
    fields: List[FormField] = field(default_factory=list)
    id: Any = None
    step_guid: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    order: int = 0
    field_order_json: Optional[str] = None
    conditions: List[StepCondition] = field(default_factory=list)
    is_many_to_many_relationship: bool = False
    related_entity_property_name: Optional[str] = None
    join_entity_type: Optional[str] = None
    sub_configuration_id: Any = None
    parent_step_id: Any = None
    child_form_steps: List['FormStep'] = field(default_factory=list)
    is_reusable: bool = False
    source_step_id: Any = None
    is_linked_to_source: bool = False

    @property
    def stable_id(self) -> str:
        for candidate in (self.step_guid, self.id):
            if candidate is not None and candidate != "":
                return str(candidate)
        return self.step_name

    def get_field(self, field_name: str) -> Optional[FormField]:
        for form_field in self.fields:
            if form_field.field_name == field_name:
                return form_field
        return None

    def active_conditions(self, condition_type: ConditionType) -> List[StepCondition]:
        return [
            condition for condition in self.conditions
            if condition.is_active and condition.condition_type == condition_type
        ]


@dataclass
class FormConfiguration:
    """Declarative description of a multi-step form for one entity type."""
    entity_type_name: str
    steps: List[FormStep] = field(default_factory=list)
    id: Any = None
    configuration_name: str = ""
    description: Optional[str] = None
    is_default: bool = False
    is_active: bool = True
    step_order_json: Optional[str] = None

    def all_fields(self) -> List[FormField]:
        return [form_field for step in self.steps for form_field in step.fields]

    def find_field(self, field_name: str) -> Optional[FormField]:
        for form_field in self.all_fields():
            if form_field.field_name == field_name:
                return form_field
        return None

    def find_field_by_id(self, field_id: Any) -> Optional[FormField]:
        if field_id is None:
            return None
        for form_field in self.all_fields():
            if form_field.id is not None and str(form_field.id) == str(field_id):
                return form_field
        return None


@dataclass
class FieldMetadata:
    field_name: str
    field_type: str = ""
    is_nullable: bool = True
    is_related_entity: bool = False
    related_entity_type: Optional[str] = None
    has_default_value: bool = False
    default_value: Optional[str] = None


@dataclass
class EntityMetadata:
    entity_name: str
    display_name: str = ""
    fields: List[FieldMetadata] = field(default_factory=list)

    def get_field(self, field_name: str) -> Optional[FieldMetadata]:
        """Case-insensitive lookup of a field by name"""
        lowered = field_name.lower()
        for meta in self.fields:
            if meta.field_name.lower() == lowered:
                return meta
        return None

    @property
    def field_names(self) -> List[str]:
        return [meta.field_name for meta in self.fields]


@dataclass
class RelationshipEntry:
    """
    One row of a many-to-many relationship (a join record).

    ``related_entity`` is kept for display only and ``child_progress_id`` links
    the entry to the nested session that filled its extra fields. In step data
    entries are stored in their serialized dictionary form (see ``to_dict``).
    """
    related_entity_id: Any = None
    related_entity: Optional[Dict[str, Any]] = None
    values: Dict[str, Any] = field(default_factory=dict)
    child_progress_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.values)
        data[RELATED_ENTITY_ID_KEY] = self.related_entity_id
        if self.related_entity is not None:
            data[RELATED_ENTITY_KEY] = self.related_entity
        if self.child_progress_id is not None:
            data[CHILD_PROGRESS_ID_KEY] = self.child_progress_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RelationshipEntry':
        values = dict(data or {})
        related_entity_id = values.pop(RELATED_ENTITY_ID_KEY, None)
        related_entity = values.pop(RELATED_ENTITY_KEY, None)
        child_progress_id = values.pop(CHILD_PROGRESS_ID_KEY, None)
        return cls(
            related_entity_id=related_entity_id,
            related_entity=related_entity,
            values=values,
            child_progress_id=child_progress_id,
        )


def _parse_steps_json(raw: Optional[str], progress_id: Any) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        log.warning(LOGMSG_WAR_UNPARSABLE_STEP_DATA.format(progress_id, e))
        return {}
    if not isinstance(parsed, dict):
        log.warning(LOGMSG_WAR_UNPARSABLE_STEP_DATA.format(progress_id, "not an object"))
        return {}
    return parsed


@dataclass
class FormSubmissionProgress:
    """Durable, resumable snapshot of one wizard session."""
    form_configuration_id: Any
    current_step_index: int = 0
    current_step_data_json: str = "{}"
    all_steps_data_json: str = "{}"
    id: Optional[str] = None
    user_id: Optional[str] = None
    entity_type_name: Optional[str] = None
    entity_id: Optional[str] = None
    parent_progress_id: Optional[str] = None
    status: str = FormSubmissionStatus.IN_PROGRESS.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    child_progresses: List['FormSubmissionProgress'] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @staticmethod
    def encode_entity_id(entity_id: Any) -> Optional[str]:
        """Store the edited entity's id JSON encoded so its type survives a resume"""
        if entity_id is None:
            return None
        return json.dumps(entity_id, default=str)

    def decoded_entity_id(self) -> Any:
        """
        The edited entity's id with its original type.

        Values that are not valid JSON, such as ids written by other
        clients, are returned unchanged.
        """
        if self.entity_id is None:
            return None
        try:
            return json.loads(self.entity_id)
        except (TypeError, ValueError):
            return self.entity_id

    def current_step_data(self) -> StepData:
        return _parse_steps_json(self.current_step_data_json, self.id)

    def all_steps_data(self) -> AllStepsData:
        """Parse the all-steps blob, skipping keys that are not step indexes"""
        result: AllStepsData = {}
        for key, value in _parse_steps_json(self.all_steps_data_json, self.id).items():
            try:
                index = int(key)
            except (TypeError, ValueError):
                continue
            result[index] = value if isinstance(value, dict) else {}
        return result

    def flattened_data(self) -> Dict[str, Any]:
        """All step values merged into one mapping, later steps winning"""
        flat: Dict[str, Any] = {}
        for index in sorted(self.all_steps_data()):
            flat.update(self.all_steps_data()[index])
        return flat


@dataclass
class ValidateFieldRequest:
    field_id: Any
    field_value: Any = None
    dependency_value: Any = None
    form_context_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PlaceholderResolutionRequest:
    field_validation_rule_id: Any = None
    entity_type_name: Optional[str] = None
    entity_id: Any = None
    placeholder_paths: List[str] = field(default_factory=list)
    current_entity_placeholders: Dict[str, str] = field(default_factory=dict)
    context_data: Dict[str, str] = field(default_factory=dict)


@dataclass
class PlaceholderResolutionError:
    placeholder_path: str
    error_code: str = ""
    message: str = ""


@dataclass
class PlaceholderResolutionResponse:
    resolved_placeholders: Dict[str, str] = field(default_factory=dict)
    resolution_errors: List[PlaceholderResolutionError] = field(default_factory=list)
    total_placeholders_requested: int = 0
    is_successful: bool = True


@dataclass
class PagedResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    page: int = 1
    page_size: int = 25
    total_count: int = 0
