import logging
from typing import Any, Dict, Mapping, Optional

from ..models.forms import AllStepsData, FormConfiguration, FormStep, StepData

log = logging.getLogger(__name__)


def normalize_step(step: FormStep, partial_data: Optional[Mapping[str, Any]] = None) -> StepData:
    """
    Give every declared field of a step an explicit value.

    A key present in ``partial_data`` wins even when its value is ``None``;
    otherwise the field default is used, otherwise ``None``. Keys that are not
    declared fields of the step are dropped.
    """
    partial_data = partial_data or {}
    normalized: StepData = {}
    for form_field in step.fields:
        if form_field.field_name in partial_data:
            normalized[form_field.field_name] = partial_data[form_field.field_name]
        elif form_field.default_value is not None:
            normalized[form_field.field_name] = form_field.default_value
        else:
            normalized[form_field.field_name] = None
    return normalized


def normalize_all(
    configuration: FormConfiguration,
    partial_all_steps_data: Optional[Mapping[int, Mapping[str, Any]]] = None,
) -> AllStepsData:
    partial_all_steps_data = partial_all_steps_data or {}
    result: AllStepsData = {}
    for index, step in enumerate(configuration.steps):
        result[index] = normalize_step(step, partial_all_steps_data.get(index))
    log.debug(
        f"Normalized {len(result)} steps for {configuration.entity_type_name}"
    )
    return result


def flatten_all_steps(all_steps_data: Mapping[int, Mapping[str, Any]]) -> Dict[str, Any]:
    """Merge all steps into one mapping; on key collisions the later step wins"""
    flat: Dict[str, Any] = {}
    for index in sorted(all_steps_data):
        flat.update(all_steps_data[index] or {})
    return flat


def is_empty_value(value: Any) -> bool:
    """Emptiness used by required-field checks: None, empty string, empty list"""
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return True
    return False
