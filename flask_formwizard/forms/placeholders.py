"""
Placeholder extraction, dependency-path navigation and message interpolation.

Layer 0 placeholders are plain field values of the current form. Deeper layers
(``Town.wgRegionId``, ``District.Town.Name``) need entity navigation and are
resolved by the validation service; see ``resolve_rule_placeholders``.
"""
import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from ..const import LOGMSG_WAR_PATH_NOT_OBJECT, LOGMSG_WAR_PATH_SEGMENT_MISSING
from ..models.forms import (
    FormConfiguration,
    PlaceholderResolutionRequest,
    ValidationRule,
)

log = logging.getLogger(__name__)

_placeholder_re = re.compile(r"\{([^}]+)\}")


def extract_placeholders(template: Optional[str]) -> List[str]:
    """Placeholder names in order of appearance, duplicates kept"""
    if not template:
        return []
    return _placeholder_re.findall(template)


def stringify_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def build_placeholder_context(
    configuration: FormConfiguration, all_steps_data: Mapping[int, Mapping[str, Any]]
) -> Dict[str, str]:
    """
    Build layer 0 placeholder values from the current form state.

    Every non-null value of every declared field of every step, stringified
    and keyed by field name.
    """
    placeholders: Dict[str, str] = {}
    for index, step in enumerate(configuration.steps):
        step_data = all_steps_data.get(index) or {}
        for form_field in step.fields:
            value = step_data.get(form_field.field_name)
            if value is not None:
                placeholders[form_field.field_name] = stringify_value(value)
    return placeholders


def resolve_dependency_path(
    context: Mapping[str, Any], root_field_name: str, path: Optional[str] = None
) -> Any:
    """
    Resolve a dependency value from form data.

    Args:
        context: flattened form data
        root_field_name: the field the dependency starts from
        path: dot separated property path below the root value

    Returns:
        the root value when no path is given, the navigated value otherwise,
        or ``None`` when any segment cannot be resolved. Never raises.
    """
    root = context.get(root_field_name) if context else None
    if not path or not path.strip():
        return root
    if root is None:
        return None

    current = root
    for segment in path.split("."):
        if current is None:
            return None
        if not isinstance(current, Mapping):
            log.warning(LOGMSG_WAR_PATH_NOT_OBJECT.format(segment, path))
            return None
        if segment in current:
            current = current[segment]
            continue
        lowered = segment.lower()
        matched = next((key for key in current if str(key).lower() == lowered), None)
        if matched is None:
            log.warning(LOGMSG_WAR_PATH_SEGMENT_MISSING.format(segment, path))
            return None
        current = current[matched]
    return current


def interpolate_placeholders(
    message: Optional[str], placeholders: Optional[Mapping[str, Any]] = None
) -> str:
    """
    Substitute ``{name}`` tokens with placeholder values.

    Replacement is sequential and literal: a value that itself contains a
    token may be replaced again by a later placeholder.
    """
    if not message:
        return ""
    if not placeholders:
        return message
    result = message
    for key, value in placeholders.items():
        result = result.replace("{" + key + "}", "" if value is None else str(value))
    return result


def split_placeholder_layers(names: List[str]) -> Dict[int, List[str]]:
    layers: Dict[int, List[str]] = {}
    for name in names:
        layers.setdefault(name.count("."), []).append(name)
    return layers


async def resolve_rule_placeholders(
    validation_service,
    rule: ValidationRule,
    configuration: FormConfiguration,
    all_steps_data: Mapping[int, Mapping[str, Any]],
    entity_id: Any = None,
) -> Dict[str, str]:
    """
    Resolve every placeholder used by a rule's messages.

    Layer 0 values come from the form; navigated placeholders are requested
    from the validation service and override layer 0 values with the same
    name. A service failure leaves the layer 0 values in place.
    """
    context = build_placeholder_context(configuration, all_steps_data)
    names = extract_placeholders(rule.error_message) + extract_placeholders(
        rule.success_message
    )
    navigated = [name for name in dict.fromkeys(names) if "." in name]
    if not navigated or validation_service is None:
        return context

    request = PlaceholderResolutionRequest(
        field_validation_rule_id=rule.id,
        entity_type_name=configuration.entity_type_name,
        entity_id=entity_id,
        placeholder_paths=navigated,
        current_entity_placeholders=context,
    )
    try:
        response = await validation_service.resolve_placeholders(request)
    except Exception as e:
        log.error(f"Placeholder resolution for rule {rule.id} failed: {e}")
        return context
    for error in response.resolution_errors:
        log.warning(
            f"Placeholder {error.placeholder_path} not resolved: {error.message}"
        )
    resolved = dict(context)
    resolved.update(response.resolved_placeholders or {})
    return resolved
