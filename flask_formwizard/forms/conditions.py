"""
Condition evaluation for field visibility and step Entry/Completion gating.

Condition JSON has the shape::

    {"conditions": [{"fieldName": "type", "operator": "Equals", "value": "A",
                     "fromPreviousStep": false}],
     "logic": "AND"}

It is parsed once into a small tagged tree (``ConditionGroup`` of
``FieldCondition``) after a JSON Schema shape check. Anything missing or
malformed parses to ``MalformedCondition``, which evaluates as met: a broken
condition never hides a field or blocks a step.
"""
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from jsonschema import Draft7Validator

from ..const import LOGMSG_WAR_UNPARSABLE_CONDITION
from ..models.forms import ConditionOperator, FormConfiguration
from .normalization import is_empty_value

log = logging.getLogger(__name__)

CONDITION_SCHEMA = {
    "type": "object",
    "properties": {
        "conditions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "fieldName": {"type": "string", "minLength": 1},
                    "operator": {"enum": [operator.value for operator in ConditionOperator]},
                    "fromPreviousStep": {"type": "boolean"},
                },
                "required": ["fieldName", "operator"],
            },
        },
        "logic": {"enum": ["AND", "OR"]},
    },
    "required": ["conditions"],
}

_validator = Draft7Validator(CONDITION_SCHEMA)


@dataclass(frozen=True)
class FieldCondition:
    field_name: str
    operator: ConditionOperator
    value_json: str = "null"
    from_previous_step: bool = False

    @property
    def value(self) -> Any:
        # parsed trees are cached and shared, each read gets a fresh copy
        return json.loads(self.value_json)


@dataclass(frozen=True)
class ConditionGroup:
    conditions: Tuple[FieldCondition, ...]
    logic: str = "AND"


@dataclass(frozen=True)
class MalformedCondition:
    raw: str
    reason: str


ParsedCondition = Union[ConditionGroup, MalformedCondition, None]


@lru_cache(maxsize=512)
def parse_condition(condition_json: Optional[str]) -> ParsedCondition:
    """
    Parse condition JSON into a condition tree.

    Returns ``None`` for a missing or blank condition and a
    ``MalformedCondition`` when the JSON or its shape is invalid.
    """
    if condition_json is None or not condition_json.strip():
        return None
    try:
        raw = json.loads(condition_json)
    except ValueError as e:
        log.warning(LOGMSG_WAR_UNPARSABLE_CONDITION.format(condition_json, e))
        return MalformedCondition(condition_json, f"invalid JSON: {e}")

    errors = sorted(_validator.iter_errors(raw), key=lambda error: list(error.path))
    if errors:
        reason = errors[0].message
        log.warning(LOGMSG_WAR_UNPARSABLE_CONDITION.format(condition_json, reason))
        return MalformedCondition(condition_json, reason)

    conditions = tuple(
        FieldCondition(
            field_name=item["fieldName"],
            operator=ConditionOperator(item["operator"]),
            value_json=json.dumps(item.get("value")),
            from_previous_step=bool(item.get("fromPreviousStep", False)),
        )
        for item in raw["conditions"]
    )
    return ConditionGroup(conditions=conditions, logic=raw.get("logic", "AND"))


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ConditionEvaluator:
    """Evaluates serialized conditions against current and cross-step data."""

    def evaluate(
        self,
        condition_json: Optional[str],
        current_step_data: Mapping[str, Any],
        all_steps_data: Mapping[int, Mapping[str, Any]],
    ) -> bool:
        parsed = parse_condition(condition_json)
        if parsed is None or isinstance(parsed, MalformedCondition):
            return True
        if not parsed.conditions:
            return True
        results = [
            self.evaluate_condition(condition, current_step_data, all_steps_data)
            for condition in parsed.conditions
        ]
        if parsed.logic == "OR":
            return any(results)
        return all(results)

    def evaluate_condition(
        self,
        condition: FieldCondition,
        current_step_data: Mapping[str, Any],
        all_steps_data: Mapping[int, Mapping[str, Any]],
    ) -> bool:
        if condition.from_previous_step:
            value = self.find_in_steps(condition.field_name, all_steps_data)
        else:
            value = current_step_data.get(condition.field_name)
        expected = condition.value
        operator = condition.operator

        if operator == ConditionOperator.EQUALS:
            return value == expected
        elif operator == ConditionOperator.NOT_EQUALS:
            return value != expected
        elif operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            left, right = _to_number(value), _to_number(expected)
            if left is None or right is None:
                return False
            if operator == ConditionOperator.GREATER_THAN:
                return left > right
            return left < right
        elif operator == ConditionOperator.CONTAINS:
            return str(expected if expected is not None else "") in str(
                value if value is not None else ""
            )
        elif operator == ConditionOperator.IS_EMPTY:
            return is_empty_value(value)
        elif operator == ConditionOperator.IS_NOT_EMPTY:
            return not is_empty_value(value)
        log.warning(f"Unknown condition operator: {operator}")
        return False

    @staticmethod
    def find_in_steps(field_name: str, all_steps_data: Mapping[int, Mapping[str, Any]]) -> Any:
        """Look a field up across steps, newest step first"""
        for index in sorted(all_steps_data, reverse=True):
            step_data = all_steps_data[index] or {}
            if field_name in step_data:
                return step_data[field_name]
        return None


def collect_condition_diagnostics(configuration: FormConfiguration) -> List[Dict[str, str]]:
    """
    Report every malformed condition of a configuration.

    Returns:
        a list of ``{"location", "reason"}`` dictionaries, empty when every
        condition parses
    """
    diagnostics = []
    for step in configuration.steps:
        for condition in step.conditions:
            parsed = parse_condition(condition.condition_json)
            if isinstance(parsed, MalformedCondition):
                diagnostics.append({
                    "location": f"step '{step.step_name}' {condition.condition_type} condition",
                    "reason": parsed.reason,
                })
        for form_field in step.fields:
            parsed = parse_condition(form_field.dependency_condition_json)
            if isinstance(parsed, MalformedCondition):
                diagnostics.append({
                    "location": f"field '{step.step_name}.{form_field.field_name}'",
                    "reason": parsed.reason,
                })
    return diagnostics
