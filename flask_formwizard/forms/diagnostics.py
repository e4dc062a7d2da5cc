"""
Configuration health checks.

Collects the problems of a form configuration that would otherwise only show
up while a user walks through the wizard: many-to-many steps without join
information, fields whose type needs an element or object type, order lists
naming unknown items, relationship properties without a field, rules that
depend on unknown fields and malformed condition JSON.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..models.forms import EntityMetadata, FieldType, FormConfiguration
from .conditions import collect_condition_diagnostics
from .ordering import unknown_order_ids
from .relationships import get_many_to_many_step_issues
from .submission import to_foreign_key_name

log = logging.getLogger(__name__)


@dataclass
class HealthReport:
    """Result of checking one configuration"""
    configuration_id: Optional[str]
    entity_type_name: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return not self.errors


def check_configuration(
    configuration: FormConfiguration, entity_metadata: Optional[EntityMetadata] = None
) -> HealthReport:
    """
    Check a configuration for structural problems.

    Args:
        configuration: the configuration to check
        entity_metadata: metadata of the configuration's entity type; enables
            the check for required entity fields no step collects
    """
    report = HealthReport(
        configuration_id=str(configuration.id) if configuration.id is not None else None,
        entity_type_name=configuration.entity_type_name,
    )

    for identifier in unknown_order_ids(configuration.steps, configuration.step_order_json):
        report.warnings.append(f"Step order references unknown step '{identifier}'")

    for step in configuration.steps:
        for issue in get_many_to_many_step_issues(step):
            report.errors.append(f"Step '{step.step_name}': {issue['message']} ({issue['code']})")

        field_names = {form_field.field_name for form_field in step.fields}
        if (
            step.is_many_to_many_relationship
            and step.related_entity_property_name
            and step.related_entity_property_name not in field_names
        ):
            report.warnings.append(
                f"Step '{step.step_name}': relationship property "
                f"'{step.related_entity_property_name}' is not declared as a field"
            )

        for identifier in unknown_order_ids(step.fields, step.field_order_json):
            report.warnings.append(
                f"Step '{step.step_name}': field order references unknown field '{identifier}'"
            )

        for form_field in step.fields:
            location = f"Field '{step.step_name}.{form_field.field_name}'"
            if form_field.field_type == FieldType.LIST and not form_field.element_type:
                report.errors.append(f"{location}: List fields need an elementType")
            if form_field.field_type == FieldType.OBJECT and not form_field.object_type:
                report.errors.append(f"{location}: Object fields need an objectType")
            for rule in form_field.validations:
                if rule.depends_on_field_id is None:
                    continue
                if configuration.find_field_by_id(rule.depends_on_field_id) is None:
                    report.warnings.append(
                        f"{location}: rule {rule.validation_type} depends on unknown "
                        f"field {rule.depends_on_field_id}"
                    )

    for diagnostic in collect_condition_diagnostics(configuration):
        report.errors.append(f"Malformed condition at {diagnostic['location']}: {diagnostic['reason']}")

    if entity_metadata is not None:
        declared = set()
        for form_field in configuration.all_fields():
            declared.add(form_field.field_name.lower())
            if form_field.is_object:
                declared.add(to_foreign_key_name(form_field.field_name).lower())
        for meta in entity_metadata.fields:
            if meta.is_nullable or meta.has_default_value or meta.is_related_entity:
                continue
            if meta.field_name.lower() == "id" or meta.field_name.lower() in declared:
                continue
            report.warnings.append(
                f"Required field '{meta.field_name}' of {entity_metadata.entity_name} "
                f"is not collected by any step"
            )

    log.debug(
        f"Checked configuration {report.configuration_id}: "
        f"{len(report.errors)} errors, {len(report.warnings)} warnings"
    )
    return report


def duplicate_defaults(configurations: Iterable[FormConfiguration]) -> Dict[str, int]:
    """Entity types with more than one active default configuration"""
    counts = Counter(
        configuration.entity_type_name.lower()
        for configuration in configurations
        if configuration.is_default and configuration.is_active
    )
    return {name: count for name, count in counts.items() if count > 1}
