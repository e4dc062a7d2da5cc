"""Foreign-key and navigation-property lookups driven by entity metadata."""
from typing import Iterable, Optional

from ..const import FOREIGN_KEY_SUFFIX
from ..models.forms import FieldMetadata


def find_foreign_key_field_name(
    navigation_property_name: str, fields: Iterable[FieldMetadata]
) -> Optional[str]:
    """
    Find the foreign-key field backing a navigation property.

    Args:
        navigation_property_name: e.g. ``Town``
        fields: metadata fields of the owning entity

    Returns:
        the declared field name (``TownId``) or ``None``
    """
    expected = (navigation_property_name + FOREIGN_KEY_SUFFIX).lower()
    for meta in fields:
        if meta.field_name.lower() == expected:
            return meta.field_name
    return None


def find_navigation_property_name(
    foreign_key_name: str, fields: Iterable[FieldMetadata]
) -> Optional[str]:
    """Find the related-entity navigation property for a foreign-key field"""
    if not foreign_key_name.endswith(FOREIGN_KEY_SUFFIX):
        return None
    expected = foreign_key_name[: -len(FOREIGN_KEY_SUFFIX)].lower()
    for meta in fields:
        if meta.field_name.lower() == expected and meta.is_related_entity:
            return meta.field_name
    return None
