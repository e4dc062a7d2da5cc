"""
Order reconciliation.

A declared order is a serialized list of stable item identifiers. It is an
overlay: it may name items that no longer exist and may omit items that were
added later. ``reconcile_order`` always returns a permutation of the items.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from ..const import LOGMSG_WAR_UNPARSABLE_ORDER

log = logging.getLogger(__name__)

T = TypeVar("T")


def _stable_id(item: Any) -> str:
    return item.stable_id


def parse_order_list(order_json: Optional[str]) -> List[str]:
    """
    Parse a serialized order list into identifiers.

    Returns an empty list for missing, unparsable or non-list input.
    """
    if not order_json:
        return []
    try:
        parsed = json.loads(order_json)
    except (TypeError, ValueError):
        log.warning(LOGMSG_WAR_UNPARSABLE_ORDER.format(order_json))
        return []
    if not isinstance(parsed, list):
        log.warning(LOGMSG_WAR_UNPARSABLE_ORDER.format(order_json))
        return []
    return [str(identifier) for identifier in parsed if identifier is not None]


def reconcile_order(
    items: Sequence[T],
    order_json: Optional[str],
    key: Callable[[T], str] = _stable_id,
) -> List[T]:
    """
    Resolve a declared order against an unordered collection.

    Args:
        items: items in stored order
        order_json: serialized list of stable identifiers
        key: returns the stable identifier of an item

    Returns:
        the items listed in the order list first, then every unreferenced item
        in stored order
    """
    order = parse_order_list(order_json)
    if not order:
        log.debug(f"No usable order list, keeping stored order of {len(items)} items")
        return list(items)

    by_id: Dict[str, T] = {}
    for item in items:
        by_id.setdefault(key(item), item)

    result: List[T] = []
    emitted = set()
    for identifier in order:
        item = by_id.get(identifier)
        if item is None or id(item) in emitted:
            continue
        result.append(item)
        emitted.add(id(item))

    for item in items:
        if id(item) not in emitted:
            result.append(item)
            emitted.add(id(item))
    return result


def unknown_order_ids(
    items: Sequence[T],
    order_json: Optional[str],
    key: Callable[[T], str] = _stable_id,
) -> List[str]:
    """Identifiers in the order list that match no item"""
    known = {key(item) for item in items}
    return [identifier for identifier in parse_order_list(order_json) if identifier not in known]


def ordered_fields(step) -> list:
    return reconcile_order(step.fields, step.field_order_json)


def ordered_steps(configuration) -> list:
    return reconcile_order(configuration.steps, configuration.step_order_json)
