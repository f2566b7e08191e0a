"""Audit-log row normalization.

A row carries an ``action`` plus either a ``payload`` (create) or a
``difference_list`` (update, delete, ...). Both shapes are turned into a list
of per-entity field changes. Malformed JSON yields no changes instead of an
error so one bad cell never breaks a page.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, List, Mapping, Optional, Tuple

from audit_core.values import INVALID_JSON, parse_json_cell

logger = logging.getLogger(__name__)

NOT_A_LIST = "Data is not an array of differences."


@dataclass(frozen=True)
class Difference:
    field: str
    old_value: Any = None
    new_value: Any = None
    label: Optional[str] = None


@dataclass(frozen=True)
class EntityChange:
    entity_id: str
    differences: List[Difference] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _is_null_cell(value: Any) -> bool:
    return value is None or (isinstance(value, str) and (not value.strip() or value.strip().lower() == "null"))


def _decode(value: Any) -> Tuple[bool, Any]:
    parsed = parse_json_cell(value)
    return parsed.ok, parsed.value


def _difference_from(item: Any) -> Difference:
    """One Difference per list item; items that are not objects carry no field or values."""
    if not isinstance(item, Mapping):
        return Difference(field="")
    old_value = item["oldValue"] if "oldValue" in item else item.get("old_value")
    new_value = item["newValue"] if "newValue" in item else item.get("new_value")
    label = item.get("label")
    return Difference(
        field=str(item.get("field", "")),
        old_value=old_value,
        new_value=new_value,
        label=str(label) if label else None,
    )


def _create_changes(row: Mapping[str, Any]) -> List[EntityChange]:
    payload = row.get("payload")
    if _is_null_cell(payload):
        return []
    ok, parsed = _decode(payload)
    if not ok:
        return []
    elements = parsed if isinstance(parsed, list) else [parsed]

    changes: List[EntityChange] = []
    for n, element in enumerate(elements, start=1):
        if isinstance(element, Mapping):
            id_key = next((k for k in ("uuid", "id") if element.get(k)), None)
            entity_id = element[id_key] if id_key else f"New Entity {n}"
            # the identifier field names the entity and is not listed as a change
            differences = [
                Difference(field=str(k), old_value=None, new_value=v) for k, v in element.items() if k != id_key
            ]
        else:
            entity_id = f"New Entity {n}"
            differences = []
        changes.append(EntityChange(entity_id=str(entity_id), differences=differences))
    return changes


def _update_changes(row: Mapping[str, Any]) -> List[EntityChange]:
    raw = row.get("difference_list")
    if _is_null_cell(raw):
        return []
    ok, parsed = _decode(raw)
    if not ok or not isinstance(parsed, list) or not parsed:
        return []
    differences = [_difference_from(item) for item in parsed]
    entity_id = row.get("uuid") or row.get("entity_id") or "Changed Entity"
    return [EntityChange(entity_id=str(entity_id), differences=differences)]


def normalize_log_entry(row: Mapping[str, Any]) -> List[EntityChange]:
    action = str(row.get("action") or "").strip().lower()
    try:
        if action == "create":
            return _create_changes(row)
        return _update_changes(row)
    except Exception:
        logger.debug("Could not normalize audit row (action=%r)", action, exc_info=True)
        return []


def parse_difference_list(cell: Any) -> Tuple[List[Difference], Optional[str]]:
    """Differences for the difference-list viewer plus an error message, if any."""
    if not isinstance(cell, str) or not cell:
        if isinstance(cell, list):
            return [_difference_from(item) for item in cell], None
        return [], None
    ok, parsed = _decode(cell)
    if not ok:
        return [], INVALID_JSON
    if not isinstance(parsed, list):
        return [], NOT_A_LIST
    return [_difference_from(item) for item in parsed], None


def difference_label(diff: Difference) -> str:
    return diff.label or diff.field.replace("_", " ")


def row_action_class(row: Mapping[str, Any]) -> str:
    action = str(row.get("action") or "").strip().lower()
    if action in ("create", "update", "delete"):
        return f"row-{action}"
    return ""
