from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import pandas as pd

FILTER_TYPES = ("contains", "equals")


@dataclass(frozen=True)
class FilterState:
    value: str
    type: str = "contains"


Filters = Mapping[str, FilterState]


def set_column_filter(filters: Filters, column: str, filter_state: Optional[FilterState]) -> Dict[str, FilterState]:
    """Return a new filter mapping with ``column`` set, replaced or removed.

    A filter whose value is blank after trimming clears the column instead of
    matching everything.
    """
    updated = dict(filters)
    if filter_state is None or not str(filter_state.value).strip():
        updated.pop(column, None)
    else:
        updated[column] = filter_state
    return updated


def normalize_filters(raw: Optional[Mapping[str, object]]) -> Dict[str, FilterState]:
    """Build a filter mapping from untrusted input (API payloads, session state)."""
    out: Dict[str, FilterState] = {}
    for column, entry in (raw or {}).items():
        if entry is None:
            continue
        if isinstance(entry, FilterState):
            value, ftype = entry.value, entry.type
        elif isinstance(entry, Mapping):
            value, ftype = entry.get("value"), entry.get("type") or "contains"
        else:
            value, ftype = entry, "contains"
        if value is None or not str(value).strip():
            continue
        ftype = str(ftype).lower()
        if ftype not in FILTER_TYPES:
            continue
        out[str(column)] = FilterState(value=str(value), type=ftype)
    return out


def _column_text(rows: pd.DataFrame, column: str) -> pd.Series:
    if column not in rows.columns:
        return pd.Series("", index=rows.index, dtype=object)
    return rows[column].fillna("").astype(str).str.lower()


def apply_filters(rows: pd.DataFrame, filters: Filters) -> pd.DataFrame:
    """AND every column predicate over ``rows``; index labels are kept.

    With no filters the input frame itself is returned.
    """
    if not filters:
        return rows
    mask = pd.Series(True, index=rows.index)
    for column, f in filters.items():
        cells = _column_text(rows, column)
        needle = f.value.lower()
        if f.type == "contains":
            mask &= cells.str.contains(needle, regex=False)
        elif f.type == "equals":
            mask &= cells == needle
    return rows[mask]


def describe_filters(filters: Filters) -> List[str]:
    return [f'{column} {f.type} "{f.value}"' for column, f in filters.items()]
