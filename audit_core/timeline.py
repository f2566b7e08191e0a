from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

INVALID_DATE = "Invalid Date"

COMMON_DATE_COLUMNS = ("created_timestamp", "updated_at", "timestamp", "date")
COMMON_ID_COLUMNS = ("uuid", "id", "entity_id")
SORT_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class TimelineColumns:
    date_column: str = ""
    identifier_column: str = ""
    detail_columns: List[str] = field(default_factory=list)


def parse_timestamp(value: object) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        ts = pd.to_datetime(text, errors="coerce", utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return ts


def date_sort_key(value: object) -> float:
    """Milliseconds since the epoch; unparsable or missing dates sort as 0."""
    ts = parse_timestamp(value)
    if ts is None:
        return 0.0
    # .value is nanoseconds and overflows outside 1677-2262
    return ts.timestamp() * 1000


def format_timeline_date(value: object) -> str:
    ts = parse_timestamp(value)
    if ts is None:
        return INVALID_DATE
    hour = ts.hour % 12 or 12
    meridiem = "AM" if ts.hour < 12 else "PM"
    return f"{ts.strftime('%b')} {ts.day}, {ts.year}, {hour}:{ts.minute:02d}:{ts.second:02d} {meridiem}"


def default_timeline_columns(headers: Sequence[str]) -> TimelineColumns:
    if not headers:
        return TimelineColumns()
    date_col = next((h for h in headers if h.lower() in COMMON_DATE_COLUMNS), headers[0])
    id_col = next((h for h in headers if h.lower() in COMMON_ID_COLUMNS), headers[0])
    if len(headers) > 1:
        others = [h for h in headers if h not in (date_col, id_col)]
        detail = [others[0]] if others else [headers[0]]
    else:
        detail = [headers[0]]
    return TimelineColumns(date_column=date_col, identifier_column=id_col, detail_columns=detail)


def unique_identifiers(rows: pd.DataFrame, identifier_column: str) -> List[str]:
    if not identifier_column or identifier_column not in rows.columns:
        return []
    values = rows[identifier_column].fillna("").astype(str)
    return [v for v in pd.unique(values) if v]


def group_timeline(
    rows: pd.DataFrame,
    identifier_column: str,
    selected_identifiers: Iterable[str],
    date_column: str,
    sort_order: str = "asc",
) -> Dict[str, pd.DataFrame]:
    """Rows of the selected identifiers, date-sorted, grouped by identifier.

    Group order follows first occurrence in the sorted sequence; each group
    keeps the sorted order and the original index labels.
    """
    selected = {str(s) for s in selected_identifiers if str(s)}
    if not selected or not identifier_column or identifier_column not in rows.columns:
        return {}
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"sort_order must be one of {SORT_ORDERS}, got {sort_order!r}")

    ids = rows[identifier_column].fillna("").astype(str)
    subset = rows[ids.isin(selected)]
    if subset.empty:
        return {}

    if date_column and date_column in subset.columns:
        keys = subset[date_column].map(date_sort_key)
    else:
        keys = pd.Series(0.0, index=subset.index)
    if sort_order == "desc":
        keys = -keys
    ordered = subset.loc[keys.sort_values(kind="mergesort").index]

    groups: Dict[str, pd.DataFrame] = {}
    for ident, group in ordered.groupby(ordered[identifier_column].fillna("").astype(str), sort=False):
        groups[str(ident)] = group
    return groups


def timeline_events(groups: Dict[str, pd.DataFrame], date_column: str, detail_columns: Sequence[str]) -> List[dict]:
    """Flatten grouped rows into JSON-ready timeline entries."""
    out: List[dict] = []
    for ident, group in groups.items():
        entries = []
        for global_index, row in group.iterrows():
            raw_date = row.get(date_column, "") if date_column else ""
            entries.append(
                {
                    "global_index": int(global_index),
                    "date": raw_date,
                    "date_label": format_timeline_date(raw_date),
                    "details": {col: row.get(col, "") for col in detail_columns if col in group.columns},
                }
            )
        out.append({"identifier": ident, "entries": entries})
    return out
