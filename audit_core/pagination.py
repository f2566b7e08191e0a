"""Pagination and row selection as one immutable view state.

Every UI event is a pure function ``(state, ...) -> state``. Selection holds
global row indices (DataFrame index labels assigned at parse time), so
duplicate rows never collide. The reset rule lives in ``_reset``: changing
the page size, the filters or the page always returns to an empty selection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from audit_core.config import ROWS_PER_PAGE_OPTIONS
from audit_core.filters import FilterState, Filters, set_column_filter


@dataclass(frozen=True)
class ViewState:
    current_page: int = 1
    rows_per_page: int = ROWS_PER_PAGE_OPTIONS[0]
    filters: Mapping[str, FilterState] = field(default_factory=dict)
    selection: FrozenSet[int] = frozenset()

    @property
    def has_filters(self) -> bool:
        return bool(self.filters)

    @property
    def selected_count(self) -> int:
        return len(self.selection)


def _reset(state: ViewState, **changes) -> ViewState:
    return replace(state, current_page=1, selection=frozenset(), **changes)


def total_pages(row_count: int, rows_per_page: int) -> int:
    return max(1, math.ceil(row_count / rows_per_page))


def page_slice(rows: pd.DataFrame, current_page: int, rows_per_page: int) -> pd.DataFrame:
    start = (current_page - 1) * rows_per_page
    return rows.iloc[start : start + rows_per_page]


def page_global_indices(page: pd.DataFrame) -> List[int]:
    return [int(i) for i in page.index]


def to_global_index(page: pd.DataFrame, local_index: int) -> int:
    """Global index of the page-local row, or -1 when it is off the page."""
    if local_index < 0 or local_index >= len(page):
        return -1
    return int(page.index[local_index])


# ---------------- Reducers ----------------
def set_rows_per_page(state: ViewState, rows_per_page: int, options: Iterable[int] = ROWS_PER_PAGE_OPTIONS) -> ViewState:
    if rows_per_page not in tuple(options):
        raise ValueError(f"rows_per_page must be one of {tuple(options)}, got {rows_per_page}")
    return _reset(state, rows_per_page=rows_per_page)


def set_filter(state: ViewState, column: str, filter_state: Optional[FilterState]) -> ViewState:
    return _reset(state, filters=set_column_filter(state.filters, column, filter_state))


def set_filters(state: ViewState, filters: Filters) -> ViewState:
    return _reset(state, filters=dict(filters))


def clear_filters(state: ViewState) -> ViewState:
    return _reset(state, filters={})


def go_to_page(state: ViewState, page: int, pages: int) -> ViewState:
    if page < 1 or page > pages or page == state.current_page:
        return state
    return replace(state, current_page=page, selection=frozenset())


def select_all_on_page(state: ViewState, page_indices: Iterable[int], checked: bool) -> ViewState:
    indices = {int(i) for i in page_indices if int(i) >= 0}
    if checked:
        return replace(state, selection=state.selection | indices)
    return replace(state, selection=state.selection - indices)


def select_row(state: ViewState, global_index: int, checked: bool) -> ViewState:
    if global_index < 0:
        return state
    if checked:
        return replace(state, selection=state.selection | {global_index})
    return replace(state, selection=state.selection - {global_index})


def click_row(state: ViewState, global_index: int) -> ViewState:
    """Exclusive toggle: clicking the only selected row clears it, any other click selects just that row."""
    if global_index < 0:
        return state
    if state.selection == frozenset({global_index}):
        return replace(state, selection=frozenset())
    return replace(state, selection=frozenset({global_index}))


def replace_page_selection(state: ViewState, page_indices: Iterable[int], selected: Iterable[int]) -> ViewState:
    """Set which rows of the current page are selected, keeping selections elsewhere."""
    on_page = {int(i) for i in page_indices}
    chosen = {int(i) for i in selected} & on_page
    return replace(state, selection=(state.selection - on_page) | chosen)


# ---------------- Derived flags ----------------
def page_check_state(state: ViewState, page_indices: Iterable[int]) -> str:
    indices = list(page_indices)
    if not indices:
        return "none"
    hits = sum(1 for i in indices if i in state.selection)
    if hits == len(indices):
        return "all"
    return "some" if hits else "none"


def detail_index(state: ViewState) -> Optional[int]:
    if len(state.selection) != 1:
        return None
    return next(iter(state.selection))


def comparison_pair(state: ViewState) -> Optional[Tuple[int, int]]:
    if len(state.selection) != 2:
        return None
    first, second = sorted(state.selection)
    return first, second


def build_page(rows: pd.DataFrame, state: ViewState) -> Dict[str, object]:
    """Page payload for the UI / API: slice, global indices and counters."""
    pages = total_pages(len(rows), state.rows_per_page)
    page = page_slice(rows, state.current_page, state.rows_per_page)
    indices = page_global_indices(page)
    return {
        "page": page,
        "global_indices": indices,
        "current_page": state.current_page,
        "total_pages": pages,
        "filtered_count": int(len(rows)),
        "selected_count": state.selected_count,
        "check_state": page_check_state(state, indices),
    }
