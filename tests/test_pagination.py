"""Tests for the view state reducers."""

import pandas as pd
import pytest

from audit_core.filters import FilterState
from audit_core.pagination import (
    ViewState,
    build_page,
    clear_filters,
    click_row,
    comparison_pair,
    detail_index,
    go_to_page,
    page_check_state,
    page_global_indices,
    page_slice,
    replace_page_selection,
    select_all_on_page,
    select_row,
    set_filter,
    set_rows_per_page,
    to_global_index,
    total_pages,
)


def _rows(n):
    return pd.DataFrame({"action": ["update"] * n, "uuid": [f"e{i}" for i in range(n)]})


def test_total_pages_has_a_floor_of_one():
    assert total_pages(0, 20) == 1
    assert total_pages(20, 20) == 1
    assert total_pages(21, 20) == 2


@pytest.mark.parametrize("n,per_page", [(7, 20), (45, 20), (100, 50), (201, 200)])
def test_pages_reconstruct_filtered_rows(n, per_page):
    rows = _rows(n)
    pages = total_pages(n, per_page)
    slices = [page_slice(rows, p, per_page) for p in range(1, pages + 1)]
    assert all(len(s) <= per_page for s in slices)
    assert pd.concat(slices).equals(rows)


def test_page_indices_are_global_labels_after_filtering():
    rows = pd.DataFrame({"action": ["create", "update"] * 30})
    filtered = rows[rows["action"] == "update"]
    page = page_slice(filtered, 2, 20)
    assert page_global_indices(page)[0] == 41
    assert to_global_index(page, 0) == 41
    assert to_global_index(page, 99) == -1


def test_duplicate_rows_get_distinct_indices():
    rows = pd.DataFrame({"action": ["update"] * 5, "uuid": ["same"] * 5})
    indices = page_global_indices(page_slice(rows, 1, 20))
    assert len(indices) == len(set(indices)) == 5
    state = select_all_on_page(ViewState(), indices, True)
    assert state.selected_count == 5


def test_rows_per_page_and_filters_reset_page_and_selection():
    state = ViewState(current_page=3, selection=frozenset({1, 2}))
    after = set_rows_per_page(state, 50)
    assert (after.current_page, after.selection, after.rows_per_page) == (1, frozenset(), 50)

    after = set_filter(state, "action", FilterState("upd"))
    assert (after.current_page, after.selection) == (1, frozenset())
    assert after.has_filters

    after = clear_filters(ViewState(current_page=2, filters={"a": FilterState("x")}, selection=frozenset({4})))
    assert (after.current_page, after.selection, after.has_filters) == (1, frozenset(), False)


def test_invalid_rows_per_page_raises():
    with pytest.raises(ValueError):
        set_rows_per_page(ViewState(), 7)


def test_go_to_page_clears_selection_and_ignores_out_of_range():
    state = ViewState(selection=frozenset({3}))
    assert go_to_page(state, 0, 5) is state
    assert go_to_page(state, 6, 5) is state
    assert go_to_page(state, 1, 5) is state
    moved = go_to_page(state, 2, 5)
    assert moved.current_page == 2
    assert moved.selection == frozenset()


def test_select_all_keeps_other_pages():
    state = ViewState(selection=frozenset({100}))
    state = select_all_on_page(state, [0, 1, 2], True)
    assert state.selection == {0, 1, 2, 100}
    state = select_all_on_page(state, [0, 1, 2], False)
    assert state.selection == {100}


def test_select_row_and_check_state():
    state = select_row(ViewState(), 1, True)
    assert page_check_state(state, [0, 1]) == "some"
    state = select_row(state, 0, True)
    assert page_check_state(state, [0, 1]) == "all"
    state = select_row(state, 0, False)
    state = select_row(state, 1, False)
    assert page_check_state(state, [0, 1]) == "none"
    assert page_check_state(state, []) == "none"
    assert select_row(state, -1, True) is state


def test_click_row_is_exclusive_toggle():
    state = click_row(ViewState(selection=frozenset({1, 2})), 5)
    assert state.selection == {5}
    assert detail_index(state) == 5
    state = click_row(state, 5)
    assert state.selection == frozenset()
    assert detail_index(state) is None


def test_comparison_pair_is_ascending():
    state = select_row(select_row(ViewState(), 9, True), 3, True)
    assert comparison_pair(state) == (3, 9)
    assert detail_index(state) is None
    assert comparison_pair(select_row(state, 4, True)) is None


def test_replace_page_selection():
    state = ViewState(selection=frozenset({1, 50}))
    state = replace_page_selection(state, [0, 1, 2], [2, 99])
    assert state.selection == {2, 50}


def test_build_page():
    rows = _rows(45)
    state = go_to_page(ViewState(), 3, 3)
    out = build_page(rows, state)
    assert out["global_indices"] == [40, 41, 42, 43, 44]
    assert out["total_pages"] == 3
    assert out["filtered_count"] == 45
    assert out["check_state"] == "none"
