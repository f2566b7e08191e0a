"""Tests for timeline grouping and the timeline chart."""

import pandas as pd
import pytest

from audit_core.charts import timeline_chart, timeline_frame, to_vega_spec
from audit_core.timeline import (
    INVALID_DATE,
    date_sort_key,
    default_timeline_columns,
    format_timeline_date,
    group_timeline,
    timeline_events,
    unique_identifiers,
)


def test_format_timeline_date():
    assert format_timeline_date("2024-03-05T15:04:05Z") == "Mar 5, 2024, 3:04:05 PM"
    assert format_timeline_date("2024-03-05T00:00:09Z") == "Mar 5, 2024, 12:00:09 AM"
    assert format_timeline_date("not a date") == INVALID_DATE
    assert format_timeline_date("") == INVALID_DATE
    assert format_timeline_date(None) == INVALID_DATE


def test_invalid_dates_sort_as_epoch():
    assert date_sort_key("garbage") == 0
    assert date_sort_key("1970-01-01T00:00:01Z") == 1000


def test_defaults(parsed_log):
    cols = default_timeline_columns(parsed_log.headers)
    assert cols.date_column == "created_timestamp"
    assert cols.identifier_column == "uuid"
    assert cols.detail_columns == ["action"]
    assert default_timeline_columns([]).date_column == ""


def test_unique_identifiers_first_seen_order(parsed_log):
    assert unique_identifiers(parsed_log.rows, "uuid") == ["e1", "e2", "e3"]
    assert unique_identifiers(parsed_log.rows, "missing") == []


def test_group_ascending(parsed_log):
    groups = group_timeline(parsed_log.rows, "uuid", ["e1", "e2"], "created_timestamp", "asc")
    # e2's unparsable date sorts first
    assert list(groups) == ["e2", "e1"]
    assert list(groups["e1"].index) == [3, 0, 1]


def test_group_descending(parsed_log):
    groups = group_timeline(parsed_log.rows, "uuid", ["e1", "e2"], "created_timestamp", "desc")
    assert list(groups) == ["e1", "e2"]
    assert list(groups["e1"].index) == [1, 0, 3]


def test_group_edge_cases(parsed_log):
    assert group_timeline(parsed_log.rows, "uuid", [], "created_timestamp") == {}
    assert group_timeline(parsed_log.rows, "uuid", ["zzz"], "created_timestamp") == {}
    with pytest.raises(ValueError):
        group_timeline(parsed_log.rows, "uuid", ["e1"], "created_timestamp", "sideways")


def test_equal_dates_keep_input_order():
    rows = pd.DataFrame({"id": ["a", "a", "a"], "d": ["x", "y", "z"]})
    groups = group_timeline(rows, "id", ["a"], "d", "desc")
    assert list(groups["a"].index) == [0, 1, 2]


def test_timeline_events(parsed_log):
    groups = group_timeline(parsed_log.rows, "uuid", ["e2"], "created_timestamp")
    events = timeline_events(groups, "created_timestamp", ["action", "nope"])
    assert events == [
        {
            "identifier": "e2",
            "entries": [
                {
                    "global_index": 2,
                    "date": "not a date",
                    "date_label": INVALID_DATE,
                    "details": {"action": "delete"},
                }
            ],
        }
    ]


def test_chart_skips_undated_rows(parsed_log):
    groups = group_timeline(parsed_log.rows, "uuid", ["e1", "e2"], "created_timestamp")
    frame = timeline_frame(groups, "created_timestamp")
    assert len(frame) == 3
    assert set(frame["category"]) == {"create", "update"}
    vega = to_vega_spec(timeline_chart(groups, "created_timestamp"))
    assert "layer" in vega


def test_chart_none_when_nothing_dated(parsed_log):
    groups = group_timeline(parsed_log.rows, "uuid", ["e2"], "created_timestamp")
    assert timeline_chart(groups, "created_timestamp") is None


@pytest.mark.parametrize("value", ["2300-01-01T00:00:00Z", "9999-12-31", "0001-01-01"])
def test_out_of_range_dates_never_raise(value):
    key = date_sort_key(value)
    assert isinstance(key, float)
    label = format_timeline_date(value)
    assert isinstance(label, str)


def test_far_future_date_sort_key():
    # parsed as 2300 on pandas builds with non-nanosecond resolution, else unparsable
    assert date_sort_key("2300-01-01T00:00:00Z") in (0.0, 10_413_792_000_000.0)


def test_group_with_far_future_date():
    rows = pd.DataFrame(
        {"uuid": ["e1", "e1"], "created_timestamp": ["2024-01-01T00:00:00Z", "2300-01-01T00:00:00Z"]}
    )
    groups = group_timeline(rows, "uuid", ["e1"], "created_timestamp", "asc")
    assert sorted(groups["e1"].index) == [0, 1]
    groups = group_timeline(rows, "uuid", ["e1"], "created_timestamp", "desc")
    assert len(groups["e1"]) == 2
    timeline_events(groups, "created_timestamp", ["uuid"])
    timeline_chart(groups, "created_timestamp")
