"""Tests for CSV loading and row helpers."""

from audit_core.data import default_panel_columns, get_row, load_csv_bytes, load_csv_text, row_label


def test_load_keeps_cells_as_strings(parsed_log):
    assert parsed_log.ok
    assert parsed_log.headers == ["uuid", "action", "created_timestamp", "payload", "difference_list"]
    assert parsed_log.row_count == 5
    assert list(parsed_log.rows.index) == [0, 1, 2, 3, 4]
    row = get_row(parsed_log.rows, 2)
    assert row["difference_list"] == "NULL"
    assert row["payload"] == ""
    assert get_row(parsed_log.rows, 99) is None


def test_load_bytes_strips_bom_and_blank_lines():
    parsed = load_csv_bytes("\ufeffa,b\n1,2\n\n3,4\n".encode("utf-8"))
    assert parsed.headers == ["a", "b"]
    assert parsed.row_count == 2


def test_empty_input():
    assert load_csv_text("").row_count == 0
    assert load_csv_text("   \n").headers == []


def test_header_only():
    parsed = load_csv_text("a,b\n")
    assert parsed.headers == ["a", "b"]
    assert parsed.row_count == 0
    assert parsed.ok


def test_short_rows_are_padded():
    parsed = load_csv_text("a,b,c\n1\n")
    assert get_row(parsed.rows, 0) == {"a": "1", "b": "", "c": ""}


def test_long_rows_are_reported():
    parsed = load_csv_text("a,b\n1,2\n3,4,5\n")
    assert not parsed.ok
    assert parsed.errors[0].startswith("Too many fields")
    assert parsed.row_count == 1


def test_default_panel_columns():
    assert default_panel_columns(["uuid", "payload", "difference_list"]) == ("difference_list", "payload")
    assert default_panel_columns(["a", "b"]) == ("a", "b")
    assert default_panel_columns(["a"]) == ("a", "a")


def test_row_label():
    assert row_label({"action": "update", "uuid": "e1"}, 0) == "#1 · update · e1"
    assert row_label({}, 4) == "#5"


def test_extra_field_on_every_row_does_not_shift_columns():
    parsed = load_csv_text("uuid,action\ne1,update,EXTRA\ne2,create,EXTRA\n")
    assert parsed.headers == ["uuid", "action"]
    assert parsed.row_count == 0
    assert len(parsed.errors) == 2
    assert all(e.startswith("Too many fields") for e in parsed.errors)


def test_good_rows_survive_next_to_long_ones():
    parsed = load_csv_text("uuid,action\ne1,update,EXTRA\ne2,create\n")
    assert get_row(parsed.rows, 0) == {"uuid": "e2", "action": "create"}
    assert len(parsed.errors) == 1


def test_duplicate_headers_are_suffixed():
    parsed = load_csv_text("a,a,b\n1,2,3\n")
    assert parsed.headers == ["a", "a.1", "b"]
    assert get_row(parsed.rows, 0) == {"a": "1", "a.1": "2", "b": "3"}
