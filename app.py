import html
import json
import logging
from contextlib import contextmanager
from typing import List, Optional

import pandas as pd
import streamlit as st

from audit_core.charts import timeline_chart
from audit_core.config import configure_logging, load_config
from audit_core.data import ParsedLog, default_panel_columns, get_row, load_csv_bytes, row_label
from audit_core.differ import DiffFragment, compare_rows, default_compare_column
from audit_core.filters import FILTER_TYPES, FilterState, apply_filters, describe_filters
from audit_core.normalizer import difference_label, normalize_log_entry, parse_difference_list, row_action_class
from audit_core.pagination import (
    ViewState,
    build_page,
    clear_filters,
    click_row,
    comparison_pair,
    detail_index,
    go_to_page,
    replace_page_selection,
    select_all_on_page,
    set_filter,
    set_rows_per_page,
)
from audit_core.storage import FileLibrary, FileRecord, LibraryError, build_library
from audit_core.timeline import (
    SORT_ORDERS,
    default_timeline_columns,
    format_timeline_date,
    group_timeline,
    unique_identifiers,
)
from audit_core.values import RenderNode, ValueKind, format_json_block, humanize_column, is_json_like, render_payload, render_value

CFG = load_config()
configure_logging(CFG.log_level)
logger = logging.getLogger("audit_viewer.app")

ROW_COLOURS = {"row-create": "#dcfce7", "row-update": "#fef9c3", "row-delete": "#fee2e2"}


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .app-top-bar {padding: 6px 0 4px;border-bottom: 1px solid #e5e7eb;margin-bottom: 10px;}
        .app-top-bar .breadcrumb {color: #6b7280;font-size: 0.9rem;margin-bottom: 2px;}
        .app-top-bar .page-title {font-size: 1.4rem;font-weight: 700;color: #111827;}
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-header {display: flex;justify-content: space-between;align-items: center;margin-bottom: 8px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;}
        .card-actions {font-size: 0.9rem;color: #2563eb;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        .legend {display: inline-block;width: 10px;height: 10px;border-radius: 50%;margin: 0 4px 0 10px;}
        .badge {border-radius: 6px;padding: 1px 6px;font-size: 0.75rem;font-family: monospace;}
        .badge-null, .badge-empty {background: #f3f4f6;color: #6b7280;}
        .badge-true {background: #111827;color: #ffffff;}
        .badge-false {background: #dc2626;color: #ffffff;}
        .json-tree {font-family: monospace;font-size: 0.85rem;}
        .json-tree .nested {padding-left: 14px;border-left: 1px solid #e5e7eb;margin-top: 2px;}
        .json-tree .key {font-weight: 600;color: #6b7280;padding-right: 6px;}
        .diff-block {font-family: monospace;font-size: 0.82rem;white-space: pre-wrap;word-break: break-all;
                     border: 1px solid #e5e7eb;border-radius: 8px;padding: 8px;background: #f9fafb;}
        .diff-add {background: rgba(34,197,94,0.2);color: #166534;}
        .diff-del {background: rgba(239,68,68,0.2);color: #991b1b;}
        .diff-same {color: #6b7280;}
        table.changes {width: 100%;font-size: 0.85rem;border-collapse: collapse;}
        table.changes th, table.changes td {border-bottom: 1px solid #e5e7eb;padding: 4px 6px;text-align: left;vertical-align: top;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str, actions: Optional[str] = None):
    container = st.container()
    container.markdown(
        f"""
        <div class="card">
          <div class="card-header">
            <div class="card-title">{title}</div>
            <div class="card-actions">{actions or ""}</div>
          </div>
        """,
        unsafe_allow_html=True,
    )
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def render_page_header(
    title: str,
    breadcrumb: str,
    chips: Optional[List[str]] = None,
    export_df: Optional[pd.DataFrame] = None,
    export_name: str = "export.csv",
):
    inject_base_styles()
    c1, c2 = st.columns([8, 2])
    with c1:
        st.markdown(
            f"<div class='app-top-bar'><div class='breadcrumb'>{html.escape(breadcrumb)}</div>"
            f"<div class='page-title'>{html.escape(title)}</div></div>",
            unsafe_allow_html=True,
        )
    with c2:
        btn_cols = st.columns(2)
        if btn_cols[0].button("Refresh"):
            st.cache_data.clear()
            st.rerun()
        if export_df is not None and not export_df.empty:
            btn_cols[1].download_button(
                "Export CSV",
                data=export_df.to_csv(index=False).encode("utf-8"),
                file_name=export_name,
                mime="text/csv",
            )
    if chips:
        chip_html = "".join(f"<span class='chip'>{html.escape(c)}</span>" for c in chips)
        st.markdown(f"<div class='chip-row'>{chip_html}</div>", unsafe_allow_html=True)


def node_html(node: RenderNode) -> str:
    if node.is_nested:
        items = "".join(
            f"<div><span class='key'>{html.escape(key)}:</span>{node_html(child)}</div>" for key, child in node.children
        )
        return f"<div class='nested'>{items}</div>"
    if node.kind is ValueKind.NULL:
        return "<span class='badge badge-null'>NULL</span>"
    if node.kind is ValueKind.EMPTY:
        return "<span class='badge badge-empty'>EMPTY</span>"
    if node.kind is ValueKind.BOOL:
        return f"<span class='badge badge-{node.text}'>{node.text}</span>"
    return f"<span>{html.escape(node.text)}</span>"


def value_html(value) -> str:
    node = render_value(value)
    if node.is_nested:
        return f"<pre>{html.escape(json.dumps(value, indent=2, ensure_ascii=False))}</pre>"
    return node_html(node)


def render_payload_cell(cell, key: str):
    view = render_payload(cell)
    if view.error:
        st.markdown(f"<span class='badge badge-false'>{html.escape(view.error)}</span>", unsafe_allow_html=True)
        return
    if not view.is_json:
        if view.raw is None:
            st.markdown("<span class='badge badge-null'>NULL</span>", unsafe_allow_html=True)
        else:
            st.code(view.raw, language=None)
        return
    expanded = st.session_state.get(key, False)
    rows = "".join(
        f"<div><span class='key'>{html.escape(k)}:</span>{node_html(child)}</div>" for k, child in view.visible_entries(expanded)
    )
    st.markdown(f"<div class='json-tree'>{rows}</div>", unsafe_allow_html=True)
    if view.can_collapse:
        if st.button(view.toggle_label(expanded), key=f"{key}-toggle"):
            st.session_state[key] = not expanded
            st.rerun()


def render_json_block(title: str, cell):
    st.markdown(f"**{html.escape(humanize_column(title)).capitalize()}**")
    block = format_json_block(cell)
    if block.is_null:
        st.markdown("<span class='badge badge-null'>NULL</span>", unsafe_allow_html=True)
    else:
        st.code(block.text, language="json")


def render_difference_list(cell):
    differences, error = parse_difference_list(cell)
    if error:
        st.markdown(f"<span class='badge badge-false'>{html.escape(error)}</span>", unsafe_allow_html=True)
        return
    if not differences:
        st.caption("No differences recorded.")
        return
    body = "".join(
        f"<tr><td><b>{html.escape(difference_label(d)).capitalize()}</b></td>"
        f"<td>{value_html(d.old_value)}</td><td>&rarr;</td><td>{value_html(d.new_value)}</td></tr>"
        for d in differences
    )
    st.markdown(
        f"<table class='changes'><tr><th>Field</th><th>Old Value</th><th></th><th>New Value</th></tr>{body}</table>",
        unsafe_allow_html=True,
    )


def render_entity_changes(row: dict):
    changes = normalize_log_entry(row)
    if not changes:
        st.info("No difference list found or it is empty.")
        return
    for change in changes:
        st.markdown(f"**{html.escape(change.entity_id)}**")
        body = "".join(
            f"<tr><td><b>{html.escape(difference_label(d)).capitalize()}</b></td>"
            f"<td>{value_html(d.old_value)}</td><td>{value_html(d.new_value)}</td></tr>"
            for d in change.differences
        )
        st.markdown(
            f"<table class='changes'><tr><th>Field</th><th>Old Value</th><th>New Value</th></tr>{body}</table>",
            unsafe_allow_html=True,
        )


def diff_html(fragments: List[DiffFragment]) -> str:
    spans = []
    for part in fragments:
        css = "diff-add" if part.added else ("diff-del" if part.removed else "diff-same")
        spans.append(f"<span class='{css}'>{html.escape(part.value)}</span>")
    return f"<div class='diff-block'>{''.join(spans)}</div>"


# ---------- Data access ----------
@st.cache_resource
def get_library() -> FileLibrary:
    return build_library(CFG)


@st.cache_data(show_spinner=False, max_entries=8)
def load_parsed(file_id: str, storage_path: str, size: int) -> ParsedLog:
    library = get_library()
    record = library.get_file(file_id)
    return load_csv_bytes(library.read_content(record))


def get_view_state() -> ViewState:
    state = st.session_state.get("view_state")
    if state is None:
        state = ViewState(rows_per_page=CFG.default_rows_per_page)
        st.session_state["view_state"] = state
    return state


def put_view_state(state: ViewState):
    st.session_state["view_state"] = state


def open_file(file_id: str):
    st.session_state["file_id"] = file_id
    st.session_state["nav"] = "Viewer"
    st.session_state["view_state"] = ViewState(rows_per_page=CFG.default_rows_per_page)
    for key in [k for k in st.session_state if str(k).startswith(("timeline_identifiers-", "tl_", "left_column", "right_column", "compare_column"))]:
        del st.session_state[key]


# ---------- Pages ----------
def render_files_page():
    render_page_header("Audit Log Analyzer", "Home / Files")
    library = get_library()
    left, right = st.columns(2)

    with left:
        with card("Upload Audit Log"):
            st.caption("Provide an identifying name and upload the CSV file.")
            ticket_name = st.text_input("Ticket Name", placeholder="e.g., INC-12345 or Project-X", key="ticket_name")
            uploaded = st.file_uploader("CSV File", type=["csv"], key="csv_upload")
            if st.button("Upload File", use_container_width=True, disabled=not ticket_name or uploaded is None):
                progress = st.progress(0.0, text="Uploading...")
                try:
                    record = library.upload(
                        ticket_name,
                        uploaded.name,
                        uploaded.getvalue(),
                        content_type=uploaded.type or "text/csv",
                        on_progress=lambda fraction: progress.progress(min(1.0, fraction), text=f"{round(fraction * 100)}%"),
                    )
                    st.toast(f"{record.name} has been uploaded.")
                    st.session_state.pop("ticket_name", None)
                    st.rerun()
                except LibraryError as exc:
                    st.error(f"Upload failed: {exc}")
                finally:
                    progress.empty()

    with right:
        with card("Uploaded Files"):
            st.caption("Open a file to view its contents or delete it.")
            try:
                records = library.list_files()
            except LibraryError as exc:
                st.error(f"Error fetching files: {exc}")
                records = []
            if not records:
                st.info("No files uploaded yet.")
            for record in records:
                render_file_row(library, record)


def render_file_row(library: FileLibrary, record: FileRecord):
    c1, c2, c3 = st.columns([6, 1, 1])
    c1.markdown(f"**{html.escape(record.ticket_name)}**  \n{html.escape(record.name)} · {record.uploaded_at[:19].replace('T', ' ')}")
    c2.button("Open", key=f"open-{record.id}", on_click=open_file, args=(record.id,))
    if c3.button("Delete", key=f"delete-{record.id}"):
        st.session_state["file_to_delete"] = record.id

    if st.session_state.get("file_to_delete") == record.id:
        st.warning(f"This will permanently delete the file {record.ticket_name} ({record.name}). This action cannot be undone.")
        confirm, cancel = st.columns(2)
        if confirm.button("Delete", key=f"confirm-{record.id}", type="primary"):
            try:
                library.delete_file(record.id, record.storage_path)
                st.toast(f"{record.name} has been removed.")
            except LibraryError as exc:
                st.error(f"Deletion failed: {exc}")
            st.session_state.pop("file_to_delete", None)
            st.rerun()
        if cancel.button("Cancel", key=f"cancel-{record.id}"):
            st.session_state.pop("file_to_delete", None)
            st.rerun()


def render_filter_controls(headers: List[str], state: ViewState):
    with st.expander("Column filters", expanded=False):
        c1, c2, c3 = st.columns([3, 2, 4])
        column = c1.selectbox("Column", headers, format_func=humanize_column, key="filter_column")
        current = state.filters.get(column)
        ftype = c2.selectbox(
            "Condition",
            FILTER_TYPES,
            index=FILTER_TYPES.index(current.type) if current else 0,
            format_func=str.capitalize,
            key=f"filter_type_{column}",
        )
        value = c3.text_input("Value", value=current.value if current else "", placeholder="Filter value...", key=f"filter_value_{column}")
        b1, b2, _ = st.columns([1, 1, 6])
        if b1.button("Apply", key="filter_apply"):
            put_view_state(set_filter(state, column, FilterState(value=value, type=ftype)))
            st.rerun()
        if b2.button("Clear", key="filter_clear"):
            put_view_state(set_filter(state, column, None))
            st.rerun()


def _style_rows(page: pd.DataFrame) -> "pd.io.formats.style.Styler":
    def _colour(row: pd.Series):
        colour = ROW_COLOURS.get(row_action_class(row.to_dict()), "")
        return [f"background-color: {colour}" if colour else "" for _ in row]

    return page.style.apply(_colour, axis=1)


def render_log_table(parsed: ParsedLog, filtered: pd.DataFrame, state: ViewState):
    page_info = build_page(filtered, state)
    page: pd.DataFrame = page_info["page"]
    indices: List[int] = page_info["global_indices"]
    context = f"{state.current_page}-{state.rows_per_page}-{hash(tuple(sorted(state.filters.items())))}"

    if page.empty:
        st.info("No logs match the current filters." if state.has_filters else "The file is empty.")
    else:
        display = page.copy()
        display.insert(0, "#", [i + 1 for i in indices])
        grid_key = f"grid-{context}-{st.session_state.get('grid_epoch', 0)}"

        def _on_grid_select():
            rows = st.session_state[grid_key]["selection"]["rows"]
            if rows:
                local = rows[0]
                if 0 <= local < len(indices):
                    put_view_state(click_row(get_view_state(), indices[local]))
            st.session_state["grid_epoch"] = st.session_state.get("grid_epoch", 0) + 1

        st.dataframe(
            _style_rows(display),
            use_container_width=True,
            hide_index=True,
            on_select=_on_grid_select,
            selection_mode="single-row",
            key=grid_key,
        )

        sel_all_key = f"select-all-{context}"
        st.session_state[sel_all_key] = page_info["check_state"] == "all"
        st.checkbox(
            "Select all rows on this page",
            key=sel_all_key,
            on_change=lambda: put_view_state(select_all_on_page(get_view_state(), indices, st.session_state[sel_all_key])),
        )

        pick_key = f"pick-{context}"
        st.session_state[pick_key] = [i for i in indices if i in state.selection]
        labels = {i: row_label(get_row(parsed.rows, i) or {}, i) for i in indices}
        st.multiselect(
            "Selected rows",
            options=indices,
            format_func=lambda i: labels.get(i, f"#{i + 1}"),
            key=pick_key,
            on_change=lambda: put_view_state(replace_page_selection(get_view_state(), indices, st.session_state[pick_key])),
        )

    c1, c2, c3, c4, c5 = st.columns([2, 2, 2, 1, 1])
    options = list(CFG.rows_per_page_options)
    rpp = c1.selectbox("Rows per page", options, index=options.index(state.rows_per_page), key=f"rpp-{state.rows_per_page}")
    if rpp != state.rows_per_page:
        put_view_state(set_rows_per_page(state, rpp, options))
        st.rerun()
    c2.markdown(f"Selected: {state.selected_count} of {len(filtered)}")
    c3.markdown(f"Page {state.current_page} of {page_info['total_pages']}")
    if c4.button("Previous", disabled=state.current_page == 1):
        put_view_state(go_to_page(state, state.current_page - 1, page_info["total_pages"]))
        st.rerun()
    if c5.button("Next", disabled=state.current_page == page_info["total_pages"]):
        put_view_state(go_to_page(state, state.current_page + 1, page_info["total_pages"]))
        st.rerun()


def render_detail_view(parsed: ParsedLog, index: int):
    row = get_row(parsed.rows, index)
    if row is None:
        return
    default_left, default_right = default_panel_columns(parsed.headers)
    with card(f"Log Details · {row_label(row, index)}"):
        left, right = st.columns(2)
        with left:
            left_col = st.selectbox(
                "Left Panel", parsed.headers, index=parsed.headers.index(default_left), format_func=humanize_column, key="left_column"
            )
            render_json_block(left_col, row.get(left_col))
        with right:
            right_col = st.selectbox(
                "Right Panel", parsed.headers, index=parsed.headers.index(default_right), format_func=humanize_column, key="right_column"
            )
            render_json_block(right_col, row.get(right_col))
        with st.expander("Entity changes", expanded=True):
            render_entity_changes(row)
        if "difference_list" in row:
            with st.expander("Difference list", expanded=False):
                render_difference_list(row.get("difference_list"))


def render_comparison_view(parsed: ParsedLog, pair):
    a, b = pair
    row_a, row_b = get_row(parsed.rows, a), get_row(parsed.rows, b)
    if row_a is None or row_b is None:
        st.info("Please select exactly two logs to compare.")
        return
    with card("Compare Log Entries"):
        default_col = default_compare_column(parsed.headers)
        column = st.selectbox(
            "Column to Compare", parsed.headers, index=parsed.headers.index(default_col), format_func=humanize_column, key="compare_column"
        )
        result = compare_rows(row_a, row_b, column)
        left, right = st.columns(2)
        left.markdown(f"**Selection 1** · {html.escape(row_label(row_a, a))}")
        left.markdown(diff_html(result.left), unsafe_allow_html=True)
        right.markdown(f"**Selection 2** · {html.escape(row_label(row_b, b))}")
        right.markdown(diff_html(result.right), unsafe_allow_html=True)


def render_timeline(parsed: ParsedLog, filtered: pd.DataFrame):
    headers = parsed.headers
    defaults = default_timeline_columns(headers)
    c1, c2, c3, c4 = st.columns(4)
    id_col = c1.selectbox("Identifier Column", headers, index=headers.index(defaults.identifier_column), key="tl_id_col")
    idents = unique_identifiers(filtered, id_col)
    chosen = c2.multiselect("Identifier Value", idents, key=f"timeline_identifiers-{id_col}")
    date_col = c3.selectbox("Date Column", headers, index=headers.index(defaults.date_column), key="tl_date_col")
    sort_order = c4.selectbox(
        "Sort Order",
        SORT_ORDERS,
        format_func=lambda o: "Ascending (Oldest First)" if o == "asc" else "Descending (Newest First)",
        key="tl_sort",
    )
    detail_cols = st.multiselect("Detail Columns", headers, default=defaults.detail_columns, key="tl_detail_cols")

    if not chosen:
        st.info("No timeline to display. Please select an identifier to see its history.")
        return
    groups = group_timeline(filtered, id_col, chosen, date_col, sort_order)
    if not groups:
        st.info("No logs found for the selected identifier.")
        return

    chart = timeline_chart(groups, date_col)
    if chart is not None:
        st.altair_chart(chart, use_container_width=True)

    for ident, group in groups.items():
        st.markdown(f"#### {html.escape(ident)}")
        for global_index, row in group.iterrows():
            with card(format_timeline_date(row.get(date_col)), actions=f"row #{int(global_index) + 1}"):
                cols = st.columns(max(1, min(3, len(detail_cols))))
                for n, col in enumerate(detail_cols):
                    with cols[n % len(cols)]:
                        st.caption(humanize_column(col).capitalize())
                        cell = row.get(col, "")
                        if is_json_like(cell):
                            render_payload_cell(cell, key=f"tl-payload-{ident}-{global_index}-{col}")
                        elif str(cell or "").strip():
                            st.code(str(cell), language=None)
                        else:
                            st.markdown("<span class='badge badge-null'>NULL</span>", unsafe_allow_html=True)


def render_viewer_page():
    file_id = st.session_state.get("file_id")
    if not file_id:
        render_page_header("Viewer", "Home / Viewer")
        st.info("Open a file from the Files page.")
        return

    library = get_library()
    try:
        record = library.get_file(file_id)
    except LibraryError as exc:
        render_page_header("Error Loading File", "Home / Viewer")
        st.error(str(exc))
        return

    with st.spinner("Parsing file, please wait..."):
        try:
            parsed = load_parsed(record.id, record.storage_path, record.size)
        except LibraryError as exc:
            render_page_header(record.display_name, "Home / Viewer")
            st.error(str(exc))
            return
    if parsed.errors:
        logger.warning("Parsing errors in %s: %s", record.id, parsed.errors[0])
        render_page_header(record.display_name, "Home / Viewer")
        st.error(f"Parsing error: {parsed.errors[0]}")
        return

    state = get_view_state()
    filtered = apply_filters(parsed.rows, state.filters)
    render_page_header(
        record.display_name,
        f"Home / Viewer · Audit Logs ({parsed.row_count:,} rows)",
        describe_filters(state.filters),
        export_df=filtered,
        export_name=f"filtered_{record.name}",
    )
    st.markdown(
        "".join(
            f"<span class='legend' style='background:{colour}'></span>{label}"
            for label, colour in (("Create", "#4ade80"), ("Update", "#facc15"), ("Delete", "#f87171"))
        ),
        unsafe_allow_html=True,
    )
    if state.has_filters and st.button("Clear All Filters"):
        put_view_state(clear_filters(state))
        st.rerun()

    tab_logs, tab_timeline = st.tabs(["Logs", "Timeline"])
    with tab_logs:
        render_filter_controls(parsed.headers, state)
        render_log_table(parsed, filtered, state)
        state = get_view_state()
        index = detail_index(state)
        if index is not None:
            render_detail_view(parsed, index)
        pair = comparison_pair(state)
        if pair is not None:
            render_comparison_view(parsed, pair)
    with tab_timeline:
        if parsed.row_count:
            render_timeline(parsed, filtered)
        else:
            st.info("The file is empty.")


# ---------- UI setup ----------
st.set_page_config(page_title="Audit Log Analyzer", layout="wide")
inject_base_styles()

with st.sidebar:
    st.markdown("### Navigate")
    nav_choice = st.radio("Navigate", ["Files", "Viewer"], key="nav")

if nav_choice == "Files":
    render_files_page()
else:
    render_viewer_page()
