from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Dict, Iterator, Optional

import numpy as np
import pandas as pd
import requests
from fastapi import Depends, FastAPI, File, Form, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from api.schemas import FileListResponse, FileRecordModel, FilterModel, TimelineRequest, ViewRequest
from audit_core.charts import timeline_chart, to_vega_spec
from audit_core.config import AppConfig, configure_logging, load_config
from audit_core.data import ParsedLog, default_panel_columns, get_row, load_csv_bytes
from audit_core.differ import compare_rows, default_compare_column
from audit_core.filters import apply_filters, normalize_filters
from audit_core.normalizer import normalize_log_entry, row_action_class
from audit_core.pagination import ViewState, build_page, go_to_page, set_filters, set_rows_per_page, total_pages
from audit_core.storage import (
    FileLibrary,
    FileNotFound,
    FileRecord,
    LibraryError,
    LocalBlobStore,
    UploadValidationError,
    build_library,
)
from audit_core.timeline import default_timeline_columns, group_timeline, timeline_events
from audit_core.values import format_json_block

STREAM_CHUNK_SIZE = 64 * 1024

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_library() -> FileLibrary:
    return build_library(get_config())


@lru_cache(maxsize=1)
def get_http() -> requests.Session:
    return requests.Session()


_cfg = get_config()
configure_logging(_cfg.log_level)

app = FastAPI(title="Audit Log Viewer API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_cfg.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__})


def _library_error(exc: LibraryError) -> JSONResponse:
    if isinstance(exc, FileNotFound):
        return _error(404, exc)
    if isinstance(exc, UploadValidationError):
        return _error(400, exc)
    return _error(500, exc)


def _record_payload(record: FileRecord) -> dict:
    return FileRecordModel(**record.to_dict()).model_dump()


@lru_cache(maxsize=8)
def _parsed_log(library: FileLibrary, file_id: str, storage_path: str, size: int) -> ParsedLog:
    record = library.get_file(file_id)
    return load_csv_bytes(library.read_content(record))


def _load_log(library: FileLibrary, file_id: str) -> ParsedLog:
    record = library.get_file(file_id)
    return _parsed_log(library, file_id, record.storage_path, record.size)


def _filters(raw: Dict[str, FilterModel]) -> dict:
    return normalize_filters({k: v.model_dump() for k, v in raw.items()})


# ---------------- Files ----------------
@app.get("/health")
def health():
    return {"ok": True}


@app.get("/files")
def list_files(library: FileLibrary = Depends(get_library)):
    try:
        records = library.list_files()
        return _json(FileListResponse(files=[_record_payload(r) for r in records]).model_dump())
    except LibraryError as exc:
        return _library_error(exc)


@app.post("/files")
async def upload_file(
    ticket_name: str = Form(default=""),
    file: Optional[UploadFile] = File(default=None),
    library: FileLibrary = Depends(get_library),
):
    try:
        data = await file.read() if file is not None else None
        filename = file.filename if file is not None else None
        content_type = file.content_type if file is not None else None
        record = library.upload(ticket_name, filename, data, content_type=content_type)
        return _json(_record_payload(record), status_code=201)
    except LibraryError as exc:
        return _library_error(exc)


@app.delete("/files/{file_id}")
def delete_file(file_id: str, library: FileLibrary = Depends(get_library)):
    try:
        record = library.get_file(file_id)
        library.delete_file(file_id, record.storage_path)
        return _json({"deleted": file_id})
    except LibraryError as exc:
        return _library_error(exc)


@app.get("/files/{file_id}")
def proxy_file(
    file_id: str,
    library: FileLibrary = Depends(get_library),
    http: requests.Session = Depends(get_http),
    cfg: AppConfig = Depends(get_config),
):
    """Stream a stored file back as an attachment, fetched from its download URL."""
    if not file_id or not file_id.strip():
        return JSONResponse(status_code=400, content={"error": "File ID is required"})

    try:
        record = library.store.get(file_id)
        if record is None:
            return JSONResponse(status_code=404, content={"error": "File not found in document store"})
        if not record.download_url:
            return JSONResponse(status_code=500, content={"error": "File metadata is missing a download URL"})

        upstream = http.get(record.download_url, stream=True, timeout=cfg.upstream_timeout_seconds)
        if not upstream.ok:
            body = upstream.text
            upstream.close()
            logger.error("Failed to fetch file from storage: %s %s", upstream.status_code, upstream.reason)
            return JSONResponse(
                status_code=upstream.status_code,
                content={"error": f"Failed to fetch file from storage: {upstream.reason}", "details": body},
            )

        def _stream() -> Iterator[bytes]:
            try:
                yield from upstream.iter_content(chunk_size=STREAM_CHUNK_SIZE)
            finally:
                upstream.close()

        headers = {"Content-Disposition": f'attachment; filename="{record.name}"'}
        return StreamingResponse(_stream(), media_type=record.content_type or "text/csv", headers=headers)
    except Exception as exc:
        logger.exception("Error proxying file %s", file_id)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error", "message": str(exc)})


@app.get("/blobs/{path:path}")
def download_blob(path: str, library: FileLibrary = Depends(get_library)):
    blobs = library.blobs
    if not isinstance(blobs, LocalBlobStore):
        return JSONResponse(status_code=404, content={"error": "Blob downloads are served by the storage backend"})
    try:
        target = blobs.resolve(path)
    except ValueError as exc:
        return _error(400, exc)
    if not target.is_file():
        return JSONResponse(status_code=404, content={"error": "Object not found"})
    return FileResponse(target, media_type="application/octet-stream")


# ---------------- Log views ----------------
@app.post("/files/{file_id}/view")
def view_rows(
    file_id: str,
    request: ViewRequest,
    library: FileLibrary = Depends(get_library),
    cfg: AppConfig = Depends(get_config),
):
    try:
        parsed = _load_log(library, file_id)
        state = set_rows_per_page(ViewState(), request.rows_per_page, cfg.rows_per_page_options)
        state = set_filters(state, _filters(request.filters))
        filtered = apply_filters(parsed.rows, state.filters)
        pages = total_pages(len(filtered), state.rows_per_page)
        state = go_to_page(state, min(request.page, pages), pages)
        page = build_page(filtered, state)
        rows = [
            {"global_index": int(idx), "row_class": row_action_class(row), "cells": row}
            for idx, row in zip(page["global_indices"], page["page"].to_dict(orient="records"))
        ]
        return _json(
            {
                "headers": parsed.headers,
                "errors": parsed.errors,
                "total_count": parsed.row_count,
                "filtered_count": page["filtered_count"],
                "current_page": page["current_page"],
                "total_pages": page["total_pages"],
                "rows_per_page": state.rows_per_page,
                "rows": rows,
            }
        )
    except LibraryError as exc:
        return _library_error(exc)
    except ValueError as exc:
        return _error(400, exc)
    except Exception as exc:
        logger.exception("view_rows failed")
        return _error(500, exc)


@app.get("/files/{file_id}/rows/{index}")
def row_detail(
    file_id: str,
    index: int,
    left: Optional[str] = Query(default=None),
    right: Optional[str] = Query(default=None),
    library: FileLibrary = Depends(get_library),
):
    try:
        parsed = _load_log(library, file_id)
        row = get_row(parsed.rows, index)
        if row is None:
            return JSONResponse(status_code=404, content={"error": f"Row {index} not found"})
        default_left, default_right = default_panel_columns(parsed.headers)
        panels = {}
        for side, column in (("left", left or default_left), ("right", right or default_right)):
            block = format_json_block(row.get(column))
            panels[side] = {"column": column, "is_null": block.is_null, "text": block.text}
        return _json(
            {
                "global_index": index,
                "row": row,
                "row_class": row_action_class(row),
                "entity_changes": [c.to_dict() for c in normalize_log_entry(row)],
                "panels": panels,
            }
        )
    except LibraryError as exc:
        return _library_error(exc)
    except Exception as exc:
        logger.exception("row_detail failed")
        return _error(500, exc)


@app.get("/files/{file_id}/compare")
def compare(
    file_id: str,
    a: int = Query(...),
    b: int = Query(...),
    column: Optional[str] = Query(default=None),
    library: FileLibrary = Depends(get_library),
):
    try:
        parsed = _load_log(library, file_id)
        row_a, row_b = get_row(parsed.rows, a), get_row(parsed.rows, b)
        if row_a is None or row_b is None:
            return JSONResponse(status_code=404, content={"error": "Please select exactly two existing logs to compare."})
        column = column or default_compare_column(parsed.headers)
        result = compare_rows(row_a, row_b, column)
        return _json({"column": column, "a": a, "b": b, **result.to_dict()})
    except LibraryError as exc:
        return _library_error(exc)
    except Exception as exc:
        logger.exception("compare failed")
        return _error(500, exc)


@app.post("/files/{file_id}/timeline")
def timeline(file_id: str, request: TimelineRequest, library: FileLibrary = Depends(get_library)):
    try:
        parsed = _load_log(library, file_id)
        defaults = default_timeline_columns(parsed.headers)
        identifier_column = request.identifier_column or defaults.identifier_column
        date_column = request.date_column or defaults.date_column
        detail_columns = request.detail_columns if request.detail_columns is not None else defaults.detail_columns

        filtered = apply_filters(parsed.rows, _filters(request.filters))
        groups = group_timeline(filtered, identifier_column, request.identifiers, date_column, request.sort_order)
        chart = timeline_chart(groups, date_column)
        return _json(
            {
                "identifier_column": identifier_column,
                "date_column": date_column,
                "detail_columns": detail_columns,
                "sort_order": request.sort_order,
                "groups": timeline_events(groups, date_column, detail_columns),
                "chart": to_vega_spec(chart) if chart is not None else None,
            }
        )
    except LibraryError as exc:
        return _library_error(exc)
    except Exception as exc:
        logger.exception("timeline failed")
        return _error(500, exc)
