from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_LEFT_COLUMN = "difference_list"
DEFAULT_RIGHT_COLUMN = "payload"


@dataclass
class ParsedLog:
    """One parsed CSV file.

    ``rows`` keeps a RangeIndex assigned at parse time; that label is the
    row's global index and survives filtering and slicing.
    """

    headers: List[str] = field(default_factory=list)
    rows: pd.DataFrame = field(default_factory=pd.DataFrame)
    errors: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return int(len(self.rows))

    @property
    def ok(self) -> bool:
        return not self.errors


def decode_csv_bytes(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def _unique_headers(names: List[str]) -> List[str]:
    """Duplicate header names get ``.1``, ``.2`` suffixes like pandas' own mangling."""
    seen: dict = {}
    out: List[str] = []
    for name in names:
        count = seen.get(name, 0)
        out.append(name if count == 0 else f"{name}.{count}")
        seen[name] = count + 1
    return out


def load_csv_text(text: str) -> ParsedLog:
    """Parse CSV text with a header row; every cell is kept as a string.

    The header is read as an ordinary row so its width fixes the column
    count: longer rows are reported and skipped (never taken as an index),
    shorter rows are padded with "".
    """
    errors: List[str] = []
    bad_lines = 0

    def _on_bad_line(fields: List[str]) -> None:
        nonlocal bad_lines
        bad_lines += 1
        if len(errors) < 20:
            errors.append(f"Too many fields: {len(fields)} values in a row ({', '.join(fields[:3])}...)")
        return None

    if not text or not text.strip():
        return ParsedLog()

    try:
        raw = pd.read_csv(
            io.StringIO(text),
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=_on_bad_line,
        )
    except pd.errors.EmptyDataError:
        return ParsedLog()
    except (pd.errors.ParserError, ValueError) as exc:
        logger.warning("CSV parse failed: %s", exc)
        return ParsedLog(errors=[str(exc)])

    if bad_lines:
        logger.warning("Skipped %d malformed CSV rows", bad_lines)
    if raw.empty:
        return ParsedLog(errors=errors)

    headers = _unique_headers([str(c) for c in raw.iloc[0].fillna("")])
    df = raw.iloc[1:].fillna("").reset_index(drop=True)
    df.columns = headers
    return ParsedLog(headers=headers, rows=df, errors=errors)


def load_csv_bytes(data: bytes) -> ParsedLog:
    return load_csv_text(decode_csv_bytes(data))


def default_panel_columns(headers: List[str]) -> Tuple[str, str]:
    """Left/right detail pane columns: difference_list and payload when present."""
    left = DEFAULT_LEFT_COLUMN if DEFAULT_LEFT_COLUMN in headers else (headers[0] if headers else "")
    if DEFAULT_RIGHT_COLUMN in headers:
        right = DEFAULT_RIGHT_COLUMN
    else:
        right = headers[1] if len(headers) > 1 else (headers[0] if headers else "")
    return left, right


def get_row(rows: pd.DataFrame, global_index: int) -> Optional[dict]:
    if global_index not in rows.index:
        return None
    return {str(k): v for k, v in rows.loc[global_index].items()}


def row_label(row: dict, global_index: int) -> str:
    parts = [f"#{global_index + 1}"]
    for key in ("action", "uuid", "entity_id"):
        value = str(row.get(key) or "").strip()
        if value:
            parts.append(value)
    return " · ".join(parts)
