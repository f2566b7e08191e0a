"""Cell value classification and rendering.

Audit-log cells are raw strings that may carry JSON. Values are decoded with
``parse_json_cell`` (which never raises) and classified into a small tagged
variant so the UI and the API render NULL / EMPTY / booleans / nested objects
consistently.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, NamedTuple, Optional, Tuple

MAX_INITIAL_FIELDS = 6

NULL_MARKER = "NULL"
EMPTY_MARKER = "EMPTY"
INVALID_JSON = "Invalid JSON format."


class ValueKind(Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    EMPTY = "empty"
    OBJECT = "object"
    ARRAY = "array"


class ParseResult(NamedTuple):
    """Outcome of one JSON decode attempt."""

    ok: bool
    value: Any
    error: Optional[str] = None


def _reject_constant(token: str) -> Any:
    raise ValueError(f"Unsupported JSON constant: {token}")


def parse_json_cell(text: Any) -> ParseResult:
    """Strict JSON decode of a cell.

    Non-string input is returned as-is. On failure the raw text is carried in
    ``value`` so callers can fall back to it without re-reading the cell.
    """
    if not isinstance(text, str):
        return ParseResult(True, text)
    try:
        return ParseResult(True, json.loads(text, parse_constant=_reject_constant))
    except ValueError as exc:
        return ParseResult(False, text, str(exc))


def best_effort_json(value: Any) -> Any:
    """Parsed JSON when ``value`` is a JSON string, otherwise ``value`` unchanged."""
    return parse_json_cell(value).value


def classify(value: Any) -> ValueKind:
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, dict):
        return ValueKind.OBJECT
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    if str(value).strip() == "":
        return ValueKind.EMPTY
    return ValueKind.STRING


def format_scalar(value: Any) -> str:
    kind = classify(value)
    if kind is ValueKind.NULL:
        return NULL_MARKER
    if kind is ValueKind.BOOL:
        return "true" if value else "false"
    if kind is ValueKind.EMPTY:
        return EMPTY_MARKER
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class RenderNode:
    kind: ValueKind
    text: str = ""
    depth: int = 0
    children: List[Tuple[str, "RenderNode"]] = field(default_factory=list)

    @property
    def is_marker(self) -> bool:
        return self.kind in (ValueKind.NULL, ValueKind.EMPTY, ValueKind.BOOL)

    @property
    def is_nested(self) -> bool:
        return self.kind in (ValueKind.OBJECT, ValueKind.ARRAY)

    def to_dict(self) -> dict:
        out: dict = {"kind": self.kind.value, "depth": self.depth}
        if self.is_nested:
            out["children"] = [{"key": k, "value": child.to_dict()} for k, child in self.children]
        else:
            out["text"] = self.text
        return out


def render_value(value: Any, depth: int = 0) -> RenderNode:
    """Render a decoded value into a display tree, one level deeper per nesting level."""
    kind = classify(value)
    if kind is ValueKind.OBJECT:
        children = [(str(k), render_value(v, depth + 1)) for k, v in value.items()]
        return RenderNode(kind, depth=depth, children=children)
    if kind is ValueKind.ARRAY:
        children = [(str(i), render_value(v, depth + 1)) for i, v in enumerate(value)]
        return RenderNode(kind, depth=depth, children=children)
    return RenderNode(kind, text=format_scalar(value), depth=depth)


def is_json_like(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    trimmed = value.strip()
    return (trimmed.startswith("{") and trimmed.endswith("}")) or (trimmed.startswith("[") and trimmed.endswith("]"))


@dataclass
class PayloadView:
    """A JSON cell prepared for display with a collapsible top-level field list."""

    is_json: bool
    entries: List[Tuple[str, RenderNode]] = field(default_factory=list)
    raw: Optional[str] = None
    error: Optional[str] = None
    limit: int = MAX_INITIAL_FIELDS

    @property
    def can_collapse(self) -> bool:
        return len(self.entries) > self.limit

    @property
    def hidden_count(self) -> int:
        return max(0, len(self.entries) - self.limit)

    def visible_entries(self, expanded: bool = False) -> List[Tuple[str, RenderNode]]:
        if expanded or not self.can_collapse:
            return self.entries
        return self.entries[: self.limit]

    def toggle_label(self, expanded: bool) -> str:
        return "Show Less" if expanded else f"Show {self.hidden_count} More..."


def render_payload(cell: Any, limit: int = MAX_INITIAL_FIELDS) -> PayloadView:
    if cell is None or str(cell).strip() == "":
        return PayloadView(is_json=False, limit=limit)
    if not isinstance(cell, str):
        return PayloadView(is_json=False, raw=str(cell), limit=limit)

    trimmed = cell.strip()
    if not (trimmed.startswith("{") or trimmed.startswith("[")):
        return PayloadView(is_json=False, raw=cell, limit=limit)

    parsed = parse_json_cell(trimmed)
    if not parsed.ok:
        return PayloadView(is_json=False, raw=cell, error=INVALID_JSON, limit=limit)

    node = render_value(parsed.value)
    if not node.is_nested:
        return PayloadView(is_json=False, raw=cell, limit=limit)
    return PayloadView(is_json=True, entries=node.children, limit=limit)


@dataclass(frozen=True)
class BlockView:
    is_null: bool
    text: str


def format_json_block(cell: Any) -> BlockView:
    """Detail-pane text for one cell: NULL, pretty-printed JSON or the raw text."""
    if cell is None:
        return BlockView(True, NULL_MARKER)
    text = str(cell)
    if text.strip() == "" or text.strip().lower() == "null":
        return BlockView(True, NULL_MARKER)
    parsed = parse_json_cell(text)
    if parsed.ok:
        return BlockView(False, json.dumps(parsed.value, indent=2, ensure_ascii=False))
    return BlockView(False, text)


def humanize_column(name: str) -> str:
    return str(name).replace("_", " ")
