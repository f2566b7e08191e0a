from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from difflib import SequenceMatcher
from typing import Any, List, Mapping, Optional, Sequence

from audit_core.values import best_effort_json

DEFAULT_COMPARE_COLUMN = "payload"


@dataclass(frozen=True)
class DiffFragment:
    value: str
    added: bool = False
    removed: bool = False


@dataclass
class DiffResult:
    left: List[DiffFragment] = field(default_factory=list)
    right: List[DiffFragment] = field(default_factory=list)
    fragments: List[DiffFragment] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(f.added or f.removed for f in self.fragments)

    def to_dict(self) -> dict:
        return {
            "left": [asdict(f) for f in self.left],
            "right": [asdict(f) for f in self.right],
            "changed": self.changed,
        }


def to_diff_text(value: Any) -> str:
    """Strings diff as-is; everything else as canonical JSON (sorted keys, 2-space indent)."""
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False, default=str)


def diff_fragments(text_a: str, text_b: str) -> List[DiffFragment]:
    lines_a = text_a.splitlines(keepends=True)
    lines_b = text_b.splitlines(keepends=True)
    matcher = SequenceMatcher(None, lines_a, lines_b, autojunk=False)

    fragments: List[DiffFragment] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            fragments.append(DiffFragment("".join(lines_a[i1:i2])))
            continue
        if i2 > i1:
            fragments.append(DiffFragment("".join(lines_a[i1:i2]), removed=True))
        if j2 > j1:
            fragments.append(DiffFragment("".join(lines_b[j1:j2]), added=True))
    return fragments


def diff_values(a: Any, b: Any) -> DiffResult:
    """Line diff of two cell values after best-effort JSON decoding.

    ``left`` holds removed + unchanged fragments (reconstructs ``a``),
    ``right`` holds added + unchanged fragments (reconstructs ``b``).
    """
    text_a = to_diff_text(best_effort_json("" if a is None else a))
    text_b = to_diff_text(best_effort_json("" if b is None else b))
    fragments = diff_fragments(text_a, text_b)
    return DiffResult(
        left=[f for f in fragments if not f.added],
        right=[f for f in fragments if not f.removed],
        fragments=fragments,
    )


def join_fragments(fragments: Sequence[DiffFragment]) -> str:
    return "".join(f.value for f in fragments)


def default_compare_column(headers: Sequence[str]) -> str:
    if DEFAULT_COMPARE_COLUMN in headers:
        return DEFAULT_COMPARE_COLUMN
    return headers[0] if headers else ""


def compare_rows(row_a: Mapping[str, Any], row_b: Mapping[str, Any], column: Optional[str] = None) -> DiffResult:
    column = column or DEFAULT_COMPARE_COLUMN
    return diff_values(row_a.get(column) or "", row_b.get(column) or "")
