from __future__ import annotations

from typing import Any, Dict, Optional

import altair as alt
import pandas as pd

from audit_core.timeline import format_timeline_date, parse_timestamp

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.TopLevelMixin) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def timeline_frame(groups: Dict[str, pd.DataFrame], date_column: str, color_column: Optional[str] = "action") -> pd.DataFrame:
    records = []
    for ident, group in groups.items():
        for global_index, row in group.iterrows():
            ts = parse_timestamp(row.get(date_column))
            if ts is None:
                continue
            records.append(
                {
                    "identifier": ident,
                    "timestamp": ts.tz_convert(None),
                    "when": format_timeline_date(row.get(date_column)),
                    "row": int(global_index) + 1,
                    "category": str(row.get(color_column, "") or "") if color_column else "",
                }
            )
    return pd.DataFrame(records, columns=["identifier", "timestamp", "when", "row", "category"])


def timeline_chart(groups: Dict[str, pd.DataFrame], date_column: str, color_column: Optional[str] = "action") -> Optional[alt.LayerChart]:
    """One lane per identifier, one point per dated row. None when nothing is datable."""
    frame = timeline_frame(groups, date_column, color_column)
    if frame.empty:
        return None
    base = alt.Chart(frame).encode(
        x=alt.X("timestamp:T", title=date_column),
        y=alt.Y("identifier:N", title=None, sort=list(groups.keys())),
    )
    lanes = base.mark_line(color="#d1d5db").encode(detail="identifier:N")
    points = base.mark_circle(size=90).encode(
        color=alt.Color("category:N", title=color_column or "category"),
        tooltip=[
            alt.Tooltip("identifier:N", title="Identifier"),
            alt.Tooltip("when:N", title="When"),
            alt.Tooltip("row:Q", title="Row #"),
            alt.Tooltip("category:N", title=color_column or "category"),
        ],
    )
    return (lanes + points).properties(height=max(80, 40 * len(groups)))
