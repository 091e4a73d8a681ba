from __future__ import annotations

from typing import Dict, List

import pandas as pd

from weather_data import ColumnarDataset, MeasureAndModel, group_by_date

RULE_WIDTH = 100


def totals_frame(totals: Dict[MeasureAndModel, float]) -> pd.DataFrame:
    """Pivot per-key totals into a model x measure table.

    Rows are models, columns are measures (both sorted); combinations the
    source did not report stay NaN.
    """
    rows = [{"Model": k.model, "Measure": k.measure, "Value": v} for k, v in totals.items()]
    if not rows:
        return pd.DataFrame()
    frame = pd.DataFrame(rows).pivot(index="Model", columns="Measure", values="Value")
    frame = frame.sort_index().reindex(sorted(frame.columns), axis=1)
    frame.columns.name = None
    return frame


def render_totals_table(totals: Dict[MeasureAndModel, float]) -> str:
    frame = totals_frame(totals)
    if frame.empty:
        return "(no data)"
    return frame.to_string(na_rep="", float_format=lambda v: f"{v:.2f}")


def render_daily_breakdown(dataset: ColumnarDataset, unit: str) -> List[str]:
    lines: List[str] = []
    for day, entries in group_by_date(dataset).items():
        lines.append(f"  Date: {day}")
        for model, measure, value in entries:
            shown = "" if value is None else f"{value:.1f}"
            lines.append(f"    {model} - {measure}: {shown} {unit}")
        lines.append("")
    return lines


def section_header(title: str) -> List[str]:
    rule = "=" * RULE_WIDTH
    return [rule, title, rule, ""]
