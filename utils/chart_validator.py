"""
Chart validator — rule-based check of a Chart Series Result before it leaves the pipeline.
validate_chart(series, chart_type) -> bool. The orchestrator refuses to return a failing result.
"""
import math
from typing import Any, Dict, List, Optional

from db.models import CHART_TYPES, DEFAULT_CHART_TYPE


def validate_chart(series: Dict[str, Any], chart_type: Optional[str] = None) -> bool:
    """
    Validate that chart data is renderable.

    Rules:
    1. labels is a list of strings; datasets is a non-empty list.
    2. Every dataset has a string label and len(values) == len(labels).
    3. Every value is a finite number (bools rejected).
    4. Pie charts carry exactly one dataset.

    Returns True if all rules pass, False otherwise.
    """
    if not isinstance(series, dict):
        return False
    labels = series.get("labels")
    datasets = series.get("datasets")

    # 1. Labels and datasets present
    if not isinstance(labels, list) or not all(isinstance(lb, str) for lb in labels):
        return False
    if not isinstance(datasets, list) or not datasets:
        return False

    # 2-3. Aligned, numeric datasets
    for ds in datasets:
        if not isinstance(ds, dict) or not isinstance(ds.get("label"), str):
            return False
        values = ds.get("values")
        if not isinstance(values, list) or len(values) != len(labels):
            return False
        if not all(_is_number(v) for v in values):
            return False

    # 4. Pie needs a single series
    if (chart_type or "").strip().lower() == "pie" and len(datasets) != 1:
        return False

    return True


def chart_type_or_default(chart_type: Optional[str]) -> str:
    """Supported chart type, else the default (bar)."""
    t = (chart_type or "").strip().lower()
    return t if t in CHART_TYPES else DEFAULT_CHART_TYPE


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and (math.isnan(value) or math.isinf(value)))


def problems(series: Dict[str, Any]) -> List[str]:
    """Human-readable shape problems, for logging when validate_chart fails."""
    out = []
    labels = series.get("labels") if isinstance(series, dict) else None
    if not isinstance(labels, list):
        return ["labels missing"]
    for ds in (series.get("datasets") or []):
        values = ds.get("values") if isinstance(ds, dict) else None
        if not isinstance(values, list):
            out.append(f"dataset {ds!r} has no values")
        elif len(values) != len(labels):
            out.append(f"dataset {ds.get('label')!r} has {len(values)} values for {len(labels)} labels")
    return out
