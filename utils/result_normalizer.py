"""
Result normalizer — executed rows -> Chart Series Result {"labels", "datasets"}.
One reshape for every compiled form: single group, grouped with a series column,
one result per series (warehouse), and raw / filter-only passthrough.
"""
import logging
from typing import Any, Dict, List, Optional

from db.models import chart_series_doc, dataset_doc
from utils.buckets import UNKNOWN_LABEL, format_bucket_label
from utils.normalizer import to_number, to_portable

logger = logging.getLogger(__name__)


def normalize_cell(value: Any, numeric: bool = False) -> Any:
    """Portable cell; numeric cells become numbers with null -> 0, keys become strings with null -> 'Unknown'."""
    value = to_portable(value)
    if numeric:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        number = to_number(value)
        return 0 if number is None else number
    if value is None:
        return UNKNOWN_LABEL
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _label(value: Any, bucket: Optional[str]) -> str:
    if bucket and value is not None:
        return format_bucket_label(value, bucket)
    return normalize_cell(value)


def key_order(key: Any) -> tuple:
    """Sort key matching the compiled ORDER BY <label> NULLS LAST."""
    if key is None:
        return (2, 0, "")
    if isinstance(key, (int, float)):
        return (0, float(key), "")
    return (1, 0, str(key))


def _pivot(points: List[tuple], series_order: List[str], default_label: str, merge: bool = False) -> dict:
    """
    points: (key, label, series, value) in query order, key being the raw grouping value.
    Labels follow query order; merge=True (one result per series) re-sorts the merged keys
    the way the single query would have ordered them. A series without a point at some key
    gets 0 there. Keys stay distinct even when their labels coincide (null and "Unknown").
    """
    keys: List[Any] = []
    labels: Dict[Any, str] = {}
    table: Dict[str, Dict[Any, Any]] = {}
    for key, label, series, value in points:
        if key not in labels:
            keys.append(key)
            labels[key] = label
        if series not in series_order:
            series_order.append(series)
        table.setdefault(series, {}).setdefault(key, value)
    if merge:
        keys.sort(key=key_order)
    if not series_order:
        series_order = [default_label]
    datasets = [
        dataset_doc(s, [table.get(s, {}).get(k, 0) for k in keys])
        for s in series_order
    ]
    return chart_series_doc([labels[k] for k in keys], datasets)


def _index(columns: List[str], name: Optional[str]) -> Optional[int]:
    if name is None:
        return None
    try:
        return list(columns).index(name)
    except ValueError:
        return None


def _is_numeric_column(rows: List[list], i: int) -> bool:
    seen = False
    for r in rows:
        v = r[i]
        if v is None:
            continue
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return False
        seen = True
    return seen


def _grouped_points(result: dict, compiled: dict, series_name: Optional[str]) -> List[tuple]:
    columns = result.get("columns") or []
    rows = result.get("rows") or []
    bucket = compiled.get("bucket")
    label_i = _index(columns, compiled.get("label_column"))
    series_i = _index(columns, compiled.get("series_column"))
    value_cols = compiled.get("value_columns") or []
    value_i = _index(columns, value_cols[0] if value_cols else None)
    if value_i is None:
        value_i = len(columns) - 1
    points = []
    for r in rows:
        if label_i is None:
            key = len(points) + 1
            label = str(key)
        else:
            key = to_portable(r[label_i])
            label = _label(r[label_i], bucket)
        series = normalize_cell(r[series_i]) if series_i is not None else series_name
        points.append((key, label, series, normalize_cell(r[value_i], numeric=True)))
    return points


def _passthrough(result: dict, compiled: dict, measure_label: str) -> dict:
    columns = list(result.get("columns") or [])
    rows = result.get("rows") or []
    label_i = _index(columns, compiled.get("label_column"))
    if label_i is None:
        label_i = next((i for i in range(len(columns)) if not _is_numeric_column(rows, i)), None)

    value_names = [c for c in (compiled.get("value_columns") or []) if c in columns]
    if not value_names:
        value_names = [c for i, c in enumerate(columns) if i != label_i and _is_numeric_column(rows, i)]

    if label_i is None:
        labels = [str(n + 1) for n in range(len(rows))]
    else:
        labels = [normalize_cell(r[label_i]) for r in rows]
    datasets = [
        dataset_doc(name, [normalize_cell(r[columns.index(name)], numeric=True) for r in rows])
        for name in value_names
    ]
    if not datasets:
        datasets = [dataset_doc(measure_label, [])] if not rows else [dataset_doc(measure_label, [0] * len(rows))]
    return chart_series_doc(labels, datasets)


def to_chart_series(results: Any, compiled: dict, measure_label: Optional[str] = None) -> dict:
    """
    Reshape executed results into {"labels", "datasets"}.
    results: one {"columns", "rows"} result, or a list of {"series", "result"} for
    per-series execution. Zero rows -> empty labels and one empty dataset.
    """
    measure_label = measure_label or compiled.get("value_label") or "Value"

    if isinstance(results, list):
        # One result per series value, merged the same way as a series column
        points = []
        order = []
        for part in results:
            order.append(str(part["series"]))
            points.extend(_grouped_points(part["result"], compiled, str(part["series"])))
        series = _pivot(points, order, measure_label, merge=True)
    elif compiled.get("data_query") in ("group", "count"):
        has_series = compiled.get("series_column") is not None
        points = _grouped_points(results, compiled, None if has_series else measure_label)
        if compiled.get("data_query") == "count":
            points = [(measure_label, measure_label, measure_label, v) for _, _, _, v in points]
        series = _pivot(points, [] if has_series else [measure_label], measure_label)
    else:
        series = _passthrough(results, compiled, measure_label)

    if not series["labels"]:
        series = chart_series_doc([], [dataset_doc(measure_label, [])])
    logger.info("to_chart_series: labels=%d datasets=%d", len(series["labels"]), len(series["datasets"]))
    return series
