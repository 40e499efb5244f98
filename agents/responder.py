"""
Response agent — user-facing explanation for a chart result.
Uses the model's explanation when it gave one; otherwise describes the query in plain words.
Degraded and empty results always get a note saying so.
"""
from typing import Any, Dict, List

from utils.query_compiler import measure_label

DEGRADED_NOTE = (
    "The grouped chart could not be computed for this dataset, "
    "so this shows the number of matching rows instead."
)
EMPTY_NOTE = "No rows matched these filters."


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def _filters_string(filters: List[dict]) -> str:
    """'State = Kentucky, OrderDate >= 2016-01-01' style."""
    parts = []
    for f in filters or []:
        operator = "in" if f.get("operator") == "IN" else f.get("operator")
        parts.append(f"{f.get('column')} {operator} {_format_value(f.get('value'))}")
    return ", ".join(parts)


def describe_intent(intent: Dict[str, Any]) -> str:
    """Plain description of what the chart shows."""
    data_query = intent.get("data_query")
    filters = _filters_string(intent.get("filters") or [])
    if data_query == "group":
        text = f"{measure_label(intent)} by {intent.get('dimension')}"
        if intent.get("bucket"):
            text += f" ({intent['bucket']})"
        if intent.get("series_by"):
            text += f", one series per {intent['series_by']}"
    elif data_query == "raw":
        text = "Rows from the dataset"
    else:
        text = "Matching rows"
        if intent.get("measure"):
            text += f" showing {intent['measure']}"
    if filters:
        text += f" where {filters}"
    return text + "."


def respond(intent: Dict[str, Any], series: Dict[str, Any], degraded: bool = False) -> str:
    """Explanation text for the ChartQueryResult."""
    parts = [(intent.get("explanation") or "").strip() or describe_intent(intent)]
    if degraded:
        parts.append(DEGRADED_NOTE)
    elif not series.get("labels"):
        parts.append(EMPTY_NOTE)
    return " ".join(parts)
