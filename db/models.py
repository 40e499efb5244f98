"""
Data model for the chart query pipeline.
Plain dict documents built by helper functions: column descriptors, query intents,
chart series results and the final chart query result.
"""
from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------------
# Column descriptors
# ---------------------------------------------------------------------------
STRING = "STRING"
INTEGER = "INTEGER"
FLOAT = "FLOAT"
BOOLEAN = "BOOLEAN"
DATE = "DATE"
UNKNOWN = "UNKNOWN"

COLUMN_TYPES = (STRING, INTEGER, FLOAT, BOOLEAN, DATE, UNKNOWN)
NUMERIC_TYPES = frozenset({INTEGER, FLOAT})

# DuckDB type name prefix -> column type. Checked in order; first match wins.
ENGINE_TYPE_PREFIXES = [
    ("INTERVAL", UNKNOWN),
    ("BOOL", BOOLEAN),
    ("TINYINT", INTEGER),
    ("SMALLINT", INTEGER),
    ("INTEGER", INTEGER),
    ("BIGINT", INTEGER),
    ("HUGEINT", INTEGER),
    ("UTINYINT", INTEGER),
    ("USMALLINT", INTEGER),
    ("UINTEGER", INTEGER),
    ("UBIGINT", INTEGER),
    ("UHUGEINT", INTEGER),
    ("INT", INTEGER),
    ("DOUBLE", FLOAT),
    ("FLOAT", FLOAT),
    ("REAL", FLOAT),
    ("DECIMAL", FLOAT),
    ("NUMERIC", FLOAT),
    ("TIMESTAMP", DATE),
    ("DATETIME", DATE),
    ("DATE", DATE),
    ("VARCHAR", STRING),
    ("TEXT", STRING),
    ("STRING", STRING),
    ("UUID", STRING),
]


def engine_type_to_column_type(engine_type: str) -> str:
    """Map an engine type name (e.g. 'BIGINT', 'DECIMAL(18,3)', 'TIMESTAMP WITH TIME ZONE')."""
    t = (engine_type or "").strip().upper()
    for prefix, column_type in ENGINE_TYPE_PREFIXES:
        if t.startswith(prefix):
            return column_type
    return UNKNOWN


def column_doc(name: str, column_type: str) -> dict:
    """Build a column descriptor. Unknown type names collapse to UNKNOWN."""
    column_type = (column_type or UNKNOWN).upper()
    if column_type not in COLUMN_TYPES:
        column_type = UNKNOWN
    return {"name": name, "type": column_type}


def column_types(columns: List[dict]) -> Dict[str, str]:
    """name -> type lookup for a descriptor list."""
    return {c["name"]: c["type"] for c in columns}


# ---------------------------------------------------------------------------
# Query intent
# ---------------------------------------------------------------------------
RAW = "raw"
GROUP = "group"
FILTER_ONLY = "filter-only"
DATA_QUERIES = (RAW, GROUP, FILTER_ONLY)

AGGREGATIONS = ("SUM", "AVG", "COUNT", "MIN", "MAX")
NUMERIC_AGGREGATIONS = frozenset({"SUM", "AVG", "MIN", "MAX"})

OPERATORS = ("=", "!=", ">", ">=", "<", "<=", "IN")

CHART_TYPES = ("bar", "line", "pie", "scatter", "area")
DEFAULT_CHART_TYPE = "bar"

BUCKETS = ("day", "month", "quarter", "year")


def intent_doc(
    data_query: str,
    dimension: Optional[str] = None,
    measure: Optional[str] = None,
    aggregation: Optional[str] = None,
    filters: Optional[List[dict]] = None,
    chart_type: str = DEFAULT_CHART_TYPE,
    explanation: str = "",
    bucket: Optional[str] = None,
    series_by: Optional[str] = None,
    limit: Optional[int] = None,
) -> dict:
    """Build a query intent document (snake_case, the validated internal form)."""
    return {
        "data_query": data_query,
        "dimension": dimension,
        "measure": measure,
        "aggregation": aggregation,
        "bucket": bucket,
        "series_by": series_by,
        "filters": list(filters or []),
        "limit": limit,
        "chart_type": chart_type,
        "explanation": explanation or "",
    }


def filter_doc(column: str, operator: str, value: Any) -> dict:
    return {"column": column, "operator": operator, "value": value}


def referenced_columns(intent: dict) -> List[str]:
    """Every column name an intent refers to, in order, without duplicates."""
    names = [intent.get("dimension"), intent.get("measure"), intent.get("series_by")]
    names += [f.get("column") for f in intent.get("filters") or []]
    out: List[str] = []
    for n in names:
        if n and n not in out:
            out.append(n)
    return out


# ---------------------------------------------------------------------------
# Chart series result / chart query result
# ---------------------------------------------------------------------------
def dataset_doc(label: str, values: List[float]) -> dict:
    return {"label": label, "values": list(values)}


def chart_series_doc(labels: List[str], datasets: List[dict]) -> dict:
    return {"labels": list(labels), "datasets": list(datasets)}


def chart_result_doc(
    series: dict,
    chart_type: str,
    explanation: str,
    degraded: bool = False,
    sql: str = "",
    intent: Optional[dict] = None,
    intent_source: str = "model",
) -> dict:
    """Final payload handed back to the caller (ChartQueryResult)."""
    return {
        "chart_type": chart_type,
        "labels": series.get("labels") or [],
        "datasets": series.get("datasets") or [],
        "explanation": explanation,
        "degraded": bool(degraded),
        "sql": sql,
        "intent": intent or {},
        "intent_source": intent_source,
    }
