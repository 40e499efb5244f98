"""
Query compiler — validated query intent -> backend-specific SQL.

Grouping and aggregation are always pushed to the backend. Filter values are bound as
escaped literals matched to the column's declared type; identifiers are always quoted.
Backends: "local" (DuckDB over the `dataset` view) and "warehouse" (BigQuery-style SQL).
"""
import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from db.file_reader import SOURCE_ALIAS
from db.models import (
    BOOLEAN,
    DATE,
    FILTER_ONLY,
    FLOAT,
    GROUP,
    INTEGER,
    RAW,
    column_types,
)
from utils import buckets
from utils.normalizer import iso_date, to_bool, to_number

load_dotenv()

# Row cap for raw passthrough queries (bounds memory); override per call or via env
RAW_ROW_CAP = int(os.getenv("CHART_RAW_ROW_CAP", "1000"))
# Default sample size for filter-only queries
SAMPLE_LIMIT = int(os.getenv("CHART_SAMPLE_LIMIT", "100"))

LOCAL = "local"
WAREHOUSE = "warehouse"
BACKENDS = (LOCAL, WAREHOUSE)

# Output column aliases of grouped queries
LABEL = "label"
SERIES = "series"
VALUE = "value"

AGGREGATION_LABELS = {
    "SUM": "Sum of {}",
    "AVG": "Average of {}",
    "MIN": "Minimum of {}",
    "MAX": "Maximum of {}",
    "COUNT": "Count of {}",
}

logger = logging.getLogger(__name__)


def _dialect(backend: str) -> str:
    return buckets.WAREHOUSE if backend == WAREHOUSE else buckets.DUCKDB


def quote_identifier(name: str, backend: str = LOCAL) -> str:
    if backend == WAREHOUSE:
        return "`" + str(name).replace("`", "") + "`"
    return '"' + str(name).replace('"', '""') + '"'


def quote_string(value: str, backend: str = LOCAL) -> str:
    s = str(value)
    if backend == WAREHOUSE:
        return "'" + s.replace("\\", "\\\\").replace("'", "\\'") + "'"
    return "'" + s.replace("'", "''") + "'"


def literal(value: Any, column_type: str, backend: str = LOCAL) -> str:
    """
    SQL literal for a filter value, typed by the column.
    Raises ValueError when the value cannot be coerced (callers validate first).
    """
    if column_type in (INTEGER, FLOAT):
        number = to_number(value)
        if number is None:
            raise ValueError(f"{value!r} is not a number")
        if column_type == INTEGER and float(number).is_integer():
            return str(int(number))
        return repr(float(number))
    if column_type == BOOLEAN:
        flag = to_bool(value)
        if flag is None:
            raise ValueError(f"{value!r} is not a boolean")
        return "TRUE" if flag else "FALSE"
    if column_type == DATE:
        iso = iso_date(value)
        if iso is None:
            raise ValueError(f"{value!r} is not a date")
        return f"CAST({quote_string(iso, backend)} AS DATE)"
    return quote_string(value, backend)


def _column_expr(name: str, column_type: str, backend: str) -> str:
    quoted = quote_identifier(name, backend)
    if column_type == DATE:
        # Compare on the calendar date so timestamps inside the bound day still match
        return f"DATE({quoted})" if backend == WAREHOUSE else f"CAST({quoted} AS DATE)"
    return quoted


def condition_sql(flt: dict, types: Dict[str, str], backend: str = LOCAL) -> str:
    column = flt["column"]
    column_type = types[column]
    operator = flt["operator"]
    left = _column_expr(column, column_type, backend)
    if operator == "IN":
        values = flt["value"] if isinstance(flt["value"], (list, tuple)) else [flt["value"]]
        return f"{left} IN ({', '.join(literal(v, column_type, backend) for v in values)})"
    return f"{left} {operator} {literal(flt['value'], column_type, backend)}"


def where_sql(filters: List[dict], types: Dict[str, str], backend: str = LOCAL) -> str:
    if not filters:
        return ""
    return " WHERE " + " AND ".join(condition_sql(f, types, backend) for f in filters)


def aggregate_sql(aggregation: str, measure: Optional[str], backend: str = LOCAL) -> str:
    if aggregation == "COUNT" and not measure:
        return "COUNT(*)"
    return f"{aggregation}({quote_identifier(measure, backend)})"


def measure_label(intent: dict) -> str:
    """Dataset label for a grouped query, e.g. 'Sum of Sales'."""
    aggregation = intent.get("aggregation") or "COUNT"
    measure = intent.get("measure")
    if aggregation == "COUNT" and not measure:
        return "Count"
    return AGGREGATION_LABELS.get(aggregation, "{}").format(measure)


def _compiled(sql: str, backend: str, data_query: str, **extra) -> dict:
    out = {
        "sql": sql,
        "backend": backend,
        "data_query": data_query,
        "bucket": None,
        "label_column": None,
        "series_column": None,
        "value_columns": None,
        "value_label": None,
        "series_queries": [],
    }
    out.update(extra)
    return out


def _series_values(intent: dict) -> List[Any]:
    """Values named for the series column through = / IN filters, in order."""
    series_by = intent.get("series_by")
    values: List[Any] = []
    for f in intent.get("filters") or []:
        if f.get("column") != series_by:
            continue
        if f.get("operator") == "=":
            candidates = [f.get("value")]
        elif f.get("operator") == "IN":
            candidates = list(f.get("value") or [])
        else:
            continue
        for v in candidates:
            if v not in values:
                values.append(v)
    return values


def _group_sql(intent: dict, types: Dict[str, str], backend: str, source: str,
               filters: List[dict], with_series: bool) -> str:
    dimension = quote_identifier(intent["dimension"], backend)
    label_expr = dimension
    if intent.get("bucket"):
        label_expr = buckets.bucket_sql(dimension, intent["bucket"], _dialect(backend))
    value_expr = aggregate_sql(intent["aggregation"], intent.get("measure"), backend)
    select = [f"{label_expr} AS {LABEL}"]
    group_by = [label_expr]
    order_by = [f"{label_expr} NULLS LAST"]
    if with_series:
        series_expr = quote_identifier(intent["series_by"], backend)
        select.append(f"{series_expr} AS {SERIES}")
        group_by.append(series_expr)
        order_by.append(f"{series_expr} NULLS LAST")
    select.append(f"{value_expr} AS {VALUE}")
    return (
        f"SELECT {', '.join(select)} FROM {source}{where_sql(filters, types, backend)}"
        f" GROUP BY {', '.join(group_by)} ORDER BY {', '.join(order_by)}"
    )


def _compile_group(intent: dict, types: Dict[str, str], backend: str, source: str) -> dict:
    filters = intent.get("filters") or []
    series_by = intent.get("series_by")
    common = {
        "bucket": intent.get("bucket"),
        "label_column": LABEL,
        "value_columns": [VALUE],
        "value_label": measure_label(intent),
    }

    if series_by and backend == WAREHOUSE:
        values = _series_values(intent)
        if values:
            # One single-group query per series; the normalizer merges them
            series_queries = []
            others = [f for f in filters if f.get("column") != series_by]
            for v in values:
                per_series = others + [{"column": series_by, "operator": "=", "value": v}]
                series_queries.append({
                    "series": str(v),
                    "sql": _group_sql(intent, types, backend, source, per_series, with_series=False),
                })
            sql = ";\n".join(q["sql"] for q in series_queries)
            return _compiled(sql, backend, GROUP, series_queries=series_queries, **common)

    with_series = bool(series_by)
    sql = _group_sql(intent, types, backend, source, filters, with_series)
    return _compiled(sql, backend, GROUP, series_column=SERIES if with_series else None, **common)


def _row_limit(intent: dict, default: int, cap: int) -> int:
    limit = intent.get("limit")
    if limit is None:
        return min(default, cap)
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")
    return min(limit, cap)


def compile_query(
    intent: dict,
    columns: List[dict],
    backend: str = LOCAL,
    source: Optional[str] = None,
    raw_row_cap: Optional[int] = None,
) -> dict:
    """
    Compile a validated intent.
    Returns {"sql", "backend", "data_query", "bucket", "label_column", "series_column",
             "value_columns", "value_label", "series_queries"}.
    """
    if backend not in BACKENDS:
        raise ValueError(f"unknown backend {backend!r}")
    types = column_types(columns)
    source = source or SOURCE_ALIAS
    cap = raw_row_cap if raw_row_cap is not None else RAW_ROW_CAP
    data_query = intent["data_query"]
    filters = intent.get("filters") or []

    if data_query == GROUP:
        compiled = _compile_group(intent, types, backend, source)
    elif data_query == FILTER_ONLY:
        limit = _row_limit(intent, SAMPLE_LIMIT, cap)
        sql = f"SELECT * FROM {source}{where_sql(filters, types, backend)} LIMIT {int(limit)}"
        compiled = _compiled(
            sql, backend, FILTER_ONLY,
            label_column=intent.get("dimension"),
            value_columns=[intent["measure"]] if intent.get("measure") else None,
            value_label=intent.get("measure"),
        )
    elif data_query == RAW:
        projection = [c for c in (intent.get("dimension"), intent.get("measure")) if c]
        select = ", ".join(quote_identifier(c, backend) for c in projection) if projection else "*"
        limit = _row_limit(intent, cap, cap)
        sql = f"SELECT {select} FROM {source}{where_sql(filters, types, backend)} LIMIT {int(limit)}"
        compiled = _compiled(
            sql, backend, RAW,
            label_column=intent.get("dimension"),
            value_columns=[intent["measure"]] if intent.get("measure") else None,
            value_label=intent.get("measure"),
        )
    else:
        raise ValueError(f"unknown data query {data_query!r}")

    logger.info("query_compiled: backend=%s data_query=%s sql=%s", backend, data_query, compiled["sql"])
    return compiled


def compile_count_fallback(intent: dict, columns: List[dict], backend: str = LOCAL,
                           source: Optional[str] = None) -> dict:
    """Degraded query: filtered row count without grouping."""
    types = column_types(columns)
    source = source or SOURCE_ALIAS
    sql = f"SELECT COUNT(*) AS {VALUE} FROM {source}{where_sql(intent.get('filters') or [], types, backend)}"
    return _compiled(sql, backend, "count", value_columns=[VALUE], value_label="Row count")
