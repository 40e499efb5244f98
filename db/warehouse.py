"""
Warehouse connector interface (secondary backend for installations that query a remote table
instead of an uploaded file), plus schema/sample helpers built only on run_query.
"""
import datetime as dt
import logging
from decimal import Decimal
from typing import Any, Dict, List

from db.models import BOOLEAN, DATE, FLOAT, INTEGER, STRING, UNKNOWN, column_doc
from utils.errors import DataSourceUnreadable, QueryExecutionError
from utils.normalizer import normalize_row

logger = logging.getLogger(__name__)

# Rows pulled to infer column types from values
SCHEMA_PROBE_ROWS = 10


class WarehouseConnector:
    """Subclass and implement validate_target / run_query for a concrete warehouse."""

    def validate_target(self, schema: str, table: str) -> bool:
        raise NotImplementedError

    def run_query(self, sql: str) -> Dict[str, Any]:
        """Return {"columns": [str], "rows": [tuple]}."""
        raise NotImplementedError


def quote_table(schema: str, table: str) -> str:
    """Backtick-quoted `schema.table` reference (embedded backticks removed)."""
    clean = [str(p).replace("`", "") for p in (schema, table) if p]
    return "`" + ".".join(clean) + "`"


def infer_type(values: List[Any]) -> str:
    """Column type from the first non-null sample value (python type of the driver value)."""
    for v in values:
        if v is None:
            continue
        if isinstance(v, bool):
            return BOOLEAN
        if isinstance(v, int):
            return INTEGER
        if isinstance(v, (float, Decimal)):
            return FLOAT
        if isinstance(v, (dt.date, dt.datetime)):
            return DATE
        if isinstance(v, str):
            return STRING
        return UNKNOWN
    return STRING


def _run(connector: WarehouseConnector, sql: str) -> Dict[str, Any]:
    try:
        return connector.run_query(sql)
    except Exception as e:
        logger.error("warehouse: query failed sql=%s error=%s", sql, e)
        raise QueryExecutionError(detail=str(e)) from e


def describe_table(connector: WarehouseConnector, schema: str, table: str) -> List[dict]:
    """Column descriptors for a warehouse table, inferred from a small probe."""
    if not connector.validate_target(schema, table):
        raise DataSourceUnreadable(
            "The warehouse table could not be found or is not accessible.",
            detail=f"validate_target failed for {schema}.{table}",
        )
    try:
        result = _run(connector, f"SELECT * FROM {quote_table(schema, table)} LIMIT {SCHEMA_PROBE_ROWS}")
    except QueryExecutionError as e:
        raise DataSourceUnreadable(detail=e.detail) from e
    columns = result.get("columns") or []
    rows = result.get("rows") or []
    if not rows:
        return []
    return [column_doc(name, infer_type([r[i] for r in rows])) for i, name in enumerate(columns)]


def sample_table(connector: WarehouseConnector, schema: str, table: str, limit: int) -> Dict[str, Any]:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")
    relation = quote_table(schema, table)
    result = _run(connector, f"SELECT * FROM {relation} LIMIT {limit}")
    rows = [normalize_row(r) for r in result.get("rows") or []]
    counted = _run(connector, f"SELECT COUNT(*) AS total_rows FROM {relation}").get("rows") or []
    total = int(counted[0][0]) if counted and counted[0][0] is not None else None
    return {"columns": list(result.get("columns") or []), "rows": rows, "total_rows": total}


def execute_aggregation(connector: WarehouseConnector, compiled_query: Any) -> Dict[str, Any]:
    sql = compiled_query["sql"] if isinstance(compiled_query, dict) else str(compiled_query)
    result = _run(connector, sql)
    rows = [normalize_row(r) for r in result.get("rows") or []]
    return {"columns": list(result.get("columns") or []), "rows": rows}
