"""
Intent validator — referential and type checks of a Query Intent against the Column Descriptor set.
validate_intent(intent, columns) -> validated intent (copy) or IntentValidationError.
Nothing executes until this passes.
"""
import copy
import logging
from typing import Any, List

from db.models import (
    AGGREGATIONS,
    BOOLEAN,
    BUCKETS,
    DATA_QUERIES,
    DATE,
    GROUP,
    NUMERIC_AGGREGATIONS,
    NUMERIC_TYPES,
    OPERATORS,
    column_types,
    referenced_columns,
)
from utils.chart_validator import chart_type_or_default
from utils.errors import IntentValidationError
from utils.normalizer import iso_date, to_bool, to_number
from utils.query_normalizer import closest_column

logger = logging.getLogger(__name__)


def _reject(message: str, detail: str) -> None:
    logger.info("intent_rejected: %s", detail)
    raise IntentValidationError(message, detail=detail)


def _coercible(value: Any, column_type: str) -> bool:
    if value is None or isinstance(value, (list, dict)):
        return False
    if column_type in NUMERIC_TYPES:
        return to_number(value) is not None
    if column_type == BOOLEAN:
        return to_bool(value) is not None
    if column_type == DATE:
        return iso_date(value) is not None
    return True


def validate_intent(intent: dict, columns: List[dict]) -> dict:
    """
    Rules, in order:
    1. data query, aggregation, operator and bucket are known values; limit is a positive integer.
    2. Every referenced column exists (unknown column; closest name suggested).
    3. group needs a dimension and an aggregation; a bucket needs a DATE dimension.
    4. SUM/AVG/MIN/MAX need a numeric measure (incompatible aggregation).
    5. Filter values coerce to the column type; IN takes a non-empty list (type mismatch).
    6. Unsupported chart_type becomes bar.
    """
    out = copy.deepcopy(intent)
    types = column_types(columns)

    # 1. Enumerations
    if out.get("data_query") not in DATA_QUERIES:
        _reject(
            "I couldn't tell whether to group, filter or list the data. Try naming a column to group by.",
            f"unknown data query {out.get('data_query')!r}",
        )
    if out.get("aggregation") is not None and out["aggregation"] not in AGGREGATIONS:
        _reject(
            f"'{out['aggregation']}' is not a supported aggregation. Use sum, average, count, min or max.",
            f"unknown aggregation {out['aggregation']!r}",
        )
    if out.get("bucket") is not None and out["bucket"] not in BUCKETS:
        _reject(
            f"'{out['bucket']}' is not a supported date grouping. Use day, month, quarter or year.",
            f"unknown bucket {out['bucket']!r}",
        )
    for f in out.get("filters") or []:
        if f.get("operator") not in OPERATORS:
            _reject(
                f"The filter operator '{f.get('operator')}' is not supported.",
                f"unknown operator {f.get('operator')!r}",
            )
    limit = out.get("limit")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
        _reject("The number of rows to show must be a positive whole number.", f"invalid limit {limit!r}")

    # 2. Referential
    for f in out.get("filters") or []:
        if not f.get("column"):
            _reject("A filter in this request does not name a column.", "filter without column")
    for name in referenced_columns(out):
        if name not in types:
            suggestion = closest_column(name, types.keys())
            hint = f" Did you mean '{suggestion}'?" if suggestion else ""
            _reject(f"unknown column '{name}'.{hint}", f"unknown column {name!r}")

    # 3. Grouping
    if out["data_query"] == GROUP:
        if not out.get("dimension"):
            _reject("Tell me which column to group the chart by.", "group without dimension")
        if not out.get("aggregation"):
            out["aggregation"] = "SUM" if out.get("measure") else "COUNT"
    if out.get("bucket"):
        if not out.get("dimension") or types.get(out["dimension"]) != DATE:
            _reject(
                f"'{out.get('dimension')}' is not a date column, so it can't be grouped by {out['bucket']}.",
                f"bucket {out['bucket']!r} on non-DATE dimension {out.get('dimension')!r}",
            )

    # 4. Aggregation vs measure type
    aggregation = out.get("aggregation")
    if aggregation in NUMERIC_AGGREGATIONS:
        measure = out.get("measure")
        if not measure or types[measure] not in NUMERIC_TYPES:
            _reject(
                f"incompatible aggregation: {aggregation} needs a numeric column, and '{measure}' is not numeric.",
                f"{aggregation} on {measure!r} ({types.get(measure)})",
            )

    # 5. Filter values
    for f in out.get("filters") or []:
        column_type = types[f["column"]]
        value = f.get("value")
        if f["operator"] == "IN":
            if not isinstance(value, (list, tuple)) or not value:
                _reject(
                    f"type mismatch: the IN filter on '{f['column']}' needs a list of values.",
                    f"IN filter on {f['column']!r} with {value!r}",
                )
            f["value"] = list(value)
            bad = [v for v in value if not _coercible(v, column_type)]
        else:
            bad = [] if _coercible(value, column_type) else [value]
        if bad:
            _reject(
                f"type mismatch: '{bad[0]}' is not a valid {column_type.lower()} value for '{f['column']}'.",
                f"filter value {bad[0]!r} not coercible to {column_type} for {f['column']!r}",
            )

    # 6. Chart type
    out["chart_type"] = chart_type_or_default(out.get("chart_type"))
    return out
