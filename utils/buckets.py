"""
Calendar bucketing: truncation SQL per backend and the one place bucket keys become labels.
The compiler groups and orders by the truncated date (chronological); the result normalizer
calls format_bucket_label on each key, so "2016-01-01" -> "January 2016".
"""
from typing import Any, Optional

import pandas as pd

from db.models import BUCKETS

UNKNOWN_LABEL = "Unknown"

DUCKDB = "duckdb"
WAREHOUSE = "warehouse"


def bucket_sql(column_sql: str, bucket: str, dialect: str = DUCKDB) -> str:
    """Truncate a quoted date column to the bucket start."""
    if bucket not in BUCKETS:
        raise ValueError(f"unsupported bucket {bucket!r}")
    if dialect == WAREHOUSE:
        return f"DATE_TRUNC(DATE({column_sql}), {bucket.upper()})"
    return f"CAST(date_trunc('{bucket}', {column_sql}) AS DATE)"


def format_bucket_label(value: Any, bucket: Optional[str]) -> str:
    """
    Human-readable label for a bucket key.
    month -> "January 2016", quarter -> "Q1 2016", year -> "2016", day -> "05 Jan 2016".
    """
    if value is None:
        return UNKNOWN_LABEL
    try:
        ts = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        ts = None
    if ts is None or pd.isna(ts):
        return str(value)
    if bucket == "month":
        return ts.strftime("%B %Y")
    if bucket == "quarter":
        return f"Q{ts.quarter} {ts.year}"
    if bucket == "year":
        return str(ts.year)
    if bucket == "day":
        return ts.strftime("%d %b %Y")
    return ts.strftime("%Y-%m-%d")
