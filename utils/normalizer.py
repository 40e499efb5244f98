"""
Type-portability normalizer: every cell leaving the engine becomes a JSON-safe scalar.
Wide integers -> float (with a precision note), dates -> ISO-8601, NaN/NaT -> None.
Never raises; values that cannot be represented are dropped with a logged warning.
"""
import datetime as dt
import logging
import math
import re
import uuid
from decimal import Decimal
from typing import Any, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Largest integer a JSON consumer (IEEE-754 double) holds exactly
MAX_SAFE_INTEGER = 2 ** 53 - 1

# Strings are truncated to keep prompts and payloads bounded
MAX_STRING_LENGTH = 200


def _note(notes: Optional[List[str]], message: str) -> None:
    if notes is not None and message not in notes:
        notes.append(message)


def _portable_int(value: int, notes: Optional[List[str]]) -> Any:
    if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
        return int(value)
    _note(notes, f"integer {value} exceeds the safe integer range; converted to an approximate number")
    return float(value)


def _portable_float(value: float) -> Optional[float]:
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def to_portable(value: Any, notes: Optional[List[str]] = None, max_length: int = MAX_STRING_LENGTH) -> Any:
    """
    Convert one value to str | int | float | bool | None.
    notes: optional list collecting human-readable precision/drop notes.
    """
    try:
        if value is None or value is pd.NaT:
            return None
        # bool before int: bool is an int subclass
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if isinstance(value, (int, np.integer)):
            return _portable_int(int(value), notes)
        if isinstance(value, (float, np.floating)):
            return _portable_float(float(value))
        if isinstance(value, Decimal):
            if not value.is_finite():
                return None
            if value == value.to_integral_value():
                return _portable_int(int(value), notes)
            return float(value)
        if isinstance(value, pd.Timestamp):
            return value.isoformat()
        if isinstance(value, (dt.datetime, dt.date, dt.time)):
            return value.isoformat()
        if isinstance(value, np.datetime64):
            if np.isnat(value):
                return None
            return pd.Timestamp(value).isoformat()
        if isinstance(value, (dt.timedelta, pd.Timedelta)):
            return pd.Timedelta(value).total_seconds()
        if isinstance(value, str):
            return value if len(value) <= max_length else value[:max_length]
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            logger.warning("normalizer: dropped binary value (%d bytes)", len(bytes(value)))
            _note(notes, "binary values were omitted")
            return None
        text = str(value)
        logger.warning("normalizer: coerced %s to string", type(value).__name__)
        return text if len(text) <= max_length else text[:max_length]
    except Exception as e:
        logger.warning("normalizer: dropped unrepresentable %s value: %s", type(value).__name__, e)
        _note(notes, "some values could not be represented and were omitted")
        return None


def normalize_row(row: Any, notes: Optional[List[str]] = None) -> list:
    """Normalize a row tuple/list positionally."""
    return [to_portable(v, notes) for v in row]


def iso_date(value: Any) -> Optional[str]:
    """
    Convert value to ISO date string (YYYY-MM-DD) or None.
    Uses pd.to_datetime() for robust parsing.
    """
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        parsed = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.strftime("%Y-%m-%d")


def to_number(value: Any) -> Optional[float]:
    """Strip currency symbols and thousands separators; convert to float or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating, Decimal)):
        f = float(value)
        return None if math.isnan(f) or math.isinf(f) else f
    s = str(value).strip()
    if not s:
        return None
    s = re.sub(r"[^\d.eE+\-]", "", s)
    if not s:
        return None
    try:
        f = float(s)
    except ValueError:
        return None
    return None if math.isnan(f) or math.isinf(f) else f


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, np.integer)) and int(value) in (0, 1):
        return bool(value)
    s = str(value).strip().lower()
    if s in ("true", "t", "yes", "y", "1"):
        return True
    if s in ("false", "f", "no", "n", "0"):
        return False
    return None
