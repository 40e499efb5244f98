"""
Schema/sample summarizer — compact, model-safe dataset context for the intent prompt.
Bounded: capped columns, rows and string lengths. Every value goes through to_portable.
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from utils.normalizer import to_portable

load_dotenv()

SUMMARY_SAMPLE_ROWS = int(os.getenv("SUMMARY_SAMPLE_ROWS", "10"))
MAX_COLUMNS = 100
MAX_VALUE_LENGTH = 80

logger = logging.getLogger(__name__)


def summarize(
    columns: List[dict],
    sample: Optional[Dict[str, Any]] = None,
    dataset_name: Optional[str] = None,
    max_rows: int = SUMMARY_SAMPLE_ROWS,
) -> dict:
    """
    Build {"dataset", "columns", "sample_rows", "row_count", "notes"}.
    sample: {"columns", "rows", "total_rows"} from the reader; rows are keyed by column name.
    """
    notes: List[str] = []
    kept = list(columns[:MAX_COLUMNS])
    if len(columns) > MAX_COLUMNS:
        notes.append(f"only the first {MAX_COLUMNS} of {len(columns)} columns are shown")
    kept_names = {c["name"] for c in kept}

    sample = sample or {}
    sample_columns = list(sample.get("columns") or [])
    sample_rows: List[dict] = []
    for row in (sample.get("rows") or [])[:max(0, max_rows)]:
        record = {}
        for name, value in zip(sample_columns, row):
            if name in kept_names:
                record[name] = to_portable(value, notes, max_length=MAX_VALUE_LENGTH)
        sample_rows.append(record)

    if notes:
        logger.warning("summarizer: %s", "; ".join(notes))
    return {
        "dataset": dataset_name or "dataset",
        "columns": [{"name": c["name"], "type": c["type"]} for c in kept],
        "sample_rows": sample_rows,
        "row_count": sample.get("total_rows"),
        "notes": notes,
    }


def summary_json(summary: dict) -> str:
    """Serialize a summary for the prompt; anything left unportable is stringified."""
    return json.dumps(summary, default=str, indent=2, ensure_ascii=False)
