"""
Intent resolver — utterance + prior turns + dataset summary -> Query Intent (unvalidated).
Uses the Groq client when available; heuristic planner otherwise.
The model is asked for the camelCase wire shape; intent_from_payload accepts both spellings.
"""
import json
import logging
import re
from concurrent import futures
from typing import Any, Dict, List, Optional, Tuple

from db.models import (
    DATE,
    FILTER_ONLY,
    GROUP,
    NUMERIC_TYPES,
    RAW,
    STRING,
    filter_doc,
    intent_doc,
)
from utils.errors import ChartQueryError, IntentParseError, IntentTimeoutError
from utils.summarizer import summary_json
from .llm_client import INTENT_TIMEOUT_SECONDS, ModelUnavailable

MODEL = "model"
HEURISTIC = "heuristic"

# Model calls run here so the intent timeout holds even when a client ignores its own
_MODEL_POOL = futures.ThreadPoolExecutor(max_workers=8, thread_name_prefix="intent-model")

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a data visualization expert turning a question about one dataset into a chart query.
Reply with ONLY a valid JSON object (no markdown, no code blocks, no explanation outside the JSON).
Use the exact column names from the dataset; never invent columns."""

INTENT_SHAPE = """The JSON object must have exactly these fields:
{
  "dataQuery": {
    "type": "group" | "filter-only" | "raw",
    "dimension": "column to group by (required for group)",
    "bucket": "day" | "month" | "quarter" | "year" | null (only when dimension is a DATE column),
    "measure": "numeric column to aggregate, or null to count rows",
    "aggregation": "SUM" | "AVG" | "COUNT" | "MIN" | "MAX",
    "seriesBy": "column whose values become separate series when comparing values (e.g. State for Kentucky vs California), else null",
    "filters": [{"column": "column name", "operator": "=" | "!=" | ">" | ">=" | "<" | "<=" | "IN", "value": "value, or a list for IN"}],
    "limit": number or null
  },
  "chartType": "bar" | "line" | "pie" | "scatter" | "area",
  "explanation": "one sentence on why this chart answers the question"
}

Rules: dates in filters are YYYY-MM-DD. A year like 2016 becomes two filters: >= 2016-01-01 and <= 2016-12-31.
"by month" on a date column means dimension = that column with bucket "month".
When the current request refers to earlier ones ("make it 2017"), keep everything from the earlier requests and change only what the current request changes."""

LEGACY_TYPES = {"sum": "SUM", "count": "COUNT", "average": "AVG", "avg": "AVG", "min": "MIN", "max": "MAX"}


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------
def conversation_text(utterance: str, prior_turns: Optional[List[str]] = None) -> str:
    """Prior user turns (oldest first) concatenated ahead of the current request."""
    turns = [str(t).strip() for t in (prior_turns or []) if t and str(t).strip()]
    if not turns:
        return f"Current request: {utterance}"
    earlier = "\n".join(f"{i}. {t}" for i, t in enumerate(turns, 1))
    return f"Earlier requests in this conversation (oldest first):\n{earlier}\n\nCurrent request: {utterance}"


def build_messages(utterance: str, summary: dict, prior_turns: Optional[List[str]] = None) -> List[Dict[str, str]]:
    user = (
        f"Dataset:\n{summary_json(summary)}\n\n"
        f"{conversation_text(utterance, prior_turns)}\n\n"
        f"{INTENT_SHAPE}"
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


# ---------------------------------------------------------------------------
# Parse
# ---------------------------------------------------------------------------
def _strip_fences(content: str) -> str:
    content = (content or "").strip()
    if content.startswith("```"):
        content = re.sub(r"^```(?:json)?\s*", "", content)
        content = re.sub(r"\s*```$", "", content)
    return content.strip()


def first_json_object(text: str) -> Optional[str]:
    """First balanced {...} substring, ignoring braces inside JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def parse_intent_text(raw: str) -> dict:
    """
    Raw model text -> JSON object. One repair pass (first balanced {...}); otherwise IntentParseError.
    """
    content = _strip_fences(raw)
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        candidate = first_json_object(content)
        if candidate is None:
            raise IntentParseError(detail=f"no JSON object in model output: {content[:200]!r}")
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise IntentParseError(detail=f"unparseable model output: {e}") from e
        logger.info("intent_resolver: repaired model output to first JSON object")
    if not isinstance(data, dict):
        raise IntentParseError(detail=f"model output is not an object: {type(data).__name__}")
    return data


def _pick(data: dict, *keys: str) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _parse_filters(raw: Any) -> List[dict]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise IntentParseError(detail=f"filters is not a list: {raw!r}")
    out = []
    for f in raw:
        if not isinstance(f, dict):
            raise IntentParseError(detail=f"filter is not an object: {f!r}")
        operator = str(_pick(f, "operator", "op") or "=").strip().upper()
        if operator == "==":
            operator = "="
        elif operator == "<>":
            operator = "!="
        out.append(filter_doc(_text(_pick(f, "column", "field")), operator, f.get("value")))
    return out


def intent_from_payload(data: dict) -> dict:
    """
    Map a parsed model payload (camelCase wire shape, nested or flat, or snake_case)
    to an intent document. Values are only normalized here; validation happens later.
    """
    query = _pick(data, "dataQuery", "data_query")
    if isinstance(query, dict):
        body = query
        data_query = _pick(query, "type", "dataQuery", "data_query")
    else:
        body = data
        data_query = query
    data_query = (_text(data_query) or "").lower().replace("_", "-")
    if data_query == "filter":
        data_query = FILTER_ONLY

    aggregation = _text(_pick(body, "aggregation", "agg"))
    if data_query in LEGACY_TYPES:
        # {"type": "sum"} style: the aggregation is the type
        aggregation = aggregation or LEGACY_TYPES[data_query]
        data_query = GROUP
    aggregation = aggregation.upper() if aggregation else None
    if aggregation in ("AVERAGE", "MEAN"):
        aggregation = "AVG"
    if data_query == GROUP and not aggregation:
        aggregation = "SUM" if _pick(body, "measure") else "COUNT"

    limit = _pick(body, "limit")
    try:
        limit = int(limit) if limit is not None else None
    except (TypeError, ValueError, OverflowError):
        # left as given; the validator rejects it
        pass

    bucket = _text(_pick(body, "bucket", "timeBucket", "time_bucket"))
    return intent_doc(
        data_query=data_query,
        dimension=_text(_pick(body, "dimension")),
        measure=_text(_pick(body, "measure")),
        aggregation=aggregation,
        filters=_parse_filters(_pick(body, "filters")),
        chart_type=(_text(_pick(data, "chartType", "chart_type")) or "").lower(),
        explanation=_text(_pick(data, "explanation")) or "",
        bucket=bucket.lower() if bucket else None,
        series_by=_text(_pick(body, "seriesBy", "series_by")),
        limit=limit,
    )


# ---------------------------------------------------------------------------
# Heuristic planner
# ---------------------------------------------------------------------------
AGGREGATION_WORDS = [
    (r"\b(average|avg|mean)\b", "AVG"),
    (r"\b(count|how many|number of)\b", "COUNT"),
    (r"\b(max|maximum|highest|largest)\b", "MAX"),
    (r"\b(min|minimum|lowest|smallest)\b", "MIN"),
    (r"\b(sum|total)\b", "SUM"),
]
BUCKET_WORDS = {
    "day": r"\b(by|per|each) day\b|\bdaily\b",
    "month": r"\b(by|per|each) month\b|\bmonthly\b",
    "quarter": r"\b(by|per|each) quarter\b|\bquarterly\b",
    "year": r"\b(by|per|each) year\b|\byearly\b|\bannual(ly)?\b",
}
CHART_WORDS = [
    (r"\b(pie|share|proportion)\b", "pie"),
    (r"\b(line|trend|over time)\b", "line"),
    (r"\bscatter\b", "scatter"),
    (r"\barea\b", "area"),
    (r"\bbar\b", "bar"),
]
COMPARE_WORDS = r"\b(vs\.?|versus|compare|compared|comparing)\b"
RAW_WORDS = r"\b(raw|rows|list|records)\b"


def _mentions(text: str, name: str) -> bool:
    return re.search(r"(?<![\w])" + re.escape(name.lower()) + r"(?![\w])", text) is not None


def _sample_values(summary: dict) -> Dict[str, List[str]]:
    """Distinct string values per STRING column from the summary sample."""
    string_columns = [c["name"] for c in summary.get("columns") or [] if c["type"] == STRING]
    values: Dict[str, List[str]] = {c: [] for c in string_columns}
    for row in summary.get("sample_rows") or []:
        for c in string_columns:
            v = row.get(c)
            if isinstance(v, str) and v.strip() and v not in values[c]:
                values[c].append(v)
    return values


def _turn_slots(turn: str, summary: dict) -> dict:
    """Slots one utterance sets; absent slots are left out so later turns only override what they name."""
    text = turn.lower()
    columns = summary.get("columns") or []
    numeric = [c["name"] for c in columns if c["type"] in NUMERIC_TYPES]
    dates = [c["name"] for c in columns if c["type"] == DATE]
    slots: Dict[str, Any] = {"filters": {}}

    for pattern, aggregation in AGGREGATION_WORDS:
        if re.search(pattern, text):
            slots["aggregation"] = aggregation
            break

    for name in sorted(numeric, key=len, reverse=True):
        if _mentions(text, name):
            slots["measure"] = name
            break

    for bucket, pattern in BUCKET_WORDS.items():
        if re.search(pattern, text) and dates:
            slots["bucket"] = bucket
            slots["dimension"] = dates[0]
            break
    if "dimension" not in slots:
        for c in sorted(columns, key=lambda c: len(c["name"]), reverse=True):
            if re.search(r"\b(by|per)\s+" + re.escape(c["name"].lower()) + r"(?![\w])", text):
                slots["dimension"] = c["name"]
                slots["bucket"] = None
                break

    for pattern, chart_type in CHART_WORDS:
        if re.search(pattern, text):
            slots["chart_type"] = chart_type
            break

    for column, values in _sample_values(summary).items():
        matched = [v for v in values if _mentions(text, v)]
        if len(matched) == 1:
            slots["filters"][column] = [filter_doc(column, "=", matched[0])]
        elif len(matched) > 1:
            slots["filters"][column] = [filter_doc(column, "IN", matched)]
            if re.search(COMPARE_WORDS, text):
                slots["series_by"] = column

    years = [int(y) for y in re.findall(r"\b((?:19|20)\d{2})\b", turn)]
    if years and dates:
        first, last = min(years), max(years)
        slots["filters"][dates[0]] = [
            filter_doc(dates[0], ">=", f"{first}-01-01"),
            filter_doc(dates[0], "<=", f"{last}-12-31"),
        ]

    if re.search(RAW_WORDS, text):
        slots["raw"] = True
    return slots


def heuristic_intent(utterance: str, summary: dict, prior_turns: Optional[List[str]] = None) -> dict:
    """
    Keyword planner used when no model is available.
    Turns are read oldest first; the latest turn wins per slot, and filters are replaced per column.
    """
    merged: Dict[str, Any] = {}
    filters: Dict[str, List[dict]] = {}
    for turn in [t for t in (prior_turns or []) if t] + [utterance or ""]:
        slots = _turn_slots(str(turn), summary)
        for column, column_filters in slots.pop("filters").items():
            filters.pop(column, None)
            filters[column] = column_filters
        merged.update(slots)

    measure = merged.get("measure")
    dimension = merged.get("dimension")
    series_by = merged.get("series_by")
    if series_by and not dimension:
        # "Kentucky vs California" alone: one bar per compared value
        dimension, series_by = series_by, None
    if series_by == dimension:
        series_by = None

    flat_filters = [f for column_filters in filters.values() for f in column_filters]
    if dimension:
        aggregation = merged.get("aggregation") or ("SUM" if measure else "COUNT")
        data_query = GROUP
    else:
        aggregation = None
        data_query = RAW if merged.get("raw") else FILTER_ONLY

    intent = intent_doc(
        data_query=data_query,
        dimension=dimension,
        measure=measure,
        aggregation=aggregation,
        filters=flat_filters,
        chart_type=merged.get("chart_type") or "bar",
        bucket=merged.get("bucket") if dimension else None,
        series_by=series_by,
    )
    logger.info(
        "heuristic_intent: data_query=%s dimension=%s measure=%s filters=%d",
        data_query, dimension, measure, len(flat_filters),
    )
    return intent


# ---------------------------------------------------------------------------
# Resolve
# ---------------------------------------------------------------------------
def resolve_intent(
    utterance: str,
    summary: dict,
    prior_turns: Optional[List[str]] = None,
    llm: Any = None,
    timeout: float = INTENT_TIMEOUT_SECONDS,
) -> Tuple[dict, str]:
    """
    Returns (intent, source) with source "model" or "heuristic".
    Raises IntentParseError on unusable model output and IntentTimeoutError on timeout.
    """
    if llm is None:
        return heuristic_intent(utterance, summary, prior_turns), HEURISTIC
    messages = build_messages(utterance, summary, prior_turns)
    try:
        raw = call_model(llm, messages, timeout)
    except ModelUnavailable as e:
        logger.warning("intent_resolver: model unavailable, using heuristic planner: %s", e)
        return heuristic_intent(utterance, summary, prior_turns), HEURISTIC
    logger.debug("intent_resolver: raw model output=%s", raw)
    return intent_from_payload(parse_intent_text(raw)), MODEL


def call_model(llm: Any, messages: List[Dict[str, str]], timeout: float = INTENT_TIMEOUT_SECONDS) -> str:
    """
    llm.complete on a worker thread, abandoned after `timeout` seconds.
    Timeouts (ours or the client's) raise IntentTimeoutError; any other client failure
    raises ModelUnavailable. Errors already in the ChartQueryError taxonomy pass through.
    """
    future = _MODEL_POOL.submit(llm.complete, messages, timeout=timeout)
    try:
        return future.result(timeout=timeout)
    except (TimeoutError, futures.TimeoutError) as e:
        future.cancel()
        logger.warning("intent_resolver: model call exceeded %ss", timeout)
        raise IntentTimeoutError(detail=f"model call exceeded {timeout}s: {e}") from e
    except (ChartQueryError, ModelUnavailable):
        raise
    except Exception as e:
        logger.error("intent_resolver: model client failed: %s: %s", type(e).__name__, e)
        raise ModelUnavailable(f"{type(e).__name__}: {e}") from e
