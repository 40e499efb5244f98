"""
Orchestrator — fixed pipeline from utterance to chart-ready result.
Reader (schema + sample) -> Summarizer -> Intent resolver -> Intent validator -> Compiler ->
execution (file engine or warehouse) -> Result normalizer -> Chart validator.
Every state transition is logged with the request id; failures keep the user message
separate from the logged detail.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from db import file_reader, warehouse as warehouse_db
from db.models import GROUP, chart_result_doc
from db.storage import LocalStorage
from utils.chart_validator import problems, validate_chart
from utils.errors import (
    ChartQueryError,
    DataSourceUnreadable,
    IntentParseError,
    IntentTimeoutError,
    IntentValidationError,
    QueryExecutionError,
)
from utils.query_compiler import LOCAL, WAREHOUSE, compile_count_fallback, compile_query
from utils.query_normalizer import normalize_query
from utils.result_normalizer import to_chart_series
from utils.summarizer import SUMMARY_SAMPLE_ROWS, summarize
from .intent_resolver import resolve_intent
from .intent_validator import validate_intent
from .llm_client import get_llm_client
from .responder import respond

logger = logging.getLogger(__name__)

# Request states
RECEIVED = "Received"
CONTEXT_BUILT = "Context-Built"
INTENT_REQUESTED = "Intent-Requested"
INTENT_VALIDATED = "Intent-Validated"
INTENT_REJECTED = "Intent-Rejected"
QUERY_COMPILED = "Query-Compiled"
EXECUTED = "Executed"
EXECUTION_FAILED = "Execution-Failed"
NORMALIZED = "Normalized"
DONE = "Done"
FAILED = "Failed"

FILE_BACKEND = "file"
WAREHOUSE_BACKEND = "warehouse"


def _state(request_id: str, state: str, **fields: Any) -> None:
    extra = " ".join(f"{k}={v}" for k, v in fields.items())
    logger.info("request_state: request_id=%s state=%s %s", request_id, state, extra)


class _FileSource:
    """Dataset file fetched to a local path; released by the caller."""

    backend = LOCAL

    def __init__(self, path: str, dataset_ref: Dict[str, Any]):
        self.path = path
        self.file_type = dataset_ref.get("file_type")
        self.sheet_name = dataset_ref.get("sheet_name")
        self.relation = None

    def describe(self) -> List[dict]:
        return file_reader.describe_schema(self.path, self.file_type, self.sheet_name)

    def sample(self, limit: int) -> Dict[str, Any]:
        return file_reader.sample_rows(self.path, limit, self.file_type, self.sheet_name)

    def execute(self, compiled: dict) -> Any:
        return file_reader.execute_aggregation(self.path, compiled, self.file_type, self.sheet_name)


class _WarehouseSource:
    backend = WAREHOUSE

    def __init__(self, connector: warehouse_db.WarehouseConnector, dataset_ref: Dict[str, Any]):
        self.connector = connector
        self.schema = dataset_ref.get("schema")
        self.table = dataset_ref.get("table")
        self.relation = warehouse_db.quote_table(self.schema, self.table)

    def describe(self) -> List[dict]:
        return warehouse_db.describe_table(self.connector, self.schema, self.table)

    def sample(self, limit: int) -> Dict[str, Any]:
        return warehouse_db.sample_table(self.connector, self.schema, self.table, limit)

    def execute(self, compiled: dict) -> Any:
        if compiled.get("series_queries"):
            return [
                {"series": q["series"], "result": warehouse_db.execute_aggregation(self.connector, q["sql"])}
                for q in compiled["series_queries"]
            ]
        return warehouse_db.execute_aggregation(self.connector, compiled)


def _release(storage: Any, local_path: Optional[str], request_id: str) -> None:
    if not local_path:
        return
    try:
        storage.release_local_path(local_path)
    except Exception as e:
        logger.warning("release_failed: request_id=%s path=%s error=%s", request_id, local_path, e)


def resolve_chart_query(
    dataset_ref: Dict[str, Any],
    user_utterance: str,
    prior_turns: Optional[List[str]] = None,
    *,
    llm: Any = None,
    storage: Any = None,
    warehouse: Optional[warehouse_db.WarehouseConnector] = None,
) -> dict:
    """
    Run one chart request end to end.
    dataset_ref: {"id", "name", "location", "file_type", "backend": "file"|"warehouse", "schema", "table"}.
    llm: object with complete(messages, timeout=...) -> str; defaults to the Groq client when
    GROQ_API_KEY is set, else the heuristic planner is used.
    Returns a ChartQueryResult dict or raises a ChartQueryError subclass.
    """
    request_id = uuid.uuid4().hex[:12]
    dataset_ref = dataset_ref or {}
    backend = (dataset_ref.get("backend") or FILE_BACKEND).strip().lower()
    _state(request_id, RECEIVED, dataset=dataset_ref.get("id") or dataset_ref.get("name"), backend=backend)

    storage = storage or LocalStorage()
    local_path = None
    try:
        if not user_utterance or not str(user_utterance).strip():
            raise IntentValidationError("Describe the chart you want to see.", detail="empty utterance")

        if backend == WAREHOUSE_BACKEND:
            if warehouse is None:
                raise DataSourceUnreadable(
                    "This dataset lives in a warehouse, but no warehouse connection is available.",
                    detail="warehouse backend without connector",
                )
            source = _WarehouseSource(warehouse, dataset_ref)
        else:
            local_path = storage.fetch_to_local_path(dataset_ref.get("location"))
            source = _FileSource(local_path, dataset_ref)

        columns = source.describe()
        if not columns:
            raise DataSourceUnreadable("This dataset has no rows to chart.", detail="no inferable rows")
        summary = summarize(columns, source.sample(SUMMARY_SAMPLE_ROWS), dataset_ref.get("name"))
        _state(request_id, CONTEXT_BUILT, columns=len(columns), sample_rows=len(summary["sample_rows"]))

        normalized = normalize_query(str(user_utterance), [c["name"] for c in columns])
        utterance = normalized["normalized_query"] or str(user_utterance)
        if llm is None:
            llm = get_llm_client()
        _state(request_id, INTENT_REQUESTED, model=llm is not None, prior_turns=len(prior_turns or []))
        try:
            raw_intent, intent_source = resolve_intent(utterance, summary, prior_turns, llm=llm)
            intent = validate_intent(raw_intent, columns)
        except (IntentParseError, IntentValidationError, IntentTimeoutError) as e:
            _state(request_id, INTENT_REJECTED, error=type(e).__name__, detail=e.detail)
            raise
        _state(
            request_id, INTENT_VALIDATED, source=intent_source, data_query=intent["data_query"],
            dimension=intent.get("dimension"), measure=intent.get("measure"),
        )

        compiled = compile_query(intent, columns, source.backend, source.relation)
        _state(request_id, QUERY_COMPILED, sql=compiled["sql"])

        degraded = False
        try:
            results = source.execute(compiled)
        except QueryExecutionError as e:
            _state(request_id, EXECUTION_FAILED, detail=e.detail)
            if intent["data_query"] != GROUP:
                raise
            # Degraded: filtered row count; a failure here fails the request
            compiled = compile_count_fallback(intent, columns, source.backend, source.relation)
            results = source.execute(compiled)
            degraded = True
        _state(request_id, EXECUTED, degraded=degraded)

        series = to_chart_series(results, compiled, compiled.get("value_label"))
        chart_type = intent["chart_type"]
        if chart_type == "pie" and len(series["datasets"]) > 1:
            chart_type = "bar"
        if not validate_chart(series, chart_type):
            raise QueryExecutionError(detail=f"invalid chart series: {problems(series)}")
        _state(request_id, NORMALIZED, labels=len(series["labels"]), datasets=len(series["datasets"]))

        result = chart_result_doc(
            series,
            chart_type=chart_type,
            explanation=respond(intent, series, degraded),
            degraded=degraded,
            sql=compiled["sql"],
            intent=intent,
            intent_source=intent_source,
        )
        _state(request_id, DONE)
        return result
    except ChartQueryError as e:
        _state(request_id, FAILED, error=type(e).__name__, detail=e.detail)
        raise
    finally:
        _release(storage, local_path, request_id)


async def resolve_chart_query_async(
    dataset_ref: Dict[str, Any],
    user_utterance: str,
    prior_turns: Optional[List[str]] = None,
    **kwargs: Any,
) -> dict:
    """resolve_chart_query on a worker thread."""
    return await asyncio.to_thread(resolve_chart_query, dataset_ref, user_utterance, prior_turns, **kwargs)
