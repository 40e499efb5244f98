import asyncio
import datetime as dt
import os

import pytest

from agents import orchestrator
from conftest import KENTUCKY_2016_BY_MONTH, FakeLLM
from db import file_reader, warehouse as warehouse_db
from db.storage import TempFileStorage
from db.warehouse import WarehouseConnector
from utils.errors import (
    DataSourceUnreadable,
    IntentParseError,
    IntentTimeoutError,
    IntentValidationError,
    QueryExecutionError,
)

KENTUCKY_2017 = {
    "dataQuery": dict(
        KENTUCKY_2016_BY_MONTH["dataQuery"],
        filters=[
            {"column": "State", "operator": "=", "value": "Kentucky"},
            {"column": "OrderDate", "operator": ">=", "value": "2017-01-01"},
            {"column": "OrderDate", "operator": "<=", "value": "2017-12-31"},
        ],
    ),
    "chartType": "line",
    "explanation": "",
}


def test_kentucky_2016_by_month(orders_dataset):
    llm = FakeLLM(KENTUCKY_2016_BY_MONTH)
    result = orchestrator.resolve_chart_query(orders_dataset, "Show me sales in Kentucky for 2016 by month", llm=llm)
    assert result["labels"] == ["January 2016", "March 2016"]
    assert result["datasets"] == [{"label": "Sum of Sales", "values": [200.5, 42.25]}]
    assert result["chart_type"] == "line"
    assert result["degraded"] is False
    assert result["intent_source"] == "model"
    assert result["explanation"] == "Monthly sales in Kentucky during 2016."
    assert "GROUP BY" in result["sql"]
    assert result["intent"]["bucket"] == "month"


def test_follow_up_sends_prior_turns(orders_dataset):
    llm = FakeLLM(KENTUCKY_2017)
    result = orchestrator.resolve_chart_query(
        orders_dataset, "actually make it 2017", ["Show me sales in Kentucky for 2016 by month"], llm=llm,
    )
    assert "Show me sales in Kentucky for 2016 by month" in llm.last_prompt
    assert result["labels"] == ["February 2017"]
    assert result["datasets"][0]["values"] == [55.0]
    assert result["explanation"].startswith("Sum of Sales by OrderDate (month)")


def test_heuristic_planner_without_model(orders_dataset, monkeypatch):
    monkeypatch.setattr(orchestrator, "get_llm_client", lambda: None)
    result = orchestrator.resolve_chart_query(orders_dataset, "Show me sales in Kentucky for 2016 by month")
    assert result["intent_source"] == "heuristic"
    assert result["labels"] == ["January 2016", "March 2016"]
    follow_up = orchestrator.resolve_chart_query(
        orders_dataset, "actually make it 2017", ["Show me sales in Kentucky for 2016 by month"],
    )
    assert follow_up["labels"] == ["February 2017"]


def test_same_request_is_idempotent(orders_dataset):
    first = orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))
    second = orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))
    assert first == second


def test_no_matching_rows(orders_dataset):
    payload = dict(KENTUCKY_2016_BY_MONTH, dataQuery=dict(
        KENTUCKY_2016_BY_MONTH["dataQuery"], filters=[{"column": "State", "operator": "=", "value": "Texas"}],
    ))
    result = orchestrator.resolve_chart_query(orders_dataset, "sales in Texas", llm=FakeLLM(payload))
    assert result["labels"] == []
    assert result["datasets"] == [{"label": "Sum of Sales", "values": []}]
    assert result["degraded"] is False
    assert "No rows matched" in result["explanation"]


def test_rejected_intent_never_executes(orders_dataset, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("query must not run")

    monkeypatch.setattr(file_reader, "execute_aggregation", fail)
    payload = {"dataQuery": {"type": "group", "dimension": "Region", "aggregation": "COUNT"}, "chartType": "bar"}
    with pytest.raises(IntentValidationError) as err:
        orchestrator.resolve_chart_query(orders_dataset, "orders by region", llm=FakeLLM(payload))
    assert "Region" in str(err.value)


def test_client_timeout_surfaces_as_intent_timeout(orders_dataset):
    llm = FakeLLM(error=TimeoutError("read timed out"))
    with pytest.raises(IntentTimeoutError) as err:
        orchestrator.resolve_chart_query(orders_dataset, "sales by month", llm=llm)
    assert "read timed out" not in str(err.value)


def test_negative_limit_is_rejected_before_execution(orders_dataset, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("query must not run")

    monkeypatch.setattr(file_reader, "execute_aggregation", fail)
    payload = {"dataQuery": {"type": "filter-only", "limit": -5}, "chartType": "bar"}
    with pytest.raises(IntentValidationError):
        orchestrator.resolve_chart_query(orders_dataset, "show rows", llm=FakeLLM(payload))


def test_unparseable_model_output(orders_dataset):
    with pytest.raises(IntentParseError):
        orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM("I am not sure what you mean."))


def test_group_failure_degrades_to_row_count(orders_dataset, monkeypatch):
    real = file_reader.execute_aggregation

    def flaky(path, compiled, *args, **kwargs):
        if "GROUP BY" in compiled["sql"]:
            raise QueryExecutionError(detail="simulated engine failure")
        return real(path, compiled, *args, **kwargs)

    monkeypatch.setattr(file_reader, "execute_aggregation", flaky)
    result = orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))
    assert result["degraded"] is True
    assert result["labels"] == ["Row count"]
    assert result["datasets"] == [{"label": "Row count", "values": [3]}]
    assert result["sql"].startswith("SELECT COUNT(*) AS value")
    assert "number of matching rows" in result["explanation"]


def test_fallback_failure_is_fatal(orders_dataset, monkeypatch):
    def broken(*args, **kwargs):
        raise QueryExecutionError(detail="engine down")

    monkeypatch.setattr(file_reader, "execute_aggregation", broken)
    with pytest.raises(QueryExecutionError) as err:
        orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))
    assert "engine down" not in str(err.value)


def test_missing_file(orders_dataset):
    dataset = dict(orders_dataset, location=orders_dataset["location"] + ".missing")
    with pytest.raises(DataSourceUnreadable):
        orchestrator.resolve_chart_query(dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))


def test_empty_utterance(orders_dataset):
    with pytest.raises(IntentValidationError):
        orchestrator.resolve_chart_query(orders_dataset, "   ", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))


def test_temp_copy_released_on_success_and_failure(orders_dataset, tmp_path):
    temp_dir = tmp_path / "staging"
    storage = TempFileStorage(str(temp_dir))
    orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH), storage=storage)
    assert os.listdir(temp_dir) == []
    with pytest.raises(IntentParseError):
        orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM("nope"), storage=storage)
    assert os.listdir(temp_dir) == []


def test_async_entry_point_matches_sync(orders_dataset):
    sync = orchestrator.resolve_chart_query(orders_dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))
    result = asyncio.run(
        orchestrator.resolve_chart_query_async(orders_dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))
    )
    assert result == sync


class FakeWarehouse(WarehouseConnector):
    """In-memory table answering the schema, sample, row-count and per-series queries."""

    ROWS = [
        ("Kentucky", dt.date(2016, 1, 5), 120.5),
        ("California", dt.date(2016, 1, 11), 300.0),
        ("Kentucky", dt.date(2016, 3, 2), 42.25),
    ]

    def __init__(self):
        self.queries = []

    def validate_target(self, schema, table):
        return (schema, table) == ("sales", "orders")

    def run_query(self, sql):
        self.queries.append(sql)
        if sql.startswith("SELECT * FROM `sales.orders` LIMIT"):
            limit = int(sql.rsplit("LIMIT", 1)[1])
            return {"columns": ["State", "OrderDate", "Sales"], "rows": list(self.ROWS[:limit])}
        if sql == "SELECT COUNT(*) AS total_rows FROM `sales.orders`":
            return {"columns": ["total_rows"], "rows": [(len(self.ROWS),)]}
        if "`State` = 'Kentucky'" in sql:
            return {"columns": ["label", "value"], "rows": [(dt.date(2016, 1, 1), 120.5), (dt.date(2016, 3, 1), 42.25)]}
        if "`State` = 'California'" in sql:
            return {"columns": ["label", "value"], "rows": [(dt.date(2016, 1, 1), 300.0)]}
        raise RuntimeError(f"unexpected query {sql}")


def test_warehouse_multi_series():
    connector = FakeWarehouse()
    dataset = {"id": "wh-1", "name": "orders", "backend": "warehouse", "schema": "sales", "table": "orders"}
    payload = {
        "dataQuery": {
            "type": "group",
            "dimension": "OrderDate",
            "bucket": "month",
            "measure": "Sales",
            "aggregation": "SUM",
            "seriesBy": "State",
            "filters": [{"column": "State", "operator": "IN", "value": ["Kentucky", "California"]}],
        },
        "chartType": "line",
        "explanation": "Kentucky vs California by month.",
    }
    result = orchestrator.resolve_chart_query(
        dataset, "sales Kentucky vs California by month", llm=FakeLLM(payload), warehouse=connector,
    )
    assert result["labels"] == ["January 2016", "March 2016"]
    assert result["datasets"] == [
        {"label": "Kentucky", "values": [120.5, 42.25]},
        {"label": "California", "values": [300.0, 0]},
    ]
    # schema read, sample, row count, one query per series
    assert len(connector.queries) == 5


def test_warehouse_sample_reports_table_row_count():
    sample = warehouse_db.sample_table(FakeWarehouse(), "sales", "orders", 2)
    assert len(sample["rows"]) == 2
    assert sample["total_rows"] == 3


def test_warehouse_without_connector():
    dataset = {"id": "wh-1", "backend": "warehouse", "schema": "sales", "table": "orders"}
    with pytest.raises(DataSourceUnreadable):
        orchestrator.resolve_chart_query(dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH))


def test_warehouse_unknown_table():
    dataset = {"id": "wh-2", "backend": "warehouse", "schema": "sales", "table": "missing"}
    with pytest.raises(DataSourceUnreadable):
        orchestrator.resolve_chart_query(
            dataset, "sales", llm=FakeLLM(KENTUCKY_2016_BY_MONTH), warehouse=FakeWarehouse(),
        )
