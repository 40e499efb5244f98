import json

import pytest

from db.engine import open_cursor_count
from db.models import column_doc

ORDERS_CSV = """State,OrderDate,Sales
Kentucky,2016-01-05,120.50
Kentucky,2016-01-20,80.00
Kentucky,2016-03-02,42.25
California,2016-01-11,300.00
Kentucky,2017-02-14,55.00
California,2017-02-20,10.00
"""

ORDER_COLUMNS = [
    column_doc("State", "STRING"),
    column_doc("OrderDate", "DATE"),
    column_doc("Sales", "FLOAT"),
]

KENTUCKY_2016_BY_MONTH = {
    "dataQuery": {
        "type": "group",
        "dimension": "OrderDate",
        "bucket": "month",
        "measure": "Sales",
        "aggregation": "SUM",
        "filters": [
            {"column": "State", "operator": "=", "value": "Kentucky"},
            {"column": "OrderDate", "operator": ">=", "value": "2016-01-01"},
            {"column": "OrderDate", "operator": "<=", "value": "2016-12-31"},
        ],
    },
    "chartType": "line",
    "explanation": "Monthly sales in Kentucky during 2016.",
}


class FakeLLM:
    """Returns a canned response (dict -> JSON text) and records every prompt."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def complete(self, messages, timeout=None):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        if isinstance(self.response, str):
            return self.response
        return json.dumps(self.response)

    @property
    def last_prompt(self):
        return "\n".join(m["content"] for m in self.calls[-1])


@pytest.fixture
def orders_csv(tmp_path):
    path = tmp_path / "orders.csv"
    path.write_text(ORDERS_CSV, encoding="utf-8")
    return str(path)


@pytest.fixture
def orders_dataset(orders_csv):
    return {"id": "ds-1", "name": "orders", "location": orders_csv, "file_type": "csv", "backend": "file"}


@pytest.fixture
def order_columns():
    return [dict(c) for c in ORDER_COLUMNS]


@pytest.fixture
def fake_llm():
    return FakeLLM


@pytest.fixture(autouse=True)
def no_leaked_cursors():
    yield
    assert open_cursor_count() == 0
