from utils.chart_validator import validate_chart
from utils.result_normalizer import normalize_cell, to_chart_series

GROUPED = {
    "data_query": "group",
    "bucket": "month",
    "label_column": "label",
    "series_column": None,
    "value_columns": ["value"],
    "value_label": "Sum of Sales",
}


def test_grouped_rows_get_month_labels():
    result = {"columns": ["label", "value"], "rows": [["2016-01-01", 200.5], ["2016-03-01", 42.25]]}
    series = to_chart_series(result, GROUPED)
    assert series == {
        "labels": ["January 2016", "March 2016"],
        "datasets": [{"label": "Sum of Sales", "values": [200.5, 42.25]}],
    }


def test_zero_rows_is_not_an_error():
    series = to_chart_series({"columns": ["label", "value"], "rows": []}, GROUPED)
    assert series == {"labels": [], "datasets": [{"label": "Sum of Sales", "values": []}]}
    assert validate_chart(series)


def test_null_sentinels():
    result = {"columns": ["label", "value"], "rows": [[None, None], ["2016-02-01", 3]]}
    series = to_chart_series(result, GROUPED)
    assert series["labels"] == ["Unknown", "February 2016"]
    assert series["datasets"][0]["values"] == [0, 3]


def test_normalize_cell():
    assert normalize_cell(None) == "Unknown"
    assert normalize_cell(None, numeric=True) == 0
    assert normalize_cell("12.5", numeric=True) == 12.5
    assert normalize_cell(7) == "7"


def test_series_column_and_per_series_results_reshape_the_same():
    compiled = dict(GROUPED, series_column="series")
    combined = {
        "columns": ["label", "series", "value"],
        "rows": [
            ["2016-01-01", "Kentucky", 200.5],
            ["2016-01-01", "California", 300.0],
            ["2016-03-01", "Kentucky", 42.25],
        ],
    }
    per_series = [
        {"series": "Kentucky", "result": {"columns": ["label", "value"], "rows": [["2016-01-01", 200.5], ["2016-03-01", 42.25]]}},
        {"series": "California", "result": {"columns": ["label", "value"], "rows": [["2016-01-01", 300.0]]}},
    ]
    expected = {
        "labels": ["January 2016", "March 2016"],
        "datasets": [
            {"label": "Kentucky", "values": [200.5, 42.25]},
            {"label": "California", "values": [300.0, 0]},
        ],
    }
    assert to_chart_series(combined, compiled) == expected
    assert to_chart_series(per_series, GROUPED) == expected


def test_per_series_results_with_disjoint_months_keep_calendar_order():
    compiled = dict(GROUPED, series_column="series")
    combined = {
        "columns": ["label", "series", "value"],
        "rows": [
            ["2016-01-01", "Kentucky", 200.5],
            ["2016-02-01", "California", 300.0],
            ["2016-03-01", "Kentucky", 42.25],
        ],
    }
    per_series = [
        {"series": "Kentucky", "result": {"columns": ["label", "value"], "rows": [["2016-01-01", 200.5], ["2016-03-01", 42.25]]}},
        {"series": "California", "result": {"columns": ["label", "value"], "rows": [["2016-02-01", 300.0]]}},
    ]
    expected = {
        "labels": ["January 2016", "February 2016", "March 2016"],
        "datasets": [
            {"label": "Kentucky", "values": [200.5, 0, 42.25]},
            {"label": "California", "values": [0, 300.0, 0]},
        ],
    }
    assert to_chart_series(combined, compiled) == expected
    assert to_chart_series(per_series, GROUPED) == expected


def test_per_series_null_key_sorts_last():
    per_series = [
        {"series": "a", "result": {"columns": ["label", "value"], "rows": [["y", 1], [None, 2]]}},
        {"series": "b", "result": {"columns": ["label", "value"], "rows": [["x", 3]]}},
    ]
    series = to_chart_series(per_series, dict(GROUPED, bucket=None))
    assert series["labels"] == ["x", "y", "Unknown"]
    assert series["datasets"][0]["values"] == [0, 1, 2]


def test_null_key_and_literal_unknown_stay_separate():
    compiled = dict(GROUPED, bucket=None, value_label="Average of Sales")
    result = {"columns": ["label", "value"], "rows": [["Unknown", 7.5], [None, 2.5]]}
    series = to_chart_series(result, compiled)
    assert series["labels"] == ["Unknown", "Unknown"]
    assert series["datasets"][0]["values"] == [7.5, 2.5]


def test_every_dataset_matches_label_count():
    compiled = dict(GROUPED, bucket=None, series_column="series")
    rows = [["a", "x", 1], ["b", "y", 2], ["c", "x", 3], ["a", "z", 4]]
    series = to_chart_series({"columns": ["label", "series", "value"], "rows": rows}, compiled)
    assert all(len(d["values"]) == len(series["labels"]) for d in series["datasets"])
    assert validate_chart(series)


def test_passthrough_picks_label_and_numeric_columns():
    compiled = {"data_query": "filter-only", "label_column": None, "value_columns": None, "value_label": None}
    result = {
        "columns": ["State", "OrderDate", "Sales"],
        "rows": [["Kentucky", "2016-01-05", 120.5], ["Ohio", "2016-01-06", None]],
    }
    series = to_chart_series(result, compiled)
    assert series == {"labels": ["Kentucky", "Ohio"], "datasets": [{"label": "Sales", "values": [120.5, 0]}]}


def test_passthrough_without_text_column_numbers_rows():
    compiled = {"data_query": "raw", "label_column": None, "value_columns": None}
    series = to_chart_series({"columns": ["a", "b"], "rows": [[1, 2], [3, 4]]}, compiled)
    assert series["labels"] == ["1", "2"]
    assert [d["label"] for d in series["datasets"]] == ["a", "b"]


def test_count_fallback_result():
    compiled = {"data_query": "count", "label_column": None, "value_columns": ["value"], "value_label": "Row count"}
    series = to_chart_series({"columns": ["value"], "rows": [[3]]}, compiled)
    assert series == {"labels": ["Row count"], "datasets": [{"label": "Row count", "values": [3]}]}


def test_validator_rejects_misaligned_series():
    assert not validate_chart({"labels": ["a", "b"], "datasets": [{"label": "x", "values": [1]}]})
    assert not validate_chart({"labels": ["a"], "datasets": [{"label": "x", "values": ["1"]}]})
    assert not validate_chart(
        {"labels": ["a"], "datasets": [{"label": "x", "values": [1]}, {"label": "y", "values": [2]}]}, "pie"
    )
