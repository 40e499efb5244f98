import pytest

from db import file_reader
from db.engine import open_cursor_count
from utils.errors import DataSourceUnreadable, QueryExecutionError


def test_describe_schema_infers_types(orders_csv):
    columns = file_reader.describe_schema(orders_csv)
    assert columns == [
        {"name": "State", "type": "STRING"},
        {"name": "OrderDate", "type": "DATE"},
        {"name": "Sales", "type": "FLOAT"},
    ]


def test_describe_schema_is_stable(orders_csv):
    assert file_reader.describe_schema(orders_csv) == file_reader.describe_schema(orders_csv)


def test_sample_rows_are_bounded_and_portable(orders_csv):
    sample = file_reader.sample_rows(orders_csv, 2)
    assert sample["columns"] == ["State", "OrderDate", "Sales"]
    assert sample["rows"] == [
        ["Kentucky", "2016-01-05", 120.5],
        ["Kentucky", "2016-01-20", 80.0],
    ]
    assert sample["total_rows"] == 6


@pytest.mark.parametrize("limit", [0, -1, 1.5, True])
def test_sample_rows_rejects_bad_limit(orders_csv, limit):
    with pytest.raises(ValueError):
        file_reader.sample_rows(orders_csv, limit)


def test_non_utf8_file_is_still_readable(tmp_path):
    path = tmp_path / "latin.csv"
    path.write_bytes(
        b"City,Amount\n"
        b"Boston,10\n"
        b"S\xe3o Paulo,20\n"
        b"Z\xfcrich,30\n"
        b"Denver,40\n"
    )
    columns = file_reader.describe_schema(str(path))
    assert [c["name"] for c in columns] == ["City", "Amount"]
    sample = file_reader.sample_rows(str(path), 10)
    assert sample["total_rows"] == 4
    assert [row[0] for row in sample["rows"]] == ["Boston", "São Paulo", "Zürich", "Denver"]
    assert all(isinstance(v, (str, int, float)) for row in sample["rows"] for v in row if v is not None)


def test_invalid_bytes_switch_to_tolerant_read(tmp_path, caplog):
    path = tmp_path / "latin.csv"
    path.write_bytes(b"City,Amount\nBoston,10\nS\xe3o Paulo,20\n")
    with caplog.at_level("WARNING", logger="db.file_reader"):
        result = file_reader.execute_aggregation(str(path), "SELECT COUNT(*) AS n FROM dataset")
    assert result["rows"] == [[2]]
    assert "retrying tolerant" in caplog.text


def test_check_utf8_reads_across_chunks(tmp_path, monkeypatch):
    monkeypatch.setattr(file_reader, "UTF8_CHECK_CHUNK", 1)
    good = tmp_path / "good.csv"
    good.write_text("City\nZürich\n", encoding="utf-8")
    file_reader.check_utf8(str(good))
    bad = tmp_path / "bad.csv"
    bad.write_bytes(b"City\nZ\xfcrich\n")
    with pytest.raises(UnicodeDecodeError):
        file_reader.check_utf8(str(bad))


def test_valid_utf8_stays_on_strict_read(tmp_path, caplog):
    path = tmp_path / "utf8.csv"
    path.write_text("City,Amount\nSão Paulo,20\nZürich,30\n", encoding="utf-8")
    with caplog.at_level("WARNING", logger="db.file_reader"):
        columns = file_reader.describe_schema(str(path))
    assert columns == [{"name": "City", "type": "STRING"}, {"name": "Amount", "type": "INTEGER"}]
    assert "retrying tolerant" not in caplog.text


@pytest.mark.parametrize(
    "name, text",
    [("dupes.csv", "a,a,b\n1,2,3\n"), ("dupes.tsv", "a\tb\ta\n1\t2\t3\n")],
)
def test_duplicate_csv_header_is_unreadable(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    with pytest.raises(DataSourceUnreadable) as err:
        file_reader.describe_schema(str(path))
    assert "more than one column named 'a'" in str(err.value)


def test_duplicate_excel_header_is_unreadable(tmp_path):
    pd = pytest.importorskip("pandas")
    path = tmp_path / "dupes.xlsx"
    pd.DataFrame([[1, 2, 3]], columns=["Region", "Units", "Region"]).to_excel(path, index=False)
    with pytest.raises(DataSourceUnreadable) as err:
        file_reader.describe_schema(str(path))
    assert "Region" in str(err.value)


def test_encoding_fallback_runs_tolerant_only_on_decoding_error():
    calls = []

    def strict():
        calls.append("strict")
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    def tolerant():
        calls.append("tolerant")
        return "ok"

    assert file_reader.with_encoding_fallback(strict, tolerant) == "ok"
    assert calls == ["strict", "tolerant"]


def test_encoding_fallback_propagates_other_errors():
    def strict():
        raise KeyError("boom")

    def tolerant():
        raise AssertionError("tolerant tier must not run")

    with pytest.raises(KeyError):
        file_reader.with_encoding_fallback(strict, tolerant)


def test_missing_file_is_unreadable(tmp_path):
    with pytest.raises(DataSourceUnreadable):
        file_reader.describe_schema(str(tmp_path / "nope.csv"))


def test_zero_byte_file_is_unreadable(tmp_path):
    path = tmp_path / "empty.csv"
    path.write_bytes(b"")
    with pytest.raises(DataSourceUnreadable) as err:
        file_reader.describe_schema(str(path))
    assert "empty" in str(err.value)


def test_unsupported_extension_is_unreadable(tmp_path):
    path = tmp_path / "notes.docx"
    path.write_text("hello", encoding="utf-8")
    with pytest.raises(DataSourceUnreadable):
        file_reader.describe_schema(str(path))


def test_path_with_quote_is_escaped(tmp_path):
    path = tmp_path / "o'brien sales.csv"
    path.write_text("Name,Total\nA,1\nB,2\n", encoding="utf-8")
    assert file_reader.quote_path(str(path)).count("''") == 1
    assert [c["name"] for c in file_reader.describe_schema(str(path))] == ["Name", "Total"]


def test_quote_path_normalizes_backslashes():
    assert file_reader.quote_path("C:\\data\\q1.csv") == "'C:/data/q1.csv'"


def test_execute_aggregation_groups_in_engine(orders_csv):
    result = file_reader.execute_aggregation(
        orders_csv,
        {"sql": 'SELECT "State" AS label, SUM("Sales") AS value FROM dataset GROUP BY "State" ORDER BY "State"'},
    )
    assert result["columns"] == ["label", "value"]
    assert result["rows"] == [["California", 310.0], ["Kentucky", 297.75]]


def test_execute_aggregation_hides_engine_text(orders_csv):
    with pytest.raises(QueryExecutionError) as err:
        file_reader.execute_aggregation(orders_csv, 'SELECT "Nope" FROM dataset')
    assert "Nope" not in str(err.value)
    assert err.value.detail


def test_cursor_released_after_failure(orders_csv):
    with pytest.raises(QueryExecutionError):
        file_reader.execute_aggregation(orders_csv, "SELECT * FROM missing_table")
    assert open_cursor_count() == 0


def test_json_lines_file(tmp_path):
    path = tmp_path / "events.jsonl"
    path.write_text('{"kind": "a", "n": 1}\n{"kind": "b", "n": 2}\n', encoding="utf-8")
    columns = file_reader.describe_schema(str(path))
    assert columns == [{"name": "kind", "type": "STRING"}, {"name": "n", "type": "INTEGER"}]


def test_excel_file(tmp_path):
    pd = pytest.importorskip("pandas")
    path = tmp_path / "book.xlsx"
    pd.DataFrame({"Region": ["East", "West"], "Units": [3, 4]}).to_excel(path, index=False)
    sample = file_reader.sample_rows(str(path), 5)
    assert sample["columns"] == ["Region", "Units"]
    assert sample["rows"] == [["East", 3], ["West", 4]]
