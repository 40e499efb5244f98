"""
Tabular file reader backed by the embedded DuckDB engine.
Schema introspection, bounded samples and compiled-query execution over CSV / Parquet / JSON / Excel.

Every operation exposes the file as the temp view `dataset` on a scoped cursor, then runs its
work through a two-tier strategy: strict (type inference, malformed rows skipped) and, only
when that fails on decoding, tolerant (every column VARCHAR, lenient latin-1 decoding).
"""
import codecs
import logging
import os
from typing import Any, Callable, Dict, List, Optional, TypeVar

import duckdb
import pandas as pd

from db.engine import scoped_connection
from db.models import column_doc, engine_type_to_column_type
from utils.errors import DataSourceUnreadable, QueryExecutionError
from utils.excel_parser import excel_headers, parse_excel
from utils.normalizer import normalize_row

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Relation name compiled queries select from for local files
SOURCE_ALIAS = "dataset"

CSV = "csv"
PARQUET = "parquet"
JSON = "json"
EXCEL = "excel"

EXTENSION_FORMATS = {
    ".csv": CSV,
    ".tsv": CSV,
    ".txt": CSV,
    ".parquet": PARQUET,
    ".pq": PARQUET,
    ".json": JSON,
    ".jsonl": JSON,
    ".ndjson": JSON,
    ".xlsx": EXCEL,
    ".xls": EXCEL,
}

# Declared dataset file types (dataset record) -> format
FILE_TYPE_FORMATS = {
    "CSV": CSV,
    "PARQUET": PARQUET,
    "JSON": JSON,
    "XLS": EXCEL,
    "XLSX": EXCEL,
    "EXCEL": EXCEL,
}

# Substrings of engine messages that indicate a decoding failure (the only fallback trigger)
DECODING_MARKERS = ("unicode", "utf-8", "utf8", "encoding", "byte sequence")

# Bytes read per step when checking a text file decodes as UTF-8
UTF8_CHECK_CHUNK = 1 << 20

# Delimiters tried, in order, when splitting a raw CSV header row
CSV_DELIMITERS = (",", "\t", ";", "|")


def normalize_path(path: str) -> str:
    """Forward slashes only; backslashes break the engine's path literal parsing on Windows paths."""
    return str(path).replace("\\", "/")


def quote_path(path: str) -> str:
    """Normalized path as a single-quoted SQL literal (embedded quotes doubled)."""
    return "'" + normalize_path(path).replace("'", "''") + "'"


def file_format(path: str, file_type: Optional[str] = None) -> str:
    """Resolve the reader format from the declared file type, else from the extension."""
    if file_type:
        fmt = FILE_TYPE_FORMATS.get(str(file_type).strip().upper())
        if fmt:
            return fmt
    ext = os.path.splitext(str(path))[1].lower()
    fmt = EXTENSION_FORMATS.get(ext)
    if fmt is None:
        raise DataSourceUnreadable(
            "This file type is not supported. Upload a CSV, Excel, JSON or Parquet file.",
            detail=f"unsupported format: ext={ext!r} file_type={file_type!r}",
        )
    return fmt


def relation_sql(path: str, fmt: str, tolerant: bool = False) -> str:
    """Table function reading the file. tolerant=True forces every column to VARCHAR."""
    quoted = quote_path(path)
    if fmt == CSV:
        options = "ignore_errors=true"
        if tolerant:
            options += ", all_varchar=true, encoding='latin-1'"
        return f"read_csv_auto({quoted}, {options})"
    if fmt == PARQUET:
        return f"read_parquet({quoted})"
    if fmt == JSON:
        return f"read_json_auto({quoted}, ignore_errors=true)"
    raise ValueError(f"no table function for format {fmt}")


def is_decoding_error(exc: BaseException) -> bool:
    if isinstance(exc, UnicodeError):
        return True
    if not isinstance(exc, duckdb.Error):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in DECODING_MARKERS)


def check_utf8(path: str) -> None:
    """
    Raise UnicodeDecodeError at the first invalid UTF-8 sequence in the file.
    The tolerant CSV read skips such lines without an error, so Tier 1 checks up front.
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(UTF8_CHECK_CHUNK), b""):
            decoder.decode(chunk)
    decoder.decode(b"", final=True)


def with_encoding_fallback(strict: Callable[[], T], tolerant: Callable[[], T]) -> T:
    """
    Run strict(); if it fails on decoding, run tolerant() instead.
    Any other failure propagates untouched.
    """
    try:
        return strict()
    except Exception as e:
        if not is_decoding_error(e):
            raise
        logger.warning("file_reader: strict read failed on decoding, retrying tolerant: %s", str(e).split("\n")[0])
    return tolerant()


def _check_readable(path: str) -> None:
    if not path or not os.path.isfile(path):
        raise DataSourceUnreadable("The dataset file could not be found.", detail=f"file not found: {path}")
    if os.path.getsize(path) == 0:
        raise DataSourceUnreadable("The dataset file is empty.", detail=f"zero-byte file: {path}")


def _expose(con, path: str, fmt: str, tolerant: bool, sheet_name: Optional[str]) -> None:
    """Create the `dataset` view on this cursor. Decoding errors propagate raw for the fallback."""
    if fmt == EXCEL:
        frame = parse_excel(path, sheet_name=sheet_name)
        if tolerant:
            frame = frame.astype("string")
        con.register(SOURCE_ALIAS, frame)
        return
    if fmt == CSV and not tolerant:
        check_utf8(path)
    try:
        con.execute(f"CREATE OR REPLACE TEMP VIEW {SOURCE_ALIAS} AS SELECT * FROM {relation_sql(path, fmt, tolerant)}")
    except duckdb.Error as e:
        if is_decoding_error(e):
            raise
        raise DataSourceUnreadable(detail=f"cannot open {path} as {fmt}: {e}") from e


def _read(path: str, work: Callable[[Any], T], file_type: Optional[str] = None,
          sheet_name: Optional[str] = None, operation: str = "read") -> T:
    """Expose the file on a scoped cursor and run work(cursor) through the two-tier strategy."""
    _check_readable(path)
    fmt = file_format(path, file_type)

    def attempt(tolerant: bool) -> T:
        with scoped_connection() as con:
            _expose(con, path, fmt, tolerant, sheet_name)
            return work(con)

    try:
        return with_encoding_fallback(lambda: attempt(False), lambda: attempt(True))
    except (DataSourceUnreadable, QueryExecutionError):
        raise
    except duckdb.Error as e:
        logger.error("file_reader: %s failed for %s: %s", operation, path, e)
        raise DataSourceUnreadable(detail=f"{operation} failed for {path}: {e}") from e


def raw_headers(path: str, fmt: str, width: int, sheet_name: Optional[str] = None) -> List[List[str]]:
    """
    Header cells as written in the file, one list per sheet. The engine and pandas both
    rename duplicates ("a", "a" -> "a", "a_1"), so duplicates are only visible here.
    CSV headers are split on the delimiter that yields the `width` columns the engine found.
    """
    if fmt == EXCEL:
        return excel_headers(path, sheet_name)
    if fmt != CSV or width < 2:
        return []
    for sep in CSV_DELIMITERS:
        try:
            # latin-1 maps bytes one to one, so equal header bytes give equal strings
            head = pd.read_csv(path, sep=sep, header=None, nrows=1, dtype=str,
                               encoding="latin-1", keep_default_na=False)
        except (pd.errors.ParserError, pd.errors.EmptyDataError):
            continue
        if head.shape[1] == width:
            cells = [str(c).encode("latin-1").decode("utf-8", errors="replace") for c in head.iloc[0]]
            return [[c.lstrip("\ufeff").strip() for c in cells]]
    logger.debug("raw_headers: no delimiter gives %d columns for %s", width, path)
    return []


def _check_unique(names: List[str]) -> None:
    seen = set()
    for n in names:
        if not n:
            continue
        if n in seen:
            raise DataSourceUnreadable(
                f"The dataset has more than one column named '{n}'. Column names must be unique.",
                detail=f"duplicate column {n!r}",
            )
        seen.add(n)


def describe_schema(path: str, file_type: Optional[str] = None, sheet_name: Optional[str] = None) -> List[dict]:
    """
    Column descriptors for the file. Empty list when the file has a header but no rows.
    Raises DataSourceUnreadable when the file cannot be read at either tier.
    """
    def work(con) -> List[dict]:
        described = con.execute(f"DESCRIBE SELECT * FROM {SOURCE_ALIAS}").fetchall()
        if con.execute(f"SELECT 1 FROM {SOURCE_ALIAS} LIMIT 1").fetchone() is None:
            return []
        names = [str(r[0]) for r in described]
        _check_unique(names)
        return [column_doc(str(r[0]), engine_type_to_column_type(str(r[1]))) for r in described]

    columns = _read(path, work, file_type, sheet_name, operation="describe_schema")
    if columns:
        for header in raw_headers(path, file_format(path, file_type), len(columns), sheet_name):
            _check_unique(header)
    logger.info("describe_schema: path=%s columns=%d", path, len(columns))
    return columns


def sample_rows(path: str, limit: int, file_type: Optional[str] = None,
                sheet_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Up to `limit` rows plus the scanned row count: {"columns", "rows", "total_rows"}.
    limit bounds rows returned, not rows scanned; it must be a positive integer.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")

    def work(con) -> Dict[str, Any]:
        cur = con.execute(f"SELECT * FROM {SOURCE_ALIAS} LIMIT {limit}")
        columns = [d[0] for d in cur.description]
        rows = [normalize_row(r) for r in cur.fetchall()]
        total = con.execute(f"SELECT COUNT(*) FROM {SOURCE_ALIAS}").fetchone()[0]
        return {"columns": columns, "rows": rows, "total_rows": int(total)}

    result = _read(path, work, file_type, sheet_name, operation="sample_rows")
    logger.info("sample_rows: path=%s returned=%d total=%d", path, len(result["rows"]), result["total_rows"])
    return result


def execute_aggregation(path: str, compiled_query: Any, file_type: Optional[str] = None,
                        sheet_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Run a compiled query (dict with "sql", or a SQL string) against the file.
    Engine failures surface as QueryExecutionError; the engine text is only logged.
    """
    sql = compiled_query["sql"] if isinstance(compiled_query, dict) else str(compiled_query)

    def work(con) -> Dict[str, Any]:
        try:
            cur = con.execute(sql)
            columns = [d[0] for d in cur.description]
            rows = [normalize_row(r) for r in cur.fetchall()]
        except duckdb.Error as e:
            if is_decoding_error(e):
                raise
            logger.error("execute_aggregation: query failed path=%s sql=%s error=%s", path, sql, e)
            raise QueryExecutionError(detail=str(e)) from e
        return {"columns": columns, "rows": rows}

    result = _read(path, work, file_type, sheet_name, operation="execute_aggregation")
    logger.info("execute_aggregation: path=%s rows=%d", path, len(result["rows"]))
    return result
