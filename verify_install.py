#!/usr/bin/env python3
"""
Verification: every runtime dependency imports, reports its installed version,
and DuckDB can run a query in memory.
Run from the project root:  python verify_install.py
"""
import sys
from importlib import metadata

# import name -> distribution name
REQUIRED = {
    "pandas": "pandas",
    "numpy": "numpy",
    "openpyxl": "openpyxl",
    "duckdb": "duckdb",
    "groq": "groq",
    "rapidfuzz": "rapidfuzz",
    "dotenv": "python-dotenv",
}


def _check_duckdb():
    from db.engine import scoped_connection

    with scoped_connection() as cur:
        return cur.execute("SELECT 40 + 2").fetchone()[0] == 42


def main():
    missing = []
    for module, dist in REQUIRED.items():
        try:
            __import__(module)
        except ImportError as e:
            print(f"  FAIL {dist}: {e}")
            missing.append(dist)
            continue
        print(f"  OK  {dist} {metadata.version(dist)}")
    if missing:
        print("\nMissing: %s. Install the project with:  pip install -e ." % ", ".join(missing))
        return 1
    if not _check_duckdb():
        print("\nDuckDB imported but returned a wrong result.")
        return 1
    print("\nAll dependencies OK.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
