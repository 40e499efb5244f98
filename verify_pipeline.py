#!/usr/bin/env python3
"""
Verification: end-to-end chart requests against a small generated CSV.
Uses the Groq model when GROQ_API_KEY is set, the keyword planner otherwise.
Run from the project root:  python verify_pipeline.py
"""
import logging
import os
import sys
import tempfile

from agents.orchestrator import resolve_chart_query
from utils.errors import ChartQueryError

ROWS = [
    ("State", "OrderDate", "Sales"),
    ("Kentucky", "2016-01-05", "120.50"),
    ("Kentucky", "2016-01-20", "80.00"),
    ("Kentucky", "2016-03-02", "42.25"),
    ("California", "2016-01-11", "300.00"),
    ("Kentucky", "2017-02-14", "55.00"),
]


def _write_csv(path):
    with open(path, "w", encoding="utf-8") as f:
        for row in ROWS:
            f.write(",".join(row) + "\n")


def main():
    logging.basicConfig(level=logging.WARNING)
    ok = 0
    fail = 0
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "orders.csv")
        _write_csv(path)
        dataset = {"id": "orders", "name": "orders", "location": path, "file_type": "csv", "backend": "file"}

        # 1. Grouped by month with filters
        try:
            r = resolve_chart_query(dataset, "Show me sales in Kentucky for 2016 by month")
            if r["labels"] and all(len(d["values"]) == len(r["labels"]) for d in r["datasets"]):
                print("  OK  Monthly sales (%s) — labels: %s" % (r["intent_source"], r["labels"]))
                ok += 1
            else:
                print("  FAIL Monthly sales — unexpected result:", r)
                fail += 1
        except ChartQueryError as e:
            print("  FAIL Monthly sales —", e)
            fail += 1

        # 2. Follow-up turn carries the state filter
        try:
            r = resolve_chart_query(
                dataset, "actually make it 2017", ["Show me sales in Kentucky for 2016 by month"],
            )
            print("  OK  Follow-up (%s) — labels: %s" % (r["intent_source"], r["labels"]))
            ok += 1
        except ChartQueryError as e:
            print("  FAIL Follow-up —", e)
            fail += 1

        # 3. Unknown file is rejected with a user-safe message
        try:
            resolve_chart_query(dict(dataset, location=os.path.join(tmp, "missing.csv")), "sales by State")
            print("  FAIL Missing file — expected an error")
            fail += 1
        except ChartQueryError as e:
            print("  OK  Missing file —", e)
            ok += 1

    print()
    if fail == 0:
        print("Pipeline verification passed (%d checks)." % ok)
        return 0
    print("Pipeline verification failed: %d ok, %d fail." % (ok, fail))
    return 1


if __name__ == "__main__":
    sys.exit(main())
