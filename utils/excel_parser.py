"""
Excel parsing with pandas + openpyxl.
Reads the requested sheet, or concatenates all sheets when none is named, into one DataFrame
that the file reader registers with the engine.
"""
from typing import List, Optional

import pandas as pd

from utils.errors import DataSourceUnreadable


def parse_excel(file_path: str, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """
    Parse an Excel workbook and return a single DataFrame.
    - sheet_name: read only that sheet; otherwise first sheet, or all sheets concatenated
      when there are several (same columns assumed; missing columns become NaN).
    - Header cells are stringified so column names are always str.
    Raises DataSourceUnreadable for a corrupt or unreadable workbook.
    """
    try:
        xl = pd.ExcelFile(file_path)
        sheets = xl.sheet_names
        if not sheets:
            return pd.DataFrame()
        if sheet_name is not None:
            if sheet_name not in sheets:
                raise DataSourceUnreadable(
                    f"The sheet '{sheet_name}' was not found in this workbook.",
                    detail=f"sheet={sheet_name} available={sheets}",
                )
            df = pd.read_excel(xl, sheet_name=sheet_name)
        elif len(sheets) == 1:
            df = pd.read_excel(xl, sheet_name=sheets[0])
        else:
            df = pd.concat([pd.read_excel(xl, sheet_name=s) for s in sheets], ignore_index=True)
    except DataSourceUnreadable:
        raise
    except Exception as e:
        raise DataSourceUnreadable(detail=f"excel parse failed for {file_path}: {e}") from e

    df.columns = [str(c) for c in df.columns]
    return df


def excel_headers(file_path: str, sheet_name: Optional[str] = None) -> List[List[str]]:
    """
    First-row cells of each sheet parse_excel reads, before pandas renames duplicates ("a", "a.1").
    Blank header cells are left out.
    """
    try:
        xl = pd.ExcelFile(file_path)
        sheets = [sheet_name] if sheet_name is not None else xl.sheet_names
        heads = [pd.read_excel(xl, sheet_name=s, header=None, nrows=1) for s in sheets]
    except Exception as e:
        raise DataSourceUnreadable(detail=f"excel header read failed for {file_path}: {e}") from e
    return [[str(c) for c in head.iloc[0] if not pd.isna(c)] for head in heads if not head.empty]
