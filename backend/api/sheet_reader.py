"""
Spreadsheet decoding for membership uploads.
Reads the first sheet of an Excel file (or a CSV file) into header -> value rows.
"""
import pandas as pd
from pathlib import Path
from typing import Any, Dict, List, Tuple
import logging

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = {'.xlsx', '.xlsm', '.xls'}
CSV_ENCODINGS = ['utf-8-sig', 'cp1252']

# Only truly empty cells are missing; names like "NA" or "Null" are kept
NA_OPTIONS = {'keep_default_na': False, 'na_values': ['']}

PARSE_ERROR_MESSAGE = "Failed to parse spreadsheet file. Please ensure it is a valid .xlsx, .xls or .csv file."


class SheetReadError(Exception):
    """Raised when a spreadsheet cannot be decoded at all"""

    def __init__(self, message: str = PARSE_ERROR_MESSAGE):
        super().__init__(message)


def _read_csv(file_path: Path) -> pd.DataFrame:
    last_error = None
    for encoding in CSV_ENCODINGS:
        try:
            # sep=None sniffs ';' vs ',' exports
            return pd.read_csv(file_path, sep=None, engine='python', encoding=encoding, **NA_OPTIONS)
        except UnicodeDecodeError as e:
            logger.warning(f"Could not decode {file_path.name} as {encoding}: {e}")
            last_error = e
    raise last_error


def load_first_sheet(file_path: str) -> pd.DataFrame:
    """Load the first sheet of a spreadsheet file into a DataFrame"""
    path = Path(file_path)
    suffix = path.suffix.lower()

    try:
        if suffix in EXCEL_EXTENSIONS:
            df = pd.read_excel(path, sheet_name=0, **NA_OPTIONS)
        elif suffix == '.csv':
            df = _read_csv(path)
        else:
            raise ValueError(f"Unsupported file type: {suffix or '(none)'}")
    except Exception as e:
        logger.error(f"Error reading spreadsheet {path.name}: {e}")
        raise SheetReadError() from e

    logger.info(f"Loaded {path.name}: {len(df)} rows, {len(df.columns)} columns")
    return df


def dataframe_to_rows(df: pd.DataFrame) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Convert a DataFrame into row mappings and the list of headers.

    Fully empty rows are dropped and empty cells become None, so a lookup on
    them behaves like an absent value.
    """
    df = df.loc[:, ~df.columns.duplicated()].copy()
    df.columns = [str(col) for col in df.columns]
    df = df.dropna(how='all')

    rows = []
    for record in df.astype(object).to_dict(orient='records'):
        rows.append({header: (None if _is_empty_cell(value) else value) for header, value in record.items()})

    return rows, list(df.columns)


def _is_empty_cell(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def read_rows(file_path: str) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Decode a spreadsheet into (rows, headers)"""
    df = load_first_sheet(file_path)
    return dataframe_to_rows(df)
