"""
Record loader for the Workforce Mapper.

This module handles:
- Reading the processed, already-geocoded personnel workbook (or a CSV export)
- Fetching the same table from an HTTP endpoint returning {"data": [...]}
- Converting raw rows into immutable records

Geocoding happens upstream; rows arrive with latitude/longitude columns.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd
import requests

from .config import Config
from .records import Record

logger = logging.getLogger(__name__)

def parse_records(rows: Iterable[Mapping[str, Any]]) -> List[Record]:
    """
    Convert raw table rows into records.

    Rows that are not mappings are skipped.

    Args:
        rows: Iterable of column -> value mappings

    Returns:
        List of Record objects
    """
    records = []
    skipped = 0

    for row in rows:
        if not isinstance(row, Mapping):
            skipped += 1
            continue
        records.append(Record.from_row(row))

    if skipped:
        logger.warning(f"Skipped {skipped} malformed rows")

    return records

def dataframe_to_records(df: pd.DataFrame) -> List[Record]:
    """
    Convert a DataFrame of the processed workbook into records.

    Args:
        df: DataFrame with the workbook column headers

    Returns:
        List of Record objects
    """
    if df is None or df.empty:
        return []

    # NaN cells become None so optional text fields stay empty
    df = df.astype(object).where(pd.notna(df), None)
    return parse_records(df.to_dict(orient='records'))

def read_workbook(path: Union[str, Path], sheet_name: Optional[str] = None) -> List[Record]:
    """
    Read records from the processed Excel workbook or a CSV file.

    Args:
        path: Path to .xlsx/.xls or .csv file
        sheet_name: Workbook sheet (defaults to Config.DATA_SHEET)

    Returns:
        List of records, empty if the file cannot be read
    """
    path = Path(path)

    if not path.exists():
        logger.error(f"Record file not found: {path}")
        return []

    try:
        if path.suffix.lower() == '.csv':
            df = pd.read_csv(path)
        else:
            df = pd.read_excel(path, sheet_name=sheet_name or Config.DATA_SHEET)
    except ValueError as e:
        # Raised by pandas for a missing sheet
        logger.error(f"Could not read sheet from {path}: {e}")
        return []
    except Exception as e:
        logger.error(f"Error reading record file {path}: {e}")
        return []

    records = dataframe_to_records(df)
    logger.info(f"Read {len(records)} rows from {path.name}")
    return records

def fetch_records_from_url(url: str, timeout: Optional[float] = None) -> List[Record]:
    """
    Fetch records from an HTTP endpoint returning {"data": [...]}.

    Args:
        url: Endpoint URL
        timeout: Request timeout in seconds (defaults to Config.HTTP_TIMEOUT)

    Returns:
        List of records, empty on any request or payload error
    """
    try:
        response = requests.get(url, timeout=timeout or Config.HTTP_TIMEOUT)
        response.raise_for_status()
        payload: Dict[str, Any] = response.json()
    except requests.RequestException as e:
        logger.error(f"Error fetching records from {url}: {e}")
        return []
    except ValueError as e:
        logger.error(f"Invalid JSON from {url}: {e}")
        return []

    rows = payload.get('data') if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        error = payload.get('error') if isinstance(payload, dict) else None
        logger.error(f"No record data in response from {url}" + (f": {error}" if error else ""))
        return []

    records = parse_records(rows)
    logger.info(f"Fetched {len(records)} rows from {url}")
    return records

def load_records(source: Optional[str] = None) -> List[Record]:
    """
    Load records from the configured source.

    Args:
        source: File path or http(s) URL (defaults to Config.DATA_SOURCE)

    Returns:
        List of records (possibly empty)
    """
    source = source or Config.DATA_SOURCE

    if not source:
        logger.error("No record source configured")
        return []

    if source.startswith(('http://', 'https://')):
        return fetch_records_from_url(source)

    return read_workbook(source)
