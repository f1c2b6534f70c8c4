"""
Export of area selections for the Workforce Mapper.

Turns the records selected inside a drawn polygon into a table and a
CSV download.
"""

import logging
from datetime import date
from typing import Dict, Optional, Sequence

import pandas as pd

from .config import Config
from .records import Record

logger = logging.getLogger(__name__)

# Export column header -> Record field
EXPORT_COLUMNS: Dict[str, str] = {
    'TSA ID': 'tsa_id',
    'Employee Name': 'emp_name',
    'Role': 'role',
    'Division': 'division',
    'Department': 'department',
    'Personal Address': 'personal_address',
    'State/Location': 'state_location',
    'Contact Number': 'emp_contact',
    'Manager Name': 'manager_name',
    'Manager Contact Number': 'manager_contact',
    '2Up Manager Name': 'second_manager_name',
    '2Up Manager Contact Number': 'second_manager_contact',
    'Emergency Contact': 'emergency_contact_name',
    'Emergency Contact Number': 'emergency_contact_number',
    'Emergency Contact Relationship': 'emergency_contact_relationship',
}

def selection_to_dataframe(records: Sequence[Record]) -> pd.DataFrame:
    """
    Build the export table for a selection.

    Args:
        records: Selected records, in selection order

    Returns:
        DataFrame with one row per record and the export headers as columns
    """
    rows = [
        {header: getattr(record, field) for header, field in EXPORT_COLUMNS.items()}
        for record in records
    ]
    return pd.DataFrame(rows, columns=list(EXPORT_COLUMNS))

def selection_to_csv(records: Sequence[Record]) -> bytes:
    """
    Serialize a selection to CSV.

    Args:
        records: Selected records

    Returns:
        UTF-8 encoded CSV content
    """
    df = selection_to_dataframe(records)
    logger.info(f"Exporting {len(df)} selected records to CSV")
    return df.to_csv(index=False).encode('utf-8')

def export_filename(day: Optional[date] = None) -> str:
    """File name for a CSV export, e.g. selected_employees_2024-05-01.csv."""
    day = day or date.today()
    return f"{Config.EXPORT_FILENAME_PREFIX}_{day.isoformat()}.csv"
