"""
Personnel records and the filter predicate for the Workforce Mapper.

This module handles:
- Building immutable records from rows of the processed workbook
- Filter criteria over location, division, department and manager
- Matching records against criteria
- Holding the loaded record set and exposing the filtered subset
"""

import logging
import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# Workbook column header -> Record field
COLUMN_MAP: Dict[str, str] = {
    'TSA ID': 'tsa_id',
    'Emp Name': 'emp_name',
    'Emp Contact #': 'emp_contact',
    'Role': 'role',
    'Division': 'division',
    'Department': 'department',
    'State/Location': 'state_location',
    'Manager Name': 'manager_name',
    'Manager Contact #': 'manager_contact',
    '2nd Manager Name': 'second_manager_name',
    '2nd Manager Contact #': 'second_manager_contact',
    'Emergency Contact Name': 'emergency_contact_name',
    'Emergency Contact Relationship': 'emergency_contact_relationship',
    'Emergency Contact #': 'emergency_contact_number',
    'PersonalAddress': 'personal_address',
    'latitude': 'latitude',
    'longitude': 'longitude',
    'geocode_display_name': 'geocode_display_name',
    'geocode_success': 'geocode_success',
    'geocode_error': 'geocode_error',
}

# Filter attribute -> Record field
FILTER_ATTRIBUTES: Dict[str, str] = {
    'location': 'state_location',
    'division': 'division',
    'department': 'department',
    'manager': 'manager_name',
}


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def _to_float(value: Any) -> Optional[float]:
    if _is_missing(value) or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_bool(value: Any) -> Optional[bool]:
    if _is_missing(value):
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ('true', 'yes', '1'):
            return True
        if text in ('false', 'no', '0'):
            return False
        return None
    return bool(value)


def normalize_value(value: Any) -> str:
    """
    Coerce an attribute value to the string used for filter comparisons.

    Args:
        value: Raw attribute value (may be None or NaN)

    Returns:
        Trimmed string, empty for missing values
    """
    if _is_missing(value):
        return ''
    return str(value).strip()


@dataclass(frozen=True)
class Record:
    """One personnel entry with its geocoded position."""

    tsa_id: Any = None
    emp_name: Optional[str] = None
    emp_contact: Optional[str] = None
    role: Optional[str] = None
    division: Optional[str] = None
    department: Optional[str] = None
    state_location: Optional[str] = None
    manager_name: Optional[str] = None
    manager_contact: Optional[str] = None
    second_manager_name: Optional[str] = None
    second_manager_contact: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None
    emergency_contact_number: Optional[str] = None
    personal_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geocode_display_name: Optional[str] = None
    geocode_success: Optional[bool] = None
    geocode_error: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Record":
        """
        Build a record from one workbook row.

        Accepts either the workbook column headers or the field names.
        Missing cells become None; unparseable coordinates become None.

        Args:
            row: Mapping of column name to cell value

        Returns:
            Record instance
        """
        values: Dict[str, Any] = {}
        for key, value in row.items():
            name = COLUMN_MAP.get(str(key).strip(), key)
            values[name] = value

        kwargs = {}
        for f in fields(cls):
            value = values.get(f.name)
            if f.name in ('latitude', 'longitude'):
                kwargs[f.name] = _to_float(value)
            elif f.name == 'geocode_success':
                kwargs[f.name] = _to_bool(value)
            else:
                kwargs[f.name] = None if _is_missing(value) else value
        return cls(**kwargs)

    @property
    def coordinates(self) -> tuple:
        """(longitude, latitude) pair."""
        return (self.longitude, self.latitude)


@dataclass(frozen=True)
class FilterCriteria:
    """Selected values per attribute; an empty set means no constraint."""

    location: FrozenSet[str] = field(default_factory=frozenset)
    division: FrozenSet[str] = field(default_factory=frozenset)
    department: FrozenSet[str] = field(default_factory=frozenset)
    manager: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_selections(
        cls,
        location: Iterable[str] = (),
        division: Iterable[str] = (),
        department: Iterable[str] = (),
        manager: Iterable[str] = ()
    ) -> "FilterCriteria":
        """Build criteria from any iterables of selected values."""
        return cls(
            location=frozenset(location),
            division=frozenset(division),
            department=frozenset(department),
            manager=frozenset(manager),
        )

    def with_values(self, attribute: str, values: Iterable[str]) -> "FilterCriteria":
        """
        Return new criteria with one attribute's selection replaced.

        Args:
            attribute: One of FILTER_ATTRIBUTES
            values: New selected values

        Returns:
            New FilterCriteria

        Raises:
            KeyError: If attribute is unknown
        """
        if attribute not in FILTER_ATTRIBUTES:
            raise KeyError(f"Unknown filter attribute: {attribute}")
        selections = {name: getattr(self, name) for name in FILTER_ATTRIBUTES}
        selections[attribute] = frozenset(values)
        return FilterCriteria(**selections)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in FILTER_ATTRIBUTES)

    def active_count(self) -> int:
        """Total number of selected values across all attributes."""
        return sum(len(getattr(self, name)) for name in FILTER_ATTRIBUTES)


def matches(record: Record, criteria: Optional[FilterCriteria]) -> bool:
    """
    Check whether a record passes the filter criteria.

    Attributes are ANDed together; values within one attribute are ORed.

    Args:
        record: Record to test
        criteria: Filter criteria (None means no filtering)

    Returns:
        True if the record matches
    """
    if criteria is None:
        return True

    for attribute, record_field in FILTER_ATTRIBUTES.items():
        selected = getattr(criteria, attribute)
        if selected and normalize_value(getattr(record, record_field, None)) not in selected:
            return False

    return True


def filter_records(
    records: Iterable[Record],
    criteria: Optional[FilterCriteria]
) -> List[Record]:
    """
    Filter records by criteria, preserving order.

    Args:
        records: Records to filter
        criteria: Filter criteria

    Returns:
        List of matching records
    """
    if criteria is None or criteria.is_empty():
        return list(records)
    return [record for record in records if matches(record, criteria)]


def unique_values(records: Iterable[Record], attribute: str) -> List[str]:
    """
    Get the sorted distinct non-empty values of a filter attribute.

    Args:
        records: Records to scan
        attribute: One of FILTER_ATTRIBUTES

    Returns:
        Sorted list of values
    """
    record_field = FILTER_ATTRIBUTES[attribute]
    values = {normalize_value(getattr(record, record_field)) for record in records}
    values.discard('')
    return sorted(values)


class RecordStore:
    """Holds the loaded, mappable records."""

    def __init__(self):
        self._records: tuple = ()
        self._loaded = False
        self._rejected = 0

    def load(self, records: Sequence[Record]) -> int:
        """
        Replace the stored records with the mappable subset of records.

        Args:
            records: Freshly loaded records

        Returns:
            Number of records kept
        """
        from .validation import is_mappable

        kept = tuple(record for record in records if is_mappable(record))
        self._records = kept
        self._rejected = len(records) - len(kept)
        self._loaded = True

        logger.info(
            f"Loaded {len(kept)} mappable records "
            f"({self._rejected} without usable coordinates)"
        )
        return len(kept)

    def clear(self) -> None:
        self._records = ()
        self._loaded = False
        self._rejected = 0

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def records(self) -> tuple:
        return self._records

    @property
    def rejected_count(self) -> int:
        return self._rejected

    def __len__(self) -> int:
        return len(self._records)

    def filtered(self, criteria: Optional[FilterCriteria]) -> List[Record]:
        return filter_records(self._records, criteria)
