"""Shared fixtures for the Workforce Mapper tests."""

from typing import List

import pytest

from workforce_mapper.records import Record
from workforce_mapper.surface import MapSurface


def make_record(
    name: str,
    lon: float,
    lat: float,
    location: str = "NSW",
    division: str = "Operations",
    department: str = "Field",
    manager: str = "Alex Reed",
    **extra
) -> Record:
    return Record(
        tsa_id=extra.pop('tsa_id', name.lower().replace(' ', '-')),
        emp_name=name,
        role=extra.pop('role', "Technician"),
        division=division,
        department=department,
        state_location=location,
        manager_name=manager,
        personal_address=extra.pop('personal_address', f"1 {name} St"),
        latitude=lat,
        longitude=lon,
        **extra
    )


@pytest.fixture
def records() -> List[Record]:
    """Five people across two cities and a mix of attributes."""
    return [
        make_record("Ana Silva", 151.2093, -33.8688, "NSW", "Operations", "Field", "Alex Reed"),
        make_record("Ben Carter", 151.2100, -33.8700, "NSW", "Sales", "Retail", "Alex Reed"),
        make_record("Chen Wei", 144.9631, -37.8136, "VIC", "Operations", "Support", "Jo Park"),
        make_record("Dana Moss", 144.9700, -37.8200, "VIC", "Sales", "Field", "Jo Park"),
        make_record("Eli Grant", 153.0251, -27.4698, "QLD", "Operations", "Field", None),
    ]


@pytest.fixture
def square():
    """Open square ring (lon, lat) with corners (0,0) and (2,2)."""
    return [(0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0)]


@pytest.fixture
def surface() -> MapSurface:
    return MapSurface(center=(0.0, 0.0), zoom=4, click_tolerance_px=10)


@pytest.fixture
def record_factory():
    return make_record
