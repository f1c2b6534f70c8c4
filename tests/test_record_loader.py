"""
Unit tests for the record loader.

Tests:
1. Reading CSV and Excel files
2. Fetching from an HTTP endpoint
3. Every failure path returns an empty list

Run with: python -m pytest tests/test_record_loader.py -v
"""

import pandas as pd
import pytest
import requests

from workforce_mapper import record_loader
from workforce_mapper.record_loader import (
    dataframe_to_records,
    fetch_records_from_url,
    load_records,
    parse_records,
    read_workbook,
)

ROWS = [
    {'TSA ID': 1, 'Emp Name': 'Ana Silva', 'State/Location': 'NSW', 'Division': 'Operations',
     'latitude': -33.8688, 'longitude': 151.2093, 'geocode_success': True},
    {'TSA ID': 2, 'Emp Name': 'Chen Wei', 'State/Location': 'VIC', 'Division': None,
     'latitude': -37.8136, 'longitude': 144.9631, 'geocode_success': True},
]


class FakeResponse:
    def __init__(self, payload=None, status_code=200, json_error=False):
        self._payload = payload
        self.status_code = status_code
        self._json_error = json_error

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._json_error:
            raise ValueError("not json")
        return self._payload


# ═══════════════════════════════════════════════════════════════════════════
# ROW PARSING
# ═══════════════════════════════════════════════════════════════════════════


class TestParsing:
    """Test row -> record conversion."""

    def test_parse_records(self):
        records = parse_records(ROWS)
        assert [r.emp_name for r in records] == ['Ana Silva', 'Chen Wei']
        assert records[1].division is None

    def test_non_mapping_rows_are_skipped(self):
        records = parse_records([ROWS[0], 'junk', None])
        assert len(records) == 1

    def test_dataframe_nan_becomes_none(self):
        records = dataframe_to_records(pd.DataFrame(ROWS))
        assert records[1].division is None
        assert records[0].latitude == pytest.approx(-33.8688)

    def test_empty_dataframe(self):
        assert dataframe_to_records(pd.DataFrame()) == []


# ═══════════════════════════════════════════════════════════════════════════
# FILES
# ═══════════════════════════════════════════════════════════════════════════


class TestReadWorkbook:
    """Test reading files."""

    def test_reads_csv(self, tmp_path):
        path = tmp_path / "agents.csv"
        pd.DataFrame(ROWS).to_csv(path, index=False)

        records = read_workbook(path)

        assert len(records) == 2
        assert records[0].state_location == 'NSW'
        assert records[0].coordinates == (pytest.approx(151.2093), pytest.approx(-33.8688))

    def test_reads_excel_sheet(self, tmp_path):
        path = tmp_path / "agents.xlsx"
        pd.DataFrame(ROWS).to_excel(path, sheet_name='Geocoded Addresses', index=False)

        records = read_workbook(path)

        assert [r.emp_name for r in records] == ['Ana Silva', 'Chen Wei']

    def test_missing_sheet_returns_empty(self, tmp_path):
        path = tmp_path / "agents.xlsx"
        pd.DataFrame(ROWS).to_excel(path, sheet_name='Other', index=False)
        assert read_workbook(path) == []

    def test_missing_file_returns_empty(self, tmp_path):
        assert read_workbook(tmp_path / "nope.csv") == []


# ═══════════════════════════════════════════════════════════════════════════
# HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestFetch:
    """Test fetching records over HTTP."""

    def test_fetches_data_rows(self, monkeypatch):
        calls = []

        def fake_get(url, timeout=None):
            calls.append((url, timeout))
            return FakeResponse({'data': ROWS})

        monkeypatch.setattr(record_loader.requests, 'get', fake_get)

        records = fetch_records_from_url("https://example.test/agents", timeout=5)

        assert len(records) == 2
        assert calls == [("https://example.test/agents", 5)]

    def test_http_error_returns_empty(self, monkeypatch):
        monkeypatch.setattr(record_loader.requests, 'get', lambda url, timeout=None: FakeResponse(status_code=500))
        assert fetch_records_from_url("https://example.test/agents") == []

    def test_connection_error_returns_empty(self, monkeypatch):
        def fail(url, timeout=None):
            raise requests.ConnectionError("down")

        monkeypatch.setattr(record_loader.requests, 'get', fail)
        assert fetch_records_from_url("https://example.test/agents") == []

    def test_invalid_json_returns_empty(self, monkeypatch):
        monkeypatch.setattr(record_loader.requests, 'get',
                            lambda url, timeout=None: FakeResponse(json_error=True))
        assert fetch_records_from_url("https://example.test/agents") == []

    def test_error_payload_returns_empty(self, monkeypatch):
        monkeypatch.setattr(record_loader.requests, 'get',
                            lambda url, timeout=None: FakeResponse({'error': 'sheet locked'}))
        assert fetch_records_from_url("https://example.test/agents") == []

    def test_load_records_dispatches_on_source(self, monkeypatch, tmp_path):
        monkeypatch.setattr(record_loader.requests, 'get',
                            lambda url, timeout=None: FakeResponse({'data': ROWS[:1]}))
        assert len(load_records("http://example.test/agents")) == 1

        path = tmp_path / "agents.csv"
        pd.DataFrame(ROWS).to_csv(path, index=False)
        assert len(load_records(str(path))) == 2
