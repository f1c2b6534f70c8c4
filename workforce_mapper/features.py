"""
Feature projection for the Workforce Mapper.

Converts records into GeoJSON point features with a fixed property
schema, ready to be handed to the map surface.
"""

import html
from typing import Any, Dict, Iterable, Mapping, Tuple

from .records import Record

# Properties carried by every feature, in display order
FEATURE_PROPERTIES: Tuple[str, ...] = (
    'emp_name',
    'tsa_id',
    'emp_contact',
    'role',
    'division',
    'department',
    'state_location',
    'manager_name',
    'manager_contact',
    'second_manager_name',
    'second_manager_contact',
    'emergency_contact_name',
    'emergency_contact_relationship',
    'emergency_contact_number',
    'personal_address',
    'latitude',
    'longitude',
)

def empty_feature_collection() -> Dict[str, Any]:
    """Return a valid FeatureCollection with no features."""
    return {'type': 'FeatureCollection', 'features': []}

def record_to_feature(record: Record) -> Dict[str, Any]:
    """
    Convert one record to a GeoJSON point feature.

    Args:
        record: Record to convert

    Returns:
        GeoJSON Feature dict with [longitude, latitude] coordinates
    """
    return {
        'type': 'Feature',
        'properties': {name: getattr(record, name) for name in FEATURE_PROPERTIES},
        'geometry': {
            'type': 'Point',
            'coordinates': [record.longitude, record.latitude],
        },
    }

def project(records: Iterable[Record]) -> Dict[str, Any]:
    """
    Project records into a GeoJSON FeatureCollection.

    One feature is emitted per record; no filtering happens here.

    Args:
        records: Records to project

    Returns:
        FeatureCollection dict (never None)
    """
    collection = empty_feature_collection()
    collection['features'] = [record_to_feature(record) for record in records]
    return collection

def feature_coordinates(feature: Mapping[str, Any]) -> Tuple[float, float]:
    """
    Get the (longitude, latitude) of a point feature.

    Args:
        feature: GeoJSON point feature

    Returns:
        (lon, lat) tuple
    """
    lon, lat = feature['geometry']['coordinates'][:2]
    return (lon, lat)

def format_popup_html(properties: Mapping[str, Any]) -> str:
    """
    Create popup content for a personnel feature.

    Args:
        properties: Feature properties

    Returns:
        HTML string
    """
    def text(key: str) -> str:
        value = properties.get(key)
        return html.escape('' if value is None else str(value))

    return f"""
    <div style="font-family: Arial, sans-serif; min-width: 180px;">
        <h4 style="margin: 0 0 6px 0;">{text('emp_name')}</h4>
        <p style="margin: 2px 0; color: #555;">{text('role')}</p>
        <p style="margin: 2px 0; color: #555;">{text('division')}</p>
        <p style="margin: 8px 0 2px 0;"><b>Location:</b> {text('personal_address')}</p>
        <p style="margin: 2px 0; font-size: 11px; color: #888;">ID: {text('tsa_id')}</p>
    </div>
    """
