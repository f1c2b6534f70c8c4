"""
Geometry processing utilities for the Workforce Mapper.

Provides the point-in-polygon query used for area selection and
helpers for working with feature collections as GeoDataFrames.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

import geopandas as gpd

from .features import feature_coordinates

logger = logging.getLogger(__name__)

T = TypeVar('T')

Point = Tuple[float, float]

def point_in_polygon(point: Sequence[float], polygon: Sequence[Sequence[float]]) -> bool:
    """
    Test whether a point lies inside a polygon using the even-odd rule.

    A horizontal ray is cast from the point; each polygon edge it crosses
    flips the result.

    Args:
        point: (longitude, latitude) pair
        polygon: Sequence of (longitude, latitude) vertices, open or closed

    Returns:
        True if inside; False for polygons with fewer than 3 vertices
    """
    if polygon is None or len(polygon) < 3:
        return False

    x, y = point[0], point[1]
    inside = False

    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i][0], polygon[i][1]
        xj, yj = polygon[j][0], polygon[j][1]

        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside

        j = i

    return inside

def close_ring(vertices: Sequence[Sequence[float]]) -> List[Point]:
    """
    Close a vertex sequence by repeating its first vertex.

    Args:
        vertices: Sequence of (lon, lat) pairs

    Returns:
        Closed ring as a list of tuples (unchanged if already closed)
    """
    ring = [(v[0], v[1]) for v in vertices]
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring

def select_within(
    polygon: Sequence[Sequence[float]],
    items: Iterable[T],
    key: Callable[[T], Sequence[float]] = feature_coordinates
) -> List[T]:
    """
    Select the items whose point lies inside a polygon.

    Args:
        polygon: Sequence of (lon, lat) vertices
        items: Features (or any items) to test, in order
        key: Function returning an item's (lon, lat)

    Returns:
        Items inside the polygon, in input order (empty for degenerate polygons)
    """
    if polygon is None or len(polygon) < 3:
        return []

    return [item for item in items if point_in_polygon(key(item), polygon)]

def features_to_geodataframe(collection: Dict[str, Any]) -> gpd.GeoDataFrame:
    """
    Convert a FeatureCollection to a GeoDataFrame in WGS84.

    Args:
        collection: GeoJSON FeatureCollection dict

    Returns:
        GeoDataFrame (empty if the collection has no features)
    """
    features = collection.get('features', []) if collection else []
    if not features:
        return gpd.GeoDataFrame(geometry=[], crs='EPSG:4326')

    return gpd.GeoDataFrame.from_features(features, crs='EPSG:4326')

def get_bbox(collection: Dict[str, Any]) -> Optional[Tuple[float, float, float, float]]:
    """
    Get bounding box of a FeatureCollection.

    Args:
        collection: GeoJSON FeatureCollection dict

    Returns:
        Tuple of (min_lon, min_lat, max_lon, max_lat), or None if empty
    """
    try:
        gdf = features_to_geodataframe(collection)
        if gdf.empty:
            return None

        bounds = gdf.total_bounds  # Returns [minx, miny, maxx, maxy]
        return (float(bounds[0]), float(bounds[1]), float(bounds[2]), float(bounds[3]))
    except Exception as e:
        logger.error(f"Error getting bounding box: {e}")
        return None
