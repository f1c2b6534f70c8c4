"""
Map surface model for the Workforce Mapper.

Holds the live state of the interactive map independently of how it is
drawn: named GeoJSON sources (optionally clustered), styled layers keyed
to a source, per-layer visibility, hit-testing, pointer events, the view
(center/zoom), the cursor, popups and a queue of deferred callbacks.

Coordinates on the surface are always (longitude, latitude).
map_builder turns a surface into a folium map on every render pass.
"""

import copy
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from pyproj import Transformer
from scipy.spatial import cKDTree

from .geo_utils import point_in_polygon

logger = logging.getLogger(__name__)

LngLat = Tuple[float, float]
Handler = Callable[["MapEvent"], None]

# Size of a world tile in screen pixels at zoom 0
TILE_SIZE = 256
# Latitude limit of the Web Mercator projection
MAX_LATITUDE = 85.0511287798
# Half the width of the Web Mercator world in meters
MERCATOR_HALF_WORLD = 20037508.342789244

_TO_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)

# Cluster ids pack the zoom level into the low bits
_ZOOM_BITS = 5
_ZOOM_MASK = (1 << _ZOOM_BITS) - 1

# Layer types that take part in hit-testing
HIT_TESTABLE_TYPES = ('circle', 'symbol', 'fill')


class SurfaceError(Exception):
    """Raised when a source or layer operation is invalid."""


class ClusterNotFoundError(SurfaceError):
    """Raised when a cluster id cannot be resolved."""


@dataclass
class MapEvent:
    """A pointer event dispatched by the surface."""

    type: str
    lng_lat: Optional[LngLat] = None
    features: List[Dict[str, Any]] = field(default_factory=list)
    layer_id: Optional[str] = None
    default_prevented: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True


@dataclass
class Popup:
    lng_lat: LngLat
    html: str


def to_mercator(coordinates: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Project (lon, lat) pairs to Web Mercator meters (EPSG:3857).

    Latitudes are clamped to the projection limit first.

    Args:
        coordinates: Sequence of (lon, lat) pairs

    Returns:
        Array of shape (n, 2) with x, y in meters
    """
    points = np.asarray(coordinates, dtype=float).reshape(-1, 2)
    if len(points) == 0:
        return np.empty((0, 2))

    lats = np.clip(points[:, 1], -MAX_LATITUDE, MAX_LATITUDE)
    xs, ys = _TO_MERCATOR.transform(points[:, 0], lats)
    return np.column_stack([xs, ys])


def meters_per_pixel(zoom: float) -> float:
    """Ground size of one screen pixel at a zoom level, in Mercator meters."""
    return 2 * MERCATOR_HALF_WORLD / (TILE_SIZE * (2 ** zoom))


def project_lnglat(lon: float, lat: float, zoom: float) -> Tuple[float, float]:
    """
    Project a coordinate to Web Mercator world pixels at a zoom level.

    Args:
        lon: Longitude in degrees
        lat: Latitude in degrees
        zoom: Zoom level

    Returns:
        (x, y) in pixels, origin at the top-left of the world
    """
    (x, y), = to_mercator([(lon, lat)])
    scale = meters_per_pixel(zoom)
    return ((x + MERCATOR_HALF_WORLD) / scale, (MERCATOR_HALF_WORLD - y) / scale)


def abbreviate_count(count: int) -> str:
    """Short label for a cluster size (e.g. 1.2k, 15k)."""
    if count >= 10000:
        return f"{round(count / 1000)}k"
    if count >= 1000:
        return f"{round(count / 100) / 10}k"
    return str(count)


def evaluate_filter(expression: Optional[Sequence[Any]], properties: Dict[str, Any]) -> bool:
    """
    Evaluate a layer filter expression against feature properties.

    Supports ["has", key], ["!", expr] and ["all", expr, ...].

    Raises:
        ValueError: For unsupported operators
    """
    if expression is None:
        return True

    operator = expression[0]
    if operator == 'has':
        return expression[1] in properties
    if operator == '!':
        return not evaluate_filter(expression[1], properties)
    if operator == 'all':
        return all(evaluate_filter(sub, properties) for sub in expression[1:])

    raise ValueError(f"Unsupported filter operator: {operator}")


def _pairs(stops: Sequence[Any]) -> List[Tuple[float, Any]]:
    return [(stops[i], stops[i + 1]) for i in range(0, len(stops) - 1, 2)]


def evaluate_expression(expression: Any, zoom: float, properties: Optional[Dict[str, Any]] = None) -> Any:
    """
    Evaluate a paint value that may be a zoom or property interpolation.

    Supports literals, ["interpolate", ["linear"], input, stop, value, ...]
    and ["step", input, base, stop, value, ...] where input is ["zoom"] or
    ["get", key].

    Args:
        expression: Literal value or expression list
        zoom: Current zoom level
        properties: Feature properties for ["get", key] inputs

    Returns:
        Evaluated value
    """
    if not isinstance(expression, list) or not expression or not isinstance(expression[0], str):
        return expression

    def read_input(spec: Sequence[Any]) -> float:
        if spec[0] == 'zoom':
            return zoom
        if spec[0] == 'get':
            value = (properties or {}).get(spec[1])
            return float(value) if value is not None else 0.0
        raise ValueError(f"Unsupported expression input: {spec}")

    operator = expression[0]

    if operator == 'interpolate':
        value = read_input(expression[2])
        stops = _pairs(expression[3:])
        if value <= stops[0][0]:
            return stops[0][1]
        if value >= stops[-1][0]:
            return stops[-1][1]
        for (z0, v0), (z1, v1) in zip(stops, stops[1:]):
            if z0 <= value <= z1:
                if not isinstance(v0, (int, float)) or not isinstance(v1, (int, float)):
                    return v0
                t = (value - z0) / (z1 - z0)
                return v0 + (v1 - v0) * t

    if operator == 'step':
        value = read_input(expression[1])
        result = expression[2]
        for threshold, step_value in _pairs(expression[3:]):
            if value >= threshold:
                result = step_value
        return result

    raise ValueError(f"Unsupported expression operator: {operator}")


class ClusterIndex:
    """
    Greedy pixel-radius clustering of point features per integer zoom.

    At each zoom up to max_zoom, every unassigned point absorbs all other
    unassigned points within radius pixels. Above max_zoom nothing is
    clustered. Points are projected once; each zoom is a radius query on
    a KD-tree over the projected points.
    """

    def __init__(self, features: Sequence[Dict[str, Any]], radius: float, max_zoom: int):
        self._features = list(features)
        self._radius = radius
        self._max_zoom = max_zoom
        self._groups: Dict[int, List[List[int]]] = {}
        self._points: Optional[np.ndarray] = None
        self._tree: Optional[cKDTree] = None

    def _index(self) -> Tuple[np.ndarray, cKDTree]:
        if self._tree is None:
            self._points = to_mercator([f['geometry']['coordinates'][:2] for f in self._features])
            self._tree = cKDTree(self._points)
        return self._points, self._tree

    def _groups_at(self, zoom: int) -> List[List[int]]:
        if zoom in self._groups:
            return self._groups[zoom]

        if zoom > self._max_zoom or len(self._features) < 2:
            groups = [[i] for i in range(len(self._features))]
        else:
            points, tree = self._index()
            radius = self._radius * meters_per_pixel(zoom)

            assigned = np.zeros(len(points), dtype=bool)
            groups = []
            for i in range(len(points)):
                if assigned[i]:
                    continue
                neighbours = tree.query_ball_point(points[i], r=radius)
                members = [i] + sorted(k for k in neighbours if k > i and not assigned[k])
                assigned[members] = True
                groups.append(members)

        self._groups[zoom] = groups
        return groups

    @staticmethod
    def _zoom_of(zoom: float) -> int:
        return max(0, int(math.floor(zoom)))

    def get_clusters(self, zoom: float) -> List[Dict[str, Any]]:
        """
        Get cluster and single-point features at a zoom level.

        Args:
            zoom: Zoom level

        Returns:
            List of GeoJSON features; clusters carry cluster_id and point_count
        """
        z = self._zoom_of(zoom)
        result = []
        for index, members in enumerate(self._groups_at(z)):
            if len(members) == 1:
                result.append(self._features[members[0]])
                continue

            lons = [self._features[m]['geometry']['coordinates'][0] for m in members]
            lats = [self._features[m]['geometry']['coordinates'][1] for m in members]
            result.append({
                'type': 'Feature',
                'properties': {
                    'cluster': True,
                    'cluster_id': (index << _ZOOM_BITS) | z,
                    'point_count': len(members),
                    'point_count_abbreviated': abbreviate_count(len(members)),
                },
                'geometry': {
                    'type': 'Point',
                    'coordinates': [sum(lons) / len(lons), sum(lats) / len(lats)],
                },
            })
        return result

    def _members(self, cluster_id: int) -> Tuple[int, List[int]]:
        if not isinstance(cluster_id, int) or isinstance(cluster_id, bool) or cluster_id < 0:
            raise ClusterNotFoundError(f"No cluster with the specified id: {cluster_id!r}")

        z = cluster_id & _ZOOM_MASK
        index = cluster_id >> _ZOOM_BITS
        if z > self._max_zoom:
            raise ClusterNotFoundError(f"No cluster with the specified id: {cluster_id}")

        groups = self._groups_at(z)
        if index >= len(groups) or len(groups[index]) < 2:
            raise ClusterNotFoundError(f"No cluster with the specified id: {cluster_id}")

        return z, groups[index]

    def get_leaves(self, cluster_id: int) -> List[Dict[str, Any]]:
        """Get the point features grouped in a cluster."""
        _, members = self._members(cluster_id)
        return [self._features[m] for m in members]

    def get_expansion_zoom(self, cluster_id: int) -> int:
        """
        Get the zoom at which a cluster breaks apart.

        Args:
            cluster_id: Id from a cluster feature

        Returns:
            Zoom level

        Raises:
            ClusterNotFoundError: If the id is unknown
        """
        z, members = self._members(cluster_id)
        member_set = set(members)
        first = members[0]

        for zoom in range(z + 1, self._max_zoom + 1):
            for group in self._groups_at(zoom):
                if first in group:
                    if not member_set.issubset(group):
                        return zoom
                    break

        return self._max_zoom + 1


class GeoJSONSource:
    """A named collection of features, optionally clustered."""

    def __init__(
        self,
        source_id: str,
        data: Optional[Dict[str, Any]] = None,
        cluster: bool = False,
        cluster_radius: float = 50,
        cluster_max_zoom: int = 14
    ):
        self.id = source_id
        self.cluster = cluster
        self.cluster_radius = cluster_radius
        self.cluster_max_zoom = cluster_max_zoom
        self._data: Dict[str, Any] = {'type': 'FeatureCollection', 'features': []}
        self._index: Optional[ClusterIndex] = None
        self.set_data(data)

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    @property
    def features(self) -> List[Dict[str, Any]]:
        return self._data.get('features', [])

    def set_data(self, data: Optional[Dict[str, Any]]) -> None:
        """Replace the whole feature payload."""
        self._data = data if data is not None else {'type': 'FeatureCollection', 'features': []}
        self._index = None

    def _cluster_index(self) -> ClusterIndex:
        if self._index is None:
            self._index = ClusterIndex(self.features, self.cluster_radius, self.cluster_max_zoom)
        return self._index

    def rendered_features(self, zoom: float) -> List[Dict[str, Any]]:
        if not self.cluster:
            return list(self.features)
        return self._cluster_index().get_clusters(zoom)

    def get_cluster_expansion_zoom(self, cluster_id: int) -> int:
        if not self.cluster:
            raise ClusterNotFoundError(f"Source '{self.id}' is not clustered")
        return self._cluster_index().get_expansion_zoom(cluster_id)

    def get_cluster_leaves(self, cluster_id: int) -> List[Dict[str, Any]]:
        if not self.cluster:
            raise ClusterNotFoundError(f"Source '{self.id}' is not clustered")
        return self._cluster_index().get_leaves(cluster_id)


class MapSurface:
    """Live sources, layers, events and view of the interactive map."""

    def __init__(
        self,
        center: LngLat = (0.0, 0.0),
        zoom: float = 0,
        click_tolerance_px: float = 10
    ):
        self.center: LngLat = center
        self.zoom = zoom
        self.cursor = ''
        self.click_tolerance_px = click_tolerance_px
        self.popups: List[Popup] = []

        self._sources: Dict[str, GeoJSONSource] = {}
        self._layers: Dict[str, Dict[str, Any]] = {}
        self._handlers: Dict[Tuple[str, Optional[str]], List[Handler]] = defaultdict(list)

        self._clock_ms = 0.0
        self._timer_seq = 0
        self._timers: List[Tuple[float, int, Callable[[], None]]] = []

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------
    def add_source(self, source_id: str, **options: Any) -> GeoJSONSource:
        if source_id in self._sources:
            raise SurfaceError(f"There is already a source with id '{source_id}'")
        source = GeoJSONSource(source_id, **options)
        self._sources[source_id] = source
        return source

    def get_source(self, source_id: str) -> Optional[GeoJSONSource]:
        return self._sources.get(source_id)

    def remove_source(self, source_id: str) -> None:
        if source_id not in self._sources:
            raise SurfaceError(f"There is no source with id '{source_id}'")
        users = [lid for lid, layer in self._layers.items() if layer['source'] == source_id]
        if users:
            raise SurfaceError(f"Source '{source_id}' is in use by layers: {', '.join(users)}")
        del self._sources[source_id]

    @property
    def source_ids(self) -> List[str]:
        return list(self._sources)

    # ------------------------------------------------------------------
    # Layers
    # ------------------------------------------------------------------
    def add_layer(self, layer: Dict[str, Any], before_id: Optional[str] = None) -> None:
        layer_id = layer['id']
        if layer_id in self._layers:
            raise SurfaceError(f"Layer with id '{layer_id}' already exists")
        if layer.get('source') not in self._sources:
            raise SurfaceError(f"Source '{layer.get('source')}' not found for layer '{layer_id}'")

        spec = copy.deepcopy(layer)
        spec.setdefault('paint', {})
        spec.setdefault('layout', {})
        spec['layout'].setdefault('visibility', 'visible')

        if before_id is not None and before_id in self._layers:
            reordered = {}
            for existing_id, existing in self._layers.items():
                if existing_id == before_id:
                    reordered[layer_id] = spec
                reordered[existing_id] = existing
            self._layers = reordered
        else:
            self._layers[layer_id] = spec

    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]:
        return self._layers.get(layer_id)

    def remove_layer(self, layer_id: str) -> None:
        if layer_id not in self._layers:
            raise SurfaceError(f"There is no layer with id '{layer_id}'")
        del self._layers[layer_id]

    @property
    def layer_ids(self) -> List[str]:
        return list(self._layers)

    def set_layout_property(self, layer_id: str, name: str, value: Any) -> None:
        layer = self._layers.get(layer_id)
        if layer is None:
            raise SurfaceError(f"There is no layer with id '{layer_id}'")
        layer['layout'][name] = value

    def is_layer_visible(self, layer_id: str) -> bool:
        layer = self._layers.get(layer_id)
        return layer is not None and layer['layout'].get('visibility', 'visible') != 'none'

    def _renders_at_zoom(self, layer: Dict[str, Any]) -> bool:
        return layer.get('minzoom', 0) <= self.zoom < layer.get('maxzoom', 24)

    def is_layer_rendered(self, layer_id: str) -> bool:
        """True if a layer is visible and the current zoom is inside its zoom range."""
        layer = self._layers.get(layer_id)
        return layer is not None and self.is_layer_visible(layer_id) and self._renders_at_zoom(layer)

    def rendered_layer_features(self, layer_id: str) -> List[Dict[str, Any]]:
        """
        Get the features a layer draws at the current zoom.

        Args:
            layer_id: Layer id

        Returns:
            Features after clustering and the layer filter
        """
        layer = self._layers.get(layer_id)
        if layer is None:
            return []
        source = self._sources[layer['source']]
        candidates = source.rendered_features(self.zoom) if layer['type'] != 'heatmap' else source.features
        return [
            f for f in candidates
            if evaluate_filter(layer.get('filter'), f.get('properties') or {})
        ]

    # ------------------------------------------------------------------
    # Hit-testing
    # ------------------------------------------------------------------
    def _hits(self, features: Sequence[Dict[str, Any]], lng_lat: LngLat) -> List[bool]:
        """Hit flags for features at a point; points within the pixel tolerance, polygons by containment."""
        flags = [False] * len(features)

        point_indices = [
            i for i, f in enumerate(features)
            if (f.get('geometry') or {}).get('type') == 'Point'
        ]
        if point_indices:
            points = to_mercator([features[i]['geometry']['coordinates'][:2] for i in point_indices])
            query = to_mercator([lng_lat])[0]
            distances = np.hypot(points[:, 0] - query[0], points[:, 1] - query[1])
            within = distances <= self.click_tolerance_px * meters_per_pixel(self.zoom)
            for i, hit in zip(point_indices, within):
                flags[i] = bool(hit)

        for i, feature in enumerate(features):
            geometry = feature.get('geometry') or {}
            if geometry.get('type') == 'Polygon':
                flags[i] = point_in_polygon(lng_lat, geometry['coordinates'][0])

        return flags

    def query_rendered_features(
        self,
        lng_lat: LngLat,
        layers: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Find rendered features at a point, top-most layer first.

        Args:
            lng_lat: (lon, lat) of the query point
            layers: Restrict to these layer ids

        Returns:
            Feature dicts, each with a 'layer' key naming its layer
        """
        results = []
        for layer_id in reversed(list(self._layers)):
            if layers is not None and layer_id not in layers:
                continue
            layer = self._layers[layer_id]
            if layer['type'] not in HIT_TESTABLE_TYPES:
                continue
            if not self.is_layer_rendered(layer_id):
                continue
            features = self.rendered_layer_features(layer_id)
            for feature, hit_flag in zip(features, self._hits(features, lng_lat)):
                if hit_flag:
                    hit = dict(feature)
                    hit['layer'] = layer_id
                    results.append(hit)
        return results

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def on(self, event_type: str, handler: Handler, layer_id: Optional[str] = None) -> None:
        self._handlers[(event_type, layer_id)].append(handler)

    def off(self, event_type: str, handler: Handler, layer_id: Optional[str] = None) -> None:
        handlers = self._handlers.get((event_type, layer_id))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event_type: str, layer_id: Optional[str] = None) -> int:
        return len(self._handlers.get((event_type, layer_id), []))

    def fire(self, event_type: str, lng_lat: Optional[LngLat] = None) -> MapEvent:
        """
        Dispatch an event to layer-scoped and surface-wide handlers.

        Layer-scoped handlers only run when the point hits a rendered
        feature of their layer.

        Args:
            event_type: e.g. 'click', 'dblclick', 'mouseenter', 'style.load'
            lng_lat: (lon, lat) of the pointer, if any

        Returns:
            The surface-wide event object
        """
        scoped = [
            (layer_id, list(handlers))
            for (etype, layer_id), handlers in self._handlers.items()
            if etype == event_type and layer_id is not None and handlers
        ]
        for layer_id, handlers in scoped:
            if lng_lat is None:
                continue
            hits = self.query_rendered_features(lng_lat, layers=[layer_id])
            if not hits:
                continue
            for handler in handlers:
                handler(MapEvent(event_type, lng_lat, features=hits, layer_id=layer_id))

        event = MapEvent(event_type, lng_lat)
        for handler in list(self._handlers.get((event_type, None), [])):
            handler(event)
        return event

    # ------------------------------------------------------------------
    # View, cursor and popups
    # ------------------------------------------------------------------
    def ease_to(self, center: Optional[LngLat] = None, zoom: Optional[float] = None) -> None:
        if center is not None:
            self.center = (center[0], center[1])
        if zoom is not None:
            self.zoom = zoom
        logger.debug(f"View moved to {self.center} at zoom {self.zoom}")

    jump_to = ease_to

    def set_cursor(self, cursor: str) -> None:
        self.cursor = cursor

    def open_popup(self, lng_lat: LngLat, html: str) -> Popup:
        popup = Popup(lng_lat=lng_lat, html=html)
        self.popups.append(popup)
        return popup

    def close_popups(self) -> None:
        self.popups = []

    # ------------------------------------------------------------------
    # Deferred callbacks
    # ------------------------------------------------------------------
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> None:
        """Schedule a callback to run once delay_ms has elapsed."""
        self._timer_seq += 1
        self._timers.append((self._clock_ms + max(0.0, delay_ms), self._timer_seq, callback))

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def advance(self, elapsed_ms: float) -> int:
        """
        Move the surface clock forward, running callbacks that fall due.

        Args:
            elapsed_ms: Milliseconds to advance

        Returns:
            Number of callbacks run
        """
        target = self._clock_ms + elapsed_ms
        ran = 0
        while True:
            due = [timer for timer in self._timers if timer[0] <= target]
            if not due:
                break
            timer = min(due)
            self._timers.remove(timer)
            self._clock_ms = max(self._clock_ms, timer[0])
            timer[2]()
            ran += 1
        self._clock_ms = target
        return ran

    def run_timers(self) -> int:
        """Run every pending callback in due order."""
        ran = 0
        while self._timers:
            latest = max(timer[0] for timer in self._timers)
            ran += self.advance(max(0.0, latest - self._clock_ms))
        return ran

    # ------------------------------------------------------------------
    # Style
    # ------------------------------------------------------------------
    def reset_style(self) -> None:
        """Drop every source and layer, then announce the new style."""
        self._layers.clear()
        self._sources.clear()
        self.fire('style.load')
