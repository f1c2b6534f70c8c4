"""
Layer management for the Workforce Mapper.

Owns the map-surface sources and layers of the two personnel
visualizations and keeps them consistent with the enable toggles and the
current filtered feature set:

- Location pins: clustered markers, cluster counts and unclustered points
  (click for a popup)
- Heatmap: density layer that fades out as the map zooms in

Sources and layers are created lazily, once a visualization is enabled
and feature data is available, and are never duplicated. Turning a
visualization off only hides its layers.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import Config
from .features import empty_feature_collection, feature_coordinates, format_popup_html
from .state import Cell
from .surface import ClusterNotFoundError, MapEvent, MapSurface

logger = logging.getLogger(__name__)

MARKER_SOURCE = 'agents'
CLUSTER_LAYER = 'clusters'
CLUSTER_COUNT_LAYER = 'cluster-count'
POINT_LAYER = 'unclustered-point'

HEATMAP_SOURCE = 'agents-heatmap'
HEATMAP_LAYER = 'agents-heatmap-layer'


class Visualization(str, Enum):
    """Visualizations that can be toggled on the map."""

    MARKERS = 'markers'
    HEATMAP = 'heatmap'


def heatmap_opacity_stops(opacity: float, fade_zoom: float) -> List[float]:
    """
    Zoom stops for heatmap opacity, reaching exactly 0 at fade_zoom.

    Args:
        opacity: Opacity at low zoom
        fade_zoom: Zoom at which the heatmap is fully transparent

    Returns:
        Flat [zoom, value, zoom, value, ...] list
    """
    stops: List[float] = [fade_zoom - 6, opacity]
    for step, factor in enumerate((0.8, 0.6, 0.4, 0.2)):
        stops += [fade_zoom - 4 + step, round(opacity * factor, 4)]
    stops += [fade_zoom, 0]
    return stops


class LayerManager:
    """Creates, updates, shows/hides and removes the personnel layers."""

    def __init__(
        self,
        surface: MapSurface,
        area_select: Optional[Cell] = None,
        enable_clustering: bool = True,
        cluster_radius: float = 50,
        cluster_max_zoom: int = 14,
        marker_color: str = '#3B82F6',
        marker_size: float = 8,
        heatmap_radius: float = 60,
        heatmap_opacity: float = 0.6,
        heatmap_max_zoom: float = 15,
        heatmap_fade_zoom: float = 13
    ):
        if heatmap_fade_zoom >= heatmap_max_zoom:
            raise ValueError("heatmap_fade_zoom must be below heatmap_max_zoom")

        self.surface = surface
        self.enable_clustering = enable_clustering
        self.cluster_radius = cluster_radius
        self.cluster_max_zoom = cluster_max_zoom
        self.marker_color = marker_color
        self.marker_size = marker_size
        self.heatmap_radius = heatmap_radius
        self.heatmap_opacity = heatmap_opacity
        self.heatmap_max_zoom = heatmap_max_zoom
        self.heatmap_fade_zoom = heatmap_fade_zoom

        # Handlers read the area-select flag through this cell
        self._area_select = area_select if area_select is not None else Cell(False)
        self._features: Cell = Cell(None)

        self._enabled: Dict[Visualization, bool] = {kind: False for kind in Visualization}
        self._pending: set = set()

        self._handlers_bound = False
        self._bound_handlers: List[Tuple[str, Callable[[MapEvent], None], str]] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def features(self) -> Optional[Dict[str, Any]]:
        """Latest feature collection pushed, or None before data arrives."""
        return self._features.get()

    def has_data(self) -> bool:
        collection = self._features.get()
        return collection is not None and len(collection.get('features', [])) > 0

    def is_enabled(self, kind: Visualization) -> bool:
        return self._enabled[Visualization(kind)]

    def is_pending(self, kind: Visualization) -> bool:
        return Visualization(kind) in self._pending

    @property
    def handlers_bound(self) -> bool:
        return self._handlers_bound

    def source_id(self, kind: Visualization) -> str:
        return MARKER_SOURCE if Visualization(kind) is Visualization.MARKERS else HEATMAP_SOURCE

    def layer_ids(self, kind: Visualization) -> List[str]:
        if Visualization(kind) is Visualization.HEATMAP:
            return [HEATMAP_LAYER]
        if self.enable_clustering:
            return [CLUSTER_LAYER, CLUSTER_COUNT_LAYER, POINT_LAYER]
        return [POINT_LAYER]

    def exists(self, kind: Visualization) -> bool:
        if self.surface.get_source(self.source_id(kind)) is None:
            return False
        return all(self.surface.get_layer(layer_id) is not None for layer_id in self.layer_ids(kind))

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def set_visualization_enabled(self, kind: Visualization, enabled: bool) -> None:
        """
        Turn a visualization on or off.

        Enabling creates the source and layers if they do not exist yet and
        feature data is available; without data the visualization is kept
        pending until refresh_data() delivers some. Disabling only hides.

        Args:
            kind: Visualization to toggle
            enabled: New state
        """
        kind = Visualization(kind)
        self._enabled[kind] = enabled

        if not enabled:
            self._pending.discard(kind)
            self._set_visibility(kind, False)
            return

        if not self.exists(kind):
            if not self.has_data():
                self._pending.add(kind)
                logger.info(f"{kind.value} enabled; waiting for feature data")
                return
            self._materialize(kind)

        self._set_visibility(kind, True)

    def refresh_data(self, features: Optional[Dict[str, Any]]) -> None:
        """
        Replace the feature payload of every existing source.

        Pending visualizations are created once features are available.

        Args:
            features: New filtered FeatureCollection
        """
        collection = features if features is not None else empty_feature_collection()
        self._features.set(collection)

        for kind in Visualization:
            source = self.surface.get_source(self.source_id(kind))
            if source is not None:
                source.set_data(collection)

        for kind in list(self._pending):
            if self._enabled[kind] and self.has_data():
                self._materialize(kind)
                self._set_visibility(kind, True)

        logger.info(f"Updated map layers with {len(collection['features'])} features")

    def teardown(self) -> None:
        """Remove every layer, source and handler this manager created."""
        for kind in Visualization:
            for layer_id in reversed(self.layer_ids(kind)):
                if self.surface.get_layer(layer_id) is not None:
                    self.surface.remove_layer(layer_id)
            source_id = self.source_id(kind)
            if self.surface.get_source(source_id) is not None:
                self.surface.remove_source(source_id)

        for event_type, handler, layer_id in self._bound_handlers:
            self.surface.off(event_type, handler, layer_id)
        self._bound_handlers = []
        self._handlers_bound = False

        self._pending = {kind for kind, enabled in self._enabled.items() if enabled}
        logger.info("Removed personnel layers from the map")

    def restore(self) -> None:
        """Recreate every enabled visualization, e.g. after a style reload."""
        for kind in Visualization:
            if self._enabled[kind]:
                self.set_visualization_enabled(kind, True)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def _materialize(self, kind: Visualization) -> None:
        collection = self._features.get() or empty_feature_collection()

        if kind is Visualization.MARKERS:
            self._add_marker_layers(collection)
            self._bind_handlers()
        else:
            self._add_heatmap_layer(collection)

        self._pending.discard(kind)
        logger.info(f"Added {kind.value} layers with {len(collection['features'])} features")

    def _add_marker_layers(self, collection: Dict[str, Any]) -> None:
        if self.surface.get_source(MARKER_SOURCE) is None:
            self.surface.add_source(
                MARKER_SOURCE,
                data=collection,
                cluster=self.enable_clustering,
                cluster_radius=self.cluster_radius,
                cluster_max_zoom=self.cluster_max_zoom
            )

        if self.enable_clustering and self.surface.get_layer(CLUSTER_LAYER) is None:
            color_steps: List[Any] = [Config.CLUSTER_COLOR_STEPS[0][1]]
            for threshold, color in Config.CLUSTER_COLOR_STEPS[1:]:
                color_steps += [threshold, color]

            self.surface.add_layer({
                'id': CLUSTER_LAYER,
                'type': 'circle',
                'source': MARKER_SOURCE,
                'filter': ['has', 'point_count'],
                'paint': {
                    'circle-color': ['step', ['get', 'point_count']] + color_steps,
                    'circle-radius': ['step', ['get', 'point_count'], 20, 100, 30, 750, 40],
                },
            })

        if self.enable_clustering and self.surface.get_layer(CLUSTER_COUNT_LAYER) is None:
            self.surface.add_layer({
                'id': CLUSTER_COUNT_LAYER,
                'type': 'symbol',
                'source': MARKER_SOURCE,
                'filter': ['has', 'point_count'],
                'layout': {
                    'text-field': '{point_count_abbreviated}',
                    'text-size': 12,
                },
                'paint': {'text-color': '#ffffff'},
            })

        if self.surface.get_layer(POINT_LAYER) is None:
            self.surface.add_layer({
                'id': POINT_LAYER,
                'type': 'circle',
                'source': MARKER_SOURCE,
                'filter': ['!', ['has', 'point_count']] if self.enable_clustering else None,
                'paint': {
                    'circle-color': self.marker_color,
                    'circle-radius': [
                        'interpolate', ['linear'], ['zoom'],
                        10, self.marker_size,
                        15, self.marker_size * 2,
                    ],
                    'circle-stroke-width': 2,
                    'circle-stroke-color': '#ffffff',
                    'circle-opacity': [
                        'interpolate', ['linear'], ['zoom'],
                        7, 0.6,
                        10, 0.8,
                        15, 1,
                    ],
                },
            })

    def _add_heatmap_layer(self, collection: Dict[str, Any]) -> None:
        if self.surface.get_source(HEATMAP_SOURCE) is None:
            self.surface.add_source(HEATMAP_SOURCE, data=collection)

        if self.surface.get_layer(HEATMAP_LAYER) is None:
            color_ramp: List[Any] = []
            for density, color in Config.HEATMAP_COLOR_RAMP:
                color_ramp += [density, color]

            self.surface.add_layer({
                'id': HEATMAP_LAYER,
                'type': 'heatmap',
                'source': HEATMAP_SOURCE,
                'maxzoom': self.heatmap_max_zoom,
                'paint': {
                    'heatmap-weight': [
                        'interpolate', ['linear'], ['zoom'],
                        0, 0.5,
                        self.heatmap_max_zoom, 1,
                    ],
                    'heatmap-intensity': [
                        'interpolate', ['linear'], ['zoom'],
                        0, 1,
                        9, 3,
                    ],
                    'heatmap-color': ['interpolate', ['linear'], ['heatmap-density']] + color_ramp,
                    'heatmap-radius': [
                        'interpolate', ['linear'], ['zoom'],
                        0, 2,
                        9, self.heatmap_radius,
                    ],
                    'heatmap-opacity': ['interpolate', ['linear'], ['zoom']]
                    + heatmap_opacity_stops(self.heatmap_opacity, self.heatmap_fade_zoom),
                },
            })

    def _set_visibility(self, kind: Visualization, visible: bool) -> None:
        for layer_id in self.layer_ids(kind):
            # Layers that were never created have nothing to toggle
            if self.surface.get_layer(layer_id) is None:
                continue
            self.surface.set_layout_property(layer_id, 'visibility', 'visible' if visible else 'none')

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------
    def _bind_handlers(self) -> None:
        if self._handlers_bound:
            return

        bindings = []
        if self.enable_clustering:
            bindings += [
                ('click', self._on_cluster_click, CLUSTER_LAYER),
                ('mouseenter', self._on_pointer_enter, CLUSTER_LAYER),
                ('mouseleave', self._on_pointer_leave, CLUSTER_LAYER),
            ]
        bindings += [
            ('click', self._on_point_click, POINT_LAYER),
            ('mouseenter', self._on_pointer_enter, POINT_LAYER),
            ('mouseleave', self._on_pointer_leave, POINT_LAYER),
        ]

        for event_type, handler, layer_id in bindings:
            self.surface.on(event_type, handler, layer_id)
        self._bound_handlers = bindings
        self._handlers_bound = True

    def _on_cluster_click(self, event: MapEvent) -> None:
        if self._area_select.get():
            return

        features = self.surface.query_rendered_features(event.lng_lat, layers=[CLUSTER_LAYER])
        if not features:
            return

        source = self.surface.get_source(MARKER_SOURCE)
        if source is None:
            return

        cluster = features[0]
        try:
            zoom = source.get_cluster_expansion_zoom(cluster['properties'].get('cluster_id'))
        except ClusterNotFoundError as e:
            logger.debug(f"Ignoring cluster click: {e}")
            return

        self.surface.ease_to(center=feature_coordinates(cluster), zoom=zoom)

    def _on_point_click(self, event: MapEvent) -> None:
        if self._area_select.get() or not event.features:
            return

        feature = event.features[0]
        lon, lat = feature_coordinates(feature)

        # Show the popup on the copy of the feature nearest the click
        click_lon = event.lng_lat[0]
        while abs(click_lon - lon) > 180:
            lon += 360 if click_lon > lon else -360

        self.surface.open_popup((lon, lat), format_popup_html(feature.get('properties') or {}))

    def _on_pointer_enter(self, event: MapEvent) -> None:
        if not self._area_select.get():
            self.surface.set_cursor('pointer')

    def _on_pointer_leave(self, event: MapEvent) -> None:
        if not self._area_select.get():
            self.surface.set_cursor('')
