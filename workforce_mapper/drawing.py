"""
Area selection for the Workforce Mapper.

Implements the polygon-drawing gesture as an explicit state machine:

    IDLE --activate--> DRAWING --click--> DRAWING
    DRAWING --double click (>= 3 vertices)--> COMPLETED --selection delivered--> IDLE
    DRAWING/COMPLETED --deactivate--> IDLE

Each completed polygon produces exactly one selection callback. Click and
double-click listeners are only attached while DRAWING.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from shapely.geometry import LineString, Point, Polygon, mapping

from .geo_utils import close_ring
from .surface import MapEvent, MapSurface
from .validation import is_valid_polygon

logger = logging.getLogger(__name__)

POINTS_SOURCE = 'drawing-points'
POINTS_LAYER = 'drawing-points'
LINE_SOURCE = 'drawing-line'
LINE_LAYER = 'drawing-line'
POLYGON_SOURCE = 'selection-polygon'
POLYGON_FILL_LAYER = 'selection-polygon-fill'
POLYGON_OUTLINE_LAYER = 'selection-polygon-outline'

DRAWING_LAYERS = (POINTS_LAYER, LINE_LAYER, POLYGON_FILL_LAYER, POLYGON_OUTLINE_LAYER)
DRAWING_SOURCES = (POINTS_SOURCE, LINE_SOURCE, POLYGON_SOURCE)

Vertex = Tuple[float, float]


class DrawingState(str, Enum):
    IDLE = 'idle'
    DRAWING = 'drawing'
    COMPLETED = 'completed'


def _collection(geometries: Sequence[Any], with_index: bool = False) -> Dict[str, Any]:
    return {
        'type': 'FeatureCollection',
        'features': [
            {
                'type': 'Feature',
                'geometry': mapping(geometry),
                'properties': {'index': i} if with_index else {},
            }
            for i, geometry in enumerate(geometries)
        ],
    }


class AreaSelector:
    """Drives the polygon-drawing gesture on a map surface."""

    def __init__(
        self,
        surface: MapSurface,
        on_complete: Callable[[List[Vertex]], None],
        grace_period_ms: float = 100,
        color: str = '#3B82F6'
    ):
        self.surface = surface
        self.grace_period_ms = grace_period_ms
        self.color = color
        self._on_complete = on_complete

        self._state = DrawingState.IDLE
        self._vertices: List[Vertex] = []
        self._listening = False
        # Bumped on every new gesture so stale timers leave newer layers alone
        self._generation = 0

    @property
    def state(self) -> DrawingState:
        return self._state

    @property
    def vertices(self) -> List[Vertex]:
        return list(self._vertices)

    @property
    def listening(self) -> bool:
        return self._listening

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def set_active(self, active: bool) -> None:
        """
        Turn area selection on or off.

        Args:
            active: True to start a gesture, False to cancel any gesture
        """
        if active:
            if self._state is DrawingState.IDLE:
                self._start()
            return

        if self._state is not DrawingState.IDLE:
            self._cancel()

    def _start(self) -> None:
        self._generation += 1
        self._vertices = []
        self._clear_layers()
        self.surface.set_cursor('crosshair')
        self._attach_listeners()
        self._state = DrawingState.DRAWING
        logger.info("Area selection started")

    def _cancel(self) -> None:
        self._detach_listeners()
        self._vertices = []
        self._clear_layers()
        self.surface.set_cursor('')
        self._state = DrawingState.IDLE
        logger.info("Area selection cancelled")

    def _complete(self) -> None:
        ring = close_ring(self._vertices)

        self._detach_listeners()
        self._render_polygon(ring)
        self.surface.set_cursor('')
        self._state = DrawingState.COMPLETED

        generation = self._generation
        self.surface.call_later(self.grace_period_ms, lambda: self._expire_layers(generation))

        logger.info(f"Area selection completed with {len(ring) - 1} vertices")
        try:
            self._on_complete(ring)
        finally:
            if self._state is DrawingState.COMPLETED:
                self._vertices = []
                self._state = DrawingState.IDLE

    def _expire_layers(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._clear_layers()

    # ------------------------------------------------------------------
    # Pointer handlers
    # ------------------------------------------------------------------
    def _attach_listeners(self) -> None:
        if self._listening:
            return
        self.surface.on('click', self._handle_click)
        self.surface.on('dblclick', self._handle_double_click)
        self._listening = True

    def _detach_listeners(self) -> None:
        self.surface.off('click', self._handle_click)
        self.surface.off('dblclick', self._handle_double_click)
        self._listening = False

    def _handle_click(self, event: MapEvent) -> None:
        if self._state is not DrawingState.DRAWING or event.lng_lat is None:
            return

        self._vertices.append((event.lng_lat[0], event.lng_lat[1]))
        self._render_vertices()

    def _handle_double_click(self, event: MapEvent) -> None:
        event.prevent_default()

        if self._state is not DrawingState.DRAWING:
            return

        if not is_valid_polygon(self._vertices):
            logger.debug(f"Ignoring double click with {len(self._vertices)} vertices")
            return

        self._complete()

    # ------------------------------------------------------------------
    # Drawing feedback
    # ------------------------------------------------------------------
    def _upsert_source(self, source_id: str, data: Dict[str, Any]) -> bool:
        """Set data on an existing source or create it. Returns True if created."""
        source = self.surface.get_source(source_id)
        if source is not None:
            source.set_data(data)
            return False
        self.surface.add_source(source_id, data=data)
        return True

    def _render_vertices(self) -> None:
        points = _collection([Point(v) for v in self._vertices], with_index=True)
        self._upsert_source(POINTS_SOURCE, points)
        if self.surface.get_layer(POINTS_LAYER) is None:
            self.surface.add_layer({
                'id': POINTS_LAYER,
                'type': 'circle',
                'source': POINTS_SOURCE,
                'paint': {
                    'circle-color': self.color,
                    'circle-radius': 6,
                    'circle-stroke-color': '#ffffff',
                    'circle-stroke-width': 2,
                },
            })

        if len(self._vertices) < 2:
            return

        self._upsert_source(LINE_SOURCE, _collection([LineString(self._vertices)]))
        if self.surface.get_layer(LINE_LAYER) is None:
            self.surface.add_layer({
                'id': LINE_LAYER,
                'type': 'line',
                'source': LINE_SOURCE,
                'paint': {
                    'line-color': self.color,
                    'line-width': 2,
                    'line-dasharray': [4, 4],
                },
            })

    def _render_polygon(self, ring: List[Vertex]) -> None:
        self._upsert_source(POLYGON_SOURCE, _collection([Polygon(ring)]))

        if self.surface.get_layer(POLYGON_FILL_LAYER) is None:
            self.surface.add_layer({
                'id': POLYGON_FILL_LAYER,
                'type': 'fill',
                'source': POLYGON_SOURCE,
                'paint': {'fill-color': self.color, 'fill-opacity': 0.2},
            })

        if self.surface.get_layer(POLYGON_OUTLINE_LAYER) is None:
            self.surface.add_layer({
                'id': POLYGON_OUTLINE_LAYER,
                'type': 'line',
                'source': POLYGON_SOURCE,
                'paint': {
                    'line-color': self.color,
                    'line-width': 2,
                    'line-dasharray': [2, 2],
                },
            })

    def _clear_layers(self) -> None:
        for layer_id in DRAWING_LAYERS:
            if self.surface.get_layer(layer_id) is not None:
                self.surface.remove_layer(layer_id)

        for source_id in DRAWING_SOURCES:
            if self.surface.get_source(source_id) is not None:
                self.surface.remove_source(source_id)
