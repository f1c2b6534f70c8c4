"""
Map controller for the Workforce Mapper.

Wires the record store, filter criteria, layer manager and area selector
to a single map surface. UI code talks to the controller only; it never
touches surface sources or layers directly.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import Config
from .drawing import AreaSelector
from .features import project
from .geo_utils import select_within
from .layer_manager import LayerManager, Visualization
from .records import FilterCriteria, Record, RecordStore
from .state import Cell
from .surface import MapSurface

logger = logging.getLogger(__name__)


class MapController:
    """Owns the map surface and keeps every layer in step with user input."""

    def __init__(
        self,
        surface: Optional[MapSurface] = None,
        on_selection: Optional[Callable[[List[Record]], None]] = None,
        layer_options: Optional[Dict[str, Any]] = None,
        grace_period_ms: Optional[float] = None
    ):
        if surface is None:
            (lat, lon), zoom = Config.default_view()
            surface = MapSurface(center=(lon, lat), zoom=zoom, click_tolerance_px=Config.CLICK_TOLERANCE_PX)

        self.surface = surface
        self.store = RecordStore()
        self._on_selection = on_selection

        self._criteria: Cell = Cell(FilterCriteria())
        self._area_select: Cell = Cell(False)
        self._features: Cell = Cell(project([]))
        self.selection: Optional[List[Record]] = None

        options = Config.layer_options()
        options.update(layer_options or {})
        self.layers = LayerManager(surface, area_select=self._area_select, **options)

        self.selector = AreaSelector(
            surface,
            on_complete=self._on_polygon_complete,
            grace_period_ms=Config.DRAWING_GRACE_PERIOD_MS if grace_period_ms is None else grace_period_ms,
            color=Config.DRAWING_COLOR
        )

        self.surface.on('style.load', self._on_style_load)

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def criteria(self) -> FilterCriteria:
        return self._criteria.get()

    @property
    def area_select_active(self) -> bool:
        return self._area_select.get()

    @property
    def data_loaded(self) -> bool:
        return self.store.loaded

    def filtered_records(self) -> List[Record]:
        return self.store.filtered(self._criteria.get())

    def filtered_features(self) -> Dict[str, Any]:
        return self._features.get()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def load_records(self, records: Sequence[Record]) -> int:
        """
        Replace the loaded records and push them through every layer.

        Args:
            records: Records from the record source

        Returns:
            Number of mappable records kept
        """
        kept = self.store.load(records)
        self.refresh()
        return kept

    def set_filters(self, criteria: Optional[FilterCriteria]) -> None:
        """Replace the filter criteria wholesale and refresh the layers."""
        self._criteria.set(criteria if criteria is not None else FilterCriteria())
        self.refresh()

    def set_visualization_enabled(self, kind: Visualization, enabled: bool) -> None:
        self.layers.set_visualization_enabled(kind, enabled)

    def set_area_select(self, active: bool) -> None:
        """
        Turn area selection on or off.

        Turning it off also clears the last selection.
        """
        self._area_select.set(active)
        self.selector.set_active(active)
        if active:
            self.surface.close_popups()
        else:
            self.selection = None

    def refresh(self) -> Dict[str, Any]:
        """Recompute filtered features and push them into the live layers."""
        if not self.store.loaded:
            return self._features.get()

        filtered = self.filtered_records()
        features = project(filtered)
        self._features.set(features)
        self.layers.refresh_data(features)

        logger.info(f"{len(filtered)} of {len(self.store)} records match the current filters")
        return features

    # ------------------------------------------------------------------
    # Pointer events from the UI
    # ------------------------------------------------------------------
    def handle_click(self, lon: float, lat: float) -> None:
        self.surface.close_popups()
        self.surface.fire('click', (lon, lat))

    def handle_double_click(self, lon: float, lat: float) -> None:
        self.surface.fire('dblclick', (lon, lat))

    def handle_style_load(self) -> None:
        """Rebuild the personnel layers after the surface dropped its style."""
        self.surface.reset_style()

    def run_deferred(self) -> int:
        """
        Run the surface's pending callbacks (drawing feedback expiry).

        Call this after the map has been drawn for the current pass, so
        feedback with a grace period is shown at least once.

        Returns:
            Number of callbacks run
        """
        count = self.surface.run_timers()
        if count:
            logger.debug(f"Ran {count} deferred map callbacks")
        return count

    def _on_style_load(self, event: Any) -> None:
        self.layers.teardown()
        self.layers.restore()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def _on_polygon_complete(self, polygon: List[tuple]) -> None:
        selected = select_within(polygon, self.filtered_records(), key=lambda record: record.coordinates)
        self.selection = selected
        self._area_select.set(False)

        logger.info(f"Selected {len(selected)} records inside the drawn area")
        if self._on_selection is not None:
            self._on_selection(selected)

    def clear_selection(self) -> None:
        self.selection = None
