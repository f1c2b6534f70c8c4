"""
Integration tests for the map controller.

Run with: python -m pytest tests/test_controller.py -v
"""

import folium
import pytest

from workforce_mapper.controller import MapController
from workforce_mapper.drawing import POLYGON_FILL_LAYER
from workforce_mapper.features import project
from workforce_mapper.geo_utils import select_within
from workforce_mapper.layer_manager import HEATMAP_SOURCE, MARKER_SOURCE, POINT_LAYER, Visualization
from workforce_mapper.map_builder import build_map
from workforce_mapper.records import FilterCriteria, Record

BRISBANE = (153.0251, -27.4698)

# Covers both Sydney and Melbourne but not Brisbane
SOUTH_EAST = [(140.0, -40.0), (155.0, -40.0), (155.0, -30.0), (140.0, -30.0)]


@pytest.fixture
def selections():
    return []


@pytest.fixture
def controller(surface, selections, records):
    controller = MapController(surface=surface, on_selection=selections.append)
    controller.set_visualization_enabled(Visualization.MARKERS, True)
    controller.load_records(records)
    return controller


def _draw(controller, polygon):
    controller.set_area_select(True)
    for lon, lat in polygon:
        controller.handle_click(lon, lat)
    controller.handle_double_click(*polygon[-1])


class TestLoading:
    """Test loading and filtering through the controller."""

    def test_default_surface_view(self):
        controller = MapController()
        lon, lat = controller.surface.center
        assert lat == pytest.approx(-25.2744)
        assert lon == pytest.approx(133.7751)

    def test_pending_layers_appear_on_load(self, controller, surface, records):
        assert controller.data_loaded
        assert len(surface.get_source(MARKER_SOURCE).features) == len(records)

    def test_unmappable_records_are_dropped(self, surface, records):
        controller = MapController(surface=surface)
        kept = controller.load_records(list(records) + [Record(emp_name="Nowhere", latitude=0.0, longitude=0.0)])
        assert kept == len(records)
        assert len(controller.filtered_features()['features']) == len(records)

    def test_set_filters_refreshes_layers(self, controller, surface):
        controller.set_visualization_enabled(Visualization.HEATMAP, True)
        controller.set_filters(FilterCriteria.from_selections(location=["NSW"]))

        assert len(controller.filtered_records()) == 2
        assert surface.get_source(MARKER_SOURCE).data == surface.get_source(HEATMAP_SOURCE).data
        assert len(surface.get_source(HEATMAP_SOURCE).features) == 2

    def test_clearing_filters(self, controller, records):
        controller.set_filters(FilterCriteria.from_selections(location=["NSW"]))
        controller.set_filters(None)
        assert controller.criteria.is_empty()
        assert len(controller.filtered_records()) == len(records)

    def test_refresh_before_load_is_noop(self, surface):
        controller = MapController(surface=surface)
        controller.set_filters(FilterCriteria.from_selections(location=["NSW"]))
        assert surface.source_ids == []


class TestSelection:
    """Test area selection end to end."""

    def test_selection_matches_spatial_query(self, controller, selections):
        _draw(controller, SOUTH_EAST)

        expected = select_within(SOUTH_EAST, project(controller.filtered_records())['features'])
        assert len(selections) == 1
        assert [r.emp_name for r in selections[0]] == [f['properties']['emp_name'] for f in expected]
        assert [r.emp_name for r in controller.selection] == ["Ana Silva", "Ben Carter", "Chen Wei", "Dana Moss"]

    def test_selection_respects_filters(self, controller):
        controller.set_filters(FilterCriteria.from_selections(division=["Sales"]))
        _draw(controller, SOUTH_EAST)
        assert [r.emp_name for r in controller.selection] == ["Ben Carter", "Dana Moss"]

    def test_completion_turns_area_select_off(self, controller, surface):
        _draw(controller, SOUTH_EAST)

        assert not controller.area_select_active
        assert surface.listener_count('click') == 0

    def test_area_select_suppresses_popups(self, controller, surface):
        controller.set_area_select(True)
        controller.handle_click(*BRISBANE)
        assert surface.popups == []

        controller.set_area_select(False)
        controller.handle_click(*BRISBANE)
        assert len(surface.popups) == 1

    def test_click_closes_previous_popup(self, controller, surface):
        controller.handle_click(*BRISBANE)
        controller.handle_click(*BRISBANE)
        assert len(surface.popups) == 1

        controller.handle_click(0.0, 0.0)
        assert surface.popups == []

    def test_turning_area_select_off_clears_selection(self, controller):
        _draw(controller, SOUTH_EAST)
        assert controller.selection

        controller.set_area_select(False)
        assert controller.selection is None

    def test_too_few_vertices_select_nothing(self, controller, selections):
        controller.set_area_select(True)
        controller.handle_click(150.0, -34.0)
        controller.handle_click(152.0, -34.0)
        controller.handle_double_click(152.0, -34.0)

        assert selections == []
        assert controller.area_select_active


class TestStyleReload:
    """Test rebuilding layers after a style reload."""

    def test_layers_survive_style_reload(self, controller, surface, records):
        controller.handle_style_load()

        assert surface.get_layer(POINT_LAYER) is not None
        assert len(surface.get_source(MARKER_SOURCE).features) == len(records)
        assert surface.listener_count('click', POINT_LAYER) == 1

        controller.handle_click(*BRISBANE)
        assert len(surface.popups) == 1


class TestDeferredCallbacks:
    """Test when drawing feedback expires relative to a render pass."""

    def test_completed_polygon_drawn_before_expiry(self, controller, surface):
        _draw(controller, SOUTH_EAST)

        # Same order as one page rerun: draw, then run what fell due
        m = build_map(surface)
        assert len([c for c in m._children.values() if isinstance(c, folium.Polygon)]) == 1
        assert surface.get_layer(POLYGON_FILL_LAYER) is not None

        assert controller.run_deferred() == 1

        assert surface.get_layer(POLYGON_FILL_LAYER) is None
        m = build_map(surface)
        assert [c for c in m._children.values() if isinstance(c, folium.Polygon)] == []

    def test_nothing_pending_runs_nothing(self, controller):
        assert controller.run_deferred() == 0
