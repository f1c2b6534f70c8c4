"""
Unit tests for the layer manager.

Tests:
1. Enabling before data arrives keeps the visualization pending
2. Re-enabling never duplicates sources, layers or handlers
3. Data refreshes reach both sources identically
4. Teardown removes everything; restore rebuilds it
5. Cluster and point clicks

Run with: python -m pytest tests/test_layer_manager.py -v
"""

import pytest

from workforce_mapper.features import feature_coordinates, project
from workforce_mapper.layer_manager import (
    CLUSTER_COUNT_LAYER,
    CLUSTER_LAYER,
    HEATMAP_LAYER,
    HEATMAP_SOURCE,
    MARKER_SOURCE,
    POINT_LAYER,
    LayerManager,
    Visualization,
    heatmap_opacity_stops,
)
from workforce_mapper.records import FilterCriteria, filter_records
from workforce_mapper.state import Cell
from workforce_mapper.surface import ClusterNotFoundError, evaluate_expression

BRISBANE = (153.0251, -27.4698)


@pytest.fixture
def area_select():
    return Cell(False)


@pytest.fixture
def manager(surface, area_select):
    return LayerManager(surface, area_select=area_select)


@pytest.fixture
def loaded(manager, records):
    """Manager with data pushed and both visualizations enabled."""
    manager.refresh_data(project(records))
    manager.set_visualization_enabled(Visualization.MARKERS, True)
    manager.set_visualization_enabled(Visualization.HEATMAP, True)
    return manager


def _sydney_cluster(surface):
    clusters = surface.rendered_layer_features(CLUSTER_LAYER)
    return next(c for c in clusters if c['geometry']['coordinates'][0] > 151)


# ═══════════════════════════════════════════════════════════════════════════
# CREATION AND TOGGLING
# ═══════════════════════════════════════════════════════════════════════════


class TestToggling:
    """Test enable/disable and lazy creation."""

    def test_enable_before_data_is_pending(self, manager, surface, records):
        manager.set_visualization_enabled(Visualization.MARKERS, True)

        assert manager.is_pending(Visualization.MARKERS)
        assert surface.source_ids == []
        assert surface.layer_ids == []

        manager.refresh_data(project(records))

        assert not manager.is_pending(Visualization.MARKERS)
        assert manager.exists(Visualization.MARKERS)
        assert surface.layer_ids == [CLUSTER_LAYER, CLUSTER_COUNT_LAYER, POINT_LAYER]
        assert len(surface.get_source(MARKER_SOURCE).features) == len(records)

    def test_empty_data_keeps_visualization_pending(self, manager, surface):
        manager.set_visualization_enabled(Visualization.HEATMAP, True)
        manager.refresh_data(project([]))

        assert manager.is_pending(Visualization.HEATMAP)
        assert surface.get_source(HEATMAP_SOURCE) is None

    def test_disabled_visualization_is_not_created(self, manager, surface, records):
        manager.refresh_data(project(records))
        assert surface.source_ids == []

    def test_disable_only_hides(self, loaded, surface):
        loaded.set_visualization_enabled(Visualization.MARKERS, False)

        assert surface.get_source(MARKER_SOURCE) is not None
        assert not surface.is_layer_visible(POINT_LAYER)
        assert not surface.is_layer_visible(CLUSTER_LAYER)
        assert surface.is_layer_visible(HEATMAP_LAYER)

    def test_reenable_is_idempotent(self, loaded, surface):
        before_sources = list(surface.source_ids)
        before_layers = list(surface.layer_ids)

        for _ in range(3):
            loaded.set_visualization_enabled(Visualization.MARKERS, False)
            loaded.set_visualization_enabled(Visualization.MARKERS, True)
            loaded.set_visualization_enabled(Visualization.HEATMAP, True)

        assert surface.source_ids == before_sources
        assert surface.layer_ids == before_layers
        assert surface.listener_count('click', POINT_LAYER) == 1
        assert surface.listener_count('click', CLUSTER_LAYER) == 1
        assert surface.is_layer_visible(POINT_LAYER)

    def test_one_click_opens_one_popup_after_reenable(self, loaded, surface):
        loaded.set_visualization_enabled(Visualization.MARKERS, False)
        loaded.set_visualization_enabled(Visualization.MARKERS, True)

        surface.fire('click', BRISBANE)

        assert len(surface.popups) == 1
        assert "Eli Grant" in surface.popups[0].html
        assert surface.popups[0].lng_lat == BRISBANE

    def test_without_clustering(self, surface, records):
        manager = LayerManager(surface, enable_clustering=False)
        manager.refresh_data(project(records))
        manager.set_visualization_enabled(Visualization.MARKERS, True)

        assert surface.layer_ids == [POINT_LAYER]
        assert not surface.get_source(MARKER_SOURCE).cluster
        assert len(surface.rendered_layer_features(POINT_LAYER)) == len(records)

    def test_fade_zoom_must_be_below_max_zoom(self, surface):
        with pytest.raises(ValueError):
            LayerManager(surface, heatmap_max_zoom=12, heatmap_fade_zoom=12)


# ═══════════════════════════════════════════════════════════════════════════
# DATA REFRESH
# ═══════════════════════════════════════════════════════════════════════════


class TestRefresh:
    """Test feature updates."""

    def test_filter_change_updates_both_sources(self, loaded, surface, records):
        criteria = FilterCriteria.from_selections(location=["VIC"])
        filtered = project(filter_records(records, criteria))

        loaded.refresh_data(filtered)

        markers = surface.get_source(MARKER_SOURCE).data
        heat = surface.get_source(HEATMAP_SOURCE).data
        assert markers == heat == filtered
        assert len(markers['features']) == 2

    def test_refresh_to_empty_keeps_layers(self, loaded, surface):
        loaded.refresh_data(project([]))

        assert loaded.exists(Visualization.MARKERS)
        assert surface.get_source(MARKER_SOURCE).features == []
        assert surface.rendered_layer_features(POINT_LAYER) == []

    def test_none_is_treated_as_empty(self, loaded, surface):
        loaded.refresh_data(None)
        assert surface.get_source(HEATMAP_SOURCE).features == []


# ═══════════════════════════════════════════════════════════════════════════
# TEARDOWN
# ═══════════════════════════════════════════════════════════════════════════


class TestTeardown:
    """Test teardown and restore."""

    def test_teardown_removes_everything(self, loaded, surface):
        loaded.teardown()

        assert surface.layer_ids == []
        assert surface.source_ids == []
        assert surface.listener_count('click', POINT_LAYER) == 0
        assert surface.listener_count('click', CLUSTER_LAYER) == 0
        assert not loaded.handlers_bound

    def test_teardown_twice_is_safe(self, loaded, surface):
        loaded.teardown()
        loaded.teardown()
        assert surface.layer_ids == []

    def test_restore_rebuilds_with_single_handlers(self, loaded, surface):
        loaded.teardown()
        loaded.restore()

        assert loaded.exists(Visualization.MARKERS)
        assert loaded.exists(Visualization.HEATMAP)
        assert surface.listener_count('click', POINT_LAYER) == 1

        surface.fire('click', BRISBANE)
        assert len(surface.popups) == 1


# ═══════════════════════════════════════════════════════════════════════════
# INTERACTION
# ═══════════════════════════════════════════════════════════════════════════


class TestInteraction:
    """Test cluster and point click handlers."""

    def test_cluster_click_eases_to_expansion_zoom(self, loaded, surface):
        cluster = _sydney_cluster(surface)
        source = surface.get_source(MARKER_SOURCE)
        expected = source.get_cluster_expansion_zoom(cluster['properties']['cluster_id'])

        surface.fire('click', feature_coordinates(cluster))

        assert surface.zoom == expected
        assert surface.zoom > 4
        assert surface.center == feature_coordinates(cluster)
        assert surface.popups == []

    def test_unknown_cluster_is_ignored(self, loaded, surface, monkeypatch):
        cluster = _sydney_cluster(surface)
        source = surface.get_source(MARKER_SOURCE)

        def missing(cluster_id):
            raise ClusterNotFoundError("gone")

        monkeypatch.setattr(source, 'get_cluster_expansion_zoom', missing)

        surface.fire('click', feature_coordinates(cluster))

        assert surface.zoom == 4
        assert surface.center == (0.0, 0.0)

    def test_clicks_ignored_during_area_select(self, loaded, surface, area_select):
        area_select.set(True)

        surface.fire('click', BRISBANE)
        surface.fire('click', feature_coordinates(_sydney_cluster(surface)))

        assert surface.popups == []
        assert surface.zoom == 4

    def test_pointer_cursor(self, loaded, surface, area_select):
        surface.fire('mouseenter', BRISBANE)
        assert surface.cursor == 'pointer'
        surface.fire('mouseleave', BRISBANE)
        assert surface.cursor == ''

        area_select.set(True)
        surface.set_cursor('crosshair')
        surface.fire('mouseenter', BRISBANE)
        assert surface.cursor == 'crosshair'


# ═══════════════════════════════════════════════════════════════════════════
# HEATMAP
# ═══════════════════════════════════════════════════════════════════════════


class TestHeatmap:
    """Test heatmap layer styling."""

    def test_opacity_stops_end_at_zero(self):
        stops = heatmap_opacity_stops(0.7, 13)
        assert stops[:2] == [7, 0.7]
        assert stops[-2:] == [13, 0]

    def test_opacity_fades_with_zoom(self, loaded, surface):
        layer = surface.get_layer(HEATMAP_LAYER)
        opacity = layer['paint']['heatmap-opacity']

        assert layer['maxzoom'] == loaded.heatmap_max_zoom
        assert evaluate_expression(opacity, 5) == pytest.approx(loaded.heatmap_opacity)
        assert evaluate_expression(opacity, loaded.heatmap_fade_zoom) == 0

    def test_heatmap_hidden_above_max_zoom(self, loaded, surface):
        surface.jump_to(zoom=loaded.heatmap_max_zoom)
        assert not surface.is_layer_rendered(HEATMAP_LAYER)
