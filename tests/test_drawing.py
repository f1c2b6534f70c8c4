"""
Unit tests for the area selection state machine.

Tests:
1. Too few vertices never complete a polygon
2. One completed gesture delivers exactly one selection
3. Cancelling mid-gesture detaches listeners and clears feedback
4. Drawing feedback expires after the grace period
5. A stale expiry leaves a newer gesture alone

Run with: python -m pytest tests/test_drawing.py -v
"""

import pytest

from workforce_mapper.drawing import (
    LINE_LAYER,
    POINTS_LAYER,
    POLYGON_FILL_LAYER,
    POLYGON_OUTLINE_LAYER,
    AreaSelector,
    DrawingState,
)


@pytest.fixture
def completed():
    return []


@pytest.fixture
def selector(surface, completed):
    return AreaSelector(surface, on_complete=completed.append, grace_period_ms=100)


def _click_square(surface):
    for vertex in [(0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0)]:
        surface.fire('click', vertex)


class TestDrawing:
    """Test vertex collection and drawing feedback."""

    def test_activate_starts_drawing(self, selector, surface):
        selector.set_active(True)

        assert selector.state is DrawingState.DRAWING
        assert selector.listening
        assert surface.cursor == 'crosshair'
        assert surface.listener_count('click') == 1
        assert surface.listener_count('dblclick') == 1

    def test_clicks_are_ignored_when_idle(self, selector, surface):
        surface.fire('click', (1.0, 1.0))
        assert selector.vertices == []
        assert surface.layer_ids == []

    def test_clicks_add_vertices_and_feedback(self, selector, surface):
        selector.set_active(True)

        surface.fire('click', (0.0, 0.0))
        assert selector.vertices == [(0.0, 0.0)]
        assert surface.layer_ids == [POINTS_LAYER]

        surface.fire('click', (2.0, 0.0))
        assert surface.layer_ids == [POINTS_LAYER, LINE_LAYER]
        assert len(surface.get_source('drawing-points').features) == 2

    def test_repeated_activate_is_idempotent(self, selector, surface):
        selector.set_active(True)
        surface.fire('click', (0.0, 0.0))
        selector.set_active(True)

        assert selector.vertices == [(0.0, 0.0)]
        assert surface.listener_count('click') == 1


class TestCompletion:
    """Test polygon completion."""

    def test_two_vertices_do_not_complete(self, selector, surface, completed):
        selector.set_active(True)
        surface.fire('click', (0.0, 0.0))
        surface.fire('click', (2.0, 0.0))

        event = surface.fire('dblclick', (2.0, 0.0))

        assert event.default_prevented
        assert selector.state is DrawingState.DRAWING
        assert completed == []

    def test_three_or_more_vertices_complete_once(self, selector, surface, completed):
        selector.set_active(True)
        _click_square(surface)

        surface.fire('dblclick', (0.0, 2.0))
        surface.fire('dblclick', (0.0, 2.0))

        assert len(completed) == 1
        ring = completed[0]
        assert ring[0] == ring[-1]
        assert len(ring) == 5
        assert selector.state is DrawingState.IDLE
        assert selector.vertices == []

    def test_completion_detaches_listeners(self, selector, surface):
        selector.set_active(True)
        _click_square(surface)
        surface.fire('dblclick', (0.0, 2.0))

        assert not selector.listening
        assert surface.listener_count('click') == 0
        assert surface.listener_count('dblclick') == 0
        assert surface.cursor == ''

    def test_polygon_shown_until_grace_period_ends(self, selector, surface):
        selector.set_active(True)
        _click_square(surface)
        surface.fire('dblclick', (0.0, 2.0))

        assert POLYGON_FILL_LAYER in surface.layer_ids
        assert POLYGON_OUTLINE_LAYER in surface.layer_ids

        surface.advance(99)
        assert POLYGON_FILL_LAYER in surface.layer_ids

        surface.advance(1)
        assert surface.layer_ids == []
        assert surface.source_ids == []

    def test_callback_error_still_resets_state(self, surface):
        def failing(ring):
            raise RuntimeError("boom")

        selector = AreaSelector(surface, on_complete=failing)
        selector.set_active(True)
        _click_square(surface)

        with pytest.raises(RuntimeError):
            surface.fire('dblclick', (0.0, 2.0))

        assert selector.state is DrawingState.IDLE


class TestCancel:
    """Test cancelling a gesture."""

    def test_cancel_mid_gesture(self, selector, surface, completed):
        selector.set_active(True)
        surface.fire('click', (0.0, 0.0))
        surface.fire('click', (2.0, 0.0))

        selector.set_active(False)

        assert selector.state is DrawingState.IDLE
        assert selector.vertices == []
        assert surface.listener_count('click') == 0
        assert surface.layer_ids == []
        assert surface.cursor == ''

        # Later clicks reach nothing
        surface.fire('click', (2.0, 2.0))
        surface.fire('dblclick', (2.0, 2.0))
        assert completed == []
        assert selector.vertices == []

    def test_deactivate_when_idle_is_noop(self, selector, surface):
        selector.set_active(False)
        assert selector.state is DrawingState.IDLE
        assert surface.cursor == ''

    def test_stale_expiry_leaves_new_gesture_alone(self, selector, surface):
        selector.set_active(True)
        _click_square(surface)
        surface.fire('dblclick', (0.0, 2.0))

        # A new gesture starts before the old feedback expires
        selector.set_active(True)
        surface.fire('click', (5.0, 5.0))
        assert surface.layer_ids == [POINTS_LAYER]

        surface.run_timers()

        assert surface.layer_ids == [POINTS_LAYER]
        assert selector.vertices == [(5.0, 5.0)]
        assert selector.state is DrawingState.DRAWING
