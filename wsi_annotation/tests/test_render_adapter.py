"""
Tests for the render adapter.
"""

from unittest.mock import Mock

import pytest

from wsi_annotation.core.annotation import Bounds
from wsi_annotation.core.annotation.cache import DerivedFlag
from wsi_annotation.interfaces import RenderAdapter, RenderConfig
from wsi_annotation.interfaces.render_adapter import highlight_color

VIEWPORT = Bounds(-5.0, -5.0, 50.0, 50.0)


class TestDrawItems:
    def test_viewport_culling(self, populated_set):
        adapter = RenderAdapter(populated_set)
        items = adapter.draw_items(VIEWPORT)
        assert [item.annotation_index for item in items] == [0, 2]

    def test_hidden_groups_are_not_drawn(self, populated_set):
        populated_set.stored_groups[1].hidden = True
        items = RenderAdapter(populated_set).draw_items(Bounds(-500, -500, 500, 500))
        assert [item.annotation_index for item in items] == [1, 2]

    def test_item_contents(self, populated_set):
        populated_set.select_annotation(0)
        populated_set.is_edit_mode = True
        square, point = RenderAdapter(populated_set).draw_items(VIEWPORT)
        assert square.selected
        assert square.color == (255, 51, 51)
        assert square.thickness == RenderConfig().selected_line_thickness
        assert square.triangles.shape == (2, 3, 2)
        assert square.closed
        assert square.draw_nodes
        assert not point.selected
        assert point.triangles is None
        assert not point.closed
        assert not point.draw_nodes

    def test_highlight_color(self):
        assert highlight_color((0, 0, 0)) == (51, 51, 51)
        assert highlight_color((255, 255, 255)) == (255, 255, 255)


class TestTessellationLimits:
    def test_large_shapes_keep_stale_fill_while_dragging(self, populated_set):
        adapter = RenderAdapter(populated_set, RenderConfig(large_polygon_threshold=4))
        first = adapter.draw_items(VIEWPORT)[0].triangles
        annotation = populated_set.get_active(0)
        annotation.move_coordinate(2, [20.0, 20.0])

        stale = adapter.draw_items(VIEWPORT, is_dragging=True)[0].triangles
        assert stale is first
        assert not annotation.cache.is_valid(DerivedFlag.TESSELLATION)

        fresh = adapter.draw_items(VIEWPORT)[0].triangles
        assert fresh is not first
        assert annotation.cache.is_valid(DerivedFlag.TESSELLATION)

    def test_budget_per_frame(self, annotation_set, add_polygon, square_coords):
        add_polygon(annotation_set, square_coords)
        add_polygon(annotation_set, square_coords + 15.0)
        adapter = RenderAdapter(annotation_set, RenderConfig(max_tessellations_per_frame=1))
        adapter.draw_items(VIEWPORT)
        for _, annotation in annotation_set.iter_active():
            annotation.invalidate_geometry()

        adapter.draw_items(VIEWPORT)
        first, second = (a for _, a in annotation_set.iter_active())
        assert first.cache.is_valid(DerivedFlag.TESSELLATION)
        assert not second.cache.is_valid(DerivedFlag.TESSELLATION)


class TestRedrawRequests:
    def test_update_callback(self, populated_set):
        callback = Mock()
        adapter = RenderAdapter(populated_set, update_callback=callback)
        adapter.draw_items(VIEWPORT)
        assert not adapter.needs_redraw

        populated_set.notify_modified()
        assert adapter.needs_redraw
        callback.assert_called_once()

    @pytest.mark.parametrize("action", ["select", "reset"])
    def test_other_changes_request_redraw(self, populated_set, action):
        adapter = RenderAdapter(populated_set)
        adapter.draw_items(VIEWPORT)
        if action == "select":
            populated_set.select_annotation(1)
        else:
            populated_set.unload_and_reinit()
        assert adapter.needs_redraw
