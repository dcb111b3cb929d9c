"""
Tests for EditSession: creation, coordinate editing, splitting and clicks.
"""

from unittest.mock import Mock

import numpy as np
import pytest

from wsi_annotation.core.annotation import (
    AnnotationType,
    EditSession,
    EventType,
    infer_annotation_type,
)
from wsi_annotation.core.annotation.geometry import polygon_area


@pytest.fixture
def square_session(annotation_set, add_polygon, square_coords):
    add_polygon(annotation_set, square_coords)
    annotation_set.modified = False
    return EditSession(annotation_set)


class TestTypeInference:
    @pytest.mark.parametrize(
        "start,count,expected",
        [
            (AnnotationType.RECTANGLE, 4, AnnotationType.RECTANGLE),
            (AnnotationType.RECTANGLE, 5, AnnotationType.POLYGON),
            (AnnotationType.RECTANGLE, 3, AnnotationType.POLYGON),
            (AnnotationType.POLYGON, 1, AnnotationType.POINT),
            (AnnotationType.POLYGON, 2, AnnotationType.LINE),
            (AnnotationType.POINT, 3, AnnotationType.POLYGON),
            (AnnotationType.LINE, 1, AnnotationType.POINT),
            (AnnotationType.SPLINE, 5, AnnotationType.POLYGON),
            (AnnotationType.ELLIPSE, 0, AnnotationType.ELLIPSE),
            (AnnotationType.TEXT, 1, AnnotationType.TEXT),
        ],
    )
    def test_rule(self, start, count, expected):
        assert infer_annotation_type(start, count) == expected

    @pytest.mark.parametrize("start", list(AnnotationType))
    @pytest.mark.parametrize("count", [0, 1, 2, 3, 4, 7])
    def test_idempotent(self, start, count):
        once = infer_annotation_type(start, count)
        assert infer_annotation_type(once, count) == once


class TestCreation:
    def test_create_point(self, session, annotation_set):
        listener = Mock()
        annotation_set.events.on(EventType.ANNOTATION_CREATED, listener)
        index = session.create_point([3.0, 4.0])
        annotation = annotation_set.get_active(index)
        assert annotation.type == AnnotationType.POINT
        assert annotation.coordinates.tolist() == [[3.0, 4.0]]
        assert annotation.selected
        assert annotation_set.modified
        listener.assert_called_once()

    def test_create_selects_only_new_annotation(self, session, annotation_set):
        first = session.create_point([0.0, 0.0])
        second = session.create_point([5.0, 5.0])
        assert annotation_set.selected_indices() == [second]
        assert first != second

    def test_create_line_and_drag(self, session, annotation_set):
        index = session.create_line([0.0, 0.0])
        assert annotation_set.selected_coordinate_index == 1
        assert session.drag_selected_coordinate([10.0, 0.0])
        annotation = annotation_set.get_active(index)
        assert annotation.coordinates.tolist() == [[0.0, 0.0], [10.0, 0.0]]
        assert annotation.length == pytest.approx(10.0)

    def test_create_rectangle(self, session, annotation_set):
        index = session.create_rectangle([0.0, 0.0])
        session.drag_rectangle([10.0, 5.0])
        session.finish_shape()
        annotation = annotation_set.get_active(index)
        assert annotation.type == AnnotationType.RECTANGLE
        assert annotation.coordinates.tolist() == [
            [0.0, 0.0],
            [10.0, 0.0],
            [10.0, 5.0],
            [0.0, 5.0],
        ]
        assert annotation.area == pytest.approx(50.0)
        assert annotation_set.editing_annotation_index == -1

    def test_rectangle_corner_drag_stays_axis_aligned(self, session, annotation_set):
        index = session.create_rectangle([0.0, 0.0])
        session.drag_rectangle([10.0, 5.0])
        session.finish_shape()
        annotation_set.selected_coordinate_annotation_index = index
        annotation_set.selected_coordinate_index = 1
        session.drag_selected_coordinate([12.0, -2.0])
        assert annotation_set.get_active(index).coordinates.tolist() == [
            [0.0, -2.0],
            [12.0, -2.0],
            [12.0, 5.0],
            [0.0, 5.0],
        ]

    def test_create_ellipse(self, session, annotation_set):
        index = session.create_ellipse([0.0, 0.0])
        session.drag_ellipse([20.0, 10.0])
        session.finish_shape()
        annotation = annotation_set.get_active(index)
        assert annotation.coordinate_count == 0
        assert annotation.bounds.max_x == pytest.approx(20.0)
        assert annotation.bounds.max_y == pytest.approx(10.0)

    def test_auto_assign_last_group(self, session, annotation_set, config):
        config.auto_assign_last_group = True
        group = annotation_set.find_or_add_group("Tumor")
        annotation_set.last_assigned_group = group
        annotation_set.last_assigned_group_is_valid = True
        index = session.create_point([0.0, 0.0])
        assert annotation_set.get_active(index).group_id == group


class TestFreeform:
    def test_samples_and_closing(self, session, annotation_set):
        index = session.create_freeform([0.0, 0.0])
        annotation = annotation_set.get_active(index)
        assert annotation.is_open

        assert not session.freeform_drag([3.0, 0.0])
        assert annotation.coordinate_count == 1
        assert not session.freeform_drag([20.0, 0.0])
        assert not session.freeform_drag([20.0, 20.0])
        assert not session.freeform_drag([0.0, 20.0])
        assert annotation.coordinate_count == 4

        # back near the start with enough coordinates
        assert session.freeform_drag([0.0, 2.0])
        assert not annotation.is_open
        assert annotation.type == AnnotationType.POLYGON
        assert annotation.coordinate_count == 4
        assert annotation_set.editing_annotation_index == -1
        assert annotation.area == pytest.approx(400.0)

    def test_no_close_with_too_few_coordinates(self, session, annotation_set):
        index = session.create_freeform([0.0, 0.0])
        assert not session.freeform_click([20.0, 0.0])
        assert not session.freeform_click([1.0, 1.0])
        assert annotation_set.get_active(index).coordinate_count == 3
        assert annotation_set.get_active(index).is_open

    def test_click_closes(self, session, annotation_set):
        index = session.create_freeform([0.0, 0.0])
        session.freeform_click([20.0, 0.0])
        session.freeform_click([20.0, 20.0])
        assert session.freeform_click([1.0, 1.0])
        assert not annotation_set.get_active(index).is_open

    def test_escape_aborts_small_shape(self, session, annotation_set):
        session.create_freeform([0.0, 0.0])
        session.freeform_click([20.0, 0.0])
        assert not session.freeform_escape()
        assert annotation_set.active_annotation_count == 0
        assert annotation_set.editing_annotation_index == -1

    def test_escape_keeps_polygon(self, session, annotation_set):
        index = session.create_freeform([0.0, 0.0])
        session.freeform_click([20.0, 0.0])
        session.freeform_click([20.0, 20.0])
        assert session.freeform_escape()
        annotation = annotation_set.get_active(index)
        assert not annotation.is_open
        assert annotation.coordinate_count == 3


class TestCoordinateEditing:
    def test_insert_coordinate(self, square_session):
        s = square_session.annotation_set
        square_session.insert_coordinate(0, 3, [5.0, 12.0])
        annotation = s.get_active(0)
        assert annotation.coordinate_count == 5
        assert annotation.coordinates[3].tolist() == [5.0, 12.0]
        assert annotation.area == pytest.approx(110.0)
        assert s.modified

    def test_insert_into_rectangle_makes_polygon(self, session, annotation_set):
        index = session.create_rectangle([0.0, 0.0])
        session.drag_rectangle([10.0, 10.0])
        session.insert_coordinate(index, 1, [5.0, -1.0])
        assert annotation_set.get_active(index).type == AnnotationType.POLYGON

    def test_insert_out_of_range(self, square_session):
        with pytest.raises(IndexError):
            square_session.insert_coordinate(0, 6, [0.0, 0.0])
        with pytest.raises(IndexError):
            square_session.insert_coordinate(3, 0, [0.0, 0.0])

    def test_delete_coordinate(self, square_session):
        s = square_session.annotation_set
        s.selected_coordinate_annotation_index = 0
        s.selected_coordinate_index = 2
        assert not square_session.delete_coordinate(0, 2)
        assert s.active_annotation_count == 1
        assert s.get_active(0).coordinate_count == 3
        assert s.selected_coordinate_index == -1

    def test_delete_last_coordinate_deletes_annotation(self, session, annotation_set):
        session.create_point([0.0, 0.0])
        session.create_point([1.0, 1.0])
        assert session.delete_coordinate(0, 0)
        assert annotation_set.active_annotation_count == 1
        assert annotation_set.get_active(0).coordinates.tolist() == [[1.0, 1.0]]

    def test_delete_reinfers_type(self, session, annotation_set):
        index = session.create_line([0.0, 0.0])
        session.drag_selected_coordinate([5.0, 0.0])
        session.delete_coordinate(index, 1)
        assert annotation_set.get_active(index).type == AnnotationType.POINT

    def test_delete_out_of_range(self, square_session):
        with pytest.raises(IndexError):
            square_session.delete_coordinate(0, 4)

    def test_move_coordinate_emits(self, square_session):
        listener = Mock()
        square_session.events.on(EventType.COORDINATE_MOVED, listener)
        square_session.move_coordinate(0, 0, [-1.0, -1.0])
        listener.assert_called_once()
        assert square_session.annotation_set.get_active(0).bounds.min_x == -1.0


class TestSplit:
    def test_split_hexagon(self, session, annotation_set, add_polygon, hexagon_coords):
        tumor = annotation_set.find_or_add_group("Tumor")
        index = add_polygon(annotation_set, hexagon_coords, group_id=tumor, name="hex")
        annotation_set.get_active(index).set_feature(2, 1.0)

        new_index = session.split_annotation(index, 3, 0)
        assert new_index == 1
        original = annotation_set.get_active(index)
        piece = annotation_set.get_active(new_index)
        assert original.coordinate_count + piece.coordinate_count == 6 + 2
        np.testing.assert_array_equal(original.coordinates, hexagon_coords[0:4])
        np.testing.assert_array_equal(
            piece.coordinates, hexagon_coords[[0, 3, 4, 5]]
        )
        assert piece.group_id == tumor
        assert piece.name == "hex"
        assert piece.features[2] == 1.0
        assert original.area + piece.area == pytest.approx(polygon_area(hexagon_coords))

    @pytest.mark.parametrize("a,b", [(1, 3), (0, 2)])
    def test_split_square(self, square_session, a, b):
        s = square_session.annotation_set
        new_index = square_session.split_annotation(0, a, b)
        assert s.active_annotation_count == 2
        assert s.get_active(0).coordinate_count == 3
        assert s.get_active(new_index).coordinate_count == 3
        assert s.get_active(0).type == AnnotationType.POLYGON

    @pytest.mark.parametrize("a,b", [(1, 1), (1, 2), (2, 1), (0, 3), (3, 0)])
    def test_adjacent_indices_cancel(self, square_session, a, b):
        s = square_session.annotation_set
        s.is_split_mode = True
        assert square_session.split_annotation(0, a, b) is None
        assert not s.is_split_mode
        assert s.active_annotation_count == 1
        assert s.get_active(0).coordinate_count == 4

    def test_split_out_of_range(self, square_session):
        with pytest.raises(IndexError):
            square_session.split_annotation(0, 0, 9)


class TestAttributes:
    def test_set_group(self, square_session):
        s = square_session.annotation_set
        group = s.find_or_add_group("Stroma")
        square_session.set_group(0, group)
        assert s.get_active(0).group_id == group
        assert s.last_assigned_group == group
        with pytest.raises(ValueError):
            square_session.set_group(0, 42)

    def test_feature_restricted_to_group(self, square_session):
        s = square_session.annotation_set
        tumor = s.find_or_add_group("Tumor")
        feature_index = s.add_feature("grade")
        feature = s.get_active_feature(feature_index)
        feature.restrict_to_group = True
        feature.group_id = tumor

        with pytest.raises(ValueError):
            square_session.set_feature(0, feature_index, 1.0)
        square_session.set_group(0, tumor)
        square_session.set_feature(0, feature_index, 1.0)
        assert s.get_active(0).features[feature.id] == 1.0


class TestPointerInteraction:
    def test_toggle_edit_mode(self, square_session):
        s = square_session.annotation_set
        assert square_session.toggle_edit_mode()
        s.is_insert_coordinate_mode = True
        assert not square_session.toggle_edit_mode()
        assert not s.is_insert_coordinate_mode

    def test_hover(self, square_session):
        s = square_session.annotation_set
        square_session.hover([9.0, 1.0])
        assert s.hovered_annotation == 0
        assert s.hovered_coordinate == 1
        square_session.hover([30.0, 5.0])
        assert s.hovered_annotation == -1

    def test_click_selects_and_unselects(self, square_session):
        s = square_session.annotation_set
        assert square_session.click([5.0, 0.5])
        assert s.selected_indices() == [0]
        assert square_session.click([5.0, 0.5])
        assert s.selected_indices() == []

    def test_click_on_nothing_deselects(self, populated_set):
        session = EditSession(populated_set)
        populated_set.select_annotation(1)
        assert not session.click([500.0, 500.0])
        assert populated_set.selection_count == 0

    def test_additive_click(self, populated_set):
        session = EditSession(populated_set)
        session.click([5.0, 0.5])
        session.click([105.0, 0.5], additive=True)
        assert populated_set.selected_indices() == [0, 1]

    def test_click_node_in_edit_mode(self, square_session):
        s = square_session.annotation_set
        s.select_annotation(0)
        square_session.toggle_edit_mode()
        assert square_session.click([10.5, 0.5])
        assert s.selected_coordinate_annotation_index == 0
        assert s.selected_coordinate_index == 1
        assert s.get_active(0).selected

    def test_click_inserts_in_insert_mode(self, square_session):
        s = square_session.annotation_set
        s.select_annotation(0)
        square_session.toggle_edit_mode()
        square_session.set_insert_mode(True)
        assert square_session.click([5.0, 0.5])
        annotation = s.get_active(0)
        assert annotation.coordinate_count == 5
        assert annotation.coordinates[1].tolist() == [5.0, 0.0]

    def test_click_completes_split(self, square_session):
        s = square_session.annotation_set
        s.select_annotation(0)
        square_session.toggle_edit_mode()
        square_session.begin_split(0, 0)
        assert s.is_split_mode
        square_session.click([10.5, 10.5])
        assert not s.is_split_mode
        assert s.active_annotation_count == 2

    def test_click_elsewhere_cancels_split(self, square_session):
        s = square_session.annotation_set
        square_session.begin_split(0, 0)
        square_session.click([500.0, 500.0])
        assert not s.is_split_mode
        assert s.active_annotation_count == 1

    def test_screen_point_width_scales_tolerances(self, square_session):
        s = square_session.annotation_set
        square_session.hover([5.0, -20.0])
        assert s.hovered_annotation == -1
        square_session.screen_point_width = 4.0
        square_session.hover([5.0, -20.0])
        assert s.hovered_annotation == 0
