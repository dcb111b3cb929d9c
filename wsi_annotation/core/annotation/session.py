"""
Annotation editing session.

Core logic for creating and modifying annotations interactively.
UI-agnostic - input dispatch belongs to the caller, which translates raw
pointer events into the operations below.
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np

from .events import AnnotationEvent, EventType
from .geometry import as_point
from .hit_test import HitResult, hit_test
from .state import (
    RESERVED_GROUP_INDEX,
    Annotation,
    AnnotationSet,
    AnnotationType,
)

logger = logging.getLogger(__name__)

# Types whose kind follows the number of coordinates
_COUNT_DRIVEN_TYPES = (
    AnnotationType.POINT,
    AnnotationType.LINE,
    AnnotationType.POLYGON,
    AnnotationType.SPLINE,
)


def infer_annotation_type(
    annotation_type: AnnotationType, coordinate_count: int
) -> AnnotationType:
    """
    Type an annotation should have after its coordinate count changed.

    Args:
        annotation_type: Current type
        coordinate_count: New number of coordinates

    Returns:
        The inferred type (unchanged for types the rule does not cover)
    """
    annotation_type = AnnotationType(annotation_type)
    if annotation_type == AnnotationType.RECTANGLE:
        return annotation_type if coordinate_count == 4 else AnnotationType.POLYGON
    if annotation_type in _COUNT_DRIVEN_TYPES:
        if coordinate_count == 1:
            return AnnotationType.POINT
        if coordinate_count == 2:
            return AnnotationType.LINE
        if coordinate_count >= 3:
            return AnnotationType.POLYGON
    return annotation_type


def infer_type(annotation: Annotation) -> AnnotationType:
    """Apply type inference to an annotation in place."""
    inferred = infer_annotation_type(annotation.type, annotation.coordinate_count)
    if inferred != annotation.type:
        annotation.type = inferred
        annotation.invalidate_geometry()
    return inferred


class EditSession:
    """
    Edits an AnnotationSet in response to user actions.

    This class handles:
    - Shape creation (point, line, rectangle, ellipse, freeform)
    - Coordinate insertion, deletion and dragging
    - Splitting an annotation in two
    - Hover and click resolution through the hit-test engine

    Distances from the configuration are in screen pixels and are scaled
    by ``screen_point_width`` (world units per screen pixel), which the
    caller updates when the zoom level changes.
    """

    def __init__(self, annotation_set: AnnotationSet, config=None):
        """
        Initialize edit session.

        Args:
            annotation_set: Set to edit
            config: EasyDict configuration, defaults to the set's own
        """
        self.annotation_set = annotation_set
        self.config = config if config is not None else annotation_set.config
        self.screen_point_width = 1.0

        self.last_hit: Optional[HitResult] = None
        self.insert_candidate: Optional[Tuple[int, int, np.ndarray]] = None

        self._freeform_last_sample: Optional[np.ndarray] = None
        self._freeform_distance = 0.0
        self._split_annotation_index = -1
        self._split_coordinate_index = -1

    @property
    def events(self):
        return self.annotation_set.events

    def _scaled(self, screen_distance: float) -> float:
        return screen_distance * self.screen_point_width

    def _emit(self, event_type: EventType, **data):
        self.events.emit(AnnotationEvent(event_type, data))

    # Creation

    def _create(self, annotation_type: AnnotationType, coords, **kwargs) -> int:
        s = self.annotation_set
        annotation = Annotation(type=annotation_type, coordinates=coords, **kwargs)
        if self.config.auto_assign_last_group and s.last_assigned_group_is_valid:
            annotation.group_id = s.last_assigned_group
        index = s.append_annotation(annotation)
        s.select_annotation(index)
        s.deselect_coordinates()
        self._emit(
            EventType.ANNOTATION_CREATED,
            annotation_index=index,
            type=annotation.type.name,
        )
        s.notify_modified()
        return index

    def create_point(self, position) -> int:
        return self._create(AnnotationType.POINT, [as_point(position)])

    def create_line(self, position) -> int:
        """Start a line; its second coordinate follows the pointer."""
        position = as_point(position)
        index = self._create(AnnotationType.LINE, [position, position])
        s = self.annotation_set
        s.editing_annotation_index = index
        s.selected_coordinate_annotation_index = index
        s.selected_coordinate_index = 1
        return index

    def create_rectangle(self, position) -> int:
        """Start a rectangle; the opposite corner (index 2) follows the pointer."""
        position = as_point(position)
        index = self._create(AnnotationType.RECTANGLE, [position] * 4)
        s = self.annotation_set
        s.editing_annotation_index = index
        s.selected_coordinate_annotation_index = index
        s.selected_coordinate_index = 2
        return index

    def create_ellipse(self, position) -> int:
        position = as_point(position)
        index = self._create(
            AnnotationType.ELLIPSE, [], p0=position.copy(), p1=position.copy()
        )
        self.annotation_set.editing_annotation_index = index
        return index

    def create_freeform(self, position) -> int:
        """Start an open polygon that grows with drag samples and clicks."""
        position = as_point(position)
        index = self._create(AnnotationType.POLYGON, [position], is_open=True)
        self.annotation_set.editing_annotation_index = index
        self._freeform_last_sample = position
        self._freeform_distance = 0.0
        return index

    def _editing_annotation(self) -> Optional[Annotation]:
        index = self.annotation_set.editing_annotation_index
        if index < 0:
            return None
        return self.annotation_set.get_active(index)

    def drag_rectangle(self, position):
        """Move the opposite corner of the rectangle being created."""
        annotation = self._editing_annotation()
        if annotation is None or annotation.type != AnnotationType.RECTANGLE:
            return
        self._move_rectangle_corner(annotation, 2, position)
        self.annotation_set.notify_modified()

    def drag_ellipse(self, position):
        annotation = self._editing_annotation()
        if annotation is None or annotation.type != AnnotationType.ELLIPSE:
            return
        annotation.p1 = as_point(position)
        annotation.invalidate_geometry()
        self.annotation_set.notify_modified()

    def finish_shape(self):
        """Stop editing the shape that was just created."""
        s = self.annotation_set
        index = s.editing_annotation_index
        if index < 0:
            return
        annotation = s.get_active(index)
        if annotation.is_open:
            # freeform shapes finish through the close rules
            return
        s.editing_annotation_index = -1
        s.deselect_coordinates()
        self._emit(EventType.ANNOTATION_FINISHED, annotation_index=index)

    # Freeform drawing

    def _open_freeform(self) -> Optional[Annotation]:
        annotation = self._editing_annotation()
        if annotation is None or not annotation.is_open:
            return None
        return annotation

    def _append_freeform_coordinate(self, annotation: Annotation, position):
        annotation.insert_coordinate(annotation.coordinate_count, position)
        self._freeform_distance = 0.0
        self._emit(
            EventType.COORDINATE_INSERTED,
            annotation_index=self.annotation_set.editing_annotation_index,
            coordinate_index=annotation.coordinate_count - 1,
        )
        self.annotation_set.notify_modified()

    def _try_close_freeform(self, annotation: Annotation, position) -> bool:
        if annotation.coordinate_count < 3:
            return False
        distance = float(np.hypot(*(as_point(position) - annotation.coordinates[0])))
        if distance > self._scaled(self.config.hover_distance):
            return False
        self._close_freeform(annotation)
        return True

    def _close_freeform(self, annotation: Annotation):
        s = self.annotation_set
        index = s.editing_annotation_index
        annotation.is_open = False
        annotation.type = AnnotationType.POLYGON
        infer_type(annotation)
        annotation.invalidate_geometry()
        s.editing_annotation_index = -1
        self._freeform_last_sample = None
        self._emit(EventType.ANNOTATION_FINISHED, annotation_index=index)
        s.notify_modified()

    def freeform_drag(self, position) -> bool:
        """
        Feed a drag sample to the freeform shape being drawn.

        Returns:
            True if the sample closed the shape
        """
        annotation = self._open_freeform()
        if annotation is None:
            return False
        position = as_point(position)
        if self._freeform_last_sample is not None:
            self._freeform_distance += float(
                np.hypot(*(position - self._freeform_last_sample))
            )
        self._freeform_last_sample = position

        if self._try_close_freeform(annotation, position):
            return True
        if self._freeform_distance > self._scaled(self.config.freeform_spacing):
            self._append_freeform_coordinate(annotation, position)
        return False

    def freeform_click(self, position) -> bool:
        """
        Add a coordinate to the freeform shape at an explicit click.

        Returns:
            True if the click closed the shape
        """
        annotation = self._open_freeform()
        if annotation is None:
            return False
        position = as_point(position)
        self._freeform_last_sample = position
        if self._try_close_freeform(annotation, position):
            return True
        self._append_freeform_coordinate(annotation, position)
        return False

    def freeform_escape(self) -> bool:
        """
        Stop drawing the freeform shape.

        Returns:
            True if the shape was kept, False if it was discarded
        """
        annotation = self._open_freeform()
        if annotation is None:
            return False
        if annotation.coordinate_count >= 3:
            self._close_freeform(annotation)
            return True
        index = self.annotation_set.editing_annotation_index
        logger.debug(
            f"Discarding freeform annotation with {annotation.coordinate_count} coordinates"
        )
        self.annotation_set.delete_annotation(index)
        self._freeform_last_sample = None
        return False

    # Coordinate editing

    def insert_coordinate(self, annotation_index: int, index: int, point):
        """
        Insert a coordinate.

        Args:
            annotation_index: Active index of the annotation
            index: Position in [0, coordinate_count]
            point: New coordinate in world units

        Raises:
            IndexError: If either index is out of range
        """
        s = self.annotation_set
        annotation = s.get_active(annotation_index)
        annotation.insert_coordinate(index, point)
        infer_type(annotation)
        s.selected_coordinate_annotation_index = annotation_index
        s.selected_coordinate_index = index
        self._emit(
            EventType.COORDINATE_INSERTED,
            annotation_index=annotation_index,
            coordinate_index=index,
        )
        s.notify_modified()

    def delete_coordinate(self, annotation_index: int, index: int) -> bool:
        """
        Delete a coordinate; removing the last one deletes the annotation.

        Returns:
            True if the whole annotation was deleted

        Raises:
            IndexError: If either index is out of range
        """
        s = self.annotation_set
        annotation = s.get_active(annotation_index)
        if not annotation.has_coordinate(index):
            raise IndexError(
                f"Coordinate index {index} out of range "
                f"(annotation has {annotation.coordinate_count})"
            )
        if annotation.coordinate_count == 1:
            s.delete_annotation(annotation_index)
            return True

        annotation.delete_coordinate(index)
        infer_type(annotation)
        s.deselect_coordinates()
        self._emit(
            EventType.COORDINATE_DELETED,
            annotation_index=annotation_index,
            coordinate_index=index,
        )
        s.notify_modified()
        return False

    def move_coordinate(self, annotation_index: int, index: int, point):
        s = self.annotation_set
        s.get_active(annotation_index).move_coordinate(index, point)
        self._emit(
            EventType.COORDINATE_MOVED,
            annotation_index=annotation_index,
            coordinate_index=index,
        )
        s.notify_modified()

    def _move_rectangle_corner(self, annotation: Annotation, corner: int, position):
        # corners are ordered so that edges 0-1 and 2-3 are horizontal
        position = as_point(position)
        coords = annotation.coordinates.copy()
        opposite = coords[(corner + 2) % 4].copy()
        horizontal = np.array([opposite[0], position[1]])
        vertical = np.array([position[0], opposite[1]])
        coords[corner] = position
        if corner % 2 == 0:
            coords[(corner + 1) % 4] = horizontal
            coords[(corner - 1) % 4] = vertical
        else:
            coords[(corner + 1) % 4] = vertical
            coords[(corner - 1) % 4] = horizontal
        annotation.set_coordinates(coords)

    def drag_selected_coordinate(self, position) -> bool:
        """
        Move the selected coordinate to the pointer.

        Rectangles stay axis-aligned: their neighboring corners follow.

        Returns:
            False if no coordinate is selected
        """
        s = self.annotation_set
        annotation_index = s.selected_coordinate_annotation_index
        index = s.selected_coordinate_index
        if annotation_index < 0 or index < 0:
            return False
        annotation = s.get_active(annotation_index)
        if (
            annotation.type == AnnotationType.RECTANGLE
            and annotation.coordinate_count == 4
        ):
            self._move_rectangle_corner(annotation, index, position)
            self._emit(
                EventType.COORDINATE_MOVED,
                annotation_index=annotation_index,
                coordinate_index=index,
            )
            s.notify_modified()
        else:
            self.move_coordinate(annotation_index, index, position)
        return True

    # Splitting

    def begin_split(self, annotation_index: int, coordinate_index: int):
        """Enter split mode with the first of the two split coordinates."""
        annotation = self.annotation_set.get_active(annotation_index)
        if not annotation.has_coordinate(coordinate_index):
            raise IndexError(f"Coordinate index {coordinate_index} out of range")
        self.annotation_set.is_split_mode = True
        self._split_annotation_index = annotation_index
        self._split_coordinate_index = coordinate_index

    def cancel_split(self):
        self.annotation_set.is_split_mode = False
        self._split_annotation_index = -1
        self._split_coordinate_index = -1

    def split_annotation(
        self, annotation_index: int, index_a: int, index_b: int
    ) -> Optional[int]:
        """
        Split an annotation along the chord between two of its coordinates.

        The annotation keeps the coordinates from the lower to the higher
        index (inclusive). A new annotation receives the remaining ones plus
        copies of both chord endpoints. Equal or adjacent indices cancel the
        split.

        Args:
            annotation_index: Active index of the annotation
            index_a: First chord endpoint
            index_b: Second chord endpoint, in any order relative to the first

        Returns:
            Active index of the new annotation, or None if cancelled

        Raises:
            IndexError: If any index is out of range
        """
        s = self.annotation_set
        annotation = s.get_active(annotation_index)
        for index in (index_a, index_b):
            if not annotation.has_coordinate(index):
                raise IndexError(
                    f"Coordinate index {index} out of range "
                    f"(annotation has {annotation.coordinate_count})"
                )
        self.cancel_split()

        count = annotation.coordinate_count
        low, high = min(index_a, index_b), max(index_a, index_b)
        difference = high - low
        if difference in (0, 1, count - 1):
            logger.debug(f"Split cancelled: coordinates {low} and {high} are adjacent")
            return None

        coords = annotation.coordinates
        inside = coords[low : high + 1].copy()
        outside = np.concatenate([coords[: low + 1], coords[high:]], axis=0)

        piece = Annotation(
            type=annotation.type,
            coordinates=outside,
            group_id=annotation.group_id,
            features=annotation.features.copy(),
            name=annotation.name,
            color=annotation.color,
        )
        annotation.set_coordinates(inside)
        infer_type(annotation)
        infer_type(piece)

        new_index = s.append_annotation(piece)
        s.deselect_coordinates()
        self._emit(
            EventType.ANNOTATION_SPLIT,
            annotation_index=annotation_index,
            new_annotation_index=new_index,
        )
        s.notify_modified()
        return new_index

    # Attributes

    def set_group(self, annotation_index: int, group_id: int):
        """Assign a group (stored index) to one annotation."""
        s = self.annotation_set
        annotation = s.get_active(annotation_index)
        if not s.is_valid_group(group_id):
            raise ValueError(f"Invalid group id {group_id}")
        annotation.group_id = group_id
        s.last_assigned_group = group_id
        s.last_assigned_group_is_valid = True
        s.notify_modified()

    def set_feature(self, annotation_index: int, feature_index: int, value: float):
        """
        Set a feature value on one annotation.

        Args:
            annotation_index: Active index of the annotation
            feature_index: Active index of the feature
            value: New value

        Raises:
            ValueError: If the feature is restricted to another group
        """
        s = self.annotation_set
        annotation = s.get_active(annotation_index)
        feature = s.get_active_feature(feature_index)
        if feature.restrict_to_group and feature.group_id != annotation.group_id:
            raise ValueError(
                f"Feature '{feature.name}' is restricted to group "
                f"'{s.stored_groups[feature.group_id].name}'"
            )
        annotation.set_feature(feature.id, value)
        s.notify_modified()

    # Modes

    def toggle_edit_mode(self) -> bool:
        s = self.annotation_set
        s.is_edit_mode = not s.is_edit_mode
        if not s.is_edit_mode:
            s.is_insert_coordinate_mode = False
            s.force_insert_mode = False
            s.deselect_coordinates()
            self.cancel_split()
            self.insert_candidate = None
        return s.is_edit_mode

    def set_insert_mode(self, enabled: bool, force: bool = False):
        s = self.annotation_set
        s.is_insert_coordinate_mode = enabled
        s.force_insert_mode = enabled and force
        if not enabled:
            self.insert_candidate = None

    # Pointer interaction

    def hover(self, point) -> HitResult:
        """
        Resolve the annotation and coordinate under the pointer.

        Starts a new hit-test frame. In edit mode selected annotations are
        favored; outside it they are disfavored so a click can move the
        selection to a neighbor.
        """
        s = self.annotation_set
        bias = self._scaled(self.config.selection_bias)
        if not s.is_edit_mode:
            bias = -bias
        s.advance_frame()
        result = hit_test(s, point, self._scaled(self.config.bounds_tolerance), bias)
        self.last_hit = result

        s.hovered_annotation = -1
        s.hovered_coordinate = -1
        s.hovered_coordinate_distance = math.inf
        self.insert_candidate = None
        if not result.valid:
            return result

        annotation = s.get_active(result.annotation_index)
        raw_distance = annotation.hit_distance
        hover_distance = self._scaled(self.config.hover_distance)
        if raw_distance <= hover_distance:
            s.hovered_annotation = result.annotation_index
            if result.coord_distance <= hover_distance:
                s.hovered_coordinate = result.nearest_coord_index
                s.hovered_coordinate_distance = result.coord_distance

        insert_mode = s.is_insert_coordinate_mode or s.force_insert_mode
        if (
            s.is_edit_mode
            and insert_mode
            and annotation.selected
            and raw_distance <= self._scaled(self.config.insert_hover_distance)
        ):
            self.insert_candidate = (
                result.annotation_index,
                result.edge_coord_index,
                result.projected_point,
            )
        return result

    def click(self, point, additive: bool = False) -> bool:
        """
        Handle a click at a point.

        Args:
            point: Click position in world units
            additive: Toggle the clicked annotation instead of replacing
                the selection

        Returns:
            True if the click hit something and was handled
        """
        s = self.annotation_set
        if self._open_freeform() is not None:
            self.freeform_click(point)
            return True

        self.hover(point)

        if s.is_split_mode:
            if (
                s.hovered_annotation == self._split_annotation_index
                and s.hovered_coordinate >= 0
            ):
                self.split_annotation(
                    self._split_annotation_index,
                    self._split_coordinate_index,
                    s.hovered_coordinate,
                )
            else:
                self.cancel_split()
            return True

        if s.is_edit_mode and self.insert_candidate is not None:
            annotation_index, index, projected = self.insert_candidate
            self.insert_coordinate(annotation_index, index, projected)
            return True

        if s.hovered_annotation < 0:
            if not additive:
                s.deselect_all()
                s.deselect_coordinates()
            return False

        index = s.hovered_annotation
        annotation = s.get_active(index)
        if s.is_edit_mode and annotation.selected and s.hovered_coordinate >= 0:
            s.selected_coordinate_annotation_index = index
            s.selected_coordinate_index = s.hovered_coordinate
            return True

        if additive:
            annotation.selected = not annotation.selected
            self._emit(EventType.SELECTION_CHANGED, annotation_index=index)
        elif annotation.selected and s.selection_count == 1:
            s.deselect_all()
        else:
            s.select_annotation(index)
        s.deselect_coordinates()

        if (
            self.config.auto_assign_last_group
            and annotation.selected
            and s.last_assigned_group_is_valid
            and annotation.group_id == RESERVED_GROUP_INDEX
        ):
            annotation.group_id = s.last_assigned_group
            s.notify_modified()
        return True
