"""
State management for annotation sets.

Contains the data classes for annotations, groups and features, and the
AnnotationSet that owns them. Every collection is kept twice: a "stored"
list holding the records themselves, and an "active" list of indices into
it telling which records are in use and in which order. Deleting or
reordering only touches the index list, so records never move and
historical references (e.g. a group id) never dangle.
"""

import copy
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .cache import DerivedCache, DerivedFlag, GEOMETRY_FLAGS
from .events import AnnotationEvent, EventEmitter, EventType
from .geometry import (
    Bounds,
    as_coordinates,
    as_point,
    ellipse_polygon,
    polygon_area,
    polygon_bounds,
    polyline_length,
    triangulate,
)

logger = logging.getLogger(__name__)

MAX_ANNOTATION_FEATURES = 64
RESERVED_GROUP_INDEX = 0
RESERVED_GROUP_NAME = "None"
UNNAMED = "(unnamed)"

Color = Tuple[int, int, int]


class AnnotationType(IntEnum):
    UNKNOWN = 0
    RECTANGLE = 1
    POLYGON = 2
    POINT = 3
    LINE = 4
    SPLINE = 5
    ELLIPSE = 6
    TEXT = 7


@dataclass
class Group:
    """Named annotation category with a display color."""

    name: str = ""
    color: Color = (0, 0, 0)
    is_explicitly_defined: bool = False  # has its own <Group> element on disk
    hidden: bool = False
    deleted: bool = False


@dataclass
class Feature:
    """Named value attachable to annotations, optionally limited to one group."""

    name: str = ""
    id: int = 0
    restrict_to_group: bool = False
    group_id: int = RESERVED_GROUP_INDEX
    deleted: bool = False


def _empty_coordinates() -> np.ndarray:
    return np.zeros((0, 2), dtype=np.float64)


def _empty_features() -> np.ndarray:
    return np.zeros(MAX_ANNOTATION_FEATURES, dtype=np.float32)


@dataclass(eq=False)
class Annotation:
    """
    A single annotation.

    The coordinate buffer must only be changed through the methods below (or
    set_coordinates()), which keep the derived-value cache consistent.
    """

    type: AnnotationType = AnnotationType.POLYGON
    coordinates: np.ndarray = field(default_factory=_empty_coordinates)
    group_id: int = RESERVED_GROUP_INDEX
    features: np.ndarray = field(default_factory=_empty_features)
    name: str = ""
    color: Color = (0, 0, 0)
    p0: Optional[np.ndarray] = None  # ellipse control points
    p1: Optional[np.ndarray] = None
    is_open: bool = False  # freeform shape still being drawn
    selected: bool = False

    # stamped by the hit-test engine
    hit_distance: float = math.inf
    hit_frame: int = -1

    cache: DerivedCache = field(default_factory=DerivedCache, repr=False)

    def __post_init__(self):
        self.type = AnnotationType(self.type)
        self.coordinates = as_coordinates(self.coordinates).copy()
        features = _empty_features()
        values = np.asarray(self.features, dtype=np.float32).reshape(-1)
        features[: len(values)] = values[:MAX_ANNOTATION_FEATURES]
        self.features = features

    @property
    def coordinate_count(self) -> int:
        return len(self.coordinates)

    @property
    def display_name(self) -> str:
        return self.name or UNNAMED

    def has_coordinate(self, index: int) -> bool:
        return 0 <= index < self.coordinate_count

    # Mutation

    def invalidate_geometry(self):
        self.cache.invalidate(GEOMETRY_FLAGS)

    def invalidate_features(self):
        self.cache.invalidate(DerivedFlag.FEATURE_COUNT)

    def set_coordinates(self, coords):
        self.coordinates = as_coordinates(coords).copy()
        self.invalidate_geometry()

    def insert_coordinate(self, index: int, point):
        if not 0 <= index <= self.coordinate_count:
            raise IndexError(
                f"Cannot insert coordinate at {index} "
                f"(annotation has {self.coordinate_count})"
            )
        self.coordinates = np.insert(self.coordinates, index, as_point(point), axis=0)
        self.invalidate_geometry()

    def delete_coordinate(self, index: int):
        if not self.has_coordinate(index):
            raise IndexError(
                f"Coordinate index {index} out of range "
                f"(annotation has {self.coordinate_count})"
            )
        self.coordinates = np.delete(self.coordinates, index, axis=0)
        self.invalidate_geometry()

    def move_coordinate(self, index: int, point):
        if not self.has_coordinate(index):
            raise IndexError(
                f"Coordinate index {index} out of range "
                f"(annotation has {self.coordinate_count})"
            )
        self.coordinates[index] = as_point(point)
        self.invalidate_geometry()

    def translate(self, offset):
        offset = as_point(offset)
        self.coordinates = self.coordinates + offset
        if self.p0 is not None:
            self.p0 = self.p0 + offset
        if self.p1 is not None:
            self.p1 = self.p1 + offset
        self.invalidate_geometry()

    def set_feature(self, feature_id: int, value: float):
        if not 0 <= feature_id < MAX_ANNOTATION_FEATURES:
            raise IndexError(f"Feature id {feature_id} out of range")
        self.features[feature_id] = value
        self.invalidate_features()

    def free(self):
        """Release the coordinate buffer of a deleted annotation."""
        self.coordinates = _empty_coordinates()
        self.cache.clear()

    # Derived values

    def outline(self) -> np.ndarray:
        """Coordinates describing the shape (ellipses are approximated)."""
        if (
            self.type == AnnotationType.ELLIPSE
            and self.coordinate_count == 0
            and self.p0 is not None
        ):
            p1 = self.p0 if self.p1 is None else self.p1
            return ellipse_polygon(self.p0, p1)
        return self.coordinates

    @property
    def is_closed_shape(self) -> bool:
        return not self.is_open and self.type not in (
            AnnotationType.POINT,
            AnnotationType.LINE,
        )

    @property
    def bounds(self) -> Bounds:
        return self.cache.get(DerivedFlag.BOUNDS, lambda: polygon_bounds(self.outline()))

    @property
    def area(self) -> float:
        return self.cache.get(DerivedFlag.AREA, lambda: polygon_area(self.outline()))

    @property
    def length(self) -> float:
        return self.cache.get(
            DerivedFlag.LENGTH,
            lambda: polyline_length(self.outline(), closed=self.is_closed_shape),
        )

    def _tessellate(self) -> Optional[np.ndarray]:
        outline = self.outline()
        if len(outline) < 3 or not self.is_closed_shape:
            return None
        ok, triangles = triangulate(outline)
        if not ok:
            logger.debug(f"Could not triangulate annotation '{self.display_name}'")
            return None
        return triangles

    def get_triangles(self, allow_recompute: bool = True) -> Optional[np.ndarray]:
        return self.cache.get_or_fallback(
            DerivedFlag.TESSELLATION, self._tessellate, allow_recompute
        )

    @property
    def triangles(self) -> Optional[np.ndarray]:
        return self.get_triangles()

    @property
    def is_complex_polygon(self) -> bool:
        """True when the shape should be filled but triangulation failed."""
        return (
            self.is_closed_shape
            and len(self.outline()) >= 3
            and self.triangles is None
        )

    @property
    def nonzero_feature_count(self) -> int:
        return self.cache.get(
            DerivedFlag.FEATURE_COUNT, lambda: int(np.count_nonzero(self.features))
        )

    def copy(self) -> "Annotation":
        return copy.deepcopy(self)


class AnnotationSet:
    """
    All annotations belonging to one slide.

    The set is owned by the editing thread. The only cross-thread access is
    the save lock, which a background save holds while writing its private
    copy of the set to disk.
    """

    def __init__(self, mpp: Sequence[float] = (1.0, 1.0), config=None):
        """
        Initialize an empty annotation set.

        Args:
            mpp: Microns per pixel (x, y), used to convert file units
            config: EasyDict configuration (defaults from utils.config)
        """
        if config is None:
            from ...utils.config import get_default_config

            config = get_default_config()
        self.config = config
        self.events = EventEmitter()
        self._save_lock = threading.Lock()
        self._reset(mpp)

    def _reset(self, mpp: Sequence[float] = (1.0, 1.0)):
        self.stored_annotations: List[Annotation] = []
        self.active_annotation_indices: List[int] = []
        self.stored_groups: List[Group] = []
        self.active_group_indices: List[int] = []
        self.stored_features: List[Feature] = []
        self.active_feature_indices: List[int] = []

        self.filename = None
        self.loaded_filename: Optional[str] = None
        self.modified = False
        self.last_modification_time = 0.0
        self.modification_counter = 0

        self.is_edit_mode = False
        self.is_insert_coordinate_mode = False
        self.force_insert_mode = False
        self.is_split_mode = False
        self.editing_annotation_index = -1
        self.selected_coordinate_annotation_index = -1
        self.selected_coordinate_index = -1
        self.hovered_annotation = -1
        self.hovered_coordinate = -1
        self.hovered_coordinate_distance = math.inf
        self.last_assigned_group = RESERVED_GROUP_INDEX
        self.last_assigned_group_is_valid = False
        self.frame_counter = 0

        mpp = np.asarray(mpp, dtype=np.float64).reshape(2)
        if np.any(mpp <= 0.0):
            raise ValueError(f"mpp must be positive, got {mpp.tolist()}")
        self.mpp = mpp

        # group 0 is reserved for annotations without a category
        self.add_group(RESERVED_GROUP_NAME)

    @property
    def loaded_from_file(self) -> bool:
        return self.loaded_filename is not None

    def is_loaded_file(self, path) -> bool:
        """True if ``path`` names the file the set was loaded from."""
        if self.loaded_filename is None:
            return False
        return Path(path).resolve() == Path(self.loaded_filename).resolve()

    # Counts

    @property
    def active_annotation_count(self) -> int:
        return len(self.active_annotation_indices)

    @property
    def active_group_count(self) -> int:
        return len(self.active_group_indices)

    @property
    def active_feature_count(self) -> int:
        return len(self.active_feature_indices)

    # Active-index translation

    def get_active(self, active_index: int) -> Annotation:
        if not 0 <= active_index < len(self.active_annotation_indices):
            raise IndexError(
                f"Active annotation index {active_index} out of range "
                f"({len(self.active_annotation_indices)} active)"
            )
        return self.stored_annotations[self.active_annotation_indices[active_index]]

    def get_active_group(self, active_index: int) -> Group:
        if not 0 <= active_index < len(self.active_group_indices):
            raise IndexError(f"Active group index {active_index} out of range")
        return self.stored_groups[self.active_group_indices[active_index]]

    def get_active_feature(self, active_index: int) -> Feature:
        if not 0 <= active_index < len(self.active_feature_indices):
            raise IndexError(f"Active feature index {active_index} out of range")
        return self.stored_features[self.active_feature_indices[active_index]]

    def iter_active(self) -> Iterator[Tuple[int, Annotation]]:
        """Yield (active index, annotation) pairs in display order."""
        for active_index, stored_index in enumerate(self.active_annotation_indices):
            yield active_index, self.stored_annotations[stored_index]

    def group_for(self, annotation: Annotation) -> Group:
        return self.stored_groups[annotation.group_id]

    def is_group_hidden(self, group_id: int) -> bool:
        return self.stored_groups[group_id].hidden

    def is_valid_group(self, group_id: int) -> bool:
        return (
            0 <= group_id < len(self.stored_groups)
            and not self.stored_groups[group_id].deleted
        )

    # Modification tracking

    def notify_modified(self):
        """Flag unsaved changes; feeds the autosave throttle."""
        self.modified = True
        self.last_modification_time = time.monotonic()
        self.modification_counter += 1
        self.events.emit(AnnotationEvent(EventType.ANNOTATIONS_MODIFIED))

    # Groups and features

    def add_group(self, name: str, color: Color = (0, 0, 0)) -> int:
        """
        Add a group.

        Returns:
            Active index of the new group
        """
        group = Group(name=name, color=tuple(color))
        self.stored_groups.append(group)
        self.active_group_indices.append(len(self.stored_groups) - 1)
        self.events.emit(AnnotationEvent(EventType.GROUP_ADDED, {"name": name}))
        return len(self.active_group_indices) - 1

    def find_group_by_name(self, name: str) -> int:
        """
        Look up a group by name.

        Returns:
            Stored index of the group, or -1 if not found
        """
        for stored_index, group in enumerate(self.stored_groups):
            if not group.deleted and group.name == name:
                return stored_index
        return -1

    def find_or_add_group(self, name: str) -> int:
        """Stored index of the group with this name, creating it if needed."""
        stored_index = self.find_group_by_name(name)
        if stored_index < 0:
            active_index = self.add_group(name)
            stored_index = self.active_group_indices[active_index]
        return stored_index

    def delete_group(self, active_index: int):
        """
        Soft-delete a group; its annotations fall back to group 0.

        Args:
            active_index: Active index of the group

        Raises:
            IndexError: If the index is out of range
            ValueError: When trying to delete the reserved group
        """
        if not 0 <= active_index < len(self.active_group_indices):
            raise IndexError(f"Active group index {active_index} out of range")
        stored_index = self.active_group_indices[active_index]
        if stored_index == RESERVED_GROUP_INDEX:
            raise ValueError(f'The "{RESERVED_GROUP_NAME}" group cannot be deleted')

        group = self.stored_groups[stored_index]
        group.deleted = True
        for annotation in self.stored_annotations:
            if annotation.group_id == stored_index:
                annotation.group_id = RESERVED_GROUP_INDEX
        for feature in self.stored_features:
            if feature.group_id == stored_index:
                feature.group_id = RESERVED_GROUP_INDEX
                feature.restrict_to_group = False
        if self.last_assigned_group == stored_index:
            self.last_assigned_group = RESERVED_GROUP_INDEX
            self.last_assigned_group_is_valid = False

        del self.active_group_indices[active_index]
        self.events.emit(AnnotationEvent(EventType.GROUP_DELETED, {"name": group.name}))
        self.notify_modified()

    def add_feature(self, name: str) -> int:
        """
        Add a feature; its id is its position in every feature vector.

        Returns:
            Active index of the new feature

        Raises:
            ValueError: If all feature slots are in use
        """
        if len(self.stored_features) >= MAX_ANNOTATION_FEATURES:
            raise ValueError(
                f"Cannot add feature '{name}': limit of "
                f"{MAX_ANNOTATION_FEATURES} features reached"
            )
        feature_id = len(self.stored_features)
        self.stored_features.append(Feature(name=name, id=feature_id))
        self.active_feature_indices.append(feature_id)
        self.events.emit(AnnotationEvent(EventType.FEATURE_ADDED, {"name": name}))
        return len(self.active_feature_indices) - 1

    def delete_feature(self, active_index: int):
        """Soft-delete a feature and clear its value on every annotation."""
        if not 0 <= active_index < len(self.active_feature_indices):
            raise IndexError(f"Active feature index {active_index} out of range")
        stored_index = self.active_feature_indices[active_index]
        feature = self.stored_features[stored_index]
        feature.deleted = True
        for annotation in self.stored_annotations:
            if annotation.features[feature.id] != 0:
                annotation.set_feature(feature.id, 0.0)
        del self.active_feature_indices[active_index]
        self.events.emit(
            AnnotationEvent(EventType.FEATURE_DELETED, {"name": feature.name})
        )
        self.notify_modified()

    # Annotations

    def append_annotation(self, annotation: Annotation) -> int:
        """
        Store an annotation and make it active.

        Returns:
            Active index of the annotation
        """
        self.stored_annotations.append(annotation)
        self.active_annotation_indices.append(len(self.stored_annotations) - 1)
        return len(self.active_annotation_indices) - 1

    def _forget_active_annotation(self, active_index: int):
        # keep indices that point into the active array consistent
        for attr in (
            "editing_annotation_index",
            "selected_coordinate_annotation_index",
            "hovered_annotation",
        ):
            value = getattr(self, attr)
            if value == active_index:
                setattr(self, attr, -1)
            elif value > active_index:
                setattr(self, attr, value - 1)
        if self.selected_coordinate_annotation_index < 0:
            self.selected_coordinate_index = -1
        if self.hovered_annotation < 0:
            self.hovered_coordinate = -1

    def delete_annotation(self, active_index: int):
        """Delete a single annotation, compacting the active array."""
        annotation = self.get_active(active_index)
        annotation.free()
        del self.active_annotation_indices[active_index]
        self._forget_active_annotation(active_index)
        self.events.emit(
            AnnotationEvent(EventType.ANNOTATION_DELETED, {"annotation_index": active_index})
        )
        self.notify_modified()

    def delete_selected_annotations(self) -> int:
        """
        Delete every selected annotation in one linear pass.

        Returns:
            Number of deleted annotations
        """
        scratch = list(self.active_annotation_indices)
        kept = []
        for stored_index in scratch:
            annotation = self.stored_annotations[stored_index]
            if annotation.selected:
                annotation.free()
                continue
            kept.append(stored_index)

        deleted = len(scratch) - len(kept)
        if deleted:
            self.active_annotation_indices = kept
            self.editing_annotation_index = -1
            self.hovered_annotation = -1
            self.hovered_coordinate = -1
            self.deselect_coordinates()
            self.events.emit(
                AnnotationEvent(EventType.ANNOTATION_DELETED, {"count": deleted})
            )
            self.notify_modified()
        return deleted

    # Selection

    def deselect_coordinates(self):
        self.selected_coordinate_annotation_index = -1
        self.selected_coordinate_index = -1

    def select_annotation(self, active_index: int):
        """Select one annotation, deselecting all others."""
        target = self.get_active(active_index)
        for _, annotation in self.iter_active():
            annotation.selected = False
        target.selected = True
        self.events.emit(AnnotationEvent(EventType.SELECTION_CHANGED))

    def deselect_all(self):
        for _, annotation in self.iter_active():
            annotation.selected = False
        self.events.emit(AnnotationEvent(EventType.SELECTION_CHANGED))

    def selected_annotations(self) -> List[Annotation]:
        return [a for _, a in self.iter_active() if a.selected]

    def selected_indices(self) -> List[int]:
        return [i for i, a in self.iter_active() if a.selected]

    @property
    def selection_count(self) -> int:
        return len(self.selected_indices())

    def selection_bounds(self) -> Bounds:
        """Box encompassing every selected annotation (empty if none)."""
        bounds = Bounds.empty()
        for annotation in self.selected_annotations():
            bounds = bounds.union(annotation.bounds)
        return bounds

    def set_group_for_selected(self, group_id: int):
        """Assign a group (stored index) to all selected annotations."""
        if not self.is_valid_group(group_id):
            raise ValueError(f"Invalid group id {group_id}")
        self.last_assigned_group = group_id
        self.last_assigned_group_is_valid = True
        changed = False
        for annotation in self.selected_annotations():
            annotation.group_id = group_id
            changed = True
        if changed:
            self.notify_modified()

    def set_type_for_selected(self, annotation_type: AnnotationType):
        changed = False
        for annotation in self.selected_annotations():
            annotation.type = AnnotationType(annotation_type)
            annotation.invalidate_geometry()
            changed = True
        if changed:
            self.notify_modified()

    def set_features_for_selected(self, values: Sequence[float]):
        values = np.asarray(values, dtype=np.float32).reshape(-1)
        if len(values) > MAX_ANNOTATION_FEATURES:
            raise ValueError(
                f"Got {len(values)} feature values, at most "
                f"{MAX_ANNOTATION_FEATURES} are supported"
            )
        changed = False
        for annotation in self.selected_annotations():
            annotation.features[: len(values)] = values
            annotation.invalidate_features()
            changed = True
        if changed:
            self.notify_modified()

    def cycle_selection_within_group(self, delta: int) -> int:
        """
        Move the selection to the next annotation of the same group.

        Starts at the first selected annotation (or index 0) and steps by
        ``delta``, wrapping around.

        Returns:
            Active index of the newly selected annotation, or -1
        """
        count = self.active_annotation_count
        if count == 0:
            return -1

        selected_index = 0
        selected_group = RESERVED_GROUP_INDEX
        for index, annotation in self.iter_active():
            if annotation.selected:
                selected_index = index
                selected_group = annotation.group_id
                break

        for _ in range(count):
            selected_index = (selected_index + delta) % count
            if self.get_active(selected_index).group_id == selected_group:
                self.select_annotation(selected_index)
                return selected_index
        return -1

    # Hit-test bookkeeping

    def advance_frame(self) -> int:
        self.frame_counter += 1
        return self.frame_counter

    # Unit conversion

    def to_file_units(self, coords) -> np.ndarray:
        return as_coordinates(coords) / self.mpp

    def to_world_units(self, coords) -> np.ndarray:
        return as_coordinates(coords) * self.mpp

    # Lifecycle

    def unload_and_reinit(self):
        """Drop everything and start over with only the "None" group."""
        self._reset()
        self.events.emit(AnnotationEvent(EventType.ANNOTATIONS_RESET))

    def replace_contents(self, other: "AnnotationSet"):
        """Take over the records and file state of another set."""
        for attr, value in other.__dict__.items():
            if attr in ("events", "_save_lock", "config"):
                continue
            setattr(self, attr, value)

    def copy(self) -> "AnnotationSet":
        """
        Deep copy of the whole set, including every coordinate buffer.

        The copy shares the configuration, and has its own save lock and no
        event listeners.
        """
        clone = AnnotationSet.__new__(AnnotationSet)
        state = {
            k: v
            for k, v in self.__dict__.items()
            if k not in ("events", "_save_lock", "config")
        }
        clone.__dict__.update(copy.deepcopy(state))
        clone.config = self.config
        clone.events = EventEmitter()
        clone._save_lock = threading.Lock()
        return clone

    def subset_for_area(self, area: Bounds, clamp: bool = False) -> "AnnotationSet":
        """
        New set with the annotations overlapping an area.

        Coordinates are translated so that the area's minimum corner becomes
        the origin. Groups and features are copied as they are.

        Args:
            area: Region in world units
            clamp: Push coordinates lying outside the area onto its border

        Returns:
            The new set
        """
        subset = self.copy()
        subset.stored_annotations = []
        subset.active_annotation_indices = []
        subset.filename = None
        subset.loaded_filename = None
        subset.modified = False
        subset.editing_annotation_index = -1
        subset.hovered_annotation = -1
        subset.hovered_coordinate = -1
        subset.deselect_coordinates()

        origin = np.array([area.min_x, area.min_y])
        for _, annotation in self.iter_active():
            if not annotation.bounds.intersects(area):
                continue
            clone = annotation.copy()
            clone.translate(-origin)
            if clamp and clone.coordinate_count > 0:
                clone.set_coordinates(
                    np.clip(clone.coordinates, [0.0, 0.0], [area.width, area.height])
                )
            subset.append_annotation(clone)
        return subset

    # Save coordination

    def try_begin_save(self) -> bool:
        """Claim the save lock without blocking."""
        return self._save_lock.acquire(blocking=False)

    def end_save(self):
        self._save_lock.release()

    @property
    def is_saving(self) -> bool:
        return self._save_lock.locked()

    def close(self):
        """
        Release the set.

        Waits (polling) until no background save holds the set anymore.
        """
        poll_interval = self.config.save_poll_interval
        while not self._save_lock.acquire(blocking=False):
            time.sleep(poll_interval)
        try:
            for annotation in self.stored_annotations:
                annotation.free()
            self._reset(self.mpp)
            self.events.clear()
        finally:
            self._save_lock.release()
