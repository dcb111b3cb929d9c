"""
Core annotation module - UI-agnostic annotation logic.

This module provides the data model, geometry and editing operations for
vector annotations over whole-slide images, independent of any renderer.
"""

from .cache import DerivedCache, DerivedFlag
from .events import AnnotationEvent, EventType, EventEmitter
from .geometry import Bounds, Projection
from .hit_test import HitResult, annotations_within_distance, hit_test
from .session import EditSession, infer_annotation_type, infer_type
from .state import (
    MAX_ANNOTATION_FEATURES,
    Annotation,
    AnnotationSet,
    AnnotationType,
    Feature,
    Group,
)

__all__ = [
    "DerivedCache",
    "DerivedFlag",
    "AnnotationEvent",
    "EventType",
    "EventEmitter",
    "Bounds",
    "Projection",
    "HitResult",
    "annotations_within_distance",
    "hit_test",
    "EditSession",
    "infer_annotation_type",
    "infer_type",
    "MAX_ANNOTATION_FEATURES",
    "Annotation",
    "AnnotationSet",
    "AnnotationType",
    "Feature",
    "Group",
]
