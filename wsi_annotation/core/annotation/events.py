"""
Event system for the annotation engine.

Provides a decoupled way for the annotation core to notify UI components
(renderer, panels, autosave) about state changes without depending on
specific UI frameworks.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of events that can occur while editing annotations."""

    # Annotation events
    ANNOTATION_CREATED = "annotation_created"
    ANNOTATION_FINISHED = "annotation_finished"
    ANNOTATION_DELETED = "annotation_deleted"
    ANNOTATION_SPLIT = "annotation_split"

    # Coordinate events
    COORDINATE_INSERTED = "coordinate_inserted"
    COORDINATE_DELETED = "coordinate_deleted"
    COORDINATE_MOVED = "coordinate_moved"

    # Group / feature events
    GROUP_ADDED = "group_added"
    GROUP_DELETED = "group_deleted"
    FEATURE_ADDED = "feature_added"
    FEATURE_DELETED = "feature_deleted"

    # Set events
    SELECTION_CHANGED = "selection_changed"
    ANNOTATIONS_MODIFIED = "annotations_modified"
    ANNOTATIONS_RESET = "annotations_reset"
    ANNOTATIONS_LOADED = "annotations_loaded"
    LOAD_FAILED = "load_failed"

    # Persistence events (emitted from the saving thread)
    SAVE_STARTED = "save_started"
    SAVE_COMPLETED = "save_completed"
    SAVE_SKIPPED = "save_skipped"
    SAVE_FAILED = "save_failed"


@dataclass
class AnnotationEvent:
    """Event that occurs during annotation."""

    event_type: EventType
    data: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.data is None:
            self.data = {}


class EventEmitter:
    """
    Simple event emitter for pub/sub pattern.

    Allows components to subscribe to events without tight coupling.
    Save events are emitted from whatever thread runs the save task.
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[Callable]] = {}

    def on(self, event_type: EventType, callback: Callable[[AnnotationEvent], None]):
        """
        Subscribe to an event type.

        Callbacks run on the emitting thread. SAVE_* events come from the
        SaveManager's executor, so UI code has to hand them over to its own
        thread before touching widgets.
        """
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        self._listeners[event_type].append(callback)

    def off(self, event_type: EventType, callback: Callable[[AnnotationEvent], None]):
        """Unsubscribe from an event type."""
        if event_type in self._listeners:
            self._listeners[event_type].remove(callback)

    def emit(self, event: AnnotationEvent):
        """Emit an event to all subscribers."""
        for callback in list(self._listeners.get(event.event_type, ())):
            try:
                callback(event)
            except Exception:
                # Log but don't crash on listener errors
                logger.exception(f"Error in listener for {event.event_type.value}")

    def clear(self):
        """Clear all event listeners."""
        self._listeners.clear()
