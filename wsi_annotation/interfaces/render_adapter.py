"""
Render adapter for annotation sets.

Bridges the AnnotationSet with a renderer: collects, per frame, what has
to be drawn for each visible annotation. Drawing itself belongs to the
renderer.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..core.annotation import AnnotationEvent, AnnotationSet, Bounds, EventType
from ..core.annotation.cache import DerivedFlag


@dataclass
class RenderConfig:
    """Drawing style and per-frame work limits."""

    line_thickness: float = 2.0
    selected_line_thickness: float = 3.0
    opacity: float = 0.75
    node_size: float = 8.0
    show_nodes_outside_edit_mode: bool = False
    # new tessellations computed per frame; stale fills are reused beyond it
    max_tessellations_per_frame: int = 8
    # shapes with more coordinates keep their stale fill while dragging
    large_polygon_threshold: int = 1000


@dataclass
class DrawItem:
    """Everything needed to draw one annotation, in world units."""

    annotation_index: int
    coordinates: np.ndarray
    color: Tuple[int, int, int]
    selected: bool
    thickness: float
    bounds: Bounds
    triangles: Optional[np.ndarray]
    closed: bool
    draw_nodes: bool
    hovered_coordinate: int = -1


def highlight_color(color) -> Tuple[int, int, int]:
    """Lighten a color to mark it as selected."""
    return tuple(int(c + 0.2 * (255 - c)) for c in color[:3])


class RenderAdapter:
    """
    Adapter connecting an AnnotationSet to a renderer.

    Provides:
    - Viewport culling on cached bounds
    - Tessellation rate limiting using the previous frame's fills
    - Redraw requests when the set changes
    """

    def __init__(
        self,
        annotation_set: AnnotationSet,
        config: Optional[RenderConfig] = None,
        update_callback: Optional[Callable] = None,
    ):
        """
        Initialize adapter.

        Args:
            annotation_set: Set to draw
            config: Drawing style, defaults to RenderConfig()
            update_callback: Called when the set changed and needs a redraw
        """
        self.annotation_set = annotation_set
        self.config = config if config is not None else RenderConfig()
        self.update_callback = update_callback
        self.needs_redraw = True

        self._setup_event_handlers()

    def _setup_event_handlers(self):
        for event_type in (
            EventType.ANNOTATIONS_MODIFIED,
            EventType.SELECTION_CHANGED,
            EventType.ANNOTATIONS_LOADED,
            EventType.ANNOTATIONS_RESET,
        ):
            self.annotation_set.events.on(event_type, self._on_changed)

    def _on_changed(self, event: AnnotationEvent):
        self.needs_redraw = True
        if self.update_callback:
            self.update_callback()

    def draw_items(self, viewport: Bounds, is_dragging: bool = False) -> List[DrawItem]:
        """
        Collect draw data for annotations overlapping the viewport.

        Args:
            viewport: Visible region in world units
            is_dragging: The user is moving a coordinate; large shapes then
                keep their previous fill instead of being re-tessellated

        Returns:
            Draw items in display order
        """
        s = self.annotation_set
        cfg = self.config
        tessellation_budget = cfg.max_tessellations_per_frame
        items = []

        for index, annotation in s.iter_active():
            group = s.group_for(annotation)
            if group.hidden:
                continue
            bounds = annotation.bounds
            if not bounds.intersects(viewport):
                continue

            triangles = None
            if annotation.is_closed_shape:
                needs_tessellation = not annotation.cache.is_valid(
                    DerivedFlag.TESSELLATION
                )
                allow_recompute = tessellation_budget > 0 and not (
                    is_dragging
                    and annotation.coordinate_count >= cfg.large_polygon_threshold
                )
                triangles = annotation.get_triangles(allow_recompute)
                if needs_tessellation and annotation.cache.is_valid(
                    DerivedFlag.TESSELLATION
                ):
                    tessellation_budget -= 1

            color = group.color
            if annotation.selected:
                color = highlight_color(color)
            draw_nodes = annotation.selected and (
                s.is_edit_mode or cfg.show_nodes_outside_edit_mode
            )
            items.append(
                DrawItem(
                    annotation_index=index,
                    coordinates=annotation.outline(),
                    color=color,
                    selected=annotation.selected,
                    thickness=(
                        cfg.selected_line_thickness
                        if annotation.selected
                        else cfg.line_thickness
                    ),
                    bounds=bounds,
                    triangles=triangles,
                    closed=annotation.is_closed_shape,
                    draw_nodes=draw_nodes,
                    hovered_coordinate=(
                        s.hovered_coordinate if s.hovered_annotation == index else -1
                    ),
                )
            )
            annotation.cache.end_frame()

        self.needs_redraw = False
        return items
