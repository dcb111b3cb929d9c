"""
Interfaces module - adapters between the annotation core and renderers.
"""

from .render_adapter import DrawItem, RenderAdapter, RenderConfig

__all__ = ["DrawItem", "RenderAdapter", "RenderConfig"]
