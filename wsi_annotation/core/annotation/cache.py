"""
Memoization of values derived from an annotation.

Each derived value (bounds, area, tessellation, ...) lives in its own slot
and is recomputed on read once the inputs it depends on have changed.
"""

from enum import Flag
from typing import Any, Callable, Dict


class DerivedFlag(Flag):
    """Derived values cached per annotation."""

    NONE = 0
    BOUNDS = 1
    TESSELLATION = 2
    AREA = 4
    LENGTH = 8
    FEATURE_COUNT = 16


# Everything that depends on the coordinates
GEOMETRY_FLAGS = (
    DerivedFlag.BOUNDS
    | DerivedFlag.TESSELLATION
    | DerivedFlag.AREA
    | DerivedFlag.LENGTH
)


class DerivedCache:
    """
    Per-annotation cache of derived values.

    ``valid_flags`` tells which slots hold an up-to-date value.
    ``fallback_flags`` tells which slots still hold an outdated value from
    before the last invalidation; the renderer may keep showing such a value
    while recomputation is being rate-limited, so shapes do not flicker.
    """

    def __init__(self):
        self._values: Dict[DerivedFlag, Any] = {}
        self.valid_flags = DerivedFlag.NONE
        self.fallback_flags = DerivedFlag.NONE

    def is_valid(self, flag: DerivedFlag) -> bool:
        return flag in self.valid_flags

    def has_fallback(self, flag: DerivedFlag) -> bool:
        return flag in self.fallback_flags and flag in self._values

    def invalidate(self, flags: DerivedFlag):
        """Mark slots stale, remembering which of them held a value."""
        self.fallback_flags |= self.valid_flags & flags
        self.valid_flags &= ~flags

    def get(self, flag: DerivedFlag, compute: Callable[[], Any]) -> Any:
        """Return the cached value, recomputing it first if stale."""
        if flag not in self.valid_flags:
            self._values[flag] = compute()
            self.valid_flags |= flag
            self.fallback_flags &= ~flag
        return self._values[flag]

    def get_or_fallback(
        self, flag: DerivedFlag, compute: Callable[[], Any], allow_recompute: bool = True
    ) -> Any:
        """
        Like get(), but may serve an outdated value instead of recomputing.

        Args:
            flag: Slot to read
            compute: Function producing a fresh value
            allow_recompute: If False and an outdated value exists, return it

        Returns:
            Cached, recomputed or outdated value
        """
        if flag in self.valid_flags:
            return self._values[flag]
        if not allow_recompute and self.has_fallback(flag):
            return self._values[flag]
        return self.get(flag, compute)

    def end_frame(self):
        """Remember the slots that were valid during the frame just drawn."""
        self.fallback_flags |= self.valid_flags

    def clear(self):
        """Drop every value, including fallbacks."""
        self._values.clear()
        self.valid_flags = DerivedFlag.NONE
        self.fallback_flags = DerivedFlag.NONE
