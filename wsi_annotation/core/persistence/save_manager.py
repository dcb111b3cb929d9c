"""
Background saving of annotation sets.

At most one save per set runs at a time. A save that finds another one in
progress is dropped rather than queued; the set is flagged as modified again,
so the next autosave picks the changes up.
"""

import logging
import threading
import time
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Callable, Optional

from ..annotation.events import AnnotationEvent, EventType
from ..annotation.state import AnnotationSet
from .asap_xml import PathLike, save_asap_xml

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".orig"


def backup_path(path: PathLike) -> Path:
    path = Path(path)
    return path.with_name(path.name + BACKUP_SUFFIX)


def backup_once(path: PathLike) -> bool:
    """
    Rename an existing file to ``<name>.orig`` unless a backup exists.

    Returns:
        True if a backup was made
    """
    path = Path(path)
    backup = backup_path(path)
    if not path.exists() or backup.exists():
        return False
    path.rename(backup)
    logger.info(f"Backed up {path.name} to {backup.name}")
    return True


class SaveManager:
    """
    Writes snapshots of annotation sets, optionally on a worker.

    Features:
    - Snapshot taken on the caller thread, written from a private copy
    - Non-blocking claim of the set's save lock (contended saves are skipped)
    - One-time ``.orig`` backup when overwriting the file the set came from
    - Autosave throttling on the time since the last edit

    SAVE_* events are emitted from the thread running the save task.
    """

    def __init__(
        self,
        executor: Optional[Executor] = None,
        writer: Callable[[AnnotationSet, PathLike], None] = save_asap_xml,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize save manager.

        Args:
            executor: Runs save tasks; saves run inline when None
            writer: Serializes a set to a path
            clock: Time source, must match AnnotationSet.last_modification_time
        """
        self.executor = executor
        self.writer = writer
        self.clock = clock
        self._count_lock = threading.Lock()
        self._save_count = 0

    @property
    def save_count(self) -> int:
        """Number of completed writes."""
        with self._count_lock:
            return self._save_count

    def request_save(
        self, annotation_set: AnnotationSet, path: Optional[PathLike] = None
    ) -> Optional[Future]:
        """
        Snapshot a set and write it.

        The set is marked unmodified together with the snapshot, on the
        calling thread. Edits made after this point flag it again; a skipped
        or failed save restores the flag.

        Args:
            annotation_set: Live set
            path: Destination, defaults to the file the set was loaded from

        Returns:
            Future of the save task (resolving to True if it wrote the file),
            or None when the save ran inline

        Raises:
            ValueError: If no path is given and the set has no filename
        """
        if path is None:
            path = annotation_set.filename
        if path is None:
            raise ValueError("No file name to save the annotations to")
        annotation_set.filename = str(path)

        snapshot = annotation_set.copy()
        annotation_set.modified = False
        if self.executor is None:
            self._save_task(annotation_set, snapshot, path)
            return None
        return self.executor.submit(self._save_task, annotation_set, snapshot, path)

    def _save_task(
        self,
        annotation_set: AnnotationSet,
        snapshot: AnnotationSet,
        path: PathLike,
    ) -> bool:
        if not annotation_set.try_begin_save():
            logger.debug(f"Save of {path} skipped: another save is in progress")
            annotation_set.modified = True
            annotation_set.events.emit(
                AnnotationEvent(EventType.SAVE_SKIPPED, {"path": str(path)})
            )
            return False

        try:
            annotation_set.events.emit(
                AnnotationEvent(EventType.SAVE_STARTED, {"path": str(path)})
            )
            # only the file the annotations came from is kept as .orig
            if snapshot.is_loaded_file(path):
                backup_once(path)
            try:
                self.writer(snapshot, path)
            except Exception as e:
                logger.exception(f"Failed to save annotations to {path}")
                annotation_set.modified = True
                annotation_set.events.emit(
                    AnnotationEvent(
                        EventType.SAVE_FAILED, {"path": str(path), "error": str(e)}
                    )
                )
                raise

            with self._count_lock:
                self._save_count += 1
            logger.info(
                f"Saved {snapshot.active_annotation_count} annotations to {path}"
            )
            annotation_set.events.emit(
                AnnotationEvent(EventType.SAVE_COMPLETED, {"path": str(path)})
            )
            return True
        finally:
            annotation_set.end_save()

    def autosave(
        self, annotation_set: AnnotationSet, force: bool = False
    ) -> bool:
        """
        Save if there are unsaved edits and the user paused editing.

        Args:
            annotation_set: Live set
            force: Ignore the quiet period

        Returns:
            True if a save was requested
        """
        if not annotation_set.modified or annotation_set.filename is None:
            return False
        idle = self.clock() - annotation_set.last_modification_time
        if not force and idle < annotation_set.config.autosave_delay:
            return False
        self.request_save(annotation_set)
        return True
