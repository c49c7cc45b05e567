"""
Detection Persistence
=====================

Writes matched cells (and optionally whole frames) to disk.

Design Rules:
    - One PersistenceTask per processed frame
    - Tasks own copies of the pixel data; nothing references the
      converted frame buffer after submission
    - Background mode uses a single worker thread; submission never
      waits for the write to finish
    - The worker queue is unbounded; a warning is logged once each time
      the backlog reaches max_pending
    - Write failures are logged and counted, never raised to the loop
    - drain() waits for outstanding tasks before shutdown
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Union

import cv2
import numpy as np

from colorgrid.errors import PersistenceError
from colorgrid.models.detection import CellMatch
from colorgrid.triage.naming import cell_filename


logger = logging.getLogger(__name__)


def write_image(path: Path, image: np.ndarray) -> None:
    """
    Encode and write one image.

    Raises:
        PersistenceError: If OpenCV cannot encode or write the file
    """
    try:
        ok = cv2.imwrite(str(path), image)
    except cv2.error as e:
        raise PersistenceError(f"Unable to save image {path}: {e}")
    if not ok:
        raise PersistenceError(f"Unable to save image {path}")


@dataclass
class PersistenceTask:
    """
    Everything needed to persist the output of one frame.

    Attributes:
        frame_name: Name of the frame (no extension)
        matches: Matched cells with their own pixel copies
        frame_image: Whole converted frame copy, when frames are saved
    """

    frame_name: str
    matches: List[CellMatch] = field(default_factory=list)
    frame_image: Optional[np.ndarray] = None

    @property
    def is_empty(self) -> bool:
        return not self.matches and self.frame_image is None


class DetectionWriter:
    """
    Persists PersistenceTasks, inline or on a worker thread.

    Attributes:
        frame_dir: Directory for whole frames
        detection_dir: Directory for matched cells
        image_ext: File extension (selects the encoder)
        background: Run writes on a worker thread
        max_pending: Backlog size that triggers a warning
        files_written: Successful writes
        write_errors: Failed writes
    """

    def __init__(
        self,
        frame_dir: Union[str, Path],
        detection_dir: Union[str, Path],
        image_ext: str = "jpg",
        background: bool = True,
        max_pending: int = 32,
    ) -> None:
        self.frame_dir = Path(frame_dir)
        self.detection_dir = Path(detection_dir)
        self.image_ext = image_ext
        self.background = background
        self.max_pending = max_pending

        self.files_written = 0
        self.write_errors = 0
        self._lock = threading.Lock()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()
        self._backlog_warned = False
        if background:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="detection-writer")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, task: PersistenceTask) -> None:
        """Persist `task`; returns immediately in background mode."""
        if task.is_empty:
            return
        if self._executor is None:
            self.write(task)
            return

        future = self._executor.submit(self.write, task)
        with self._lock:
            self._pending.add(future)
            backlog = len(self._pending)
        future.add_done_callback(self._task_done)

        if backlog < self.max_pending:
            self._backlog_warned = False
        elif not self._backlog_warned:
            self._backlog_warned = True
            logger.warning(
                f"{backlog} image writes pending, output is falling behind acquisition"
            )

    def _task_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error(f"Persistence task failed: {exc}")

    def write(self, task: PersistenceTask) -> List[Path]:
        """
        Write every image of `task` synchronously.

        Returns:
            Paths that were written successfully
        """
        written: List[Path] = []

        if task.frame_image is not None:
            path = self.frame_dir / f"{task.frame_name}.{self.image_ext}"
            if self._write_one(path, task.frame_image):
                written.append(path)
                logger.info(f"Image saved at {path.name}")

        for match in task.matches:
            path = self.detection_dir / cell_filename(task.frame_name, match.cell.index, self.image_ext)
            if self._write_one(path, match.image):
                written.append(path)
                logger.info(
                    f"Color found in cell {match.cell.index} of {task.frame_name} "
                    f"({match.pixel_count} pixels), saved {path.name}"
                )

        return written

    def _write_one(self, path: Path, image: np.ndarray) -> bool:
        try:
            write_image(path, image)
        except PersistenceError as e:
            with self._lock:
                self.write_errors += 1
            logger.warning(f"{e}. Non-fatal error.")
            return False
        with self._lock:
            self.files_written += 1
        return True

    def drain(self) -> None:
        """Wait for outstanding tasks and stop the worker."""
        if self._executor is None:
            return
        outstanding = self.pending
        if outstanding:
            logger.info(f"Waiting for {outstanding} pending write(s)...")
        self._executor.shutdown(wait=True)
        self._executor = None
