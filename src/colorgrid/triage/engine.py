"""
Triage Engine
=============

The acquisition loop: pull a frame, validate it, convert it, scan
the grid, hand matches to the writer, release the buffers.

Loop States:
    AWAITING_FRAME -> VALIDATING -> CONVERTING -> SCANNING
        -> PERSISTING -> RELEASING -> AWAITING_FRAME
    VALIDATING -> RELEASING          (incomplete or failed frame)

Design Rules:
    - The raw frame is released exactly once per iteration, on every
      path, and the converted frame is destroyed before the iteration
      ends
    - Transient errors (next frame, completeness check, conversion,
      save, release) are logged and absorbed inside the iteration
    - Fatal errors (CameraError from begin_acquisition, unexpected
      exceptions) propagate after the iteration has released its frame
    - Acquisition failures are retried immediately unless a backoff is
      configured
    - The cancellation flag is checked at the top of AWAITING_FRAME;
      pending writes are drained and acquisition ended on exit

Example:
    engine = TriageEngine(source, writer, ColorRange())
    stats = engine.run()
"""

import logging
import threading
from enum import Enum
from typing import Optional

import cv2
import numpy as np

from colorgrid.acquisition.base import BGR8, ConvertedFrame, FrameSource, RawFrame
from colorgrid.errors import (
    EndOfStream,
    FrameAcquisitionError,
    FrameConversionError,
    TriageError,
)
from colorgrid.models.codes import status_name
from colorgrid.models.detection import ColorRange, ScanResult
from colorgrid.triage.grid import MIDDLE_ROW, SkipPolicy, scan_frame
from colorgrid.triage.naming import frame_name
from colorgrid.triage.persistence import DetectionWriter, PersistenceTask


logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """States of the acquisition loop."""

    IDLE = "IDLE"
    AWAITING_FRAME = "AWAITING_FRAME"
    VALIDATING = "VALIDATING"
    CONVERTING = "CONVERTING"
    SCANNING = "SCANNING"
    PERSISTING = "PERSISTING"
    RELEASING = "RELEASING"
    STOPPED = "STOPPED"


class IterationOutcome(str, Enum):
    """
    Result of one loop iteration.

    Attributes:
        PROCESSED: Frame converted, scanned and handed to the writer
        INCOMPLETE: Frame incomplete or completeness unknown, discarded
        ACQUISITION_ERROR: next_frame() failed, will be retried
        NO_PIXEL_DATA: Conversion failed and no usable data remained
        CANCELLED: Stop was requested
        END_OF_STREAM: Source exhausted
    """

    PROCESSED = "PROCESSED"
    INCOMPLETE = "INCOMPLETE"
    ACQUISITION_ERROR = "ACQUISITION_ERROR"
    NO_PIXEL_DATA = "NO_PIXEL_DATA"
    CANCELLED = "CANCELLED"
    END_OF_STREAM = "END_OF_STREAM"


class TriageStats:
    """Counters for loop observability."""

    __slots__ = (
        "frames_received",
        "frames_processed",
        "incomplete_frames",
        "acquisition_errors",
        "consecutive_acquisition_errors",
        "conversion_errors",
        "release_errors",
        "cells_scanned",
        "detections",
        "frames_with_detections",
        "last_frame_name",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.frames_processed: int = 0
        self.incomplete_frames: int = 0
        self.acquisition_errors: int = 0
        self.consecutive_acquisition_errors: int = 0
        self.conversion_errors: int = 0
        self.release_errors: int = 0
        self.cells_scanned: int = 0
        self.detections: int = 0
        self.frames_with_detections: int = 0
        self.last_frame_name: Optional[str] = None

    def to_dict(self) -> dict:
        """Export counters as dict."""
        return {name: getattr(self, name) for name in self.__slots__}


class TriageEngine:
    """
    Drives acquisition, classification and persistence.

    Attributes:
        source: Frame source (begin/next/end acquisition)
        writer: DetectionWriter receiving one task per processed frame
        color_range: Target color bounds
        skip_policy: Grid rows/columns excluded from classification
        frame_prefix: Prefix of frame names
        save_frames: Also persist whole converted frames
        retry_backoff_ms: Pause after a failed next_frame() (0 = none)
        retry_warn_every: Warn every N consecutive acquisition failures
        frame_counter: Counter used for the next frame name
        stats: TriageStats
    """

    def __init__(
        self,
        source: FrameSource,
        writer: DetectionWriter,
        color_range: ColorRange,
        skip_policy: SkipPolicy = MIDDLE_ROW,
        frame_prefix: str = "Sequencer-C",
        target_pixel_format: str = BGR8,
        save_frames: bool = False,
        retry_backoff_ms: int = 0,
        retry_warn_every: int = 100,
        start_counter: int = 0,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.source = source
        self.writer = writer
        self.color_range = color_range
        self.skip_policy = skip_policy
        self.frame_prefix = frame_prefix
        self.target_pixel_format = target_pixel_format
        self.save_frames = save_frames
        self.retry_backoff_ms = retry_backoff_ms
        self.retry_warn_every = retry_warn_every
        self.frame_counter = start_counter

        self.stats = TriageStats()
        self._state = LoopState.IDLE
        self._acquiring = False
        self._stop_event = stop_event or threading.Event()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def acquiring(self) -> bool:
        """Whether acquisition has begun and not yet ended."""
        return self._acquiring

    def stop(self) -> None:
        """Request loop exit at the next AWAITING_FRAME."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def metrics(self) -> dict:
        """Loop counters plus writer counters and current state."""
        return {
            "state": self._state.value,
            "acquiring": self._acquiring,
            "next_frame_counter": self.frame_counter,
            **self.stats.to_dict(),
            "files_written": self.writer.files_written,
            "write_errors": self.writer.write_errors,
            "pending_writes": self.writer.pending,
        }

    # =========================================================================
    # Loop
    # =========================================================================

    def run(self, max_frames: int = 0) -> TriageStats:
        """
        Begin acquisition and loop until stopped.

        Args:
            max_frames: Stop after this many processed frames (0 = never)

        Returns:
            Final TriageStats

        Raises:
            CameraError: If acquisition cannot begin
        """
        self.source.begin_acquisition()
        self._acquiring = True
        logger.info("Triage loop started")

        try:
            while True:
                outcome = self.step()
                if outcome in (IterationOutcome.CANCELLED, IterationOutcome.END_OF_STREAM):
                    logger.info(f"Triage loop exiting: {outcome.value}")
                    break
                if max_frames and self.stats.frames_processed >= max_frames:
                    logger.info(f"Processed {max_frames} frame(s), stopping")
                    break
        finally:
            self._state = LoopState.STOPPED
            self.writer.drain()
            self.source.end_acquisition()
            self._acquiring = False
            logger.info(f"Triage loop stopped: {self.stats.to_dict()}")

        return self.stats

    def step(self) -> IterationOutcome:
        """Run one loop iteration."""
        self._state = LoopState.AWAITING_FRAME
        if self._stop_event.is_set():
            return IterationOutcome.CANCELLED

        try:
            frame = self.source.next_frame()
        except EndOfStream as e:
            logger.info(e.describe())
            return IterationOutcome.END_OF_STREAM
        except FrameAcquisitionError as e:
            self._on_acquisition_error(e)
            return IterationOutcome.ACQUISITION_ERROR

        self.stats.consecutive_acquisition_errors = 0
        self.stats.frames_received += 1

        converted: Optional[ConvertedFrame] = None
        try:
            self._state = LoopState.VALIDATING
            if not self._is_complete(frame):
                return IterationOutcome.INCOMPLETE
            self._log_dimensions(frame)

            self._state = LoopState.CONVERTING
            name = frame_name(self.frame_prefix, self.source.device_serial, self.frame_counter)
            self.frame_counter += 1
            converted = self._convert(frame)
            pixels = converted.pixels if converted is not None else self._best_effort_pixels(frame)
            if pixels is None:
                logger.warning(f"No usable pixel data for {name}, scan skipped")
                return IterationOutcome.NO_PIXEL_DATA

            self._state = LoopState.SCANNING
            result = scan_frame(pixels, self.color_range, self.skip_policy)

            self._state = LoopState.PERSISTING
            self.writer.submit(
                PersistenceTask(
                    frame_name=name,
                    matches=result.matches,
                    frame_image=pixels.copy() if self.save_frames else None,
                )
            )
            self._record(name, result)
            return IterationOutcome.PROCESSED
        finally:
            self._state = LoopState.RELEASING
            self._release(frame, converted)

    # =========================================================================
    # Iteration helpers
    # =========================================================================

    def _on_acquisition_error(self, error: FrameAcquisitionError) -> None:
        self.stats.acquisition_errors += 1
        self.stats.consecutive_acquisition_errors += 1
        logger.warning(f"{error.describe()} Non-fatal error.")

        consecutive = self.stats.consecutive_acquisition_errors
        if consecutive % self.retry_warn_every == 0:
            logger.warning(
                f"{consecutive} consecutive acquisition failures, "
                f"retrying with {self.retry_backoff_ms}ms backoff"
            )
        if self.retry_backoff_ms:
            self._stop_event.wait(self.retry_backoff_ms / 1000.0)

    def _is_complete(self, frame: RawFrame) -> bool:
        """False for incomplete frames and frames whose state is unknown."""
        try:
            incomplete = frame.is_incomplete()
        except TriageError as e:
            logger.warning(f"{e.describe()} Non-fatal error.")
            self.stats.incomplete_frames += 1
            return False

        if not incomplete:
            return True

        try:
            code = frame.status()
            logger.info(f"Image incomplete with image status {status_name(code)} ({code})...")
        except TriageError as e:
            logger.warning(f"{e.describe()} Non-fatal error.")
        self.stats.incomplete_frames += 1
        return False

    def _log_dimensions(self, frame: RawFrame) -> None:
        try:
            width = str(frame.width())
        except TriageError as e:
            logger.warning(e.describe())
            width = "unknown"
        try:
            height = str(frame.height())
        except TriageError as e:
            logger.warning(e.describe())
            height = "unknown"
        logger.debug(f"width  = {width}, height = {height}, format = {frame.pixel_format}")

    def _convert(self, frame: RawFrame) -> Optional[ConvertedFrame]:
        try:
            return frame.convert(self.target_pixel_format)
        except FrameConversionError as e:
            self.stats.conversion_errors += 1
            logger.warning(f"{e.describe()} Non-fatal error.")
            return None

    def _best_effort_pixels(self, frame: RawFrame) -> Optional[np.ndarray]:
        """Raw buffer usable as BGR8 after a failed conversion, if any."""
        try:
            data = frame.data()
        except Exception as e:
            logger.warning(f"Unable to read raw frame data: {e}")
            return None

        if data is None or data.dtype != np.uint8:
            return None
        if data.ndim == 3 and data.shape[2] == 3:
            logger.info("Scanning unconverted 3-channel data")
            return data
        if data.ndim == 2:
            logger.info("Scanning single-channel data expanded to 3 channels")
            return cv2.cvtColor(data, cv2.COLOR_GRAY2BGR)
        return None

    def _record(self, name: str, result: ScanResult) -> None:
        self.stats.frames_processed += 1
        self.stats.cells_scanned += len(result.scanned)
        self.stats.detections += len(result.matches)
        if result.has_detection:
            self.stats.frames_with_detections += 1
            logger.info(
                f"Frame {name}: color found in cell(s) "
                f"{[m.cell.index for m in result.matches]}"
            )
        self.stats.last_frame_name = name

    def _release(self, frame: RawFrame, converted: Optional[ConvertedFrame]) -> None:
        if converted is not None:
            try:
                converted.destroy()
            except Exception as e:
                self.stats.release_errors += 1
                logger.warning(f"Unable to destroy image. Non-fatal error: {e}")
        try:
            frame.release()
        except Exception as e:
            self.stats.release_errors += 1
            logger.warning(f"Unable to release image. Non-fatal error: {e}")
