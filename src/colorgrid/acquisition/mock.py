"""
Mock Frame Source
=================

Deterministic synthetic frames for testing and dry runs.

The mock paints a neutral background and fills selected grid cells
with a color taken from the middle of the configured ColorRange, so
every painted cell that is not skipped produces a detection.

The mock simulates:
    - Incomplete frames every Nth frame (IMAGE_MISSING_PACKETS)
    - Transient acquisition failures every Nth request
    - A bounded stream (EndOfStream after frame_count frames)

Example:
    source = MockFrameSource(width=300, height=300, hit_cells=[0, 8])
    source.begin_acquisition()
    frame = source.next_frame()
"""

import logging
from collections import deque
from typing import Iterable, Optional, Tuple

import numpy as np

from colorgrid.acquisition.base import ArrayFrame
from colorgrid.errors import CameraError, EndOfStream, FrameAcquisitionError
from colorgrid.models.codes import ImageStatus, SpinnakerError
from colorgrid.models.detection import ColorRange


logger = logging.getLogger(__name__)


BACKGROUND: Tuple[int, int, int] = (0, 0, 0)


def range_midpoint(color_range: ColorRange) -> Tuple[int, int, int]:
    """A color guaranteed to be inside the range."""
    return tuple((lo + hi) // 2 for lo, hi in zip(color_range.lower, color_range.upper))


def paint_cells(
    width: int,
    height: int,
    cells: Iterable[int],
    color: Tuple[int, int, int],
    background: Tuple[int, int, int] = BACKGROUND,
) -> np.ndarray:
    """
    Build a BGR frame with whole grid cells filled with `color`.

    Args:
        width: Frame width
        height: Frame height
        cells: Linear grid indices (0..8) to paint
        color: BGR fill color
        background: BGR background color

    Returns:
        (height, width, 3) uint8 array
    """
    frame = np.empty((height, width, 3), dtype=np.uint8)
    frame[:, :] = background
    cw, ch = width // 3, height // 3
    for index in cells:
        row, col = divmod(index, 3)
        frame[row * ch:(row + 1) * ch, col * cw:(col + 1) * cw] = color
    return frame


class MockFrameSource:
    """
    Deterministic mock frame source.

    Attributes:
        width: Frame width
        height: Frame height
        hit_cells: Grid cells painted with the target color
        incomplete_every: Every Nth frame is incomplete (0 = never)
        error_every: Every Nth request raises FrameAcquisitionError (0 = never)
        frame_count: Frames produced before EndOfStream (0 = unlimited)
        frames_issued: Most recent frames handed out (at most `history`)
    """

    def __init__(
        self,
        width: int = 300,
        height: int = 300,
        hit_cells: Iterable[int] = (0, 8),
        color_range: Optional[ColorRange] = None,
        incomplete_every: int = 0,
        error_every: int = 0,
        frame_count: int = 0,
        serial: str = "MOCK0001",
        history: int = 64,
    ) -> None:
        self.width = width
        self.height = height
        self.hit_cells = list(hit_cells)
        self.incomplete_every = incomplete_every
        self.error_every = error_every
        self.frame_count = frame_count
        self._serial = serial

        color = range_midpoint(color_range or ColorRange())
        self._template = paint_cells(width, height, self.hit_cells, color)

        self._streaming = False
        self._requests = 0
        self._produced = 0
        self.frames_issued: deque = deque(maxlen=history)

        logger.info(
            f"MockFrameSource initialized: {width}x{height}, "
            f"hit_cells={self.hit_cells}, frame_count={frame_count or 'unlimited'}"
        )

    @property
    def device_serial(self) -> str:
        return self._serial

    @property
    def streaming(self) -> bool:
        return self._streaming

    def begin_acquisition(self) -> None:
        if self._streaming:
            raise CameraError(
                "Acquisition already started",
                code=SpinnakerError.SPINNAKER_ERR_RESOURCE_IN_USE,
            )
        self._streaming = True

    def next_frame(self) -> ArrayFrame:
        if not self._streaming:
            raise FrameAcquisitionError(
                "Camera is not streaming",
                code=SpinnakerError.SPINNAKER_ERR_NOT_INITIALIZED,
            )
        if self.frame_count and self._produced >= self.frame_count:
            raise EndOfStream()

        self._requests += 1
        if self.error_every and self._requests % self.error_every == 0:
            raise FrameAcquisitionError(
                f"Synthetic grab timeout on request {self._requests}",
                code=SpinnakerError.SPINNAKER_ERR_TIMEOUT,
            )

        self._produced += 1
        incomplete = bool(self.incomplete_every and self._produced % self.incomplete_every == 0)
        frame = ArrayFrame(
            self._template.copy(),
            frame_id=self._produced - 1,
            incomplete=incomplete,
            image_status=(
                ImageStatus.IMAGE_MISSING_PACKETS if incomplete else ImageStatus.IMAGE_NO_ERROR
            ),
        )
        self.frames_issued.append(frame)
        return frame

    def end_acquisition(self) -> None:
        self._streaming = False
