"""
Frame Source Contract
=====================

Interfaces between the camera driver and the triage loop.

This module defines:
    - RawFrame: one acquired image, owned by the loop for one iteration
    - ConvertedFrame: a RawFrame re-encoded as BGR8 for classification
    - FrameSource: begin/next/end acquisition lifecycle
    - ArrayFrame: RawFrame backed by a numpy array (video and mock sources)

Design Rules:
    - The loop calls release() on every RawFrame exactly once
    - release() and destroy() are idempotent
    - next_frame() blocks; transient failures raise FrameAcquisitionError,
      exhausted sources raise EndOfStream
    - end_acquisition() never raises
"""

import logging
from typing import Callable, Optional, Protocol

import cv2
import numpy as np

from colorgrid.errors import FrameConversionError
from colorgrid.models.codes import ImageStatus


logger = logging.getLogger(__name__)


BGR8 = "BGR8"


class ConvertedFrame:
    """
    Frame re-encoded into the fixed target pixel layout.

    Holds an (H, W, 3) uint8 array. `destroy()` drops the buffer and
    runs the driver release hook, if any; calling it again is a no-op.
    """

    def __init__(
        self,
        pixels: np.ndarray,
        pixel_format: str = BGR8,
        on_destroy: Optional[Callable[[], None]] = None,
    ) -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 3 or pixels.dtype != np.uint8:
            raise FrameConversionError(
                f"Converted frame must be (H, W, 3) uint8, got {pixels.shape} {pixels.dtype}"
            )
        self._pixels: Optional[np.ndarray] = pixels
        self.pixel_format = pixel_format
        self._on_destroy = on_destroy

    @property
    def pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise RuntimeError("Converted frame already destroyed")
        return self._pixels

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def destroyed(self) -> bool:
        return self._pixels is None

    def destroy(self) -> None:
        if self._pixels is None:
            return
        self._pixels = None
        if self._on_destroy is not None:
            self._on_destroy()

    def __repr__(self) -> str:
        if self._pixels is None:
            return "ConvertedFrame(destroyed)"
        return f"ConvertedFrame({self.width}x{self.height}, {self.pixel_format})"


class RawFrame(Protocol):
    """
    Protocol for one acquired image.

    Accessors may raise TriageError subclasses carrying the driver
    code; the loop treats those as degraded data, not as fatal.
    """

    pixel_format: str

    def is_incomplete(self) -> bool:
        ...

    def status(self) -> int:
        ...

    def width(self) -> int:
        ...

    def height(self) -> int:
        ...

    def data(self) -> np.ndarray:
        """Raw sample buffer as an array (may be a view)."""
        ...

    def convert(self, target_format: str) -> ConvertedFrame:
        ...

    def release(self) -> None:
        ...


class FrameSource(Protocol):
    """
    Protocol for frame sources.

    Implemented by:
        - SpinnakerFrameSource (FLIR cameras, PySpin)
        - VideoFrameSource (OpenCV capture devices and video files)
        - MockFrameSource (deterministic synthetic frames)
    """

    @property
    def device_serial(self) -> str:
        """Device identifier, empty when it cannot be read."""
        ...

    def begin_acquisition(self) -> None:
        ...

    def next_frame(self) -> RawFrame:
        ...

    def end_acquisition(self) -> None:
        ...


class ArrayFrame:
    """
    RawFrame backed by an in-memory numpy array.

    Accepts BGR (H, W, 3) or grayscale (H, W) uint8 data.

    Attributes:
        frame_id: Sequence number assigned by the source
        pixel_format: "BGR8" or "Mono8"
    """

    def __init__(
        self,
        pixels: np.ndarray,
        frame_id: int = 0,
        incomplete: bool = False,
        image_status: int = ImageStatus.IMAGE_NO_ERROR,
    ) -> None:
        self.frame_id = frame_id
        self.pixel_format = "Mono8" if pixels.ndim == 2 else BGR8
        self._pixels: Optional[np.ndarray] = pixels
        self._incomplete = incomplete
        self._status = int(image_status)
        self.release_count = 0

    def is_incomplete(self) -> bool:
        return self._incomplete

    def status(self) -> int:
        return self._status

    def width(self) -> int:
        return int(self.data().shape[1])

    def height(self) -> int:
        return int(self.data().shape[0])

    def data(self) -> np.ndarray:
        if self._pixels is None:
            raise RuntimeError(f"Frame {self.frame_id} already released")
        return self._pixels

    def convert(self, target_format: str) -> ConvertedFrame:
        if target_format != BGR8:
            raise FrameConversionError(f"Unsupported target pixel format: {target_format}")

        pixels = self.data()
        if pixels.dtype != np.uint8:
            raise FrameConversionError(f"Unsupported sample type: {pixels.dtype}")
        if pixels.ndim == 2:
            return ConvertedFrame(cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGR))
        if pixels.ndim == 3 and pixels.shape[2] == 3:
            return ConvertedFrame(pixels.copy())
        if pixels.ndim == 3 and pixels.shape[2] == 4:
            return ConvertedFrame(cv2.cvtColor(pixels, cv2.COLOR_BGRA2BGR))
        raise FrameConversionError(f"Unsupported frame shape: {pixels.shape}")

    @property
    def released(self) -> bool:
        return self._pixels is None

    def release(self) -> None:
        if self._pixels is None:
            return
        self._pixels = None
        self.release_count += 1

    def __repr__(self) -> str:
        return (
            f"ArrayFrame(frame_id={self.frame_id}, "
            f"format={self.pixel_format}, incomplete={self._incomplete})"
        )
