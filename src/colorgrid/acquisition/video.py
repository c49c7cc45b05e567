"""
OpenCV Frame Source
===================

Frame source backed by cv2.VideoCapture.

Opens either a capture device (by index) or a video file. Device
sources run until stopped; file sources raise EndOfStream at the end
of the file unless looping is enabled.

A failed read on a device is a transient acquisition error and is
retried by the triage loop, matching the behavior of the industrial
camera source.
"""

import logging
from typing import Optional

import cv2

from colorgrid.acquisition.base import ArrayFrame
from colorgrid.errors import CameraError, EndOfStream, FrameAcquisitionError


logger = logging.getLogger(__name__)


class VideoFrameSource:
    """
    OpenCV capture device or video file.

    Attributes:
        index: Capture device index (used when path is None)
        path: Video file path
        loop: Rewind the file instead of raising EndOfStream
    """

    def __init__(
        self,
        index: int = 0,
        path: Optional[str] = None,
        loop: bool = False,
    ) -> None:
        self.index = index
        self.path = path
        self.loop = loop
        self._cap: Optional[cv2.VideoCapture] = None
        self._frame_id = 0

    @property
    def device_serial(self) -> str:
        # Capture devices expose no serial number
        return ""

    @property
    def is_file(self) -> bool:
        return self.path is not None

    def begin_acquisition(self) -> None:
        target = self.path if self.is_file else self.index
        self._cap = cv2.VideoCapture(target)
        if not self._cap.isOpened():
            self._cap = None
            raise CameraError(f"Unable to open video source {target!r}")
        logger.info(f"Video source opened: {target!r}")

    def next_frame(self) -> ArrayFrame:
        if self._cap is None:
            raise FrameAcquisitionError("Video source is not open")

        ok, frame = self._cap.read()
        if not ok or frame is None:
            if not self.is_file:
                raise FrameAcquisitionError(f"Frame capture failed on device {self.index}")
            if not self.loop:
                raise EndOfStream(f"End of video file {self.path}")
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, frame = self._cap.read()
            if not ok or frame is None:
                raise FrameAcquisitionError(f"Unable to rewind video file {self.path}")

        result = ArrayFrame(frame, frame_id=self._frame_id)
        self._frame_id += 1
        return result

    def end_acquisition(self) -> None:
        if self._cap is not None:
            try:
                self._cap.release()
            except cv2.error as e:
                logger.warning(f"Unable to release video source: {e}")
            self._cap = None
