"""
Test Configuration
==================

Pytest fixtures and test doubles for the triage pipeline.
"""

from typing import List, Optional

import numpy as np
import pytest

from colorgrid.acquisition.base import ArrayFrame, ConvertedFrame
from colorgrid.acquisition.mock import paint_cells, range_midpoint
from colorgrid.errors import EndOfStream, FrameAcquisitionError, FrameConversionError
from colorgrid.models.detection import ColorRange
from colorgrid.triage.persistence import DetectionWriter


class SpyFrame(ArrayFrame):
    """ArrayFrame that records conversion and destroy calls."""

    def __init__(
        self,
        pixels: np.ndarray,
        frame_id: int = 0,
        incomplete: bool = False,
        fail_convert: bool = False,
        fail_completeness: bool = False,
        fail_dimensions: bool = False,
    ) -> None:
        super().__init__(pixels, frame_id=frame_id, incomplete=incomplete)
        self.fail_convert = fail_convert
        self.fail_completeness = fail_completeness
        self.fail_dimensions = fail_dimensions
        self.convert_calls = 0
        self.converted: List[ConvertedFrame] = []

    def is_incomplete(self) -> bool:
        if self.fail_completeness:
            raise FrameAcquisitionError("Unable to determine image completion.", code=-1010)
        return super().is_incomplete()

    def width(self) -> int:
        if self.fail_dimensions:
            raise FrameAcquisitionError("Unable to retrieve image width.", code=-1010)
        return super().width()

    def height(self) -> int:
        if self.fail_dimensions:
            raise FrameAcquisitionError("Unable to retrieve image height.", code=-1010)
        return super().height()

    def convert(self, target_format: str) -> ConvertedFrame:
        self.convert_calls += 1
        if self.fail_convert:
            raise FrameConversionError("Unable to convert image.", code=-3001)
        converted = super().convert(target_format)
        self.converted.append(converted)
        return converted


class ScriptedSource:
    """
    Frame source replaying a fixed script.

    Script items are frames (returned) or exceptions (raised).
    EndOfStream is raised once the script is exhausted.
    """

    def __init__(self, script: list, serial: str = "TEST01") -> None:
        self._script = list(script)
        self._serial = serial
        self.begin_calls = 0
        self.end_calls = 0
        self.requests = 0

    @property
    def device_serial(self) -> str:
        return self._serial

    def begin_acquisition(self) -> None:
        self.begin_calls += 1

    def next_frame(self):
        self.requests += 1
        if not self._script:
            raise EndOfStream()
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def end_acquisition(self) -> None:
        self.end_calls += 1


@pytest.fixture
def color_range() -> ColorRange:
    """Default target color range (reddish, BGR order)."""
    return ColorRange(lower=(17, 15, 100), upper=(50, 56, 200))


@pytest.fixture
def in_range_color(color_range):
    """A BGR color inside the target range."""
    return range_midpoint(color_range)


@pytest.fixture
def make_frame(in_range_color):
    """Factory for 300x300 frames with the given grid cells painted."""

    def _make(cells=(), width: int = 300, height: int = 300, **kwargs) -> SpyFrame:
        pixels = paint_cells(width, height, cells, in_range_color)
        return SpyFrame(pixels, **kwargs)

    return _make


@pytest.fixture
def writer(tmp_path) -> DetectionWriter:
    """Inline (synchronous) writer into tmp_path."""
    frame_dir = tmp_path / "savedframe"
    detection_dir = tmp_path / "foundedColor"
    frame_dir.mkdir()
    detection_dir.mkdir()
    return DetectionWriter(frame_dir, detection_dir, image_ext="png", background=False)


@pytest.fixture
def config_file(tmp_path):
    """Write a YAML config into tmp_path and return its path."""

    def _write(text: Optional[str] = "") -> str:
        path = tmp_path / "config.yaml"
        path.write_text(text or "")
        return str(path)

    return _write
