"""
Detection Models
================

Data types for grid partitioning and color classification.

Core Concepts:
    - ColorRange: inclusive per-channel bounds of the target color
    - GridCell: one of the 9 cells of a 3x3 grid partition
    - CellMatch: a grid cell with at least one pixel inside the range
    - ScanResult: outcome of scanning one converted frame

Channel order follows the converted frame (BGR).

Example:
    from colorgrid.models.detection import ColorRange

    red = ColorRange(lower=(17, 15, 100), upper=(50, 56, 200))
    print(red.contains((30, 30, 150)))   # True
"""

from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


Channels = Tuple[int, int, int]


class ColorRange(BaseModel):
    """
    Inclusive lower/upper bound triple over the 3 color channels.

    Immutable once built. A pixel is inside the range when every
    channel satisfies lower[i] <= value[i] <= upper[i].

    Attributes:
        lower: Lower bound per channel (B, G, R)
        upper: Upper bound per channel (B, G, R)
    """

    model_config = ConfigDict(frozen=True)

    lower: Channels = Field(
        default=(17, 15, 100),
        description="Inclusive lower bound per channel (B, G, R)",
    )
    upper: Channels = Field(
        default=(50, 56, 200),
        description="Inclusive upper bound per channel (B, G, R)",
    )

    @field_validator("lower", "upper")
    @classmethod
    def _channel_values_in_byte_range(cls, value: Channels) -> Channels:
        for channel in value:
            if not 0 <= channel <= 255:
                raise ValueError(f"channel value {channel} outside 0..255")
        return value

    @model_validator(mode="after")
    def _lower_not_above_upper(self) -> "ColorRange":
        for lo, hi in zip(self.lower, self.upper):
            if lo > hi:
                raise ValueError(
                    f"lower bound {self.lower} exceeds upper bound {self.upper}"
                )
        return self

    def contains(self, pixel: Channels) -> bool:
        """Check a single pixel against the range."""
        return all(lo <= v <= hi for lo, v, hi in zip(self.lower, pixel, self.upper))

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """Bounds as uint8 arrays, the form cv2.inRange expects."""
        return (
            np.array(self.lower, dtype=np.uint8),
            np.array(self.upper, dtype=np.uint8),
        )


@dataclass(frozen=True, slots=True)
class GridCell:
    """
    One cell of the 3x3 grid partition.

    Attributes:
        index: Linear index 0..8 in row-major order
        row: Row index 0..2
        column: Column index 0..2
        x: Left edge in pixels
        y: Top edge in pixels
        width: Cell width in pixels (W // 3)
        height: Cell height in pixels (H // 3)
    """

    index: int
    row: int
    column: int
    x: int
    y: int
    width: int
    height: int

    @property
    def origin(self) -> Tuple[int, int]:
        return (self.x, self.y)

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(slots=True)
class CellMatch:
    """
    A cell that contains the target color.

    `image` is an owned copy of the cell's pixels, safe to hand to a
    writer thread after the frame buffer is released.
    """

    cell: GridCell
    pixel_count: int
    image: np.ndarray

    def __repr__(self) -> str:
        return (
            f"CellMatch(index={self.cell.index}, "
            f"origin={self.cell.origin}, pixels={self.pixel_count})"
        )


@dataclass(slots=True)
class ScanResult:
    """
    Outcome of scanning one converted frame.

    Attributes:
        cells: All 9 cells of the partition
        scanned: Cells that were classified (skip policy applied)
        matches: Scanned cells with at least one in-range pixel
    """

    cells: List[GridCell] = field(default_factory=list)
    scanned: List[GridCell] = field(default_factory=list)
    matches: List[CellMatch] = field(default_factory=list)

    @property
    def skipped(self) -> List[GridCell]:
        scanned_ids = {c.index for c in self.scanned}
        return [c for c in self.cells if c.index not in scanned_ids]

    @property
    def scanned_area(self) -> int:
        return sum(c.area for c in self.scanned)

    @property
    def has_detection(self) -> bool:
        return bool(self.matches)
