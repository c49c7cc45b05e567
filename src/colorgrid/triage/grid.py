"""
Grid Classification
===================

Partition a converted frame into a 3x3 grid and find the cells that
contain the target color.

Algorithm:
    1. cell size = (W // 3) x (H // 3); remainder pixels on the right
       and bottom edges are never scanned
    2. cells are indexed 0..8 row-major (column fastest)
    3. cells selected by the skip policy are not classified
    4. every other cell is masked with cv2.inRange (inclusive bounds
       on all three channels) and counted with cv2.countNonZero
    5. a cell with at least one in-range pixel is a match

Default skip policy: the middle row (cells 3, 4, 5).

Example:
    policy = SkipPolicy(rows=(1,))
    result = scan_frame(pixels, ColorRange(), policy)
    for match in result.matches:
        print(match.cell.index, match.pixel_count)
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Tuple

import cv2
import numpy as np

from colorgrid.models.detection import CellMatch, ColorRange, GridCell, ScanResult


logger = logging.getLogger(__name__)


GRID_ROWS = 3
GRID_COLUMNS = 3


@dataclass(frozen=True)
class SkipPolicy:
    """
    Grid rows and columns excluded from classification.

    Attributes:
        rows: Row indices to skip
        columns: Column indices to skip
    """

    rows: Tuple[int, ...] = (1,)
    columns: Tuple[int, ...] = ()

    @classmethod
    def from_lists(cls, rows: Iterable[int], columns: Iterable[int] = ()) -> "SkipPolicy":
        return cls(rows=tuple(rows), columns=tuple(columns))


MIDDLE_ROW = SkipPolicy()


def is_cell_skipped(cell: GridCell, policy: SkipPolicy = MIDDLE_ROW) -> bool:
    """True when `cell` is excluded from classification."""
    return cell.row in policy.rows or cell.column in policy.columns


def partition(width: int, height: int) -> List[GridCell]:
    """
    Split a width x height frame into 9 equal cells.

    Args:
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        9 GridCells in row-major order
    """
    cw = width // GRID_COLUMNS
    ch = height // GRID_ROWS
    cells = []
    for row in range(GRID_ROWS):
        for column in range(GRID_COLUMNS):
            cells.append(
                GridCell(
                    index=row * GRID_COLUMNS + column,
                    row=row,
                    column=column,
                    x=column * cw,
                    y=row * ch,
                    width=cw,
                    height=ch,
                )
            )
    return cells


def cell_view(pixels: np.ndarray, cell: GridCell) -> np.ndarray:
    """View of the cell's pixels (no copy)."""
    return pixels[cell.y:cell.y + cell.height, cell.x:cell.x + cell.width]


def count_in_range(image: np.ndarray, color_range: ColorRange) -> int:
    """Number of pixels whose three channels are all inside the range."""
    if image.size == 0:
        return 0
    lower, upper = color_range.as_arrays()
    mask = cv2.inRange(image, lower, upper)
    return int(cv2.countNonZero(mask))


def scan_frame(
    pixels: np.ndarray,
    color_range: ColorRange,
    policy: SkipPolicy = MIDDLE_ROW,
) -> ScanResult:
    """
    Classify the grid cells of one converted frame.

    Matched cells carry a copy of their pixels so the caller may
    release the frame buffer before the copies are written.

    Args:
        pixels: BGR frame, shape (H, W, 3), dtype uint8
        color_range: Target color bounds
        policy: Rows/columns excluded from classification

    Returns:
        ScanResult with all cells, scanned cells and matches
    """
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"Expected (H, W, 3) frame, got shape {pixels.shape}")

    height, width = pixels.shape[:2]
    result = ScanResult(cells=partition(width, height))

    for cell in result.cells:
        if is_cell_skipped(cell, policy):
            continue
        result.scanned.append(cell)

        sub_image = cell_view(pixels, cell)
        count = count_in_range(sub_image, color_range)
        if count > 0:
            result.matches.append(CellMatch(cell=cell, pixel_count=count, image=sub_image.copy()))
            logger.debug(f"Cell {cell.index} at {cell.origin}: {count} pixels in range")

    return result
