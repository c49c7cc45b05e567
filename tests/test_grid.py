"""
Grid Classification Tests
=========================

Partition geometry, skip policy and color classification.
"""

import numpy as np
import pytest

from colorgrid.models.detection import ColorRange, GridCell
from colorgrid.triage.grid import (
    MIDDLE_ROW,
    SkipPolicy,
    count_in_range,
    is_cell_skipped,
    partition,
    scan_frame,
)
from colorgrid.acquisition.mock import paint_cells


def _blank(width: int, height: int) -> np.ndarray:
    return np.zeros((height, width, 3), dtype=np.uint8)


class TestPartition:
    """Tests for the 3x3 partition."""

    def test_300x300_origins(self):
        """300x300 gives 100x100 cells at the documented origins."""
        cells = partition(300, 300)

        assert len(cells) == 9
        assert [c.origin for c in cells] == [
            (0, 0), (100, 0), (200, 0),
            (0, 100), (100, 100), (200, 100),
            (0, 200), (100, 200), (200, 200),
        ]
        assert all(c.width == 100 and c.height == 100 for c in cells)

    def test_row_major_indices(self):
        """Indices run column-fastest within a row."""
        cells = partition(90, 60)
        assert [(c.index, c.row, c.column) for c in cells[:4]] == [
            (0, 0, 0), (1, 0, 1), (2, 0, 2), (3, 1, 0),
        ]
        assert [c.index for c in cells] == list(range(9))

    def test_remainder_pixels_excluded(self):
        """Cell size uses integer division; the last cells stop short of the edge."""
        cells = partition(302, 301)
        last = cells[-1]
        assert (last.width, last.height) == (100, 100)
        assert last.x + last.width == 300
        assert last.y + last.height == 300


class TestSkipPolicy:
    """Tests for the named skip predicate."""

    def test_default_skips_exactly_middle_row(self):
        """The default policy skips cells 3, 4 and 5 only."""
        skipped = [c.index for c in partition(300, 300) if is_cell_skipped(c)]
        assert skipped == [3, 4, 5]

    def test_first_column_of_middle_row_is_skipped(self):
        """Cell 3 is treated like the rest of the middle row."""
        cell = GridCell(index=3, row=1, column=0, x=0, y=100, width=100, height=100)
        assert is_cell_skipped(cell, MIDDLE_ROW)

    def test_column_policy(self):
        """Column skipping drops the whole column."""
        policy = SkipPolicy(rows=(), columns=(1,))
        skipped = [c.index for c in partition(300, 300) if is_cell_skipped(c, policy)]
        assert skipped == [1, 4, 7]

    def test_from_lists(self):
        """Config lists are converted to tuples."""
        policy = SkipPolicy.from_lists([1], [0, 2])
        assert policy == SkipPolicy(rows=(1,), columns=(0, 2))


class TestCountInRange:
    """Tests for inclusive color bounds."""

    def test_bounds_are_inclusive(self, color_range):
        """Pixels exactly on the lower and upper bound count."""
        image = np.array([[color_range.lower, color_range.upper]], dtype=np.uint8)
        assert count_in_range(image, color_range) == 2

    def test_single_channel_out_of_range(self, color_range):
        """One channel outside the bounds rejects the pixel."""
        b, g, r = color_range.upper
        image = np.array([[(b, g, r + 1)]], dtype=np.uint8)
        assert count_in_range(image, color_range) == 0

    def test_empty_image(self, color_range):
        """Frames smaller than 3 pixels produce empty cells."""
        assert count_in_range(np.zeros((0, 0, 3), dtype=np.uint8), color_range) == 0


class TestScanFrame:
    """Tests for full-frame classification."""

    @pytest.mark.parametrize("width,height", [(300, 300), (301, 299), (640, 480)])
    def test_scans_six_of_nine_cells(self, color_range, width, height):
        """9 cells computed, middle row skipped, 6 scanned."""
        result = scan_frame(_blank(width, height), color_range)

        assert len(result.cells) == 9
        assert [c.index for c in result.skipped] == [3, 4, 5]
        assert len(result.scanned) == 6
        assert result.scanned_area == 6 * (width // 3) * (height // 3)

    def test_no_pixels_in_range(self, color_range):
        """A frame with no in-range pixels has no matches."""
        result = scan_frame(_blank(300, 300), color_range)
        assert result.matches == []
        assert not result.has_detection

    def test_all_eligible_cells_match(self, color_range, in_range_color):
        """A frame filled with the target color matches the 6 eligible cells."""
        pixels = paint_cells(300, 300, range(9), in_range_color)
        result = scan_frame(pixels, color_range)

        assert [m.cell.index for m in result.matches] == [0, 1, 2, 6, 7, 8]
        assert all(m.pixel_count == 100 * 100 for m in result.matches)

    def test_region_in_skipped_row_only(self, color_range, in_range_color):
        """A region confined to the middle row is not reported."""
        pixels = _blank(300, 300)
        pixels[120:180, 20:280] = in_range_color
        assert scan_frame(pixels, color_range).matches == []

    def test_region_overlapping_kept_cell(self, color_range, in_range_color):
        """A region spanning cells 4 and 7 is reported for cell 7 only."""
        pixels = _blank(300, 300)
        pixels[150:210, 130:160] = in_range_color
        result = scan_frame(pixels, color_range)

        assert [m.cell.index for m in result.matches] == [7]
        assert result.matches[0].pixel_count == 10 * 30

    def test_single_pixel_match(self, color_range, in_range_color):
        """One in-range pixel is enough for a match."""
        pixels = _blank(300, 300)
        pixels[299, 299] = in_range_color
        assert [m.cell.index for m in scan_frame(pixels, color_range).matches] == [8]

    def test_remainder_region_ignored(self, color_range, in_range_color):
        """Pixels past 3 * (W // 3) are never scanned."""
        pixels = _blank(302, 302)
        pixels[:, 300:] = in_range_color
        pixels[300:, :] = in_range_color
        assert scan_frame(pixels, color_range).matches == []

    def test_match_image_is_a_copy(self, color_range, in_range_color):
        """Matched sub-images survive changes to the source buffer."""
        pixels = paint_cells(300, 300, [0], in_range_color)
        match = scan_frame(pixels, color_range).matches[0]

        pixels[:] = 0
        assert match.image.shape == (100, 100, 3)
        assert tuple(match.image[0, 0]) == tuple(in_range_color)

    def test_deterministic(self, color_range, in_range_color):
        """The same frame always yields the same matches."""
        pixels = paint_cells(300, 300, [1, 6], in_range_color)
        first = scan_frame(pixels, color_range)
        second = scan_frame(pixels, color_range)
        assert [(m.cell, m.pixel_count) for m in first.matches] == [
            (m.cell, m.pixel_count) for m in second.matches
        ]

    def test_rejects_single_channel(self, color_range):
        """Only converted 3-channel frames are accepted."""
        with pytest.raises(ValueError):
            scan_frame(np.zeros((300, 300), dtype=np.uint8), color_range)

    def test_custom_range(self):
        """A range is matched per channel in BGR order."""
        green = ColorRange(lower=(0, 200, 0), upper=(40, 255, 40))
        pixels = _blank(300, 300)
        pixels[0:10, 0:10] = (10, 250, 10)
        pixels[200:210, 200:210] = (10, 10, 250)
        assert [m.cell.index for m in scan_frame(pixels, green).matches] == [0]
