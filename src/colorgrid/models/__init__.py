"""
Data Models
===========

Re-exports the data types shared across the triage pipeline.

Models:
    Detection:
        - ColorRange: Inclusive per-channel color bounds
        - GridCell: One cell of the 3x3 partition
        - CellMatch: Cell containing the target color
        - ScanResult: Outcome of scanning one frame

    Codes:
        - SpinnakerError, ImageStatus: Driver code tables
        - ExitCode: CLI exit status
"""

from colorgrid.models.codes import (
    ExitCode,
    ImageStatus,
    SpinnakerError,
    error_name,
    status_name,
)
from colorgrid.models.detection import CellMatch, ColorRange, GridCell, ScanResult

__all__ = [
    # Detection
    "ColorRange",
    "GridCell",
    "CellMatch",
    "ScanResult",
    # Codes
    "SpinnakerError",
    "ImageStatus",
    "ExitCode",
    "error_name",
    "status_name",
]
