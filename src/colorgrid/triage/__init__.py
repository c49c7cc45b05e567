"""
Triage Module
=============

Grid classification and the acquisition loop.

Components:
    - grid: 3x3 partition, skip policy and color classification
    - naming: Output file names and counter resumption
    - persistence: DetectionWriter (inline or background writes)
    - engine: TriageEngine acquisition loop
"""

from colorgrid.triage.grid import (
    MIDDLE_ROW,
    SkipPolicy,
    is_cell_skipped,
    partition,
    scan_frame,
)
from colorgrid.triage.naming import cell_filename, frame_filename, frame_name, resume_counter
from colorgrid.triage.persistence import DetectionWriter, PersistenceTask
from colorgrid.triage.engine import IterationOutcome, LoopState, TriageEngine, TriageStats

__all__ = [
    "MIDDLE_ROW",
    "SkipPolicy",
    "is_cell_skipped",
    "partition",
    "scan_frame",
    "cell_filename",
    "frame_filename",
    "frame_name",
    "resume_counter",
    "DetectionWriter",
    "PersistenceTask",
    "IterationOutcome",
    "LoopState",
    "TriageEngine",
    "TriageStats",
]
