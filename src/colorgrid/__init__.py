"""
ColorGrid Triage
================

Frame-acquisition and color triage pipeline for industrial cameras.

This package pulls frames from a single camera, converts them to BGR8,
splits each frame into a 3x3 grid and saves every eligible cell that
contains the target color for later review.

Components:
    - acquisition: Frame sources (Spinnaker, OpenCV, mock)
    - triage: Grid classification, naming, persistence, acquisition loop
    - config: YAML + environment configuration
    - status: Optional HTTP status endpoints

Example:
    colorgrid --config config.yaml
    colorgrid --source mock --max-frames 10
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
