"""
Acquisition Module
==================

Frame sources for the triage loop.

Components:
    - FrameSource / RawFrame: Protocols consumed by the triage engine
    - ConvertedFrame: BGR8 frame used for classification
    - SpinnakerFrameSource: FLIR cameras via PySpin (production)
    - VideoFrameSource: OpenCV devices and video files
    - MockFrameSource: Deterministic synthetic frames

Design Philosophy:
    The triage engine only sees the FrameSource protocol. Driver
    handles and their lifecycle stay inside this package.
"""

from colorgrid.acquisition.base import (
    BGR8,
    ArrayFrame,
    ConvertedFrame,
    FrameSource,
    RawFrame,
)
from colorgrid.acquisition.mock import MockFrameSource
from colorgrid.acquisition.video import VideoFrameSource
from colorgrid.acquisition.spinnaker import (
    DeviceSession,
    SpinnakerFrameSource,
    _SPINNAKER_AVAILABLE,
)

__all__ = [
    "BGR8",
    "ArrayFrame",
    "ConvertedFrame",
    "FrameSource",
    "RawFrame",
    "MockFrameSource",
    "VideoFrameSource",
    "DeviceSession",
    "SpinnakerFrameSource",
    "_SPINNAKER_AVAILABLE",
]
