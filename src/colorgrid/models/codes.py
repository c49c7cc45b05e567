"""
Status Codes
============

Fixed numeric code tables used in diagnostics.

Every non-success code that reaches the user is printed together with
its human-readable name. Names are looked up here so that the lookup
works even when the vendor SDK is not installed.

Tables:
    - SpinnakerError: driver error codes (spinError)
    - ImageStatus: per-image acquisition status (spinImageStatus)
    - ExitCode: process exit status of the triage CLI
"""

from enum import IntEnum


UNKNOWN_NAME = "???"


class SpinnakerError(IntEnum):
    """Spinnaker driver error codes."""

    SPINNAKER_ERR_SUCCESS = 0

    SPINNAKER_ERR_ERROR = -1001
    SPINNAKER_ERR_NOT_INITIALIZED = -1002
    SPINNAKER_ERR_NOT_IMPLEMENTED = -1003
    SPINNAKER_ERR_RESOURCE_IN_USE = -1004
    SPINNAKER_ERR_ACCESS_DENIED = -1005
    SPINNAKER_ERR_INVALID_HANDLE = -1006
    SPINNAKER_ERR_INVALID_ID = -1007
    SPINNAKER_ERR_NO_DATA = -1008
    SPINNAKER_ERR_INVALID_PARAMETER = -1009
    SPINNAKER_ERR_IO = -1010
    SPINNAKER_ERR_TIMEOUT = -1011
    SPINNAKER_ERR_ABORT = -1012
    SPINNAKER_ERR_INVALID_BUFFER = -1013
    SPINNAKER_ERR_NOT_AVAILABLE = -1014
    SPINNAKER_ERR_INVALID_ADDRESS = -1015
    SPINNAKER_ERR_BUFFER_TOO_SMALL = -1016
    SPINNAKER_ERR_INVALID_INDEX = -1017
    SPINNAKER_ERR_PARSING_CHUNK_DATA = -1018
    SPINNAKER_ERR_INVALID_VALUE = -1019
    SPINNAKER_ERR_RESOURCE_EXHAUSTED = -1020
    SPINNAKER_ERR_OUT_OF_MEMORY = -1021
    SPINNAKER_ERR_BUSY = -1022

    # GenICam errors
    GENICAM_ERR_INVALID_ARGUMENT = -2001
    GENICAM_ERR_OUT_OF_RANGE = -2002
    GENICAM_ERR_PROPERTY = -2003
    GENICAM_ERR_RUN_TIME = -2004
    GENICAM_ERR_LOGICAL = -2005
    GENICAM_ERR_ACCESS = -2006
    GENICAM_ERR_TIMEOUT = -2007
    GENICAM_ERR_DYNAMIC_CAST = -2008
    GENICAM_ERR_GENERIC = -2009
    GENICAM_ERR_BAD_ALLOCATION = -2010

    # Image processing errors
    SPINNAKER_ERR_IM_CONVERT_FAILED = -3001
    SPINNAKER_ERR_IM_COPY_FAILED = -3002
    SPINNAKER_ERR_IM_MALLOC_FAILED = -3003
    SPINNAKER_ERR_IM_NOT_SUPPORTED = -3004


class ImageStatus(IntEnum):
    """
    Completion status reported for an acquired image.

    Anything other than IMAGE_NO_ERROR accompanies an incomplete
    frame (partial sensor readout or transport loss).
    """

    IMAGE_UNKNOWN_ERROR = -1
    IMAGE_NO_ERROR = 0
    IMAGE_CRC_CHECK_FAILED = 1
    IMAGE_DATA_OVERFLOW = 2
    IMAGE_MISSING_PACKETS = 3
    IMAGE_LEADER_BUFFER_SIZE_INCONSISTENT = 4
    IMAGE_TRAILER_BUFFER_SIZE_INCONSISTENT = 5
    IMAGE_PACKETID_INCONSISTENT = 6
    IMAGE_MISSING_LEADER = 7
    IMAGE_MISSING_TRAILER = 8
    IMAGE_DATA_INCOMPLETE = 9
    IMAGE_INFO_INCONSISTENT = 10
    IMAGE_CHUNK_DATA_INVALID = 11
    IMAGE_NO_SYSTEM_RESOURCES = 12


class ExitCode(IntEnum):
    """
    Process exit codes for the triage CLI.

    Attributes:
        SUCCESS: Clean shutdown after full teardown
        SETUP_ERROR: Fatal SDK/setup error (system, camera list, config)
        NO_CAMERA: No camera detected
        CAMERA_ERROR: Fatal per-camera error (init, nodemap, streaming)
        TRIAGE_FAILURE: Unexpected failure inside the triage loop
        PERMISSION_DENIED: Output directories are not writable
    """

    SUCCESS = 0
    SETUP_ERROR = 1
    NO_CAMERA = 2
    CAMERA_ERROR = 3
    TRIAGE_FAILURE = 4
    PERMISSION_DENIED = 5


def error_name(code: int) -> str:
    """Return the driver error name for `code`, or '???' if unknown."""
    try:
        return SpinnakerError(code).name
    except ValueError:
        return UNKNOWN_NAME


def status_name(code: int) -> str:
    """Return the image status name for `code`, or '???' if unknown."""
    try:
        return ImageStatus(code).name
    except ValueError:
        return UNKNOWN_NAME
