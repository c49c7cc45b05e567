"""
Errors
======

Exception hierarchy for the triage pipeline.

Classes map onto how far an error is allowed to travel:

    Fatal setup      SetupError, NoCameraError, PermissionCheckError
                     -> abort the process after best-effort cleanup
    Fatal per-camera CameraError
                     -> abort the camera run, outer cleanup still runs
    Transient        FrameAcquisitionError, FrameConversionError,
                     PersistenceError
                     -> logged and absorbed inside one loop iteration
    End of stream    EndOfStream
                     -> a bounded source is exhausted, clean exit

Every error may carry the numeric driver code that caused it.
"""

from typing import Optional

from colorgrid.models.codes import ExitCode, error_name


class TriageError(Exception):
    """
    Base class for all pipeline errors.

    Attributes:
        code: Numeric driver error code, if one was reported
    """

    exit_code: ExitCode = ExitCode.TRIAGE_FAILURE

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def describe(self) -> str:
        """Message plus numeric code and code name, when a code is known."""
        if self.code is None:
            return self.message
        return f"{self.message} (error {self.code} {error_name(self.code)})"


class SetupError(TriageError):
    """Fatal setup failure before the camera run starts."""

    exit_code = ExitCode.SETUP_ERROR


class NoCameraError(SetupError):
    """No camera was detected."""

    exit_code = ExitCode.NO_CAMERA


class PermissionCheckError(SetupError):
    """Working or output directory is not writable."""

    exit_code = ExitCode.PERMISSION_DENIED


class CameraError(TriageError):
    """Fatal failure of the single-camera run."""

    exit_code = ExitCode.CAMERA_ERROR


class FrameAcquisitionError(TriageError):
    """Next frame could not be retrieved. Retried by the loop."""


class FrameConversionError(TriageError):
    """Frame could not be converted to the target pixel format."""


class PersistenceError(TriageError):
    """An output image could not be written."""


class EndOfStream(TriageError):
    """A bounded frame source has no more frames."""

    exit_code = ExitCode.SUCCESS

    def __init__(self, message: str = "Frame source exhausted") -> None:
        super().__init__(message)
