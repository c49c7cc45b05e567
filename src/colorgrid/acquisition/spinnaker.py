"""
Spinnaker Frame Source
======================

FLIR industrial cameras through the PySpin bindings.

Components:
    - DeviceSession: owns the Spinnaker System instance and camera list
    - SpinnakerFrameSource: one camera, continuous acquisition
    - SpinnakerFrame: RawFrame wrapper around a PySpin ImagePtr

Design Rules:
    - No process-wide handles: the session is created, passed in and
      closed explicitly (context managers)
    - Cameras are released before the camera list is cleared, and the
      list before the system instance
    - Driver exceptions are translated into the pipeline's error
      classes with the driver code attached

PySpin ships with the Spinnaker SDK, not from PyPI. When it is not
installed, requesting this source fails with a SetupError.

Example:
    with DeviceSession() as session:
        with SpinnakerFrameSource(session.camera(0)) as source:
            source.begin_acquisition()
            frame = source.next_frame()
"""

import logging
from typing import Any, Optional

import numpy as np

from colorgrid.acquisition.base import BGR8, ConvertedFrame
from colorgrid.errors import (
    CameraError,
    FrameAcquisitionError,
    FrameConversionError,
    NoCameraError,
    SetupError,
)
from colorgrid.models.codes import SpinnakerError

try:
    import PySpin
    _SPINNAKER_AVAILABLE = True
except ImportError:
    PySpin = None  # type: ignore
    _SPINNAKER_AVAILABLE = False


logger = logging.getLogger(__name__)


def _error_code(exc: Exception) -> int:
    """Driver error code carried by a SpinnakerException."""
    return int(getattr(exc, "errorcode", SpinnakerError.SPINNAKER_ERR_ERROR))


def _log_node_failure(node: str, name: str) -> None:
    logger.warning(f"Unable to get {node} ({name} {node} retrieval failed).")
    logger.warning(f"The {node} may not be available on all camera models...")


def _is_readable(node: Any) -> bool:
    return PySpin.IsAvailable(node) and PySpin.IsReadable(node)


def _is_writable(node: Any) -> bool:
    return PySpin.IsAvailable(node) and PySpin.IsWritable(node)


def log_device_info(nodemap: Any) -> None:
    """
    Log the transport-layer DeviceInformation category.

    Unreadable features are reported but never fail the run.
    """
    logger.info("*** DEVICE INFORMATION ***")
    try:
        node_info = PySpin.CCategoryPtr(nodemap.GetNode("DeviceInformation"))
        if not _is_readable(node_info):
            _log_node_failure("node", "DeviceInformation")
            return

        for feature in node_info.GetFeatures():
            node_feature = PySpin.CValuePtr(feature)
            name = node_feature.GetName()
            if _is_readable(node_feature):
                logger.info(f"{name}: {node_feature.ToString()}")
            else:
                logger.info(f"{name}: Node not readable")
    except PySpin.SpinnakerException as e:
        logger.error(f"Unable to read device information: {e} (error {_error_code(e)})")


# =============================================================================
# Session
# =============================================================================

class DeviceSession:
    """
    Explicitly owned Spinnaker System instance and camera list.

    Attributes:
        camera_count: Number of cameras detected when the session opened
    """

    def __init__(self) -> None:
        self._system: Optional[Any] = None
        self._cameras: Optional[Any] = None
        self.camera_count = 0

    def open(self) -> "DeviceSession":
        """
        Acquire the system instance and enumerate cameras.

        Raises:
            SetupError: PySpin missing, or system/camera list unavailable
            NoCameraError: No camera detected
        """
        if not _SPINNAKER_AVAILABLE:
            raise SetupError(
                "Spinnaker source requested but PySpin is not installed. "
                "Install the spinnaker-python wheel shipped with the Spinnaker SDK."
            )

        try:
            self._system = PySpin.System.GetInstance()
            version = self._system.GetLibraryVersion()
            logger.info(
                f"Spinnaker library version: "
                f"{version.major}.{version.minor}.{version.type}.{version.build}"
            )
            self._cameras = self._system.GetCameras()
            self.camera_count = self._cameras.GetSize()
        except PySpin.SpinnakerException as e:
            self.close()
            raise SetupError("Unable to retrieve camera list.", code=_error_code(e))

        logger.info(f"Number of cameras detected: {self.camera_count}")
        if self.camera_count == 0:
            self.close()
            raise NoCameraError("Not enough cameras!")
        return self

    def camera(self, index: int = 0) -> Any:
        """Camera handle at `index` in the enumerated list."""
        if self._cameras is None:
            raise SetupError("Device session is not open")
        if index >= self.camera_count:
            raise NoCameraError(
                f"Camera index {index} requested but only {self.camera_count} detected"
            )
        try:
            return self._cameras.GetByIndex(index)
        except PySpin.SpinnakerException as e:
            raise CameraError("Unable to retrieve camera from list.", code=_error_code(e))

    def close(self) -> None:
        """Clear the camera list and release the system instance."""
        if self._cameras is not None:
            try:
                self._cameras.Clear()
            except PySpin.SpinnakerException as e:
                logger.error(f"Unable to clear camera list. (error {_error_code(e)})")
            self._cameras = None
        if self._system is not None:
            try:
                self._system.ReleaseInstance()
            except PySpin.SpinnakerException as e:
                logger.error(f"Unable to release system instance. (error {_error_code(e)})")
            self._system = None

    def __enter__(self) -> "DeviceSession":
        return self.open()

    def __exit__(self, *args) -> None:
        self.close()


# =============================================================================
# Frames
# =============================================================================

class SpinnakerFrame:
    """RawFrame wrapper around an image returned by GetNextImage()."""

    def __init__(self, image: Any, processor: Any) -> None:
        self._image = image
        self._processor = processor
        self._released = False

    @property
    def pixel_format(self) -> str:
        try:
            return self._image.GetPixelFormatName()
        except PySpin.SpinnakerException:
            return "unknown"

    def is_incomplete(self) -> bool:
        try:
            return bool(self._image.IsIncomplete())
        except PySpin.SpinnakerException as e:
            raise FrameAcquisitionError(
                "Unable to determine image completion.", code=_error_code(e)
            )

    def status(self) -> int:
        try:
            return int(self._image.GetImageStatus())
        except PySpin.SpinnakerException as e:
            raise FrameAcquisitionError("Unable to retrieve image status.", code=_error_code(e))

    def width(self) -> int:
        try:
            return int(self._image.GetWidth())
        except PySpin.SpinnakerException as e:
            raise FrameAcquisitionError("Unable to retrieve image width.", code=_error_code(e))

    def height(self) -> int:
        try:
            return int(self._image.GetHeight())
        except PySpin.SpinnakerException as e:
            raise FrameAcquisitionError("Unable to retrieve image height.", code=_error_code(e))

    def data(self) -> np.ndarray:
        return self._image.GetNDArray()

    def convert(self, target_format: str = BGR8) -> ConvertedFrame:
        pixel_format = getattr(PySpin, f"PixelFormat_{target_format}", None)
        if pixel_format is None:
            raise FrameConversionError(f"Unsupported target pixel format: {target_format}")
        try:
            converted = self._processor.Convert(self._image, pixel_format)
            pixels = converted.GetNDArray()
        except PySpin.SpinnakerException as e:
            raise FrameConversionError("Unable to convert image.", code=_error_code(e))

        holder = [converted]
        return ConvertedFrame(pixels, pixel_format=target_format, on_destroy=holder.clear)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._image.Release()
        except PySpin.SpinnakerException as e:
            logger.warning(f"Unable to release image. Non-fatal error {_error_code(e)}")


# =============================================================================
# Source
# =============================================================================

class SpinnakerFrameSource:
    """
    Single FLIR camera in continuous acquisition.

    open() reads device information, initializes the camera and
    retrieves the serial number. close() deinitializes the camera and
    drops the handle so the session can be released.

    Attributes:
        acquisition_mode: AcquisitionMode entry set before streaming
        grab_timeout_ms: Timeout of one GetNextImage() call
    """

    def __init__(
        self,
        camera: Any,
        acquisition_mode: str = "Continuous",
        grab_timeout_ms: int = 1000,
    ) -> None:
        self._cam = camera
        self.acquisition_mode = acquisition_mode
        self.grab_timeout_ms = grab_timeout_ms
        self._nodemap: Optional[Any] = None
        self._serial = ""
        self._initialized = False
        self._streaming = False
        self._processor = PySpin.ImageProcessor()
        self._processor.SetColorProcessing(
            PySpin.SPINNAKER_COLOR_PROCESSING_ALGORITHM_HQ_LINEAR
        )

    @property
    def device_serial(self) -> str:
        return self._serial

    def open(self) -> "SpinnakerFrameSource":
        try:
            nodemap_tldevice = self._cam.GetTLDeviceNodeMap()
        except PySpin.SpinnakerException as e:
            logger.error(f"Unable to retrieve TL device nodemap. (error {_error_code(e)})")
            nodemap_tldevice = None
        if nodemap_tldevice is not None:
            log_device_info(nodemap_tldevice)

        try:
            self._cam.Init()
            self._initialized = True
        except PySpin.SpinnakerException as e:
            # __exit__ never runs when __enter__ fails
            self._close_quietly()
            raise CameraError("Unable to initialize camera.", code=_error_code(e))

        try:
            self._nodemap = self._cam.GetNodeMap()
        except PySpin.SpinnakerException as e:
            self._close_quietly()
            raise CameraError("Unable to retrieve GenICam nodemap.", code=_error_code(e))

        if nodemap_tldevice is not None:
            self._serial = self._read_serial(nodemap_tldevice)
        return self

    def _read_serial(self, nodemap_tldevice: Any) -> str:
        """Device serial number, or "" when it cannot be read."""
        try:
            node_serial = PySpin.CStringPtr(nodemap_tldevice.GetNode("DeviceSerialNumber"))
            if not _is_readable(node_serial):
                _log_node_failure("node", "DeviceSerialNumber")
                return ""
            serial = node_serial.GetValue().strip()
        except PySpin.SpinnakerException as e:
            logger.warning(f"Unable to read device serial number. (error {_error_code(e)})")
            return ""
        logger.info(f"Device serial number retrieved as {serial}...")
        return serial

    def _set_acquisition_mode(self) -> None:
        mode = self.acquisition_mode
        try:
            node_mode = PySpin.CEnumerationPtr(self._nodemap.GetNode("AcquisitionMode"))
            if not (_is_readable(node_mode) and _is_writable(node_mode)):
                raise CameraError(
                    f"Unable to set acquisition mode to {mode} (node retrieval).",
                    code=SpinnakerError.SPINNAKER_ERR_ACCESS_DENIED,
                )

            node_entry = node_mode.GetEntryByName(mode)
            if node_entry is None or not _is_readable(node_entry):
                raise CameraError(
                    f"Unable to set acquisition mode to {mode} (entry retrieval).",
                    code=SpinnakerError.SPINNAKER_ERR_ACCESS_DENIED,
                )

            node_mode.SetIntValue(node_entry.GetValue())
        except PySpin.SpinnakerException as e:
            raise CameraError(f"Unable to set acquisition mode to {mode}.", code=_error_code(e))
        logger.info(f"Acquisition mode set to {mode}...")

    def begin_acquisition(self) -> None:
        if not self._initialized:
            raise CameraError("Camera is not initialized")
        self._set_acquisition_mode()
        try:
            self._cam.BeginAcquisition()
        except PySpin.SpinnakerException as e:
            raise CameraError("Unable to begin image acquisition.", code=_error_code(e))
        self._streaming = True
        logger.info("Acquiring images...")

    def next_frame(self) -> SpinnakerFrame:
        try:
            image = self._cam.GetNextImage(self.grab_timeout_ms)
        except PySpin.SpinnakerException as e:
            raise FrameAcquisitionError("Unable to get next image.", code=_error_code(e))
        return SpinnakerFrame(image, self._processor)

    def end_acquisition(self) -> None:
        if not self._streaming:
            return
        self._streaming = False
        try:
            self._cam.EndAcquisition()
        except PySpin.SpinnakerException as e:
            logger.warning(f"Unable to end acquisition. Non-fatal error {_error_code(e)}")

    def close(self) -> None:
        """
        Deinitialize the camera and drop the handle.

        Raises:
            CameraError: If deinitialization fails
        """
        self.end_acquisition()
        try:
            if self._initialized:
                self._cam.DeInit()
        except PySpin.SpinnakerException as e:
            raise CameraError("Unable to deinitialize camera.", code=_error_code(e))
        finally:
            self._initialized = False
            self._nodemap = None
            self._cam = None

    def __enter__(self) -> "SpinnakerFrameSource":
        return self.open()

    def _close_quietly(self) -> None:
        try:
            self.close()
        except CameraError as e:
            logger.error(e.describe())

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self._close_quietly()
        else:
            self.close()
