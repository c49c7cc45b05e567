"""
ColorGrid Triage Configuration
==============================

This module handles configuration loading for the triage pipeline.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    COLORGRID_SOURCE           -> camera.source
    COLORGRID_CAMERA_INDEX     -> camera.camera_index
    COLORGRID_VIDEO_PATH       -> camera.video_path
    COLORGRID_LOWER            -> detection.color_range.lower  ("b,g,r")
    COLORGRID_UPPER            -> detection.color_range.upper  ("b,g,r")
    COLORGRID_RETRY_BACKOFF_MS -> acquisition.retry_backoff_ms
    COLORGRID_MAX_FRAMES       -> acquisition.max_frames
    COLORGRID_FRAME_DIR        -> output.frame_dir
    COLORGRID_DETECTION_DIR    -> output.detection_dir
    COLORGRID_IMAGE_EXT        -> output.image_ext
    COLORGRID_SERVER_ENABLED   -> server.enabled
    COLORGRID_PORT             -> server.port
    COLORGRID_LOG_LEVEL        -> logging.level

Example:
    from colorgrid.config import load_config

    settings = load_config()
    print(settings.camera.source)
    print(settings.detection.color_range.lower)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import cv2
import yaml
from pydantic import BaseModel, Field, field_validator

from colorgrid.models.detection import ColorRange


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class MockSourceConfig(BaseModel):
    """Synthetic frame source configuration."""

    width: int = Field(default=300, ge=3, description="Frame width in pixels")
    height: int = Field(default=300, ge=3, description="Frame height in pixels")
    hit_cells: List[int] = Field(
        default_factory=lambda: [0, 8],
        description="Grid cells painted with the target color",
    )
    incomplete_every: int = Field(
        default=0,
        ge=0,
        description="Every Nth frame is reported incomplete (0 = never)",
    )
    error_every: int = Field(
        default=0,
        ge=0,
        description="Every Nth request fails transiently (0 = never)",
    )
    frame_count: int = Field(
        default=0,
        ge=0,
        description="Frames to produce before exhausting (0 = unlimited)",
    )


class CameraConfig(BaseModel):
    """Frame source selection."""

    source: str = Field(
        default="spinnaker",
        description="Frame source: 'spinnaker', 'video' or 'mock'",
    )
    camera_index: int = Field(default=0, ge=0, description="Camera to open")
    video_path: Optional[str] = Field(
        default=None,
        description="Video file for the 'video' source (device index if unset)",
    )
    loop_video: bool = Field(
        default=False,
        description="Rewind the video file instead of exhausting",
    )
    acquisition_mode: str = Field(
        default="Continuous",
        description="Acquisition mode entry selected before streaming",
    )
    target_pixel_format: str = Field(
        default="BGR8",
        description="Pixel format of converted frames",
    )
    grab_timeout_ms: int = Field(
        default=1000,
        gt=0,
        description="Timeout of a single next-frame request",
    )
    mock: MockSourceConfig = Field(default_factory=MockSourceConfig)

    @field_validator("source")
    @classmethod
    def _known_source(cls, value: str) -> str:
        value = value.lower()
        if value not in ("spinnaker", "video", "mock"):
            raise ValueError(f"Unknown frame source: {value}")
        return value


class DetectionConfig(BaseModel):
    """Grid classification configuration."""

    color_range: ColorRange = Field(default_factory=ColorRange)
    skip_rows: List[int] = Field(
        default_factory=lambda: [1],
        description="Grid rows excluded from classification",
    )
    skip_columns: List[int] = Field(
        default_factory=list,
        description="Grid columns excluded from classification",
    )

    @field_validator("skip_rows", "skip_columns")
    @classmethod
    def _grid_indices(cls, value: List[int]) -> List[int]:
        for index in value:
            if not 0 <= index <= 2:
                raise ValueError(f"grid index {index} outside 0..2")
        return value


class AcquisitionConfig(BaseModel):
    """Acquisition loop configuration."""

    retry_backoff_ms: int = Field(
        default=0,
        ge=0,
        description="Pause after a failed next-frame request (0 = retry immediately)",
    )
    retry_warn_every: int = Field(
        default=100,
        ge=1,
        description="Warn after this many consecutive acquisition failures",
    )
    max_frames: int = Field(
        default=0,
        ge=0,
        description="Stop after this many processed frames (0 = run forever)",
    )


class OutputConfig(BaseModel):
    """Output directories and naming."""

    frame_dir: str = Field(default="savedframe", description="Whole-frame output directory")
    detection_dir: str = Field(default="foundedColor", description="Matched-cell output directory")
    frame_prefix: str = Field(default="Sequencer-C", description="Frame name prefix")
    image_ext: str = Field(default="jpg", description="Image file extension")
    save_frames: bool = Field(
        default=False,
        description="Also write every processed frame to frame_dir",
    )
    background_writes: bool = Field(
        default=True,
        description="Write images on a worker thread",
    )
    max_pending_writes: int = Field(
        default=32,
        ge=1,
        description="Warn when this many background writes are queued",
    )

    @field_validator("image_ext")
    @classmethod
    def _supported_extension(cls, value: str) -> str:
        value = value.lstrip(".").lower()
        if not value:
            raise ValueError("image_ext must not be empty")
        if not cv2.haveImageWriter(f"x.{value}"):
            raise ValueError(f"No image encoder available for extension: {value}")
        return value


class ServerConfig(BaseModel):
    """Status server configuration."""

    enabled: bool = Field(default=False, description="Serve status endpoints")
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the triage pipeline.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    camera: CameraConfig = Field(default_factory=CameraConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    acquisition: AcquisitionConfig = Field(default_factory=AcquisitionConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _parse_channels(raw: str) -> List[int]:
    """Parse a "b,g,r" triple."""
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 3:
        raise ValueError(f"Expected 3 comma-separated channel values, got: {raw!r}")
    return [int(p) for p in parts]


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Camera settings
    if env_source := os.environ.get("COLORGRID_SOURCE"):
        config_data.setdefault("camera", {})["source"] = env_source
    if env_index := os.environ.get("COLORGRID_CAMERA_INDEX"):
        config_data.setdefault("camera", {})["camera_index"] = int(env_index)
    if env_video := os.environ.get("COLORGRID_VIDEO_PATH"):
        config_data.setdefault("camera", {})["video_path"] = env_video

    # Color range overrides
    if env_lower := os.environ.get("COLORGRID_LOWER"):
        config_data.setdefault("detection", {}).setdefault("color_range", {})["lower"] = _parse_channels(env_lower)
    if env_upper := os.environ.get("COLORGRID_UPPER"):
        config_data.setdefault("detection", {}).setdefault("color_range", {})["upper"] = _parse_channels(env_upper)

    # Acquisition loop
    if env_backoff := os.environ.get("COLORGRID_RETRY_BACKOFF_MS"):
        config_data.setdefault("acquisition", {})["retry_backoff_ms"] = int(env_backoff)
    if env_max := os.environ.get("COLORGRID_MAX_FRAMES"):
        config_data.setdefault("acquisition", {})["max_frames"] = int(env_max)

    # Output
    if env_frame_dir := os.environ.get("COLORGRID_FRAME_DIR"):
        config_data.setdefault("output", {})["frame_dir"] = env_frame_dir
    if env_detection_dir := os.environ.get("COLORGRID_DETECTION_DIR"):
        config_data.setdefault("output", {})["detection_dir"] = env_detection_dir
    if env_ext := os.environ.get("COLORGRID_IMAGE_EXT"):
        config_data.setdefault("output", {})["image_ext"] = env_ext

    # Status server
    if env_server := os.environ.get("COLORGRID_SERVER_ENABLED"):
        config_data.setdefault("server", {})["enabled"] = _parse_bool(env_server)
    if env_port := os.environ.get("COLORGRID_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("COLORGRID_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
        force=True,
    )
