"""
ColorGrid Triage Main Application
=================================

Command-line entry point for the triage pipeline.

Startup:
    1. Load configuration (YAML + environment + CLI flags)
    2. Verify write permission on the working and output directories
    3. Open the frame source (device session, camera init)
    4. Run the acquisition loop until SIGINT/SIGTERM, source exhaustion
       or --max-frames
    5. Tear down in reverse order: drain writes, end acquisition,
       deinit camera, release camera list and system

Exit codes: see colorgrid.models.codes.ExitCode.

Usage:
    colorgrid --config config.yaml
    colorgrid --source video --video sample.mp4
    colorgrid --source mock --max-frames 20
"""

import argparse
import logging
import signal
import sys
import threading
from contextlib import ExitStack
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from colorgrid import __version__
from colorgrid.acquisition import (
    DeviceSession,
    FrameSource,
    MockFrameSource,
    SpinnakerFrameSource,
    VideoFrameSource,
)
from colorgrid.config import Settings, load_config, setup_logging
from colorgrid.errors import TriageError
from colorgrid.models.codes import ExitCode
from colorgrid.preflight import check_write_permissions
from colorgrid.triage import DetectionWriter, SkipPolicy, TriageEngine, resume_counter


logger = logging.getLogger(__name__)


# =============================================================================
# Signal Handlers
# =============================================================================

def _install_signal_handlers(stop_event: threading.Event) -> None:
    """SIGINT and SIGTERM request a graceful stop of the loop."""

    def _handle_signal(signum, frame):
        name = signal.Signals(signum).name
        if stop_event.is_set():
            logger.warning(f"Received {name} again, shutdown already in progress")
            return
        logger.info(f"Received {name}, initiating graceful shutdown...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)


# =============================================================================
# Frame Source Factory
# =============================================================================

def create_frame_source(settings: Settings, stack: ExitStack) -> FrameSource:
    """
    Create the frame source selected in config.

    Driver resources are registered on `stack` so they are released
    in reverse order when the run ends.

    Raises:
        SetupError: SDK missing or device enumeration failed
        NoCameraError: No camera detected
        CameraError: Camera could not be initialized
    """
    camera = settings.camera

    if camera.source == "mock":
        mock = camera.mock
        logger.info("Using MockFrameSource")
        return MockFrameSource(
            width=mock.width,
            height=mock.height,
            hit_cells=mock.hit_cells,
            color_range=settings.detection.color_range,
            incomplete_every=mock.incomplete_every,
            error_every=mock.error_every,
            frame_count=mock.frame_count,
        )

    if camera.source == "video":
        logger.info(f"Using VideoFrameSource: {camera.video_path or camera.camera_index}")
        source = VideoFrameSource(
            index=camera.camera_index,
            path=camera.video_path,
            loop=camera.loop_video,
        )
        stack.callback(source.end_acquisition)
        return source

    if camera.source == "spinnaker":
        session = stack.enter_context(DeviceSession())
        return stack.enter_context(
            SpinnakerFrameSource(
                session.camera(camera.camera_index),
                acquisition_mode=camera.acquisition_mode,
                grab_timeout_ms=camera.grab_timeout_ms,
            )
        )

    raise ValueError(f"Unknown frame source: {camera.source}")


# =============================================================================
# Run
# =============================================================================

def run(settings: Settings, stop_event: Optional[threading.Event] = None) -> ExitCode:
    """
    Run the triage pipeline with `settings`.

    Args:
        settings: Loaded configuration
        stop_event: Set to stop the loop (signal handlers set it)

    Returns:
        ExitCode for the process
    """
    stop_event = stop_event or threading.Event()
    output = settings.output

    # Fail before touching the camera if output cannot be written
    try:
        check_write_permissions([Path.cwd(), output.frame_dir, output.detection_dir])
    except TriageError as e:
        logger.error(e.describe())
        return e.exit_code

    try:
        with ExitStack() as stack:
            source = create_frame_source(settings, stack)

            writer = DetectionWriter(
                frame_dir=output.frame_dir,
                detection_dir=output.detection_dir,
                image_ext=output.image_ext,
                background=output.background_writes,
                max_pending=output.max_pending_writes,
            )
            stack.callback(writer.drain)

            engine = TriageEngine(
                source=source,
                writer=writer,
                color_range=settings.detection.color_range,
                skip_policy=SkipPolicy.from_lists(
                    settings.detection.skip_rows,
                    settings.detection.skip_columns,
                ),
                frame_prefix=output.frame_prefix,
                target_pixel_format=settings.camera.target_pixel_format,
                save_frames=output.save_frames,
                retry_backoff_ms=settings.acquisition.retry_backoff_ms,
                retry_warn_every=settings.acquisition.retry_warn_every,
                start_counter=resume_counter(
                    [output.frame_dir, output.detection_dir],
                    output.frame_prefix,
                    source.device_serial,
                ),
                stop_event=stop_event,
            )

            if settings.server.enabled:
                from colorgrid.status import StatusServer, create_status_app

                server = StatusServer(
                    create_status_app(engine, settings),
                    host=settings.server.host,
                    port=settings.server.port,
                )
                server.start()
                stack.callback(server.stop)

            engine.run(max_frames=settings.acquisition.max_frames)

    except TriageError as e:
        logger.error(f"{e.describe()} Aborting.")
        return e.exit_code
    except Exception as e:
        logger.exception(f"Triage failure: {e}")
        return ExitCode.TRIAGE_FAILURE

    logger.info("Done.")
    return ExitCode.SUCCESS


# =============================================================================
# Main Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="colorgrid",
        description="Scan camera frames for a target color in a 3x3 grid and save matching cells.",
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument(
        "--source",
        choices=["spinnaker", "video", "mock"],
        help="Frame source (overrides config)",
    )
    parser.add_argument("--video", help="Video file for the 'video' source")
    parser.add_argument("--camera-index", type=int, help="Camera index to open")
    parser.add_argument(
        "--max-frames",
        type=int,
        help="Stop after this many processed frames (0 = run forever)",
    )
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> None:
    """CLI flags take precedence over environment and file values."""
    if args.source:
        settings.camera.source = args.source
    if args.video:
        settings.camera.video_path = args.video
        if not args.source:
            settings.camera.source = "video"
    if args.camera_index is not None:
        settings.camera.camera_index = args.camera_index
    if args.max_frames is not None:
        settings.acquisition.max_frames = max(0, args.max_frames)
    if args.log_level:
        settings.logging.level = args.log_level


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.config and not Path(args.config).is_file():
        print(f"Config file not found: {args.config}", file=sys.stderr)
        return ExitCode.SETUP_ERROR

    try:
        settings = load_config(args.config)
    except (ValidationError, yaml.YAMLError, ValueError, OSError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return ExitCode.SETUP_ERROR

    apply_cli_overrides(settings, args)
    setup_logging(settings)
    logger.info(f"Starting colorgrid {__version__} (source={settings.camera.source})")

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    exit_code = run(settings, stop_event)
    if exit_code != ExitCode.SUCCESS:
        logger.error(f"Exiting with status {int(exit_code)} {exit_code.name}")
    return int(exit_code)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
