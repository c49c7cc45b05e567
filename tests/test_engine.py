"""
Triage Engine Tests
===================

Loop behavior: validation, conversion, release discipline, retries
and shutdown.
"""

import threading

import numpy as np
import pytest

from colorgrid.acquisition.mock import MockFrameSource
from colorgrid.errors import CameraError, FrameAcquisitionError
from colorgrid.triage import engine as engine_module
from colorgrid.triage.engine import IterationOutcome, LoopState, TriageEngine

from conftest import ScriptedSource, SpyFrame


def _engine(source, writer, color_range, **kwargs) -> TriageEngine:
    return TriageEngine(source=source, writer=writer, color_range=color_range, **kwargs)


def _detections(writer):
    return sorted(p.name for p in writer.detection_dir.iterdir())


class TestStep:
    """Single-iteration behavior."""

    def test_no_match_writes_nothing(self, writer, color_range, make_frame):
        """A frame with zero in-range pixels produces zero files."""
        frame = make_frame()
        engine = _engine(ScriptedSource([frame]), writer, color_range)

        assert engine.step() == IterationOutcome.PROCESSED
        assert _detections(writer) == []
        assert engine.stats.frames_processed == 1
        assert engine.stats.detections == 0

    def test_all_eligible_cells_saved(self, writer, color_range, make_frame):
        """A full-color frame yields exactly 6 distinct files."""
        frame = make_frame(range(9))
        engine = _engine(ScriptedSource([frame], serial="S1"), writer, color_range)

        engine.step()

        assert _detections(writer) == [
            f"Sequencer-C-S1-0 _ Frame _ {i}.png" for i in (0, 1, 2, 6, 7, 8)
        ]
        assert engine.stats.frames_with_detections == 1
        assert engine.stats.cells_scanned == 6

    def test_frame_released_and_converted_destroyed(self, writer, color_range, make_frame):
        """Every processed frame is released once and its conversion destroyed."""
        frame = make_frame([0])
        engine = _engine(ScriptedSource([frame]), writer, color_range)

        engine.step()

        assert frame.release_count == 1
        assert frame.convert_calls == 1
        assert frame.converted[0].destroyed

    def test_incomplete_frame_skipped(self, writer, color_range, make_frame, monkeypatch):
        """Incomplete frames are released without conversion or scanning."""
        scans = []
        monkeypatch.setattr(engine_module, "scan_frame", lambda *a, **k: scans.append(a))
        frame = make_frame(range(9), incomplete=True)
        engine = _engine(ScriptedSource([frame]), writer, color_range)

        assert engine.step() == IterationOutcome.INCOMPLETE
        assert frame.convert_calls == 0
        assert frame.release_count == 1
        assert scans == []
        assert _detections(writer) == []
        assert engine.stats.incomplete_frames == 1

    def test_unknown_completeness_treated_as_incomplete(self, writer, color_range, make_frame):
        frame = make_frame(range(9), fail_completeness=True)
        engine = _engine(ScriptedSource([frame]), writer, color_range)

        assert engine.step() == IterationOutcome.INCOMPLETE
        assert frame.convert_calls == 0
        assert frame.release_count == 1

    def test_dimension_failure_does_not_stop_processing(self, writer, color_range, make_frame):
        """Width/height read errors only affect logging."""
        frame = make_frame([8], fail_dimensions=True)
        engine = _engine(ScriptedSource([frame], serial="S1"), writer, color_range)

        assert engine.step() == IterationOutcome.PROCESSED
        assert _detections(writer) == ["Sequencer-C-S1-0 _ Frame _ 8.png"]

    def test_conversion_failure_scans_raw_data(self, writer, color_range, make_frame):
        """Raw 3-channel data is scanned when conversion fails."""
        frame = make_frame([2], fail_convert=True)
        engine = _engine(ScriptedSource([frame], serial="S1"), writer, color_range)

        assert engine.step() == IterationOutcome.PROCESSED
        assert engine.stats.conversion_errors == 1
        assert _detections(writer) == ["Sequencer-C-S1-0 _ Frame _ 2.png"]
        assert frame.release_count == 1

    def test_conversion_failure_without_usable_data(self, writer, color_range):
        """Unusable raw data skips the scan but still releases the frame."""
        frame = SpyFrame(np.zeros((30, 30, 3), dtype=np.float32), fail_convert=True)
        engine = _engine(ScriptedSource([frame]), writer, color_range)

        assert engine.step() == IterationOutcome.NO_PIXEL_DATA
        assert frame.release_count == 1
        assert engine.stats.frames_processed == 0

    def test_grayscale_frame_converted(self, writer, color_range):
        """Mono8 frames are converted before scanning."""
        frame = SpyFrame(np.full((90, 90), 120, dtype=np.uint8))
        engine = _engine(ScriptedSource([frame]), writer, color_range)

        assert engine.step() == IterationOutcome.PROCESSED
        assert frame.convert_calls == 1
        assert frame.converted[0].destroyed
        assert engine.stats.conversion_errors == 0

    def test_acquisition_error_is_retried(self, writer, color_range, make_frame):
        """A failed next_frame() is followed by another request."""
        frame = make_frame([0])
        source = ScriptedSource([FrameAcquisitionError("Timeout", code=-1011), frame])
        engine = _engine(source, writer, color_range)

        assert engine.step() == IterationOutcome.ACQUISITION_ERROR
        assert engine.step() == IterationOutcome.PROCESSED
        assert engine.stats.acquisition_errors == 1
        assert engine.stats.consecutive_acquisition_errors == 0
        assert engine.frame_counter == 1

    def test_unexpected_error_releases_frame(self, writer, color_range, make_frame, monkeypatch):
        """Unexpected exceptions propagate after the frame is released."""

        def _boom(*args, **kwargs):
            raise RuntimeError("scan failed")

        monkeypatch.setattr(engine_module, "scan_frame", _boom)
        frame = make_frame([0])
        engine = _engine(ScriptedSource([frame]), writer, color_range)

        with pytest.raises(RuntimeError):
            engine.step()
        assert frame.release_count == 1
        assert frame.converted[0].destroyed
        assert engine.state == LoopState.RELEASING


class TestFrameCounter:
    """Frame numbering."""

    def test_counter_skips_incomplete_frames(self, writer, color_range, make_frame):
        """Only frames that reach conversion consume a counter value."""
        frames = [
            make_frame([0]),
            make_frame([0], incomplete=True),
            make_frame([0]),
        ]
        engine = _engine(ScriptedSource(frames, serial="S1"), writer, color_range)

        engine.run()

        assert _detections(writer) == [
            "Sequencer-C-S1-0 _ Frame _ 0.png",
            "Sequencer-C-S1-1 _ Frame _ 0.png",
        ]

    def test_start_counter(self, writer, color_range, make_frame):
        engine = _engine(
            ScriptedSource([make_frame([6])], serial=""),
            writer,
            color_range,
            start_counter=41,
        )
        engine.run()
        assert _detections(writer) == ["Sequencer-C-41 _ Frame _ 6.png"]
        assert engine.stats.last_frame_name == "Sequencer-C-41"


class TestRun:
    """Full loop lifecycle."""

    def test_runs_until_end_of_stream(self, writer, color_range):
        source = MockFrameSource(hit_cells=[0, 8], color_range=color_range, frame_count=5)
        engine = _engine(source, writer, color_range)

        stats = engine.run()

        assert stats.frames_processed == 5
        assert stats.detections == 10
        assert not source.streaming
        assert engine.state == LoopState.STOPPED
        assert not engine.acquiring
        assert all(f.release_count == 1 for f in source.frames_issued)

    def test_max_frames(self, writer, color_range):
        source = MockFrameSource(color_range=color_range)
        engine = _engine(source, writer, color_range)

        stats = engine.run(max_frames=3)

        assert stats.frames_processed == 3
        assert not source.streaming

    def test_mixed_faults(self, writer, color_range):
        """Incomplete frames and transient errors do not stop the loop."""
        source = MockFrameSource(
            hit_cells=[1],
            color_range=color_range,
            incomplete_every=3,
            error_every=4,
            frame_count=9,
        )
        engine = _engine(source, writer, color_range)

        stats = engine.run()

        assert stats.frames_received == 9
        assert stats.incomplete_frames == 3
        assert stats.frames_processed == 6
        assert stats.acquisition_errors == 2
        assert len(_detections(writer)) == 6
        assert all(f.release_count == 1 for f in source.frames_issued)

    def test_stop_before_first_frame(self, writer, color_range, make_frame):
        """A set stop flag exits at the first AWAITING_FRAME."""
        stop = threading.Event()
        stop.set()
        source = ScriptedSource([make_frame([0])])
        engine = _engine(source, writer, color_range, stop_event=stop)

        stats = engine.run()

        assert stats.frames_received == 0
        assert source.begin_calls == 1
        assert source.end_calls == 1
        assert source.requests == 0

    def test_stop_during_run(self, writer, color_range, make_frame):
        """stop() takes effect at the next iteration."""
        frames = [make_frame([0]) for _ in range(5)]
        source = ScriptedSource(frames)
        engine = _engine(source, writer, color_range)

        original = source.next_frame

        def _next_and_stop():
            frame = original()
            if source.requests == 2:
                engine.stop()
            return frame

        source.next_frame = _next_and_stop
        stats = engine.run()

        assert engine.stop_requested
        assert stats.frames_processed == 2
        assert source.end_calls == 1

    def test_begin_failure_propagates(self, writer, color_range):
        """CameraError from begin_acquisition aborts the run."""
        source = MockFrameSource(color_range=color_range)
        source.begin_acquisition()
        engine = _engine(source, writer, color_range)

        with pytest.raises(CameraError):
            engine.run()

    def test_retry_backoff_interrupted_by_stop(self, writer, color_range):
        """A stop request cuts the retry backoff short."""
        stop = threading.Event()
        source = ScriptedSource([FrameAcquisitionError("Timeout", code=-1011)])
        engine = _engine(source, writer, color_range, retry_backoff_ms=60_000, stop_event=stop)

        timer = threading.Timer(0.05, stop.set)
        timer.start()
        try:
            stats = engine.run()
        finally:
            timer.cancel()

        assert stats.acquisition_errors == 1
        assert source.end_calls == 1

    def test_background_writes_drained_on_exit(self, tmp_path, color_range):
        from colorgrid.triage.persistence import DetectionWriter

        writer = DetectionWriter(tmp_path, tmp_path, image_ext="png", background=True)
        source = MockFrameSource(hit_cells=range(9), color_range=color_range, frame_count=4)
        engine = _engine(source, writer, color_range)

        engine.run()

        assert writer.pending == 0
        assert writer.files_written == 24
        assert engine.metrics()["files_written"] == 24


class TestMetrics:
    """Observability counters."""

    def test_metrics_shape(self, writer, color_range):
        engine = _engine(ScriptedSource([]), writer, color_range)
        metrics = engine.metrics()

        assert metrics["state"] == "IDLE"
        assert metrics["acquiring"] is False
        assert metrics["frames_processed"] == 0
        assert metrics["write_errors"] == 0
        assert metrics["next_frame_counter"] == 0
