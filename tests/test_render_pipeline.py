"""
Unit tests for the demo reel render pipeline.

Tests end-to-end rendering, error handling, progress, watermarks and the
config-driven RenderEngine.
"""

import io
import json
import logging
import threading
import time
import pytest
import numpy as np
import soundfile as sf
from unittest.mock import patch
from demoreel.context import RenderingContext
from demoreel.errors import DecodeError, InputError, RenderCancelledError
from demoreel.config import Config
from demoreel.render import render as render_module
from demoreel.render.render import RenderEngine, RenderResult, Track, create_demo_mix

SR = 44100


@pytest.fixture
def quiet_tracks(make_audio):
    """Three quiet mono tracks of 3s, 1s and 2s."""
    return [
        Track("t1", make_audio(3.0), "first.wav"),
        Track("t2", make_audio(1.0), "second.wav"),
        Track("t3", make_audio(2.0), "third.wav"),
    ]


def _wav_frames(wav: bytes) -> int:
    return sf.info(io.BytesIO(wav)).frames


class TestCreateDemoMix:
    """Test end-to-end rendering."""

    def test_empty_tracks_raise_before_decode(self):
        """No decode or allocation happens for an empty list."""
        with patch("demoreel.render.render.decode_audio") as mock_decode, \
                patch("demoreel.render.render.mix_timeline") as mock_mix:
            with pytest.raises(InputError):
                create_demo_mix([])

        mock_decode.assert_not_called()
        mock_mix.assert_not_called()

    def test_single_track_defaults(self, make_audio):
        """10s track: total 10s, fade falls monotonically to zero."""
        result = create_demo_mix([Track("solo", make_audio(10.0), "solo.wav")])

        assert isinstance(result, RenderResult)
        assert result.total_duration == pytest.approx(10.0)
        assert result.buffer.num_channels == 2
        assert result.buffer.frames == 441000
        assert _wav_frames(result.wav) == 441000

        fade = result.buffer.channel(0)[int(9.5 * SR):]
        assert np.all(np.diff(fade) <= 0)
        assert fade[0] == pytest.approx(0.05, rel=1e-3)
        assert fade[-1] < 1e-4

    def test_total_duration_and_wav_length(self, quiet_tracks):
        result = create_demo_mix(quiet_tracks)

        expected = 3.0 + 1.0 + 2.0 + 0.3 * 2
        assert result.total_duration == pytest.approx(expected)
        assert abs(_wav_frames(result.wav) - int(np.ceil(SR * expected))) <= 1

    def test_segment_cap_applied(self, make_audio):
        tracks = [Track("a", make_audio(4.0)), Track("b", make_audio(1.0))]
        result = create_demo_mix(tracks, segment_duration=2.0)

        assert result.total_duration == pytest.approx(2.0 + 0.3 + 1.0)

    def test_silence_between_tracks(self, quiet_tracks):
        result = create_demo_mix(quiet_tracks)
        gap = result.buffer.channel(0)[int(3.05 * SR):int(3.25 * SR)]

        assert np.all(gap == 0.0)

    def test_mono_duplicated_to_both_channels(self, quiet_tracks):
        result = create_demo_mix(quiet_tracks)
        assert np.array_equal(result.buffer.channel(0), result.buffer.channel(1))

    def test_mapping_tracks(self, make_audio):
        tracks = [{"id": "x", "source": make_audio(1.0), "name": "x.wav"}]
        result = create_demo_mix(tracks)

        assert result.total_duration == pytest.approx(1.0)

    def test_mapping_missing_source(self):
        with pytest.raises(InputError):
            create_demo_mix([{"id": "x"}])

    def test_invalid_timing_raises_before_decode(self, quiet_tracks):
        with patch("demoreel.render.render.decode_audio") as mock_decode:
            with pytest.raises(InputError):
                create_demo_mix(quiet_tracks, silence_gap=-1.0)
        mock_decode.assert_not_called()

    def test_outputs(self, quiet_tracks):
        result = create_demo_mix(quiet_tracks)
        outputs = result.outputs()

        assert set(outputs) == {"wav", "flac"}
        assert outputs["wav"][:4] == b"RIFF"
        assert outputs["flac"][:4] == b"fLaC"
        assert sf.info(io.BytesIO(outputs["flac"])).frames == result.buffer.frames

    def test_decoded_buffers_released(self, quiet_tracks):
        create_demo_mix(quiet_tracks)
        assert all(track.buffer is None for track in quiet_tracks)


class TestGains:
    """Test normalization through the pipeline."""

    def test_normalize_bounds(self, make_audio):
        tracks = [
            Track("quiet", make_audio(1.0, amplitude=0.01)),
            Track("mid", make_audio(1.0, amplitude=0.1)),
            Track("loud", make_audio(1.0, amplitude=0.9)),
        ]
        result = create_demo_mix(tracks, normalize=True)

        assert all(0.5 <= g <= 3.0 for g in result.gains)
        assert result.gains[0] == 3.0
        assert result.gains[1] == pytest.approx(1.5, rel=1e-3)
        assert result.gains[2] == 0.5
        assert tracks[1].rms == pytest.approx(0.1, rel=1e-3)

    def test_normalize_off(self, make_audio):
        tracks = [Track("quiet", make_audio(1.0, amplitude=0.01)), Track("loud", make_audio(1.0, amplitude=0.9))]
        result = create_demo_mix(tracks, normalize=False)

        assert result.gains == [1.0, 1.0]
        assert all(track.rms is None for track in tracks)

    def test_windows_assigned(self, quiet_tracks):
        create_demo_mix(quiet_tracks)
        assert [t.window.length for t in quiet_tracks] == pytest.approx([3.0, 1.0, 2.0])


class TestErrors:
    """Test fatal and recoverable failures."""

    def test_decode_failure_is_fatal(self, make_audio):
        tracks = [Track("ok", make_audio(1.0), "ok.wav"), Track("bad", b"not audio" * 50, "bad.mp3")]

        with pytest.raises(DecodeError) as exc_info:
            create_demo_mix(tracks)

        assert exc_info.value.name == "bad.mp3"

    def test_bad_tag_downgrades_to_no_tags(self, quiet_tracks, caplog):
        with caplog.at_level(logging.WARNING):
            result = create_demo_mix(quiet_tracks, tag_source=b"garbage" * 20, tag_interval=2.0)

        tag_events = [e for e in result.plan["events"] if e["kind"] == "tag"]
        assert tag_events == []
        assert "without tags" in caplog.text

    def test_empty_tag_logs_warning(self, quiet_tracks, caplog):
        """A zero-length tag is a failed tag decode, not a silent skip."""
        with caplog.at_level(logging.WARNING):
            result = create_demo_mix(quiet_tracks, tag_source=b"", tag_interval=2.0)

        assert [e for e in result.plan["events"] if e["kind"] == "tag"] == []
        assert "without tags" in caplog.text

    def test_first_failure_in_input_order_reported(self, make_audio):
        """With two corrupt tracks the earlier one is reported, even if it fails last."""
        tracks = [
            Track("a", make_audio(0.5), "a.wav"),
            Track("b", b"slow", "slow-bad.wav"),
            Track("c", b"fast", "fast-bad.wav"),
            Track("d", make_audio(0.5), "d.wav"),
        ]
        real_decode = render_module.decode_audio

        def decode(source, name, context=None):
            if name == "slow-bad.wav":
                time.sleep(0.2)
                raise DecodeError(name, "corrupt")
            if name == "fast-bad.wav":
                raise DecodeError(name, "corrupt")
            return real_decode(source, name, context)

        with patch("demoreel.render.render.decode_audio", side_effect=decode):
            with pytest.raises(DecodeError) as exc_info:
                create_demo_mix(tracks, context=RenderingContext(decode_workers=4))

        assert exc_info.value.name == "slow-bad.wav"

    def test_cancelled_context_aborts(self, quiet_tracks):
        context = RenderingContext()
        context.cancel()

        with pytest.raises(RenderCancelledError):
            create_demo_mix(quiet_tracks, context=context)


class TestWatermarks:
    """Test watermark mixing through the pipeline."""

    def test_tag_events(self, make_audio):
        tracks = [Track("a", make_audio(6.0)), Track("b", make_audio(6.0))]
        tag = make_audio(0.5, amplitude=0.02)
        result = create_demo_mix(tracks, tag_source=tag, tag_interval=4.0)

        starts = [e["start_seconds"] for e in result.plan["events"] if e["kind"] == "tag"]
        assert starts == pytest.approx([5.0, 9.0])
        assert result.total_duration == pytest.approx(12.3)

    def test_tag_audible_in_gap(self, make_audio):
        """A tag landing in silence is the only thing heard there."""
        tracks = [Track("a", make_audio(4.85, amplitude=0.0)), Track("b", make_audio(5.0, amplitude=0.0))]
        tag = make_audio(0.2, amplitude=0.05)
        result = create_demo_mix(tracks, tag_source=tag, tag_interval=30.0)

        window = result.buffer.channel(0)[int(5.01 * SR):int(5.1 * SR)]
        assert np.allclose(window, 0.05 * 0.4, rtol=1e-3)

    def test_tag_interval_zero_disables(self, quiet_tracks, make_audio):
        result = create_demo_mix(quiet_tracks, tag_source=make_audio(0.5), tag_interval=0)
        assert result.plan["tag_count"] == 0


class TestProgressAndConcurrency:
    """Test milestone reporting and parallel decode ordering."""

    def test_progress_monotonic(self, quiet_tracks):
        seen = []
        create_demo_mix(quiet_tracks, progress_callback=seen.append)

        assert seen[0] == 5
        assert seen[-1] == 100
        assert seen == sorted(seen)
        for milestone in (45, 60, 80, 90):
            assert milestone in seen

    def test_parallel_decode_keeps_order(self, make_audio):
        durations = [3.0, 0.5, 2.0, 1.0]
        tracks = [Track(f"t{i}", make_audio(d), f"track{i}") for i, d in enumerate(durations)]
        context = RenderingContext(decode_workers=4)

        result = create_demo_mix(tracks, context=context)
        events = [e for e in result.plan["events"] if e["kind"] == "track"]

        assert [e["label"] for e in events] == ["track0", "track1", "track2", "track3"]
        lengths = [e["end_seconds"] - e["start_seconds"] for e in events]
        assert lengths == pytest.approx(durations)

    def test_concurrent_renders_independent(self, make_audio):
        """Two renders on separate threads do not interfere."""
        results = {}

        def run(key, duration):
            results[key] = create_demo_mix([Track(key, make_audio(duration))])

        threads = [threading.Thread(target=run, args=("a", 1.0)), threading.Thread(target=run, args=("b", 2.0))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results["a"].total_duration == pytest.approx(1.0)
        assert results["b"].total_duration == pytest.approx(2.0)


class TestRenderEngine:
    """Test RenderEngine orchestration."""

    def test_engine_initialization(self):
        engine = RenderEngine()
        assert isinstance(engine.config, Config)
        assert engine.config.get("mix", "segment_duration_seconds") == 25.0

    def test_render_with_override(self, quiet_tracks):
        engine = RenderEngine()
        result = engine.render(quiet_tracks, segment_duration=1.0)

        assert result.total_duration == pytest.approx(3.0 + 0.6)

    def test_submit_runs_in_background(self, quiet_tracks):
        engine = RenderEngine()
        try:
            future = engine.submit(quiet_tracks)
            result = future.result(timeout=60)
        finally:
            engine.close()

        assert result.total_duration == pytest.approx(6.6)

    def test_render_files(self, make_audio, tmp_path):
        paths = []
        for name, duration in (("one.wav", 1.0), ("two.wav", 2.0)):
            path = tmp_path / name
            path.write_bytes(make_audio(duration))
            paths.append(str(path))

        engine = RenderEngine()
        outputs = engine.render_files(paths, str(tmp_path / "out"))

        wav = (tmp_path / "out" / "demo.wav").read_bytes()
        assert outputs["wav"].endswith("demo.wav")
        assert wav[8:12] == b"WAVE"
        assert (tmp_path / "out" / "demo.flac").exists()

        with open(outputs["timeline"]) as f:
            plan = json.load(f)
        assert plan["total_duration_seconds"] == pytest.approx(3.3)
        assert [t["name"] for t in plan["tracks"]] == ["one.wav", "two.wav"]

    def test_render_files_missing_path(self, tmp_path):
        engine = RenderEngine()
        with pytest.raises(InputError):
            engine.render_files([str(tmp_path / "nope.wav")], str(tmp_path / "out"))

    def test_render_files_empty(self, tmp_path):
        with pytest.raises(InputError):
            RenderEngine().render_files([], str(tmp_path))
