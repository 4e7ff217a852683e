"""
Demo Reel Render Engine.

Decodes an ordered track list, plans gains, schedules the timeline, mixes
into one master bus, compresses it and encodes the result:
- Fatal errors abort the render; no partial output is returned
- A watermark that fails to decode is dropped with a warning
- Progress is reported at phase boundaries only
- Cancellation is honoured between phases
"""

import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor, Future, as_completed
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..analyze.decode import SampleBuffer, decode_audio
from ..analyze.loudness import measure_rms
from ..config import Config
from ..context import RenderingContext
from ..errors import (
    DecodeError,
    DemoReelError,
    InputError,
    RenderError,
    TagDecodeError,
)
from ..generate.gain import plan_gains
from ..generate.timeline import (
    DEFAULT_FADE_DURATION,
    DEFAULT_SEGMENT_DURATION,
    DEFAULT_SILENCE_GAP,
    DEFAULT_TAG_INTERVAL,
    TAG_GAIN,
    PlayWindow,
    schedule_tracks,
    schedule_watermarks,
)
from .compressor import DynamicsCompressor
from .encode import encode_flac, encode_wav
from .mixer import mix_timeline

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

# Progress milestones (percent)
PROGRESS_STARTED = 5
PROGRESS_DECODE_BASE = 10
PROGRESS_DECODE_SPAN = 30
PROGRESS_DECODED = 45
PROGRESS_SCHEDULED = 60
PROGRESS_RENDERED = 80
PROGRESS_WAV_ENCODED = 90
PROGRESS_DONE = 100

TAG_NAME = "watermark"


class Track:
    """One source recording in the reel."""

    def __init__(self, track_id: str, source: bytes, name: Optional[str] = None):
        """
        Args:
            track_id: Caller-assigned identity
            source: Encoded audio bytes (owned by the caller)
            name: Display name, used in logs and errors
        """
        self.track_id = track_id
        self.source = source
        self.name = name or track_id
        self.buffer: Optional[SampleBuffer] = None
        self.rms: Optional[float] = None
        self.gain: float = 1.0
        self.window: Optional[PlayWindow] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Track":
        """Build from {"id", "source", "name"}."""
        try:
            return cls(str(data["id"]), data["source"], data.get("name"))
        except KeyError as e:
            raise InputError(f"Track is missing required field {e}") from e

    def __repr__(self) -> str:
        return f"Track(id={self.track_id!r}, name={self.name!r}, gain={self.gain:.3f})"


class RenderResult:
    """Final mastered buffer plus its encodings and the plan that produced it."""

    def __init__(
        self,
        buffer: SampleBuffer,
        wav: bytes,
        flac: bytes,
        total_duration: float,
        gains: List[float],
        plan: Dict[str, Any],
    ):
        self.buffer = buffer
        self.wav = wav
        self.flac = flac
        self.total_duration = total_duration
        self.gains = gains
        self.plan = plan

    def outputs(self) -> Dict[str, bytes]:
        """The two distributable byte buffers, keyed by format."""
        return {"wav": self.wav, "flac": self.flac}

    def __repr__(self) -> str:
        return (
            f"RenderResult(duration={self.total_duration:.2f}s, "
            f"wav={len(self.wav)}B, flac={len(self.flac)}B)"
        )


class _ProgressReporter:
    """Forwards milestone percentages, never letting them go backwards."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback
        self.last = 0

    def __call__(self, percent: int) -> None:
        percent = max(self.last, min(PROGRESS_DONE, int(percent)))
        self.last = percent
        if self.callback is not None:
            self.callback(percent)


def _coerce_tracks(tracks: Sequence[Union[Track, Mapping[str, Any]]]) -> List[Track]:
    coerced = []
    for item in tracks:
        if isinstance(item, Track):
            coerced.append(item)
        elif isinstance(item, Mapping):
            coerced.append(Track.from_mapping(item))
        else:
            raise InputError(f"Unsupported track entry: {type(item).__name__}")
    return coerced


def _validate_timing(segment_duration: float, fade_duration: float, silence_gap: float) -> None:
    if segment_duration <= 0:
        raise InputError(f"segment_duration must be > 0, got {segment_duration}")
    if fade_duration < 0:
        raise InputError(f"fade_duration must be >= 0, got {fade_duration}")
    if silence_gap < 0:
        raise InputError(f"silence_gap must be >= 0, got {silence_gap}")


def _decode_one(track: Track, context: RenderingContext) -> SampleBuffer:
    try:
        return decode_audio(track.source, track.name, context)
    except DecodeError:
        raise
    except Exception as e:
        raise DecodeError(track.name, str(e)) from e


def _decode_tracks(
    tracks: List[Track],
    context: RenderingContext,
    progress: _ProgressReporter,
) -> List[SampleBuffer]:
    """
    Decode every track, possibly concurrently, keeping input order.

    Raises:
        DecodeError: For the first failing track in input order; decodes
            queued after a failure are cancelled
    """
    total = len(tracks)
    workers = min(context.decode_workers, total)
    progress(PROGRESS_DECODE_BASE)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="demoreel-decode") as pool:
        futures = [pool.submit(_decode_one, track, context) for track in tracks]
        position = {future: idx for idx, future in enumerate(futures)}
        done = 0
        for future in as_completed(futures):
            if future.cancelled():
                continue
            if future.exception() is not None:
                # earlier tracks keep running so the reported failure is deterministic
                for pending in futures[position[future] + 1:]:
                    pending.cancel()
                continue
            done += 1
            progress(PROGRESS_DECODE_BASE + (done * PROGRESS_DECODE_SPAN) // total)

    for future in futures:
        if not future.cancelled() and future.exception() is not None:
            error = future.exception()
            logger.error(f"Failed to decode {error.name}: {error.reason}")
            raise error

    # collect by submission order, not completion order
    return [future.result() for future in futures]


def _decode_tag(source: bytes, context: RenderingContext) -> SampleBuffer:
    try:
        return decode_audio(source, TAG_NAME, context)
    except DecodeError as e:
        raise TagDecodeError(TAG_NAME, e.reason) from e


def create_demo_mix(
    tracks: Sequence[Union[Track, Mapping[str, Any]]],
    normalize: bool = False,
    segment_duration: float = DEFAULT_SEGMENT_DURATION,
    fade_duration: float = DEFAULT_FADE_DURATION,
    silence_gap: float = DEFAULT_SILENCE_GAP,
    tag_source: Optional[bytes] = None,
    tag_interval: float = DEFAULT_TAG_INTERVAL,
    progress_callback: Optional[ProgressCallback] = None,
    context: Optional[RenderingContext] = None,
    tag_gain: float = TAG_GAIN,
) -> RenderResult:
    """
    Render an ordered track list into a mastered demo reel.

    Args:
        tracks: Track objects or {"id", "source", "name"} mappings, in output order
        normalize: Level tracks toward a common RMS before mixing
        segment_duration: Max seconds played from each track
        fade_duration: Fade-out length at the end of each track
        silence_gap: Silence between consecutive tracks
        tag_source: Optional encoded watermark clip
        tag_interval: Seconds between watermark inserts (<= 0 disables)
        progress_callback: Receives non-decreasing integer percentages
        context: Per-render context (a fresh one is created if None)
        tag_gain: Mix gain of each watermark insert

    Returns:
        RenderResult with the mastered buffer, WAV and FLAC bytes

    Raises:
        InputError: Empty track list or invalid options (before any decode)
        DecodeError: A track could not be decoded
        RenderError: Scheduling, mixing or encoding failed
        RenderCancelledError: The context was cancelled between phases
    """
    if not tracks:
        raise InputError("No tracks provided")
    _validate_timing(segment_duration, fade_duration, silence_gap)
    track_list = _coerce_tracks(tracks)

    context = context or RenderingContext()
    progress = _ProgressReporter(progress_callback)
    progress(PROGRESS_STARTED)
    logger.info(f"Starting demo render: {len(track_list)} tracks, {context}")

    try:
        context.check_cancelled("decode")
        buffers = _decode_tracks(track_list, context, progress)

        tag_buffer = None
        if tag_source is not None:
            try:
                tag_buffer = _decode_tag(tag_source, context)
            except TagDecodeError as e:
                logger.warning(f"Failed to decode tag file, proceeding without tags: {e}")

        progress(PROGRESS_DECODED)
        logger.info(f"✅ Decoded {len(buffers)} tracks")
        context.check_cancelled("scheduling")

        if normalize:
            rms_values = [measure_rms(buffer) for buffer in buffers]
            gains = plan_gains(rms_values, normalize=True)
        else:
            rms_values = [None] * len(buffers)
            gains = plan_gains(rms_values, normalize=False)

        for track, buffer, rms, gain in zip(track_list, buffers, rms_values, gains):
            track.buffer = buffer
            track.rms = rms
            track.gain = gain

        try:
            timeline = schedule_tracks(
                buffers,
                gains,
                labels=[track.name for track in track_list],
                segment_duration=segment_duration,
                fade_duration=fade_duration,
                silence_gap=silence_gap,
            )
            timeline = schedule_watermarks(timeline, tag_buffer, tag_interval, tag_gain)
        except DemoReelError:
            raise
        except Exception as e:
            raise RenderError(f"Scheduling failed: {e}") from e

        for track, event in zip(track_list, timeline.track_events):
            track.window = event.window
        progress(PROGRESS_SCHEDULED)

        context.check_cancelled("render")
        try:
            master = mix_timeline(timeline, context)
            compressed = DynamicsCompressor(context.bus, context.sample_rate).process(master)
            del master
            final = SampleBuffer(compressed, context.sample_rate)
        except MemoryError as e:
            raise RenderError(
                f"Out of memory rendering {timeline.total_duration:.1f}s master buffer"
            ) from e
        except Exception as e:
            raise RenderError(f"Render failed: {e}") from e
        progress(PROGRESS_RENDERED)

        context.check_cancelled("encode")
        try:
            wav = encode_wav(final.samples, context.sample_rate)
            progress(PROGRESS_WAV_ENCODED)
            flac = encode_flac(final.samples, context.sample_rate)
        except Exception as e:
            raise RenderError(f"Encoding failed: {e}") from e
        progress(PROGRESS_DONE)

        result = RenderResult(
            buffer=final,
            wav=wav,
            flac=flac,
            total_duration=timeline.total_duration,
            gains=list(gains),
            plan=timeline.to_dict(),
        )
    finally:
        # decoded sources never outlive the render
        for track in track_list:
            track.buffer = None

    logger.info(f"✅ Render complete: {result}")
    return result


def _generate_track_id(path: Path, source: bytes) -> str:
    """Stable track ID from file name and content."""
    digest = hashlib.sha256(path.name.encode() + b":" + source)
    return digest.hexdigest()[:16]


class RenderEngine:
    """Config-driven demo reel rendering orchestrator."""

    def __init__(self, config=None):
        """
        Initialize render engine.

        Args:
            config: Config instance (defaults if None)
        """
        if config is None:
            config = Config.defaults()
        self.config = config
        self._executor: Optional[ThreadPoolExecutor] = None
        logger.info("RenderEngine initialized")

    def render(
        self,
        tracks: Sequence[Union[Track, Mapping[str, Any]]],
        tag_source: Optional[bytes] = None,
        progress_callback: Optional[ProgressCallback] = None,
        context: Optional[RenderingContext] = None,
        **overrides: Any,
    ) -> RenderResult:
        """
        Render with config defaults, optionally overridden per call.

        Args:
            tracks: Ordered tracks
            tag_source: Optional watermark bytes
            progress_callback: Milestone callback
            context: Per-render context (a fresh one from config if None)
            **overrides: Any create_demo_mix() option

        Returns:
            RenderResult
        """
        options = self.config.mix_options()
        options.update(overrides)
        return create_demo_mix(
            tracks,
            tag_source=tag_source,
            progress_callback=progress_callback,
            context=context or self.config.context(),
            **options,
        )

    def submit(self, *args: Any, **kwargs: Any) -> Future:
        """
        Run render() on a background worker thread.

        Returns:
            Future resolving to a RenderResult (or raising its error)
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="demoreel-render")
        return self._executor.submit(self.render, *args, **kwargs)

    def close(self) -> None:
        """Shut down the background worker, waiting for running renders."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def render_files(
        self,
        paths: Sequence[str],
        output_dir: str,
        tag_path: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
        **overrides: Any,
    ) -> Dict[str, str]:
        """
        Render audio files from disk and write the outputs.

        Args:
            paths: Audio files in output order
            output_dir: Directory for demo.wav, demo.flac and timeline.json
            tag_path: Optional watermark file
            progress_callback: Milestone callback
            **overrides: Any create_demo_mix() option

        Returns:
            Dict mapping "wav", "flac" and "timeline" to written paths

        Raises:
            InputError: If no paths are given or a file cannot be read
        """
        if not paths:
            raise InputError("No tracks provided")

        tracks = []
        for path_str in paths:
            path = Path(path_str)
            try:
                source = path.read_bytes()
            except OSError as e:
                raise InputError(f"Cannot read audio file {path}: {e}") from e
            tracks.append(Track(_generate_track_id(path, source), source, path.name))

        tag_source = None
        if tag_path:
            try:
                tag_source = Path(tag_path).read_bytes()
            except OSError as e:
                logger.warning(f"Cannot read tag file {tag_path}, proceeding without tags: {e}")

        result = self.render(
            tracks,
            tag_source=tag_source,
            progress_callback=progress_callback,
            **overrides,
        )

        out_dir = Path(output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        wav_path = out_dir / "demo.wav"
        flac_path = out_dir / "demo.flac"
        plan_path = out_dir / "timeline.json"

        wav_path.write_bytes(result.wav)
        flac_path.write_bytes(result.flac)
        plan = dict(result.plan)
        plan["generated_at"] = datetime.now().isoformat()
        plan["tracks"] = [
            {"track_id": t.track_id, "name": t.name, "gain": t.gain} for t in tracks
        ]
        with open(plan_path, "w") as f:
            json.dump(plan, f, indent=2)

        logger.info(f"✅ Wrote {wav_path}, {flac_path}, {plan_path}")
        return {"wav": str(wav_path), "flac": str(flac_path), "timeline": str(plan_path)}
