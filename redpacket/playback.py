"""
Morse audio rendering and playback.

``render_timeline`` turns a timeline into PCM samples in one go (used for
WAV downloads). ``MorsePlayer`` plays a timeline in real time on a
background thread, handing each tone to an ``AudioSink`` at its start
offset and reporting fractional progress until the timeline ends.
"""

import io
import logging
import threading
import time
import wave
from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, Optional, Union

import numpy as np

from redpacket.cipher import MorseTimeline

logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY_HZ = 700
DEFAULT_SAMPLE_RATE = 8000
AMPLITUDE = 0.5
RAMP_MS = 5

GRACE_PERIOD_MS = 100
PROGRESS_INTERVAL = 0.016  # ~60 Hz

ProgressCallback = Callable[[float], None]


def _samples_for(duration_ms: int, sample_rate: int) -> int:
    return int(round(duration_ms * sample_rate / 1000))


def render_tone(duration_ms: int, sample_rate: int = DEFAULT_SAMPLE_RATE,
                frequency: float = DEFAULT_FREQUENCY_HZ) -> np.ndarray:
    """Sine tone of exactly ``duration_ms`` with short linear ramps to avoid clicks."""
    n = _samples_for(duration_ms, sample_rate)
    if n <= 0:
        return np.zeros(0, dtype=np.float32)

    t = np.arange(n, dtype=np.float64) / sample_rate
    tone = AMPLITUDE * np.sin(2 * np.pi * frequency * t)

    ramp = min(_samples_for(RAMP_MS, sample_rate), n // 2)
    if ramp > 0:
        envelope = np.ones(n)
        envelope[:ramp] = np.linspace(0.0, 1.0, ramp, endpoint=False)
        envelope[n - ramp:] = np.linspace(1.0, 0.0, ramp)
        tone *= envelope
    return tone.astype(np.float32)


def render_timeline(timeline: MorseTimeline, sample_rate: int = DEFAULT_SAMPLE_RATE,
                    frequency: float = DEFAULT_FREQUENCY_HZ) -> np.ndarray:
    """Render a whole timeline to mono float samples in [-1, 1]."""
    buffer = np.zeros(_samples_for(timeline.total_duration, sample_rate), dtype=np.float32)
    for event in timeline.events:
        start = _samples_for(event.start, sample_rate)
        tone = render_tone(event.duration, sample_rate, frequency)
        end = min(start + len(tone), len(buffer))
        buffer[start:end] = tone[: end - start]
    return buffer


def _to_pcm16(samples: np.ndarray) -> bytes:
    return (np.clip(samples, -1.0, 1.0) * 32767).astype("<i2").tobytes()


def write_wav(samples: np.ndarray, target: Union[str, BinaryIO], sample_rate: int = DEFAULT_SAMPLE_RATE) -> None:
    """Write mono 16-bit PCM."""
    with wave.open(target, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(_to_pcm16(samples))


def timeline_to_wav_bytes(timeline: MorseTimeline, sample_rate: int = DEFAULT_SAMPLE_RATE,
                          frequency: float = DEFAULT_FREQUENCY_HZ) -> bytes:
    buf = io.BytesIO()
    write_wav(render_timeline(timeline, sample_rate, frequency), buf, sample_rate)
    return buf.getvalue()


class AudioSink(ABC):
    """Destination for tones produced during live playback."""

    @abstractmethod
    def open(self, sample_rate: int) -> None:
        """Acquire the underlying device or file."""

    @abstractmethod
    def play(self, samples: np.ndarray, start_ms: int) -> None:
        """Emit one tone scheduled ``start_ms`` after playback began."""

    @abstractmethod
    def close(self) -> None:
        """Release everything acquired by ``open``. Must be idempotent."""


class NullSink(AudioSink):
    """Discards audio. Useful headless and in tests."""

    def __init__(self):
        self.is_open = False

    def open(self, sample_rate: int) -> None:
        self.is_open = True

    def play(self, samples: np.ndarray, start_ms: int) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


class WaveFileSink(AudioSink):
    """Records live playback into a WAV file, padding the gaps with silence."""

    def __init__(self, path: str):
        self.path = path
        self._wav: Optional[wave.Wave_write] = None
        self._sample_rate = DEFAULT_SAMPLE_RATE
        self._written = 0

    def open(self, sample_rate: int) -> None:
        self._sample_rate = sample_rate
        self._written = 0
        self._wav = wave.open(self.path, "wb")
        self._wav.setnchannels(1)
        self._wav.setsampwidth(2)
        self._wav.setframerate(sample_rate)

    def play(self, samples: np.ndarray, start_ms: int) -> None:
        if self._wav is None:
            raise RuntimeError("WaveFileSink is not open")
        offset = _samples_for(start_ms, self._sample_rate)
        if offset > self._written:
            self._wav.writeframes(_to_pcm16(np.zeros(offset - self._written, dtype=np.float32)))
            self._written = offset
        self._wav.writeframes(_to_pcm16(samples))
        self._written += len(samples)

    def close(self) -> None:
        if self._wav is not None:
            self._wav.close()
            self._wav = None


class MorsePlayer:
    """
    Real-time player for Morse timelines.

    Each ``play`` opens a fresh sink from ``sink_factory`` and runs on its own
    thread. Tones are handed to the sink at their start offsets; progress is
    reported as ``elapsed / total_duration`` (capped at 1.0) roughly every
    16 ms, and playback completes ``GRACE_PERIOD_MS`` after the last tone
    ends. ``stop`` cancels immediately: no more tones, no more progress. The
    sink is closed on every exit path.

    Example::

        with MorsePlayer() as player:
            player.play(timeline, on_progress=print)
            player.wait()
    """

    def __init__(self, sink_factory: Callable[[], AudioSink] = NullSink,
                 sample_rate: int = DEFAULT_SAMPLE_RATE, frequency: float = DEFAULT_FREQUENCY_HZ,
                 grace_period_ms: int = GRACE_PERIOD_MS, progress_interval: float = PROGRESS_INTERVAL):
        self.sink_factory = sink_factory
        self.sample_rate = sample_rate
        self.frequency = frequency
        self.grace_period_ms = grace_period_ms
        self.progress_interval = progress_interval

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._cancel: Optional[threading.Event] = None
        self._finished = threading.Event()
        self._finished.set()
        self._completed = False
        self._disposed = False

    @property
    def is_playing(self) -> bool:
        return not self._finished.is_set()

    @property
    def completed(self) -> bool:
        """True if the last playback ran to the end without being stopped."""
        return self._completed

    def play(self, timeline: MorseTimeline, on_progress: Optional[ProgressCallback] = None) -> None:
        """Start playing ``timeline``, stopping any playback already in flight."""
        if self._disposed:
            raise RuntimeError("MorsePlayer has been disposed")
        self.stop()

        with self._lock:
            cancel = threading.Event()
            finished = threading.Event()
            self._cancel = cancel
            self._finished = finished
            self._completed = False
            self._thread = threading.Thread(
                target=self._run,
                args=(timeline, on_progress, cancel, finished),
                name="morse-player",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        """Cancel the current playback, if any, and wait for its thread to exit."""
        with self._lock:
            cancel, thread = self._cancel, self._thread
            self._cancel = None
            self._thread = None
        if cancel is not None:
            cancel.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the current playback ends. True if it completed rather than being stopped."""
        if not self._finished.wait(timeout):
            return False
        return self._completed

    def dispose(self) -> None:
        self.stop()
        self._disposed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()

    def _run(self, timeline: MorseTimeline, on_progress: Optional[ProgressCallback],
             cancel: threading.Event, finished: threading.Event) -> None:
        sink = self.sink_factory()
        try:
            sink.open(self.sample_rate)
            self._completed = self._drive(timeline, sink, on_progress, cancel)
        except Exception:
            logger.exception("Morse playback failed")
            raise
        finally:
            sink.close()
            finished.set()

    def _drive(self, timeline: MorseTimeline, sink: AudioSink, on_progress: Optional[ProgressCallback],
               cancel: threading.Event) -> bool:
        total = timeline.total_duration
        end_ms = total + self.grace_period_ms
        pending = sorted(timeline.events, key=lambda e: e.start)
        next_event = 0
        started = time.monotonic()

        while True:
            if cancel.is_set():
                return False
            elapsed_ms = (time.monotonic() - started) * 1000

            while next_event < len(pending) and pending[next_event].start <= elapsed_ms:
                event = pending[next_event]
                sink.play(render_tone(event.duration, self.sample_rate, self.frequency), event.start)
                next_event += 1

            if on_progress is not None:
                on_progress(min(1.0, elapsed_ms / total) if total > 0 else 1.0)

            if elapsed_ms >= end_ms and next_event >= len(pending):
                return True

            wake_ms = end_ms
            if next_event < len(pending):
                wake_ms = min(wake_ms, pending[next_event].start)
            delay = max(0.0, min(self.progress_interval, (wake_ms - elapsed_ms) / 1000))
            if cancel.wait(delay):
                return False
