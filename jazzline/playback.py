from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Literal, Protocol

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .errors import PlaybackError

_LOGGER = logging.getLogger("jazzline.playback")

FloatArray = NDArray[np.float32]
SAMPLE_RATE = 44_100


class SoundHandle(Protocol):
    def fade(self, target_volume: float, duration_ms: float) -> None: ...

    def set_volume(self, volume: float) -> None: ...

    def stop(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def playhead(self) -> float: ...


class PlaybackService(Protocol):
    def play_sample(self, url: str, volume: float, rate: float) -> SoundHandle: ...

    def play_loop(self, url: str, volume: float, rate: float) -> SoundHandle: ...


class PlaybackEvent(BaseModel):
    kind: Literal["sample", "loop"]
    url: str
    volume: float
    rate: float
    at: float

    model_config = ConfigDict(frozen=True, extra="forbid")


class RecordedHandle:
    """Handle returned by NullPlaybackService; tracks state without audio."""

    def __init__(self, event: PlaybackEvent, clock: Callable[[], float]) -> None:
        self.event = event
        self.volume = event.volume
        self.fades: list[tuple[float, float]] = []
        self.stopped = False
        self._clock = clock
        self._origin = clock()

    def fade(self, target_volume: float, duration_ms: float) -> None:
        self.fades.append((target_volume, duration_ms))
        self.volume = target_volume

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def stop(self) -> None:
        self.stopped = True

    def seek(self, seconds: float) -> None:
        self._origin = self._clock() - seconds

    def playhead(self) -> float:
        return (self._clock() - self._origin) * self.event.rate


class NullPlaybackService:
    """Records every request instead of producing sound."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.events: list[PlaybackEvent] = []
        self.handles: list[RecordedHandle] = []

    def play_sample(self, url: str, volume: float, rate: float) -> RecordedHandle:
        return self._record("sample", url, volume, rate)

    def play_loop(self, url: str, volume: float, rate: float) -> RecordedHandle:
        return self._record("loop", url, volume, rate)

    def samples_played(self) -> list[PlaybackEvent]:
        return [event for event in self.events if event.kind == "sample"]

    def _record(
        self, kind: Literal["sample", "loop"], url: str, volume: float, rate: float
    ) -> RecordedHandle:
        event = PlaybackEvent(kind=kind, url=url, volume=volume, rate=rate, at=self._clock())
        self.events.append(event)
        handle = RecordedHandle(event, self._clock)
        self.handles.append(handle)
        _LOGGER.debug("%s %s vol=%.2f rate=%.4f", kind, url, volume, rate)
        return handle


class _Voice:
    def __init__(
        self,
        samples: FloatArray,
        *,
        volume: float,
        rate: float,
        loop: bool,
        sample_rate: int,
    ) -> None:
        self.samples = samples
        self.rate = rate
        self.loop = loop
        self.sample_rate = sample_rate
        self.position = 0.0
        self.gain = volume
        self.fade_target = volume
        self.fade_step = 0.0
        self.done = False

    def render(self, frames: int) -> FloatArray:
        length = len(self.samples)
        if self.done or length == 0:
            self.done = True
            return np.zeros(frames, dtype=np.float32)
        index = self.position + np.arange(frames, dtype=np.float64) * self.rate
        if self.loop:
            index = np.mod(index, length)
        out = np.interp(index, np.arange(length), self.samples, right=0.0).astype(np.float32)
        gains = self.gain + self.fade_step * np.arange(1, frames + 1, dtype=np.float32)
        if self.fade_step > 0:
            gains = np.minimum(gains, self.fade_target)
        elif self.fade_step < 0:
            gains = np.maximum(gains, self.fade_target)
        out *= gains
        self.gain = float(gains[-1])
        if self.gain == self.fade_target:
            self.fade_step = 0.0
        self.position = float(self.position + frames * self.rate)
        if self.loop:
            self.position %= length
        elif self.position >= length:
            self.done = True
        return out


class _VoiceHandle:
    def __init__(self, voice: _Voice, lock: threading.Lock) -> None:
        self._voice = voice
        self._lock = lock

    def fade(self, target_volume: float, duration_ms: float) -> None:
        with self._lock:
            frames = max(1.0, duration_ms / 1000.0 * self._voice.sample_rate)
            self._voice.fade_target = target_volume
            self._voice.fade_step = (target_volume - self._voice.gain) / frames

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self._voice.gain = volume
            self._voice.fade_target = volume
            self._voice.fade_step = 0.0

    def stop(self) -> None:
        with self._lock:
            self._voice.done = True

    def seek(self, seconds: float) -> None:
        with self._lock:
            self._voice.position = max(0.0, seconds * self._voice.sample_rate)

    def playhead(self) -> float:
        with self._lock:
            return self._voice.position / self._voice.sample_rate


class SounddevicePlaybackService:
    """Mixes sample voices into one sounddevice output stream.

    Decoded files are cached by path. Pitch is shifted by reading the sample
    faster or slower, never by synthesis.
    """

    def __init__(self, sd: Any, sf: Any, *, sample_rate: int = SAMPLE_RATE) -> None:
        self._sd = sd
        self._sf = sf
        self._sample_rate = sample_rate
        self._cache: dict[str, FloatArray] = {}
        self._voices: list[_Voice] = []
        self._lock = threading.Lock()
        self._stream: Any = None

    def play_sample(self, url: str, volume: float, rate: float) -> SoundHandle:
        return self._start_voice(url, volume, rate, loop=False)

    def play_loop(self, url: str, volume: float, rate: float) -> SoundHandle:
        return self._start_voice(url, volume, rate, loop=True)

    def close(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        with self._lock:
            self._voices.clear()

    def _start_voice(self, url: str, volume: float, rate: float, *, loop: bool) -> SoundHandle:
        samples = self._load(url)
        voice = _Voice(samples, volume=volume, rate=rate, loop=loop, sample_rate=self._sample_rate)
        with self._lock:
            self._voices.append(voice)
        self._ensure_stream()
        return _VoiceHandle(voice, self._lock)

    def _load(self, url: str) -> FloatArray:
        cached = self._cache.get(url)
        if cached is not None:
            return cached
        path = Path(url)
        if not path.exists():
            raise PlaybackError(f"Sample file not found: {path}")
        try:
            data, file_rate = self._sf.read(str(path), dtype="float32", always_2d=True)
        except Exception as exc:
            raise PlaybackError(f"Could not decode {path}: {exc}") from exc
        mono: FloatArray = np.asarray(data, dtype=np.float32).mean(axis=1)
        if file_rate != self._sample_rate and mono.size > 1:
            target = int(round(mono.size * self._sample_rate / file_rate))
            grid = np.linspace(0, mono.size - 1, num=max(target, 1))
            mono = np.interp(grid, np.arange(mono.size), mono).astype(np.float32)
        self._cache[url] = mono
        return mono

    def _ensure_stream(self) -> None:
        if self._stream is not None:
            return
        try:
            self._stream = self._sd.OutputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except Exception as exc:
            self._stream = None
            raise PlaybackError(f"Could not open audio output: {exc}") from exc

    def _callback(self, outdata: Any, frames: int, _time: Any, status: Any) -> None:
        if status:
            _LOGGER.debug("Audio stream status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)
        with self._lock:
            for voice in self._voices:
                mix += voice.render(frames)
            self._voices = [voice for voice in self._voices if not voice.done]
        outdata[:, 0] = np.clip(mix, -1.0, 1.0)


def _load_sounddevice() -> tuple[Any, Any] | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    import soundfile as sf_module  # type: ignore[import]

    return sd_module, sf_module


def resolve_playback_service(*, sample_rate: int = SAMPLE_RATE) -> SounddevicePlaybackService:
    modules = _load_sounddevice()
    if modules is None:
        raise PlaybackError(
            "Playback requires sounddevice. Install it, or use `jazzline trace` for silent runs."
        )
    sd, sf = modules
    return SounddevicePlaybackService(sd, sf, sample_rate=sample_rate)
