from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import numpy as np

from .config import MIN_AUTO_NOTES_DELAY_MS, GeneratorConfig
from .errors import ConfigurationError
from .logging_utils import log_exception
from .offload import DEFAULT_STALL_TIMEOUT, InlineNoteSource, NoteSource, OffloadedNoteSource
from .playback import PlaybackService, SoundHandle, resolve_playback_service
from .sampler import SoundData
from .selector import NoteSelector
from .timeline import ScaleTimeline

_LOGGER = logging.getLogger("jazzline.generator")

NOTE_FADE_MS = 1000.0
AUTO_NOTE_JITTER_MS = 200.0
PROGRESSION_BASE_DELAY_MS = 100.0
PROGRESSION_STEP_MS = 200.0


class MelodyGenerator:
    """Plays a generated melody over a looping backing track.

    All scheduling happens on the asyncio loop that calls :meth:`start`. The
    auto-play tick re-arms itself every ``auto_notes_delay_ms``; manual
    requests (:meth:`play_note`, :meth:`play_note_progression`) can be issued
    at any time from the same loop. Scheduled notes cannot be cancelled.
    """

    def __init__(
        self,
        config: GeneratorConfig | None = None,
        *,
        playback: PlaybackService | None = None,
        rng: np.random.Generator | None = None,
        clock: Callable[[], float] = time.monotonic,
        selector: NoteSelector | None = None,
        selector_factory: Callable[[], NoteSelector] | None = None,
        timeline: ScaleTimeline | None = None,
        track_playhead: bool = False,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT,
    ) -> None:
        self._config = config or GeneratorConfig.default()
        self._playback = playback
        self._rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock
        self._timeline = timeline or (selector.timeline if selector is not None else ScaleTimeline())
        self._track_playhead = track_playhead
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tick_handle: asyncio.TimerHandle | None = None
        self._running = False
        self._muted = False
        self._loop_started_at = 0.0
        self._segment_index = 0
        self._background: SoundHandle | None = None
        self._last_sound: SoundHandle | None = None
        self.notes_played = 0
        self.loop_restarts = 0
        self._source: NoteSource = self._build_source(selector, selector_factory, stall_timeout)

    @property
    def config(self) -> GeneratorConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    @property
    def segment_index(self) -> int:
        return self._segment_index

    @property
    def source(self) -> NoteSource:
        return self._source

    def _build_source(
        self,
        selector: NoteSelector | None,
        selector_factory: Callable[[], NoteSelector] | None,
        stall_timeout: float,
    ) -> NoteSource:
        if self._config.offload:
            return OffloadedNoteSource(
                self._deliver,
                transpose=self._config.transpose,
                selector_factory=selector_factory or NoteSelector,
                stall_timeout=stall_timeout,
                clock=self._clock,
            )
        if selector is None:
            selector = selector_factory() if selector_factory else NoteSelector(rng=self._rng)
        selector.set_transpose(self._config.transpose)
        return InlineNoteSource(selector, self._deliver)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the backing loop and the auto-play tick on the running loop."""
        if self._running:
            _LOGGER.info("Generator already running; start() ignored.")
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._restart_background()
        self._tick()

    def stop(self) -> None:
        self._running = False
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        if self._background is not None:
            self._background.stop()
            self._background = None

    def close(self) -> None:
        self.stop()
        self._source.close()

    async def run(self, duration: float | None = None) -> None:
        self.start()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            self.close()

    def position(self) -> float:
        """Seconds into the current pass of the backing loop."""
        if self._track_playhead and self._background is not None:
            return self._background.playhead()
        return self._clock() - self._loop_started_at

    def _tick(self) -> None:
        self._tick_handle = None
        if not self._running:
            return
        try:
            position = self.position()
            if position > self._config.background_loop_duration:
                self._restart_background()
                position = 0.0
            self._segment_index = self._timeline.locate_index(position)
            self._source.check_health()
            config = self._config
            if config.play_auto_notes and self._rng.random() < config.auto_notes_chance:
                self.play_note(0.0, AUTO_NOTE_JITTER_MS)
        except Exception as exc:
            _LOGGER.warning("Auto-play tick failed: %s", exc, exc_info=True)
            log_exception("auto-play tick", exc, segment=self._segment_index)
        self._arm()

    def _arm(self) -> None:
        if not self._running or self._loop is None:
            return
        delay = self._config.auto_notes_delay_ms / 1000.0
        self._tick_handle = self._loop.call_later(delay, self._tick)

    def _restart_background(self) -> None:
        self._loop_started_at = self._clock()
        if self._background is not None:
            self._background.stop()
            self.loop_restarts += 1
        url = f"{self._config.base_url}/{self._config.background_loop_url}"
        try:
            self._background = self._service().play_loop(url, self._volume(), 1.0)
        except Exception as exc:
            self._background = None
            _LOGGER.warning("Could not play backing loop %s: %s", url, exc)
        if self._background is not None:
            self._background.seek(0.0)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def play_note(self, min_delay_ms: float = 0.0, max_delay_ms: float = AUTO_NOTE_JITTER_MS) -> float:
        """Schedule one note after ``min + U[0, 1) * max`` ms; returns that delay."""
        delay_ms = float(min_delay_ms) + float(self._rng.random()) * float(max_delay_ms)
        if self._loop is None:
            # Worker replies are marshalled onto this loop even before start().
            self._loop = asyncio.get_running_loop()
        self._loop.call_later(delay_ms / 1000.0, self._request_note)
        return delay_ms

    def play_note_progression(self, num_notes: int) -> list[float]:
        """Schedule ``num_notes`` notes, the i-th after 100 + 200*i ms plus jitter."""
        if num_notes < 0:
            _LOGGER.warning("Ignoring negative note count %s.", num_notes)
            return []
        return [
            self.play_note(PROGRESSION_BASE_DELAY_MS + PROGRESSION_STEP_MS * i, PROGRESSION_STEP_MS)
            for i in range(num_notes)
        ]

    def _request_note(self) -> None:
        if self._running:
            position = self.position()
            if position <= self._config.background_loop_duration:
                self._segment_index = self._timeline.locate_index(position)
        try:
            self._source.request_note(self._segment_index)
        except Exception as exc:
            _LOGGER.warning("Note request failed; note dropped: %s", exc, exc_info=True)
            log_exception("note request", exc, segment=self._segment_index)

    def _deliver(self, sound: SoundData) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed() and not _on_loop(loop):
            loop.call_soon_threadsafe(self._play_sound, sound)
            return
        self._play_sound(sound)

    def _play_sound(self, sound: SoundData) -> None:
        instruments = self._config.instruments()
        instrument = instruments[int(self._rng.integers(len(instruments)))]
        url = f"{self._config.base_url}/{instrument}/{sound.sample_id}.ogg"
        volume = self._volume()
        try:
            handle = self._service().play_sample(url, volume, sound.playback_rate)
            handle.fade(0.0, NOTE_FADE_MS)
        except Exception as exc:
            _LOGGER.warning("Could not play %s; note dropped: %s", url, exc)
            return
        self._last_sound = handle
        self.notes_played += 1

    def _service(self) -> PlaybackService:
        if self._playback is None:
            self._playback = resolve_playback_service()
        return self._playback

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _update(self, **changes: Any) -> bool:
        try:
            self._config = self._config.with_updates(**changes)
        except ConfigurationError as exc:
            _LOGGER.warning("Rejected setting %s: %s", changes, exc)
            return False
        return True

    def _volume(self) -> float:
        return 0.0 if self._muted else self._config.volume

    def _apply_volume(self) -> None:
        volume = self._volume()
        for handle in (self._background, self._last_sound):
            if handle is not None:
                handle.set_volume(volume)

    def set_volume(self, volume: float) -> bool:
        if not self._update(volume=volume):
            return False
        self._apply_volume()
        return True

    def mute(self) -> None:
        self._muted = True
        self._apply_volume()

    def unmute(self) -> None:
        self._muted = False
        self._apply_volume()

    def is_muted(self) -> bool:
        return self._muted or self._config.volume <= 0

    def set_instrument(self, instrument: str) -> bool:
        return self._update(instrument=instrument)

    def set_transpose(self, semitones: int) -> bool:
        if isinstance(semitones, bool) or not isinstance(semitones, int):
            _LOGGER.warning("Rejected transpose %r: must be an integer.", semitones)
            return False
        if not self._update(transpose=semitones):
            return False
        self._source.set_transpose(semitones)
        return True

    def set_auto_play(self, enabled: bool) -> bool:
        return self._update(play_auto_notes=bool(enabled))

    def set_auto_play_chance(self, chance: float) -> bool:
        return self._update(auto_notes_chance=chance)

    def set_auto_play_delay(self, delay_ms: int) -> bool:
        try:
            delay = int(delay_ms)
        except (TypeError, ValueError):
            _LOGGER.warning("Rejected auto-play delay %r.", delay_ms)
            return False
        if delay < MIN_AUTO_NOTES_DELAY_MS:
            _LOGGER.info("Auto-play delay %d ms raised to %d ms.", delay, MIN_AUTO_NOTES_DELAY_MS)
            delay = MIN_AUTO_NOTES_DELAY_MS
        return self._update(auto_notes_delay_ms=delay)

    def reset_settings(self) -> None:
        defaults = GeneratorConfig()
        self._update(
            instrument=defaults.instrument,
            volume=defaults.volume,
            play_auto_notes=defaults.play_auto_notes,
            auto_notes_chance=defaults.auto_notes_chance,
            auto_notes_delay_ms=defaults.auto_notes_delay_ms,
            transpose=defaults.transpose,
        )
        self._source.set_transpose(self._config.transpose)
        self._muted = False
        self._apply_volume()


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
