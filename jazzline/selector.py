"""Pattern-driven pitch selection.

Each call reads the next contour step from the active pattern, nudges it into
the active segment's scale, transposes it, avoids repeating the previous note
and, when the progression has just moved to a new root, pulls the pitch onto
the nearest chord target of the new segment.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

import numpy as np

from .errors import LookupMiss
from .patterns import PatternCursor
from .sampler import SampleMapper, SoundData
from .state import MelodicState
from .tables import DEFAULT_PITCH, PITCH_CLASSES, SCALES, ProgressionSegment, ScaleName
from .timeline import ScaleTimeline

_LOGGER = logging.getLogger("jazzline.selector")

MAX_REPEAT_RETRIES = 20
_HALF_OCTAVE = PITCH_CLASSES // 2


def scale_adjustments(scale: ScaleName) -> tuple[int, ...]:
    try:
        return SCALES[scale]
    except KeyError as exc:
        raise LookupMiss(f"unknown scale {scale!r}") from exc


def quantize(pitch: int, scale: ScaleName) -> int:
    """Nudge ``pitch`` by the scale's adjustment for its pitch class."""
    return pitch + scale_adjustments(scale)[pitch % PITCH_CLASSES]


def shift_to_nearest_target(pitch: int, targets: Sequence[int]) -> int:
    """Signed semitone shift moving ``pitch`` onto the closest target class.

    Distances wrap around the octave in whichever direction is shorter, so
    the shift stays within half an octave. Ties go to the earlier target.
    """
    pitch_class = pitch % PITCH_CLASSES
    best: int | None = None
    for target in targets:
        shift = (target - pitch_class) % PITCH_CLASSES
        if shift > _HALF_OCTAVE:
            shift -= PITCH_CLASSES
        if best is None or abs(shift) < abs(best):
            best = shift
    if best is None:
        raise LookupMiss("segment has no target notes")
    return best


def correct_to_targets(pitch: int, segment: ProgressionSegment) -> int:
    if pitch % PITCH_CLASSES in segment.target_notes:
        return pitch
    shifted = pitch + shift_to_nearest_target(pitch, segment.target_notes)
    return quantize(shifted, segment.scale)


class NoteSelector:
    def __init__(
        self,
        *,
        rng: np.random.Generator | None = None,
        timeline: ScaleTimeline | None = None,
        mapper: SampleMapper | None = None,
        cursor: PatternCursor | None = None,
        state: MelodicState | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_retries: int = MAX_REPEAT_RETRIES,
    ) -> None:
        self._rng = rng if rng is not None else np.random.default_rng()
        self._timeline = timeline or ScaleTimeline()
        self._mapper = mapper or SampleMapper()
        self._cursor = cursor or PatternCursor(self._rng)
        self._state = state if state is not None else MelodicState()
        self._clock = clock
        self._max_retries = max(0, max_retries)

    @property
    def state(self) -> MelodicState:
        return self._state

    @property
    def timeline(self) -> ScaleTimeline:
        return self._timeline

    def set_transpose(self, semitones: int) -> None:
        self._state.transpose = int(semitones)

    def set_segment(self, segment_index: int) -> None:
        if not 0 <= segment_index < len(self._timeline):
            _LOGGER.warning("Ignoring out-of-range segment index %s.", segment_index)
            return
        self._state.current_segment_index = segment_index

    def next_pitch(self, segment_index: int | None = None) -> int:
        if segment_index is not None:
            self.set_segment(segment_index)
        state = self._state
        segment = self._timeline.segment(state.current_segment_index)
        self._cursor.refresh(state, self._clock())
        correct = segment.root != state.last_emitted_root

        try:
            pitch = self._candidate(segment, correct)
            retries = 0
            while pitch == state.last_emitted_pitch and retries < self._max_retries:
                retries += 1
                pitch = self._candidate(segment, correct)
        except LookupMiss as exc:
            _LOGGER.warning("Note lookup failed (%s); using pitch %d.", exc, DEFAULT_PITCH)
            pitch = DEFAULT_PITCH
        if pitch == state.last_emitted_pitch:
            _LOGGER.debug("Accepting repeated pitch %d after %d retries.", pitch, self._max_retries)

        state.last_emitted_pitch = pitch
        state.last_emitted_root = segment.root
        state.notes_since_change += 1
        state.last_emit_timestamp = self._clock()
        return pitch

    def generate_next_note(self, segment_index: int | None = None) -> SoundData:
        sound = self._mapper.sound_for(self.next_pitch(segment_index))
        _LOGGER.debug(
            "Note %d -> %s @ %.4f (segment %d)",
            sound.pitch,
            sound.sample_id,
            sound.playback_rate,
            self._state.current_segment_index,
        )
        return sound

    def note_at(self, position: float) -> SoundData:
        return self.generate_next_note(self._timeline.locate_index(position))

    def _candidate(self, segment: ProgressionSegment, correct: bool) -> int:
        raw = self._cursor.next_raw_pitch(self._state)
        pitch = quantize(raw, segment.scale) + self._state.transpose
        if correct:
            pitch = correct_to_targets(pitch, segment)
        return pitch
