from __future__ import annotations

import logging
from collections.abc import Sequence
from functools import lru_cache

from pydantic import BaseModel, ConfigDict

from .tables import MAX_PITCH, SAMPLES, SampleDescriptor

_LOGGER = logging.getLogger("jazzline.sampler")
_SEMITONE_RATIO = 2.0 ** (1.0 / 12.0)


@lru_cache(maxsize=256)
def semitones_to_playback_rate(semitones: int) -> float:
    """Equal-tempered speed multiplier for a shift of ``semitones``."""
    if semitones == 0:
        return 1.0
    if semitones % 12 == 0:
        return 2.0 ** (semitones // 12)
    return _SEMITONE_RATIO**semitones


class SoundData(BaseModel):
    """Which sample to play for a pitch, and how fast."""

    sample_id: str
    playback_rate: float
    pitch: int | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class SampleMapper:
    """Resolves absolute pitches to the sample that covers them.

    The lookup table spans ``0..MAX_PITCH`` and is built once; pitches with no
    covering sample use the lowest-rooted sample and are stretched from there.
    """

    def __init__(self, samples: Sequence[SampleDescriptor] = SAMPLES) -> None:
        if not samples:
            raise ValueError("at least one sample descriptor is required")
        self._samples: tuple[SampleDescriptor, ...] = tuple(samples)
        self._fallback = min(self._samples, key=lambda sample: sample.root)
        table: list[SampleDescriptor | None] = [None] * (MAX_PITCH + 1)
        for sample in self._samples:
            for pitch in range(sample.start_range, sample.end_range + 1):
                if table[pitch] is None:
                    table[pitch] = sample
        self._table = tuple(table)

    @property
    def samples(self) -> tuple[SampleDescriptor, ...]:
        return self._samples

    @property
    def fallback(self) -> SampleDescriptor:
        return self._fallback

    def map_pitch_to_sample(self, pitch: int) -> SampleDescriptor:
        sample = self._table[pitch] if 0 <= pitch <= MAX_PITCH else None
        if sample is None:
            _LOGGER.warning(
                "No sample covers pitch %d; using %s.", pitch, self._fallback.sample_id
            )
            return self._fallback
        return sample

    def sound_for(self, pitch: int) -> SoundData:
        sample = self.map_pitch_to_sample(pitch)
        return SoundData(
            sample_id=sample.sample_id,
            playback_rate=semitones_to_playback_rate(pitch - sample.root),
            pitch=pitch,
        )
