"""Fixed musical data for the melody engine.

Everything here is loaded once at import time and never mutated: the scale
adjustment tables, the melodic contour patterns, the chord progression of the
backing loop and the pitch ranges covered by each note sample.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PITCH_CLASSES = 12
MAX_PITCH = 127

ScaleName = Literal[
    "diatonic",
    "dorian",
    "phrygian",
    "lydian",
    "mixolydian",
    "aeolian",
    "locrian",
    "harmonicMinor",
    "melodicMinor",
    "majorPentatonic",
    "minorPentatonic",
    "doubleHarmonic",
    "halfDim",
    "chromatic",
    "custom",
    "custom2",
]


class ProgressionSegment(BaseModel):
    """A span of the backing loop with its scale, root and chord targets."""

    start: float = Field(ge=0.0)
    end: float = Field(gt=0.0)
    scale: ScaleName
    root: int = Field(ge=0, lt=PITCH_CLASSES)
    target_notes: tuple[int, ...] = Field(min_length=1, max_length=3)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("target_notes")
    @classmethod
    def _pitch_classes(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        for note in value:
            if not 0 <= note < PITCH_CLASSES:
                raise ValueError(f"target note {note} is not a pitch class")
        return value

    @model_validator(mode="after")
    def _ordered(self) -> "ProgressionSegment":
        if self.end <= self.start:
            raise ValueError(f"segment end {self.end} must follow start {self.start}")
        return self

    def contains(self, position: float) -> bool:
        return self.start <= position <= self.end


class SampleDescriptor(BaseModel):
    """A recorded note and the pitch range it is stretched to cover."""

    sample_id: str
    root: int = Field(ge=0, le=MAX_PITCH)
    start_range: int = Field(ge=0, le=MAX_PITCH)
    end_range: int = Field(ge=0, le=MAX_PITCH)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _range(self) -> "SampleDescriptor":
        if self.start_range > self.end_range:
            raise ValueError(f"{self.sample_id}: empty pitch range")
        return self

    def covers(self, pitch: int) -> bool:
        return self.start_range <= pitch <= self.end_range


# Each entry is the semitone nudge (-1, 0, +1) applied to a pitch of that class.
SCALES: Mapping[ScaleName, tuple[int, ...]] = MappingProxyType(
    {
        "diatonic": (0, -1, 0, -1, 0, 0, -1, 0, -1, 0, -1, 0),
        "dorian": (0, 1, 0, 0, -1, 0, 1, 0, 1, 0, 0, -1),
        "phrygian": (0, 0, -1, 0, -1, 0, 1, 0, 0, -1, 0, -1),
        "lydian": (0, 1, 0, 1, 0, 1, 0, 0, 1, 0, 1, 0),
        "mixolydian": (0, 1, 0, 1, 0, 0, -1, 0, -1, 0, 0, -1),
        "aeolian": (0, -1, 0, 0, -1, 0, -1, 0, 0, -1, 0, -1),
        "locrian": (0, 0, -1, 0, -1, 0, 0, -1, 0, -1, 0, -1),
        "harmonicMinor": (0, 1, 0, 0, -1, 0, 1, 0, 0, -1, 1, 0),
        "melodicMinor": (0, 1, 0, 0, -1, 0, 1, 0, -1, 0, 1, 0),
        "majorPentatonic": (0, 1, 0, 1, 0, -1, 1, 0, 1, 0, -1, 1),
        "minorPentatonic": (0, -1, 1, 0, -1, 0, 1, 0, -1, 1, 0, -1),
        "doubleHarmonic": (0, 0, -1, 1, 0, 0, 1, 0, 0, -1, 1, 0),
        "halfDim": (0, 1, 0, 0, -1, 0, 0, -1, 0, -1, 0, -1),
        "chromatic": (0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0),
        "custom": (0, -1, 0, -1, 0, -1, -1, 0, -1, 0, -1, 0),
        "custom2": (-1, 0, 0, -1, 0, 0, 1, 0, 0, -1, 0, 0),
    }
)

PATTERNS: tuple[tuple[int, ...], ...] = (
    (
        71, 72, 69, 71, 67, 69, 64, 67, 62, 64, 62, 60, 59, 60, 62, 64, 65, 67,
        69, 71, 67, 64, 62, 60, 59, 60, 57, 59, 55,
    ),
    (83, 88, 86, 81, 79, 83, 81, 76, 74, 79, 76, 72, 71, 72, 69, 67),
    (
        74, 72, 70, 69, 70, 67, 69, 65, 67, 62, 65, 63, 67, 70, 74, 77, 74, 77,
        74, 72, 70, 69, 70, 67, 69, 65,
    ),
    (
        69, 74, 72, 67, 64, 69, 67, 62, 60, 64, 62, 57, 55, 60, 57, 53, 55, 57,
        60, 62, 64, 65, 67, 62, 65, 64, 62, 64, 62, 60, 59,
    ),
    (
        59, 60, 64, 67, 71, 72, 76, 79, 83, 84, 88, 91, 95, 98, 95, 98, 95, 91,
        88, 91, 88, 84, 83, 86, 83, 79, 76, 79, 76, 72, 71, 74, 71, 67, 64, 67,
        64, 60, 59, 55,
    ),
    (
        91, 86, 88, 84, 83, 86, 83, 79, 76, 79, 76, 72, 71, 74, 71, 67, 64, 67,
        64, 60, 59, 60, 64, 67, 71, 72, 74, 76, 79, 74, 76, 71, 72, 67,
    ),
    (
        67, 65, 64, 65, 69, 72, 76, 79, 77, 76, 74, 76, 72, 71, 74, 71, 72, 67,
        64, 67, 62, 60,
    ),
    (
        65, 67, 65, 64, 65, 67, 69, 71, 72, 74, 76, 77, 79, 81, 83, 84, 86, 88,
        89, 91, 93, 91, 88, 86, 88, 86, 84, 83, 84, 79, 81, 76, 79, 74, 76, 72,
        71, 71, 72, 67,
    ),
    (
        55, 59, 60, 62, 67, 71, 72, 76, 79, 83, 86, 88, 93, 91, 88, 84, 81, 79,
        77, 76, 74, 72, 71,
    ),
)

LOOP_DURATION = 27.428

PROGRESSION: tuple[ProgressionSegment, ...] = (
    ProgressionSegment(start=0.0, end=3.428, scale="custom", root=7, target_notes=(2, 4, 7)),
    ProgressionSegment(start=3.428, end=6.857, scale="diatonic", root=2, target_notes=(2, 4, 7)),
    ProgressionSegment(start=6.857, end=10.285, scale="custom", root=7, target_notes=(2, 4, 7)),
    ProgressionSegment(start=10.285, end=12.0, scale="diatonic", root=9, target_notes=(4, 5, 9)),
    ProgressionSegment(start=12.0, end=13.714, scale="custom2", root=2, target_notes=(2, 4, 11)),
    ProgressionSegment(start=13.714, end=17.142, scale="custom", root=11, target_notes=(4, 7, 11)),
    ProgressionSegment(start=17.142, end=20.571, scale="custom", root=4, target_notes=(0, 2, 4)),
    ProgressionSegment(start=20.571, end=24.0, scale="diatonic", root=9, target_notes=(4, 5, 9)),
    ProgressionSegment(start=24.0, end=27.428, scale="custom2", root=2, target_notes=(2, 4, 11)),
)


def _sample(root: int, start_range: int, end_range: int) -> SampleDescriptor:
    return SampleDescriptor(
        sample_id=f"note_{root}",
        root=root,
        start_range=start_range,
        end_range=end_range,
    )


# Ordered from the highest root down; the ranges tile 0..127 without gaps.
SAMPLES: tuple[SampleDescriptor, ...] = (
    _sample(96, 95, 127),
    _sample(93, 92, 94),
    _sample(90, 89, 91),
    _sample(87, 86, 88),
    _sample(84, 83, 85),
    _sample(81, 80, 82),
    _sample(77, 76, 79),
    _sample(74, 73, 75),
    _sample(71, 70, 72),
    _sample(69, 68, 69),
    _sample(66, 65, 67),
    _sample(63, 62, 64),
    _sample(60, 59, 61),
    _sample(57, 56, 58),
    _sample(54, 53, 55),
    _sample(51, 50, 52),
    _sample(48, 0, 49),
)

INSTRUMENTS: tuple[str, ...] = ("piano", "guitar", "flute", "vibraphone", "saxophone", "harp")

DEFAULT_PITCH = 60
