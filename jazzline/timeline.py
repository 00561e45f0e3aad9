from __future__ import annotations

import logging
from collections.abc import Sequence

from .errors import ConfigurationError
from .tables import LOOP_DURATION, PROGRESSION, ProgressionSegment

_LOGGER = logging.getLogger("jazzline.timeline")
_BOUNDARY_TOLERANCE = 1e-6


class ScaleTimeline:
    """Maps a loop-relative position to the active progression segment.

    Segments are scanned in order and the first whose closed ``[start, end]``
    span contains the position wins, so a boundary shared by two segments
    resolves to the earlier one. Positions outside every span fall back to
    segment 0.
    """

    def __init__(
        self,
        segments: Sequence[ProgressionSegment] = PROGRESSION,
        *,
        loop_duration: float = LOOP_DURATION,
    ) -> None:
        self._segments: tuple[ProgressionSegment, ...] = tuple(segments)
        self._loop_duration = float(loop_duration)
        validate_partition(self._segments, self._loop_duration)

    @property
    def segments(self) -> tuple[ProgressionSegment, ...]:
        return self._segments

    @property
    def loop_duration(self) -> float:
        return self._loop_duration

    def __len__(self) -> int:
        return len(self._segments)

    def segment(self, index: int) -> ProgressionSegment:
        if 0 <= index < len(self._segments):
            return self._segments[index]
        _LOGGER.warning("Segment index %s out of range; using segment 0.", index)
        return self._segments[0]

    def locate_index(self, position: float) -> int:
        for index, segment in enumerate(self._segments):
            if segment.contains(position):
                return index
        _LOGGER.debug("Position %.3fs matched no segment; using segment 0.", position)
        return 0

    def locate_position(self, position: float) -> ProgressionSegment:
        return self._segments[self.locate_index(position)]


def validate_partition(segments: Sequence[ProgressionSegment], loop_duration: float) -> None:
    """Raise ConfigurationError unless segments tile [0, loop_duration) in order."""
    if not segments:
        raise ConfigurationError("progression must have at least one segment")
    if loop_duration <= 0:
        raise ConfigurationError(f"loop duration must be positive, got {loop_duration}")
    cursor = 0.0
    for index, segment in enumerate(segments):
        if abs(segment.start - cursor) > _BOUNDARY_TOLERANCE:
            raise ConfigurationError(
                f"segment {index} starts at {segment.start}, expected {cursor}"
            )
        cursor = segment.end
    if abs(cursor - loop_duration) > _BOUNDARY_TOLERANCE:
        raise ConfigurationError(
            f"progression ends at {cursor}, loop duration is {loop_duration}"
        )
