from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from .state import MelodicState
from .tables import PATTERNS

_LOGGER = logging.getLogger("jazzline.patterns")

STALE_AFTER_SECONDS = 0.9
MAX_NOTES_PER_PATTERN = 30


class PatternCursor:
    """Walks one melodic contour until it goes stale, then jumps to another.

    A pattern is stale once more than ``stale_after`` seconds have passed since
    the last emitted note, or once more than ``max_notes`` notes have been
    emitted from it.
    """

    def __init__(
        self,
        rng: np.random.Generator,
        patterns: Sequence[Sequence[int]] = PATTERNS,
        *,
        stale_after: float = STALE_AFTER_SECONDS,
        max_notes: int = MAX_NOTES_PER_PATTERN,
    ) -> None:
        if not patterns or any(len(pattern) == 0 for pattern in patterns):
            raise ValueError("patterns must be non-empty sequences")
        self._rng = rng
        self._patterns: tuple[tuple[int, ...], ...] = tuple(tuple(p) for p in patterns)
        self._stale_after = stale_after
        self._max_notes = max_notes

    @property
    def patterns(self) -> tuple[tuple[int, ...], ...]:
        return self._patterns

    def is_stale(self, state: MelodicState, now: float) -> bool:
        if state.active_pattern_index is None:
            return True
        if state.notes_since_change > self._max_notes:
            return True
        if state.last_emit_timestamp is None:
            return True
        return (now - state.last_emit_timestamp) > self._stale_after

    def change_pattern(self, state: MelodicState) -> int:
        index = int(self._rng.integers(len(self._patterns)))
        state.active_pattern_index = index
        state.pattern_cursor = 0
        state.notes_since_change = 0
        _LOGGER.debug("Switched to pattern %d", index)
        return index

    def refresh(self, state: MelodicState, now: float) -> bool:
        """Change pattern if the current one is stale; report whether it changed."""
        if self.is_stale(state, now):
            self.change_pattern(state)
            return True
        return False

    def next_raw_pitch(self, state: MelodicState) -> int:
        index = state.active_pattern_index
        if index is None or not 0 <= index < len(self._patterns):
            if index is not None:
                _LOGGER.warning("Pattern index %s missing; choosing a new pattern.", index)
            index = self.change_pattern(state)
        pattern = self._patterns[index]
        if state.pattern_cursor >= len(pattern):
            state.pattern_cursor = 0
        pitch = pattern[state.pattern_cursor]
        state.pattern_cursor = (state.pattern_cursor + 1) % len(pattern)
        return pitch
