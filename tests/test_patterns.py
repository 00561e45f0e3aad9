import logging

import numpy as np
import pytest

from jazzline.patterns import MAX_NOTES_PER_PATTERN, PatternCursor
from jazzline.state import MelodicState


def _cursor(patterns=((1, 2, 3),)) -> PatternCursor:
    return PatternCursor(np.random.default_rng(0), patterns)


def test_fresh_state_is_stale() -> None:
    cursor = _cursor()
    state = MelodicState()
    assert cursor.is_stale(state, now=0.0)
    assert cursor.refresh(state, now=0.0)
    assert state.active_pattern_index == 0
    assert state.pattern_cursor == 0


def test_pattern_goes_stale_after_a_pause() -> None:
    cursor = _cursor()
    state = MelodicState(active_pattern_index=0, last_emit_timestamp=10.0)
    assert not cursor.is_stale(state, now=10.5)
    assert cursor.is_stale(state, now=10.95)


def test_pattern_goes_stale_after_too_many_notes() -> None:
    cursor = _cursor()
    state = MelodicState(
        active_pattern_index=0,
        last_emit_timestamp=0.0,
        notes_since_change=MAX_NOTES_PER_PATTERN,
    )
    assert not cursor.is_stale(state, now=0.0)
    state.notes_since_change += 1
    assert cursor.is_stale(state, now=0.0)


def test_refresh_resets_counters() -> None:
    cursor = _cursor()
    state = MelodicState(active_pattern_index=0, pattern_cursor=2, notes_since_change=40)
    assert cursor.refresh(state, now=0.0)
    assert state.pattern_cursor == 0
    assert state.notes_since_change == 0


def test_next_raw_pitch_walks_and_wraps() -> None:
    cursor = _cursor()
    state = MelodicState(active_pattern_index=0)
    assert [cursor.next_raw_pitch(state) for _ in range(4)] == [1, 2, 3, 1]
    assert state.pattern_cursor == 1


def test_missing_pattern_index_picks_a_new_pattern(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="jazzline.patterns")
    cursor = _cursor()
    state = MelodicState(active_pattern_index=7)
    assert cursor.next_raw_pitch(state) == 1
    assert state.active_pattern_index == 0
    assert "missing" in caplog.text


def test_empty_patterns_are_rejected() -> None:
    with pytest.raises(ValueError):
        PatternCursor(np.random.default_rng(0), ((),))
