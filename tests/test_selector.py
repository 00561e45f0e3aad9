import logging

import numpy as np
import pytest

import jazzline.selector as selector_module
from jazzline.patterns import PatternCursor
from jazzline.selector import (
    NoteSelector,
    correct_to_targets,
    quantize,
    shift_to_nearest_target,
)
from jazzline.state import MelodicState
from jazzline.tables import PITCH_CLASSES, PROGRESSION


def _selector(seed: int = 0, **kwargs) -> NoteSelector:
    return NoteSelector(rng=np.random.default_rng(seed), clock=lambda: 0.0, **kwargs)


def test_quantize_applies_scale_adjustment() -> None:
    assert quantize(61, "diatonic") == 60
    assert quantize(60, "diatonic") == 60
    assert quantize(61, "chromatic") == 61
    assert quantize(66, "lydian") == 66


def test_shift_to_nearest_target_wraps_the_octave() -> None:
    assert shift_to_nearest_target(0, (2, 4, 7)) == 2
    assert shift_to_nearest_target(11, (2, 4, 7)) == 3
    assert shift_to_nearest_target(0, (11,)) == -1
    assert shift_to_nearest_target(60, (6,)) == 6


def test_shift_to_nearest_target_ties_go_to_earlier_target() -> None:
    assert shift_to_nearest_target(3, (2, 4)) == -1
    assert shift_to_nearest_target(3, (4, 2)) == 1


def test_correct_to_targets_keeps_target_pitches() -> None:
    segment = PROGRESSION[0]
    assert correct_to_targets(62, segment) == 62
    assert correct_to_targets(61, segment) % PITCH_CLASSES in segment.target_notes


def test_never_repeats_a_pitch_back_to_back() -> None:
    selector = _selector(seed=7)
    previous = None
    for step in range(1000):
        pitch = selector.next_pitch((step // 50) % len(PROGRESSION))
        assert pitch != previous
        previous = pitch


def test_first_note_of_a_segment_lands_on_a_target() -> None:
    for index, segment in enumerate(PROGRESSION):
        selector = _selector(seed=index)
        assert selector.next_pitch(index) % PITCH_CLASSES in segment.target_notes


def test_segment_change_pulls_onto_new_targets() -> None:
    selector = _selector(seed=3)
    selector.next_pitch(0)
    selector.next_pitch(0)
    pitch = selector.next_pitch(3)
    assert pitch % PITCH_CLASSES in PROGRESSION[3].target_notes
    assert selector.state.last_emitted_root == PROGRESSION[3].root


def test_transpose_shifts_output_by_the_same_amount() -> None:
    root = PROGRESSION[0].root
    low = _selector(seed=11, state=MelodicState(last_emitted_root=root))
    high = _selector(seed=11, state=MelodicState(last_emitted_root=root))
    low.set_transpose(0)
    high.set_transpose(5)
    for _ in range(10):
        assert high.next_pitch(0) - low.next_pitch(0) == 5


def test_repeat_is_accepted_after_retry_cap(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="jazzline.selector")
    rng = np.random.default_rng(0)
    state = MelodicState(last_emitted_root=PROGRESSION[0].root, last_emitted_pitch=55)
    selector = NoteSelector(
        rng=rng,
        cursor=PatternCursor(rng, ((60,),)),
        state=state,
        clock=lambda: 0.0,
    )
    assert selector.next_pitch(0) == 55
    assert "Accepting repeated pitch" in caplog.text


def test_lookup_miss_falls_back_to_default_pitch(
    caplog: pytest.LogCaptureFixture,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    caplog.set_level(logging.WARNING, logger="jazzline.selector")
    monkeypatch.setattr(selector_module, "SCALES", {})
    selector = _selector()
    assert selector.next_pitch(0) == 60
    assert "lookup failed" in caplog.text


def test_state_is_updated_after_each_note() -> None:
    selector = _selector()
    pitch = selector.next_pitch(2)
    state = selector.state
    assert state.last_emitted_pitch == pitch
    assert state.current_segment_index == 2
    assert state.notes_since_change == 1
    assert state.last_emit_timestamp == 0.0


def test_out_of_range_segment_is_ignored(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="jazzline.selector")
    selector = _selector()
    selector.set_segment(4)
    selector.set_segment(99)
    assert selector.state.current_segment_index == 4
    assert "out-of-range" in caplog.text


def test_generate_next_note_maps_to_a_sample() -> None:
    sound = _selector().generate_next_note(0)
    assert sound.sample_id.startswith("note_")
    assert sound.pitch is not None
    assert sound.playback_rate > 0


def test_note_at_uses_the_timeline() -> None:
    selector = _selector()
    selector.note_at(11.0)
    assert selector.state.current_segment_index == 3
