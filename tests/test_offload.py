import logging
import threading
from queue import Queue

import numpy as np
import pytest

from jazzline.errors import TransportError
from jazzline.offload import (
    InlineNoteSource,
    NoteWorker,
    OffloadedNoteSource,
    decode_message,
    decode_reply,
    generate_note_message,
    set_state_message,
)
from jazzline.sampler import SoundData
from jazzline.selector import NoteSelector


def _seeded_selector() -> NoteSelector:
    return NoteSelector(rng=np.random.default_rng(1))


def test_wire_messages_use_camel_case() -> None:
    assert generate_note_message(3) == {"type": "generateNote", "payload": {"segmentIndex": 3}}
    assert set_state_message(-5) == {"type": "setState", "payload": {"transpose": -5}}


def test_decode_message_rejects_unknown_types() -> None:
    with pytest.raises(TransportError):
        decode_message({"type": "explode", "payload": {}})
    with pytest.raises(TransportError):
        decode_message({"type": "generateNote", "payload": {"segmentIndex": -1}})


def test_decode_reply() -> None:
    reply = decode_reply({"sampleId": "note_60", "playbackRate": 1.0})
    assert reply.to_sound() == SoundData(sample_id="note_60", playback_rate=1.0)
    with pytest.raises(TransportError):
        decode_reply({"sampleId": "note_60"})


def test_worker_handles_messages_in_place() -> None:
    worker = NoteWorker(lambda reply: None, selector_factory=_seeded_selector)
    assert worker.handle(set_state_message(3)) is None
    assert worker.selector.state.transpose == 3

    reply = worker.handle(generate_note_message(2))
    assert reply is not None
    assert reply["sampleId"].startswith("note_")
    assert reply["playbackRate"] > 0
    assert worker.selector.state.current_segment_index == 2


def test_worker_drops_malformed_messages(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="jazzline.offload")
    worker = NoteWorker(lambda reply: None, selector_factory=_seeded_selector)
    assert worker.handle("not a message") is None
    assert worker.handle({"type": "setState"}) is None
    assert "Dropping worker message" in caplog.text


def test_worker_thread_replies() -> None:
    replies: Queue = Queue()
    worker = NoteWorker(replies.put, selector_factory=_seeded_selector)
    worker.start()
    try:
        worker.post({"type": "bogus"})
        worker.post(generate_note_message(0))
        reply = replies.get(timeout=2.0)
        assert set(reply) == {"sampleId", "playbackRate"}
    finally:
        worker.stop()
    assert not worker.is_alive()


def test_inline_source_delivers_synchronously() -> None:
    sounds: list[SoundData] = []
    source = InlineNoteSource(_seeded_selector(), sounds.append)
    source.set_transpose(0)
    source.request_note(1)
    assert len(sounds) == 1
    assert source.selector.state.transpose == 0


def test_offloaded_source_round_trip() -> None:
    sounds: Queue = Queue()
    source = OffloadedNoteSource(sounds.put, transpose=-5, selector_factory=_seeded_selector)
    try:
        source.request_note(4)
        sound = sounds.get(timeout=2.0)
        assert isinstance(sound, SoundData)
        assert sound.sample_id.startswith("note_")
    finally:
        source.close()


def test_offloaded_source_drops_malformed_replies(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="jazzline.offload")
    sounds: list[SoundData] = []
    source = OffloadedNoteSource(sounds.append, transpose=-5, selector_factory=_seeded_selector)
    try:
        source._receive(source.generation, {"sampleId": "note_60", "playbackRate": -1})
    finally:
        source.close()
    assert sounds == []
    assert "Dropping note" in caplog.text


def test_dead_worker_is_restarted(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="jazzline.offload")
    source = OffloadedNoteSource(lambda sound: None, transpose=2, selector_factory=_seeded_selector)
    try:
        old = source.worker
        old.stop()
        source.check_health()
        assert source.restarts == 1
        assert source.worker is not old
        assert source.worker.is_alive()
        assert "Restarting note worker" in caplog.text
    finally:
        source.close()


def test_stalled_worker_is_restarted() -> None:
    release = threading.Event()

    class _StuckSelector(NoteSelector):
        def generate_next_note(self, segment_index=None):
            release.wait(5.0)
            return super().generate_next_note(segment_index)

    now = [0.0]
    source = OffloadedNoteSource(
        lambda sound: None,
        transpose=-5,
        selector_factory=_StuckSelector,
        stall_timeout=5.0,
        clock=lambda: now[0],
    )
    try:
        source.request_note(0)
        assert source.outstanding == 1
        now[0] = 1.0
        source.check_health()
        assert source.restarts == 0
        now[0] = 6.0
        source.check_health()
        assert source.restarts == 1
        assert source.outstanding == 0
    finally:
        release.set()
        source.close()


def _gated_selector_factory(gates: list[threading.Event]):
    """Selectors that block until the gate of their worker generation opens."""

    class _GatedSelector(NoteSelector):
        def __init__(self) -> None:
            generation = int(threading.current_thread().name.rsplit("-", 1)[1])
            super().__init__(rng=np.random.default_rng(generation))
            self._gate = gates[generation - 1]

        def generate_next_note(self, segment_index=None):
            self._gate.wait(5.0)
            return super().generate_next_note(segment_index)

    return _GatedSelector


def test_late_reply_from_replaced_worker_is_discarded() -> None:
    gates = [threading.Event() for _ in range(3)]
    sounds: list[SoundData] = []
    now = [0.0]
    source = OffloadedNoteSource(
        sounds.append,
        transpose=-5,
        selector_factory=_gated_selector_factory(gates),
        stall_timeout=5.0,
        clock=lambda: now[0],
    )
    try:
        source.request_note(0)
        first = source.worker
        now[0] = 6.0
        source.check_health()
        assert source.restarts == 1
        assert source.generation == 2

        source.request_note(1)
        gates[0].set()
        for _ in range(100):
            if not first.is_alive():
                break
            threading.Event().wait(0.02)
        assert not first.is_alive()
        assert sounds == []
        assert source.outstanding == 1

        now[0] = 20.0
        source.check_health()
        assert source.restarts == 2
    finally:
        for gate in gates:
            gate.set()
        source.close()


def test_restart_does_not_wait_for_stuck_worker(monkeypatch: pytest.MonkeyPatch) -> None:
    gates = [threading.Event() for _ in range(2)]
    now = [0.0]
    source = OffloadedNoteSource(
        lambda sound: None,
        transpose=-5,
        selector_factory=_gated_selector_factory(gates),
        stall_timeout=1.0,
        clock=lambda: now[0],
    )
    stuck = source.worker
    try:
        source.request_note(0)

        def _join(timeout=None):
            raise AssertionError("restart must not join the old worker")

        monkeypatch.setattr(stuck._thread, "join", _join)
        now[0] = 2.0
        source.check_health()
        assert source.restarts == 1
        assert stuck.is_alive()
    finally:
        for gate in gates:
            gate.set()
        source.close()
