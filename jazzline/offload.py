"""Note computation, either inline or on a worker thread.

The worker owns its own MelodicState and note selector and talks to the
producer only through plain dict messages::

    {"type": "generateNote", "payload": {"segmentIndex": 3}}
        -> {"sampleId": "note_60", "playbackRate": 1.0594...}
    {"type": "setState", "payload": {"transpose": -5}}
        -> no reply

Messages are handled strictly in arrival order. There is no ordering between a
``generateNote`` already queued and a ``setState`` sent after it: the note may
be computed with either transpose value. Delivery is at-most-once; a malformed
message or reply drops one note and nothing else.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from functools import partial
from queue import Queue
from threading import Lock, Thread
from typing import Annotated, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import TransportError
from .logging_utils import log_exception
from .sampler import SoundData
from .selector import NoteSelector

_LOGGER = logging.getLogger("jazzline.offload")

NoteCallback = Callable[[SoundData], None]
DEFAULT_STALL_TIMEOUT = 5.0


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class GenerateNotePayload(_WireModel):
    segment_index: int = Field(alias="segmentIndex", ge=0)


class GenerateNoteMessage(_WireModel):
    type: Literal["generateNote"] = "generateNote"
    payload: GenerateNotePayload


class SetStatePayload(_WireModel):
    transpose: int


class SetStateMessage(_WireModel):
    type: Literal["setState"] = "setState"
    payload: SetStatePayload


class NoteReply(_WireModel):
    sample_id: str = Field(alias="sampleId")
    playback_rate: float = Field(alias="playbackRate", gt=0.0)

    def to_sound(self) -> SoundData:
        return SoundData(sample_id=self.sample_id, playback_rate=self.playback_rate)


WorkerMessage = Annotated[GenerateNoteMessage | SetStateMessage, Field(discriminator="type")]
_MESSAGE_ADAPTER: TypeAdapter[GenerateNoteMessage | SetStateMessage] = TypeAdapter(WorkerMessage)


def generate_note_message(segment_index: int) -> dict[str, Any]:
    message = GenerateNoteMessage(payload=GenerateNotePayload(segment_index=segment_index))
    return message.model_dump(by_alias=True)


def set_state_message(transpose: int) -> dict[str, Any]:
    return SetStateMessage(payload=SetStatePayload(transpose=transpose)).model_dump(by_alias=True)


def decode_message(raw: object) -> GenerateNoteMessage | SetStateMessage:
    try:
        return _MESSAGE_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise TransportError(f"malformed worker message: {raw!r}") from exc


def decode_reply(raw: object) -> NoteReply:
    try:
        return NoteReply.model_validate(raw)
    except ValidationError as exc:
        raise TransportError(f"malformed worker reply: {raw!r}") from exc


class NoteWorker:
    """Separate execution context that owns a NoteSelector."""

    _STOP = object()

    def __init__(
        self,
        reply: Callable[[dict[str, Any]], None],
        *,
        selector_factory: Callable[[], NoteSelector] = NoteSelector,
        name: str = "jazzline-note-worker",
    ) -> None:
        self._reply = reply
        self._selector_factory = selector_factory
        self._selector: NoteSelector | None = None
        self._inbox: Queue[object] = Queue()
        self._thread = Thread(target=self._run, name=name, daemon=True)

    @property
    def selector(self) -> NoteSelector:
        if self._selector is None:
            self._selector = self._selector_factory()
        return self._selector

    def start(self) -> None:
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def post(self, message: Mapping[str, Any]) -> None:
        self._inbox.put(dict(message))

    def stop(self, *, wait: bool = True, timeout: float = 1.0) -> None:
        """Ask the worker to exit after the messages already queued."""
        self._inbox.put(self._STOP)
        if wait and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def handle(self, raw: object) -> dict[str, Any] | None:
        """Process one message; returns the reply, if the message has one."""
        try:
            message = decode_message(raw)
        except TransportError as exc:
            _LOGGER.warning("Dropping worker message: %s", exc)
            return None
        if isinstance(message, SetStateMessage):
            self.selector.set_transpose(message.payload.transpose)
            return None
        sound = self.selector.generate_next_note(message.payload.segment_index)
        reply = NoteReply(sample_id=sound.sample_id, playback_rate=sound.playback_rate)
        return reply.model_dump(by_alias=True)

    def _run(self) -> None:
        while True:
            raw = self._inbox.get()
            if raw is self._STOP:
                return
            try:
                reply = self.handle(raw)
            except Exception as exc:
                _LOGGER.warning("Worker failed on %r; note dropped: %s", raw, exc, exc_info=True)
                log_exception("note worker", exc, worker=self._thread.name, message=raw)
                continue
            if reply is not None:
                self._reply(reply)


class NoteSource(Protocol):
    def request_note(self, segment_index: int) -> None: ...

    def set_transpose(self, semitones: int) -> None: ...

    def check_health(self) -> None: ...

    def close(self) -> None: ...


class InlineNoteSource:
    """Runs the note selector synchronously in the caller's context."""

    def __init__(self, selector: NoteSelector, on_note: NoteCallback) -> None:
        self._selector = selector
        self._on_note = on_note

    @property
    def selector(self) -> NoteSelector:
        return self._selector

    def request_note(self, segment_index: int) -> None:
        self._on_note(self._selector.generate_next_note(segment_index))

    def set_transpose(self, semitones: int) -> None:
        self._selector.set_transpose(semitones)

    def check_health(self) -> None:
        return None

    def close(self) -> None:
        return None


class OffloadedNoteSource:
    """Producer side of the worker channel.

    Requests and state updates are fire-and-forget posts; replies are decoded
    on the worker thread and handed to ``on_note``. If the worker dies, or
    requests stay unanswered for ``stall_timeout`` seconds, the worker is
    replaced with a fresh one (and fresh melodic state). Each worker is tagged
    with a generation; late replies from a replaced worker are discarded.
    """

    def __init__(
        self,
        on_note: NoteCallback,
        *,
        transpose: int,
        selector_factory: Callable[[], NoteSelector] = NoteSelector,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_note = on_note
        self._selector_factory = selector_factory
        self._stall_timeout = stall_timeout
        self._clock = clock
        self._transpose = transpose
        self._lock = Lock()
        self._outstanding = 0
        self._waiting_since: float | None = None
        self._generation = 0
        self.restarts = 0
        self._worker = self._spawn()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def worker(self) -> NoteWorker:
        return self._worker

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self._outstanding

    def request_note(self, segment_index: int) -> None:
        with self._lock:
            if self._outstanding == 0:
                self._waiting_since = self._clock()
            self._outstanding += 1
        self._worker.post(generate_note_message(segment_index))

    def set_transpose(self, semitones: int) -> None:
        self._transpose = semitones
        self._worker.post(set_state_message(semitones))

    def check_health(self) -> None:
        if not self._worker.is_alive():
            self._restart("worker thread is not running")
            return
        with self._lock:
            waiting_since = self._waiting_since
            outstanding = self._outstanding
        if outstanding and waiting_since is not None:
            waited = self._clock() - waiting_since
            if waited > self._stall_timeout:
                self._restart(f"{outstanding} request(s) unanswered for {waited:.1f}s")

    def close(self) -> None:
        self._worker.stop()

    def _spawn(self) -> NoteWorker:
        with self._lock:
            self._generation += 1
            generation = self._generation
        worker = NoteWorker(
            partial(self._receive, generation),
            selector_factory=self._selector_factory,
            name=f"jazzline-note-worker-{generation}",
        )
        worker.start()
        worker.post(set_state_message(self._transpose))
        return worker

    def _restart(self, reason: str) -> None:
        _LOGGER.warning("Restarting note worker: %s", reason)
        # Runs on the event loop; the old daemon thread exits on its own.
        self._worker.stop(wait=False)
        with self._lock:
            self._outstanding = 0
            self._waiting_since = None
        self.restarts += 1
        self._worker = self._spawn()

    def _receive(self, generation: int, raw: dict[str, Any]) -> None:
        with self._lock:
            if generation != self._generation:
                _LOGGER.debug("Discarding reply from replaced worker %d.", generation)
                return
            self._outstanding = max(0, self._outstanding - 1)
            self._waiting_since = self._clock() if self._outstanding else None
        try:
            reply = decode_reply(raw)
        except TransportError as exc:
            _LOGGER.warning("Dropping note: %s", exc)
            return
        self._on_note(reply.to_sound())
