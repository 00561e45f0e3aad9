from __future__ import annotations

from .config import GeneratorConfig
from .errors import ConfigurationError, JazzlineError, LookupMiss, PlaybackError, TransportError
from .generator import MelodyGenerator
from .logging_utils import configure_logging as _configure_logging
from .offload import InlineNoteSource, NoteWorker, OffloadedNoteSource
from .playback import NullPlaybackService, PlaybackService, SoundHandle, resolve_playback_service
from .sampler import SampleMapper, SoundData, semitones_to_playback_rate
from .selector import NoteSelector
from .state import MelodicState
from .tables import INSTRUMENTS, LOOP_DURATION, PATTERNS, PROGRESSION, SAMPLES, SCALES
from .timeline import ScaleTimeline

__all__ = [
    "INSTRUMENTS",
    "LOOP_DURATION",
    "PATTERNS",
    "PROGRESSION",
    "SAMPLES",
    "SCALES",
    "ConfigurationError",
    "GeneratorConfig",
    "InlineNoteSource",
    "JazzlineError",
    "LookupMiss",
    "MelodicState",
    "MelodyGenerator",
    "NoteSelector",
    "NoteWorker",
    "NullPlaybackService",
    "OffloadedNoteSource",
    "PlaybackError",
    "PlaybackService",
    "SampleMapper",
    "ScaleTimeline",
    "SoundData",
    "SoundHandle",
    "TransportError",
    "resolve_playback_service",
    "semitones_to_playback_rate",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
