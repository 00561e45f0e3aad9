from __future__ import annotations


class JazzlineError(Exception):
    """Base error for the jazzline library."""


class ConfigurationError(JazzlineError):
    """Raised when a setting is invalid or out of range."""


class LookupMiss(JazzlineError):
    """Raised when a pitch, pattern or scale has no table entry."""


class TransportError(JazzlineError):
    """Raised when a worker message is malformed or of unknown type."""


class PlaybackError(JazzlineError):
    """Raised when no audio backend can play a sample."""
