from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .tables import INSTRUMENTS, LOOP_DURATION

_LOGGER = logging.getLogger("jazzline.config")

SOUNDS_DIR_ENV = "JAZZLINE_SOUNDS_DIR"
MIN_AUTO_NOTES_DELAY_MS = 50
MAX_TRANSPOSE = 24


def parse_instruments(value: str) -> tuple[str, ...]:
    names = tuple(name.strip() for name in value.split(",") if name.strip())
    if not names:
        raise ValueError("at least one instrument is required")
    unknown = [name for name in names if name not in INSTRUMENTS]
    if unknown:
        raise ValueError(
            f"unknown instrument(s) {', '.join(unknown)}; choose from {', '.join(INSTRUMENTS)}"
        )
    return names


class GeneratorConfig(BaseModel):
    """User-adjustable settings of one melody generator."""

    instrument: str = "piano"
    volume: float = Field(default=1.0, ge=0.0, le=1.0)
    play_auto_notes: bool = True
    auto_notes_chance: float = Field(default=0.2, ge=0.0, le=1.0)
    auto_notes_delay_ms: int = Field(default=300, ge=MIN_AUTO_NOTES_DELAY_MS)
    transpose: int = Field(default=-5, ge=-MAX_TRANSPOSE, le=MAX_TRANSPOSE)
    base_url: str = "web/sounds"
    background_loop_url: str = "jazz_loop.ogg"
    background_loop_duration: float = Field(default=LOOP_DURATION, gt=0.0)
    offload: bool = False

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("instrument")
    @classmethod
    def _known_instruments(cls, value: str) -> str:
        return ",".join(parse_instruments(value))

    def instruments(self) -> tuple[str, ...]:
        return parse_instruments(self.instrument)

    def with_updates(self, **changes: Any) -> "GeneratorConfig":
        """Validated copy with ``changes`` applied; the original is untouched."""
        data = self.model_dump()
        data.update(changes)
        try:
            return GeneratorConfig.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(_describe(exc)) from exc

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, str],
        *,
        base: "GeneratorConfig | None" = None,
    ) -> "GeneratorConfig":
        """Build a config from string parameters such as query-string values.

        Volume is clamped into [0, 1]. Values that fail to parse or validate
        are skipped with a warning and the base value is kept.
        """
        config = base or cls.default()
        for key, raw in params.items():
            parser = _PARAM_PARSERS.get(key)
            if parser is None:
                _LOGGER.debug("Ignoring unknown parameter %r.", key)
                continue
            try:
                value = parser(raw)
                config = config.with_updates(**{_PARAM_FIELDS.get(key, key): value})
            except (ValueError, ConfigurationError) as exc:
                _LOGGER.warning("Ignoring parameter %s=%r: %s", key, raw, exc)
        return config

    @classmethod
    def default(cls) -> "GeneratorConfig":
        sounds_dir = os.environ.get(SOUNDS_DIR_ENV)
        if sounds_dir:
            return cls(base_url=sounds_dir)
        return cls()


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parse_volume(raw: str) -> float:
    return min(1.0, max(0.0, float(raw)))


_PARAM_PARSERS: Mapping[str, Callable[[str], Any]] = {
    "instrument": str,
    "volume": _parse_volume,
    "playAutoNotes": _parse_bool,
    "autoNotesChance": float,
    "autoNotesDelay": int,
    "transpose": int,
}
_PARAM_FIELDS: Mapping[str, str] = {
    "playAutoNotes": "play_auto_notes",
    "autoNotesChance": "auto_notes_chance",
    "autoNotesDelay": "auto_notes_delay_ms",
}


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts) or str(exc)
