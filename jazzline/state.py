from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MelodicState(BaseModel):
    """Mutable melodic memory owned by one generator (or one worker).

    Only the note selector writes to it. It lives as long as its owner and is
    never reset behind the owner's back.
    """

    current_segment_index: int = Field(default=0, ge=0)
    active_pattern_index: int | None = None
    pattern_cursor: int = Field(default=0, ge=0)
    last_emitted_pitch: int | None = None
    last_emitted_root: int | None = None
    notes_since_change: int = Field(default=0, ge=0)
    last_emit_timestamp: float | None = None
    transpose: int = -5

    model_config = ConfigDict(extra="forbid")
