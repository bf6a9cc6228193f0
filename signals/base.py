#  signals/base.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class TacticalSignal(BaseModel):
    """
    Root object for everything published on the event bus.

    * Notifications emitted by the protocol engine and situation updates
      emitted by the situational store share this envelope.
    * Accepts arbitrary extra fields so emitters can attach metadata
      without breaking older subscribers.
    """
    # ------------------------------------------------------------------ #
    # Pydantic configuration
    # ------------------------------------------------------------------ #
    model_config = ConfigDict(
        extra="allow",
        validate_assignment=True,
        ser_json_timedelta="iso8601",
    )

    # ------------------------------------------------------------------ #
    # Core attributes
    # ------------------------------------------------------------------ #
    signal_type: str = Field(
        ...,
        description="The type of the signal (e.g., 'ProtocolLoadedSignal').",
    )
    source_node_id: str = Field(
        ...,
        description="The ID of the component that emitted the signal.",
    )
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form data attached by the emitter.",
    )
    signal_id: str = Field(
        default_factory=lambda: f"sig_{uuid.uuid4()}",
        description="Unique identifier for this signal instance.",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp when the signal was created.",
    )
    context_tags: Dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary context tags for filtering or analysis.",
    )

    # ------------------------------------------------------------------ #
    # Validators & serializers
    # ------------------------------------------------------------------ #
    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:  # noqa: D401
        """Force naive datetimes into UTC for consistency."""
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v.astimezone(timezone.utc)

    @field_serializer("timestamp")
    def _ts_iso(self, v: datetime, _info):  # noqa: D401
        """Serialize datetimes as ISO-8601 with explicit offset."""
        return v.astimezone(timezone.utc).isoformat()

    # ------------------------------------------------------------------ #
    # Convenience helpers
    # ------------------------------------------------------------------ #
    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"{self.__class__.__name__}"
            f"(signal_type={self.signal_type!r}, "
            f"signal_id={self.signal_id!r}, "
            f"source_node_id={self.source_node_id!r})"
        )
