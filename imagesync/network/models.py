"""Typed gateway payloads."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_ISO_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z")


def parse_timestamp(value: Any) -> datetime:
    """Parse a gateway timestamp.

    ISO-8601 with fractional seconds is tried first, then without; numeric
    values are epoch seconds (or milliseconds when implausibly large).
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value) / 1000.0 if value > 1e12 else float(value)
        return datetime.fromtimestamp(seconds, tz=UTC)
    text = str(value or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    for fmt in _ISO_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    # Offset-less timestamps are UTC.
    for fmt in _ISO_FORMATS:
        try:
            return datetime.strptime(text, fmt.removesuffix("%z")).replace(tzinfo=UTC)
        except ValueError:
            continue
    raise ValueError(f"invalid timestamp: {value!r}")


class GatewayModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CredentialResponse(GatewayModel):
    """Body of both ``/v1/anonymous/register`` and ``/v1/auth/refresh``."""

    device_id: str
    device_secret: str
    expires_at: datetime

    @field_validator("expires_at", mode="before")
    @classmethod
    def _parse_expires_at(cls, value: Any) -> datetime:
        return parse_timestamp(value)


class UploadURLResponse(GatewayModel):
    image_id: str
    upload_url: str
    expires_at: datetime
    required_headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("expires_at", mode="before")
    @classmethod
    def _parse_expires_at(cls, value: Any) -> datetime:
        return parse_timestamp(value)


class DeleteResponse(GatewayModel):
    ok: bool


class APIErrorEnvelope(GatewayModel):
    ok: bool = False
    error: str
    message: str | None = None
