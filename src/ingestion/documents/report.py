"""
Decoded proof-of-coverage report shape.

The raw wire format is decoded outside this service; the pipeline only needs
a callable ``bytes -> Report`` that raises DecodeError. ``decode_report`` is
the bundled implementation for the JSON rendering of the same shape, used by
local feeds and tests.
"""

from datetime import datetime, timezone
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.utils.exceptions import DecodeError


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BeaconReport(BaseModel):
    """The beaconer's side of a report."""

    pub_key: str
    received_timestamp: datetime
    location: int | None = None
    gain: int = 0
    elevation: int = 0
    hex_scale: float | None = None
    reward_unit: float | None = None
    frequency: int = 0
    channel: int = 0
    tx_power: int = 0
    timestamp: datetime
    tmst: int = 0

    @field_validator("received_timestamp", "timestamp")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class WitnessReport(BaseModel):
    """One device that heard the beacon, with its verification verdict."""

    pub_key: str
    received_timestamp: datetime
    location: int | None = None
    gain: int = 0
    elevation: int = 0
    hex_scale: float | None = None
    reward_unit: float | None = None
    frequency: int = 0
    timestamp: datetime
    tmst: int = 0
    signal: int = 0
    snr: int = 0
    status: str = "valid"
    invalid_reason: str = "reason_none"
    participant_side: str = "side_none"

    @field_validator("received_timestamp", "timestamp")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Report(BaseModel):
    """A verified proof-of-coverage report."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    poc_id: bytes
    beacon: BeaconReport
    selected_witnesses: list[WitnessReport] = Field(default_factory=list)
    unselected_witnesses: list[WitnessReport] = Field(default_factory=list)


Decoder = Callable[[bytes], Report]


def decode_report(buf: bytes) -> Report:
    """
    Decode one report buffer.

    Raises:
        DecodeError: If the buffer is not a valid report
    """
    try:
        return Report.model_validate_json(buf)
    except ValidationError as e:
        raise DecodeError(f"Failed to decode report ({len(buf)} bytes): {e.error_count()} errors") from e


__all__ = ["BeaconReport", "WitnessReport", "Report", "Decoder", "decode_report"]
