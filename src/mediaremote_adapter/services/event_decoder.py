"""Helper record decoding into typed now-playing events.

Every record produces exactly one outcome: `NoPlayer` for the sentinel, a
`TrackEvent` for a well-formed JSON payload, or a `DecodeFailure` that keeps
the raw bytes for diagnosis. Nothing raises past `decode_record`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

NO_PLAYER_SENTINEL = b"NIL"
_MICROS_PER_SECOND = 1_000_000

_STRING_FIELDS = {
    "title": "title",
    "artist": "artist",
    "album": "album",
    "applicationName": "application_name",
    "bundleIdentifier": "bundle_identifier",
    "artworkDataBase64": "artwork_data_base64",
    "artworkMimeType": "artwork_mime_type",
}
_NUMBER_FIELDS = {
    "durationMicros": "duration_micros",
    "elapsedTimeMicros": "elapsed_time_micros",
    "timestampEpochMicros": "timestamp_epoch_micros",
}


class RecordDecodeError(ValueError):
    """Raised internally when a record does not match the payload schema."""


@dataclass(frozen=True)
class NoPlayer:
    """No media player is active on the host."""


NO_PLAYER = NoPlayer()


@dataclass(frozen=True)
class TrackEvent:
    """Player state reported by the helper at one point in time.

    Every field is optional; `None` means unknown, never zero.
    """

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    is_playing: bool | None = None
    duration_micros: float | None = None
    elapsed_time_micros: float | None = None
    timestamp_epoch_micros: float | None = None
    application_name: str | None = None
    bundle_identifier: str | None = None
    artwork_data_base64: str | None = None
    artwork_mime_type: str | None = None

    @property
    def unique_identifier(self) -> str:
        """Track identity used for change detection.

        Built from title, artist and album only, so distinct tracks sharing
        all three compare equal.
        """
        return "\x1f".join(
            value or "" for value in (self.title, self.artist, self.album)
        )

    @property
    def duration_s(self) -> float | None:
        return _micros_to_seconds(self.duration_micros)

    @property
    def elapsed_s(self) -> float | None:
        return _micros_to_seconds(self.elapsed_time_micros)

    @property
    def timestamp_s(self) -> float | None:
        return _micros_to_seconds(self.timestamp_epoch_micros)


@dataclass(frozen=True)
class DecodeFailure:
    """Record that could not be decoded, with its original bytes."""

    error: RecordDecodeError
    raw: bytes


DecodeOutcome = Union[NoPlayer, TrackEvent, DecodeFailure]


def decode_record(record: bytes) -> DecodeOutcome:
    """Decode one framed record from the helper."""
    if record == NO_PLAYER_SENTINEL:
        return NO_PLAYER
    try:
        return _parse_track_event(record)
    except RecordDecodeError as exc:
        return DecodeFailure(error=exc, raw=bytes(record))


def _parse_track_event(record: bytes) -> TrackEvent:
    try:
        document = json.loads(record.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise RecordDecodeError(f"record is not valid UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise RecordDecodeError(f"record is not valid JSON: {exc.msg}") from exc
    except (ValueError, OverflowError, RecursionError) as exc:
        # Oversized integer literals or pathological nesting.
        raise RecordDecodeError(f"record is not decodable JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise RecordDecodeError("record is not a JSON object")
    payload = document.get("payload")
    if not isinstance(payload, dict):
        raise RecordDecodeError("record has no 'payload' object")

    fields: dict[str, Any] = {}
    for key, attr in _STRING_FIELDS.items():
        fields[attr] = _optional_string(payload, key)
    for key, attr in _NUMBER_FIELDS.items():
        fields[attr] = _optional_number(payload, key)
    fields["is_playing"] = _optional_playing_flag(payload.get("isPlaying"))
    return TrackEvent(**fields)


def _optional_string(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or isinstance(value, str):
        return value
    raise RecordDecodeError(f"'{key}' must be a string")


def _optional_number(payload: dict[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordDecodeError(f"'{key}' must be a number")
    try:
        return float(value)
    except OverflowError as exc:
        raise RecordDecodeError(f"'{key}' is out of range") from exc


def _optional_playing_flag(value: object) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    raise RecordDecodeError("'isPlaying' must be a boolean or 0/1")


def _micros_to_seconds(value: float | None) -> float | None:
    if value is None:
        return None
    return value / _MICROS_PER_SECOND
