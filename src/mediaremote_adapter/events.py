"""UI message types bridging `MediaController` hooks into Textual.

Controller hooks run on the same event loop as the app; they post these
messages so widget updates go through Textual's message queue in order.
"""

from __future__ import annotations

from textual.message import Message

from mediaremote_adapter.services.event_decoder import TrackEvent


class TrackInfoUpdated(Message):
    """A decoded helper event arrived; `None` means no active player."""

    def __init__(self, event: TrackEvent | None) -> None:
        super().__init__()
        self.event = event


class PlaybackTimeUpdated(Message):
    """Extrapolated or optimistic elapsed time in seconds."""

    def __init__(self, elapsed_s: float) -> None:
        super().__init__()
        self.elapsed_s = elapsed_s


class ListenerTerminated(Message):
    """The streaming helper exited without being asked to."""


class DecodingFailed(Message):
    """A helper record could not be decoded."""

    def __init__(self, reason: str, raw: bytes) -> None:
        super().__init__()
        self.reason = reason
        self.raw = raw
