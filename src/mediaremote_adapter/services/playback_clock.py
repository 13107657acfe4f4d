"""Locally extrapolated playback position between sparse helper updates.

The helper only reports elapsed time when the player publishes a change, so
the clock keeps an anchor (elapsed seconds at a wall-clock instant) and emits
extrapolated samples on a short tick. Seeks update the anchor optimistically
and forward a debounced seek command to the helper.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Callable, Literal

from mediaremote_adapter.services.event_decoder import TrackEvent
from mediaremote_adapter.utils.async_utils import TaskSlot

logger = logging.getLogger(__name__)

ClockState = Literal["idle", "anchored"]
DEFAULT_TICK_INTERVAL_S = 0.25
DEFAULT_SEEK_DEBOUNCE_S = 0.05


@dataclass(frozen=True)
class PlaybackAnchor:
    """Reference point for extrapolating elapsed time."""

    reference_elapsed_s: float
    reference_wall_clock_s: float

    def elapsed_at(self, now_s: float) -> float:
        return self.reference_elapsed_s + (now_s - self.reference_wall_clock_s)


class PlaybackClock:
    """Owns the playback anchor, the periodic tick and the seek debounce."""

    def __init__(
        self,
        *,
        on_elapsed: Callable[[float], Awaitable[None]] | None = None,
        seek_command: Callable[[float], Awaitable[object]] | None = None,
        tick_interval_s: float = DEFAULT_TICK_INTERVAL_S,
        seek_debounce_s: float = DEFAULT_SEEK_DEBOUNCE_S,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        if tick_interval_s <= 0:
            raise ValueError("tick_interval_s must be > 0")
        self._on_elapsed = on_elapsed
        self._seek_command = seek_command
        self._tick_interval_s = tick_interval_s
        self._seek_debounce_s = max(0.0, seek_debounce_s)
        self._time_source = time_source
        self._anchor: PlaybackAnchor | None = None
        self._track_identifier: str | None = None
        self._is_playing = False
        self._tick = TaskSlot("playback-clock-tick")
        self._pending_seek = TaskSlot("playback-clock-seek")

    @property
    def state(self) -> ClockState:
        return "anchored" if self._tick.active else "idle"

    @property
    def anchor(self) -> PlaybackAnchor | None:
        return self._anchor

    @property
    def is_playing(self) -> bool:
        return self._is_playing

    @property
    def seek_pending(self) -> bool:
        return self._pending_seek.active

    def set_elapsed_handler(
        self, handler: Callable[[float], Awaitable[None]] | None
    ) -> None:
        self._on_elapsed = handler

    def current_elapsed(self) -> float | None:
        """Sample elapsed seconds; `None` when no anchor is known."""
        if self._anchor is None:
            return None
        if not self._is_playing:
            return self._anchor.reference_elapsed_s
        return self._anchor.elapsed_at(self._time_source())

    async def handle_event(self, event: TrackEvent | None) -> None:
        """Apply a decoded helper outcome; `None` means no active player."""
        if event is None:
            self._tick.cancel()
            self._anchor = None
            self._is_playing = False
            self._track_identifier = None
            return

        identifier = event.unique_identifier
        if identifier != self._track_identifier:
            self._track_identifier = identifier
            self._tick.cancel()
            self._anchor = None
            logger.debug("Track change detected; resetting elapsed time.")
            await self._emit(0.0)

        self._tick.cancel()
        self._is_playing = event.is_playing is True
        elapsed_s = event.elapsed_s
        timestamp_s = event.timestamp_s
        if not self._is_playing or elapsed_s is None or timestamp_s is None:
            self._anchor = None
            if elapsed_s is not None:
                await self._emit(elapsed_s)
            return

        self._anchor = PlaybackAnchor(
            reference_elapsed_s=elapsed_s, reference_wall_clock_s=timestamp_s
        )
        self._tick.schedule(self._tick_loop())

    async def seek(self, seconds: float) -> None:
        """Optimistically move to `seconds` and schedule a debounced seek."""
        self._pending_seek.cancel()
        self._tick.cancel()
        self._anchor = PlaybackAnchor(
            reference_elapsed_s=seconds, reference_wall_clock_s=self._time_source()
        )
        if self._is_playing:
            self._tick.schedule(self._tick_loop())
        self._pending_seek.schedule(self._send_seek(seconds))
        await self._emit(seconds)

    def halt(self) -> None:
        """Stop ticking and forget the anchor and play state."""
        self._tick.cancel()
        self._anchor = None
        self._is_playing = False

    async def shutdown(self) -> None:
        self._anchor = None
        await self._tick.cancel_and_wait()
        await self._pending_seek.cancel_and_wait()

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval_s)
            if not self._tick.owns_current_task():
                return
            elapsed = self.current_elapsed()
            if elapsed is None:
                return
            await self._emit(elapsed)

    async def _send_seek(self, seconds: float) -> None:
        await asyncio.sleep(self._seek_debounce_s)
        if not self._pending_seek.owns_current_task():
            return
        # Once dispatched, a newer seek must not cancel this command mid-flight.
        self._pending_seek.detach()
        if self._seek_command is None:
            return
        logger.debug("Dispatching seek command to %.3fs", seconds)
        await self._seek_command(seconds)

    async def _emit(self, elapsed_s: float) -> None:
        if self._on_elapsed is None:
            return
        try:
            await self._on_elapsed(elapsed_s)
        except Exception:
            logger.exception("Playback time handler failed")
