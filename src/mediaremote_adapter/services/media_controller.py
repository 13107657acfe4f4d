"""Public facade combining the listener, playback clock and command dispatch.

`MediaController` owns one `ProcessSupervisor`, one `PlaybackClock` and one
`CommandDispatcher`, all addressing the same target player through the
optional bundle identifier. Consumer hooks are coroutines awaited on the
event loop, so deliveries keep loop order.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable
from typing import Callable, Optional

from mediaremote_adapter.runtime_config import (
    HelperConfig,
    RestartPolicy,
    check_helper,
    with_bundle_identifier,
)
from mediaremote_adapter.services.command_dispatcher import (
    CMD_NEXT_TRACK,
    CMD_PAUSE,
    CMD_PLAY,
    CMD_PREVIOUS_TRACK,
    CMD_STOP,
    CMD_TOGGLE_PLAY_PAUSE,
    CommandDispatcher,
    CommandResult,
)
from mediaremote_adapter.services.event_decoder import (
    DecodeFailure,
    RecordDecodeError,
    TrackEvent,
)
from mediaremote_adapter.services.playback_clock import (
    DEFAULT_SEEK_DEBOUNCE_S,
    DEFAULT_TICK_INTERVAL_S,
    PlaybackClock,
)
from mediaremote_adapter.services.process_supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

TrackInfoHandler = Callable[[Optional[TrackEvent]], Awaitable[None]]
DecodingErrorHandler = Callable[[RecordDecodeError, bytes], Awaitable[None]]
TerminatedHandler = Callable[[], Awaitable[None]]
PlaybackTimeHandler = Callable[[float], Awaitable[None]]

LISTEN_COMMAND = "loop"


class MediaController:
    """Now-playing listener and remote control for one target player."""

    def __init__(
        self,
        config: HelperConfig | None,
        *,
        bundle_identifier: str | None = None,
        restart_policy: RestartPolicy | None = None,
        on_track_info_received: TrackInfoHandler | None = None,
        on_listener_terminated: TerminatedHandler | None = None,
        on_decoding_error: DecodingErrorHandler | None = None,
        on_playback_time_update: PlaybackTimeHandler | None = None,
        tick_interval_s: float = DEFAULT_TICK_INTERVAL_S,
        seek_debounce_s: float = DEFAULT_SEEK_DEBOUNCE_S,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        if bundle_identifier is not None:
            config = with_bundle_identifier(config, bundle_identifier)
        self._config = config
        self.on_track_info_received = on_track_info_received
        self.on_listener_terminated = on_listener_terminated
        self.on_decoding_error = on_decoding_error
        self.on_playback_time_update = on_playback_time_update
        self._dispatcher = CommandDispatcher(config)
        self._clock = PlaybackClock(
            on_elapsed=self._emit_playback_time,
            seek_command=self._dispatcher.set_time,
            tick_interval_s=tick_interval_s,
            seek_debounce_s=seek_debounce_s,
            time_source=time_source,
        )
        self._supervisor = ProcessSupervisor(
            argv_factory=self._listen_argv,
            clock=self._clock,
            restart_policy=restart_policy,
            on_event=self._emit_track_info,
            on_decode_error=self._emit_decoding_error,
            on_terminated=self._emit_listener_terminated,
        )

    @property
    def bundle_identifier(self) -> str | None:
        return self._config.bundle_identifier if self._config is not None else None

    @property
    def is_listening(self) -> bool:
        return self._supervisor.is_running

    @property
    def clock(self) -> PlaybackClock:
        return self._clock

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    async def start_listening(self) -> bool:
        """Start streaming now-playing updates; returns False when unavailable."""
        problem = check_helper(self._config)
        if problem is not None:
            logger.error("Cannot start listening: %s", problem)
            return False
        return await self._supervisor.start()

    async def stop_listening(self) -> None:
        await self._supervisor.stop()

    async def shutdown(self) -> None:
        """Stop listening and drop any pending seek."""
        await self._supervisor.stop()
        await self._clock.shutdown()

    async def play(self) -> CommandResult:
        return await self._dispatcher.invoke(CMD_PLAY)

    async def pause(self) -> CommandResult:
        return await self._dispatcher.invoke(CMD_PAUSE)

    async def toggle_play_pause(self) -> CommandResult:
        return await self._dispatcher.invoke(CMD_TOGGLE_PLAY_PAUSE)

    async def next_track(self) -> CommandResult:
        return await self._dispatcher.invoke(CMD_NEXT_TRACK)

    async def previous_track(self) -> CommandResult:
        return await self._dispatcher.invoke(CMD_PREVIOUS_TRACK)

    async def stop(self) -> CommandResult:
        """Send the player's stop command; listening is unaffected."""
        return await self._dispatcher.invoke(CMD_STOP)

    async def set_time(self, seconds: float) -> None:
        """Seek optimistically; the helper command is debounced."""
        await self._clock.seek(max(0.0, float(seconds)))

    async def get_track_info(
        self, callback: TrackInfoHandler | None = None
    ) -> TrackEvent | None:
        """Query current state once, independent of the listener."""
        event = await self._dispatcher.query_state()
        if callback is not None:
            await callback(event)
        return event

    def _listen_argv(self) -> list[str]:
        if self._config is None:
            raise RuntimeError("Helper is not configured.")
        return self._config.build_argv(LISTEN_COMMAND)

    async def _emit_track_info(self, event: TrackEvent | None) -> None:
        if self.on_track_info_received is not None:
            await self.on_track_info_received(event)

    async def _emit_decoding_error(self, failure: DecodeFailure) -> None:
        if self.on_decoding_error is not None:
            await self.on_decoding_error(failure.error, failure.raw)

    async def _emit_listener_terminated(self) -> None:
        if self.on_listener_terminated is not None:
            await self.on_listener_terminated()

    async def _emit_playback_time(self, elapsed_s: float) -> None:
        if self.on_playback_time_update is not None:
            await self.on_playback_time_update(elapsed_s)
