"""Lifecycle owner for the long-running streaming helper process.

`ProcessSupervisor` spawns `helper ... loop`, reads its stdout on a reader
task, frames and decodes records, and forwards outcomes to the consumer and
the `PlaybackClock`. After `RestartPolicy.event_threshold` decoded track
events it recycles the helper to bound helper-side memory growth; the event
that reaches the threshold is consumed by the restart and never delivered.

All state (handle, buffer, counter) is touched only from the event loop, so
chunk delivery, clock ticks and consumer calls are serialized.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from mediaremote_adapter.runtime_config import RestartPolicy
from mediaremote_adapter.services.event_decoder import (
    DecodeFailure,
    NoPlayer,
    TrackEvent,
    decode_record,
)
from mediaremote_adapter.services.playback_clock import PlaybackClock
from mediaremote_adapter.services.record_framer import RecordFramer
from mediaremote_adapter.utils.async_utils import TaskSlot

__all__ = ["ProcessSupervisor", "RestartPolicy", "SupervisorStatus"]

logger = logging.getLogger(__name__)

SupervisorStatus = Literal["not_started", "running", "stopping", "restarting"]
_READ_CHUNK_BYTES = 16_384
_TERMINATE_TIMEOUT_S = 2.0


@dataclass
class _ListenerHandle:
    process: asyncio.subprocess.Process
    framer: RecordFramer = field(default_factory=RecordFramer)
    event_count: int = 0
    planned_exit: bool = False
    reader: asyncio.Task[None] | None = None
    stderr_reader: asyncio.Task[None] | None = None


class ProcessSupervisor:
    """Runs one streaming helper at a time and recycles it on a schedule."""

    def __init__(
        self,
        *,
        argv_factory: Callable[[], list[str]],
        clock: PlaybackClock,
        restart_policy: RestartPolicy | None = None,
        on_event: Callable[[TrackEvent | None], Awaitable[None]] | None = None,
        on_decode_error: Callable[[DecodeFailure], Awaitable[None]] | None = None,
        on_terminated: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._argv_factory = argv_factory
        self._clock = clock
        self._policy = restart_policy or RestartPolicy()
        self._on_event = on_event
        self._on_decode_error = on_decode_error
        self._on_terminated = on_terminated
        self._handle: _ListenerHandle | None = None
        self._status: SupervisorStatus = "not_started"
        self._restart = TaskSlot("listener-restart")
        self._restart_count = 0
        self._stopped: asyncio.Event | None = None

    @property
    def status(self) -> SupervisorStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status in ("running", "restarting")

    @property
    def event_count(self) -> int:
        return self._handle.event_count if self._handle is not None else 0

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def pid(self) -> int | None:
        return self._handle.process.pid if self._handle is not None else None

    @property
    def restart_policy(self) -> RestartPolicy:
        return self._policy

    async def start(self) -> bool:
        """Spawn the streaming helper; no-op when already running.

        A start issued while a stop is still reaping the old helper waits for
        that stop to finish, so at most one helper is ever live.
        """
        while self._stopped is not None:
            await self._stopped.wait()
        if self.is_running:
            logger.info("Listener process is already running.")
            return True
        return await self._spawn()

    async def stop(self) -> None:
        """Terminate the helper and cancel any pending restart."""
        if self._stopped is not None:
            await self._stopped.wait()
            return
        stopped = self._stopped = asyncio.Event()
        self._status = "stopping"
        try:
            await self._restart.cancel_and_wait()
            handle, self._handle = self._handle, None
            self._clock.halt()
            if handle is not None:
                handle.planned_exit = True
                await self._reap(handle)
                logger.info(
                    "Listener process stopped",
                    extra={"event": "listener_stopped", "pid": handle.process.pid},
                )
        finally:
            self._stopped = None
            if self._handle is None:
                self._status = "not_started"
            stopped.set()

    async def _spawn(self) -> bool:
        argv = self._argv_factory()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError):
            logger.exception("Failed to start listening process: %s", argv[0])
            self._handle = None
            self._status = "not_started"
            await self._invoke_hook("terminated", self._on_terminated)
            return False
        handle = _ListenerHandle(process=process)
        self._handle = handle
        self._status = "running"
        handle.reader = asyncio.create_task(
            self._read_stdout(handle), name="listener-stdout"
        )
        handle.stderr_reader = asyncio.create_task(
            self._drain_stderr(handle), name="listener-stderr"
        )
        logger.info(
            "Listener process started",
            extra={"event": "listener_started", "pid": process.pid},
        )
        return True

    async def _read_stdout(self, handle: _ListenerHandle) -> None:
        reader_failed = False
        try:
            await self._pump_stdout(handle)
        except Exception:
            reader_failed = True
            logger.exception(
                "Listener reader failed",
                extra={"event": "listener_reader_failed", "pid": handle.process.pid},
            )
        if handle is not self._handle:
            return
        await self._handle_exit(handle, reader_failed=reader_failed)

    async def _pump_stdout(self, handle: _ListenerHandle) -> None:
        stdout = handle.process.stdout
        while stdout is not None:
            chunk = await stdout.read(_READ_CHUNK_BYTES)
            if not chunk:
                return
            for record in handle.framer.feed(chunk):
                if handle is not self._handle:
                    return
                try:
                    await self._handle_record(handle, record)
                except Exception:
                    logger.exception(
                        "Failed to handle helper record",
                        extra={
                            "event": "helper_record_failed",
                            "size_bytes": len(record),
                        },
                    )

    async def _handle_record(self, handle: _ListenerHandle, record: bytes) -> None:
        outcome = decode_record(record)
        if isinstance(outcome, NoPlayer):
            await self._deliver(handle, None)
            return
        if isinstance(outcome, DecodeFailure):
            logger.warning(
                "Undecodable helper record",
                extra={
                    "event": "helper_record_decode_failed",
                    "error": str(outcome.error),
                    "size_bytes": len(outcome.raw),
                },
            )
            await self._invoke_hook("decode error", self._on_decode_error, outcome)
            return
        handle.event_count += 1
        if handle.event_count >= self._policy.event_threshold:
            self._begin_restart(handle)
            return
        await self._deliver(handle, outcome)

    async def _deliver(self, handle: _ListenerHandle, event: TrackEvent | None) -> None:
        await self._invoke_hook("event", self._on_event, event)
        # The consumer may have stopped listening from inside its handler.
        if handle is not self._handle:
            return
        await self._clock.handle_event(event)

    def _begin_restart(self, handle: _ListenerHandle) -> None:
        handle.planned_exit = True
        handle.framer.reset()
        handle.event_count = 0
        self._handle = None
        self._status = "restarting"
        logger.info(
            "Recycling listener process after %d events",
            self._policy.event_threshold,
            extra={"event": "listener_recycle", "pid": handle.process.pid},
        )
        self._restart.schedule(self._restart_after_delay(handle))

    async def _restart_after_delay(self, previous: _ListenerHandle) -> None:
        await self._reap(previous)
        await asyncio.sleep(self._policy.restart_delay_s)
        if not self._restart.owns_current_task():
            return
        self._restart_count += 1
        # Stays in the slot while spawning so stop() can cancel a spawn in flight.
        await self._spawn()
        if self._restart.owns_current_task():
            self._restart.detach()

    async def _handle_exit(
        self, handle: _ListenerHandle, *, reader_failed: bool = False
    ) -> None:
        """Retire a helper whose stdout ended without a planned exit.

        A failed reader leaves the process alive, so it is terminated before
        the consumer is told.
        """
        if handle.planned_exit or handle is not self._handle:
            return
        self._handle = None
        self._status = "not_started"
        self._clock.halt()
        if reader_failed:
            await self._reap(handle)
        else:
            await handle.process.wait()
            await _cancel_task(handle.stderr_reader)
        logger.warning(
            "Listener process exited unexpectedly",
            extra={
                "event": "listener_exited",
                "pid": handle.process.pid,
                "returncode": handle.process.returncode,
            },
        )
        await self._invoke_hook("terminated", self._on_terminated)

    async def _drain_stderr(self, handle: _ListenerHandle) -> None:
        stderr = handle.process.stderr
        while stderr is not None:
            chunk = await stderr.read(_READ_CHUNK_BYTES)
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace").strip()
            if text:
                logger.warning("Helper stderr: %s", text)

    async def _reap(self, handle: _ListenerHandle) -> None:
        process = handle.process
        if process.returncode is None:
            with suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=_TERMINATE_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.warning("Listener process ignored terminate; killing it.")
                with suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        await _cancel_task(handle.reader)
        await _cancel_task(handle.stderr_reader)

    async def _invoke_hook(
        self, name: str, hook: Callable[..., Awaitable[None]] | None, *args: Any
    ) -> None:
        if hook is None:
            return
        try:
            await hook(*args)
        except Exception:  # pragma: no cover - consumer safety net
            logger.exception("Listener %s handler failed", name)


async def _cancel_task(task: asyncio.Task[None] | None) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task
