"""Tests for the streaming helper supervisor using a scripted fake helper."""

from __future__ import annotations

import asyncio

from conftest import track_record, wait_for

import mediaremote_adapter.services.process_supervisor as supervisor_module
from mediaremote_adapter.runtime_config import RestartPolicy
from mediaremote_adapter.services.event_decoder import DecodeFailure, TrackEvent
from mediaremote_adapter.services.playback_clock import PlaybackClock
from mediaremote_adapter.services.process_supervisor import ProcessSupervisor
from mediaremote_adapter.services.record_framer import RecordFramer


def _run(coro):
    return asyncio.run(coro)


class Hooks:
    def __init__(self) -> None:
        self.events: list[TrackEvent | None] = []
        self.failures: list[DecodeFailure] = []
        self.terminated = 0

    async def on_event(self, event: TrackEvent | None) -> None:
        self.events.append(event)

    async def on_decode_error(self, failure: DecodeFailure) -> None:
        self.failures.append(failure)

    async def on_terminated(self) -> None:
        self.terminated += 1

    def titles(self) -> list[str | None]:
        return [event.title if event is not None else None for event in self.events]


def _supervisor(fake_helper, hooks: Hooks, **kwargs) -> ProcessSupervisor:
    config = fake_helper.config()
    return ProcessSupervisor(
        argv_factory=lambda: config.build_argv("loop"),
        clock=PlaybackClock(tick_interval_s=0.01),
        on_event=hooks.on_event,
        on_decode_error=hooks.on_decode_error,
        on_terminated=hooks.on_terminated,
        **kwargs,
    )


def test_events_and_no_player_are_delivered_in_order(fake_helper) -> None:
    fake_helper.script(track_record("one", isPlaying=True), "NIL", track_record("two"))
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> ProcessSupervisor:
        supervisor = _supervisor(fake_helper, hooks)
        assert await supervisor.start()
        assert supervisor.status == "running"
        assert supervisor.pid is not None
        await wait_for(lambda: len(hooks.events) == 3)
        await supervisor.stop()
        return supervisor

    supervisor = _run(scenario())
    assert hooks.titles() == ["one", None, "two"]
    assert supervisor.status == "not_started"
    assert supervisor.pid is None
    assert hooks.terminated == 0


def test_start_is_idempotent_while_running(fake_helper) -> None:
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> None:
        supervisor = _supervisor(fake_helper, hooks)
        assert await supervisor.start()
        assert await supervisor.start()
        await supervisor.stop()

    _run(scenario())
    assert len(fake_helper.calls()) == 1


def test_undecodable_record_is_reported_and_stream_continues(fake_helper) -> None:
    fake_helper.script("{broken", track_record("after"))
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> None:
        supervisor = _supervisor(fake_helper, hooks)
        await supervisor.start()
        await wait_for(lambda: len(hooks.events) == 1)
        assert supervisor.event_count == 1
        await supervisor.stop()

    _run(scenario())
    assert hooks.titles() == ["after"]
    assert len(hooks.failures) == 1
    assert hooks.failures[0].raw == b"{broken"


def test_threshold_event_triggers_restart_and_is_not_delivered(fake_helper) -> None:
    fake_helper.script(
        track_record("e1"),
        "NIL",
        track_record("e2"),
        track_record("e3"),
        track_record("e4"),
        spawn=0,
    )
    fake_helper.script(track_record("e5"), spawn=1)
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> ProcessSupervisor:
        supervisor = _supervisor(
            fake_helper,
            hooks,
            restart_policy=RestartPolicy(event_threshold=3, restart_delay_s=0.0),
        )
        await supervisor.start()
        await wait_for(lambda: "e5" in hooks.titles())
        assert supervisor.status == "running"
        assert supervisor.event_count == 1
        await supervisor.stop()
        return supervisor

    supervisor = _run(scenario())
    assert hooks.titles() == ["e1", None, "e2", "e5"]
    assert supervisor.restart_count == 1
    assert hooks.terminated == 0
    assert [call["command"] for call in fake_helper.calls()] == ["loop", "loop"]


def test_unexpected_exit_notifies_once_and_halts_clock(fake_helper) -> None:
    fake_helper.script(track_record("only", isPlaying=True, elapsedTimeMicros=1))
    fake_helper.exit_code(3)
    hooks = Hooks()

    async def scenario() -> ProcessSupervisor:
        supervisor = _supervisor(fake_helper, hooks)
        await supervisor.start()
        await wait_for(lambda: hooks.terminated == 1)
        await asyncio.sleep(0.05)
        return supervisor

    supervisor = _run(scenario())
    assert hooks.terminated == 1
    assert hooks.titles() == ["only"]
    assert supervisor.status == "not_started"
    assert not supervisor.is_running


def test_planned_stop_does_not_notify_termination(fake_helper) -> None:
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> None:
        supervisor = _supervisor(fake_helper, hooks)
        await supervisor.start()
        await supervisor.stop()
        await asyncio.sleep(0.05)

    _run(scenario())
    assert hooks.terminated == 0


def test_stop_during_restart_delay_cancels_respawn(fake_helper) -> None:
    fake_helper.script(track_record("e1"))
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> ProcessSupervisor:
        supervisor = _supervisor(
            fake_helper,
            hooks,
            restart_policy=RestartPolicy(event_threshold=1, restart_delay_s=30.0),
        )
        await supervisor.start()
        await wait_for(lambda: supervisor.status == "restarting")
        assert supervisor.is_running
        await supervisor.stop()
        return supervisor

    supervisor = _run(scenario())
    assert supervisor.status == "not_started"
    assert supervisor.restart_count == 0
    assert hooks.events == []
    assert hooks.terminated == 0
    assert len(fake_helper.calls()) == 1


def test_spawn_failure_reports_termination(tmp_path) -> None:
    hooks = Hooks()

    async def scenario() -> tuple[bool, ProcessSupervisor]:
        supervisor = ProcessSupervisor(
            argv_factory=lambda: [str(tmp_path / "missing-helper"), "loop"],
            clock=PlaybackClock(),
            on_terminated=hooks.on_terminated,
        )
        return await supervisor.start(), supervisor

    started, supervisor = _run(scenario())
    assert started is False
    assert supervisor.status == "not_started"
    assert hooks.terminated == 1


def test_stop_from_inside_event_handler(fake_helper) -> None:
    fake_helper.script(track_record("one", isPlaying=True), track_record("two"))
    fake_helper.hold()
    hooks = Hooks()
    holder: dict[str, ProcessSupervisor] = {}

    async def stop_on_first(event: TrackEvent | None) -> None:
        hooks.events.append(event)
        await holder["supervisor"].stop()

    async def scenario() -> ProcessSupervisor:
        supervisor = _supervisor(fake_helper, hooks)
        supervisor._on_event = stop_on_first
        holder["supervisor"] = supervisor
        await supervisor.start()
        await wait_for(lambda: supervisor.status == "not_started")
        await asyncio.sleep(0.05)
        return supervisor

    supervisor = _run(scenario())
    assert hooks.titles() == ["one"]
    assert hooks.terminated == 0
    assert supervisor._clock.state == "idle"


class FlakyClock(PlaybackClock):
    """Clock whose first event raises, as a buggy consumer-side clock would."""

    def __init__(self) -> None:
        super().__init__(tick_interval_s=0.01)
        self.seen: list[str | None] = []

    async def handle_event(self, event: TrackEvent | None) -> None:
        self.seen.append(event.title if event is not None else None)
        if len(self.seen) == 1:
            raise RuntimeError("clock exploded")
        await super().handle_event(event)


def test_failed_record_delivery_does_not_stop_the_stream(fake_helper) -> None:
    fake_helper.script(track_record("bad", isPlaying=True), track_record("good"))
    fake_helper.hold()
    hooks = Hooks()
    clock = FlakyClock()

    async def scenario() -> ProcessSupervisor:
        config = fake_helper.config()
        supervisor = ProcessSupervisor(
            argv_factory=lambda: config.build_argv("loop"),
            clock=clock,
            on_event=hooks.on_event,
            on_terminated=hooks.on_terminated,
        )
        await supervisor.start()
        await wait_for(lambda: len(clock.seen) == 2)
        assert supervisor.status == "running"
        await supervisor.stop()
        return supervisor

    _run(scenario())
    assert hooks.titles() == ["bad", "good"]
    assert clock.seen == ["bad", "good"]
    assert hooks.terminated == 0


def test_reader_crash_reaps_helper_and_notifies(fake_helper, monkeypatch) -> None:
    def explode(self, chunk: bytes) -> list[bytes]:
        raise RuntimeError("framer exploded")

    monkeypatch.setattr(RecordFramer, "feed", explode)
    fake_helper.script(track_record("never"))
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> None:
        supervisor = _supervisor(fake_helper, hooks)
        await supervisor.start()
        handle = supervisor._handle
        assert handle is not None
        await wait_for(lambda: hooks.terminated == 1)
        assert supervisor.status == "not_started"
        assert supervisor.pid is None
        assert handle.process.returncode is not None
        await supervisor.stop()

    _run(scenario())
    assert hooks.events == []
    assert hooks.terminated == 1


def test_start_racing_stop_leaves_one_live_helper(fake_helper) -> None:
    fake_helper.hold()
    hooks = Hooks()

    async def scenario() -> None:
        supervisor = _supervisor(fake_helper, hooks)
        await supervisor.start()
        first = supervisor._handle
        _, started = await asyncio.gather(supervisor.stop(), supervisor.start())
        assert started is True
        assert supervisor.status == "running"
        second = supervisor._handle
        assert second is not None and second is not first
        assert first is not None and first.process.returncode is not None
        await wait_for(lambda: len(fake_helper.calls()) == 2)
        await supervisor.stop()
        assert supervisor.status == "not_started"
        assert second.process.returncode is not None

    _run(scenario())
    assert hooks.terminated == 0


def test_stop_during_restart_spawn_leaves_no_helper(fake_helper, monkeypatch) -> None:
    fake_helper.script(track_record("e1"))
    fake_helper.hold()
    hooks = Hooks()
    real_exec = asyncio.create_subprocess_exec
    attempts: list[int] = []
    spawned: list[asyncio.subprocess.Process] = []

    async def slow_exec(*args, **kwargs):
        attempts.append(len(attempts))
        if len(attempts) > 1:
            await asyncio.sleep(0.5)
        process = await real_exec(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(supervisor_module.asyncio, "create_subprocess_exec", slow_exec)

    async def scenario() -> ProcessSupervisor:
        supervisor = _supervisor(
            fake_helper,
            hooks,
            restart_policy=RestartPolicy(event_threshold=1, restart_delay_s=0.0),
        )
        await supervisor.start()
        await wait_for(lambda: len(attempts) == 2)
        await supervisor.stop()
        assert supervisor.status == "not_started"
        await asyncio.sleep(0.7)
        return supervisor

    supervisor = _run(scenario())
    assert supervisor.status == "not_started"
    assert supervisor.pid is None
    assert len(spawned) == 1
    assert spawned[0].returncode is not None
    assert hooks.terminated == 0
