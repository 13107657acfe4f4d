"""Short-lived helper invocations for control commands and state queries.

Each call spawns its own helper process on the IO executor, so waiting for
the child never blocks the event loop that drives the listener. Failures are
returned as `CommandResult` values with a non-zero exit code, never raised.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
import threading
from dataclasses import dataclass

from mediaremote_adapter.runtime_config import HelperConfig, check_helper
from mediaremote_adapter.services.event_decoder import (
    DecodeFailure,
    NoPlayer,
    TrackEvent,
    decode_record,
)
from mediaremote_adapter.services.record_framer import RecordFramer
from mediaremote_adapter.utils.async_utils import run_blocking

logger = logging.getLogger(__name__)

CMD_PLAY = "play"
CMD_PAUSE = "pause"
CMD_TOGGLE_PLAY_PAUSE = "toggle_play_pause"
CMD_NEXT_TRACK = "next_track"
CMD_PREVIOUS_TRACK = "previous_track"
CMD_STOP = "stop"
CMD_SET_TIME = "set_time"
CMD_GET = "get"
CONTROL_COMMANDS = frozenset(
    {
        CMD_PLAY,
        CMD_PAUSE,
        CMD_TOGGLE_PLAY_PAUSE,
        CMD_NEXT_TRACK,
        CMD_PREVIOUS_TRACK,
        CMD_STOP,
        CMD_SET_TIME,
    }
)
INVOCATION_FAILED_EXIT_CODE = -1
_QUERY_READ_BYTES = 4096
_EXIT_GRACE_S = 1.0


@dataclass(frozen=True)
class CommandResult:
    """Captured output of one helper invocation."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandDispatcher:
    """Runs one helper process per command against the configured player."""

    def __init__(self, config: HelperConfig | None) -> None:
        self._config = config

    @property
    def config(self) -> HelperConfig | None:
        return self._config

    async def invoke(self, command: str, *args: str) -> CommandResult:
        """Run `command` to completion off the event loop."""
        if command not in CONTROL_COMMANDS:
            raise ValueError(f"Unknown helper command: {command}")
        problem = check_helper(self._config)
        if problem is not None or self._config is None:
            logger.error("Cannot run helper command %s: %s", command, problem)
            return CommandResult("", problem or "", INVOCATION_FAILED_EXIT_CODE)
        argv = self._config.build_argv(command, *args)
        result = await run_blocking(
            _run_command, argv, timeout_s=self._config.command_timeout_s
        )
        if not result.ok:
            logger.warning(
                "Helper command failed",
                extra={
                    "event": "helper_command_failed",
                    "command": command,
                    "exit_code": result.exit_code,
                    "stderr": result.stderr,
                },
            )
        return result

    async def set_time(self, seconds: float) -> CommandResult:
        return await self.invoke(CMD_SET_TIME, _format_seconds_arg(seconds))

    async def query_state(self) -> TrackEvent | None:
        """Return the first valid `get` record; `None` for no player or none."""
        problem = check_helper(self._config)
        if problem is not None or self._config is None:
            logger.error("Cannot query player state: %s", problem)
            return None
        argv = self._config.build_argv(CMD_GET)
        return await run_blocking(
            _query_first_record, argv, timeout_s=self._config.command_timeout_s
        )


def _run_command(argv: list[str], *, timeout_s: float) -> CommandResult:
    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            check=False,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(
            "", f"Helper timed out after {timeout_s:g}s", INVOCATION_FAILED_EXIT_CODE
        )
    except (OSError, subprocess.SubprocessError) as exc:
        return CommandResult("", str(exc), INVOCATION_FAILED_EXIT_CODE)
    return CommandResult(
        stdout=_decode_text(proc.stdout),
        stderr=_decode_text(proc.stderr),
        exit_code=proc.returncode,
    )


@dataclass(frozen=True)
class StateReply:
    """What a `get` invocation printed up to its first decodable record.

    `outcome` is None when the helper ended (or was killed) before printing
    one. `exit_code` is None when the helper was still running at that point.
    """

    outcome: TrackEvent | NoPlayer | None
    failures: tuple[DecodeFailure, ...] = ()
    stderr: str = ""
    exit_code: int | None = None
    timed_out: bool = False


def read_state_reply(argv: list[str], *, timeout_s: float) -> StateReply:
    """Run `get` and return as soon as its first decodable record arrives.

    Raises OSError/SubprocessError when the helper cannot be launched.
    """
    with tempfile.TemporaryFile() as stderr_file:
        proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=stderr_file)
        expired = threading.Event()

        def _expire() -> None:
            expired.set()
            proc.kill()

        # A helper that never prints must not pin the executor thread forever.
        watchdog = threading.Timer(timeout_s, _expire)
        watchdog.daemon = True
        watchdog.start()
        outcome: TrackEvent | NoPlayer | None = None
        failures: list[DecodeFailure] = []
        stdout = proc.stdout
        try:
            framer = RecordFramer()
            while outcome is None and stdout is not None:
                chunk = stdout.read1(_QUERY_READ_BYTES)
                if not chunk:
                    break
                for record in framer.feed(chunk):
                    decoded = decode_record(record)
                    if isinstance(decoded, DecodeFailure):
                        logger.warning(
                            "Skipping undecodable state record: %s", decoded.error
                        )
                        failures.append(decoded)
                        continue
                    outcome = decoded
                    break
        finally:
            watchdog.cancel()
            # After EOF the helper is normally exiting; after a record it may stream on.
            killed = False
            try:
                proc.wait(timeout=0 if outcome is not None else _EXIT_GRACE_S)
            except subprocess.TimeoutExpired:
                killed = True
                proc.kill()
                proc.wait()
            if stdout is not None:
                stdout.close()
        stderr_file.seek(0)
        return StateReply(
            outcome=outcome,
            failures=tuple(failures),
            stderr=_decode_text(stderr_file.read()),
            exit_code=None if killed or expired.is_set() else proc.returncode,
            timed_out=expired.is_set(),
        )


def _query_first_record(argv: list[str], *, timeout_s: float) -> TrackEvent | None:
    try:
        reply = read_state_reply(argv, timeout_s=timeout_s)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.error("Failed to launch helper state query: %s", exc)
        return None
    if isinstance(reply.outcome, TrackEvent):
        return reply.outcome
    return None


def _format_seconds_arg(seconds: float) -> str:
    return repr(float(seconds))


def _decode_text(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace").strip()
