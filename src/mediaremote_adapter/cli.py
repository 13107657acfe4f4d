"""Command-line interface for mediaremote-adapter."""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from . import __version__
from .doctor import render_report, run_doctor
from .logging_utils import setup_logging
from .paths import log_dir
from .runtime_config import (
    HelperConfig,
    check_helper,
    get_helper_config,
    get_restart_policy,
    resolve_log_level,
)
from .services.command_dispatcher import (
    CMD_NEXT_TRACK,
    CMD_PAUSE,
    CMD_PLAY,
    CMD_PREVIOUS_TRACK,
    CMD_STOP,
    CMD_TOGGLE_PLAY_PAUSE,
    CommandDispatcher,
    CommandResult,
)
from .services.event_decoder import RecordDecodeError, TrackEvent
from .services.media_controller import MediaController
from .utils.time_format import format_elapsed_pair
from .version import build_help_epilog

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNAVAILABLE = 2

CONTROL_SUBCOMMANDS = {
    "play": CMD_PLAY,
    "pause": CMD_PAUSE,
    "toggle": CMD_TOGGLE_PLAY_PAUSE,
    "next": CMD_NEXT_TRACK,
    "previous": CMD_PREVIOUS_TRACK,
    "stop": CMD_STOP,
}

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediaremote-adapter",
        description="Listen to and control the host's now-playing media session.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=build_help_epilog(),
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")
    parser.add_argument("--helper", help="Helper command prefix (shell-quoted).")
    parser.add_argument("--binding", help="Helper binding library path.")
    parser.add_argument("--id", dest="bundle_id", help="Target player bundle id.")

    subparsers = parser.add_subparsers(dest="command", required=True)
    listen = subparsers.add_parser("listen", help="Stream now-playing updates.")
    listen.add_argument(
        "--show-time",
        action="store_true",
        help="Also print extrapolated elapsed time updates.",
    )
    subparsers.add_parser("get", help="Print the current now-playing state once.")
    for name in CONTROL_SUBCOMMANDS:
        subparsers.add_parser(name, help=f"Send the {name} command to the player.")
    seek = subparsers.add_parser("seek", help="Move playback to a position.")
    seek.add_argument("seconds", type=_non_negative_float, help="Target position.")
    subparsers.add_parser("doctor", help="Check helper and environment readiness.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = Console()
    try:
        level = resolve_log_level(verbose=args.verbose, quiet=args.quiet)
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
        )
        logger.info("Starting mediaremote-adapter CLI (%s)", args.command)
        config = get_helper_config(
            helper_cmd=args.helper,
            binding_path=args.binding,
            bundle_identifier=args.bundle_id,
        )
        return run_command(args, config, console)
    except KeyboardInterrupt:
        return EXIT_OK
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Unhandled error: %s", exc)
        print("Unexpected error. Re-run with --verbose for details.", file=sys.stderr)
        return EXIT_FAILURE


def run_command(
    args: argparse.Namespace, config: HelperConfig | None, console: Console
) -> int:
    """Dispatch one parsed subcommand and return its process exit code."""
    if args.command == "doctor":
        report = run_doctor(config)
        console.print(render_report(report), markup=False, highlight=False)
        return report.exit_code
    problem = check_helper(config)
    if problem is not None or config is None:
        console.print(f"[red]{escape(problem or 'Helper is not configured.')}[/]")
        return EXIT_UNAVAILABLE
    if args.command == "listen":
        controller = MediaController(config, restart_policy=get_restart_policy())
        return asyncio.run(listen(controller, console, show_time=args.show_time))
    dispatcher = CommandDispatcher(config)
    if args.command == "get":
        event = asyncio.run(dispatcher.query_state())
        console.print(describe_event(event))
        return EXIT_OK
    if args.command == "seek":
        return report_result(asyncio.run(dispatcher.set_time(args.seconds)), console)
    return report_result(
        asyncio.run(dispatcher.invoke(CONTROL_SUBCOMMANDS[args.command])), console
    )


async def listen(
    controller: MediaController, console: Console, *, show_time: bool = False
) -> int:
    """Print updates until the helper dies or the user interrupts."""
    terminated = asyncio.Event()

    async def on_track(event: TrackEvent | None) -> None:
        console.print(describe_event(event))

    async def on_decoding_error(error: RecordDecodeError, raw: bytes) -> None:
        console.print(f"[yellow]Skipped record:[/] {escape(str(error))}")

    async def on_terminated() -> None:
        terminated.set()

    async def on_time(elapsed_s: float) -> None:
        elapsed, _ = format_elapsed_pair(elapsed_s, None)
        console.print(f"[dim]elapsed {elapsed}[/]")

    controller.on_track_info_received = on_track
    controller.on_decoding_error = on_decoding_error
    controller.on_listener_terminated = on_terminated
    if show_time:
        controller.on_playback_time_update = on_time
    if not await controller.start_listening():
        console.print("[red]Listener could not be started.[/]")
        return EXIT_UNAVAILABLE
    try:
        await terminated.wait()
    finally:
        await controller.shutdown()
    console.print("[red]Helper exited unexpectedly.[/]")
    return EXIT_FAILURE


def describe_event(event: TrackEvent | None) -> str:
    """Render one now-playing state as a rich markup line."""
    if event is None:
        return "[dim]No active player[/]"
    state = {True: "playing", False: "paused", None: "unknown"}[event.is_playing]
    title = escape(event.title or "Unknown title")
    parts = [f"[bold]{title}[/]"]
    if event.artist:
        parts.append(escape(event.artist))
    if event.album:
        parts.append(f"[dim]{escape(event.album)}[/]")
    elapsed, duration = format_elapsed_pair(event.elapsed_s, event.duration_s)
    source = event.application_name or event.bundle_identifier or "unknown app"
    status = escape(f"[{state}]")
    return f"{' - '.join(parts)}  {status} {elapsed}/{duration}  ({escape(source)})"


def report_result(result: CommandResult, console: Console) -> int:
    if result.stdout:
        console.print(result.stdout, markup=False, highlight=False)
    if result.ok:
        return EXIT_OK
    detail = result.stderr or f"exit code {result.exit_code}"
    console.print(f"[red]Command failed:[/] {escape(detail)}")
    return EXIT_FAILURE


def _non_negative_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a number: {raw}") from exc
    if not math.isfinite(value) or value < 0:
        raise argparse.ArgumentTypeError("seconds must be >= 0")
    return value


if __name__ == "__main__":
    raise SystemExit(main())
