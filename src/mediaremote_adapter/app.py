"""Textual now-playing monitor for mediaremote-adapter."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Awaitable
from pathlib import Path

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import Footer, Header, Static

from . import __version__
from .events import (
    DecodingFailed,
    ListenerTerminated,
    PlaybackTimeUpdated,
    TrackInfoUpdated,
)
from .logging_utils import setup_logging
from .paths import log_dir
from .runtime_config import get_helper_config, get_restart_policy, resolve_log_level
from .services.command_dispatcher import CommandResult
from .services.event_decoder import RecordDecodeError, TrackEvent
from .services.media_controller import MediaController
from .utils.time_format import format_elapsed_pair
from .version import build_help_epilog

logger = logging.getLogger(__name__)


class NowPlayingApp(App):
    TITLE = "mediaremote-adapter"
    CSS = """
    #now-playing {
        padding: 1 2;
    }

    #track-line {
        height: 1;
        text-style: bold;
    }

    #source-line, #time-line, #status-line {
        height: 1;
    }
    """
    BINDINGS = [
        Binding("space", "toggle_play_pause", "Play/Pause"),
        Binding("n", "next_track", "Next"),
        Binding("p", "previous_track", "Previous"),
        Binding("left", "seek_relative(-5)", "-5s"),
        Binding("right", "seek_relative(5)", "+5s"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, controller: MediaController, *, auto_listen: bool = True) -> None:
        super().__init__()
        self.controller = controller
        self._auto_listen = auto_listen
        self._track: TrackEvent | None = None
        self._elapsed_s: float | None = None
        self._status = "Waiting for helper..."
        controller.on_track_info_received = self._forward_track_info
        controller.on_playback_time_update = self._forward_playback_time
        controller.on_listener_terminated = self._forward_listener_terminated
        controller.on_decoding_error = self._forward_decoding_error

    def compose(self) -> ComposeResult:
        yield Header()
        yield Vertical(
            Static("", id="track-line"),
            Static("", id="source-line"),
            Static("", id="time-line"),
            Static("", id="status-line"),
            id="now-playing",
        )
        yield Footer()

    async def on_mount(self) -> None:
        self._render_now_playing()
        if not self._auto_listen:
            return
        if not await self.controller.start_listening():
            self._set_status("Listener unavailable. Run `mediaremote-adapter doctor`.")

    async def on_unmount(self) -> None:
        await self.controller.shutdown()

    def on_track_info_updated(self, message: TrackInfoUpdated) -> None:
        self._track = message.event
        if message.event is None:
            self._elapsed_s = None
            self._status = "No active player"
        else:
            self._status = "Playing" if message.event.is_playing else "Paused"
        self._render_now_playing()

    def on_playback_time_updated(self, message: PlaybackTimeUpdated) -> None:
        self._elapsed_s = message.elapsed_s
        self._render_time()

    def on_listener_terminated(self, _message: ListenerTerminated) -> None:
        self._set_status("Listener stopped unexpectedly. Restart the monitor.")

    def on_decoding_failed(self, message: DecodingFailed) -> None:
        logger.debug("Ignoring undecodable record: %s", message.reason)

    def action_toggle_play_pause(self) -> None:
        self._dispatch(self.controller.toggle_play_pause())

    def action_next_track(self) -> None:
        self._dispatch(self.controller.next_track())

    def action_previous_track(self) -> None:
        self._dispatch(self.controller.previous_track())

    def action_seek_relative(self, delta_s: float) -> None:
        if self._elapsed_s is None:
            return
        target = max(0.0, self._elapsed_s + float(delta_s))
        if self._track is not None and self._track.duration_s is not None:
            target = min(target, self._track.duration_s)
        self.run_worker(self.controller.set_time(target), exclusive=False)

    async def _forward_track_info(self, event: TrackEvent | None) -> None:
        self.post_message(TrackInfoUpdated(event))

    async def _forward_playback_time(self, elapsed_s: float) -> None:
        self.post_message(PlaybackTimeUpdated(elapsed_s))

    async def _forward_listener_terminated(self) -> None:
        self.post_message(ListenerTerminated())

    async def _forward_decoding_error(self, error: RecordDecodeError, raw: bytes) -> None:
        self.post_message(DecodingFailed(str(error), raw))

    def _dispatch(self, command: Awaitable[CommandResult]) -> None:
        # Helper round-trips run as workers, off the message pump.
        self.run_worker(self._report(command), exclusive=False)

    async def _report(self, command: Awaitable[CommandResult]) -> None:
        result = await command
        if not result.ok:
            self._set_status(f"Command failed: {result.stderr or result.exit_code}")

    def _set_status(self, status: str) -> None:
        self._status = status
        self.query_one("#status-line", Static).update(status)

    def _render_now_playing(self) -> None:
        track = self._track
        title = Text()
        if track is None:
            title.append("Nothing playing", style="dim")
        else:
            title.append(track.title or "Unknown title")
            if track.artist:
                title.append(f"  {track.artist}", style="#F2C94C")
            if track.album:
                title.append(f"  {track.album}", style="dim")
        self.query_one("#track-line", Static).update(title)
        source = ""
        if track is not None:
            source = track.application_name or track.bundle_identifier or ""
        self.query_one("#source-line", Static).update(source)
        self.query_one("#status-line", Static).update(self._status)
        self._render_time()

    def _render_time(self) -> None:
        duration_s = self._track.duration_s if self._track is not None else None
        elapsed, duration = format_elapsed_pair(self._elapsed_s, duration_s)
        self.query_one("#time-line", Static).update(f"{elapsed} / {duration}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediaremote-adapter-tui",
        description="Now-playing monitor for the host media-control helper.",
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
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    try:
        level = resolve_log_level(verbose=args.verbose, quiet=args.quiet)
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
            console_logging=False,
        )
        logger.info("Starting mediaremote-adapter TUI")
        config = get_helper_config(
            helper_cmd=args.helper,
            binding_path=args.binding,
            bundle_identifier=args.bundle_id,
        )
        controller = MediaController(config, restart_policy=get_restart_policy())
        NowPlayingApp(controller).run()
        return 0
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Fatal startup error: %s", exc)
        print(
            "Startup failed. Verify helper configuration and re-run with --verbose.",
            file=sys.stderr,
        )
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
