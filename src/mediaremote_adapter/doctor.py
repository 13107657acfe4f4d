"""Runtime diagnostics for the now-playing helper and its environment."""

from __future__ import annotations

import importlib
import platform
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from mediaremote_adapter.runtime_config import HelperConfig
from mediaremote_adapter.services.command_dispatcher import read_state_reply
from mediaremote_adapter.services.event_decoder import NoPlayer

DoctorStatus = Literal["ok", "missing", "error"]

_QUERY_TIMEOUT_S = 3.0


@dataclass(frozen=True)
class DoctorCheck:
    """One environment/tooling readiness check result."""

    name: str
    status: DoctorStatus
    required: bool
    detail: str
    hint: str | None = None


@dataclass(frozen=True)
class DoctorReport:
    """Collection of doctor checks and derived process exit contract."""

    checks: list[DoctorCheck]

    @property
    def exit_code(self) -> int:
        """Return non-zero when any required check failed or is missing."""
        for check in self.checks:
            if check.required and check.status != "ok":
                return 2
        return 0


def run_doctor(config: HelperConfig | None) -> DoctorReport:
    """Run diagnostics for the configured helper."""
    checks = [
        check_platform(),
        check_helper_executable(config),
        check_binding(config),
    ]
    if all(check.status == "ok" for check in checks[1:]):
        checks.append(check_helper_query(config))
    checks.append(check_textual())
    return DoctorReport(checks=checks)


def render_report(report: DoctorReport) -> str:
    """Render terminal-friendly diagnostics report text."""
    lines = ["mediaremote-adapter doctor", ""]
    for check in report.checks:
        state = _status_token(check.status)
        req = "required" if check.required else "optional"
        lines.append(f"{state} {check.name:<12} [{req}] {check.detail}")
        if check.hint:
            lines.append(f"      hint: {check.hint}")
    lines.append("")
    lines.append("Result: OK" if report.exit_code == 0 else "Result: FAIL")
    return "\n".join(lines)


def check_platform() -> DoctorCheck:
    """Warn when not on macOS, where the media-control helper lives."""
    system = platform.system()
    if system == "Darwin":
        return DoctorCheck(
            name="platform",
            status="ok",
            required=False,
            detail=f"macOS {platform.mac_ver()[0] or 'unknown'}",
        )
    return DoctorCheck(
        name="platform",
        status="error",
        required=False,
        detail=f"{system or 'unknown'} (helper expects macOS)",
        hint="The helper can only reach the media-control subsystem on macOS.",
    )


def check_helper_executable(config: HelperConfig | None) -> DoctorCheck:
    """Verify the helper command prefix resolves to an executable."""
    if config is None:
        return DoctorCheck(
            name="helper",
            status="missing",
            required=True,
            detail="not configured",
            hint="Set MEDIAREMOTE_ADAPTER_HELPER_CMD or pass --helper.",
        )
    executable = config.argv[0]
    resolved = shutil.which(executable)
    if resolved is None and not Path(executable).is_file():
        return DoctorCheck(
            name="helper",
            status="missing",
            required=True,
            detail=f"{executable} not found",
            hint="Check the helper command path and PATH.",
        )
    return DoctorCheck(
        name="helper",
        status="ok",
        required=True,
        detail=" ".join(config.argv),
    )


def check_binding(config: HelperConfig | None) -> DoctorCheck:
    """Verify the binding library path passed to every helper call exists."""
    if config is None:
        return DoctorCheck(
            name="binding",
            status="missing",
            required=True,
            detail="not configured",
            hint="Set MEDIAREMOTE_ADAPTER_BINDING_PATH or pass --binding.",
        )
    if not Path(config.binding_path).exists():
        return DoctorCheck(
            name="binding",
            status="missing",
            required=True,
            detail=f"{config.binding_path} does not exist",
            hint="Point --binding at the helper's shared library.",
        )
    return DoctorCheck(
        name="binding", status="ok", required=True, detail=config.binding_path
    )


def check_helper_query(config: HelperConfig | None) -> DoctorCheck:
    """Run one `get` query and check that its first record decodes."""
    if config is None:
        return DoctorCheck(
            name="query", status="missing", required=True, detail="not configured"
        )
    try:
        reply = read_state_reply(config.build_argv("get"), timeout_s=_QUERY_TIMEOUT_S)
    except (OSError, subprocess.SubprocessError) as exc:
        return DoctorCheck(
            name="query",
            status="error",
            required=True,
            detail=f"launch failed ({exc.__class__.__name__})",
            hint="Verify the helper command runs from a terminal.",
        )
    outcome = reply.outcome
    if outcome is None and reply.failures:
        return DoctorCheck(
            name="query",
            status="error",
            required=True,
            detail=f"undecodable record ({reply.failures[0].error})",
        )
    if outcome is None:
        exit_text = "timeout" if reply.timed_out else str(reply.exit_code)
        stderr_lines = reply.stderr.splitlines()
        detail = f"no output (exit={exit_text})" + (
            f": {stderr_lines[0]}" if stderr_lines else ""
        )
        return DoctorCheck(
            name="query",
            status="error",
            required=True,
            detail=detail,
            hint="Grant the helper media-control access and retry.",
        )
    if isinstance(outcome, NoPlayer):
        return DoctorCheck(
            name="query", status="ok", required=True, detail="no active player"
        )
    playing = outcome.application_name or outcome.bundle_identifier or "unknown app"
    return DoctorCheck(
        name="query", status="ok", required=True, detail=f"now playing in {playing}"
    )


def check_textual() -> DoctorCheck:
    """Verify Textual importability for the TUI monitor."""
    try:
        module = importlib.import_module("textual")
    except Exception as exc:
        return DoctorCheck(
            name="textual",
            status="missing",
            required=False,
            detail=f"not importable ({exc.__class__.__name__})",
            hint="Install Python dependencies (pip install mediaremote-adapter).",
        )
    version = getattr(module, "__version__", None)
    detail = f"importable ({version})" if version else "importable"
    return DoctorCheck(name="textual", status="ok", required=False, detail=detail)


def _status_token(status: DoctorStatus) -> str:
    """Map doctor status to compact display token."""
    if status == "ok":
        return "[OK]"
    if status == "missing":
        return "[MISS]"
    return "[ERR]"
