"""Runtime configuration normalization helpers.

These helpers keep CLI flag and environment interpretation deterministic
across entrypoints. Flags always win over environment values.
"""

from __future__ import annotations

import math
import os
import shlex
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

HELPER_CMD_ENV = "MEDIAREMOTE_ADAPTER_HELPER_CMD"
BINDING_PATH_ENV = "MEDIAREMOTE_ADAPTER_BINDING_PATH"
BUNDLE_ID_ENV = "MEDIAREMOTE_ADAPTER_BUNDLE_ID"
COMMAND_TIMEOUT_ENV = "MEDIAREMOTE_ADAPTER_COMMAND_TIMEOUT_S"
RESTART_THRESHOLD_ENV = "MEDIAREMOTE_ADAPTER_RESTART_THRESHOLD"
RESTART_DELAY_ENV = "MEDIAREMOTE_ADAPTER_RESTART_DELAY_S"

DEFAULT_COMMAND_TIMEOUT_S = 5.0
DEFAULT_RESTART_THRESHOLD = 200
DEFAULT_RESTART_DELAY_S = 0.5


@dataclass(frozen=True)
class HelperConfig:
    """Resolved helper invocation settings shared by every spawned process."""

    argv: tuple[str, ...]
    binding_path: str
    bundle_identifier: str | None = None
    command_timeout_s: float = DEFAULT_COMMAND_TIMEOUT_S

    def build_argv(self, command: str, *args: str) -> list[str]:
        """Return `helper [--id <bundle>] <binding> <command> [args...]`."""
        argv = list(self.argv)
        if self.bundle_identifier:
            argv.extend(["--id", self.bundle_identifier])
        argv.append(self.binding_path)
        argv.append(command)
        argv.extend(args)
        return argv


@dataclass(frozen=True)
class RestartPolicy:
    """Proactive helper recycling to bound helper-side memory growth."""

    event_threshold: int = DEFAULT_RESTART_THRESHOLD
    restart_delay_s: float = DEFAULT_RESTART_DELAY_S

    def __post_init__(self) -> None:
        if self.event_threshold < 1:
            raise ValueError("event_threshold must be >= 1")
        if self.restart_delay_s < 0:
            raise ValueError("restart_delay_s must be >= 0")


def resolve_log_level(*, verbose: bool, quiet: bool) -> str:
    """Resolve effective log level from CLI flags.

    Precedence is deterministic: --quiet overrides --verbose.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    return "INFO"


def get_helper_config(
    env: Mapping[str, str] | None = None,
    *,
    helper_cmd: str | None = None,
    binding_path: str | None = None,
    bundle_identifier: str | None = None,
) -> HelperConfig | None:
    """Return helper config from flags/environment, or `None` when unset."""
    values = os.environ if env is None else env
    raw_cmd = (helper_cmd or values.get(HELPER_CMD_ENV, "")).strip()
    raw_binding = (binding_path or values.get(BINDING_PATH_ENV, "")).strip()
    if not raw_cmd or not raw_binding:
        return None
    try:
        argv = tuple(shlex.split(raw_cmd, posix=(os.name != "nt")))
    except ValueError:
        return None
    if not argv:
        return None
    bundle = (bundle_identifier or values.get(BUNDLE_ID_ENV, "")).strip() or None
    return HelperConfig(
        argv=argv,
        binding_path=raw_binding,
        bundle_identifier=bundle,
        command_timeout_s=_parse_positive_float(
            values.get(COMMAND_TIMEOUT_ENV), DEFAULT_COMMAND_TIMEOUT_S, minimum=0.1
        ),
    )


def with_bundle_identifier(
    config: HelperConfig | None, bundle_identifier: str | None
) -> HelperConfig | None:
    if config is None:
        return None
    return replace(config, bundle_identifier=bundle_identifier or None)


def get_restart_policy(env: Mapping[str, str] | None = None) -> RestartPolicy:
    """Return restart policy from environment with safe defaults."""
    values = os.environ if env is None else env
    return RestartPolicy(
        event_threshold=_parse_threshold(values.get(RESTART_THRESHOLD_ENV)),
        restart_delay_s=_parse_positive_float(
            values.get(RESTART_DELAY_ENV), DEFAULT_RESTART_DELAY_S, minimum=0.0
        ),
    )


def check_helper(config: HelperConfig | None) -> str | None:
    """Return a human-readable environment problem, or `None` when usable."""
    if config is None:
        return (
            f"Helper is not configured; set {HELPER_CMD_ENV} and {BINDING_PATH_ENV}"
            " or pass --helper/--binding."
        )
    executable = config.argv[0]
    if shutil.which(executable) is None and not Path(executable).is_file():
        return f"Helper executable not found: {executable}"
    if not Path(config.binding_path).exists():
        return f"Helper binding library not found: {config.binding_path}"
    return None


def _parse_positive_float(raw: str | None, default: float, *, minimum: float) -> float:
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    if not math.isfinite(parsed):
        return default
    return max(minimum, parsed)


def _parse_threshold(raw: str | None) -> int:
    if raw is None:
        return DEFAULT_RESTART_THRESHOLD
    try:
        parsed = int(raw)
    except ValueError:
        return DEFAULT_RESTART_THRESHOLD
    return max(1, parsed)
