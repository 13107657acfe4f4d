"""Test configuration."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import mediaremote_adapter.services.command_dispatcher as dispatcher_module  # noqa: E402
from mediaremote_adapter.runtime_config import HelperConfig  # noqa: E402

FAKE_HELPER = Path(__file__).resolve().parent / "fake_helper.py"


@pytest.fixture(autouse=True)
def run_blocking_inline(monkeypatch: pytest.MonkeyPatch):
    """Run blocking adapters inline in tests to avoid thread hangs in CI/sandbox."""

    async def _inline(func, /, *args, **kwargs):
        return func(*args, **kwargs)

    monkeypatch.setattr(dispatcher_module, "run_blocking", _inline)


@pytest.fixture(autouse=True)
def ensure_current_event_loop():
    """Provide a current event loop for sync tests (required on Python 3.9)."""
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        yield
    finally:
        loop.close()
        asyncio.set_event_loop(None)


class FakeHelper:
    """Configures `tests/fake_helper.py` through environment variables."""

    def __init__(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        self.binding = tmp_path / "MediaRemoteAdapter.framework"
        self.binding.write_bytes(b"")
        self.log_path = tmp_path / "helper-calls.jsonl"
        self.script_path = tmp_path / "helper-script.txt"
        self._monkeypatch = monkeypatch
        monkeypatch.setenv("FAKE_HELPER_LOG", str(self.log_path))
        monkeypatch.setenv("FAKE_HELPER_SCRIPT", str(self.script_path))
        monkeypatch.delenv("FAKE_HELPER_HOLD", raising=False)
        monkeypatch.delenv("FAKE_HELPER_EXIT_CODE", raising=False)

    def config(self, **kwargs) -> HelperConfig:
        return HelperConfig(
            argv=(sys.executable, str(FAKE_HELPER)),
            binding_path=str(self.binding),
            **kwargs,
        )

    def script(self, *lines: str | bytes, spawn: int | None = None) -> None:
        path = self.script_path
        if spawn is not None:
            path = Path(f"{self.script_path}.{spawn}")
        encoded = [
            line.encode("utf-8") if isinstance(line, str) else line for line in lines
        ]
        path.write_bytes(b"".join(line + b"\n" for line in encoded))

    def hold(self) -> None:
        self._monkeypatch.setenv("FAKE_HELPER_HOLD", "1")

    def release(self) -> None:
        self._monkeypatch.delenv("FAKE_HELPER_HOLD", raising=False)

    def exit_code(self, code: int) -> None:
        self._monkeypatch.setenv("FAKE_HELPER_EXIT_CODE", str(code))

    def calls(self) -> list[dict[str, object]]:
        if not self.log_path.exists():
            return []
        return [
            json.loads(line)
            for line in self.log_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]


@pytest.fixture
def fake_helper(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeHelper:
    return FakeHelper(tmp_path, monkeypatch)


def track_record(title: str, **payload: object) -> str:
    """Serialize a helper stdout record for one track."""
    return json.dumps({"payload": {"title": title, **payload}})


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Poll `predicate` on the running loop until true or fail."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
