"""Tests for per-user path helpers."""

from __future__ import annotations

import mediaremote_adapter.paths as paths


def test_log_dir_is_created(tmp_path, monkeypatch) -> None:
    class FakeAppDirs:
        def __init__(self, app_name: str) -> None:
            self.user_log_dir = str(tmp_path / app_name / "logs")

    monkeypatch.setattr(paths, "AppDirs", FakeAppDirs)
    paths.get_app_dirs.cache_clear()
    try:
        result = paths.log_dir()
    finally:
        paths.get_app_dirs.cache_clear()

    assert result == tmp_path / "mediaremote-adapter" / "logs"
    assert result.is_dir()
