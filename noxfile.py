"""Nox sessions for mediaremote-adapter quality gates."""

from __future__ import annotations

import nox

nox.options.sessions = ["lint", "typecheck", "tests"]


@nox.session
def lint(session: nox.Session) -> None:
    """Check lint and formatting without rewriting files."""
    session.install("ruff")
    session.run("ruff", "check", "src", "tests")
    session.run("ruff", "format", "--check", "src", "tests")


@nox.session(name="lint-fix")
def lint_fix(session: nox.Session) -> None:
    session.install("ruff")
    session.run("ruff", "check", "--fix", "src", "tests")
    session.run("ruff", "format", "src", "tests")


@nox.session
def typecheck(session: nox.Session) -> None:
    """Type-check the installed package sources."""
    session.install("mypy")
    session.install("-e", ".")
    session.run("mypy", "src")


@nox.session
def tests(session: nox.Session) -> None:
    """Run the pytest suite; subprocess tests use tests/fake_helper.py."""
    session.install("-e", ".[test]")
    session.run("pytest", *session.posargs)


@nox.session
def smoke(session: nox.Session) -> None:
    """Exercise both entrypoints and the doctor report without a helper."""
    session.install("-e", ".")
    session.run("mediaremote-adapter", "--help")
    session.run("mediaremote-adapter-tui", "--help")
    session.run("mediaremote-adapter", "doctor", success_codes=[0, 2])
