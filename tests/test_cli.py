"""CLI argument contract."""

from __future__ import annotations

import pytest

from backstream import cli
from backstream.config import reset_settings


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("BACKSTREAM_HOST", raising=False)
    monkeypatch.delenv("BACKSTREAM_PORT", raising=False)
    reset_settings()
    yield
    reset_settings()


def test_defaults_come_from_settings() -> None:
    args = cli._parse_args([])
    assert args.host == "0.0.0.0"
    assert args.port == 8000
    assert args.log_level == "INFO"
    assert args.reload is False


def test_port_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BACKSTREAM_PORT", "9100")
    reset_settings()
    assert cli._parse_args([]).port == 9100


def test_main_runs_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

    cli.main(["--port", "9001", "--log-level", "debug"])

    target, kwargs = calls[0]
    assert target == "backstream.server:app"
    assert kwargs["port"] == 9001
    assert kwargs["log_level"] == "debug"
