from __future__ import annotations

from typing import Any

import pytest
from aiohttp import web

from gsirelay import cli
from gsirelay.server import SERVICES_KEY


def test_main_builds_app_from_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("HTTP_PORT", "GSI_AUTH_TOKEN", "RELAY_URL", "RAW_LOG"):
        monkeypatch.delenv(key, raising=False)
    captured: dict[str, Any] = {}

    def fake_run_app(app: web.Application, **kwargs: Any) -> None:
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(cli.web, "run_app", fake_run_app)

    assert cli.main(["--http-port", "4010", "--auth-token", "secret", "--source", "lan-pc"]) == 0

    services = captured["app"][SERVICES_KEY]
    assert captured["port"] == 4010
    assert services.config.auth_token == "secret"
    assert services.config.source == "lan-pc"
    assert services.raw_log is None
    assert services.relay is None


def test_main_reports_config_errors(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(cli.web, "run_app", lambda *_a, **_k: pytest.fail("should not start"))

    assert cli.main(["--relay-url", "redis://localhost:6379"]) == 2
    assert "Unsupported relay URL scheme" in capsys.readouterr().err
