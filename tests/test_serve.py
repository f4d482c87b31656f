import logging

import pytest

from prompt_relay.cli import serve


def test_main_starts_uvicorn_with_cli_options(monkeypatch: pytest.MonkeyPatch):
    captured: dict[str, object] = {}

    def fake_run(app: str, **kwargs) -> None:
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(serve.uvicorn, "run", fake_run)
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: None)

    serve.main(["--host", "0.0.0.0", "--port", "9000", "--log-level", "debug"])

    assert captured["app"] == "prompt_relay.main:app"
    assert captured["host"] == "0.0.0.0"
    assert captured["port"] == 9000
    assert captured["log_level"] == "debug"
    assert captured["reload"] is False


def test_parser_rejects_unknown_log_level():
    with pytest.raises(SystemExit):
        serve.build_parser().parse_args(["--log-level", "verbose"])
