from __future__ import annotations

import importlib.util
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
import requests

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "ask.py"


@pytest.fixture()
def ask_script():
    spec = importlib.util.spec_from_file_location("ask_script", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


def _fake_get(calls: List[Dict[str, Any]], status_code: int, text: str):
    def _get(url: str, params: Dict[str, str], timeout: float):
        calls.append({"url": url, "params": params, "timeout": timeout})
        return SimpleNamespace(ok=200 <= status_code < 300, status_code=status_code, text=text)

    return _get


def test_words_are_joined_into_query(ask_script, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    calls: List[Dict[str, Any]] = []
    monkeypatch.setattr(ask_script.requests, "get", _fake_get(calls, 200, "Paris"))

    exit_code = ask_script.main(["--base-url", "http://gateway:8080/", "capital", "of", "France?"])

    assert exit_code == 0
    assert calls == [
        {"url": "http://gateway:8080/", "params": {"q": "capital of France?"}, "timeout": 90.0}
    ]
    assert capsys.readouterr().out == "Paris\n"


def test_error_status_goes_to_stderr(ask_script, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    calls: List[Dict[str, Any]] = []
    monkeypatch.setattr(
        ask_script.requests,
        "get",
        _fake_get(calls, 500, "Failed to contact DeepSeek LLM. Please try again later."),
    )

    exit_code = ask_script.main(["hello"])

    captured = capsys.readouterr()
    assert exit_code == 1
    assert captured.out == ""
    assert "Failed to contact DeepSeek LLM" in captured.err


def test_connection_failure_is_reported(ask_script, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    def _refuse(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(ask_script.requests, "get", _refuse)

    exit_code = ask_script.main(["hello"])

    assert exit_code == 1
    assert "connection refused" in capsys.readouterr().err


def test_blank_question_is_rejected(ask_script) -> None:
    with pytest.raises(SystemExit):
        ask_script.main(["   "])
