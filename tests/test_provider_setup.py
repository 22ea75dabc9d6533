"""Tests for provider setup: LM Studio model validation and agent creation."""

import json
from http import HTTPStatus
from typing import Any

import pytest
from pydantic_ai import Agent

import photo_publisher.copywriter as cw


class _DummyResponse:
    """Minimal httpx-style response stub for validation tests."""

    def __init__(self, status_code: int, payload: Any) -> None:  # noqa: ANN401
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:  # noqa: ANN401
        return self._payload

    @property
    def text(self) -> str:
        return json.dumps(self._payload)


def _patch_httpx_get(
    monkeypatch: pytest.MonkeyPatch,
    response: _DummyResponse,
) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_get(url: str, *, headers: dict[str, str], timeout: float) -> _DummyResponse:
        calls.append({"url": url, "headers": headers, "timeout": timeout})
        return response

    monkeypatch.setattr(cw.httpx, "get", fake_get)
    return calls


def test_validate_lmstudio_model_passes_when_list_contains_id(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The helper returns quietly when the requested model identifier is present."""
    payload = {"data": [{"id": "vision-pro"}]}
    calls = _patch_httpx_get(monkeypatch, _DummyResponse(HTTPStatus.OK, payload))

    cw.validate_lmstudio_model("http://localhost:1234/v1", "vision-pro", "secret")

    assert calls, "Expected httpx.get to be invoked"
    recorded = calls[0]
    assert recorded["url"] == "http://localhost:1234/v1/models"
    assert recorded["timeout"] == pytest.approx(5.0)
    assert recorded["headers"].get("Accept") == "application/json"
    assert recorded["headers"].get("Authorization") == "Bearer secret"


def test_validate_lmstudio_model_exits_when_model_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    """SystemExit is raised when the requested model identifier is absent."""
    payload = {"data": [{"id": "other-model"}]}
    _patch_httpx_get(monkeypatch, _DummyResponse(HTTPStatus.OK, payload))

    with pytest.raises(SystemExit):
        cw.validate_lmstudio_model("http://localhost:1234/v1", "vision-pro", None)


def test_validate_lmstudio_model_exits_on_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """A non-200 listing response stops the run before any photo is processed."""
    _patch_httpx_get(monkeypatch, _DummyResponse(HTTPStatus.SERVICE_UNAVAILABLE, {}))

    with pytest.raises(SystemExit):
        cw.validate_lmstudio_model("http://localhost:1234/v1", "vision-pro", None)


def test_validate_lmstudio_model_rejects_non_http_url() -> None:
    """Only http(s) endpoints are queried."""
    with pytest.raises(SystemExit):
        cw.validate_lmstudio_model("file:///tmp/models", "vision-pro", None)


def test_create_agent_requires_openai_key() -> None:
    """The hosted provider refuses to start without a credential."""
    with pytest.raises(SystemExit):
        cw.create_agent("openai", "gpt-4o", api_key=None)


def test_create_agent_builds_text_agent_for_openai() -> None:
    """A configured agent is returned when a key is supplied; no request is made."""
    agent = cw.create_agent("openai", "gpt-4o", api_key="sk-test")
    assert isinstance(agent, Agent)
