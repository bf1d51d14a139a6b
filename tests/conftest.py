"""Shared fixtures: a fake HTTP session standing in for requests.Session."""

import base64
import json
from typing import Any

import pytest
import structlog

from schoolfeed.config import FeedConfig

# 2024-01-15 08:00:00 UTC
NOW = 1705305600.0

LOGIN_RESULT = {
    "id": "MCG-Display",
    "result": {"sessionId": "ABC123", "personId": 42, "personType": 5, "klasseId": 7},
    "jsonrpc": "2.0",
}


def make_token(expires: float) -> str:
    def segment(obj: Any) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()

    return f"{segment({'alg': 'HS256', 'typ': 'JWT'})}.{segment({'exp': int(expires)})}.c2lnbmF0dXJl"


class FakeResponse:
    def __init__(self, body: Any = "", status_code: int = 200, cookies: dict | None = None):
        self.text = body if isinstance(body, str) else json.dumps(body)
        self.status_code = status_code
        self.cookies = cookies or {}

    def json(self) -> Any:
        return json.loads(self.text)


class FakeHttp:
    """Answers requests by (method, path); records every call."""

    def __init__(self, routes: dict | None = None):
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        path = url.split("/", 3)[3]
        self.calls.append((method, path, kwargs))
        answer = self.routes[(method, path)]
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def calls_to(self, method: str, path: str) -> list[dict]:
        return [kwargs for m, p, kwargs in self.calls if (m, p) == (method, path)]


@pytest.fixture(autouse=True)
def quiet_logs():
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def config(tmp_path) -> FeedConfig:
    return FeedConfig(
        _env_file=None,
        sis_username="display",
        sis_password="hunter2",
        sis_secret="",
        cache_dir=str(tmp_path / "cache"),
    )


@pytest.fixture
def auth_routes() -> dict:
    return {
        ("POST", "WebUntis/jsonrpc.do"): FakeResponse(LOGIN_RESULT),
        ("GET", "WebUntis/api/token/new"): FakeResponse(make_token(NOW + 900)),
    }
