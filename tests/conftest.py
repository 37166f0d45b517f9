from __future__ import annotations

import json
import urllib.error
import urllib.request
from io import BytesIO

import pytest

_ENV_VARS = (
    "SW_DB_URL",
    "SW_DATA_DIR",
    "SW_ADMIN_TOKEN",
    "SW_MASTER_KEY",
    "SW_KEY_ID",
    "SW_SPORT_API_KEY",
    "SW_OPENAI_API_KEY",
    "SW_LOG_FILE",
    "SW_LOG_LEVELS",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeResponse:
    def __init__(self, payload, status: int = 200):
        if isinstance(payload, bytes):
            self._body = payload
        elif isinstance(payload, str):
            self._body = payload.encode("utf-8")
        else:
            self._body = json.dumps(payload).encode("utf-8")
        self.status = status

    def read(self, *args):
        return self._body

    def getcode(self):
        return self.status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeHttp:
    """Route urlopen calls by URL substring; first matching route wins.

    A route result may be a callable taking the request, for endpoints that
    answer differently per payload.
    """

    def __init__(self):
        self.routes: list[tuple[str, object]] = []
        self.requests: list[urllib.request.Request] = []

    def add(self, fragment: str, result) -> None:
        self.routes.append((fragment, result))

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        url = request.full_url if isinstance(request, urllib.request.Request) else str(request)
        for fragment, result in self.routes:
            if fragment in url:
                if callable(result):
                    result = result(request)
                if isinstance(result, Exception):
                    raise result
                if isinstance(result, FakeResponse):
                    return result
                return FakeResponse(result)
        raise urllib.error.URLError(f"no route for {url}")

    def bodies(self) -> list[dict]:
        return [json.loads(req.data.decode("utf-8")) for req in self.requests if req.data]


def http_error(url: str, code: int, body: bytes = b"") -> urllib.error.HTTPError:
    return urllib.error.HTTPError(url, code, "error", {}, BytesIO(body))


@pytest.fixture
def fake_http(monkeypatch):
    fake = FakeHttp()
    monkeypatch.setattr(urllib.request, "urlopen", fake)
    return fake
