# tests/conftest.py

"""Shared pytest fixtures and HTTP fakes."""

import json
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import patch

import pytest

SM_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"


def urlset_xml(*urls: str) -> bytes:
    entries = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset xmlns="{SM_NS}">{entries}</urlset>'.encode("utf-8")


def index_xml(*sitemaps: str) -> bytes:
    entries = "".join(f"<sitemap><loc>{u}</loc></sitemap>" for u in sitemaps)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex xmlns="{SM_NS}">{entries}</sitemapindex>'.encode("utf-8")


class FakeResponse:
    """Just enough of requests.Response for the code under test."""

    def __init__(self, status_code: int = 200, content: bytes = b"", json_body: Any = None):
        self.status_code = status_code
        if json_body is not None:
            content = json.dumps(json_body).encode("utf-8")
        self.content = content
        self.text = content.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """
    Routes requests to canned responses.

    `routes` maps URL (or (METHOD, URL)) to a FakeResponse or an exception
    instance to raise. Unknown URLs answer 404.
    """

    def __init__(self, routes: Optional[Dict[Any, Any]] = None):
        self.routes = routes or {}
        self.headers: Dict[str, str] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.closed = False

    def _respond(self, method: str, url: str, kwargs: Dict[str, Any]) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        outcome = self.routes.get((method, url), self.routes.get(url))
        if callable(outcome) and not isinstance(outcome, FakeResponse):
            outcome = outcome(method, url, kwargs)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome if outcome is not None else FakeResponse(404, b"not found")

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self._respond("GET", url, kwargs)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._respond("POST", url, kwargs)

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        return self._respond(method, url, kwargs)

    def close(self) -> None:
        self.closed = True

    def posted_texts(self) -> List[str]:
        return [kw["json"]["content"]["text"] for method, _, kw in self.calls if method == "POST"]


@pytest.fixture(autouse=True)
def mock_sleep():
    """Patch time.sleep globally so politeness delays run instantly."""
    with patch("time.sleep"):
        yield
