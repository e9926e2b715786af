from typing import Dict, List, Optional, Tuple

import pytest
import requests

import static_mirror as sm

BASE = "https://example.org"


class FakeResponse:
    def __init__(self, url: str, status: int, body: bytes, headers: Dict[str, str]):
        self.url = url
        self.status_code = status
        self.content = body
        self.headers = headers
        self.encoding: Optional[str] = None
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Serves canned responses keyed by URL and records every request."""

    def __init__(self, routes: Optional[Dict] = None, heads: Optional[Dict] = None):
        self.routes = dict(routes or {})
        self.heads = dict(heads or {})
        self.calls: List[Tuple[str, str]] = []
        self.closed = False

    def _respond(self, table: Dict, url: str) -> FakeResponse:
        canned = table.get(url, 404)
        if isinstance(canned, Exception):
            raise canned
        headers = {"Content-Type": "text/html; charset=utf-8"}
        if isinstance(canned, int):
            return FakeResponse(url, canned, b"", headers)
        if isinstance(canned, (str, bytes)):
            canned = (200, canned)
        status, body = canned[0], canned[1]
        if len(canned) > 2:
            headers = dict(canned[2])
        if isinstance(body, str):
            body = body.encode("utf-8")
        return FakeResponse(url, status, body, headers)

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append(("GET", url))
        return self._respond(self.routes, url)

    def head(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append(("HEAD", url))
        table = self.heads if url in self.heads else self.routes
        resp = self._respond(table, url)
        resp.content = b""
        return resp

    def close(self) -> None:
        self.closed = True

    def count(self, url: str, method: str = "GET") -> int:
        return sum(1 for m, u in self.calls if m == method and u == url)


def sitemap_index(*locs: str) -> str:
    items = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"{items}</sitemapindex>"
    )


def urlset(*locs: str) -> str:
    items = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"{items}</urlset>"
    )


@pytest.fixture
def settings(tmp_path):
    return sm.Settings(
        base_url=BASE,
        content_root=tmp_path / "content",
        asset_root=tmp_path / "public" / "remote-assets",
        default_extra_paths=[],
        default_exclude_paths=[],
    )


@pytest.fixture
def make_cache(settings):
    def _make(session: FakeSession, **overrides) -> sm.AssetCache:
        for k, v in overrides.items():
            setattr(settings, k, v)
        return sm.AssetCache(sm.Site(settings), session, settings.asset_root)

    return _make


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")
