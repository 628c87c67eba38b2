"""Shared fixtures: an in-memory WebDAV server behind httpx.MockTransport."""

from __future__ import annotations

import base64
from urllib.parse import quote, unquote, urlsplit

import httpx
import pytest

from davsync.client.webdav import WebDAVClient
from davsync.core.config import SyncConfig, WebDAVConfig

BASE_URL = "http://dav.test/dav"
USERNAME = "alice"
PASSWORD = "secret"
SYNC_PATH = "app/sync"


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


class InMemoryWebDAV:
    """Minimal WebDAV server keeping files and collections in dicts.

    Paths are decoded URL paths without leading or trailing slashes,
    e.g. "dav/app/sync/chunks/a.json".
    """

    def __init__(self, root: str = "dav", username: str = USERNAME, password: str = PASSWORD):
        self.files: dict[str, bytes] = {}
        self.collections: set[str] = {root}
        self.requests: list[httpx.Request] = []
        token = base64.b64encode(f"{username}:{password}".encode()).decode()
        self._authorization = f"Basic {token}"
        self.transport = httpx.MockTransport(self.handle)

    # === Helpers for tests ===

    def path(self, relative: str) -> str:
        """Full server path of a path relative to the sync root."""
        return "/".join(["dav", SYNC_PATH, relative.strip("/")]).strip("/")

    def read(self, relative: str) -> str:
        return self.files[self.path(relative)].decode("utf-8")

    def write(self, relative: str, content: str) -> None:
        self.files[self.path(relative)] = content.encode("utf-8")

    def remove(self, relative: str) -> None:
        del self.files[self.path(relative)]

    def methods(self) -> list[str]:
        return [request.method for request in self.requests]

    # === Request handling ===

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") != self._authorization:
            return httpx.Response(401)

        path = unquote(request.url.path).strip("/")
        handler = getattr(self, f"_{request.method.lower()}", None)
        if handler is None:
            return httpx.Response(405)
        return handler(request, path)

    def _head(self, request: httpx.Request, path: str) -> httpx.Response:
        if path in self.files:
            return httpx.Response(
                200,
                headers={
                    "Content-Length": str(len(self.files[path])),
                    "Last-Modified": "Mon, 01 Jan 2024 00:00:00 GMT",
                    "ETag": f'"{len(self.files[path])}"',
                },
            )
        if path in self.collections:
            return httpx.Response(200)
        return httpx.Response(404)

    def _get(self, request: httpx.Request, path: str) -> httpx.Response:
        if path in self.files:
            return httpx.Response(200, content=self.files[path])
        return httpx.Response(404)

    def _put(self, request: httpx.Request, path: str) -> httpx.Response:
        if _parent(path) not in self.collections:
            return httpx.Response(409)
        created = path not in self.files
        self.files[path] = request.content
        return httpx.Response(201 if created else 204)

    def _delete(self, request: httpx.Request, path: str) -> httpx.Response:
        if path in self.files:
            del self.files[path]
            return httpx.Response(204)
        if path in self.collections:
            prefix = path + "/"
            self.collections = {c for c in self.collections if c != path and not c.startswith(prefix)}
            self.files = {f: b for f, b in self.files.items() if not f.startswith(prefix)}
            return httpx.Response(204)
        return httpx.Response(404)

    def _mkcol(self, request: httpx.Request, path: str) -> httpx.Response:
        if path in self.collections or path in self.files:
            return httpx.Response(405)
        if _parent(path) not in self.collections:
            return httpx.Response(409)
        self.collections.add(path)
        return httpx.Response(201)

    def _move(self, request: httpx.Request, path: str) -> httpx.Response:
        if path not in self.files:
            return httpx.Response(404)
        destination = unquote(urlsplit(request.headers["Destination"]).path).strip("/")
        if _parent(destination) not in self.collections:
            return httpx.Response(409)
        existed = destination in self.files
        self.files[destination] = self.files.pop(path)
        return httpx.Response(204 if existed else 201)

    def _propfind(self, request: httpx.Request, path: str) -> httpx.Response:
        if path not in self.collections and path not in self.files:
            return httpx.Response(404)

        entries = [path]
        if request.headers.get("Depth") == "1" and path in self.collections:
            prefix = path + "/"
            children = {
                p for p in (*self.collections, *self.files)
                if p.startswith(prefix) and "/" not in p[len(prefix):]
            }
            entries.extend(sorted(children))

        responses = []
        for entry in entries:
            is_collection = entry in self.collections
            href = "/" + quote(entry) + ("/" if is_collection else "")
            resourcetype = "<d:collection/>" if is_collection else ""
            responses.append(
                f"<d:response><d:href>{href}</d:href><d:propstat><d:prop>"
                f"<d:resourcetype>{resourcetype}</d:resourcetype>"
                f"</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
            )
        body = (
            '<?xml version="1.0" encoding="utf-8"?>'
            f'<d:multistatus xmlns:d="DAV:">{"".join(responses)}</d:multistatus>'
        )
        return httpx.Response(207, content=body.encode("utf-8"))


def _webdav_config(**overrides: object) -> WebDAVConfig:
    values: dict[str, object] = {
        "url": BASE_URL,
        "username": USERNAME,
        "password": PASSWORD,
        "sync_path": SYNC_PATH,
        "max_retries": 0,
    }
    values.update(overrides)
    return WebDAVConfig(**values)  # type: ignore[arg-type]


def _sync_config(**overrides: object) -> SyncConfig:
    return SyncConfig(webdav=_webdav_config(), **overrides)  # type: ignore[arg-type]


@pytest.fixture
def dav_server() -> InMemoryWebDAV:
    """Fresh in-memory WebDAV server."""
    return InMemoryWebDAV()


@pytest.fixture
def dav_client(dav_server: InMemoryWebDAV):  # type: ignore[no-untyped-def]
    """WebDAV client bound to the in-memory server."""
    client = WebDAVClient(_webdav_config(), transport=dav_server.transport)
    yield client
    client.close()


@pytest.fixture
def webdav_config() -> WebDAVConfig:
    """WebDAVConfig pointing at the in-memory server, without retries."""
    return _webdav_config()


@pytest.fixture
def sync_config_factory():  # type: ignore[no-untyped-def]
    """Factory for SyncConfig objects pointing at the in-memory server."""
    return _sync_config
