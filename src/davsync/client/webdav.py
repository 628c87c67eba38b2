"""HTTP client for a WebDAV file server.

This module provides:
- WebDAVClient: whole-file GET/PUT/DELETE/MOVE, MKCOL and shallow PROPFIND
  below one configured sync root
- parse_multistatus: structured parser for PROPFIND responses
- ConnectionTestResult: outcome of the connectivity probe

The client knows nothing about chunks or sync policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit

import httpx
from defusedxml import DefusedXmlException
from defusedxml import ElementTree as DefusedET

from davsync.client.retry import retry_with_backoff
from davsync.core.config import WebDAVConfig

logger = logging.getLogger(__name__)

DAV_NS = "DAV:"

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:resourcetype/></d:prop></d:propfind>'
)

# Verbs that can safely be repeated after a transport failure
IDEMPOTENT_METHODS = frozenset({"HEAD", "GET", "PUT", "DELETE", "MKCOL", "PROPFIND"})


class WebDAVError(Exception):
    """Base exception for WebDAV errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(WebDAVError):
    """Authentication failed."""


class NotFoundError(WebDAVError):
    """Resource not found."""


@dataclass
class DavEntry:
    """One <response> element of a multistatus document."""

    path: str  # Decoded URL path, without leading/trailing slash
    is_collection: bool


@dataclass
class RemoteFileInfo:
    """Metadata returned by a HEAD request."""

    size: int
    last_modified: str
    etag: str | None = None


@dataclass
class ConnectionTestResult:
    """Result of test_connection().

    ``success`` with ``path_exists=False`` means the server is reachable
    but the sync folder has not been created yet, which is the normal
    state on first use.
    """

    success: bool
    path_exists: bool
    error: str | None = None


def parse_multistatus(xml_text: str) -> list[DavEntry]:
    """Parse a PROPFIND multistatus response.

    Args:
        xml_text: Response body.

    Returns:
        One entry per <response>, in document order.

    Raises:
        WebDAVError: If the document is not well-formed or declares
            entities.
    """
    try:
        root = DefusedET.fromstring(xml_text)
    except (DefusedET.ParseError, DefusedXmlException) as e:
        raise WebDAVError(f"Malformed PROPFIND response: {e}") from e

    entries: list[DavEntry] = []
    for response in root.iter(f"{{{DAV_NS}}}response"):
        href = response.findtext(f"{{{DAV_NS}}}href")
        if not href:
            continue
        # Servers may answer with absolute URLs or absolute paths
        path = unquote(urlsplit(href.strip()).path).strip("/")
        is_collection = (
            response.find(f".//{{{DAV_NS}}}resourcetype/{{{DAV_NS}}}collection")
            is not None
        )
        entries.append(DavEntry(path=path, is_collection=is_collection))
    return entries


def _split_path(path: str) -> list[str]:
    """Split a relative path into non-empty segments."""
    return [segment for segment in path.strip("/").split("/") if segment]


class WebDAVClient:
    """HTTP client for one WebDAV server and sync root."""

    def __init__(
        self,
        config: WebDAVConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the WebDAV client.

        Args:
            config: Connection settings.
            transport: Optional httpx transport (used by tests).
        """
        self._config = config
        self._base_url = config.url
        self._sync_segments = _split_path(config.sync_path)
        self._client = httpx.Client(
            auth=httpx.BasicAuth(config.username, config.password),
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def config(self) -> WebDAVConfig:
        """Get the connection settings."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> WebDAVClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Request helpers ===

    def _url(
        self,
        path: str,
        include_sync_path: bool = True,
        collection: bool = False,
    ) -> str:
        """Build the full URL for a path relative to the sync root."""
        segments = list(self._sync_segments) if include_sync_path else []
        segments.extend(_split_path(path))
        url = "/".join([self._base_url, *(quote(s, safe="") for s in segments)])
        if collection and not url.endswith("/"):
            url += "/"
        return url

    def _root_path(self) -> str:
        """Decoded URL path of the sync root, without slashes."""
        return unquote(urlsplit(self._url("")).path).strip("/")

    def _request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        content: str | bytes | None = None,
    ) -> httpx.Response:
        """Send a request, retrying idempotent verbs on transport errors."""

        def send() -> httpx.Response:
            logger.debug(f"WebDAV {method} {url}")
            return self._client.request(method, url, headers=headers, content=content)

        if method not in IDEMPOTENT_METHODS:
            return send()
        return retry_with_backoff(
            send,
            max_retries=self._config.max_retries,
            description=f"WebDAV {method} {url}",
        )

    def _handle_response(
        self,
        response: httpx.Response,
        action: str,
        allowed: tuple[int, ...] = (),
    ) -> httpx.Response:
        """Raise the matching exception for an error response.

        Args:
            response: Response to check.
            action: Description used in error messages.
            allowed: Error statuses that count as success for this action.
        """
        status = response.status_code
        if response.is_success or status in allowed:
            return response
        if status in (401, 403):
            raise AuthenticationError(f"{action}: authentication failed", status)
        if status == 404:
            raise NotFoundError(f"{action}: not found", status)
        raise WebDAVError(f"{action}: HTTP {status} {response.reason_phrase}", status)

    # === File operations ===

    def exists(self, path: str) -> bool:
        """Check if a file or directory exists.

        Returns False on any failure: "not found" is a normal outcome here.
        """
        try:
            response = self._request("HEAD", self._url(path))
        except httpx.HTTPError as e:
            logger.debug(f"Existence check failed for {path}: {e}")
            return False
        return response.is_success

    def get_file(self, path: str) -> str:
        """Get the content of a file.

        Raises:
            NotFoundError: If the file does not exist.
            AuthenticationError: If credentials are rejected.
            WebDAVError: For other error statuses.
        """
        response = self._handle_response(
            self._request("GET", self._url(path)), f"Failed to get file {path}"
        )
        return response.text

    def get_file_bytes(self, path: str) -> bytes:
        """Get the raw content of a file.

        Raises:
            NotFoundError: If the file does not exist.
            WebDAVError: For other error statuses.
        """
        response = self._handle_response(
            self._request("GET", self._url(path)), f"Failed to get file {path}"
        )
        return response.content

    def put_file_bytes(self, path: str, content: bytes) -> None:
        """Create or replace a file with binary content."""
        self._handle_response(
            self._request(
                "PUT",
                self._url(path),
                headers={"Content-Type": "application/octet-stream"},
                content=content,
            ),
            f"Failed to put file {path}",
        )
        logger.debug(f"WebDAV uploaded binary: {path}")

    def put_file(self, path: str, content: str) -> None:
        """Create or replace a file."""
        self._handle_response(
            self._request(
                "PUT",
                self._url(path),
                headers={"Content-Type": "application/json"},
                content=content.encode("utf-8"),
            ),
            f"Failed to put file {path}",
        )
        logger.debug(f"WebDAV uploaded: {path}")

    def delete_file(self, path: str) -> None:
        """Delete a file. A file that is already gone counts as deleted."""
        self._handle_response(
            self._request("DELETE", self._url(path)),
            f"Failed to delete file {path}",
            allowed=(404,),
        )
        logger.debug(f"WebDAV deleted: {path}")

    def move_file(self, old_path: str, new_path: str) -> None:
        """Move or rename a file, overwriting any existing destination."""
        self._handle_response(
            self._request(
                "MOVE",
                self._url(old_path),
                headers={"Destination": self._url(new_path), "Overwrite": "T"},
            ),
            f"Failed to move file {old_path} -> {new_path}",
        )
        logger.debug(f"WebDAV moved: {old_path} -> {new_path}")

    def create_directory(self, path: str = "", parents: bool = False) -> None:
        """Create a directory. An existing directory counts as created.

        Args:
            path: Directory path relative to the sync root ("" for the root).
            parents: Also create the sync root and any missing parents.
        """
        if not parents:
            self._mkcol(self._url(path, collection=True), path)
            return

        segments = [*self._sync_segments, *_split_path(path)]
        for depth in range(1, len(segments) + 1):
            partial = "/".join(segments[:depth])
            self._mkcol(self._url(partial, include_sync_path=False, collection=True), partial)

    def _mkcol(self, url: str, label: str) -> None:
        # 405 Method Not Allowed means the collection already exists
        self._handle_response(
            self._request("MKCOL", url),
            f"Failed to create directory {label or '/'}",
            allowed=(405,),
        )
        logger.debug(f"WebDAV created directory: {label or '/'}")

    def list_directory(self, path: str = "") -> list[str]:
        """List the direct children of a directory.

        Args:
            path: Directory path relative to the sync root.

        Returns:
            Child paths relative to the sync root; directories end with "/".
            A missing directory yields an empty list.
        """
        response = self._request(
            "PROPFIND",
            self._url(path, collection=True),
            headers={"Depth": "1", "Content-Type": "application/xml"},
            content=PROPFIND_BODY,
        )
        if response.status_code == 404:
            return []
        self._handle_response(response, f"Failed to list directory {path or '/'}")

        root = self._root_path()
        listed = "/".join(_split_path(path))
        children: list[str] = []
        for entry in parse_multistatus(response.text):
            if root and entry.path != root and not entry.path.startswith(root + "/"):
                continue
            relative = entry.path[len(root):].strip("/")
            if relative == listed:
                continue  # The listed directory itself
            children.append(relative + "/" if entry.is_collection else relative)
        return children

    def get_metadata(self, path: str) -> RemoteFileInfo | None:
        """Get size, modification date and ETag of a file.

        Returns:
            RemoteFileInfo, or None if the file is missing or unreachable.
        """
        try:
            response = self._request("HEAD", self._url(path))
        except httpx.HTTPError:
            return None
        if not response.is_success:
            return None
        return RemoteFileInfo(
            size=int(response.headers.get("Content-Length", "0")),
            last_modified=response.headers.get("Last-Modified", ""),
            etag=response.headers.get("ETag"),
        )

    # === Connectivity probe ===

    def _propfind_depth0(self, url: str) -> httpx.Response:
        return self._request(
            "PROPFIND",
            url,
            headers={"Depth": "0", "Content-Type": "application/xml"},
            content=PROPFIND_BODY,
        )

    def test_connection(self) -> ConnectionTestResult:
        """Probe the server in three steps.

        1. HEAD the WebDAV root to tell auth failures from other failures.
        2. PROPFIND the root to confirm it is a WebDAV collection.
        3. PROPFIND the sync path; a 404 here is reported as success with
           ``path_exists=False``.

        Never raises; failures are reported in the result.
        """
        logger.info(
            f"Testing WebDAV connection to {self._base_url} "
            f"(sync path: /{self._config.sync_path}, user: {self._config.username})"
        )
        root_url = self._url("", include_sync_path=False, collection=True)

        try:
            # Step 1: HEAD is optional on collections, so transport errors fall through
            try:
                head = self._request("HEAD", root_url)
                logger.info(f"WebDAV root HEAD response status: {head.status_code}")
                if head.status_code in (401, 403):
                    return ConnectionTestResult(
                        success=False,
                        path_exists=False,
                        error="Authentication failed: check user name and password.",
                    )
                if not head.is_success and head.status_code not in (404, 405, 207):
                    return ConnectionTestResult(
                        success=False,
                        path_exists=False,
                        error=f"Cannot access WebDAV root (HTTP {head.status_code})",
                    )
            except httpx.HTTPError as e:
                logger.warning(f"HEAD request on WebDAV root failed: {e}")

            # Step 2: the root must answer PROPFIND
            root = self._propfind_depth0(root_url)
            logger.info(f"WebDAV root PROPFIND response status: {root.status_code}")
            if not root.is_success:
                if root.status_code in (401, 403):
                    error = "Authentication failed: check user name and password."
                elif root.status_code == 404:
                    error = f"WebDAV root not found: check the server URL ({self._base_url})"
                else:
                    error = f"Cannot connect to WebDAV server (HTTP {root.status_code})"
                return ConnectionTestResult(success=False, path_exists=False, error=error)

            # Step 3: does the sync folder exist yet?
            sync = self._propfind_depth0(self._url("", collection=True))
            logger.info(f"Sync path response status: {sync.status_code}")
            if sync.is_success:
                logger.info("WebDAV connection test successful, sync path exists")
                return ConnectionTestResult(success=True, path_exists=True)
            if sync.status_code == 404:
                logger.info("WebDAV connection successful, but sync path does not exist")
                return ConnectionTestResult(
                    success=True,
                    path_exists=False,
                    error="Connected, but the sync path does not exist yet; it will be created.",
                )
            return ConnectionTestResult(
                success=False,
                path_exists=False,
                error=f"Sync path check failed (HTTP {sync.status_code})",
            )
        except httpx.HTTPError as e:
            logger.error(f"WebDAV connection test failed: {e}")
            return ConnectionTestResult(success=False, path_exists=False, error=str(e))
