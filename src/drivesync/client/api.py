"""HTTP client for the remote storage API.

This module provides:
- RemoteStorage: The collaborator protocol the sync engine calls against
- RemoteEntry / ListQuery: Remote metadata and the abstract list filter
- DriveClient: httpx implementation over a Drive-v3-shaped REST API
- APIError and subclasses: Error taxonomy for remote failures
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from drivesync.core.config import RemoteConfig

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
CHECKSUM_PROPERTY = "checksum"
ENTRY_FIELDS = "id,name,parents,mimeType,modifiedTime,size,md5Checksum,appProperties,trashed"

# Reasons the API attaches to 403 responses that are really throttling
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

TokenProvider = Callable[[], str | None]


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(APIError):
    """Missing or rejected credentials."""


class ForbiddenError(APIError):
    """Access to the entry was denied."""


class NotFoundError(APIError):
    """Entry not found."""


class TransientNetworkError(APIError):
    """Connection reset, timeout, throttling or server-side hiccup."""


def parse_timestamp(value: str | None) -> float | None:
    """Parse an RFC 3339 timestamp into a Unix timestamp."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value).timestamp()
    except ValueError:
        return None


def format_timestamp(timestamp: float) -> str:
    """Format a Unix timestamp the way the API expects (UTC, milliseconds)."""
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class RemoteEntry:
    """File or folder metadata from the remote store."""

    id: str
    name: str
    parent_id: str | None
    is_folder: bool
    modified_time: float | None = None
    size: int = 0
    checksum: str | None = None
    trashed: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteEntry:
        """Create from API response dictionary."""
        parents = data.get("parents") or []
        properties = data.get("appProperties") or {}
        is_folder = data.get("mimeType") == FOLDER_MIME_TYPE
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            parent_id=parents[0] if parents else None,
            is_folder=is_folder,
            modified_time=parse_timestamp(data.get("modifiedTime")),
            size=int(data.get("size") or 0),
            checksum=None if is_folder else (
                properties.get(CHECKSUM_PROPERTY) or data.get("md5Checksum")
            ),
            trashed=bool(data.get("trashed", False)),
        )


@dataclass(frozen=True)
class ListQuery:
    """Filter predicate for listing remote entries.

    ``None`` means "don't filter on this attribute".
    """

    name: str | None = None
    parent_id: str | None = None
    trashed: bool | None = False
    is_folder: bool | None = None

    def matches(self, entry: RemoteEntry) -> bool:
        """Evaluate the predicate against an entry."""
        if self.name is not None and entry.name != self.name:
            return False
        if self.parent_id is not None and entry.parent_id != self.parent_id:
            return False
        if self.trashed is not None and entry.trashed != self.trashed:
            return False
        return self.is_folder is None or entry.is_folder == self.is_folder


class RemoteStorage(Protocol):
    """Operations the sync engine needs from the remote store."""

    def list(self, query: ListQuery) -> list[RemoteEntry]:
        """Return every entry matching the query, across all pages."""
        ...

    def get(self, entry_id: str) -> RemoteEntry:
        """Return metadata for one entry."""
        ...

    def create(
        self,
        metadata: dict[str, Any],
        media: Iterable[bytes] | None = None,
    ) -> RemoteEntry:
        """Create an entry, optionally streaming its content."""
        ...

    def update(
        self,
        entry_id: str,
        patch: dict[str, Any],
        media: Iterable[bytes] | None = None,
    ) -> RemoteEntry:
        """Patch metadata and optionally replace content."""
        ...

    def trash(self, entry_id: str) -> None:
        """Mark an entry as trashed."""
        ...

    def download(self, entry_id: str) -> Iterator[bytes]:
        """Stream the content of a file entry."""
        ...


def folder_metadata(name: str, parent_id: str) -> dict[str, Any]:
    """Metadata body for creating a folder."""
    return {"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]}


def file_metadata(
    name: str,
    parent_id: str | None,
    checksum: str,
    modified_time: float | None = None,
) -> dict[str, Any]:
    """Metadata body for creating or updating a file.

    ``parent_id`` is omitted for updates (the API moves entries via
    separate add/remove parent parameters).
    """
    metadata: dict[str, Any] = {
        "name": name,
        "appProperties": {CHECKSUM_PROPERTY: checksum},
    }
    if parent_id is not None:
        metadata["parents"] = [parent_id]
    if modified_time is not None:
        metadata["modifiedTime"] = format_timestamp(modified_time)
    return metadata


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _render_query(query: ListQuery) -> str:
    """Render a ListQuery in the API's query language."""
    clauses: list[str] = []
    if query.name is not None:
        clauses.append(f"name = '{_quote(query.name)}'")
    if query.parent_id is not None:
        clauses.append(f"'{_quote(query.parent_id)}' in parents")
    if query.is_folder is True:
        clauses.append(f"mimeType = '{FOLDER_MIME_TYPE}'")
    elif query.is_folder is False:
        clauses.append(f"mimeType != '{FOLDER_MIME_TYPE}'")
    if query.trashed is not None:
        clauses.append(f"trashed = {'true' if query.trashed else 'false'}")
    return " and ".join(clauses)


class BearerTokenAuth(httpx.Auth):
    """Attach a bearer token fetched on demand; refuse to send without one."""

    def __init__(self, token_provider: TokenProvider) -> None:
        self._token_provider = token_provider

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._token_provider()
        if not token:
            raise AuthError("No access token available", 401)
        request.headers["Authorization"] = f"Bearer {token}"
        yield request


class DriveClient:
    """HTTP client for a Drive-v3-shaped storage API."""

    def __init__(
        self,
        config: RemoteConfig,
        token_provider: TokenProvider,
        page_size: int = 1000,
    ) -> None:
        """Initialize the client.

        Args:
            config: Remote endpoint configuration.
            token_provider: Callable returning the current access token,
                or None when no credentials are available.
            page_size: Entries requested per list page.
        """
        self._config = config
        self._page_size = page_size
        self._client = httpx.Client(
            timeout=config.timeout,
            verify=config.verify_ssl,
            auth=BearerTokenAuth(token_provider),
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> DriveClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _files_url(self, entry_id: str | None = None) -> str:
        url = f"{self._config.api_url}/files"
        return f"{url}/{entry_id}" if entry_id else url

    def _upload_files_url(self, entry_id: str | None = None) -> str:
        url = f"{self._config.upload_url}/files"
        return f"{url}/{entry_id}" if entry_id else url

    @staticmethod
    def _error_detail(response: httpx.Response) -> tuple[str, set[str]]:
        """Extract message and reason codes from an error body."""
        try:
            error = response.json().get("error", {})
        except ValueError:
            return response.text or response.reason_phrase, set()
        if not isinstance(error, dict):
            return str(error), set()
        reasons = {e.get("reason", "") for e in error.get("errors", []) if isinstance(e, dict)}
        return error.get("message", response.reason_phrase), reasons

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            return response

        message, reasons = self._error_detail(response)
        if status == 401:
            raise AuthError(message or "Invalid or expired token", status)
        if status == 403:
            if reasons & RATE_LIMIT_REASONS:
                raise TransientNetworkError(message, status)
            raise ForbiddenError(message, status)
        if status == 404:
            raise NotFoundError(message or "Resource not found", status)
        if status in (408, 429) or status >= 500:
            raise TransientNetworkError(message, status)
        raise APIError(message, status)

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to TransientNetworkError."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    # === Health check ===

    def health_check(self) -> bool:
        """Check that the API is reachable with the current credentials."""
        try:
            self._send("GET", f"{self._config.api_url}/about", params={"fields": "user"})
        except APIError:
            return False
        return True

    # === Metadata operations ===

    def list_page(
        self,
        query: ListQuery,
        page_token: str | None = None,
    ) -> tuple[list[RemoteEntry], str | None]:
        """Fetch one page of entries matching a query.

        Returns:
            The entries and the continuation token (None on the last page).
        """
        params: dict[str, str | int] = {
            "q": _render_query(query),
            "pageSize": self._page_size,
            "fields": f"nextPageToken,files({ENTRY_FIELDS})",
        }
        if page_token:
            params["pageToken"] = page_token
        data = self._send("GET", self._files_url(), params=params).json()
        entries = [RemoteEntry.from_dict(f) for f in data.get("files", [])]
        return entries, data.get("nextPageToken")

    def list(self, query: ListQuery) -> list[RemoteEntry]:
        """List all entries matching a query, following continuation tokens."""
        entries: list[RemoteEntry] = []
        page_token: str | None = None
        while True:
            page, page_token = self.list_page(query, page_token)
            entries.extend(page)
            if not page_token:
                return entries

    def get(self, entry_id: str) -> RemoteEntry:
        """Get entry metadata by ID.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        response = self._send("GET", self._files_url(entry_id), params={"fields": ENTRY_FIELDS})
        return RemoteEntry.from_dict(response.json())

    def create(
        self,
        metadata: dict[str, Any],
        media: Iterable[bytes] | None = None,
    ) -> RemoteEntry:
        """Create a folder or file. File content goes through a resumable session."""
        if media is not None:
            return self._upload_media("POST", self._upload_files_url(), metadata, media)
        response = self._send(
            "POST", self._files_url(), params={"fields": ENTRY_FIELDS}, json=metadata
        )
        return RemoteEntry.from_dict(response.json())

    def update(
        self,
        entry_id: str,
        patch: dict[str, Any],
        media: Iterable[bytes] | None = None,
    ) -> RemoteEntry:
        """Patch metadata and optionally replace content."""
        if media is not None:
            return self._upload_media("PATCH", self._upload_files_url(entry_id), patch, media)
        response = self._send(
            "PATCH", self._files_url(entry_id), params={"fields": ENTRY_FIELDS}, json=patch
        )
        return RemoteEntry.from_dict(response.json())

    def trash(self, entry_id: str) -> None:
        """Move an entry to the trash (recoverable)."""
        self._send("PATCH", self._files_url(entry_id), json={"trashed": True})

    # === Media ===

    def _upload_media(
        self,
        method: str,
        url: str,
        metadata: dict[str, Any],
        media: Iterable[bytes],
    ) -> RemoteEntry:
        """Stream content through a resumable upload session.

        Each chunk is sent with an open-ended ``Content-Range``; the session
        is finalized with an empty request carrying the total size.
        """
        response = self._send(
            method,
            url,
            params={"uploadType": "resumable", "fields": ENTRY_FIELDS},
            json=metadata,
        )
        session_url = response.headers.get("Location")
        if not session_url:
            raise APIError("Upload session URL missing from response", response.status_code)

        offset = 0
        for data in media:
            if not data:
                continue
            end = offset + len(data) - 1
            self._send(
                "PUT",
                session_url,
                content=data,
                headers={"Content-Range": f"bytes {offset}-{end}/*"},
            )
            offset = end + 1

        response = self._send(
            "PUT",
            session_url,
            content=b"",
            headers={"Content-Range": f"bytes */{offset}"},
        )
        if response.status_code == 308:
            raise TransientNetworkError("Upload session was not finalized", 308)
        return RemoteEntry.from_dict(response.json())

    def download(self, entry_id: str) -> Iterator[bytes]:
        """Stream file content.

        Raises:
            NotFoundError: If the entry does not exist.
            TransientNetworkError: If the connection drops mid-stream.
        """
        url = self._files_url(entry_id)
        try:
            with self._client.stream("GET", url, params={"alt": "media"}) as response:
                if response.status_code >= 400:
                    response.read()
                    self._handle_response(response)
                yield from response.iter_bytes()
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Download of {entry_id} failed: {e}") from e
