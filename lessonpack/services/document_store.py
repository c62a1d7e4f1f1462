"""
Remote document store: Google Drive v3 + Google Docs v1 over httpx.

Only the operations the publisher needs are implemented:

    list_files(query)                         Drive files.list
    create_file(name, parents, app_properties) Drive files.create (Google Doc)
    get_file(file_id, fields)                 Drive files.get
    get_document(document_id)                 Docs documents.get
    batch_update(document_id, requests)       Docs documents.batchUpdate

Every call is a single HTTP request; retrying is the caller's job (see
``lessonpack.services.retry``).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from google.auth.credentials import Credentials
from google.auth.transport.requests import Request as GoogleAuthRequest

logger = logging.getLogger(__name__)

DRIVE_API = "https://www.googleapis.com/drive/v3"
DOCS_API = "https://docs.googleapis.com/v1"
GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"


class RemoteServiceError(Exception):
    """Non-2xx answer from the document store."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")


class DocumentStore(Protocol):
    async def list_files(self, query: str, page_size: int = 100) -> List[Dict[str, Any]]:
        ...

    async def create_file(
        self,
        name: str,
        parents: Optional[List[str]],
        app_properties: Dict[str, str],
    ) -> Dict[str, Any]:
        ...

    async def get_file(self, file_id: str, fields: str = "id, webViewLink") -> Dict[str, Any]:
        ...

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        ...

    async def batch_update(
        self, document_id: str, requests: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        ...


class GoogleDocsStore:
    """DocumentStore backed by the Google REST APIs."""

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._credentials = credentials
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport
        self._refresh_lock = asyncio.Lock()

    async def _token(self) -> str:
        # google-auth refreshes synchronously; keep it off the event loop.
        async with self._refresh_lock:
            if not self._credentials.valid:
                await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
        return self._credentials.token

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {await self._token()}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.request(method, url, params=params, json=json, headers=headers)

        if resp.status_code >= 400:
            logger.debug("%s %s → %d: %s", method, url, resp.status_code, resp.text[:300])
            raise RemoteServiceError(resp.status_code, resp.text[:300])
        if not resp.content:
            return {}
        return resp.json()

    async def list_files(self, query: str, page_size: int = 100) -> List[Dict[str, Any]]:
        """Every file matching *query*, following ``nextPageToken`` to the end."""
        files: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {
                "q": query,
                "fields": "nextPageToken, files(id, name, appProperties)",
                "pageSize": page_size,
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token
            data = await self._request("GET", f"{DRIVE_API}/files", params=params)
            files.extend(data.get("files") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    async def create_file(
        self,
        name: str,
        parents: Optional[List[str]],
        app_properties: Dict[str, str],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "name": name,
            "mimeType": GOOGLE_DOC_MIME_TYPE,
            "appProperties": app_properties,
        }
        if parents:
            body["parents"] = parents
        return await self._request(
            "POST",
            f"{DRIVE_API}/files",
            params={"fields": "id, webViewLink", "supportsAllDrives": "true"},
            json=body,
        )

    async def get_file(self, file_id: str, fields: str = "id, webViewLink") -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"{DRIVE_API}/files/{file_id}",
            params={"fields": fields, "supportsAllDrives": "true"},
        )

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{DOCS_API}/documents/{document_id}")

    async def batch_update(
        self, document_id: str, requests: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"{DOCS_API}/documents/{document_id}:batchUpdate",
            json={"requests": requests},
        )
