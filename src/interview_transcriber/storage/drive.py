from __future__ import annotations

import asyncio
import json
import mimetypes
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import httpx

from interview_transcriber.errors import ExternalServiceError, MetadataError

# ref: https://developers.google.com/identity/protocols/oauth2/scopes#drive
DRIVE_SCOPES: tuple[str, ...] = (
    # download shared files
    "https://www.googleapis.com/auth/drive.readonly",
    # upload results
    "https://www.googleapis.com/auth/drive.file",
)
TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_DOCUMENT = "application/vnd.google-apps.document"
FILE_FIELDS = "id,name,webViewLink,mimeType,parents"

# The id follows /d/ (files), /e/ (forms) or /folders/.
_FILE_URL = re.compile(
    r"^https?://(?:drive|docs)\.google\.com/[^\s'\")]+/(?:d|e|folders)/([-\w]{25,})"
    r"(?:/[^\s'\")]*[^\s\")'.?!])?$"
)


def extract_file_id(url: str) -> str | None:
    match = _FILE_URL.match(url.strip())
    return match.group(1) if match else None


_API_KEYS = {"web_view_link": "webViewLink", "mime_type": "mimeType"}


@dataclass(frozen=True, slots=True)
class DriveFile:
    id: str
    name: str
    web_view_link: str
    mime_type: str | None = None
    parents: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_api(cls, payload: dict[str, Any], required: Sequence[str] = ("id", "name", "web_view_link")) -> "DriveFile":
        missing = [
            _API_KEYS.get(name, name)
            for name in required
            if not payload.get(_API_KEYS.get(name, name))
        ]
        if missing:
            raise MetadataError(
                f"Failed to get file metadata from Google Drive API (missing: {', '.join(missing)})."
            )
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            web_view_link=str(payload.get("webViewLink") or ""),
            mime_type=payload.get("mimeType"),
            parents=tuple(payload.get("parents") or ()),
        )


def service_account_credentials(email: str, private_key: str):
    from google.oauth2 import service_account

    return service_account.Credentials.from_service_account_info(
        {"client_email": email, "private_key": private_key, "token_uri": TOKEN_URI},
        scopes=list(DRIVE_SCOPES),
    )


class DriveClient:
    """Google Drive v3 access as a service account."""

    def __init__(
        self,
        credentials: Any,
        *,
        timeout_seconds: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds
        self.base_url = "https://www.googleapis.com"
        self._transport = transport

    @classmethod
    def from_service_account(cls, email: str, private_key: str, **kwargs: Any) -> "DriveClient":
        return cls(service_account_credentials(email, private_key), **kwargs)

    async def _auth_headers(self) -> dict[str, str]:
        if not self.credentials.valid:
            from google.auth.transport.requests import Request

            await asyncio.to_thread(self.credentials.refresh, Request())
        return {"Authorization": f"Bearer {self.credentials.token}"}

    async def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=await self._auth_headers(),
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Google Drive {action} failed ({response.status_code}): {response.text[:400]}"
            )

    async def get_file(
        self,
        file_id: str,
        *,
        fields: str = FILE_FIELDS,
        required: Sequence[str] = ("id", "name", "web_view_link"),
    ) -> DriveFile:
        async with await self._client() as client:
            response = await client.get(
                f"/drive/v3/files/{file_id}",
                params={"fields": fields, "supportsAllDrives": "true"},
            )
        self._raise_for_status(response, "metadata lookup")
        return DriveFile.from_api(response.json(), required=required)

    async def download(self, file_id: str, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with await self._client() as client:
            async with client.stream(
                "GET",
                f"/drive/v3/files/{file_id}",
                params={"alt": "media", "supportsAllDrives": "true"},
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response, "download")
                with path.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        handle.write(chunk)
        return path

    async def upload(self, path: Path, parent_id: str | None = None, *, convert_to: str | None = None) -> DriveFile:
        """Upload a local file, optionally converting it to a Google Workspace type."""

        metadata: dict[str, Any] = {"name": path.stem if convert_to else path.name}
        if parent_id:
            metadata["parents"] = [parent_id]
        if convert_to:
            metadata["mimeType"] = convert_to

        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        content = await asyncio.to_thread(path.read_bytes)
        boundary = uuid.uuid4().hex
        body = b"".join(
            [
                f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
                json.dumps(metadata, ensure_ascii=False).encode("utf-8"),
                f"\r\n--{boundary}\r\nContent-Type: {media_type}\r\n\r\n".encode(),
                content,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )

        async with await self._client() as client:
            response = await client.post(
                "/upload/drive/v3/files",
                params={"uploadType": "multipart", "fields": FILE_FIELDS, "supportsAllDrives": "true"},
                headers={"Content-Type": f"multipart/related; boundary={boundary}"},
                content=body,
            )
        self._raise_for_status(response, "upload")
        return DriveFile.from_api(response.json())

    async def count_shared_files(self) -> int:
        """Number of files other accounts shared with the service account."""

        async with await self._client() as client:
            response = await client.get(
                "/drive/v3/files",
                params={"fields": "files(owners)", "pageSize": 100},
            )
        self._raise_for_status(response, "file list")
        files = response.json().get("files") or []
        # Only legacy files have several owners; the first one decides.
        return sum(1 for item in files if (item.get("owners") or [{}])[0].get("me") is False)
