"""
Google Drive fetcher for the whitelist document.

Read-only: finds the document by folder name and file name and downloads its
bytes. The whitelist is never written back to Drive.

Credentials, in order:
1. Service account JSON (``SyncConfig.credentials_file``), exchanged for an
   access token with a signed JWT bearer assertion
2. A pre-issued OAuth access token in ``GOOGLE_DRIVE_ACCESS_TOKEN``

SECURITY:
- Private keys and access tokens are never logged
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx
import jwt

from .config import DriveLocator, SyncConfig
from .errors import FetchError

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
DRIVE_READONLY_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Refresh tokens this many seconds before they expire
TOKEN_REFRESH_MARGIN_SECONDS = 300
ASSERTION_LIFETIME_SECONDS = 3600


class Fetcher(Protocol):
    def fetch(self, locator: DriveLocator) -> bytes: ...


@dataclass(frozen=True)
class ServiceAccountCredentials:
    client_email: str
    private_key: str
    token_uri: str = GOOGLE_TOKEN_URI
    private_key_id: Optional[str] = None

    @classmethod
    def from_file(cls, path: Path) -> "ServiceAccountCredentials":
        try:
            with Path(path).open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError) as exc:
            raise FetchError(f"Could not read service account file {path}: {exc}")

        if not isinstance(raw, dict) or raw.get("type", "service_account") != "service_account":
            raise FetchError(f"{path} is not a service account key file")
        if not raw.get("client_email") or not raw.get("private_key"):
            raise FetchError(f"{path} is missing client_email or private_key")

        return cls(
            client_email=raw["client_email"],
            private_key=raw["private_key"],
            token_uri=raw.get("token_uri") or GOOGLE_TOKEN_URI,
            private_key_id=raw.get("private_key_id"),
        )


def _escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveFetcher:
    """
    Downloads the whitelist document from Google Drive.

    Searches shared drives as well as the service account's own files.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        credentials: Optional[ServiceAccountCredentials] = None,
        static_token: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.config = config
        self._credentials = credentials
        self._static_token = static_token or os.getenv("GOOGLE_DRIVE_ACCESS_TOKEN") or None
        self._access_token: Optional[str] = None
        self._access_token_expires_at = 0.0
        self._http_client = http_client or httpx.Client(timeout=config.fetch_timeout_seconds)

        if self._credentials is None and self._static_token is None:
            credentials_file = config.credentials_file
            if credentials_file is not None and credentials_file.exists():
                self._credentials = ServiceAccountCredentials.from_file(credentials_file)
                logger.info("Loaded service account credentials", extra={"path": str(credentials_file)})

    def close(self) -> None:
        self._http_client.close()

    def __enter__(self) -> "GoogleDriveFetcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _get_access_token(self) -> str:
        if self._credentials is None:
            if self._static_token:
                return self._static_token
            raise FetchError(
                "Could not find Google credentials. Place a service account JSON at "
                f"{self.config.credentials_file} or set GOOGLE_DRIVE_ACCESS_TOKEN"
            )

        now = time.time()
        if self._access_token and now < self._access_token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token

        claims = {
            "iss": self._credentials.client_email,
            "scope": DRIVE_READONLY_SCOPE,
            "aud": self._credentials.token_uri,
            "iat": int(now),
            "exp": int(now) + ASSERTION_LIFETIME_SECONDS,
        }
        headers = {"kid": self._credentials.private_key_id} if self._credentials.private_key_id else None
        try:
            assertion = jwt.encode(claims, self._credentials.private_key, algorithm="RS256", headers=headers)
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise FetchError(f"Could not sign service account assertion: {exc}")

        try:
            response = self._http_client.post(
                self._credentials.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Google token exchange failed", extra={"status_code": e.response.status_code})
            raise FetchError(f"Token exchange failed: {e.response.status_code}", status_code=e.response.status_code)
        except (httpx.RequestError, ValueError) as e:
            raise FetchError(f"Token exchange error: {e}")

        token = data.get("access_token")
        if not token:
            raise FetchError("No access_token in token response")
        self._access_token = token
        self._access_token_expires_at = now + float(data.get("expires_in", ASSERTION_LIFETIME_SECONDS))
        logger.info("Obtained Google Drive access token")
        return token

    def _get(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._get_access_token()}"}
        try:
            response = self._http_client.get(f"{DRIVE_API_BASE}{path}", params=params, headers=headers)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code == 401:
                message = "Drive access denied (401). Check service account permissions."
            elif code == 403:
                message = "Drive access forbidden (403). Check folder sharing."
            elif code == 404:
                message = "Drive file not found (404)."
            else:
                message = f"Drive API error: {code}"
            logger.error("Drive API HTTP error", extra={"status_code": code, "path": path})
            raise FetchError(message, status_code=code)
        except httpx.RequestError as e:
            logger.error("Drive API request error", extra={"path": path, "error": str(e)})
            raise FetchError(f"Drive request failed: {e}")

    def _list_files(self, query: Optional[str], page_size: int) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
            "pageSize": page_size,
            "fields": "files(id, name)",
        }
        if query:
            params["q"] = query
        try:
            files = self._get("/files", params).json().get("files") or []
        except ValueError as exc:
            raise FetchError(f"Malformed Drive response: {exc}")
        return [f for f in files if isinstance(f, dict) and f.get("id")]

    def test_access(self) -> bool:
        """List a single file to prove the credentials work. Raises FetchError otherwise."""
        self._list_files(None, page_size=1)
        logger.info("Successfully accessed Google Drive API")
        return True

    def find_file_id(self, folder_name: str, file_name: str) -> Optional[str]:
        logger.info("Searching for Drive folder", extra={"folder_name": folder_name})
        folder_query = (
            f"name='{_escape_query_value(folder_name)}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        folders = self._list_files(folder_query, page_size=10)
        if not folders:
            logger.error("Drive folder not found", extra={"folder_name": folder_name})
            return None

        # duplicate folder names are searched in order
        for folder in folders:
            file_query = (
                f"name='{_escape_query_value(file_name)}' and '{folder['id']}' in parents and trashed=false"
            )
            files = self._list_files(file_query, page_size=1)
            if files:
                file_id = files[0]["id"]
                logger.info("Found Drive file", extra={"file_name": file_name, "file_id": file_id})
                return file_id
        return None

    def download(self, file_id: str) -> bytes:
        response = self._get(f"/files/{file_id}", {"alt": "media", "supportsAllDrives": "true"})
        logger.info("Downloaded file from Drive", extra={"file_id": file_id, "size_bytes": len(response.content)})
        return response.content

    def fetch(self, locator: DriveLocator) -> bytes:
        file_id = self.find_file_id(locator.folder_name, locator.file_name)
        if file_id is None:
            raise FetchError(
                f"'{locator.file_name}' not found in Drive folder '{locator.folder_name}'",
                status_code=404,
            )
        return self.download(file_id)
