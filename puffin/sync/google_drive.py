"""
Google Drive client for the database backup file.

Talks to the Drive v3 REST API with httpx. Every call runs under the client's
RetryPolicy, and every identifier that ends up in a query string or URL path
is reduced to ``[A-Za-z0-9_-]`` first.
"""

import asyncio
import json
import logging
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..exceptions import (
    LocalIOError,
    PermanentRemoteError,
    RemoteError,
    SyncError,
    TargetError,
    TransientRemoteError,
    ValidationError,
    create_error_context,
)
from .base import (
    FileTarget,
    FolderInfo,
    RemoteBackupInfo,
    RemoteFileInfo,
    SyncTarget,
)
from .oauth import AuthorizedClient
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DATABASE_MIME_TYPE = "application/x-sqlite3"
VALIDATION_TEST_FILENAME = ".puffin-validation-test"

MISSING_FILE_MESSAGE = (
    "Cannot access the backup file. This may happen if: "
    "(1) the file was deleted from Google Drive, "
    "(2) you no longer have permission to edit it, or "
    "(3) the file is not shared with this account. "
    "Ask the file owner to share it with you, or reconnect to a different backup."
)
NO_WRITE_PERMISSION_MESSAGE = (
    "You don't have permission to update this file. "
    "Ask the owner to give your account edit access."
)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_FOLDER_URL = re.compile(r"drive\.google\.com/drive/(?:u/\d+/)?folders/([^/?#]+)")
_FILE_URL = re.compile(r"(?:drive|docs)\.google\.com/(?:.+/)?d/([^/?#]+)")
_ID_PARAM = re.compile(r"[?&]id=([^&#]+)")
_BARE_ID = re.compile(r"^[\w-]{20,50}$")


class UploadMode(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class DriveIdKind(str, Enum):
    FOLDER = "folder"
    FILE = "file"
    UNKNOWN = "unknown"


@dataclass
class DriveReference:
    """An id pulled out of user input, with its kind when the URL shows it."""
    drive_id: str
    kind: DriveIdKind = DriveIdKind.UNKNOWN


def sanitize_drive_id(value: str) -> str:
    """Keep only characters that can appear in a Drive id."""
    return _UNSAFE_ID_CHARS.sub("", value or "")


def escape_query_value(value: str) -> str:
    """Escape a literal for use inside single quotes in a Drive query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_query(container_id: str, filename: str) -> str:
    """Query for a non-trashed file by name inside a folder."""
    return (
        f"'{sanitize_drive_id(container_id)}' in parents "
        f"and name='{escape_query_value(filename)}' and trashed=false"
    )


def extract_drive_id(value: str) -> Optional[DriveReference]:
    """
    Parse a Drive folder URL, file URL or bare id.

    Returns:
        The sanitized reference, or None if nothing id-like was found
    """
    value = (value or "").strip()
    if not value:
        return None

    match = _FOLDER_URL.search(value)
    if match:
        return _reference(match.group(1), DriveIdKind.FOLDER)

    match = _FILE_URL.search(value)
    if match:
        return _reference(match.group(1), DriveIdKind.FILE)

    match = _ID_PARAM.search(value)
    if match:
        return _reference(match.group(1), DriveIdKind.UNKNOWN)

    if _BARE_ID.match(value):
        return _reference(value, DriveIdKind.UNKNOWN)

    return None


def _reference(raw_id: str, kind: DriveIdKind) -> Optional[DriveReference]:
    drive_id = sanitize_drive_id(raw_id)
    return DriveReference(drive_id=drive_id, kind=kind) if drive_id else None


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return response.text[:500] if response.text else "Unknown error"


def drive_json(response: httpx.Response, operation: str) -> Dict[str, Any]:
    """Decode a successful Drive response body, which must be a JSON object."""
    try:
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    except ValueError as e:
        raise RemoteError(
            message=f"Unreadable Drive response during {operation}: {e}",
            error_code="INVALID_RESPONSE",
            context=create_error_context(operation=operation),
            user_message="Google Drive sent an unexpected response. Please try again.",
            cause=e,
        ) from e
    return data


def raise_for_drive_status(response: httpx.Response, operation: str) -> None:
    """Map an error response to TransientRemoteError or PermanentRemoteError."""
    if response.status_code < 400:
        return

    detail = _error_detail(response)
    error_cls = TransientRemoteError if response.status_code in DEFAULT_RETRY_POLICY.retryable_status_codes \
        else PermanentRemoteError
    raise error_cls(
        message=f"Drive API error {response.status_code} during {operation}: {detail}",
        status_code=response.status_code,
        context=create_error_context(operation=operation),
        user_message=f"Google Drive returned an error ({response.status_code}): {detail}",
    )


class DriveClient:
    """
    Remote file operations on Google Drive.
    """

    def __init__(
        self,
        authorized: AuthorizedClient,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = 120.0,
    ):
        """
        Initialize Drive client.

        Args:
            authorized: Holder of a fresh access token
            transport: Optional httpx transport (tests use MockTransport)
            retry_policy: Policy applied to every remote call
            sleep: Awaitable sleep used between retries
            timeout: HTTP timeout in seconds
        """
        self.authorized = authorized
        self.retry_policy = retry_policy
        self._transport = transport
        self._sleep = sleep
        self._timeout = timeout

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self._timeout,
            headers=self.authorized.auth_headers(),
        )

    async def _request(self, method: str, url: str, operation: str, **kwargs: Any) -> httpx.Response:
        """Send one request under the retry policy, raising on error status."""

        async def attempt() -> httpx.Response:
            try:
                async with self._http() as client:
                    response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                raise RemoteError(
                    message=f"Network error during {operation}: {e}",
                    error_code="NETWORK_ERROR",
                    context=create_error_context(operation=operation),
                    user_message="Could not reach Google Drive. Check your connection and try again.",
                    cause=e,
                ) from e
            raise_for_drive_status(response, operation)
            return response

        return await with_retry(attempt, self.retry_policy, context=operation, sleep=self._sleep)

    async def find_file(self, container_id: str, filename: str) -> Optional[str]:
        """
        Find a file by name inside a folder.

        Returns:
            The file id, or None if there is no such file
        """
        response = await self._request(
            "GET",
            DRIVE_FILES_URL,
            "find_file",
            params={
                "q": build_query(container_id, filename),
                "fields": "files(id, name, modifiedTime)",
                "spaces": "drive",
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            },
        )
        files = drive_json(response, "find_file").get("files", [])
        return files[0]["id"] if files else None

    async def get_metadata(self, file_id: str) -> RemoteFileInfo:
        """Metadata for a file; a 404 yields ``exists=False``."""
        safe_id = sanitize_drive_id(file_id)
        try:
            response = await self._request(
                "GET",
                f"{DRIVE_FILES_URL}/{safe_id}",
                "get_metadata",
                params={
                    "fields": "id, name, mimeType, modifiedTime, size",
                    "supportsAllDrives": "true",
                },
            )
        except PermanentRemoteError as e:
            if e.status_code == 404:
                return RemoteFileInfo(exists=False, file_id=safe_id)
            raise

        data = drive_json(response, "get_metadata")
        return RemoteFileInfo(
            exists=True,
            file_id=data.get("id", safe_id),
            name=data.get("name"),
            modified_time=data.get("modifiedTime"),
            size=int(data["size"]) if data.get("size") is not None else None,
            mime_type=data.get("mimeType"),
        )

    async def upload_file(
        self,
        target_id: str,
        local_path: Path,
        mode: UploadMode,
        filename: Optional[str] = None,
    ) -> str:
        """
        Upload a local file.

        Args:
            target_id: Folder id for CREATE, file id for UPDATE
            local_path: File to upload
            mode: Create a new file or overwrite an existing one
            filename: Name for a created file (defaults to the local name)

        Returns:
            The Drive file id

        Raises:
            TargetError: If the file to update is gone, unshared or read-only
        """
        try:
            content = Path(local_path).read_bytes()
        except OSError as e:
            raise LocalIOError(
                message=f"Could not read {local_path}: {e}",
                context=create_error_context(operation="upload_file"),
                user_message="Could not read the local database for upload.",
                cause=e,
            ) from e

        safe_id = sanitize_drive_id(target_id)
        if UploadMode(mode) == UploadMode.CREATE:
            return await self._create_file(safe_id, filename or Path(local_path).name, content)

        try:
            response = await self._request(
                "PATCH",
                f"{DRIVE_UPLOAD_URL}/{safe_id}",
                "upload_file",
                params={"uploadType": "media", "supportsAllDrives": "true", "fields": "id, modifiedTime"},
                headers={"Content-Type": DATABASE_MIME_TYPE},
                content=content,
            )
        except PermanentRemoteError as e:
            raise self._target_error(e, "upload_file") from e

        logger.info(f"Updated Drive file {safe_id} ({len(content)} bytes)")
        return drive_json(response, "upload_file").get("id", safe_id)

    async def _create_file(
        self,
        folder_id: str,
        name: str,
        content: bytes,
        mime_type: str = DATABASE_MIME_TYPE,
    ) -> str:
        metadata = {"name": name, "parents": [folder_id]}

        boundary = f"puffin-{secrets.token_hex(8)}"
        body = (
            f"--{boundary}\r\n"
            f"Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {mime_type}\r\n\r\n"
        ).encode() + content + f"\r\n--{boundary}--".encode()

        response = await self._request(
            "POST",
            DRIVE_UPLOAD_URL,
            "create_file",
            params={"uploadType": "multipart", "supportsAllDrives": "true", "fields": "id"},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        )
        file_id = drive_json(response, "create_file").get("id")
        if not file_id:
            raise RemoteError(
                message=f"Drive did not return an id for {name}",
                error_code="INVALID_RESPONSE",
                context=create_error_context(operation="create_file"),
                user_message="Google Drive sent an unexpected response. Please try again.",
            )
        logger.info(f"Created Drive file {name} ({file_id}) in folder {folder_id}")
        return file_id

    async def download_file(self, file_id: str, dest_path: Path) -> int:
        """
        Stream a file's content to ``dest_path``.

        Returns:
            Number of bytes written
        """
        safe_id = sanitize_drive_id(file_id)
        dest_path = Path(dest_path)

        async def attempt() -> int:
            try:
                async with self._http() as client:
                    async with client.stream(
                        "GET",
                        f"{DRIVE_FILES_URL}/{safe_id}",
                        params={"alt": "media", "supportsAllDrives": "true"},
                    ) as response:
                        if response.status_code >= 400:
                            await response.aread()
                            raise_for_drive_status(response, "download_file")

                        written = 0
                        with open(dest_path, "wb") as f:
                            async for chunk in response.aiter_bytes():
                                f.write(chunk)
                                written += len(chunk)
                        return written
            except httpx.HTTPError as e:
                raise RemoteError(
                    message=f"Network error during download_file: {e}",
                    error_code="NETWORK_ERROR",
                    context=create_error_context(operation="download_file"),
                    user_message="Download from Google Drive was interrupted. Please try again.",
                    cause=e,
                ) from e
            except OSError as e:
                raise LocalIOError(
                    message=f"Could not write {dest_path}: {e}",
                    context=create_error_context(operation="download_file"),
                    user_message="Could not save the downloaded backup locally.",
                    cause=e,
                ) from e

        try:
            written = await with_retry(attempt, self.retry_policy, context="download_file", sleep=self._sleep)
        except PermanentRemoteError as e:
            raise self._target_error(e, "download_file") from e

        logger.info(f"Downloaded Drive file {safe_id} ({written} bytes)")
        return written

    async def delete_file(self, file_id: str) -> None:
        await self._request(
            "DELETE",
            f"{DRIVE_FILES_URL}/{sanitize_drive_id(file_id)}",
            "delete_file",
            params={"supportsAllDrives": "true"},
        )

    async def validate_folder(self, folder_id: str) -> FolderInfo:
        """
        Confirm a folder exists and this account can write into it.

        A small validation file is created and removed again.

        Raises:
            TargetError: Folder missing, inaccessible or read-only
            ValidationError: The id is not a folder
        """
        safe_id = sanitize_drive_id(folder_id)
        try:
            response = await self._request(
                "GET",
                f"{DRIVE_FILES_URL}/{safe_id}",
                "validate_folder",
                params={"fields": "id, name, mimeType", "supportsAllDrives": "true"},
            )
        except PermanentRemoteError as e:
            if e.status_code == 404:
                raise TargetError(
                    message=f"Folder {safe_id} not found",
                    error_code="FOLDER_NOT_FOUND",
                    context=create_error_context(operation="validate_folder"),
                    user_message="Folder not found. Check the link and make sure it is shared with this account.",
                    cause=e,
                ) from e
            if e.status_code == 403:
                raise TargetError(
                    message=f"No access to folder {safe_id}",
                    error_code="FOLDER_NO_ACCESS",
                    context=create_error_context(operation="validate_folder"),
                    user_message="You don't have access to this folder.",
                    cause=e,
                ) from e
            raise

        data = drive_json(response, "validate_folder")
        if data.get("mimeType") != FOLDER_MIME_TYPE:
            raise ValidationError(
                message=f"Drive item {safe_id} is not a folder ({data.get('mimeType')})",
                error_code="NOT_A_FOLDER",
                context=create_error_context(operation="validate_folder"),
                user_message="That link points to a file, not a folder.",
            )

        try:
            test_id = await self._create_file(safe_id, VALIDATION_TEST_FILENAME, b"ok", "text/plain")
        except PermanentRemoteError as e:
            if e.status_code == 403:
                raise TargetError(
                    message=f"Folder {safe_id} is read-only",
                    error_code="FOLDER_READ_ONLY",
                    context=create_error_context(operation="validate_folder"),
                    user_message="This folder is read-only for your account. Ask for edit access.",
                    cause=e,
                ) from e
            raise

        try:
            await self.delete_file(test_id)
        except SyncError as e:
            logger.warning(f"Could not remove validation file {test_id}: {e}")

        return FolderInfo(folder_id=data.get("id", safe_id), name=data.get("name", ""))

    async def resolve_file_id(self, target: SyncTarget) -> Optional[str]:
        """The Drive file id a target currently points at, if any."""
        if isinstance(target, FileTarget):
            return sanitize_drive_id(target.file_id)
        return await self.find_file(target.folder_id, target.filename)

    async def get_remote_backup_info(self, target: SyncTarget) -> RemoteBackupInfo:
        """Describe the remote backup without raising."""
        try:
            file_id = await self.resolve_file_id(target)
            if not file_id:
                return RemoteBackupInfo(exists=False)
            info = await self.get_metadata(file_id)
            return RemoteBackupInfo(
                exists=info.exists,
                modified_time=info.modified_time,
                file_id=info.file_id if info.exists else None,
            )
        except SyncError as e:
            logger.warning(f"Could not read remote backup info: {e}")
            return RemoteBackupInfo(exists=False, error=e.user_message)

    @staticmethod
    def _target_error(error: PermanentRemoteError, operation: str) -> SyncError:
        if error.status_code == 404:
            return TargetError(
                message=f"Backup file not found during {operation}",
                error_code="TARGET_NOT_FOUND",
                context=create_error_context(operation=operation),
                user_message=MISSING_FILE_MESSAGE,
                cause=error,
            )
        if error.status_code == 403:
            return TargetError(
                message=f"Permission denied during {operation}",
                error_code="TARGET_FORBIDDEN",
                context=create_error_context(operation=operation),
                user_message=NO_WRITE_PERMISSION_MESSAGE,
                cause=error,
            )
        return error
