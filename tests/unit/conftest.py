"""
Shared fixtures: an in-memory fake of the Google token, userinfo and Drive
endpoints, served through httpx.MockTransport.
"""

import json
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import httpx
import pytest

from puffin.sync.base import GoogleCredentials, TokenSet, now_ms
from puffin.sync.config import SyncConfigManager
from puffin.sync.store import MemoryStore

FOLDER_MIME = "application/vnd.google-apps.folder"
_QUERY = re.compile(r"^'([^']*)' in parents and name='(.*)' and trashed=false$")


def drive_time(dt: Optional[datetime] = None) -> str:
    dt = dt or datetime.now(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def make_sqlite_file(path: Path, rows: int = 1) -> Path:
    """Create a small real SQLite database."""
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE IF NOT EXISTS transactions (id INTEGER PRIMARY KEY, amount REAL)")
    conn.executemany("INSERT INTO transactions (amount) VALUES (?)", [(i * 1.5,) for i in range(rows)])
    conn.commit()
    conn.close()
    return path


def sqlite_bytes(tmp_dir: Path, rows: int = 3) -> bytes:
    return make_sqlite_file(tmp_dir / f"remote-{rows}.db", rows).read_bytes()


class FakeGoogle:
    """Just enough of Google OAuth and Drive v3 for the sync engine."""

    def __init__(self):
        self.files: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.failures: List[Tuple[int, Optional[str], Optional[str], Optional[bytes]]] = []
        self.token_responses: List[Tuple[int, Any]] = []
        self.token_requests: List[Dict[str, str]] = []
        self.revoked: List[str] = []
        self.revoke_status = 200
        self.email = "owner@example.com"
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def new_id(self) -> str:
        self._counter += 1
        return f"fileid{self._counter:016d}"

    def add_file(
        self,
        name: str,
        content: bytes = b"",
        parents: Tuple[str, ...] = (),
        mime_type: str = "application/x-sqlite3",
        modified_time: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> str:
        file_id = file_id or self.new_id()
        self.files[file_id] = {
            "id": file_id,
            "name": name,
            "parents": list(parents),
            "mimeType": mime_type,
            "content": content,
            "modifiedTime": modified_time or drive_time(),
            "trashed": False,
        }
        return file_id

    def add_folder(self, name: str, folder_id: Optional[str] = None) -> str:
        return self.add_file(name, mime_type=FOLDER_MIME, file_id=folder_id)

    def fail(self, status: int, times: int = 1, method: Optional[str] = None, path: Optional[str] = None) -> None:
        """Answer the next request(s) whose method and URL match with an error status."""
        for _ in range(times):
            self.failures.append((status, method, path, None))

    def garble(self, status: int = 200, times: int = 1, method: Optional[str] = None, path: Optional[str] = None) -> None:
        """Answer the next matching request(s) with an HTML body instead of JSON."""
        for _ in range(times):
            self.failures.append((status, method, path, b"<html>Service temporarily unavailable</html>"))

    def drive_requests(self, method: Optional[str] = None) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.host == "www.googleapis.com" and "/oauth2/" not in r.url.path
            and (method is None or r.method == method)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        for i, (status, method, path, body) in enumerate(self.failures):
            if (method is None or method == request.method) and (path is None or path in str(request.url)):
                del self.failures[i]
                if body is not None:
                    return httpx.Response(status, content=body, headers={"Content-Type": "text/html"})
                return httpx.Response(status, json={"error": {"code": status, "message": f"Injected {status}"}})

        host, path = request.url.host, request.url.path
        if host == "oauth2.googleapis.com" and path == "/token":
            return self._token(request)
        if host == "oauth2.googleapis.com" and path == "/revoke":
            self.revoked.append(request.url.params.get("token"))
            return httpx.Response(self.revoke_status)
        if path == "/oauth2/v2/userinfo":
            return httpx.Response(200, json={"email": self.email})
        if path.startswith("/upload/drive/v3/files"):
            return self._upload(request)
        if path.startswith("/drive/v3/files"):
            return self._files(request)
        return httpx.Response(404, json={"error": {"message": "Unknown endpoint"}})

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_requests.append(form)
        if self.token_responses:
            status, body = self.token_responses.pop(0)
            if isinstance(body, bytes):
                return httpx.Response(status, content=body)
            return httpx.Response(status, json=body)
        return httpx.Response(200, json={"access_token": "fresh-access", "expires_in": 3600})

    def _files(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.rstrip("/").split("/")
        if len(parts) == 4:  # /drive/v3/files
            match = _QUERY.match(request.url.params.get("q", ""))
            if not match:
                return httpx.Response(400, json={"error": {"message": "Bad query"}})
            parent, name = match.group(1), match.group(2).replace("\\'", "'")
            found = [
                {"id": f["id"], "name": f["name"], "modifiedTime": f["modifiedTime"]}
                for f in self.files.values()
                if parent in f["parents"] and f["name"] == name and not f["trashed"]
            ]
            return httpx.Response(200, json={"files": found})

        file_id = parts[4]
        entry = self.files.get(file_id)
        if entry is None:
            return httpx.Response(404, json={"error": {"code": 404, "message": f"File not found: {file_id}."}})

        if request.method == "DELETE":
            del self.files[file_id]
            return httpx.Response(204)
        if request.url.params.get("alt") == "media":
            return httpx.Response(200, content=entry["content"])
        return httpx.Response(200, json={
            "id": entry["id"],
            "name": entry["name"],
            "mimeType": entry["mimeType"],
            "modifiedTime": entry["modifiedTime"],
            "size": str(len(entry["content"])),
        })

    def _upload(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.rstrip("/").split("/")
        if request.method == "PATCH":
            entry = self.files.get(parts[5]) if len(parts) > 5 else None
            if entry is None:
                return httpx.Response(404, json={"error": {"code": 404, "message": "File not found."}})
            entry["content"] = request.content
            entry["modifiedTime"] = drive_time()
            return httpx.Response(200, json={"id": entry["id"], "modifiedTime": entry["modifiedTime"]})

        boundary = request.headers["Content-Type"].split("boundary=")[1].encode()
        sections = request.content.split(b"--" + boundary)
        _, _, meta_raw = sections[1].partition(b"\r\n\r\n")
        _, _, content = sections[2].partition(b"\r\n\r\n")
        metadata = json.loads(meta_raw.strip())
        for parent in metadata.get("parents", []):
            if parent not in self.files:
                return httpx.Response(404, json={"error": {"code": 404, "message": "Parent not found."}})
        file_id = self.add_file(
            metadata["name"],
            content=content[:-2] if content.endswith(b"\r\n") else content,
            parents=tuple(metadata.get("parents", [])),
        )
        return httpx.Response(200, json={"id": file_id})


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def config_manager():
    return SyncConfigManager(
        config_store=MemoryStore(),
        token_store=MemoryStore(),
        credential_store=MemoryStore(),
        env_credentials=GoogleCredentials(client_id="client-id", client_secret="client-secret"),
    )


def valid_tokens(**overrides) -> TokenSet:
    values = {
        "access_token": "stored-access",
        "refresh_token": "stored-refresh",
        "expiry_date": now_ms() + 3600 * 1000,
    }
    values.update(overrides)
    return TokenSet(**values)
