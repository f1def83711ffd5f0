"""
Key-less document stores backing the sync configuration.

Each store holds one JSON document. File-backed stores write to a temporary
file and rename it into place.
"""

import base64
import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


def build_cipher(key: Optional[str]) -> Fernet:
    """
    Build a Fernet cipher from a configured key.

    A 44-character value is used as a Fernet key directly; any other value is
    stretched with sha256. Without a key an ephemeral one is generated.
    """
    if not key:
        logger.warning(
            "SYNC_ENCRYPTION_KEY not set. "
            "Using ephemeral key - stored tokens will be unreadable after restart."
        )
        return Fernet(Fernet.generate_key())

    if len(key) != 44:  # Fernet keys are 44 chars base64
        key = base64.urlsafe_b64encode(hashlib.sha256(key.encode()).digest()).decode()

    return Fernet(key.encode())


def _atomic_write(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    temp_path.write_bytes(payload)
    os.replace(temp_path, path)


class Store(ABC):
    """A single persisted document."""

    @abstractmethod
    async def get(self) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def save(self, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class MemoryStore(Store):
    """In-process store, used by tests."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data = dict(data) if data is not None else None

    async def get(self) -> Optional[Dict[str, Any]]:
        return dict(self._data) if self._data is not None else None

    async def save(self, data: Dict[str, Any]) -> None:
        self._data = dict(data)

    async def clear(self) -> None:
        self._data = None


class JsonFileStore(Store):
    """Plain JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def get(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read {self.path}: {e}")
            return None

    async def save(self, data: Dict[str, Any]) -> None:
        _atomic_write(self.path, json.dumps(data, indent=2).encode())

    async def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.debug(f"Removed {self.path}")


class EncryptedFileStore(Store):
    """
    JSON document encrypted at rest with Fernet.

    A file that cannot be decrypted (e.g. after a key change) reads as empty.
    """

    def __init__(self, path: Path, cipher: Fernet):
        self.path = Path(path)
        self._cipher = cipher

    async def get(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            decrypted = self._cipher.decrypt(self.path.read_bytes())
            return json.loads(decrypted.decode())
        except (OSError, InvalidToken, json.JSONDecodeError) as e:
            logger.error(f"Failed to decrypt {self.path.name}: {e}")
            return None

    async def save(self, data: Dict[str, Any]) -> None:
        encrypted = self._cipher.encrypt(json.dumps(data).encode())
        _atomic_write(self.path, encrypted)

    async def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.debug(f"Removed {self.path}")
