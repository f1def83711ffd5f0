"""
Tests for sync configuration persistence and application settings.
"""

import json
import tempfile
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from puffin.config import EnvironmentLoader, LogLevel
from puffin.exceptions import ValidationError
from puffin.sync.base import FileTarget, FolderTarget, GoogleCredentials, SyncConfig
from puffin.sync.config import SyncConfigManager
from puffin.sync.store import EncryptedFileStore, JsonFileStore, MemoryStore, build_cipher

from conftest import valid_tokens


class TestSyncConfigModel:
    """Tests for the SyncConfig tagged union."""

    def test_folder_target_roundtrip(self):
        config = SyncConfig(
            target=FolderTarget(folder_id="fold1", folder_name="Finance", file_id="f1"),
            last_synced_at=123,
            user_email="a@b.c",
        )
        restored = SyncConfig.from_dict(json.loads(json.dumps(config.to_dict())))

        assert restored == config
        assert restored.is_configured
        assert not restored.is_file_based_sync
        assert restored.display_name == "Finance"

    def test_file_target_is_file_based(self):
        config = SyncConfig(target=FileTarget(file_id="abc", file_name="shared.db"))
        assert config.is_file_based_sync
        assert config.display_name == "shared.db"

    def test_unknown_mode_is_unconfigured(self):
        config = SyncConfig.from_dict({"target": {"mode": "both", "folder_id": "x", "file_id": "y"}})
        assert config.target is None
        assert not config.is_configured


class TestSyncConfigManager:
    """Tests for SyncConfigManager merging and clearing."""

    @pytest.mark.asyncio
    async def test_merge_keeps_other_fields(self, config_manager):
        target = FolderTarget(folder_id="F", folder_name="Backups")
        await config_manager.save_config(target=target, user_email="me@example.com")
        await config_manager.save_config(last_synced_at=1000)

        config = await config_manager.get_config()
        assert config.target == target
        assert config.user_email == "me@example.com"
        assert config.last_synced_at == 1000

    @pytest.mark.asyncio
    async def test_none_values_ignored(self, config_manager):
        await config_manager.save_config(target=FileTarget(file_id="abc"), content_hash="h1")
        await config_manager.save_config(target=None, content_hash=None)

        config = await config_manager.get_config()
        assert config.target == FileTarget(file_id="abc")
        assert config.content_hash == "h1"

    @pytest.mark.asyncio
    async def test_last_synced_only_advances(self, config_manager):
        await config_manager.save_config(last_synced_at=5000)
        await config_manager.save_config(last_synced_at=4000)

        assert (await config_manager.get_config()).last_synced_at == 5000

    @pytest.mark.asyncio
    async def test_new_target_replaces_mode(self, config_manager):
        await config_manager.save_config(target=FolderTarget(folder_id="F"))
        await config_manager.save_config(target=FileTarget(file_id="X"))

        config = await config_manager.get_config()
        assert config.target == FileTarget(file_id="X")
        assert "folder_id" not in config.to_dict()["target"]

    @pytest.mark.asyncio
    async def test_set_target_to_new_backup_resets_sync_state(self, config_manager):
        await config_manager.set_target(FolderTarget(folder_id="A", folder_name="Mine"))
        await config_manager.save_config(last_synced_at=5000, content_hash="h1", user_email="me@example.com")

        config = await config_manager.set_target(FolderTarget(folder_id="B", folder_name="Theirs"))

        assert config.target == FolderTarget(folder_id="B", folder_name="Theirs")
        assert config.last_synced_at is None
        assert config.content_hash is None
        assert config.user_email == "me@example.com"

        await config_manager.save_config(last_synced_at=1000)
        assert (await config_manager.get_config()).last_synced_at == 1000

    @pytest.mark.asyncio
    async def test_set_target_same_backup_keeps_sync_state(self, config_manager):
        await config_manager.set_target(FolderTarget(folder_id="A", file_id="cached"))
        await config_manager.save_config(last_synced_at=5000, content_hash="h1")

        config = await config_manager.set_target(FolderTarget(folder_id="A", folder_name="Renamed"))

        assert config.target.folder_name == "Renamed"
        assert config.last_synced_at == 5000
        assert config.content_hash == "h1"

    @pytest.mark.asyncio
    async def test_set_target_switching_mode_resets_sync_state(self, config_manager):
        await config_manager.set_target(FolderTarget(folder_id="A"))
        await config_manager.mark_synced("h1")

        config = await config_manager.set_target(FileTarget(file_id="A"))

        assert config.last_synced_at is None
        assert config.content_hash is None

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, config_manager):
        with pytest.raises(ValidationError):
            await config_manager.save_config(folder=1)

    @pytest.mark.asyncio
    async def test_mark_synced(self, config_manager):
        config = await config_manager.mark_synced("abc123")
        assert config.last_synced_at is not None
        assert config.content_hash == "abc123"

    @pytest.mark.asyncio
    async def test_clear_keeps_credentials(self):
        credentials = MemoryStore({"client_id": "cid", "client_secret": "sec"})
        manager = SyncConfigManager(MemoryStore(), MemoryStore(), credentials)
        await manager.save_config(target=FolderTarget(folder_id="F"))
        await manager.save_tokens(valid_tokens())

        await manager.clear()

        assert not (await manager.get_config()).is_configured
        assert not await manager.has_tokens()
        assert (await manager.get_credentials()).client_id == "cid"

    @pytest.mark.asyncio
    async def test_env_credentials_win(self):
        stored = MemoryStore({"client_id": "stored", "client_secret": "stored-secret"})
        manager = SyncConfigManager(
            MemoryStore(), MemoryStore(), stored,
            env_credentials=GoogleCredentials(client_id="env", client_secret="env-secret"),
        )
        assert (await manager.get_credentials()).client_id == "env"

    @pytest.mark.asyncio
    async def test_stored_credentials_fallback(self):
        manager = SyncConfigManager(MemoryStore(), MemoryStore(), MemoryStore())
        assert not (await manager.get_credentials()).is_configured()

        await manager.save_credentials(
            GoogleCredentials(" 123-abc.apps.googleusercontent.com ", "secret\n", "key")
        )

        credentials = await manager.get_credentials()
        assert credentials.is_configured()
        assert credentials.client_id == "123-abc.apps.googleusercontent.com"
        assert credentials.client_secret == "secret"
        assert credentials.api_key == "key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credentials,error_code", [
        (GoogleCredentials("", "secret"), "CREDENTIALS_REQUIRED"),
        (GoogleCredentials("123-abc.apps.googleusercontent.com", "  "), "CREDENTIALS_REQUIRED"),
        (GoogleCredentials("not-a-client-id", "secret"), "INVALID_CLIENT_ID"),
    ])
    async def test_save_credentials_validates(self, credentials, error_code):
        store = MemoryStore()
        manager = SyncConfigManager(MemoryStore(), MemoryStore(), store)

        with pytest.raises(ValidationError) as exc_info:
            await manager.save_credentials(credentials)

        assert exc_info.value.error_code == error_code
        assert await store.get() is None

    @pytest.mark.asyncio
    async def test_corrupt_tokens_read_as_missing(self):
        manager = SyncConfigManager(MemoryStore(), MemoryStore({"access_token": "only"}))
        assert await manager.get_tokens() is None


class TestFileStores:
    """Tests for file-backed stores."""

    @pytest.mark.asyncio
    async def test_json_store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir) / "sync-config.json")
            assert await store.get() is None

            await store.save({"a": 1})
            assert await store.get() == {"a": 1}
            assert not list(Path(tmpdir).glob("*.tmp"))

            await store.clear()
            assert await store.get() is None

    @pytest.mark.asyncio
    async def test_encrypted_store_not_plaintext(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / ".sync-tokens.enc"
            store = EncryptedFileStore(path, build_cipher("a passphrase"))

            await store.save({"access_token": "secret-token"})

            assert b"secret-token" not in path.read_bytes()
            assert await store.get() == {"access_token": "secret-token"}

    @pytest.mark.asyncio
    async def test_encrypted_store_wrong_key(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / ".sync-tokens.enc"
            await EncryptedFileStore(path, build_cipher("key one")).save({"x": 1})

            assert await EncryptedFileStore(path, build_cipher("key two")).get() is None

    def test_fernet_key_used_directly(self):
        key = Fernet.generate_key().decode()
        token = build_cipher(key).encrypt(b"data")
        assert Fernet(key.encode()).decrypt(token) == b"data"


class TestEnvironmentLoader:
    """Tests for settings loaded from the environment."""

    def test_defaults(self, monkeypatch):
        for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "PUFFIN_DATA_DIR", "LOG_LEVEL", "PUFFIN_PORT"):
            monkeypatch.delenv(name, raising=False)

        config = EnvironmentLoader.load_config(load_env_file=False)

        assert not config.sync_enabled
        assert config.server.port == 3000
        assert config.log_level == LogLevel.INFO
        assert config.sync.backup_retention == 5

    def test_values_from_env(self, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
            monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
            monkeypatch.setenv("PUFFIN_DATA_DIR", tmpdir)
            monkeypatch.setenv("LOG_LEVEL", "debug")
            monkeypatch.setenv("SYNC_BACKUP_RETENTION", "3")

            config = EnvironmentLoader.load_config(load_env_file=False)

            assert config.sync_enabled
            assert config.sync.db_path == Path(tmpdir) / "puffin.db"
            assert config.sync.tokens_path.name == ".sync-tokens.enc"
            assert config.log_level == LogLevel.DEBUG
            assert config.sync.backup_retention == 3

    def test_invalid_log_level_falls_back(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        assert EnvironmentLoader.load_config(load_env_file=False).log_level == LogLevel.INFO


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
