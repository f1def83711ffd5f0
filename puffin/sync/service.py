"""
Sync orchestration: push, pull, status and target selection.

SyncOrchestrator is the only component that touches the local database file.
Each call walks idle -> authorizing -> locating-target -> backing-up-local ->
transferring -> recording-result -> idle, or drops to failed and back to idle.
Every outcome is returned as a result object; errors are never raised to the
caller.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Tuple

from ..data import BackupManager, SQLiteConnection, file_md5, is_sqlite_file
from ..exceptions import (
    AuthError,
    ConflictError,
    LocalIOError,
    TargetError,
    ValidationError,
    create_error_context,
    handle_unexpected_error,
)
from .base import (
    DEFAULT_BACKUP_FILENAME,
    CheckReason,
    FileTarget,
    FolderTarget,
    LocalFileInfo,
    RemoteBackupInfo,
    SyncCheck,
    SyncConfig,
    SyncPhase,
    SyncResult,
    SyncStatus,
    SyncTarget,
    ValidationResult,
)
from .config import SyncConfigManager
from .google_drive import MISSING_FILE_MESSAGE, DriveClient, DriveIdKind, UploadMode, extract_drive_id
from .oauth import AuthorizedClient, OAuthBroker

logger = logging.getLogger(__name__)

# Drive timestamps within this window of the last sync count as that sync.
CLOUD_CHANGE_TOLERANCE_MS = 60_000

NOT_AUTHENTICATED_MESSAGE = "Not authenticated with Google Drive. Please authenticate first."


def parse_drive_time(value: Optional[str]) -> Optional[int]:
    """RFC 3339 timestamp from Drive to epoch ms."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable Drive timestamp: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _iso_mtime(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()


class SyncOrchestrator:
    """
    Coordinates one complete push or pull.

    Args:
        config_manager: Persisted sync config and tokens
        broker: OAuth broker issuing authorized clients
        database: Connection to the live database
        backups: Local backup primitive
        drive_factory: Builds a DriveClient for an authorized client
        download_path: Temporary file for pulls
        backup_filename: Name of the backup file inside a sync folder
    """

    def __init__(
        self,
        config_manager: SyncConfigManager,
        broker: OAuthBroker,
        database: SQLiteConnection,
        backups: BackupManager,
        drive_factory: Callable[[AuthorizedClient], DriveClient] = DriveClient,
        download_path: Optional[Path] = None,
        backup_filename: str = DEFAULT_BACKUP_FILENAME,
    ):
        self.config_manager = config_manager
        self.broker = broker
        self.database = database
        self.backups = backups
        self.drive_factory = drive_factory
        self.download_path = download_path or database.db_path.with_name("puffin-download-temp.db")
        self.backup_filename = backup_filename
        self.phase = SyncPhase.IDLE

    @property
    def db_path(self) -> Path:
        return self.database.db_path

    def _enter(self, phase: SyncPhase) -> None:
        self.phase = phase
        logger.debug(f"Sync phase: {phase.value}")

    def _failed(self, error: Exception, operation: str) -> SyncResult:
        self._enter(SyncPhase.FAILED)
        sync_error = handle_unexpected_error(error, operation)
        if sync_error is error:
            logger.error(f"{operation} failed: {sync_error.message}")
        return SyncResult(
            success=False,
            error=sync_error.user_message,
            error_code=sync_error.error_code,
        )

    async def _authorize(self, operation: str) -> AuthorizedClient:
        self._enter(SyncPhase.AUTHORIZING)
        client = await self.broker.get_client()
        if client is None:
            raise AuthError(
                message="No usable Google Drive tokens",
                context=create_error_context(operation=operation),
                user_message=NOT_AUTHENTICATED_MESSAGE,
            )
        return client

    async def _locate_target(self, operation: str) -> Tuple[SyncConfig, SyncTarget]:
        self._enter(SyncPhase.LOCATING_TARGET)
        config = await self.config_manager.get_config()
        if config.target is None:
            raise TargetError(
                message="No sync target configured",
                error_code="NO_TARGET",
                context=create_error_context(operation=operation),
                user_message="No Google Drive folder or file is configured for sync.",
            )
        return config, config.target

    def _local_changed(self, config: SyncConfig) -> bool:
        if not self.db_path.exists():
            return False
        if config.content_hash:
            return file_md5(self.db_path) != config.content_hash
        if config.last_synced_at is None:
            return True
        return self.db_path.stat().st_mtime * 1000 > config.last_synced_at

    @staticmethod
    def _cloud_changed(config: SyncConfig, remote: RemoteBackupInfo) -> bool:
        if config.last_synced_at is None:
            return remote.exists
        modified = parse_drive_time(remote.modified_time)
        return modified is not None and modified > config.last_synced_at + CLOUD_CHANGE_TOLERANCE_MS

    async def push(self) -> SyncResult:
        """Upload the local database, overwriting the remote copy."""
        try:
            client = await self._authorize("push")
            config, target = await self._locate_target("push")

            self._enter(SyncPhase.BACKING_UP_LOCAL)
            if not self.db_path.exists():
                raise LocalIOError(
                    message=f"{self.db_path} does not exist",
                    error_code="NO_LOCAL_DATABASE",
                    context=create_error_context(operation="push"),
                    user_message="There is no local database to upload.",
                )
            await self.database.checkpoint()
            backup_path = self.backups.create_backup("puffin-backup")

            self._enter(SyncPhase.TRANSFERRING)
            drive = self.drive_factory(client)
            if isinstance(target, FileTarget):
                file_id = await drive.upload_file(target.file_id, self.db_path, UploadMode.UPDATE)
            else:
                existing_id = await drive.find_file(target.folder_id, target.filename)
                if existing_id:
                    file_id = await drive.upload_file(existing_id, self.db_path, UploadMode.UPDATE)
                else:
                    file_id = await drive.upload_file(
                        target.folder_id, self.db_path, UploadMode.CREATE, filename=target.filename
                    )

            self._enter(SyncPhase.RECORDING_RESULT)
            if file_id and file_id != target.file_id:
                await self.config_manager.save_config(target=replace(target, file_id=file_id))
            updated = await self.config_manager.mark_synced(file_md5(self.db_path))

            logger.info(f"Pushed local database to {target.display_name}")
            return SyncResult(
                success=True,
                backup_path=str(backup_path) if backup_path else None,
                synced_at=updated.last_synced_at,
            )
        except Exception as e:
            return self._failed(e, "push")
        finally:
            self._enter(SyncPhase.IDLE)

    async def pull(self, force: bool = False) -> SyncResult:
        """
        Replace the local database with the remote copy.

        Args:
            force: Overwrite even if both copies changed since the last sync
        """
        try:
            client = await self._authorize("pull")
            config, target = await self._locate_target("pull")

            drive = self.drive_factory(client)
            file_id = await drive.resolve_file_id(target)
            info = await drive.get_metadata(file_id) if file_id else None
            if info is None or not info.exists:
                raise TargetError(
                    message="Remote backup not found",
                    error_code="NO_REMOTE_BACKUP",
                    context=create_error_context(operation="pull"),
                    user_message=MISSING_FILE_MESSAGE if isinstance(target, FileTarget)
                    else "No backup found in the Google Drive folder. Push first.",
                )

            if not force and config.last_synced_at is not None:
                remote = RemoteBackupInfo(exists=True, modified_time=info.modified_time)
                if self._local_changed(config) and self._cloud_changed(config, remote):
                    raise ConflictError(
                        message="Local and remote databases both changed since last sync",
                        context=create_error_context(operation="pull"),
                        user_message=(
                            "Both this device and Google Drive have changes since the last sync. "
                            "Pulling would discard local changes; confirm to overwrite."
                        ),
                    )

            self._enter(SyncPhase.BACKING_UP_LOCAL)
            backup_path = None
            if self.db_path.exists():
                await self.database.checkpoint()
                backup_path = self.backups.create_backup("puffin-pre-pull")

            self._enter(SyncPhase.TRANSFERRING)
            await drive.download_file(file_id, self.download_path)
            if not is_sqlite_file(self.download_path):
                raise ValidationError(
                    message="Downloaded file is not a SQLite database",
                    error_code="INVALID_DOWNLOAD",
                    context=create_error_context(operation="pull"),
                    user_message="The backup in Google Drive is not a valid database. Local data was not changed.",
                )

            await self.database.reset()
            self.backups.replace_database(self.download_path)

            self._enter(SyncPhase.RECORDING_RESULT)
            if isinstance(target, FolderTarget) and file_id != target.file_id:
                await self.config_manager.save_config(target=replace(target, file_id=file_id))
            updated = await self.config_manager.mark_synced(file_md5(self.db_path))

            logger.info(f"Pulled database from {target.display_name}")
            return SyncResult(
                success=True,
                backup_path=str(backup_path) if backup_path else None,
                synced_at=updated.last_synced_at,
            )
        except Exception as e:
            return self._failed(e, "pull")
        finally:
            if self.download_path.exists():
                self.download_path.unlink()
            self._enter(SyncPhase.IDLE)

    async def get_status(self) -> SyncStatus:
        """Compare local and remote copies. Never writes config."""
        config = await self.config_manager.get_config()
        status = SyncStatus(
            configured=await self.broker.is_configured(),
            local=LocalFileInfo(exists=self.db_path.exists(), modified_time=_iso_mtime(self.db_path)),
            display_name=config.display_name,
            last_synced_at=config.last_synced_at,
            user_email=config.user_email,
        )
        if not status.configured:
            return status

        try:
            client = await self.broker.get_client()
        except Exception as e:
            status.remote = RemoteBackupInfo(error=handle_unexpected_error(e, "get_status").user_message)
            return status

        status.authenticated = client is not None
        if client is None:
            status.remote = RemoteBackupInfo(error=NOT_AUTHENTICATED_MESSAGE)
        elif config.target is not None:
            status.remote = await self.drive_factory(client).get_remote_backup_info(config.target)
        return status

    async def check(self) -> SyncCheck:
        """Report whether local and remote copies diverged since the last sync."""
        config = await self.config_manager.get_config()
        if config.target is None:
            return SyncCheck(reason=CheckReason.NOT_CONFIGURED)

        try:
            client = await self.broker.get_client()
            if client is None:
                return SyncCheck(reason=CheckReason.CHECK_FAILED, error=NOT_AUTHENTICATED_MESSAGE)
            remote = await self.drive_factory(client).get_remote_backup_info(config.target)
        except Exception as e:
            return SyncCheck(reason=CheckReason.CHECK_FAILED, error=handle_unexpected_error(e, "check").user_message)

        if remote.error:
            return SyncCheck(reason=CheckReason.CHECK_FAILED, error=remote.error)
        if not remote.exists:
            return SyncCheck(reason=CheckReason.NO_CLOUD_BACKUP)
        if config.last_synced_at is None:
            return SyncCheck(reason=CheckReason.NEVER_SYNCED, cloud_modified_time=remote.modified_time)

        local_changed = self._local_changed(config)
        cloud_changed = self._cloud_changed(config, remote)
        if local_changed and cloud_changed:
            reason = CheckReason.CONFLICT
        elif cloud_changed:
            reason = CheckReason.CLOUD_ONLY
        elif local_changed:
            reason = CheckReason.LOCAL_ONLY
        else:
            reason = CheckReason.IN_SYNC

        return SyncCheck(
            reason=reason,
            local_changed=local_changed,
            cloud_changed=cloud_changed,
            last_synced_at=config.last_synced_at,
            cloud_modified_time=remote.modified_time,
        )

    async def validate_target(self, url_or_id: str) -> ValidationResult:
        """
        Check a Drive folder/file link or id and save it as the sync target.

        Args:
            url_or_id: Folder URL, file URL or bare Drive id

        Returns:
            Result with the target's display name
        """
        try:
            reference = extract_drive_id(url_or_id)
            if reference is None:
                raise ValidationError(
                    message=f"Not a Drive link or id: {url_or_id!r}",
                    error_code="INVALID_TARGET",
                    context=create_error_context(operation="validate_target"),
                    user_message="Enter a Google Drive folder link, file link or id.",
                )

            client = await self._authorize("validate_target")
            drive = self.drive_factory(client)

            kind = reference.kind
            info = None
            if kind != DriveIdKind.FOLDER:
                info = await drive.get_metadata(reference.drive_id)
                if not info.exists:
                    raise TargetError(
                        message=f"Drive item {reference.drive_id} not found",
                        error_code="TARGET_NOT_FOUND",
                        context=create_error_context(operation="validate_target"),
                        user_message=MISSING_FILE_MESSAGE,
                    )
                kind = DriveIdKind.FOLDER if info.is_folder else DriveIdKind.FILE

            if kind == DriveIdKind.FOLDER:
                folder = await drive.validate_folder(reference.drive_id)
                target: SyncTarget = FolderTarget(
                    folder_id=folder.folder_id,
                    folder_name=folder.name,
                    filename=self.backup_filename,
                )
            else:
                target = FileTarget(file_id=info.file_id or reference.drive_id, file_name=info.name or "")

            await self.config_manager.set_target(target)
            logger.info(f"Sync target set to {target.mode.value} {target.display_name}")
            return ValidationResult(success=True, display_name=target.display_name, mode=target.mode)
        except Exception as e:
            failure = self._failed(e, "validate_target")
            return ValidationResult(success=False, error=failure.error)
        finally:
            self._enter(SyncPhase.IDLE)

    async def disconnect(self) -> SyncResult:
        """Revoke access (best effort) and forget the target and tokens."""
        try:
            await self.broker.revoke()
            await self.config_manager.clear()
            return SyncResult(success=True)
        except Exception as e:
            return self._failed(e, "disconnect")
        finally:
            self._enter(SyncPhase.IDLE)
