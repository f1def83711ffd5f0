"""
Persisted sync configuration, tokens and client credentials.

Kept apart from the financial database so that it survives data resets.
"""

import logging
from dataclasses import fields
from typing import Any, Optional

from ..exceptions import ValidationError, create_error_context
from .base import GoogleCredentials, SyncConfig, SyncTarget, TokenSet, now_ms
from .store import Store

logger = logging.getLogger(__name__)

_CONFIG_FIELDS = {f.name for f in fields(SyncConfig)}
GOOGLE_CLIENT_ID_SUFFIX = ".apps.googleusercontent.com"


class SyncConfigManager:
    """
    Single source of truth for the sync target and its status.

    Args:
        config_store: Store for the SyncConfig document
        token_store: Store for the TokenSet (encrypted)
        credential_store: Store for client credentials (encrypted)
        env_credentials: Credentials supplied by the environment, which win
            over stored ones when complete
    """

    def __init__(
        self,
        config_store: Store,
        token_store: Store,
        credential_store: Optional[Store] = None,
        env_credentials: Optional[GoogleCredentials] = None,
    ):
        self.config_store = config_store
        self.token_store = token_store
        self.credential_store = credential_store
        self.env_credentials = env_credentials or GoogleCredentials()

    async def get_config(self) -> SyncConfig:
        return SyncConfig.from_dict(await self.config_store.get())

    async def save_config(self, **changes: Any) -> SyncConfig:
        """
        Merge changes into the stored config.

        ``None`` values leave the stored field untouched, and an older
        ``last_synced_at`` never replaces a newer one.

        Returns:
            The merged config
        """
        unknown = set(changes) - _CONFIG_FIELDS
        if unknown:
            raise ValidationError(
                message=f"Unknown sync config fields: {sorted(unknown)}",
                error_code="INVALID_CONFIG_FIELD",
                context=create_error_context(operation="save_config"),
            )

        config = await self.get_config()
        for name, value in changes.items():
            if value is None:
                continue
            if name == "last_synced_at" and config.last_synced_at is not None \
                    and value < config.last_synced_at:
                logger.warning(
                    f"Ignoring last_synced_at {value} older than stored {config.last_synced_at}"
                )
                continue
            setattr(config, name, value)

        await self.config_store.save(config.to_dict())
        return config

    async def set_target(self, target: SyncTarget) -> SyncConfig:
        """
        Point sync at a new target.

        A different remote backup starts with no last sync time or content
        hash. Re-selecting the same backup keeps them.

        Returns:
            The updated config
        """
        config = await self.get_config()
        if config.target is None or config.target.location != target.location:
            if config.last_synced_at is not None:
                logger.info(f"Sync target changed to {target.display_name}; resetting sync state")
            config.last_synced_at = None
            config.content_hash = None
        config.target = target

        await self.config_store.save(config.to_dict())
        return config

    async def mark_synced(self, content_hash: Optional[str] = None) -> SyncConfig:
        """Record a confirmed transfer at the current time."""
        return await self.save_config(last_synced_at=now_ms(), content_hash=content_hash)

    async def get_tokens(self) -> Optional[TokenSet]:
        data = await self.token_store.get()
        if not data:
            return None
        try:
            return TokenSet.from_dict(data)
        except KeyError as e:
            logger.error(f"Stored tokens are missing {e}")
            return None

    async def save_tokens(self, tokens: TokenSet) -> None:
        await self.token_store.save(tokens.to_dict())

    async def has_tokens(self) -> bool:
        return await self.get_tokens() is not None

    async def clear(self) -> None:
        """Remove the sync target and tokens. Credentials are kept."""
        await self.config_store.clear()
        await self.token_store.clear()
        logger.info("Cleared sync configuration and tokens")

    async def get_credentials(self) -> GoogleCredentials:
        """Environment credentials if complete, otherwise the stored ones."""
        if self.env_credentials.is_configured():
            return self.env_credentials

        if self.credential_store is not None:
            data = await self.credential_store.get()
            if data:
                return GoogleCredentials.from_dict(data)

        return GoogleCredentials()

    async def save_credentials(self, credentials: GoogleCredentials) -> GoogleCredentials:
        """
        Store user-supplied OAuth client credentials (encrypted).

        Raises:
            ValidationError: If the id or secret is missing, the id is not a
                Google OAuth client id, or there is no credential store
        """
        if self.credential_store is None:
            raise ValidationError(
                message="No credential store configured",
                error_code="NO_CREDENTIAL_STORE",
                context=create_error_context(operation="save_credentials"),
            )

        credentials = GoogleCredentials(
            client_id=credentials.client_id.strip(),
            client_secret=credentials.client_secret.strip(),
            api_key=credentials.api_key.strip(),
        )
        if not credentials.is_configured():
            raise ValidationError(
                message="Client id and secret are required",
                error_code="CREDENTIALS_REQUIRED",
                context=create_error_context(operation="save_credentials"),
                user_message="Client ID and Client Secret are required.",
            )
        if not credentials.client_id.endswith(GOOGLE_CLIENT_ID_SUFFIX):
            raise ValidationError(
                message=f"Client id does not end with {GOOGLE_CLIENT_ID_SUFFIX}",
                error_code="INVALID_CLIENT_ID",
                context=create_error_context(operation="save_credentials"),
                user_message=f"Invalid Client ID format. It should end with {GOOGLE_CLIENT_ID_SUFFIX}",
            )

        await self.credential_store.save(credentials.to_dict())
        logger.info("Saved Google credentials")
        return credentials

    async def clear_credentials(self) -> None:
        if self.credential_store is not None:
            await self.credential_store.clear()
