"""
Application entry point: settings, logging and the FastAPI app.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import EnvironmentLoader, PuffinConfig
from .dashboard import setup_dashboard_api
from .data import BackupManager, SQLiteConnection
from .exceptions import SyncError
from .sync import (
    EncryptedFileStore,
    GoogleCredentials,
    JsonFileStore,
    OAuthBroker,
    SyncConfigManager,
    SyncOrchestrator,
    build_cipher,
)

logger = logging.getLogger(__name__)


def setup_logging(config: PuffinConfig) -> None:
    """Configure root logging from settings."""
    handlers = [logging.StreamHandler(sys.stdout)]
    file_error = None
    if config.log_file:
        try:
            config.log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(config.log_file))
        except OSError as e:
            file_error = e

    logging.basicConfig(
        level=getattr(logging, config.log_level.value),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )
    if file_error:
        logger.warning(f"Could not open log file {config.log_file}: {file_error}")
    # Quiet noisy HTTP client logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_orchestrator(config: PuffinConfig) -> SyncOrchestrator:
    """Wire stores, broker, database and orchestrator from settings."""
    sync = config.sync
    sync.data_dir.mkdir(parents=True, exist_ok=True)
    cipher = build_cipher(sync.encryption_key)

    config_manager = SyncConfigManager(
        config_store=JsonFileStore(sync.config_path),
        token_store=EncryptedFileStore(sync.tokens_path, cipher),
        credential_store=EncryptedFileStore(sync.credentials_path, cipher),
        env_credentials=GoogleCredentials(
            client_id=config.google.client_id,
            client_secret=config.google.client_secret,
            api_key=config.google.api_key,
        ),
    )
    broker = OAuthBroker(config_manager, redirect_uri=config.google.redirect_uri)
    database = SQLiteConnection(sync.db_path)
    backups = BackupManager(sync.db_path, sync.backup_dir, retention=sync.backup_retention)

    return SyncOrchestrator(
        config_manager=config_manager,
        broker=broker,
        database=database,
        backups=backups,
        download_path=sync.download_temp_path,
        backup_filename=sync.backup_filename,
    )


def create_app(
    config: Optional[PuffinConfig] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Settings; loaded from the environment when omitted
        orchestrator: Pre-built orchestrator (tests)

    Returns:
        Configured FastAPI app
    """
    config = config or EnvironmentLoader.load_config()
    orchestrator = orchestrator or build_orchestrator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not config.sync_enabled:
            logger.warning(
                "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET not set. "
                "Google Drive sync is disabled unless credentials are stored."
            )
        logger.info(f"Puffin sync API started (data dir: {config.sync.data_dir})")
        yield
        await orchestrator.database.disconnect()
        logger.info("Puffin sync API stopped")

    app = FastAPI(
        title="Puffin Sync API",
        description="Google Drive backup and sync for the local Puffin database",
        version="1.0.0",
        lifespan=lifespan,
    )

    if config.server.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.server.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": exc.user_message, "error_code": exc.error_code},
        )

    @app.get("/health")
    async def health():
        return {"status": "healthy", "sync_enabled": config.sync_enabled}

    setup_dashboard_api(app, orchestrator)
    return app


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    config = EnvironmentLoader.load_config()
    setup_logging(config)
    app = create_app(config)
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
