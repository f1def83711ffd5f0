"""
Environment variable handling for Puffin configuration.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from .settings import GoogleSettings, LogLevel, PuffinConfig, ServerSettings, SyncSettings


class EnvironmentLoader:
    """Loads configuration from environment variables."""

    @staticmethod
    def load_config(load_env_file: bool = True) -> PuffinConfig:
        """Load configuration from environment variables."""
        if load_env_file:
            load_dotenv()

        google = GoogleSettings(
            client_id=os.getenv('GOOGLE_CLIENT_ID', ''),
            client_secret=os.getenv('GOOGLE_CLIENT_SECRET', ''),
            api_key=os.getenv('GOOGLE_API_KEY', ''),
            redirect_uri=os.getenv(
                'GOOGLE_REDIRECT_URI',
                'http://localhost:3000/api/sync/oauth/callback'
            ),
        )

        data_dir = Path(os.getenv('PUFFIN_DATA_DIR', str(Path.cwd() / 'data')))
        sync = SyncSettings(
            data_dir=data_dir,
            db_filename=os.getenv('PUFFIN_DB_FILENAME', 'puffin.db'),
            backup_filename=os.getenv('SYNC_BACKUP_FILENAME', 'puffin-backup.db'),
            encryption_key=os.getenv('SYNC_ENCRYPTION_KEY', ''),
            backup_retention=int(os.getenv('SYNC_BACKUP_RETENTION', '5')),
        )

        server = ServerSettings(
            host=os.getenv('PUFFIN_HOST', '127.0.0.1'),
            port=int(os.getenv('PUFFIN_PORT', '3000')),
            cors_origins=EnvironmentLoader._parse_list(os.getenv('PUFFIN_CORS_ORIGINS', '')),
        )

        log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
        log_level = LogLevel.INFO  # default
        try:
            log_level = LogLevel(log_level_str)
        except ValueError:
            pass  # Use default

        log_file = os.getenv('PUFFIN_LOG_FILE')

        return PuffinConfig(
            google=google,
            sync=sync,
            server=server,
            log_level=log_level,
            log_file=Path(log_file) if log_file else data_dir / 'puffin.log',
        )

    @staticmethod
    def _parse_list(value: str, delimiter: str = ',') -> List[str]:
        """Parse a comma-separated string into a list."""
        if not value:
            return []
        return [item.strip() for item in value.split(delimiter) if item.strip()]
