"""
Configuration settings with environment variable loading.

All secrets MUST be provided via environment variables.
Never log or expose API keys or SMTP passwords in any output.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration or a rule document is missing or invalid."""
    pass


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str) -> Optional[Path]:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None


@dataclass(frozen=True)
class ClearinghouseConfig:
    """Clearinghouse API configuration."""
    base_url: str
    api_key: str
    private_key: str
    api_version: str = "v1"
    timeout: float = 30.0
    max_retries: int = 3

    def __post_init__(self):
        if not self.base_url:
            raise ConfigurationError("CLEARINGHOUSE_API_BASE_URL is required")
        if not self.api_key:
            raise ConfigurationError("CLEARINGHOUSE_API_KEY is required")
        if not self.private_key:
            raise ConfigurationError("CLEARINGHOUSE_API_PRIVATE_KEY is required")
        if not self.base_url.startswith(("https://", "http://")):
            raise ConfigurationError("CLEARINGHOUSE_API_BASE_URL must be an http(s) URL")

    def __repr__(self) -> str:
        """Never expose keys in repr."""
        return (
            f"ClearinghouseConfig(base_url='{self.base_url}', api_version='{self.api_version}', "
            f"api_key='***REDACTED***', private_key='***REDACTED***')"
        )


@dataclass(frozen=True)
class ImportConfig:
    """Import processor configuration."""
    enabled: bool = True
    import_folder: Optional[Path] = None
    completed_folder: Optional[Path] = None
    mapping_file: Optional[Path] = None
    normalization_file: Optional[Path] = None

    def __post_init__(self):
        if not self.enabled:
            return
        if self.import_folder is None:
            raise ConfigurationError("IMPORT_FOLDER is required when import is enabled")
        if self.completed_folder is None:
            raise ConfigurationError("IMPORT_COMPLETED_FOLDER is required when import is enabled")


@dataclass(frozen=True)
class ExportConfig:
    """Export processor configuration."""
    enabled: bool = True
    export_folder: Optional[Path] = None
    mapping_file: Optional[Path] = None
    normalization_file: Optional[Path] = None

    def __post_init__(self):
        if self.enabled and self.export_folder is None:
            raise ConfigurationError("EXPORT_FOLDER is required when export is enabled")


@dataclass(frozen=True)
class NotificationConfig:
    """Email notification configuration."""
    smtp_host: str = ""
    smtp_port: int = 25
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    starttls: bool = False
    recipients: tuple = field(default_factory=tuple)
    sender: str = "clearinghouse-adapter@localhost"
    subject: str = "Clearinghouse Adapter notification"

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_host and self.recipients)

    def __repr__(self) -> str:
        """Safe repr without the SMTP password."""
        return (
            f"NotificationConfig(smtp_host='{self.smtp_host}', smtp_port={self.smtp_port}, "
            f"recipients={list(self.recipients)})"
        )


@dataclass(frozen=True)
class StorageConfig:
    """Persistent storage configuration."""
    database_path: Path = field(default_factory=lambda: Path("data/adapter_state.db"))

    def __post_init__(self):
        object.__setattr__(self, 'database_path', Path(self.database_path))


@dataclass(frozen=True)
class Settings:
    """
    Application settings container.

    All configuration is loaded from environment variables.
    Secrets are never logged or exposed.
    """
    clearinghouse: ClearinghouseConfig
    imports: ImportConfig
    exports: ExportConfig
    notification: NotificationConfig
    storage: StorageConfig
    log_level: str = "INFO"

    def __repr__(self) -> str:
        return (
            f"Settings(\n"
            f"  clearinghouse={self.clearinghouse},\n"
            f"  imports={self.imports},\n"
            f"  exports={self.exports},\n"
            f"  notification={self.notification},\n"
            f"  storage={self.storage}\n"
            f")"
        )


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load settings from environment variables.

    Optionally loads from a .env file first.

    Args:
        env_file: Optional path to .env file

    Returns:
        Configured Settings instance

    Raises:
        ConfigurationError: If required configuration is missing
    """
    if env_file and env_file.exists():
        _load_env_file(env_file)
    elif Path(".env").exists():
        _load_env_file(Path(".env"))

    try:
        clearinghouse = ClearinghouseConfig(
            base_url=os.getenv("CLEARINGHOUSE_API_BASE_URL", "").rstrip("/"),
            api_key=os.getenv("CLEARINGHOUSE_API_KEY", ""),
            private_key=os.getenv("CLEARINGHOUSE_API_PRIVATE_KEY", ""),
            api_version=os.getenv("CLEARINGHOUSE_API_VERSION", "v1"),
            timeout=float(os.getenv("CLEARINGHOUSE_TIMEOUT", "30")),
            max_retries=int(os.getenv("CLEARINGHOUSE_MAX_RETRIES", "3")),
        )

        imports = ImportConfig(
            enabled=_env_flag("IMPORT_ENABLED", "true"),
            import_folder=_env_path("IMPORT_FOLDER"),
            completed_folder=_env_path("IMPORT_COMPLETED_FOLDER"),
            mapping_file=_env_path("IMPORT_MAPPING_FILE"),
            normalization_file=_env_path("IMPORT_NORMALIZATION_FILE"),
        )

        exports = ExportConfig(
            enabled=_env_flag("EXPORT_ENABLED", "true"),
            export_folder=_env_path("EXPORT_FOLDER"),
            mapping_file=_env_path("EXPORT_MAPPING_FILE"),
            normalization_file=_env_path("EXPORT_NORMALIZATION_FILE"),
        )

        recipients = tuple(
            address.strip()
            for address in os.getenv("NOTIFY_TO", "").split(",")
            if address.strip()
        )
        notification = NotificationConfig(
            smtp_host=os.getenv("SMTP_HOST", ""),
            smtp_port=int(os.getenv("SMTP_PORT", "25")),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            starttls=_env_flag("SMTP_STARTTLS"),
            recipients=recipients,
            sender=os.getenv("NOTIFY_FROM", "clearinghouse-adapter@localhost"),
            subject=os.getenv("NOTIFY_SUBJECT", "Clearinghouse Adapter notification"),
        )

        storage = StorageConfig(
            database_path=Path(os.getenv("STORAGE_DATABASE_PATH", "data/adapter_state.db")),
        )

        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        settings = Settings(
            clearinghouse=clearinghouse,
            imports=imports,
            exports=exports,
            notification=notification,
            storage=storage,
            log_level=log_level,
        )

        logger.info("Configuration loaded successfully")
        logger.debug(f"Settings: {settings}")

        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def _load_env_file(path: Path) -> None:
    """
    Load environment variables from a file.

    Simple .env parser that handles:
    - KEY=value
    - KEY="quoted value"
    - # comments
    - Empty lines
    """
    logger.debug(f"Loading environment from {path}")

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                logger.warning(f"Invalid line {line_num} in {path}: no '=' found")
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            if value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            elif value.startswith("'") and value.endswith("'"):
                value = value[1:-1]

            # Process environment takes precedence
            if key not in os.environ:
                os.environ[key] = value
