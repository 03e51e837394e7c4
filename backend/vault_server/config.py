"""
Configuration management for the Workflow Vault server.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Directory defaults follow the editor's layout: data/, data/backups/,
      data/backups/versions/
    - Invalid values fail fast at startup with ValueError

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never change the default directory layout; existing installs rely on it
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_KEEP_LIMIT = 1000
COMPRESSION_CHOICES = ("none", "gzip")


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory holding workflow documents and metadata files
        archive_dir: Directory for full backups (default: <data_dir>/backups)
        versions_dir: Directory for version entries (default: <archive_dir>/versions)
        scratch_dir: Parent directory for scratch copies (default: system temp)
    """

    data_dir: str = "./data"
    archive_dir: str | None = None
    versions_dir: str | None = None
    scratch_dir: str | None = None

    @property
    def resolved_archive_dir(self) -> str:
        return self.archive_dir or os.path.join(self.data_dir, "backups")

    @property
    def resolved_versions_dir(self) -> str:
        return self.versions_dir or os.path.join(self.resolved_archive_dir, "versions")

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "./data"),
            archive_dir=os.getenv("ARCHIVE_DIR"),
            versions_dir=os.getenv("VERSIONS_DIR"),
            scratch_dir=os.getenv("SCRATCH_DIR"),
        )


@dataclass(frozen=True)
class VersionConfig:
    """Version Ledger configuration.

    Attributes:
        keep_limit: Maximum version entries kept per document
        compression: Storage form for new entries ("none" or "gzip")
    """

    keep_limit: int = DEFAULT_KEEP_LIMIT
    compression: str = "none"

    @classmethod
    def from_env(cls) -> VersionConfig:
        """Load configuration from environment variables."""
        return cls(
            keep_limit=int(os.getenv("VERSION_KEEP_LIMIT", str(DEFAULT_KEEP_LIMIT))),
            compression=os.getenv("VERSION_COMPRESSION", "none").lower(),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins ("*" allows all)
    """

    host: str = "0.0.0.0"
    port: int = 4000
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "4000")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Directory layout
        versions: Version Ledger settings
        http: HTTP server settings
        observability: Logging settings
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    versions: VersionConfig = field(default_factory=VersionConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            versions=VersionConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.versions.keep_limit < 1:
            raise ValueError("VERSION_KEEP_LIMIT must be at least 1")
        if self.versions.compression not in COMPRESSION_CHOICES:
            raise ValueError(
                f"Invalid VERSION_COMPRESSION '{self.versions.compression}'. "
                f"Must be one of: {', '.join(COMPRESSION_CHOICES)}"
            )
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")

        data_dir = os.path.abspath(self.storage.data_dir)
        if os.path.abspath(self.storage.resolved_archive_dir) == data_dir:
            raise ValueError("ARCHIVE_DIR must differ from DATA_DIR")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "archive_dir": self.storage.resolved_archive_dir,
                "versions_dir": self.storage.resolved_versions_dir,
                "keep_limit": self.versions.keep_limit,
                "version_compression": self.versions.compression,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
