"""
Configuration settings for the Business Central container helper.

This module defines all configuration settings using Pydantic classes.
Operations receive an AppSettings instance explicitly; the module level
``settings`` object is only the default used by the entry points.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables
load_dotenv()


def _default_host_helper_folder() -> str:
    if os.name == "nt":
        return "C:\\ProgramData\\BcContainerHelper"
    return str(Path.home() / ".bccontainerhelper")


def _default_artifacts_cache_folder() -> str:
    if os.name == "nt":
        return "C:\\bcartifacts.cache"
    return str(Path.home() / ".bcartifacts.cache")


class HelperSettings(BaseSettings):
    """Shared folder roots on the host and inside containers."""

    host_helper_folder: str = Field(
        default_factory=_default_host_helper_folder,
        description="Root folder for compiler folders, extensions and backups",
    )
    container_helper_folder: str = Field(
        default="C:\\ProgramData\\BcContainerHelper",
        description="Helper folder as seen from inside a container",
    )

    model_config = SettingsConfigDict(
        env_prefix="BCHELPER_", extra="ignore", env_file=".env"
    )

    @property
    def compiler_root(self) -> str:
        return os.path.join(self.host_helper_folder, "compiler")

    @property
    def extensions_root(self) -> str:
        return os.path.join(self.host_helper_folder, "Extensions")


class ArtifactSettings(BaseSettings):
    """Artifact download settings."""

    cache_folder: str = Field(
        default_factory=_default_artifacts_cache_folder,
        description="Folder holding downloaded application and platform payloads",
    )
    chunk_size: int = Field(default=8192, description="Download chunk size in bytes")
    request_timeout: int = Field(
        default=300, description="HTTP request timeout in seconds"
    )

    model_config = SettingsConfigDict(
        env_prefix="ARTIFACTS_", extra="ignore", env_file=".env"
    )


class CompilerSettings(BaseSettings):
    """Compiler folder settings."""

    elevate_chmod: bool = Field(
        default=True, description="Grant execute permission on alc through sudo"
    )
    sudo_command: List[str] = Field(
        default=["sudo"], description="Command prefix used for elevation"
    )

    model_config = SettingsConfigDict(
        env_prefix="COMPILER_", extra="ignore", env_file=".env"
    )


class ContainerSettings(BaseSettings):
    """Container exec settings."""

    docker_command: str = Field(default="docker", description="Docker CLI executable")
    agent_command: List[str] = Field(
        default=["python", "-m", "bchelper"],
        description="Command starting the restore agent inside the container",
    )
    exec_timeout: Optional[int] = Field(
        default=None, description="Timeout in seconds for a docker exec round trip"
    )

    model_config = SettingsConfigDict(
        env_prefix="CONTAINER_", extra="ignore", env_file=".env"
    )


class MSSQLSettings(BaseSettings):
    """SQL Server connection settings used by the restore agent."""

    user: str = Field(
        default="", description="MSSQL username, empty for integrated security"
    )
    password: SecretStr = Field(default=SecretStr(""), description="MSSQL password")
    timeout: int = Field(default=60, description="Login timeout in seconds")

    model_config = SettingsConfigDict(
        env_prefix="MSSQL_", extra="ignore", env_file=".env"
    )

    def get_connection_dict(self) -> dict:
        """Get credential parameters as a dictionary."""
        return {
            "user": self.user or None,
            "password": self.password.get_secret_value() or None,
            "login_timeout": self.timeout,
        }


class ServiceSettings(BaseSettings):
    """Service tier settings used by the restore agent."""

    config_path: str = Field(
        default="C:\\Program Files\\Microsoft Dynamics NAV\\*\\Service\\CustomSettings.config",
        description="Glob pattern locating the service tier configuration file",
    )
    stop_command: List[str] = Field(
        default=["net", "stop", "MicrosoftDynamicsNavServer${instance}"],
        description="Command stopping the service instance",
    )
    start_command: List[str] = Field(
        default=["net", "start", "MicrosoftDynamicsNavServer${instance}"],
        description="Command starting the service instance",
    )

    model_config = SettingsConfigDict(
        env_prefix="SERVICE_", extra="ignore", env_file=".env"
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Logging level")
    directory: str = Field(default="logs", description="Log directory")
    max_size_mb: int = Field(default=10, description="Max log file size in MB")
    backup_count: int = Field(default=5, description="Number of log backups to keep")
    json_format: bool = Field(default=True, description="Use JSON formatted logs")

    model_config = SettingsConfigDict(
        env_prefix="LOG_", extra="ignore", env_file=".env"
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is one of the supported values."""
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {', '.join(allowed_levels)}")
        return v.upper()


class AppSettings(BaseSettings):
    """Application settings."""

    # Component settings
    helper: HelperSettings = Field(default_factory=HelperSettings)
    artifacts: ArtifactSettings = Field(default_factory=ArtifactSettings)
    compiler: CompilerSettings = Field(default_factory=CompilerSettings)
    container: ContainerSettings = Field(default_factory=ContainerSettings)
    mssql: MSSQLSettings = Field(default_factory=MSSQLSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    def get_logging_config(self, log_name: str = "bchelper") -> Dict[str, Any]:
        """Get logging configuration dictionary."""
        level = self.logging.level
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
                },
                "json": {
                    "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                    "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
                },
            },
            "handlers": {
                # StreamHandler writes to stderr; stdout carries the JSON protocol
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": level,
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "filename": f"{self.logging.directory}/{log_name}.log",
                    "maxBytes": self.logging.max_size_mb * 1024 * 1024,
                    "backupCount": self.logging.backup_count,
                    "formatter": "json" if self.logging.json_format else "standard",
                    "level": level,
                },
            },
            "loggers": {"": {"handlers": ["console", "file"], "level": level}},
        }


# Create global settings instance
settings = AppSettings()
