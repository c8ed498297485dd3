# src/sealenv/config.py
"""Configuration loading and validation using Pydantic."""

from enum import Enum
from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from . import paths
from .errors import ConfigError


class CustodyMode(str, Enum):
    """Where the secret key material may durably reside."""
    ON_DISK = "on-disk"
    VAULT_ONLY = "vault-only"


class PathsConfig(BaseModel):
    """Filesystem layout."""
    key_file: str = "${HOME}/.age/key.txt"
    secrets_dir: str = "${HOME}/.secrets"
    document: str = "${HOME}/.secrets/secrets.env"
    vault_db: str = "${HOME}/.secrets/keepass/secrets.kdbx"
    project_loader: str = ".sealenv-session.sh"


class VaultConfig(BaseModel):
    """Where the key backup lives inside the password vault."""
    kind: Literal["keepassxc", "file"] = "keepassxc"
    entry: str = "SOPS-age-encryption-key"
    attachment: str = "age-key.txt"


class DocumentConfig(BaseModel):
    """Contents of a freshly created secret document."""
    template: Dict[str, str] = Field(
        default_factory=lambda: {"EXAMPLE_API_KEY": "replace-me"}
    )


class TimeoutConfig(BaseModel):
    """Timeouts, in seconds, for blocking operations."""
    prompt: float = 120.0
    tool: float = 60.0
    lock: float = 10.0


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "WARNING"
    json_format: bool = Field(False, alias="json")


class SealEnvConfig(BaseModel):
    """Root configuration model."""
    version: int = 1
    custody: CustodyMode = CustodyMode.ON_DISK
    backend: Literal["sops", "native"] = "sops"
    paths: PathsConfig = Field(default_factory=PathsConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    document: DocumentConfig = Field(default_factory=DocumentConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != 1:
            raise ValueError(f"unsupported configuration version {value}")
        return value

    def resolve_path(self, path_str: str) -> Path:
        """Resolve a path string, expanding ${HOME} and making it absolute."""
        return paths.expand_path(path_str).resolve()

    @property
    def key_file(self) -> Path:
        """Active on-disk key location; SOPS_AGE_KEY_FILE wins over the config."""
        return paths.get_key_file_override() or self.resolve_path(self.paths.key_file)

    @property
    def secrets_dir(self) -> Path:
        return self.resolve_path(self.paths.secrets_dir)

    @property
    def document_path(self) -> Path:
        return self.resolve_path(self.paths.document)

    @property
    def vault_db(self) -> Path:
        return self.resolve_path(self.paths.vault_db)


def load_config(path: Optional[Path] = None) -> SealEnvConfig:
    """
    Load, parse, and validate the sealenv configuration file.

    Args:
        path: The path to the configuration file. If None, uses the default
            path, and built-in defaults when that file does not exist.

    Returns:
        A validated SealEnvConfig instance.

    Raises:
        ConfigError: If an explicit file is missing, cannot be read, or fails validation.
    """
    config_path = Path(path) if path else paths.get_default_config_path()
    if not config_path.is_file():
        if path:
            raise ConfigError(f"Configuration file not found at '{config_path}'.")
        return SealEnvConfig()

    try:
        data = yaml.safe_load(config_path.read_bytes()) or {}
        return SealEnvConfig.model_validate(data)
    except (IOError, PermissionError) as e:
        raise ConfigError(f"Failed to read configuration file '{config_path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file '{config_path}': {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed:\n{e}") from e
