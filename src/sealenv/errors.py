# src/sealenv/errors.py
"""Typed exceptions and exit codes for the application."""

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Enumeration for application exit codes."""
    OK = 0
    UNKNOWN_ERROR = 1
    CONFIG_ERROR = 10
    TOOL_MISSING = 11
    KEY_NOT_FOUND = 12
    AUTHENTICATION_ERROR = 13
    DECRYPTION_ERROR = 14
    INTEGRITY_ERROR = 15
    WRITE_ERROR = 16
    PERMISSION_ERROR = 17
    ROTATION_INCOMPLETE = 18
    PROMPT_TIMEOUT = 19
    GENERATION_ERROR = 20
    SETUP_HALTED = 21
    LOCK_TIMEOUT = 22
    ENVIRONMENT_ERROR = 23


class SealEnvError(Exception):
    """Base exception for all sealenv errors."""
    def __init__(self, message: str, exit_code: ExitCode = ExitCode.UNKNOWN_ERROR):
        super().__init__(message)
        self.exit_code = exit_code

    def __str__(self) -> str:
        return f"[{self.exit_code.name}] {super().__str__()}"


class ConfigError(SealEnvError):
    """Exception for configuration loading or validation errors."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.CONFIG_ERROR)


class ValidationError(SealEnvError):
    """Exception for invalid user input such as a malformed variable name."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.CONFIG_ERROR)


class ToolUnavailable(SealEnvError):
    """An external collaborator binary is missing from PATH."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.TOOL_MISSING)


class ToolTimeout(SealEnvError):
    """An external collaborator did not finish in time."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.TOOL_MISSING)


class GenerationError(SealEnvError):
    """Key generation failed."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.GENERATION_ERROR)


class KeyNotFound(SealEnvError):
    """Key material (or the secret document) could not be found."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.KEY_NOT_FOUND)


class EntryNotFound(KeyNotFound):
    """The vault entry or attachment does not exist."""


class DocumentNotFound(KeyNotFound):
    """The encrypted secret document does not exist."""


class AuthenticationError(SealEnvError):
    """The vault master passphrase was rejected."""
    def __init__(self, message: str = "Vault authentication failed."):
        super().__init__(message, ExitCode.AUTHENTICATION_ERROR)


class DecryptionError(SealEnvError):
    """The supplied key material is not a recipient of the document."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.DECRYPTION_ERROR)


class IntegrityError(SealEnvError):
    """The ciphertext failed authentication (tampered, truncated or corrupt)."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.INTEGRITY_ERROR)


class WriteError(SealEnvError):
    """A durable write (document, key file or vault) failed."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.WRITE_ERROR)


class KeyPermissionError(SealEnvError):
    """Key material is stored with an unsafe file mode."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.PERMISSION_ERROR)


class RotationIncomplete(SealEnvError):
    """Key rotation could not be confirmed; the previous key was retained."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.ROTATION_INCOMPLETE)


class PromptTimeout(SealEnvError):
    """An interactive prompt was not answered in time."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.PROMPT_TIMEOUT)


class LockTimeout(SealEnvError):
    """Another process holds the document lock."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.LOCK_TIMEOUT)


class EnvironmentError(SealEnvError):
    """Exception for invalid environment (e.g., bad HOME path)."""
    def __init__(self, message: str):
        super().__init__(message, ExitCode.ENVIRONMENT_ERROR)


class SessionLoadError(SealEnvError):
    """Loading a session failed; carries the underlying cause."""
    def __init__(self, cause: SealEnvError):
        super().__init__(
            f"Could not load secrets: {cause.args[0] if cause.args else cause}",
            cause.exit_code,
        )
        self.cause = cause


class SetupHalted(SealEnvError):
    """A setup flow stopped at a guarded transition."""
    def __init__(self, last_state: str, step: str, cause: Optional[SealEnvError] = None):
        detail = f": {cause.args[0]}" if cause is not None and cause.args else ""
        super().__init__(
            f"Setup halted during '{step}' (last completed state: {last_state}){detail}",
            cause.exit_code if cause is not None else ExitCode.SETUP_HALTED,
        )
        self.last_state = last_state
        self.step = step
        self.cause = cause
