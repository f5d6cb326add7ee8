"""Exceptions raised by the backup engine, the scheduler and the record store."""


class BackupManagerError(Exception):
    """Base exception for all backup-manager errors."""

    status_code = 500

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error
        self.message = message


class ConfigurationError(BackupManagerError):
    """Raised when SECRET_KEY, DATABASE_URL or another required setting is missing."""


class ValidationError(BackupManagerError):
    """Raised for malformed input such as an invalid cron expression."""

    status_code = 400


class ConflictError(ValidationError):
    """Raised when a uniqueness or foreign-key constraint rejects a write."""

    status_code = 409


class NotFoundError(BackupManagerError):
    """Raised when a connection, destination, schedule or backup file does not exist."""

    status_code = 404


class ConnectivityError(BackupManagerError):
    """Raised when the source database or the object store cannot be reached."""

    status_code = 502


class SubprocessError(BackupManagerError):
    """Raised when pg_dump or pg_restore exits with a nonzero status."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stderr: str = "",
        summary: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr
        self.summary = summary


class CryptoError(BackupManagerError):
    """Raised when encryption or decryption fails. Never carries plaintext."""


class InvalidPasswordError(CryptoError):
    """Raised when a password does not match its stored hash."""

    status_code = 401


class AuthenticationError(BackupManagerError):
    """Raised when a bearer token is missing, malformed or expired."""

    status_code = 401
