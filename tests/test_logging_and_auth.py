"""Tests for log redaction, JWT handling and pg tool error summaries."""

import logging
from datetime import timedelta

import pytest

from pgbackup_api.auth import create_jwt, validate_jwt
from pgbackup_api.error_parser import summarize_pg_error
from pgbackup_api.exceptions import AuthenticationError
from pgbackup_api.logger import SecretRedactingFilter


def make_record(msg, *args) -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


class TestSecretRedactingFilter:
    """Test cases for SecretRedactingFilter."""

    @pytest.mark.parametrize("message, secret", [
        ("env PGPASSWORD=hunter2 pg_dump", "hunter2"),
        ("host=db password=hunter2 user=backup", "hunter2"),
        ("postgresql://backup:hunter2@db:5432/orders", "hunter2"),
    ])
    def test_redacts(self, message: str, secret: str) -> None:
        """Test that known password shapes are masked."""
        record = make_record(message)
        assert SecretRedactingFilter().filter(record) is True
        assert secret not in record.getMessage()
        assert "<REDACTED>" in record.getMessage()

    def test_redacts_formatted_arguments(self) -> None:
        """Test that secrets passed as %-arguments are masked too."""
        record = make_record("connecting with %s", "password=hunter2")
        SecretRedactingFilter().filter(record)
        assert record.getMessage() == "connecting with password=<REDACTED>"

    def test_leaves_other_messages(self) -> None:
        """Test that ordinary messages are untouched."""
        record = make_record("Backup of %s finished", "orders")
        SecretRedactingFilter().filter(record)
        assert record.args == ("orders",)


class TestJwt:
    """Test cases for create_jwt / validate_jwt."""

    def test_round_trip(self) -> None:
        """Test that a fresh token validates and names its user."""
        claims = validate_jwt(create_jwt("admin", timedelta(hours=1)))
        assert claims["sub"] == "admin"
        assert claims["username"] == "admin"

    def test_expired(self) -> None:
        """Test that an expired token is refused."""
        token = create_jwt("admin", timedelta(seconds=-10))
        with pytest.raises(AuthenticationError):
            validate_jwt(token)

    def test_other_secret(self, monkeypatch) -> None:
        """Test that a token signed with another key is refused."""
        token = create_jwt("admin", timedelta(hours=1))
        monkeypatch.setenv("SECRET_KEY", "rotated")
        with pytest.raises(AuthenticationError):
            validate_jwt(token)

    def test_empty(self) -> None:
        """Test empty inputs."""
        with pytest.raises(AuthenticationError):
            validate_jwt("")
        with pytest.raises(AuthenticationError):
            create_jwt("", timedelta(hours=1))


class TestSummarizePgError:
    """Test cases for summarize_pg_error."""

    @pytest.mark.parametrize("stderr, prefix", [
        ('FATAL:  password authentication failed for user "backup"', "Authentication error"),
        ('FATAL:  database "orders" does not exist', "Database error"),
        ("could not connect to server: Connection refused", "Connection error"),
        ("pg_restore: error: input file does not appear to be a valid archive", "Archive error"),
        ("", "Unknown error"),
        (None, "Unknown error"),
    ])
    def test_summaries(self, stderr, prefix: str) -> None:
        """Test the mapping from tool output to a short summary."""
        assert summarize_pg_error(stderr).startswith(prefix)
