"""Tests for the credential vault."""

import base64

import pytest

from pgbackup_api.exceptions import ConfigurationError, CryptoError, InvalidPasswordError
from pgbackup_api.vault import (
    KEY_LENGTH, NONCE_LENGTH, SALT_LENGTH, TAG_LENGTH,
    decrypt_string, encrypt_string, hash_password, validate_password,
)


class TestEncryption:
    """Test cases for encrypt_string / decrypt_string."""

    def test_round_trip(self) -> None:
        """Test that a value decrypts back to the original text."""
        assert decrypt_string(encrypt_string("p@ss wörd")) == "p@ss wörd"

    def test_empty_string(self) -> None:
        """Test that an empty secret is still sealed and recoverable."""
        ciphertext = encrypt_string("")
        assert len(base64.b64decode(ciphertext)) == SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH
        assert decrypt_string(ciphertext) == ""

    def test_ciphertext_is_randomised(self) -> None:
        """Test that the same plaintext never yields the same ciphertext."""
        assert encrypt_string("same") != encrypt_string("same")

    def test_layout(self) -> None:
        """Test salt, nonce, sealed data and tag are concatenated."""
        data = base64.b64decode(encrypt_string("abcd"))
        assert len(data) == SALT_LENGTH + NONCE_LENGTH + len("abcd") + TAG_LENGTH

    def test_tampered_ciphertext_is_rejected(self) -> None:
        """Test that flipping one byte of the sealed data fails authentication."""
        data = bytearray(base64.b64decode(encrypt_string("top secret")))
        data[SALT_LENGTH + NONCE_LENGTH] ^= 0x01
        with pytest.raises(CryptoError):
            decrypt_string(base64.b64encode(bytes(data)).decode())

    def test_wrong_secret_key_is_rejected(self, monkeypatch) -> None:
        """Test that a different SECRET_KEY cannot open the value."""
        ciphertext = encrypt_string("top secret")
        monkeypatch.setenv("SECRET_KEY", "another-secret")
        with pytest.raises(CryptoError):
            decrypt_string(ciphertext)

    def test_truncated_input(self) -> None:
        """Test that input shorter than salt, nonce and tag is refused."""
        short = base64.b64encode(b"x" * (SALT_LENGTH + NONCE_LENGTH)).decode()
        with pytest.raises(CryptoError, match="too short"):
            decrypt_string(short)

    def test_invalid_base64(self) -> None:
        """Test that malformed base64 is reported as a CryptoError."""
        with pytest.raises(CryptoError):
            decrypt_string("not base64!!")

    def test_missing_secret_key(self, monkeypatch) -> None:
        """Test that nothing is encrypted without SECRET_KEY."""
        monkeypatch.delenv("SECRET_KEY")
        with pytest.raises(ConfigurationError):
            encrypt_string("value")


class TestPasswordHashing:
    """Test cases for hash_password / validate_password."""

    def test_validate_matching_password(self) -> None:
        """Test that the original password validates."""
        hashed = hash_password("hunter2")
        validate_password("hunter2", hashed)

    def test_hash_layout(self) -> None:
        """Test the stored hash is salt followed by the derived key."""
        assert len(base64.b64decode(hash_password("hunter2"))) == SALT_LENGTH + KEY_LENGTH

    def test_hash_is_salted(self) -> None:
        """Test that two hashes of one password differ."""
        assert hash_password("hunter2") != hash_password("hunter2")

    def test_wrong_password(self) -> None:
        """Test that a different password is refused."""
        hashed = hash_password("hunter2")
        with pytest.raises(InvalidPasswordError):
            validate_password("hunter3", hashed)

    def test_secret_key_is_part_of_hash(self, monkeypatch) -> None:
        """Test that a hash made under another SECRET_KEY does not validate."""
        hashed = hash_password("hunter2")
        monkeypatch.setenv("SECRET_KEY", "rotated")
        with pytest.raises(InvalidPasswordError):
            validate_password("hunter2", hashed)

    @pytest.mark.parametrize("stored", ["", "!!!", base64.b64encode(b"short").decode()])
    def test_malformed_hash(self, stored: str) -> None:
        """Test that malformed stored hashes never validate."""
        with pytest.raises(InvalidPasswordError):
            validate_password("hunter2", stored)
