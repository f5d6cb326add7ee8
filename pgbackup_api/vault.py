"""
Credential vault.

Secrets at rest (database passwords, object-store keys) are sealed with
AES-256-GCM under a key derived per call from SECRET_KEY with Argon2id.
User passwords are one-way Argon2id hashes salted per user and peppered
with SECRET_KEY.

Encoded formats (standard base64):
    hash:        salt(16) || hash(32)
    ciphertext:  salt(16) || nonce(12) || sealed data || tag(16)
"""
import base64
import binascii
import hmac
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.argon2 import Argon2id

from .config import get_secret_key
from .exceptions import CryptoError, InvalidPasswordError

ARGON2_MEMORY_KIB = 64 * 1024
ARGON2_ITERATIONS = 3
ARGON2_LANES = 2
SALT_LENGTH = 16
KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


def _argon2id(material: bytes, salt: bytes) -> bytes:
    kdf = Argon2id(
        salt=salt,
        length=KEY_LENGTH,
        iterations=ARGON2_ITERATIONS,
        lanes=ARGON2_LANES,
        memory_cost=ARGON2_MEMORY_KIB,
    )
    return kdf.derive(material)


def _derive_key(salt: bytes) -> bytes:
    return _argon2id(get_secret_key().encode("utf-8"), salt)


def _hash_with_salt(password: str, salt: bytes) -> bytes:
    return _argon2id((password + get_secret_key()).encode("utf-8"), salt)


def hash_password(password: str) -> str:
    """Hash a user password; raises ConfigurationError when SECRET_KEY is unset."""
    salt = os.urandom(SALT_LENGTH)
    digest = _hash_with_salt(password, salt)
    return base64.b64encode(salt + digest).decode("ascii")


def validate_password(password: str, hashed_password: str) -> None:
    """Raise InvalidPasswordError unless `password` matches `hashed_password`."""
    try:
        data = base64.b64decode(hashed_password, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPasswordError("invalid password", original_error=e)

    if len(data) != SALT_LENGTH + KEY_LENGTH:
        raise InvalidPasswordError("invalid password")

    salt, stored = data[:SALT_LENGTH], data[SALT_LENGTH:]
    computed = _hash_with_salt(password, salt)
    if not hmac.compare_digest(stored, computed):
        raise InvalidPasswordError("invalid password")


def encrypt_string(plaintext: str) -> str:
    salt = os.urandom(SALT_LENGTH)
    nonce = os.urandom(NONCE_LENGTH)
    key = _derive_key(salt)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + nonce + sealed).decode("ascii")


def decrypt_string(ciphertext: str) -> str:
    """Open a value produced by encrypt_string. Fails closed with CryptoError."""
    try:
        data = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError("failed to decode ciphertext", original_error=e)

    if len(data) < SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH:
        raise CryptoError("encrypted data too short")

    salt = data[:SALT_LENGTH]
    nonce = data[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
    sealed = data[SALT_LENGTH + NONCE_LENGTH:]

    key = _derive_key(salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise CryptoError("failed to decrypt: authentication failed", original_error=e)

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("decrypted data is not valid UTF-8", original_error=e)
