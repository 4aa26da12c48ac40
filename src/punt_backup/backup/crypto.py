"""
Password-based encryption for backup payloads.

Backups are encrypted with AES-256-GCM using a key derived from the user's
password with PBKDF2-HMAC-SHA256. GCM is authenticated: any change to the
ciphertext, tag, salt or nonce makes decryption fail instead of returning
corrupted plaintext.

Security Design:
    - Fresh random 256-bit salt and 96-bit nonce for every encryption
    - Salt and nonce travel with the ciphertext; they are not secret
    - Tag verification happens inside a single AESGCM.decrypt call, so a
      wrong password and a tampered payload fail identically
    - All binary fields are base64 text so they embed in a JSON manifest
"""

from __future__ import annotations

import base64
import binascii
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from punt_backup.backup.errors import DecryptionFailedError, InvalidFormatError

# Encryption parameters - changing these breaks existing backups
PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32  # 256 bits
NONCE_LENGTH = 12  # 96 bits, the GCM standard
SALT_LENGTH = 32  # 256 bits
AUTH_TAG_LENGTH = 16  # 128 bits

DECRYPTION_FAILED_MESSAGE = "Decryption failed: incorrect password or corrupted data"


@dataclass(frozen=True)
class EncryptedPayload:
    """
    Encrypted data with everything needed to decrypt it except the password.

    All fields are base64-encoded.
    """

    ciphertext: str
    salt: str
    nonce: str
    auth_tag: str

    def to_dict(self) -> dict[str, str]:
        """Convert to the envelope field names used in a manifest."""
        return {
            "ciphertext": self.ciphertext,
            "salt": self.salt,
            "nonce": self.nonce,
            "authTag": self.auth_tag,
        }


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 256-bit key from a password and salt with PBKDF2-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt(plaintext: str, password: str) -> EncryptedPayload:
    """
    Encrypt text with AES-256-GCM under a password-derived key.

    Args:
        plaintext: Text to encrypt (encoded as UTF-8).
        password: Password to derive the key from.

    Returns:
        EncryptedPayload with base64-encoded fields.
    """
    salt = secrets.token_bytes(SALT_LENGTH)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    key = derive_key(password, salt)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, auth_tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]

    return EncryptedPayload(
        ciphertext=_b64encode(ciphertext),
        salt=_b64encode(salt),
        nonce=_b64encode(nonce),
        auth_tag=_b64encode(auth_tag),
    )


def decrypt(payload: EncryptedPayload, password: str) -> str:
    """
    Decrypt a payload produced by encrypt().

    Args:
        payload: The encrypted payload.
        password: The password used for encryption.

    Returns:
        The decrypted text.

    Raises:
        DecryptionFailedError: Wrong password, tampered or malformed payload.
        InvalidFormatError: Authenticated plaintext is not valid UTF-8.
    """
    try:
        ciphertext = _b64decode(payload.ciphertext)
        salt = _b64decode(payload.salt)
        nonce = _b64decode(payload.nonce)
        auth_tag = _b64decode(payload.auth_tag)
    except (binascii.Error, ValueError) as e:
        raise DecryptionFailedError(DECRYPTION_FAILED_MESSAGE) from e

    if len(nonce) != NONCE_LENGTH or len(auth_tag) != AUTH_TAG_LENGTH:
        raise DecryptionFailedError(DECRYPTION_FAILED_MESSAGE)

    key = derive_key(password, salt)

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + auth_tag, None)
    except InvalidTag:
        raise DecryptionFailedError(DECRYPTION_FAILED_MESSAGE) from None

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidFormatError("Decrypted data is not valid UTF-8 text") from e


def is_encrypted_payload(data: Any) -> bool:
    """Check whether a mapping carries all four encryption fields as strings."""
    if not isinstance(data, Mapping):
        return False
    nonce = data.get("nonce", data.get("iv"))
    return (
        isinstance(data.get("ciphertext"), str)
        and isinstance(data.get("salt"), str)
        and isinstance(nonce, str)
        and isinstance(data.get("authTag"), str)
    )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text, validate=True)
