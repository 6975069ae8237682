"""Token encryption for provider credentials at rest.

AES-256-GCM with a random 16-byte IV. The stored form is
base64(IV + auth tag + ciphertext).

Set TOKEN_ENCRYPTION_KEY to 64 hex characters (``lucyn gen-key``), or to any
passphrase, which is stretched with scrypt.
"""

import base64
import binascii
import logging
import os
import re
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from config import settings

logger = logging.getLogger(__name__)

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32

KEY_SALT = b"lucyn-token-encryption-salt"
DEV_SALT = b"lucyn-dev-salt"
DEV_FALLBACK_KEY = "lucyn-dev-encryption-key-do-not-use-in-production!!"

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


class EncryptionError(Exception):
    """Raised when a token cannot be encrypted or decrypted."""


@lru_cache(maxsize=8)
def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


def get_encryption_key() -> bytes:
    """Resolve the 32-byte AES key from settings.

    Development without a key uses a deterministic fallback. Production
    without a key is an error.
    """
    key = settings.TOKEN_ENCRYPTION_KEY
    if not key:
        if settings.is_production:
            raise EncryptionError(
                "TOKEN_ENCRYPTION_KEY is required in production. Generate one with: lucyn gen-key"
            )
        logger.warning("TOKEN_ENCRYPTION_KEY not set - using dev fallback key (NOT SECURE)")
        return _derive_key(DEV_FALLBACK_KEY, DEV_SALT)

    if _HEX_KEY.match(key):
        return bytes.fromhex(key)
    return _derive_key(key, KEY_SALT)


def encrypt_token(plaintext: str) -> str:
    """Encrypt a token for storage."""
    if not plaintext:
        raise EncryptionError("Cannot encrypt empty token")

    iv = os.urandom(IV_LENGTH)
    # AESGCM appends the tag to the ciphertext; the stored layout puts it first.
    sealed = AESGCM(get_encryption_key()).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a token produced by encrypt_token."""
    if not encrypted_token:
        raise EncryptionError("Cannot decrypt empty token")

    try:
        combined = base64.b64decode(encrypted_token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionError("Invalid encrypted token format") from e

    iv = combined[:IV_LENGTH]
    tag = combined[IV_LENGTH:IV_LENGTH + AUTH_TAG_LENGTH]
    ciphertext = combined[IV_LENGTH + AUTH_TAG_LENGTH:]
    if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
        raise EncryptionError("Invalid encrypted token format")

    try:
        plaintext = AESGCM(get_encryption_key()).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise EncryptionError("Token authentication failed") from e
    return plaintext.decode("utf-8")


def generate_encryption_key() -> str:
    """Return a fresh key suitable for TOKEN_ENCRYPTION_KEY."""
    return os.urandom(KEY_LENGTH).hex()


def is_encryption_configured() -> bool:
    return bool(settings.TOKEN_ENCRYPTION_KEY)


def safe_encrypt_token(plaintext: str) -> str | None:
    """Encrypt, or return None when no key is configured or encryption fails."""
    if not is_encryption_configured():
        logger.warning("Token encryption is not configured. Storing tokens unencrypted is not recommended.")
        return None
    try:
        return encrypt_token(plaintext)
    except EncryptionError as e:
        logger.error(f"Failed to encrypt token: {e}")
        return None


def safe_decrypt_token(encrypted_token: str) -> str | None:
    """Decrypt, or return None on empty input or failure."""
    if not encrypted_token:
        return None
    try:
        return decrypt_token(encrypted_token)
    except (EncryptionError, UnicodeDecodeError) as e:
        logger.error(f"Failed to decrypt token: {e}")
        return None
