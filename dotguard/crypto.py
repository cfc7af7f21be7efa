"""
Password-based encryption of backup artifacts.

This module is responsible for:
- Deriving keys from passwords with scrypt
- Sealing and opening blobs with AES-256-GCM
- Persisting the password verification hash in the settings file

This module does NOT:
- Decide which files are encrypted
- Store passwords anywhere (the password comes from the caller or the
  ``DOTGUARD_PASSWORD`` environment variable)

Blob layout::

    MAGIC(11) | SALT(16) | NONCE(12) | TAG(16) | CIPHERTEXT

Every blob gets a fresh salt and nonce. Opening a blob checks the tag before
any plaintext is returned.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Protocol.KDF import scrypt
from Crypto.Random import get_random_bytes

from .config import (
    AES_NONCE_SIZE,
    AES_TAG_SIZE,
    KEY_SIZE,
    MAGIC_HEADER,
    MIN_PASSWORD_LENGTH,
    SALT_SIZE,
    SCRYPT_N,
    SCRYPT_P,
    SCRYPT_R,
    load_password_from_env,
)
from .errors import DecryptionError, EncryptionError
from .settings import Settings, settings_path
from .utils import atomic_write_bytes

logger = logging.getLogger(__name__)

HEADER_SIZE = len(MAGIC_HEADER) + SALT_SIZE + AES_NONCE_SIZE + AES_TAG_SIZE
ENCRYPTED_SUFFIX = ".enc"


@dataclass(frozen=True)
class KdfParams:
    n: int = SCRYPT_N
    r: int = SCRYPT_R
    p: int = SCRYPT_P
    key_size: int = KEY_SIZE


KDF_DEFAULT = KdfParams()


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


def generate_salt() -> bytes:
    return get_random_bytes(SALT_SIZE)


def derive_key(password: str, salt: bytes, params: KdfParams = KDF_DEFAULT) -> bytes:
    return scrypt(password.encode("utf-8"), salt, params.key_size, N=params.n, r=params.r, p=params.p)


def generate_verification_hash(password: str, salt: bytes, params: KdfParams = KDF_DEFAULT) -> str:
    return hashlib.sha256(derive_key(password, salt, params)).hexdigest()


def verify_password(password: str, salt: bytes, expected_hash: str, params: KdfParams = KDF_DEFAULT) -> bool:
    actual = generate_verification_hash(password, salt, params)
    return hmac.compare_digest(actual, expected_hash)


# ---------------------------------------------------------------------------
# Blob encryption
# ---------------------------------------------------------------------------


def encryption_overhead() -> int:
    """Bytes added to every plaintext."""
    return HEADER_SIZE


def is_encrypted_bytes(data: bytes) -> bool:
    return data.startswith(MAGIC_HEADER)


def is_encrypted_file(path: str | Path) -> bool:
    try:
        with Path(path).open("rb") as fh:
            return is_encrypted_bytes(fh.read(len(MAGIC_HEADER)))
    except OSError:
        return False


def encrypt_bytes(data: bytes, password: str, params: KdfParams = KDF_DEFAULT) -> bytes:
    salt = generate_salt()
    key = derive_key(password, salt, params)
    cipher = AES.new(key, AES.MODE_GCM, nonce=get_random_bytes(AES_NONCE_SIZE))
    ciphertext, tag = cipher.encrypt_and_digest(data)
    return MAGIC_HEADER + salt + cipher.nonce + tag + ciphertext


def decrypt_bytes(blob: bytes, password: str, params: KdfParams = KDF_DEFAULT) -> bytes:
    """
    Open a blob produced by ``encrypt_bytes``.

    Raises:
        DecryptionError: for short input, a wrong header, a wrong password or
            any modification of the blob. The message is the same in all cases.
    """

    if len(blob) < HEADER_SIZE or not is_encrypted_bytes(blob):
        raise DecryptionError()

    offset = len(MAGIC_HEADER)
    salt = blob[offset:offset + SALT_SIZE]
    offset += SALT_SIZE
    nonce = blob[offset:offset + AES_NONCE_SIZE]
    offset += AES_NONCE_SIZE
    tag = blob[offset:offset + AES_TAG_SIZE]
    ciphertext = blob[offset + AES_TAG_SIZE:]

    key = derive_key(password, salt, params)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError:
        raise DecryptionError() from None


def encrypt_file(src: str | Path, dest: str | Path, password: str, params: KdfParams = KDF_DEFAULT) -> None:
    src, dest = Path(src), Path(dest)
    atomic_write_bytes(dest, encrypt_bytes(src.read_bytes(), password, params))
    logger.info("Encrypted %s -> %s", src, dest)


def decrypt_file(src: str | Path, dest: str | Path, password: str, params: KdfParams = KDF_DEFAULT) -> None:
    src, dest = Path(src), Path(dest)
    atomic_write_bytes(dest, decrypt_bytes(src.read_bytes(), password, params))
    logger.info("Decrypted %s -> %s", src, dest)


# ---------------------------------------------------------------------------
# Repository-level manager
# ---------------------------------------------------------------------------


class EncryptionManager:
    def __init__(self, repo_root: str | Path, params: KdfParams = KDF_DEFAULT):
        self.repo_root = Path(repo_root)
        self.params = params

    @property
    def settings_file(self) -> Path:
        return settings_path(self.repo_root)

    def _load(self) -> Settings:
        return Settings.load(self.settings_file)

    def is_enabled(self) -> bool:
        return self._load().encryption.enabled

    def setup(self, password: str) -> None:
        """
        Enable encryption and record a verification hash for ``password``.

        Raises:
            EncryptionError: if the password is too short.
        """

        if len(password) < MIN_PASSWORD_LENGTH:
            raise EncryptionError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                ["Choose a longer password"],
            )

        salt = generate_salt()
        settings = self._load()
        settings.encryption.enabled = True
        settings.encryption.salt = salt.hex()
        settings.encryption.verification_hash = generate_verification_hash(password, salt, self.params)
        settings.save(self.settings_file)
        logger.info("Encryption enabled for %s", self.repo_root)

    def disable(self) -> None:
        settings = self._load()
        settings.encryption.enabled = False
        settings.save(self.settings_file)

    def verify(self, password: str) -> bool:
        """True if ``password`` matches the recorded hash (or none is recorded)."""
        enc = self._load().encryption
        if not enc.salt or not enc.verification_hash:
            return True
        try:
            salt = bytes.fromhex(enc.salt)
        except ValueError:
            logger.warning("Invalid encryption.salt in %s", self.settings_file)
            return False
        return verify_password(password, salt, enc.verification_hash, self.params)

    def change_password(self, old_password: str, new_password: str) -> None:
        if not self.verify(old_password):
            raise EncryptionError("Current password is incorrect")
        self.setup(new_password)

    def get_password(self) -> str:
        """
        Return the password from ``DOTGUARD_PASSWORD`` after verifying it.

        Raises:
            EncryptionError: if no password is set or it does not verify.
        """

        password = load_password_from_env()
        if not password:
            raise EncryptionError(
                "No encryption password available",
                ["Set the DOTGUARD_PASSWORD environment variable", "Or enter it when prompted"],
            )
        if not self.verify(password):
            raise EncryptionError("Password from DOTGUARD_PASSWORD does not match the configured password")
        return password

    def _password(self, password: Optional[str]) -> str:
        if password is None:
            return self.get_password()
        if not self.verify(password):
            raise EncryptionError("Password does not match the configured password")
        return password

    def encrypt_file(self, src: str | Path, dest: str | Path, password: Optional[str] = None) -> None:
        encrypt_file(src, dest, self._password(password), self.params)

    def decrypt_file(self, src: str | Path, dest: str | Path, password: Optional[str] = None) -> None:
        decrypt_file(src, dest, self._password(password), self.params)
