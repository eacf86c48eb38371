"""
Secure-storage collaborators for the HeartID core.

The core treats sealing and persistence as external services: it hands a
serialized template record to a ``SealingService`` and stores the opaque
sealed blob through a ``SecureStorage``. It never sees key material.

Reference implementations are provided for tests, the command-line tool
and local deployments: an AES-256-GCM sealer whose key is derived from a
passphrase with Argon2id, an in-memory store, and a file-per-identity
store with atomic replacement.
"""

import secrets
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

import structlog
from argon2.exceptions import Argon2Error
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import (
    AES_KEY_SIZE,
    AES_NONCE_SIZE,
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_SALT_LENGTH,
    ARGON2_TIME_COST,
    KEY_SALT_FILE,
    SEALED_BLOB_MAGIC,
    TEMPLATE_FILE_SUFFIX,
)
from .exceptions import (
    OpenFailedError,
    SealFailedError,
    StorageError,
    TemplateNotFoundError,
)
from .utils import atomic_write_bytes, hash_data

# Initialize structured logger
logger = structlog.get_logger(__name__)


class SealingService(ABC):
    """Authenticated-encryption capability consumed by the template repository."""

    @abstractmethod
    def seal(self, plaintext: bytes, associated_data: bytes = b"") -> bytes:
        """
        Seal plaintext into an opaque blob.

        Raises
        ------
        SealFailedError
            If the plaintext cannot be sealed.
        """

    @abstractmethod
    def open(self, blob: bytes, associated_data: bytes = b"") -> bytes:
        """
        Open a sealed blob.

        Raises
        ------
        OpenFailedError
            If the blob is malformed or fails authentication (corrupted or
            tampered data).
        """


class SecureStorage(ABC):
    """Persistence capability for sealed template blobs, keyed by identity."""

    @abstractmethod
    def persist(self, identity_id: str, blob: bytes) -> None:
        """Store or atomically replace the blob of an identity."""

    @abstractmethod
    def retrieve(self, identity_id: str) -> bytes:
        """
        Return the blob of an identity.

        Raises
        ------
        TemplateNotFoundError
            If nothing is stored for the identity.
        """

    @abstractmethod
    def delete(self, identity_id: str) -> None:
        """Remove the blob of an identity; a missing blob is not an error."""

    def exists(self, identity_id: str) -> bool:
        try:
            self.retrieve(identity_id)
        except TemplateNotFoundError:
            return False
        return True


def derive_key(passphrase: Union[str, bytes], salt: bytes) -> bytes:
    """
    Derive an AES-256 key from a passphrase with Argon2id.

    Parameters
    ----------
    passphrase : str or bytes
        Secret passphrase.
    salt : bytes
        Random salt of at least ARGON2_SALT_LENGTH bytes.

    Returns
    -------
    bytes
        32-byte key.

    Raises
    ------
    SealFailedError
        If the key cannot be derived.
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    if not passphrase:
        raise SealFailedError("Passphrase cannot be empty")
    if len(salt) < ARGON2_SALT_LENGTH:
        raise SealFailedError(
            f"Salt must be at least {ARGON2_SALT_LENGTH} bytes, got {len(salt)}"
        )

    try:
        return hash_secret_raw(
            secret=passphrase,
            salt=salt,
            time_cost=ARGON2_TIME_COST,
            memory_cost=ARGON2_MEMORY_COST,
            parallelism=ARGON2_PARALLELISM,
            hash_len=AES_KEY_SIZE,
            type=Type.ID,
        )
    except Argon2Error as e:
        raise SealFailedError(f"Argon2 key derivation failed: {e}")


class AesGcmSealer(SealingService):
    """
    AES-256-GCM sealing service.

    Blob layout: ``SEALED_BLOB_MAGIC || nonce (12 bytes) || ciphertext+tag``.

    Parameters
    ----------
    key : bytes
        32-byte AES key. Use ``from_passphrase`` to derive one.

    Examples
    --------
    >>> sealer = AesGcmSealer(AESGCM.generate_key(bit_length=256))
    >>> sealer.open(sealer.seal(b"record"))
    b'record'
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != AES_KEY_SIZE:
            raise SealFailedError(f"AES key must be {AES_KEY_SIZE} bytes, got {len(key)}")
        self._cipher = AESGCM(key)

    @classmethod
    def from_passphrase(cls, passphrase: Union[str, bytes], salt: bytes) -> "AesGcmSealer":
        return cls(derive_key(passphrase, salt))

    @classmethod
    def generate(cls) -> "AesGcmSealer":
        """Sealer with a fresh random key, for tests and ephemeral stores."""
        return cls(AESGCM.generate_key(bit_length=AES_KEY_SIZE * 8))

    def seal(self, plaintext: bytes, associated_data: bytes = b"") -> bytes:
        try:
            nonce = secrets.token_bytes(AES_NONCE_SIZE)
            ciphertext = self._cipher.encrypt(nonce, plaintext, associated_data or None)
        except (TypeError, ValueError, OverflowError) as e:
            raise SealFailedError(f"AES-GCM encryption failed: {e}")
        return SEALED_BLOB_MAGIC + nonce + ciphertext

    def open(self, blob: bytes, associated_data: bytes = b"") -> bytes:
        header = len(SEALED_BLOB_MAGIC)
        if not blob.startswith(SEALED_BLOB_MAGIC) or len(blob) <= header + AES_NONCE_SIZE:
            raise OpenFailedError("Sealed blob is malformed")

        nonce = blob[header:header + AES_NONCE_SIZE]
        ciphertext = blob[header + AES_NONCE_SIZE:]
        try:
            return self._cipher.decrypt(nonce, ciphertext, associated_data or None)
        except InvalidTag:
            raise OpenFailedError(
                "Authentication tag mismatch: sealed template is corrupted or tampered"
            )


class InMemorySecureStorage(SecureStorage):
    """Process-local blob store."""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def persist(self, identity_id: str, blob: bytes) -> None:
        with self._lock:
            self._blobs[identity_id] = bytes(blob)

    def retrieve(self, identity_id: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[identity_id]
            except KeyError:
                raise TemplateNotFoundError(identity_id)

    def delete(self, identity_id: str) -> None:
        with self._lock:
            self._blobs.pop(identity_id, None)

    def exists(self, identity_id: str) -> bool:
        with self._lock:
            return identity_id in self._blobs


class FileSecureStorage(SecureStorage):
    """
    One sealed file per identity inside a directory.

    File names are the SHA-256 of the identity so that identities never
    appear on disk. Writes go to a temporary file that atomically replaces
    the previous blob.

    Parameters
    ----------
    directory : Path
        Store directory; created if missing.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create template store {self.directory}: {e}", operation="init"
            )

        logger.debug("FileSecureStorage initialized", directory=str(self.directory))

    def _path_for(self, identity_id: str) -> Path:
        digest = hash_data(identity_id)
        return self.directory / f"{digest}{TEMPLATE_FILE_SUFFIX}"

    def persist(self, identity_id: str, blob: bytes) -> None:
        try:
            atomic_write_bytes(self._path_for(identity_id), blob)
        except OSError as e:
            raise StorageError(
                f"Failed to persist sealed template: {e}",
                operation="persist",
                identity_id=identity_id,
            )

    def retrieve(self, identity_id: str) -> bytes:
        path = self._path_for(identity_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise TemplateNotFoundError(identity_id)
        except OSError as e:
            raise StorageError(
                f"Failed to read sealed template: {e}",
                operation="retrieve",
                identity_id=identity_id,
            )

    def delete(self, identity_id: str) -> None:
        try:
            self._path_for(identity_id).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to delete sealed template: {e}",
                operation="delete",
                identity_id=identity_id,
            )

    def exists(self, identity_id: str) -> bool:
        return self._path_for(identity_id).is_file()


def load_or_create_salt(directory: Union[str, Path], salt_file: Optional[str] = None) -> bytes:
    """
    Return the key-derivation salt stored beside a file store, creating it once.

    Parameters
    ----------
    directory : Path
        Template store directory.
    salt_file : str, optional
        Salt file name. Defaults to KEY_SALT_FILE.

    Returns
    -------
    bytes
        Salt of ARGON2_SALT_LENGTH bytes.
    """
    path = Path(directory) / (salt_file or KEY_SALT_FILE)
    try:
        if not path.is_file():
            path.parent.mkdir(parents=True, exist_ok=True)
            if atomic_write_bytes(path, secrets.token_bytes(ARGON2_SALT_LENGTH), exclusive=True):
                logger.info("Created key-derivation salt", path=str(path))
        # Re-read so that concurrent first runs all use the salt that won
        salt = path.read_bytes()
    except OSError as e:
        raise StorageError(f"Cannot access key salt file {path}: {e}", operation="salt")

    if len(salt) < ARGON2_SALT_LENGTH:
        raise SealFailedError(f"Key salt file {path} is truncated")
    return salt
