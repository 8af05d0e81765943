"""Platform secure-storage capability for token records.

Records are encrypted with Fernet using a key held in the OS keyring.
When no usable keyring backend exists (e.g. Linux without a secret
service) encryption is reported unavailable and the token store falls
back to plaintext.
"""

from __future__ import annotations

import logging

from abc import ABC, abstractmethod

import keyring

from cryptography.fernet import Fernet, InvalidToken
from keyring.errors import KeyringError

from ..exceptions import StorageDecodeError


logger = logging.getLogger("ternity.auth")

_KEY_USERNAME = "token-encryption-key"


class SecureStorage(ABC):
    """Encrypts and decrypts strings with a platform-held secret."""

    @abstractmethod
    def is_encryption_available(self) -> bool:
        """Whether encryption can be used right now."""

    @abstractmethod
    def encrypt_string(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` into an opaque ASCII blob."""

    @abstractmethod
    def decrypt_string(self, blob: str) -> str:
        """Decrypt a blob produced by ``encrypt_string``.

        Raises
        ------
        StorageDecodeError
            If the blob is corrupt or was encrypted with another key.
        """


class FernetSecureStorage(SecureStorage):
    """Fernet encryption with a caller-supplied key.

    Parameters
    ----------
    key : bytes or str, optional
        A urlsafe-base64 Fernet key. A fresh key is generated when omitted.
    """

    def __init__(self, key: bytes | str | None = None) -> None:
        """Initialize with a fixed key."""
        self._fernet = Fernet(key or Fernet.generate_key())

    def is_encryption_available(self) -> bool:
        """Always available."""
        return True

    def encrypt_string(self, plaintext: str) -> str:
        """Encrypt with the configured key."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt_string(self, blob: str) -> str:
        """Decrypt with the configured key."""
        try:
            return self._fernet.decrypt(blob.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            msg = "Stored token record could not be decrypted"
            raise StorageDecodeError(msg) from exc


class KeyringSecureStorage(SecureStorage):
    """Fernet encryption whose key lives in the OS keyring.

    The key is created on first use and cached for the process.

    Parameters
    ----------
    service_name : str
        Keyring service name (default "ternity-desktop").
    """

    def __init__(self, service_name: str = "ternity-desktop") -> None:
        """Initialize the keyring-backed storage."""
        self._service_name = service_name
        self._delegate: FernetSecureStorage | None = None
        self._available: bool | None = None

    def _load_delegate(self) -> FernetSecureStorage | None:
        if self._available is not None:
            return self._delegate
        try:
            key = keyring.get_password(self._service_name, _KEY_USERNAME)
            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(self._service_name, _KEY_USERNAME, key)
            self._delegate = FernetSecureStorage(key)
            self._available = True
        except (KeyringError, ValueError) as exc:
            logger.warning("OS keyring unavailable, tokens will be stored in plaintext: %s", exc)
            self._delegate = None
            self._available = False
        return self._delegate

    def is_encryption_available(self) -> bool:
        """Whether a usable keyring backend holds (or accepted) the key."""
        return self._load_delegate() is not None

    def encrypt_string(self, plaintext: str) -> str:
        """Encrypt with the keyring-held key."""
        delegate = self._load_delegate()
        if delegate is None:
            msg = "Secure storage is not available"
            raise RuntimeError(msg)
        return delegate.encrypt_string(plaintext)

    def decrypt_string(self, blob: str) -> str:
        """Decrypt with the keyring-held key."""
        delegate = self._load_delegate()
        if delegate is None:
            msg = "Secure storage is not available"
            raise StorageDecodeError(msg)
        return delegate.decrypt_string(blob)


class UnavailableSecureStorage(SecureStorage):
    """Storage for platforms without a secret store; forces plaintext."""

    def is_encryption_available(self) -> bool:
        """Never available."""
        return False

    def encrypt_string(self, plaintext: str) -> str:
        """Always fails."""
        msg = "Secure storage is not available"
        raise RuntimeError(msg)

    def decrypt_string(self, blob: str) -> str:
        """Always fails."""
        msg = "Secure storage is not available"
        raise StorageDecodeError(msg)
