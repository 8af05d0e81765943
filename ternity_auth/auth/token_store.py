"""Per-environment token persistence.

Token records live in the ``auth`` map of the settings document, keyed
by environment id. Each record is the compact JSON form of a TokenSet,
encrypted through the secure-storage capability when it is available
and stored as plaintext otherwise.
"""

from __future__ import annotations

import asyncio
import json
import logging

from typing import TYPE_CHECKING, Any

from ..exceptions import StorageDecodeError
from ..types import TokenSet


if TYPE_CHECKING:
    from ..document import SettingsDocument
    from .secure_storage import SecureStorage


logger = logging.getLogger("ternity.auth")

AUTH_KEY = "auth"


def _serialize_tokens(tokens: TokenSet) -> str:
    """Serialize a TokenSet to compact JSON."""
    return json.dumps(tokens.to_dict(), separators=(",", ":"))


def _deserialize_tokens(data: str) -> TokenSet:
    """Deserialize a TokenSet from JSON.

    Raises
    ------
    StorageDecodeError
        If the JSON is malformed or lacks required fields.
    """
    try:
        obj = json.loads(data)
        if not isinstance(obj, dict):
            msg = "token record is not an object"
            raise TypeError(msg)
        return TokenSet.from_dict(obj)
    except (ValueError, KeyError, TypeError) as exc:
        msg = f"Stored token record is corrupt: {exc}"
        raise StorageDecodeError(msg) from exc


class TokenStore:
    """Encrypted-or-plaintext token persistence.

    All I/O runs in the default executor so callers on the event loop
    never block on the keyring or the filesystem. Operations run one at
    a time in call order, so a clear issued after a store always wins.

    Parameters
    ----------
    document : SettingsDocument
        The persisted settings document shared with the rest of the app.
    secure_storage : SecureStorage
        Encryption capability; plaintext is used when it reports unavailable.
    """

    def __init__(self, document: SettingsDocument, secure_storage: SecureStorage) -> None:
        """Initialize the token store."""
        self._document = document
        self._secure_storage = secure_storage
        self._lock = asyncio.Lock()

    @property
    def encrypted(self) -> bool:
        """Whether records are currently written encrypted."""
        return self._secure_storage.is_encryption_available()

    async def store(self, env_id: str, tokens: TokenSet) -> None:
        """Persist ``tokens`` for ``env_id``."""
        loop = asyncio.get_running_loop()
        async with self._lock:
            await loop.run_in_executor(None, self._store_sync, env_id, tokens)

    async def load(self, env_id: str) -> TokenSet | None:
        """Load the record for ``env_id``; corrupt records read as None."""
        loop = asyncio.get_running_loop()
        async with self._lock:
            return await loop.run_in_executor(None, self._load_sync, env_id)

    async def clear(self, env_id: str) -> None:
        """Remove the record for ``env_id``."""
        loop = asyncio.get_running_loop()
        async with self._lock:
            await loop.run_in_executor(None, self._clear_sync, env_id)

    def _store_sync(self, env_id: str, tokens: TokenSet) -> None:
        payload = _serialize_tokens(tokens)
        if self._secure_storage.is_encryption_available():
            blob = self._secure_storage.encrypt_string(payload)
        else:
            logger.debug("Storing tokens for %s without encryption", env_id)
            blob = payload

        config = self._document.read()
        auth = config.get(AUTH_KEY)
        if not isinstance(auth, dict):
            auth = {}
        auth[env_id] = blob
        config[AUTH_KEY] = auth
        self._document.write(config)

    def _load_sync(self, env_id: str) -> TokenSet | None:
        auth: Any = self._document.read().get(AUTH_KEY)
        if not isinstance(auth, dict):
            return None
        blob = auth.get(env_id)
        if not blob or not isinstance(blob, str):
            return None

        try:
            if self._secure_storage.is_encryption_available():
                payload = self._secure_storage.decrypt_string(blob)
            else:
                payload = blob
            return _deserialize_tokens(payload)
        except StorageDecodeError as exc:
            logger.warning("Ignoring stored session for %s: %s", env_id, exc)
            return None

    def _clear_sync(self, env_id: str) -> None:
        config = self._document.read()
        auth = config.get(AUTH_KEY)
        if isinstance(auth, dict) and env_id in auth:
            del auth[env_id]
            self._document.write(config)
