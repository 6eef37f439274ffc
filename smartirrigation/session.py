"""Authentication session, persisted across restarts."""
from __future__ import annotations

import base64
import binascii
import json
import logging

from pydantic import ValidationError

from .const import KEY_AUTH_TOKEN, KEY_AUTH_USER, KEY_DEVICE_ID, SESSION_KEYS
from .models import Session, User
from .storage import KeyValueStore

_LOGGER = logging.getLogger(__name__)


def device_id_from_token(token: str) -> str | None:
    """Read ``device_id`` from the payload segment of a JWT-style token.

    Any malformed token yields None; the caller keeps going without a bound device.
    """
    try:
        parts = token.split(".")
        if len(parts) != 3:
            raise ValueError(f"expected 3 token segments, got {len(parts)}")
        # accept both the url-safe and the standard alphabet, padded or not
        segment = parts[1].replace("-", "+").replace("_", "/")
        raw = base64.b64decode(segment + "=" * (-len(segment) % 4))
        payload = json.loads(raw)
    except (AttributeError, binascii.Error, ValueError) as err:
        _LOGGER.error("Failed to extract device_id from token: %s", err)
        return None

    if not isinstance(payload, dict):
        _LOGGER.error("Token payload is not an object: %r", payload)
        return None
    device_id = payload.get("device_id")
    if not isinstance(device_id, str) or not device_id:
        _LOGGER.debug("Token carries no device_id")
        return None
    return device_id


class SessionStore:
    """Owns the current :class:`Session` and its persisted copy."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._session = Session()

    # --- queries ---

    @property
    def session(self) -> Session:
        return self._session

    @property
    def token(self) -> str | None:
        return self._session.token

    @property
    def user(self) -> User | None:
        return self._session.user

    @property
    def device_id(self) -> str | None:
        return self._session.device_id

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def is_admin(self) -> bool:
        return self._session.is_admin

    # --- lifecycle ---

    def restore(self) -> Session:
        """Load the persisted session; corrupted data logs out instead of raising."""
        token = self._store.get(KEY_AUTH_TOKEN)
        raw_user = self._store.get(KEY_AUTH_USER)
        device_id = self._store.get(KEY_DEVICE_ID)

        if not token or not raw_user:
            self._session = Session()
            return self._session

        try:
            user = User.model_validate_json(raw_user)
        except ValidationError as err:
            _LOGGER.error("Failed to parse stored user, clearing session: %s", err)
            self._purge()
            self._session = Session()
            return self._session

        self._session = Session(token=token, user=user, device_id=device_id or None)
        _LOGGER.debug("Restored session for %s (device=%s)", user.username, device_id)
        return self._session

    def login(self, token: str, user: User, device_id: str | None = None) -> Session:
        self._session = Session(token=token, user=user, device_id=device_id or None)

        self._store.set(KEY_AUTH_TOKEN, token)
        self._store.set(KEY_AUTH_USER, user.model_dump_json())
        # keep whatever was stored before rather than blanking it
        if device_id:
            self._store.set(KEY_DEVICE_ID, device_id)

        _LOGGER.info("Logged in as %s (role=%s, device=%s)", user.username, user.role, device_id)
        return self._session

    def logout(self) -> None:
        self._session = Session()
        self._purge()
        _LOGGER.info("Logged out")

    def _purge(self) -> None:
        for key in SESSION_KEYS:
            self._store.remove(key)
