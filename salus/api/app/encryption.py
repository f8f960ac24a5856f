"""Field-level encryption for free-text case notes (Fernet)."""

from __future__ import annotations

import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from .config import settings
from .errors import WorkflowError

logger = logging.getLogger(__name__)


class EncryptionError(WorkflowError):
    pass


@lru_cache(maxsize=1)
def _fernet(key: str) -> Fernet:
    try:
        return Fernet(key.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise EncryptionError("NOTES_ENCRYPTION_KEY is not a valid Fernet key") from exc


def _cipher() -> Fernet:
    key = settings.NOTES_ENCRYPTION_KEY
    if not key:
        raise EncryptionError("NOTES_ENCRYPTION_KEY not configured")
    return _fernet(key)


def encrypt_field(value: str | None) -> str | None:
    if value is None:
        return None
    return _cipher().encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_field(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return _cipher().decrypt(value.encode("ascii")).decode("utf-8")
    except InvalidToken as exc:
        logger.error("Failed to decrypt stored notes (wrong key or corrupt token)")
        raise EncryptionError("Stored notes could not be decrypted") from exc
