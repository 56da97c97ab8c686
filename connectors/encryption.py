"""
Source token encryption at rest.

Access / refresh tokens are encrypted with Fernet (AES-128-CBC +
HMAC-SHA256) before the Source JSON goes to the store.  The key comes from
``config.token_encryption_key`` (env var: ``TOKEN_ENCRYPTION_KEY``).

Without a key, tokens are stored as plaintext and a warning is logged once.
Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _get_fernet() -> Optional[Fernet]:
    """Lazily build the cipher; ``None`` means encryption is disabled."""
    global _fernet, _initialised

    if _initialised:
        return _fernet
    _initialised = True

    key = config.token_encryption_key
    if not key:
        logger.warning("TOKEN_ENCRYPTION_KEY not set, source tokens will be stored as plaintext")
        return None

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
        logger.info("Source token encryption enabled")
    except (ValueError, TypeError) as exc:
        logger.error("Invalid TOKEN_ENCRYPTION_KEY, storing tokens as plaintext: %s", exc)
        _fernet = None
    return _fernet


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    if not plaintext:
        return plaintext
    fernet = _get_fernet()
    if fernet is None:
        return plaintext
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored token.

    Values written before encryption was enabled are not valid Fernet
    tokens and are returned unchanged.
    """
    if not ciphertext:
        return ciphertext
    fernet = _get_fernet()
    if fernet is None:
        return ciphertext
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def is_encryption_enabled() -> bool:
    return _get_fernet() is not None


def reset() -> None:
    """Forget the cached cipher so the next call re-reads the config (tests)."""
    global _fernet, _initialised
    _fernet = None
    _initialised = False
