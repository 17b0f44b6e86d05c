"""Encrypted cookie sessions.

The identity of a logged-in user and their CSRF token travel to the browser
only as AES-GCM ciphertext. The key is generated when the process starts and
never leaves memory, so restarting the server logs everybody out. There is no
server-side session table: changing a password does not revoke cookies that
were already issued.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets
import string
import threading
from typing import Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


logger = logging.getLogger(__name__)

USER_COOKIE = "user"
CSRF_COOKIE = "csrf"

CSRF_TOKEN_LENGTH = 128
CSRF_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits

NONCE_SIZE = 12
TAG_SIZE = 16


def _b64encode(data: bytes) -> str:
    # URL-safe and unpadded so the value never needs quoting in a cookie.
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def generate_csrf_token() -> str:
    return "".join(secrets.choice(CSRF_ALPHABET) for _ in range(CSRF_TOKEN_LENGTH))


class SessionCipher:
    """Symmetric authenticated encryption of short strings.

    ``decrypt`` never raises: anything that fails to authenticate or parse is
    reported as ``None``. Encryption and decryption each hold their own AEAD
    instance behind their own lock; :meth:`reset` rebuilds the decrypting one
    without disturbing concurrent encryptions.
    """

    def __init__(self, key: Optional[bytes] = None):
        self._key = key if key is not None else AESGCM.generate_key(bit_length=256)
        self._encrypt_lock = threading.Lock()
        self._decrypt_lock = threading.Lock()
        self._encryptor = AESGCM(self._key)
        self._decryptor = AESGCM(self._key)

    def reset(self) -> None:
        with self._decrypt_lock:
            self._decryptor = AESGCM(self._key)

    def encrypt(self, plaintext: str, context: str = "") -> str:
        nonce = os.urandom(NONCE_SIZE)
        with self._encrypt_lock:
            sealed = self._encryptor.encrypt(
                nonce, plaintext.encode("utf-8"), context.encode("utf-8")
            )
        return _b64encode(nonce + sealed)

    def decrypt(self, token: str, context: str = "") -> Optional[str]:
        try:
            raw = _b64decode(token)
        except ValueError:
            logger.info("Cookie value is not valid base64")
            return None
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            logger.warning("Cookie value is too short to be a ciphertext")
            return None
        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            with self._decrypt_lock:
                plain = self._decryptor.decrypt(nonce, sealed, context.encode("utf-8"))
        except InvalidTag:
            logger.warning("Data does not decrypt. Is somebody tampering with the cookie?")
            self.reset()
            return None
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Decrypted cookie is not valid UTF-8")
            return None


class CookieSessions:
    """Issue and resolve the ``user``/``csrf`` cookie pair."""

    def __init__(self, cipher: SessionCipher):
        self.cipher = cipher

    def issue(self, identity: str) -> dict[str, str]:
        return {
            USER_COOKIE: self.cipher.encrypt(identity, USER_COOKIE),
            CSRF_COOKIE: self.cipher.encrypt(generate_csrf_token(), CSRF_COOKIE),
        }

    def _open(self, cookies: Mapping[str, str], name: str) -> Optional[str]:
        value = cookies.get(name)
        if not value:
            return None
        return self.cipher.decrypt(value, name)

    def resolve(self, cookies: Mapping[str, str]) -> Optional[str]:
        """Return the identity carried by ``cookies`` or ``None``."""
        return self._open(cookies, USER_COOKIE)

    def csrf_token(self, cookies: Mapping[str, str]) -> Optional[str]:
        return self._open(cookies, CSRF_COOKIE)
