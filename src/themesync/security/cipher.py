"""AES-256-GCM encryption for the stored access token.

The key is derived from the process-wide ``encryption_secret`` with
SHA-256. Ciphertexts are ``base64(nonce || ciphertext || tag)``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from themesync.logging import get_logger

log = get_logger("themesync.security.cipher")

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
MASK_CHAR = "*"
MASK_MAX = 20


class TokenCipher:
    """Encrypts and decrypts short secrets such as access tokens."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("encryption secret must not be empty")
        self._aesgcm = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def encrypt(self, value: str) -> str:
        """Encrypt *value*; the empty string stays empty."""
        if not value:
            return ""
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aesgcm.encrypt(nonce, value.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, value: str) -> str:
        """Decrypt *value*; returns ``""`` for empty or undecryptable input."""
        if not value:
            return ""
        try:
            data = base64.b64decode(value.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError):
            log.warning("token_decrypt_bad_encoding")
            return ""
        if len(data) < NONCE_SIZE + TAG_SIZE + 1:
            log.warning("token_decrypt_too_short", length=len(data))
            return ""
        try:
            plaintext = self._aesgcm.decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
        except InvalidTag:
            log.warning("token_decrypt_failed")
            return ""
        return plaintext.decode("utf-8")


def mask_token(token: str) -> str:
    """Mask a token for display, keeping only the last four characters."""
    if not token:
        return ""
    return MASK_CHAR * min(len(token), MASK_MAX) + token[-4:]


def is_masked(value: str) -> bool:
    """True when *value* looks like a masked token echoed back from the UI."""
    return value.startswith(MASK_CHAR * 5)


def token_kind(token: str) -> str:
    """Classify a GitHub token by prefix."""
    if not token:
        return "none"
    if token.startswith("github_pat_"):
        return "fine-grained"
    if token.startswith("ghp_"):
        return "classic"
    return "unknown-format"
