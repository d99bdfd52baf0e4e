"""Shared-secret generation and verification."""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string

SIGNATURE_PREFIX = "sha256="
_ALPHABET = string.ascii_letters + string.digits


def generate_secret(length: int = 32) -> str:
    """Generate an alphanumeric secret suitable for a webhook configuration."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def validate_secret(provided: str | None, expected: str) -> bool:
    """Constant-time comparison; an empty expected secret never validates."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def compute_signature(body: bytes, secret: str) -> str:
    """Return ``sha256=<hex>`` HMAC of *body* keyed with *secret*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check a ``X-Hub-Signature-256`` header value against *body*.

    Fails closed when either the header or the stored secret is empty.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
