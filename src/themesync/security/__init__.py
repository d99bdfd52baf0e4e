"""Security helpers for themesync.

Provides at-rest encryption for the code-host access token and the
secret handling used by webhook and admin authentication.
"""

from themesync.security.cipher import TokenCipher, mask_token, token_kind
from themesync.security.signing import (
    compute_signature,
    generate_secret,
    validate_secret,
    verify_signature,
)

__all__ = [
    "TokenCipher",
    "compute_signature",
    "generate_secret",
    "mask_token",
    "token_kind",
    "validate_secret",
    "verify_signature",
]
