from __future__ import annotations

import hashlib
import hmac
import secrets
from uuid import uuid4


DEFAULT_TOKEN_BYTES = 32
API_KEY_PREFIX = "drc_"
_DISPLAY_PREFIX_LEN = 12


def generate_secure_token(byte_length: int = DEFAULT_TOKEN_BYTES) -> str:
    # Hex-encode CSPRNG output; never derive tokens from the random module.
    if byte_length < 16:
        raise ValueError("Security tokens require at least 16 random bytes")
    return secrets.token_hex(byte_length)


def hash_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def tokens_match(presented_hash: str, stored_hash: str) -> bool:
    return hmac.compare_digest(presented_hash.encode("utf-8"), stored_hash.encode("utf-8"))


def generate_session_credentials() -> tuple[str, str, str, str]:
    """Return ``(session_id, raw_token, token_prefix, token_hash)`` for a new session."""
    session_id = uuid4().hex
    raw_token = generate_secure_token()
    return session_id, raw_token, raw_token[:_DISPLAY_PREFIX_LEN], hash_token(raw_token)


def generate_reset_token() -> tuple[str, str]:
    raw_token = generate_secure_token()
    return raw_token, hash_token(raw_token)


def generate_api_key() -> tuple[str, str, str]:
    """Return ``(raw_key, prefix, key_hash)``.

    The prefix is the non-secret head of the key shown in listings.
    """
    raw_key = f"{API_KEY_PREFIX}{generate_secure_token()}"
    return raw_key, raw_key[:_DISPLAY_PREFIX_LEN], hash_token(raw_key)
