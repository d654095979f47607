from __future__ import annotations

import asyncio
import re
import secrets

import bcrypt

from drcadmin.core.config import get_settings


# bcrypt only consumes the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72
MIN_PASSWORD_LENGTH = 8
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'
COMMON_PASSWORDS = frozenset({"password", "123456", "qwerty", "admin", "welcome"})

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"[0-9]")
_SPECIAL_RE = re.compile("[" + re.escape(SPECIAL_CHARACTERS) + "]")


class PasswordTooLongError(ValueError):
    """Password exceeds the bcrypt input limit."""


def _encode(plaintext: str) -> bytes:
    encoded = plaintext.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise PasswordTooLongError(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes")
    return encoded


def validate_password_strength(password: str) -> str | None:
    """Return the first violated rule's message, or ``None`` when the password is acceptable."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return "Password must be at least 8 characters long"
    if not _UPPER_RE.search(password):
        return "Password must contain at least one uppercase letter"
    if not _LOWER_RE.search(password):
        return "Password must contain at least one lowercase letter"
    if not _DIGIT_RE.search(password):
        return "Password must contain at least one number"
    if not _SPECIAL_RE.search(password):
        return "Password must contain at least one special character"
    if password.lower() in COMMON_PASSWORDS:
        return "Password is too common"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"Password must not exceed {MAX_PASSWORD_BYTES} bytes"
    return None


def _hash_sync(plaintext: str, rounds: int) -> str:
    return bcrypt.hashpw(_encode(plaintext), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _verify_sync(plaintext: str, hashed: str) -> bool:
    try:
        encoded = _encode(plaintext)
    except PasswordTooLongError:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored digest never authenticates.
        return False


async def hash_password(plaintext: str, *, rounds: int | None = None) -> str:
    # bcrypt is CPU-bound; keep it off the event loop.
    resolved_rounds = rounds if rounds is not None else get_settings().bcrypt_rounds
    return await asyncio.to_thread(_hash_sync, plaintext, resolved_rounds)


async def verify_password(plaintext: str, hashed: str) -> bool:
    # bcrypt.checkpw compares digests in constant time.
    return await asyncio.to_thread(_verify_sync, plaintext, hashed)


# One throwaway digest per cost factor, built on first use.
_DUMMY_HASHES: dict[int, str] = {}


async def dummy_password_hash(*, rounds: int | None = None) -> str:
    """Digest of a random secret at the configured cost.

    Comparing against it costs the same as a real ``verify_password`` call, so a missing
    account takes as long to reject as a wrong password.
    """
    resolved_rounds = rounds if rounds is not None else get_settings().bcrypt_rounds
    cached = _DUMMY_HASHES.get(resolved_rounds)
    if cached is None:
        cached = await hash_password(secrets.token_hex(16), rounds=resolved_rounds)
        _DUMMY_HASHES[resolved_rounds] = cached
    return cached
