from __future__ import annotations

import pytest

from drcadmin.services.auth.passwords import (
    MAX_PASSWORD_BYTES,
    PasswordTooLongError,
    hash_password,
    validate_password_strength,
    verify_password,
)


def test_eight_character_password_meeting_every_rule_is_accepted() -> None:
    assert validate_password_strength("Abcdef1!") is None


def test_seven_character_password_is_rejected_for_length() -> None:
    assert validate_password_strength("Abcde1!") == "Password must be at least 8 characters long"


@pytest.mark.parametrize(
    ("password", "message"),
    [
        ("abcdef1!", "Password must contain at least one uppercase letter"),
        ("ABCDEF1!", "Password must contain at least one lowercase letter"),
        ("Abcdefg!", "Password must contain at least one number"),
        ("Abcdefg1", "Password must contain at least one special character"),
    ],
)
def test_first_violated_rule_is_reported(password: str, message: str) -> None:
    assert validate_password_strength(password) == message


def test_rules_are_checked_in_order() -> None:
    # Too short and missing everything else: length wins.
    assert validate_password_strength("abc") == "Password must be at least 8 characters long"


def test_password_over_bcrypt_limit_is_rejected() -> None:
    password = "Aa1!" + "a" * (MAX_PASSWORD_BYTES - 3)
    assert validate_password_strength(password) == f"Password must not exceed {MAX_PASSWORD_BYTES} bytes"


@pytest.mark.asyncio
async def test_hash_and_verify_round_trip() -> None:
    hashed = await hash_password("Abcdef1!", rounds=4)
    assert hashed != "Abcdef1!"
    assert hashed.startswith("$2")
    assert await verify_password("Abcdef1!", hashed) is True
    assert await verify_password("Abcdef1?", hashed) is False


@pytest.mark.asyncio
async def test_hash_refuses_overlong_input() -> None:
    with pytest.raises(PasswordTooLongError):
        await hash_password("A" * (MAX_PASSWORD_BYTES + 1), rounds=4)


@pytest.mark.asyncio
async def test_verify_never_authenticates_overlong_or_malformed_inputs() -> None:
    hashed = await hash_password("Abcdef1!", rounds=4)
    assert await verify_password("Abcdef1!" + "x" * MAX_PASSWORD_BYTES, hashed) is False
    assert await verify_password("Abcdef1!", "not-a-bcrypt-digest") is False
