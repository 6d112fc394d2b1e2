"""Tests for typed tokens and password rules."""
from datetime import timedelta

import pytest
from jose import jwt

from core.errors import ValidationError
from core.security import (
    InvalidTokenError, TokenKind, create_invite_token, create_reset_token, create_session_token,
    hash_password, issue_token, validate_password_strength, verify_password, verify_token,
)
from models.models import User


def _user():
    return User(id=7, email="someone@example.com", role="user")


def test_session_token_round_trip():
    """A session token carries the user id, email, role and its kind."""
    claims = verify_token(create_session_token(_user()), TokenKind.SESSION)
    assert claims["sub"] == "7"
    assert claims["email"] == "someone@example.com"
    assert claims["role"] == "user"
    assert claims["type"] == "session"
    assert claims["exp"] > claims["iat"]


@pytest.mark.parametrize("issue, wrong_kind", [
    (create_reset_token, TokenKind.SESSION),
    (create_invite_token, TokenKind.SESSION),
    (create_session_token, TokenKind.RESET),
    (create_session_token, TokenKind.INVITE),
])
def test_token_of_one_kind_is_rejected_as_another(issue, wrong_kind):
    with pytest.raises(InvalidTokenError):
        verify_token(issue(_user()), wrong_kind)


def test_expired_token_is_rejected():
    token = issue_token(TokenKind.SESSION, {"sub": "7"}, ttl=timedelta(seconds=-5))
    with pytest.raises(InvalidTokenError):
        verify_token(token, TokenKind.SESSION)


def test_token_signed_with_another_key_is_rejected():
    claims = verify_token(create_session_token(_user()), TokenKind.SESSION)
    claims["role"] = "admin"
    forged = jwt.encode(claims, "some-other-secret", algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        verify_token(forged, TokenKind.SESSION)


@pytest.mark.parametrize("issue, kind", [
    (create_session_token, TokenKind.SESSION),
    (create_reset_token, TokenKind.RESET),
    (create_invite_token, TokenKind.INVITE),
])
def test_every_single_bit_flip_is_rejected(issue, kind):
    token = issue(_user())
    verify_token(token, kind)

    accepted = []
    for position, char in enumerate(token):
        for bit in range(8):
            flipped = token[:position] + chr(ord(char) ^ (1 << bit)) + token[position + 1:]
            try:
                verify_token(flipped, kind)
            except InvalidTokenError:
                continue
            accepted.append((position, bit))
    assert accepted == []


def test_non_canonical_signature_padding_is_rejected():
    token = create_session_token(_user())
    head, signature = token.rsplit(".", 1)
    # an HS256 signature is 43 characters; the last one carries two unused bits
    alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
    last = alphabet.index(signature[-1])
    twin = signature[:-1] + alphabet[last ^ 1]
    with pytest.raises(InvalidTokenError):
        verify_token(f"{head}.{twin}", TokenKind.SESSION)


def test_garbage_token_is_rejected():
    with pytest.raises(InvalidTokenError):
        verify_token("not-a-jwt", TokenKind.SESSION)


@pytest.mark.parametrize("password", [
    "Sh0rt!",          # too short
    "alllower1!",      # no uppercase
    "ALLUPPER1!",      # no lowercase
    "NoDigits!!",      # no digit
    "NoSpecial11",     # no special character
])
def test_weak_passwords_are_rejected(password):
    with pytest.raises(ValidationError):
        validate_password_strength(password)


def test_strong_password_passes():
    validate_password_strength("Str0ng!Pass")


def test_password_hash_verification():
    hashed = hash_password("Str0ng!Pass")
    assert hashed != "Str0ng!Pass"
    assert verify_password("Str0ng!Pass", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("Str0ng!Pass", None)
