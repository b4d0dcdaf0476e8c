"""Tests for password hashing, tokens and registration checks."""
from datetime import timedelta

import pytest
from jose import jwt

from errors import ValidationError
from security import (create_access_token, decode_access_token, hash_password,
                      validate_registration, verify_password)


def test_password_roundtrip(settings):
    hashed = hash_password("secret123")
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("secret123", None)


def test_token_carries_user_id(settings):
    token = create_access_token(42, settings)
    assert decode_access_token(token, settings) == 42


def test_default_token_lifetime_is_seven_days(settings):
    token = create_access_token(1, settings)
    claims = jwt.get_unverified_claims(token)
    assert claims["exp"] - claims["iat"] == 7 * 24 * 60 * 60


def test_expired_token_is_invalid(settings):
    token = create_access_token(1, settings, expires_delta=timedelta(seconds=-10))
    assert decode_access_token(token, settings) is None


def test_token_signed_with_another_key_is_invalid(settings):
    token = jwt.encode({"sub": "1"}, "another-secret", algorithm="HS256")
    assert decode_access_token(token, settings) is None


def test_garbage_token_is_invalid(settings):
    assert decode_access_token("not-a-token", settings) is None


class TestValidateRegistration:
    def test_valid(self):
        validate_registration("jane@example.com", "secret1", "Jane")

    @pytest.mark.parametrize("email,password,name,message", [
        ("", "secret1", "Jane", "Email, password, and name are required"),
        ("jane@example.com", "", "Jane", "Email, password, and name are required"),
        ("jane@example.com", "secret1", "  ", "Email, password, and name are required"),
        ("jane@example.com", "12345", "Jane", "Password must be at least 6 characters long"),
        ("jane.example.com", "secret1", "Jane", "Invalid email format"),
        ("jane@localhost", "secret1", "Jane", "Invalid email format"),
    ])
    def test_invalid(self, email, password, name, message):
        with pytest.raises(ValidationError) as excinfo:
            validate_registration(email, password, name)
        assert excinfo.value.error == message
