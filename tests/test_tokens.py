"""
Token service and credential helpers.
"""
from datetime import timedelta

import jwt
import pytest

from config import settings
from errors import InvalidToken
from roles import Role
from utils import (
    _encode,
    create_token_pair,
    decode_access_token,
    decode_refresh_token,
    get_password_hash,
    slug_base,
    slug_candidate,
    verify_password,
)


class TestTokenPair:

    def test_pair_round_trips_identity(self):
        tokens = create_token_pair(7, "jane@example.com", Role.AFFILIATE)
        assert tokens["token_type"] == "bearer"

        access = decode_access_token(tokens["access_token"])
        refresh = decode_refresh_token(tokens["refresh_token"])
        for payload in (access, refresh):
            assert payload["sub"] == "7"
            assert payload["email"] == "jane@example.com"
            assert payload["role"] == "AFFILIATE"
        assert access["type"] == "access"
        assert refresh["type"] == "refresh"

    def test_tokens_use_separate_secrets(self):
        tokens = create_token_pair(1, "a@example.com", Role.SYSTEM_ADMIN)
        with pytest.raises(jwt.InvalidSignatureError):
            jwt.decode(tokens["refresh_token"], settings.jwt_secret, algorithms=[settings.jwt_algorithm])

    def test_refresh_token_is_not_an_access_token(self):
        tokens = create_token_pair(1, "a@example.com", Role.AFFILIATE)
        with pytest.raises(InvalidToken):
            decode_access_token(tokens["refresh_token"])
        with pytest.raises(InvalidToken):
            decode_refresh_token(tokens["access_token"])

    def test_expired_token_is_rejected(self):
        token = _encode({"sub": "1", "type": "access"}, settings.jwt_secret, timedelta(seconds=-5))
        with pytest.raises(InvalidToken):
            decode_access_token(token)

    def test_garbage_is_rejected(self):
        with pytest.raises(InvalidToken) as exc:
            decode_access_token("not-a-jwt")
        assert exc.value.status_code == 401
        assert exc.value.kind == "InvalidToken"

    def test_token_without_subject_is_rejected(self):
        token = _encode({"type": "access"}, settings.jwt_secret, timedelta(minutes=5))
        with pytest.raises(InvalidToken):
            decode_access_token(token)


class TestPasswords:

    def test_hash_verifies(self):
        hashed = get_password_hash("Secret123")
        assert hashed != "Secret123"
        assert verify_password("Secret123", hashed)
        assert not verify_password("Secret124", hashed)


class TestSlugs:

    @pytest.mark.parametrize(
        "first,last,expected",
        [
            ("Jane", "Doe", "janedoe"),
            ("José", "O'Neil-Smith", "josoneilsmith"),
            ("  ", "!!", "affiliate"),
            (None, None, "affiliate"),
        ],
    )
    def test_slug_base(self, first, last, expected):
        assert slug_base(first, last) == expected

    def test_candidates_append_counter(self):
        assert slug_candidate("janedoe", 0) == "janedoe"
        assert slug_candidate("janedoe", 1) == "janedoe1"
        assert slug_candidate("janedoe", 12) == "janedoe12"
