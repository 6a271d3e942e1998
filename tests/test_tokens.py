"""
JWT 令牌与密码工具测试
"""

import pytest
from jose import jwt

from app.auth.passwords import hash_password, is_hashed, verify_password
from app.auth.tokens import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
)
from app.config import get_settings
from app.exceptions import UnauthorizedError
from app.utils.durations import to_unix, utcnow

CLAIMS = {"id": "user-1", "sub": "user-1", "email": "ann@example.com", "role": "USER"}


class TestTokens:
    """测试令牌签发与校验"""

    def test_access_token_round_trip(self):
        payload = decode_access_token(create_access_token(CLAIMS))
        for key, value in CLAIMS.items():
            assert payload[key] == value
        assert payload["exp"] > payload["iat"]

    def test_expiry_follows_settings(self):
        payload = decode_access_token(create_access_token(CLAIMS))
        # 默认 15 分钟
        assert 14 * 60 <= payload["exp"] - to_unix(utcnow()) <= 15 * 60

    def test_tokens_use_separate_secrets(self):
        access = create_access_token(CLAIMS)
        refresh = create_refresh_token(CLAIMS)
        with pytest.raises(UnauthorizedError):
            decode_refresh_token(access)
        with pytest.raises(UnauthorizedError):
            decode_access_token(refresh)
        assert decode_refresh_token(refresh)["id"] == "user-1"

    def test_missing_token(self):
        with pytest.raises(UnauthorizedError) as exc_info:
            decode_access_token(None)
        assert exc_info.value.message == "No token provided"

    def test_expired_token(self):
        settings = get_settings()
        expired = jwt.encode(
            {**CLAIMS, "iat": to_unix(utcnow()) - 120, "exp": to_unix(utcnow()) - 60},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(UnauthorizedError) as exc_info:
            decode_access_token(expired)
        assert exc_info.value.message == "Invalid or expired token"

    def test_tampered_token(self):
        token = create_access_token(CLAIMS)
        with pytest.raises(UnauthorizedError):
            decode_access_token(token[:-2] + ("aa" if not token.endswith("aa") else "bb"))

    def test_token_without_id(self):
        settings = get_settings()
        token = jwt.encode({"email": "x@example.com", "exp": to_unix(utcnow()) + 60}, settings.jwt_secret)
        with pytest.raises(UnauthorizedError):
            decode_access_token(token)


class TestPasswordHashing:
    """测试密码哈希"""

    def test_hash_and_verify(self):
        hashed = hash_password("Password123!")
        assert hashed != "Password123!"
        assert is_hashed(hashed)
        assert verify_password("Password123!", hashed) is True
        assert verify_password("password123!", hashed) is False

    def test_verify_rejects_empty_or_unknown(self):
        assert verify_password("", hash_password("x")) is False
        assert verify_password("x", None) is False
        assert verify_password("x", "not-a-hash") is False
        assert is_hashed("plain text") is False
