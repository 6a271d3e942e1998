"""
密码哈希

使用 passlib 的 bcrypt，成本因子由 BCRYPT_ROUNDS 配置（默认 12，测试可调低）。
"""

from functools import lru_cache

from passlib.context import CryptContext

from app.config import get_settings


@lru_cache(maxsize=4)
def _context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def pwd_context() -> CryptContext:
    return _context(get_settings().bcrypt_rounds)


def hash_password(raw_password: str) -> str:
    return pwd_context().hash(raw_password)


def verify_password(raw_password: str, hashed_password: str | None) -> bool:
    """比对密码（常量时间）；哈希为空或格式无法识别时返回 False"""
    if not raw_password or not hashed_password:
        return False
    try:
        return pwd_context().verify(raw_password, hashed_password)
    except ValueError:
        return False


def is_hashed(value: str) -> bool:
    return pwd_context().identify(value) is not None
