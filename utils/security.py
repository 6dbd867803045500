"""
security helpers:
- Argon2 password hashing via argon2-cffi
- JTI generation for token identifiers
- Opaque single-use tokens (email verification, password reset)
"""
from __future__ import annotations

import secrets
import uuid
from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerifyMismatchError

ph = PasswordHasher()


def hash_password(password: str) -> str:
    """Hash a plaintext password using Argon2
    """
    return ph.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """ Verify a plaintext password using argon2
    """
    if not password_hash:
        return False
    try:
        return ph.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHash):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return ph.hash(secrets.token_urlsafe(16))


def burn_password_check(password: str) -> None:
    """Spend one hash verification so unknown accounts answer as slowly as known ones."""
    verify_password(password, _dummy_hash())


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID).
    """
    return str(uuid.uuid4())


def generate_opaque_token() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)
