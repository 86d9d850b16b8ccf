"""Password hashing and generation."""
from __future__ import annotations
import secrets
import string

import bcrypt

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def generate_temp_password(length: int = 16) -> str:
    """
    Generate a secure temporary password.

    Args:
        length: Password length (default: 16)

    Returns:
        Random password containing uppercase, lowercase, digits, and special chars
    """
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
    return "".join(secrets.choice(alphabet) for _ in range(length))
