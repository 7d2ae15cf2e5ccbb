"""bcrypt helpers for library card login secrets."""

from typing import Optional

import bcrypt

from config import settings


def hash_secret(secret: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")


def verify_secret(secret: str, hashed: str) -> bool:
    """Return True if ``secret`` matches ``hashed``. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False
