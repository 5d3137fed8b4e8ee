"""Password hashing and strength rules. Uses bcrypt directly (passlib has incompatibilities with bcrypt 4.1+)."""
import re
from typing import List

import bcrypt

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def _to_bytes(password: str) -> bytes:
    """Convert password to bytes, truncate to 72 bytes (bcrypt limit)."""
    if not isinstance(password, str):
        password = str(password)
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return bcrypt.hashpw(_to_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify plain password against bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_to_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def validate_password_strength(password: str) -> tuple[bool, List[str]]:
    """
    Validate password strength.

    Returns:
        (is_valid, list_of_errors)
    """
    errors = []
    password = password or ""

    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must be at most {MAX_PASSWORD_LENGTH} characters long")

    if not re.search(r'[a-z]', password):
        errors.append("Password must contain a lowercase letter")

    if not re.search(r'[A-Z]', password):
        errors.append("Password must contain an uppercase letter")

    if not re.search(r'\d', password):
        errors.append("Password must contain a digit")

    return (len(errors) == 0, errors)
