# shop/passwords.py: bcrypt password rules on top of Django's hasher stack
import logging

from django.contrib.auth.hashers import check_password, identify_hasher, make_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72  # bcrypt limit


class PasswordError(ValueError):
    pass


def validate_password_rules(password) -> None:
    if not password or not isinstance(password, str):
        raise PasswordError("Password is required and must be a string")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise PasswordError(f"Password must be less than {MAX_PASSWORD_LENGTH} characters long")
    if not password.strip():
        raise PasswordError("Password cannot be whitespace only")


def hash_password(password: str) -> str:
    validate_password_rules(password)
    return make_password(password)


def verify_password(password: str, hashed: str) -> bool:
    """False for unknown/malformed hashes instead of raising."""
    if not password or not isinstance(password, str):
        raise PasswordError("Password is required and must be a string")
    if not hashed or not isinstance(hashed, str):
        raise PasswordError("Hashed password is required and must be a string")
    try:
        identify_hasher(hashed)
    except ValueError:
        return False
    return check_password(password, hashed)
