# shop/encryption.py: credentials at rest (AES-256-GCM) + bulk "email:password" parser
from __future__ import annotations

import base64
import json
import logging
import os
import re
from typing import Dict, List, TypedDict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class Credentials(TypedDict):
    email: str
    password: str


class EncryptionError(Exception):
    pass


class CredentialsFormatError(ValueError):
    """Raised with every offending line of a bulk upload."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Validation errors:\n" + "\n".join(errors))


def _key() -> bytes:
    raw = getattr(settings, "ENCRYPTION_KEY", "") or ""
    if not raw:
        raise ImproperlyConfigured("ENCRYPTION_KEY environment variable is required")
    try:
        key = bytes.fromhex(raw)
    except ValueError:
        raise ImproperlyConfigured("ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
    if len(key) != 32:
        raise ImproperlyConfigured("ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
    return key


def encrypt_credentials(data: Credentials) -> str:
    """
    Returns base64(iv || auth_tag || ciphertext).
    AESGCM appends the tag to the ciphertext; it is moved in front to keep the stored layout.
    """
    key = _key()
    try:
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, json.dumps(data).encode("utf-8"), None)
    except Exception as e:
        logger.error("Encryption error: %s", e)
        raise EncryptionError("Failed to encrypt credentials") from e
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt_credentials(encrypted: str) -> Credentials:
    key = _key()
    try:
        combined = base64.b64decode(encrypted, validate=True)
        if len(combined) <= IV_LENGTH + TAG_LENGTH:
            raise ValueError("ciphertext too short")
        iv = combined[:IV_LENGTH]
        tag = combined[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
        ciphertext = combined[IV_LENGTH + TAG_LENGTH:]
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        data = json.loads(plain.decode("utf-8"))
    except (ValueError, InvalidTag, UnicodeDecodeError) as e:
        logger.error("Decryption error: %s", e.__class__.__name__)
        raise EncryptionError("Failed to decrypt credentials") from e
    return {"email": data["email"], "password": data["password"]}


def validate_credentials_format(text: str) -> List[Credentials]:
    """
    Parses one `email:password` per line. Blank lines are skipped; every bad
    line is reported, not just the first.
    """
    credentials: List[Credentials] = []
    errors: List[str] = []

    for i, line in enumerate((text or "").strip().split("\n"), start=1):
        line = line.strip()
        if not line:
            continue

        parts = line.split(":")
        if len(parts) != 2:
            errors.append(f'Line {i}: Invalid format. Expected "email:password"')
            continue

        email, password = (p.strip() for p in parts)
        if not EMAIL_RE.match(email):
            errors.append(f"Line {i}: Invalid email format")
            continue
        if len(password) < 1:
            errors.append(f"Line {i}: Password cannot be empty")
            continue

        credentials.append({"email": email, "password": password})

    if errors:
        raise CredentialsFormatError(errors)
    return credentials


def credentials_key(data: Dict[str, str]) -> str:
    return f"{data['email']}:{data['password']}"
