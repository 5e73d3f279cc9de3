"""Passcode hashing and access code generation.

Private tournaments store only a bcrypt hash of their passcode; public
tournaments carry a short random access code.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import string

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

# Passcode hashing context
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=12,
)

ACCESS_CODE_ALPHABET = string.ascii_uppercase + string.digits


def hash_passcode(passcode: str) -> str:
    """Hash a passcode using bcrypt.

    bcrypt has a 72-byte limit, so the passcode is first hashed with
    SHA-256 to handle long inputs safely.
    """
    digest = hashlib.sha256(passcode.encode()).hexdigest()
    return pwd_context.hash(digest)


def verify_passcode(plain_passcode: str, passcode_hash: str) -> bool:
    """Verify a passcode against its hash.

    Returns False for a malformed stored hash instead of raising.
    """
    digest = hashlib.sha256(plain_passcode.encode()).hexdigest()
    try:
        return pwd_context.verify(digest, passcode_hash)
    except ValueError:
        logger.warning("Malformed passcode hash encountered")
        return False


def generate_access_code(length: int = 6) -> str:
    """Random uppercase alphanumeric code."""
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(length))
