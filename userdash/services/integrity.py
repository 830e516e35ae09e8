"""Email digest + signature for user records.

Two separate algorithms, on purpose:

  hash_email   SHA-384 over the normalized email → 96 hex chars.
               A privacy-preserving identity digest.
  sign         RSA PKCS#1 v1.5 with SHA-256 over the UTF-8 bytes of
               that hex string (not the raw digest bytes) → base64.

Browsers verify with Web Crypto's RSASSA-PKCS1-v1_5 / SHA-256 over
TextEncoder().encode(emailHash), so the signed bytes must stay the hex
text.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from userdash.core.errors import InvalidInputError
from userdash.core.metrics import SIGNATURES_ISSUED
from userdash.services.key_manager import KeyManager

EMAIL_HASH_LENGTH = 96  # SHA-384 hex


def normalize(email: str) -> str:
    """Lowercase + strip.  Applied to the hash input only."""
    return email.strip().lower()


def hash_email(email: str) -> str:
    """SHA-384 hex digest of the normalized email.

    Raises InvalidInputError if `email` is not a string or is blank.
    """
    if not isinstance(email, str):
        raise InvalidInputError("Email must be a non-empty string")
    normalized = normalize(email)
    if not normalized:
        raise InvalidInputError("Email must be a non-empty string")
    try:
        data = normalized.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidInputError("Email must be valid UTF-8 text") from None
    return hashlib.sha384(data).hexdigest()


def load_public_key(pem: str | bytes) -> rsa.RSAPublicKey:
    """Parse a PEM SubjectPublicKeyInfo into an RSA public key."""
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidInputError(f"Not a PEM public key: {e}") from None
    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidInputError("Public key is not an RSA key")
    return key


def verify_signature(
    email_hash: str,
    signature_b64: str,
    public_key: rsa.RSAPublicKey | str | bytes,
) -> bool:
    """True iff `signature_b64` is a valid signature over `email_hash`.

    Never raises: malformed hashes, signatures or keys all yield False,
    so callers can use this as a plain filter predicate.
    """
    if not isinstance(email_hash, str) or not email_hash:
        return False
    if not isinstance(signature_b64, str) or not signature_b64:
        return False
    try:
        if not isinstance(public_key, rsa.RSAPublicKey):
            public_key = load_public_key(public_key)
        signature = base64.b64decode(signature_b64, validate=True)
        public_key.verify(
            signature,
            email_hash.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (InvalidSignature, InvalidInputError, binascii.Error, ValueError, TypeError):
        return False
    return True


class IntegritySigner:
    """Signs email hashes with the key manager's private key."""

    def __init__(self, key_manager: KeyManager) -> None:
        self._keys = key_manager

    def sign(self, email_hash: str) -> str:
        if not isinstance(email_hash, str) or not email_hash:
            raise InvalidInputError("Hash must be a non-empty string")

        try:
            data = email_hash.encode("utf-8")
        except UnicodeEncodeError:
            raise InvalidInputError("Hash must be valid UTF-8 text") from None

        # Raises UninitializedKeyError when ensure_keys() has not run
        private_key = self._keys.private_key
        signature = private_key.sign(
            data,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        SIGNATURES_ISSUED.inc()
        return base64.b64encode(signature).decode("ascii")

    def seal(self, email: str) -> tuple[str, str]:
        """normalize → hash → sign.  Returns (email_hash, signature)."""
        email_hash = hash_email(email)
        return email_hash, self.sign(email_hash)

    def verify(self, email_hash: str, signature_b64: str) -> bool:
        """Check a signature against this process's own public key."""
        return verify_signature(email_hash, signature_b64, self._keys.public_key)
