"""RSA keypair lifecycle for record signing.

One keypair per process.  On first boot it is generated and written to
KEYS_DIR; on every later boot it is loaded from there.  A complete pair
on disk is never replaced.  Losing the key directory makes every
previously issued signature unverifiable, and there is no key id on the
records to tell old and new signatures apart.

Layout under KEYS_DIR:

  private.pem   PKCS#8, unencrypted, mode 0600.  Never served.
  public.pem    SubjectPublicKeyInfo.  Served by GET /crypto/public-key.

The manager is constructed by the composition root (the FastAPI
lifespan in userdash.main) and handed to the IntegritySigner.  Tests
build one from a fixed key with KeyManager.from_private_key().
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from userdash.core.errors import KeyInitializationError, UninitializedKeyError
from userdash.core.metrics import KEYPAIR_INITIALIZATIONS

logger = logging.getLogger(__name__)

PRIVATE_KEY_FILE = "private.pem"
PUBLIC_KEY_FILE = "public.pem"
DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


def _private_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _public_pem(key: rsa.RSAPublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


class KeyManager:
    def __init__(
        self, keys_dir: str | Path | None, *, key_size: int = DEFAULT_KEY_SIZE
    ) -> None:
        self._keys_dir = Path(keys_dir) if keys_dir is not None else None
        self._key_size = key_size
        self._private_key: rsa.RSAPrivateKey | None = None
        self._public_key: rsa.RSAPublicKey | None = None
        self._public_pem: str | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_private_key(cls, private_key: rsa.RSAPrivateKey) -> KeyManager:
        """Build an already-initialized manager with no backing directory."""
        manager = cls(None, key_size=private_key.key_size)
        manager._install(private_key, private_key.public_key())
        return manager

    @property
    def keys_dir(self) -> Path | None:
        return self._keys_dir

    @property
    def private_key_path(self) -> Path | None:
        return self._keys_dir / PRIVATE_KEY_FILE if self._keys_dir else None

    @property
    def public_key_path(self) -> Path | None:
        return self._keys_dir / PUBLIC_KEY_FILE if self._keys_dir else None

    @property
    def is_ready(self) -> bool:
        return self._private_key is not None

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        if self._private_key is None:
            raise UninitializedKeyError("Private key not initialized")
        return self._private_key

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        if self._public_key is None:
            raise UninitializedKeyError("Public key not initialized")
        return self._public_key

    def get_public_key(self) -> str:
        """Public half as PEM text."""
        if self._public_pem is None:
            raise UninitializedKeyError("Public key not initialized")
        return self._public_pem

    def ensure_keys(self) -> None:
        """Load the persisted keypair, or generate and persist a new one.

        Idempotent: once keys are in memory every later call returns
        immediately.  Any failure raises KeyInitializationError and
        leaves the manager uninitialized.
        """
        if self.is_ready:
            return
        with self._lock:
            if self.is_ready:
                return
            if self._keys_dir is None:
                raise KeyInitializationError(
                    "No key directory configured and no key installed"
                )
            try:
                self._load_or_generate(self._keys_dir)
            except KeyInitializationError:
                raise
            except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as e:
                logger.exception("Failed to initialize keys in %s", self._keys_dir)
                raise KeyInitializationError(
                    f"Key initialization failed: {e}"
                ) from e

    # ------------------------------------------------------------------

    def _load_or_generate(self, keys_dir: Path) -> None:
        if not keys_dir.exists():
            keys_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created keys directory: %s", keys_dir)

        private_path = keys_dir / PRIVATE_KEY_FILE
        public_path = keys_dir / PUBLIC_KEY_FILE

        if private_path.exists() and public_path.exists():
            logger.info("Loading existing RSA keypair from %s", keys_dir)
            self._load(private_path, public_path)
            KEYPAIR_INITIALIZATIONS.labels(source="loaded").inc()
            logger.info("RSA keypair loaded (%d-bit)", self.private_key.key_size)
            return

        if private_path.exists() or public_path.exists():
            # Half a keypair is useless; the stray half gets overwritten.
            logger.warning(
                "Incomplete keypair in %s, generating a new one", keys_dir
            )

        logger.info("Generating new %d-bit RSA keypair", self._key_size)
        self._generate(private_path, public_path)
        KEYPAIR_INITIALIZATIONS.labels(source="generated").inc()
        logger.info("RSA keypair generated and saved to %s", keys_dir)

    def _load(self, private_path: Path, public_path: Path) -> None:
        private_key = serialization.load_pem_private_key(
            private_path.read_bytes(), password=None
        )
        public_key = serialization.load_pem_public_key(public_path.read_bytes())

        if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(
            public_key, rsa.RSAPublicKey
        ):
            raise KeyInitializationError("Persisted keys are not RSA keys")
        if private_key.public_key().public_numbers() != public_key.public_numbers():
            raise KeyInitializationError(
                "public.pem does not belong to private.pem"
            )
        self._install(private_key, public_key)

    def _generate(self, private_path: Path, public_path: Path) -> None:
        private_key = rsa.generate_private_key(
            public_exponent=PUBLIC_EXPONENT, key_size=self._key_size
        )
        public_key = private_key.public_key()

        # Create the private key file with 0600 from the start
        fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(_private_pem(private_key))
        public_path.write_bytes(_public_pem(public_key))

        self._install(private_key, public_key)

    def _install(
        self, private_key: rsa.RSAPrivateKey, public_key: rsa.RSAPublicKey
    ) -> None:
        self._public_pem = _public_pem(public_key).decode("ascii")
        self._public_key = public_key
        # Set last: is_ready keys off the private half
        self._private_key = private_key
