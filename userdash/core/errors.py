"""Error taxonomy for the record integrity pipeline.

Routers translate these into HTTP responses:

  InvalidInputError      → 422
  ConflictError          → 409
  NotFoundError          → 404
  EncodingError          → 500 (export failed, nothing partial is sent)

UninitializedKeyError and KeyInitializationError are startup failures.
Under correct sequencing (keys loaded in the lifespan hook before the
first request) they never surface mid-request.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for every error raised by userdash itself."""


class UninitializedKeyError(DashboardError):
    """Signing or key access attempted before KeyManager.ensure_keys()."""


class KeyInitializationError(DashboardError):
    """Keypair could not be loaded, generated or persisted."""


class InvalidInputError(DashboardError, ValueError):
    """Malformed email, hash, role or status."""


class ConflictError(DashboardError):
    """Another record already uses this email."""

    def __init__(self, email: str) -> None:
        super().__init__(f"User with email {email} already exists")
        self.email = email


class NotFoundError(DashboardError):
    """No record with this id."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User with ID {user_id} not found")
        self.user_id = user_id


class EncodingError(DashboardError):
    """Records do not fit the export schema."""


class DecodingError(DashboardError):
    """Bytes are not a well-formed UsersExport message."""
