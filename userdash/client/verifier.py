"""Consumer-side signature verification.

Whatever shows user records to a person (the dashboard, a report job,
an operator script) runs them through SignatureFilter first.  The
policy is fail-closed and quiet: a record whose signature does not
verify is dropped from the result.  It is not flagged, not shown as
"invalid", and no exception is raised.

The public key is fetched once per DashboardClient and reused for every
later listing or export.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from userdash.models.export import ExportedUser, UsersExport
from userdash.services.export_codec import decode_users
from userdash.services.integrity import load_public_key, verify_signature

logger = logging.getLogger(__name__)

R = TypeVar("R", ExportedUser, Mapping[str, Any])


class SignatureFilter:
    """Keeps only records whose signature verifies under one public key."""

    def __init__(self, public_key: rsa.RSAPublicKey | str | bytes) -> None:
        if isinstance(public_key, rsa.RSAPublicKey):
            self._public_key = public_key
        else:
            self._public_key = load_public_key(public_key)

    def is_valid(self, record: object) -> bool:
        if isinstance(record, ExportedUser):
            email_hash, signature = record.email_hash, record.signature
        elif isinstance(record, Mapping):
            email_hash = record.get("emailHash")
            signature = record.get("signature")
        else:
            return False
        return verify_signature(email_hash, signature, self._public_key)  # type: ignore[arg-type]

    def filter(self, records: Iterable[R]) -> list[R]:
        records = list(records)
        kept = [r for r in records if self.is_valid(r)]
        dropped = len(records) - len(kept)
        if dropped:
            logger.debug("Excluded %d of %d records", dropped, len(records))
        return kept


class DashboardClient:
    """HTTP client for the userdash API that only surfaces verified records.

    Pass any httpx.Client whose base_url points at the API (FastAPI's
    TestClient works too).  Use DashboardClient.connect() to build one
    from a URL.
    """

    def __init__(self, http: httpx.Client) -> None:
        self._http = http
        self._public_key_pem: str | None = None
        self._filter: SignatureFilter | None = None

    @classmethod
    def connect(cls, base_url: str, *, timeout: float = 10.0) -> DashboardClient:
        return cls(httpx.Client(base_url=base_url, timeout=timeout))

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> DashboardClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def public_key_pem(self) -> str:
        if self._public_key_pem is None:
            resp = self._http.get("/crypto/public-key")
            resp.raise_for_status()
            self._public_key_pem = resp.text
        return self._public_key_pem

    def signature_filter(self) -> SignatureFilter:
        if self._filter is None:
            self._filter = SignatureFilter(self.public_key_pem())
        return self._filter

    def list_users(self) -> list[dict[str, Any]]:
        resp = self._http.get("/users")
        resp.raise_for_status()
        return resp.json()

    def export_users(self) -> UsersExport:
        resp = self._http.get("/users/export")
        resp.raise_for_status()
        return decode_users(resp.content)

    def verified_users(self) -> list[dict[str, Any]]:
        return self.signature_filter().filter(self.list_users())

    def verified_export(self) -> list[ExportedUser]:
        return self.signature_filter().filter(self.export_users().users)
