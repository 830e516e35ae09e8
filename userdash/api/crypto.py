from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from userdash.api.dependencies import get_key_manager
from userdash.services.key_manager import KeyManager

router = APIRouter(prefix="/crypto", tags=["crypto"])


@router.get("/public-key", response_class=PlainTextResponse)
def get_public_key(
    key_manager: Annotated[KeyManager, Depends(get_key_manager)],
) -> PlainTextResponse:
    """PEM public key for verifying record signatures.

    Browsers import it with crypto.subtle.importKey("spki", ...,
    {name: "RSASSA-PKCS1-v1_5", hash: "SHA-256"}).
    """
    return PlainTextResponse(key_manager.get_public_key())
