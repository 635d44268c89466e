"""
Request guard for the checkout API.

Every checkout route carries customer and payment data, so the app applies
`require_checkout_api_key` globally. Only the health and docs paths are public.
Keys come from API_KEYS (comma separated) and are read per request so they can
be rotated without a restart.
"""

import hmac
import logging
import os
from typing import List, Optional

from fastapi import Header, HTTPException, Request, status

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({
    "/",
    "/health",
    "/docs",
    "/docs/oauth2-redirect",
    "/openapi.json",
    "/redoc",
})


def configured_api_keys() -> List[str]:
    keys = os.getenv("API_KEYS", "")
    return [k.strip() for k in keys.split(",") if k.strip()]


def is_valid_api_key(candidate: Optional[str], keys: List[str]) -> bool:
    candidate = (candidate or "").strip()
    if not candidate:
        return False
    # Compare against every key so timing does not reveal which one matched.
    matches = [hmac.compare_digest(candidate, k) for k in keys]
    return any(matches)


async def require_checkout_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
) -> None:
    if request.url.path in PUBLIC_PATHS:
        return

    keys = configured_api_keys()
    if not keys:
        logger.error("API_KEYS is empty; refusing %s %s", request.method, request.url.path)
    elif is_valid_api_key(x_api_key, keys):
        return
    else:
        logger.warning(
            "Rejected %s %s: %s API key",
            request.method, request.url.path, "missing" if not x_api_key else "unknown",
        )

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": "Invalid or missing API key"},
    )
