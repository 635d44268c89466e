"""
Shared request plumbing for the brokerage backend.

Every real client goes through `BackendHTTPClient._request` so that transport
errors, error envelopes and malformed bodies are mapped onto the checkout
error taxonomy in exactly one place.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Type

import httpx

from src.integrations.contracts.errors import CheckoutError, TransportFailure
from src.integrations.policy.response_wrappers import unwrap_envelope

logger = logging.getLogger(__name__)


class BackendHTTPClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("KOLA_API_URL", "")).rstrip("/")
        self.api_token = api_token or os.getenv("KOLA_API_TOKEN", "")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        if not self.base_url:
            logger.warning("KOLA_API_URL is not set; backend requests will fail.")

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[list] = None,
        rejection: Optional[Type[CheckoutError]] = None,
    ) -> Any:
        if not self.base_url:
            raise TransportFailure("KOLA_API_URL is not configured.")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.request(
                    method, url, json=json, data=data, files=files, headers=self._headers()
                )
        except httpx.TimeoutException as exc:
            logger.error("Timeout calling %s %s", method, url)
            raise TransportFailure(f"Request to {path} timed out.") from exc
        except httpx.RequestError as exc:
            logger.error("Request error calling %s %s: %s", method, url, exc)
            raise TransportFailure(f"Could not reach the server: {exc}") from exc

        try:
            body = response.json() if response.content else {}
        except ValueError as exc:
            raise TransportFailure(
                f"Invalid JSON from {path} (HTTP {response.status_code}).",
                status_code=response.status_code,
            ) from exc

        if response.status_code >= 400:
            logger.warning("Backend %s %s returned HTTP %s", method, path, response.status_code)
        return unwrap_envelope(body, status_code=response.status_code, rejection=rejection)
