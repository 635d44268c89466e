"""
Real Applications HTTP Client.

Talks to the brokerage applications API:
- POST  /applications                    create draft
- PATCH /applications/{id}               status / payment fields
- GET   /applications/{id}/documents     existing documents
- POST  /applications/{id}/documents     multipart upload (documents + documentTypes)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from src.integrations.clients.real_http.base import BackendHTTPClient
from src.integrations.contracts.interfaces import (
    Application,
    ApplicationsBackend,
    DocumentEntry,
    StoredDocument,
)
from src.integrations.policy.response_wrappers import normalize_application, normalize_documents

logger = logging.getLogger(__name__)


class RealApplicationsClient(BackendHTTPClient, ApplicationsBackend):
    async def create_application(self, payload: Dict[str, Any]) -> Application:
        logger.info("Creating draft application type=%s", payload.get("insuranceType"))
        data = await self._request("POST", "/applications", json=payload)
        return normalize_application(data)

    async def update_application(self, application_id: str, updates: Dict[str, Any]) -> Application:
        logger.info("Updating application %s fields=%s", application_id, sorted(updates))
        data = await self._request("PATCH", f"/applications/{application_id}", json=updates)
        return normalize_application(data)

    async def list_documents(self, application_id: str) -> List[StoredDocument]:
        data = await self._request("GET", f"/applications/{application_id}/documents")
        return normalize_documents(data or [])

    async def upload_documents(self, application_id: str, entries: List[DocumentEntry]) -> List[StoredDocument]:
        files = [("documents", (e.name, e.read_bytes(), e.media_type)) for e in entries]
        form = {"documentTypes": [e.document_type for e in entries]}
        logger.info("Uploading %d document(s) to application %s", len(files), application_id)
        data = await self._request(
            "POST", f"/applications/{application_id}/documents", data=form, files=files
        )
        return normalize_documents(data or [])
