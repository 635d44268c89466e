"""Best-effort upload of the documents collected by the wizard."""

from __future__ import annotations

import logging
from typing import Iterable, Set

from src.integrations.contracts.errors import CheckoutError, DocumentUploadFailure
from src.integrations.contracts.interfaces import ApplicationsBackend, DocumentSet, UploadResult

logger = logging.getLogger(__name__)


class DocumentUploader:
    def __init__(self, applications: ApplicationsBackend) -> None:
        self._applications = applications

    async def existing_document_types(self, application_id: str) -> Set[str]:
        documents = await self._applications.list_documents(application_id)
        return {d.document_type for d in documents}

    async def upload(
        self,
        application_id: str,
        document_set: DocumentSet,
        skip_types: Iterable[str] = (),
    ) -> UploadResult:
        """
        Send every entry that has a file, is not flagged as uploaded and is not
        already stored on the application, in one multipart request.

        Entries found in `skip_types` are flagged as uploaded without being sent.
        Raises DocumentUploadFailure if the request fails; nothing is flagged then.
        """
        skip = set(skip_types)
        result = UploadResult(application_id=application_id)

        for entry in document_set.entries.values():
            if entry.uploaded:
                result.skipped.append(entry.document_type)
            elif entry.document_type in skip:
                entry.uploaded = True
                result.skipped.append(entry.document_type)

        pending = document_set.sendable(skip)
        if not pending:
            logger.info("No documents left to upload for application %s", application_id)
            return result

        try:
            stored = await self._applications.upload_documents(application_id, pending)
        except CheckoutError as exc:
            raise DocumentUploadFailure(
                f"Documents could not be uploaded for application {application_id}: {exc}"
            ) from exc
        except OSError as exc:
            raise DocumentUploadFailure(f"Could not read document file: {exc}") from exc

        for entry in pending:
            entry.uploaded = True
            result.uploaded.append(entry.document_type)
        result.documents = stored
        logger.info("Uploaded %s to application %s", ", ".join(result.uploaded), application_id)
        return result
