"""
DocumentService -- save, close and delete documents on the platform.

Contract:
    - ``save`` returns the platform id assigned to each serial number.
    - ``close`` sends ids in chunks of ``close_chunk_size`` (200).
    - ``delete`` tries each chunk in bulk; when a bulk call fails it falls
      back to one call per id, logging and skipping the ids that still
      fail.

Architecture: insurance_kernel/services.  Gateway errors from ``save``
and ``close`` propagate; the calling step decides what to abort.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TypeVar

from insurance_kernel.domain.types import AccountingDocument
from insurance_kernel.exceptions import GatewayError
from insurance_kernel.gateway.base import AccountingGateway, SavedDocument
from insurance_kernel.logging_config import get_logger

logger = get_logger("services.document_service")

CLOSE_CHUNK_SIZE = 200

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start: start + size]


class DocumentService:

    def __init__(self, gateway: AccountingGateway, *, close_chunk_size: int = CLOSE_CHUNK_SIZE):
        if close_chunk_size < 1:
            raise ValueError("close_chunk_size must be positive")
        self._gateway = gateway
        self._chunk_size = close_chunk_size

    def save(
        self,
        tenant_id: int,
        definition_id: int,
        documents: Sequence[AccountingDocument],
    ) -> list[SavedDocument]:
        if not documents:
            return []
        saved = self._gateway.save_documents(tenant_id, definition_id, documents)
        logger.info(
            "documents_saved",
            extra={
                "definition_id": definition_id,
                "count": len(saved),
                "documents_updated": sum(1 for d in documents if d.external_id),
            },
        )
        return saved

    def close(self, tenant_id: int, definition_id: int, document_ids: Sequence[int]) -> int:
        closed = 0
        for chunk in chunked(list(document_ids), self._chunk_size):
            self._gateway.close_documents(tenant_id, definition_id, chunk)
            closed += len(chunk)
        if closed:
            logger.info("documents_closed", extra={"definition_id": definition_id, "count": closed})
        return closed

    def delete(
        self, tenant_id: int, definition_id: int, document_ids: Sequence[int]
    ) -> tuple[list[int], list[int]]:
        """Delete ``document_ids``.

        Returns:
            ``(deleted, failed)`` id lists.
        """
        deleted: list[int] = []
        failed: list[int] = []
        for chunk in chunked(list(document_ids), self._chunk_size):
            try:
                self._gateway.delete_documents(tenant_id, definition_id, chunk)
                deleted.extend(chunk)
                continue
            except GatewayError as exc:
                logger.warning(
                    "bulk_delete_failed",
                    extra={"definition_id": definition_id, "count": len(chunk), "error": str(exc)},
                )
            for document_id in chunk:
                try:
                    self._gateway.delete_documents(tenant_id, definition_id, [document_id])
                    deleted.append(document_id)
                except GatewayError as exc:
                    logger.error(
                        "document_delete_failed",
                        extra={"document_id": document_id, "error": str(exc)},
                    )
                    failed.append(document_id)
        return deleted, failed
