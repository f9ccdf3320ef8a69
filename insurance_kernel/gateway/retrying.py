"""
RetryingAccountingGateway -- applies ``RetryPolicy`` to every platform call.

Each protocol method is delegated explicitly; there is no attribute-name
forwarding.  ``EntityNotFoundError`` and ``GatewayRejectedError`` are not
transient and pass through on the first attempt.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable, Sequence
from datetime import date
from typing import TypeVar

from insurance_kernel.domain.types import (
    AccountingDocument,
    EntityKind,
    ExchangeRate,
    MasterEntity,
    TenantProfile,
)
from insurance_kernel.gateway.base import (
    DEFAULT_PAGE_SIZE,
    AccountingGateway,
    KeyFilter,
    SavedDocument,
)
from insurance_kernel.services.retry_service import RetryPolicy, call_with_retry

T = TypeVar("T")


class RetryingAccountingGateway:
    """Decorator adding bounded retry to an ``AccountingGateway``."""

    def __init__(
        self,
        inner: AccountingGateway,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self._inner = inner
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng
        self._cancel_event = cancel_event

    @property
    def inner(self) -> AccountingGateway:
        return self._inner

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        return call_with_retry(
            fn,
            policy=self._policy,
            operation=operation,
            sleep=self._sleep,
            rng=self._rng,
            cancel_event=self._cancel_event,
        )

    def get_tenant_profile(self, tenant_id: int) -> TenantProfile:
        return self._call("get_tenant_profile", lambda: self._inner.get_tenant_profile(tenant_id))

    def get_id_by_code(
        self,
        tenant_id: int,
        kind: EntityKind,
        code: str,
        definition_id: int | None = None,
    ) -> int:
        return self._call(
            "get_id_by_code",
            lambda: self._inner.get_id_by_code(tenant_id, kind, code, definition_id),
        )

    def fetch_entities(
        self,
        tenant_id: int,
        kind: EntityKind,
        *,
        definition_id: int | None = None,
        key_filter: KeyFilter | None = None,
        skip: int = 0,
        top: int = DEFAULT_PAGE_SIZE,
    ) -> list[MasterEntity]:
        return self._call(
            "fetch_entities",
            lambda: self._inner.fetch_entities(
                tenant_id,
                kind,
                definition_id=definition_id,
                key_filter=key_filter,
                skip=skip,
                top=top,
            ),
        )

    def save_entities(
        self,
        tenant_id: int,
        kind: EntityKind,
        definition_id: int | None,
        entities: Sequence[MasterEntity],
    ) -> None:
        self._call(
            "save_entities",
            lambda: self._inner.save_entities(tenant_id, kind, definition_id, entities),
        )

    def get_max_code(
        self, tenant_id: int, kind: EntityKind, definition_id: int | None
    ) -> str | None:
        return self._call(
            "get_max_code", lambda: self._inner.get_max_code(tenant_id, kind, definition_id)
        )

    def fetch_exchange_rates(self, tenant_id: int, valid_from: date) -> list[ExchangeRate]:
        return self._call(
            "fetch_exchange_rates",
            lambda: self._inner.fetch_exchange_rates(tenant_id, valid_from),
        )

    def save_exchange_rates(self, tenant_id: int, rates: Sequence[ExchangeRate]) -> None:
        self._call(
            "save_exchange_rates", lambda: self._inner.save_exchange_rates(tenant_id, rates)
        )

    def save_documents(
        self,
        tenant_id: int,
        definition_id: int,
        documents: Sequence[AccountingDocument],
    ) -> list[SavedDocument]:
        return self._call(
            "save_documents",
            lambda: self._inner.save_documents(tenant_id, definition_id, documents),
        )

    def close_documents(
        self, tenant_id: int, definition_id: int, document_ids: Sequence[int]
    ) -> None:
        self._call(
            "close_documents",
            lambda: self._inner.close_documents(tenant_id, definition_id, document_ids),
        )

    def delete_documents(
        self, tenant_id: int, definition_id: int, document_ids: Sequence[int]
    ) -> None:
        self._call(
            "delete_documents",
            lambda: self._inner.delete_documents(tenant_id, definition_id, document_ids),
        )
