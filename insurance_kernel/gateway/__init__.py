"""
Accounting-platform capability.

The ``AccountingGateway`` protocol, the OR-filter and pagination helpers,
an in-memory implementation and the retrying decorator.
"""

from insurance_kernel.gateway.base import (
    FILTER_BUDGET,
    AccountingGateway,
    KeyFilter,
    SavedDocument,
    fetch_all,
    get_max_serial_number,
    ids_by_code,
)
from insurance_kernel.gateway.memory import InMemoryAccountingGateway
from insurance_kernel.gateway.retrying import RetryingAccountingGateway

__all__ = [
    "FILTER_BUDGET",
    "AccountingGateway",
    "InMemoryAccountingGateway",
    "KeyFilter",
    "RetryingAccountingGateway",
    "SavedDocument",
    "fetch_all",
    "get_max_serial_number",
    "ids_by_code",
]
