"""
Kernel services -- the I/O-performing layer around the pure domain.

    retry_service       Bounded retry with exponential backoff and jitter
    master_data_sync    Idempotent upsert of agents, contracts, partners, accounts
    document_service    Save, chunked close, bulk delete with per-id fallback
    log_capture         In-process capture of structured log records
"""

from insurance_kernel.services.retry_service import RetryPolicy, call_with_retry, is_transient
from insurance_kernel.services.log_capture import LogCapture, RunReport
from insurance_kernel.services.document_service import DocumentService
from insurance_kernel.services.master_data_sync import MasterDataSynchronizer, SyncResult

__all__ = [
    "DocumentService",
    "LogCapture",
    "MasterDataSynchronizer",
    "RetryPolicy",
    "RunReport",
    "SyncResult",
    "call_with_retry",
    "is_transient",
]
