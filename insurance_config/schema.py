"""
Configuration schema (``insurance_config.schema``).

Frozen dataclasses describing one importer configuration snapshot.  A
snapshot is taken once per scheduler iteration and threaded through every
step; nothing reads configuration mid-run.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType

from insurance_kernel.exceptions import TenantNotConfiguredError


@dataclass(frozen=True)
class ImporterSettings:
    """Step toggles and worksheet prefixes."""

    enable_exchange_rate: bool = True
    enable_remittance: bool = True
    enable_technical: bool = True
    enable_pairing: bool = True
    remittance_supported_prefixes: tuple[str, ...] = ("RW",)
    technical_supported_prefixes: tuple[str, ...] = ("TW", "CW")
    pairing_supported_prefixes: tuple[str, ...] = ("RW", "TW", "CW")
    previous_pairing_transactions_date: date = date(2025, 5, 16)


@dataclass(frozen=True)
class ScheduleConfig:
    hour: int = 2
    minute: int = 0
    second: int = 0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5


@dataclass(frozen=True)
class GatewayConfig:
    page_size: int = 500
    close_chunk_size: int = 200
    filter_budget: int = 1024


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///:memory:"
    echo: bool = False


@dataclass(frozen=True)
class AccountCodes:
    """Platform account codes used by pairing documents."""

    remittance: str = "16002"
    default_technical: str = "06001"
    fx_gain: str = "4400050"
    fx_loss: str = "5212018"


@dataclass(frozen=True)
class ImporterConfig:
    """One immutable configuration snapshot.

    ``checksum`` identifies the source content; two snapshots with the
    same checksum are interchangeable.
    """

    importer: ImporterSettings = field(default_factory=ImporterSettings)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    tenants: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    retry: RetryConfig = field(default_factory=RetryConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    accounts: AccountCodes = field(default_factory=AccountCodes)
    operation_center_code: str = "20"
    checksum: str = ""

    def tenant_id(self, tenant_code: str) -> int:
        """Platform tenant id of a legacy tenant code.

        Raises:
            TenantNotConfiguredError: the code is not in ``tenants``.
        """
        try:
            return self.tenants[tenant_code]
        except KeyError:
            raise TenantNotConfiguredError(tenant_code) from None

    @property
    def tenant_codes(self) -> tuple[str, ...]:
        return tuple(self.tenants)
