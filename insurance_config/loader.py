"""
Configuration Loader (``insurance_config.loader``).

Responsibility
--------------
Reads the importer YAML file and parses it into the frozen
``insurance_config.schema`` dataclasses.  Runtime callers go through
``insurance_config.get_active_config()`` or ``ConfigSource``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Values are validated at load: schedule ranges, a non-empty tenant map
  with integer ids, positive retry and page sizes.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed content.

Failure modes
-------------
* Missing file  -> ``ConfigurationError``.
* Malformed YAML  -> ``ConfigurationError`` wrapping ``yaml.YAMLError``.
* Out-of-range schedule  -> ``InvalidScheduleError``.
* Any other invalid value  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from insurance_config.schema import (
    AccountCodes,
    DatabaseConfig,
    GatewayConfig,
    ImporterConfig,
    ImporterSettings,
    RetryConfig,
    ScheduleConfig,
)
from insurance_kernel.domain.worksheets import parse_prefixes
from insurance_kernel.exceptions import ConfigurationError, InvalidScheduleError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its top-level mapping.

    Raises:
        ConfigurationError: the file is missing, unreadable, not valid
            YAML, or not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}") from None
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root of {path} must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Section {name!r} must be a mapping")
    return value


def _parse_date(value: Any, name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ConfigurationError(f"{name} must be an ISO date, got {value!r}") from None


def _positive(value: Any, name: str, kind: type = int) -> Any:
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return number


def parse_importer(raw: dict[str, Any]) -> ImporterSettings:
    defaults = ImporterSettings()
    return ImporterSettings(
        enable_exchange_rate=bool(raw.get("enable_exchange_rate", defaults.enable_exchange_rate)),
        enable_remittance=bool(raw.get("enable_remittance", defaults.enable_remittance)),
        enable_technical=bool(raw.get("enable_technical", defaults.enable_technical)),
        enable_pairing=bool(raw.get("enable_pairing", defaults.enable_pairing)),
        remittance_supported_prefixes=parse_prefixes(raw.get("remittance_supported_prefixes"), "RW"),
        technical_supported_prefixes=parse_prefixes(raw.get("technical_supported_prefixes"), "TW,CW"),
        pairing_supported_prefixes=parse_prefixes(raw.get("pairing_supported_prefixes"), "RW,TW,CW"),
        previous_pairing_transactions_date=_parse_date(
            raw.get("previous_pairing_transactions_date", defaults.previous_pairing_transactions_date),
            "previous_pairing_transactions_date",
        ),
    )


def parse_schedule(raw: dict[str, Any]) -> ScheduleConfig:
    try:
        hour = int(raw.get("hour", 2))
        minute = int(raw.get("minute", 0))
        second = int(raw.get("second", 0))
    except (TypeError, ValueError):
        raise ConfigurationError(f"Schedule values must be integers: {raw!r}") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise InvalidScheduleError(hour, minute, second)
    return ScheduleConfig(hour=hour, minute=minute, second=second)


def parse_tenants(raw: dict[str, Any]) -> MappingProxyType:
    if not raw:
        raise ConfigurationError("At least one tenant must be configured")
    tenants: dict[str, int] = {}
    for code, tenant_id in raw.items():
        if isinstance(tenant_id, bool) or not isinstance(tenant_id, int):
            raise ConfigurationError(f"Tenant {code!r} must map to an integer id, got {tenant_id!r}")
        tenants[str(code)] = tenant_id
    return MappingProxyType(tenants)


def parse_retry(raw: dict[str, Any]) -> RetryConfig:
    defaults = RetryConfig()
    jitter = float(raw.get("jitter", defaults.jitter))
    if jitter < 0:
        raise ConfigurationError(f"retry.jitter must not be negative, got {jitter!r}")
    return RetryConfig(
        max_attempts=_positive(raw.get("max_attempts", defaults.max_attempts), "retry.max_attempts"),
        base_delay=_positive(raw.get("base_delay", defaults.base_delay), "retry.base_delay", float),
        max_delay=_positive(raw.get("max_delay", defaults.max_delay), "retry.max_delay", float),
        jitter=jitter,
    )


def parse_gateway(raw: dict[str, Any]) -> GatewayConfig:
    defaults = GatewayConfig()
    return GatewayConfig(
        page_size=_positive(raw.get("page_size", defaults.page_size), "gateway.page_size"),
        close_chunk_size=_positive(
            raw.get("close_chunk_size", defaults.close_chunk_size), "gateway.close_chunk_size"
        ),
        filter_budget=_positive(raw.get("filter_budget", defaults.filter_budget), "gateway.filter_budget"),
    )


def parse_database(raw: dict[str, Any]) -> DatabaseConfig:
    defaults = DatabaseConfig()
    return DatabaseConfig(
        url=str(raw.get("url", defaults.url)),
        echo=bool(raw.get("echo", defaults.echo)),
    )


def parse_accounts(raw: dict[str, Any]) -> AccountCodes:
    defaults = AccountCodes()
    return AccountCodes(
        remittance=str(raw.get("remittance", defaults.remittance)),
        default_technical=str(raw.get("default_technical", defaults.default_technical)),
        fx_gain=str(raw.get("fx_gain", defaults.fx_gain)),
        fx_loss=str(raw.get("fx_loss", defaults.fx_loss)),
    )


def parse_config(data: dict[str, Any]) -> ImporterConfig:
    """Build a validated snapshot from a parsed YAML mapping."""
    return ImporterConfig(
        importer=parse_importer(_section(data, "importer")),
        schedule=parse_schedule(_section(data, "schedule")),
        tenants=parse_tenants(_section(data, "tenants")),
        retry=parse_retry(_section(data, "retry")),
        gateway=parse_gateway(_section(data, "gateway")),
        database=parse_database(_section(data, "database")),
        accounts=parse_accounts(_section(data, "accounts")),
        operation_center_code=str(data.get("operation_center_code", "20")),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> ImporterConfig:
    return parse_config(load_yaml_file(path))
