"""
Typed Exception Hierarchy for the Insurance Importer.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from InsuranceImporterError:

    InsuranceImporterError (base)
    |
    +-- ConfigurationError
    |   +-- TenantNotConfiguredError
    |   +-- InvalidScheduleError
    |   +-- MappingTableError
    |
    +-- GatewayError
    |   +-- TransientGatewayError
    |   +-- EntityNotFoundError
    |   +-- GatewayRejectedError
    |
    +-- DocumentError
    |   +-- DirectionResolutionError
    |   +-- UnbalancedDocumentError
    |   +-- ExchangeRateNotFoundError
    |   +-- MissingReferenceError
    |
    +-- SourceError
    |
    +-- ImportCancelledError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | TENANT_NOT_CONFIGURED       | Tenant code has no platform tenant id
                | INVALID_SCHEDULE            | Daily schedule time out of range
                | MAPPING_TABLE_ERROR         | Mapping table empty or ambiguous
----------------|-----------------------------|-----------------------------------------
Gateway         | TRANSIENT_GATEWAY_ERROR     | Connection reset / timeout (retryable)
                | ENTITY_NOT_FOUND            | Lookup by code returned nothing
                | GATEWAY_REJECTED            | Platform refused the request
----------------|-----------------------------|-----------------------------------------
Document        | DIRECTION_UNRESOLVED        | No direction rule matched the inputs
                | UNBALANCED_DOCUMENT         | Residual above tolerance after balancing
                | EXCHANGE_RATE_NOT_FOUND     | No rate on or before the cutoff date
                | MISSING_REFERENCE           | Agent/account id unresolved at build time
----------------|-----------------------------|-----------------------------------------
Source          | WORKSHEET_SOURCE_ERROR      | Legacy database query failed
----------------|-----------------------------|-----------------------------------------
Run             | IMPORT_CANCELLED            | Cancellation signal observed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Row-level problems never raise.  They are excluded by the rule filter
   and reported in the log.

2. DocumentError is contained per document:

    try:
        document = build_pairing_document(group, ...)
    except DocumentError as e:
        logger.error("document_skipped", extra={"code": e.code, ...})
        continue

3. ConfigurationError aborts the tenant run; the orchestrator logs it and
   moves on to the next tenant.

4. TransientGatewayError is retried by the retry policy; every other
   GatewayError propagates immediately.
"""


class InsuranceImporterError(Exception):
    """
    Base exception for all importer errors.

    All subclasses carry a `code` class attribute for machine-readable
    identification.
    """

    code: str = "INSURANCE_IMPORTER_ERROR"


# Configuration exceptions


class ConfigurationError(InsuranceImporterError):
    """Configuration is missing or malformed."""

    code: str = "CONFIGURATION_ERROR"


class TenantNotConfiguredError(ConfigurationError):
    """Tenant code has no mapping to a platform tenant id."""

    code: str = "TENANT_NOT_CONFIGURED"

    def __init__(self, tenant_code: str):
        self.tenant_code = tenant_code
        super().__init__(f"Tenant code {tenant_code!r} is not configured")


class InvalidScheduleError(ConfigurationError):
    """Daily schedule time is out of range."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, hour: int, minute: int, second: int):
        self.hour = hour
        self.minute = minute
        self.second = second
        super().__init__(
            f"Invalid daily schedule {hour:02}:{minute:02}:{second:02}"
        )


class MappingTableError(ConfigurationError):
    """
    Mapping table cannot be used.

    Raised for an empty table or for two templates sharing one key.  This is
    an unrecoverable defect for the tenant run.
    """

    code: str = "MAPPING_TABLE_ERROR"

    def __init__(self, table: str, reason: str):
        self.table = table
        self.reason = reason
        super().__init__(f"Mapping table {table}: {reason}")


# Gateway exceptions


class GatewayError(InsuranceImporterError):
    """Base exception for accounting platform failures."""

    code: str = "GATEWAY_ERROR"


class TransientGatewayError(GatewayError):
    """Temporary platform failure; the call may be retried."""

    code: str = "TRANSIENT_GATEWAY_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Transient failure during {operation}: {reason}")


class EntityNotFoundError(GatewayError):
    """Lookup by code returned no entity."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, kind: str, entity_code: str, definition_id: int | None = None):
        self.kind = kind
        self.entity_code = entity_code
        self.definition_id = definition_id
        super().__init__(
            f"{kind} with code {entity_code!r} not found"
            + (f" in definition {definition_id}" if definition_id else "")
        )


class GatewayRejectedError(GatewayError):
    """The platform refused the request (validation or permission)."""

    code: str = "GATEWAY_REJECTED"

    def __init__(self, operation: str, reason: str, ids: tuple = ()):
        self.operation = operation
        self.reason = reason
        self.ids = ids
        super().__init__(f"{operation} rejected: {reason}")


# Document exceptions


class DocumentError(InsuranceImporterError):
    """A single document cannot be built; the rest of the run continues."""

    code: str = "DOCUMENT_ERROR"


class DirectionResolutionError(DocumentError):
    """No direction rule matched the given sign combination."""

    code: str = "DIRECTION_UNRESOLVED"

    def __init__(self, pairing_sign: int, original_sign: int, line_direction: int):
        self.pairing_sign = pairing_sign
        self.original_sign = original_sign
        self.line_direction = line_direction
        super().__init__(
            "No direction rule for "
            f"pairing_sign={pairing_sign}, original_sign={original_sign}, "
            f"line_direction={line_direction}"
        )


class UnbalancedDocumentError(DocumentError):
    """Entries of a line do not net to zero within tolerance."""

    code: str = "UNBALANCED_DOCUMENT"

    def __init__(self, serial_number: int, residual: str):
        self.serial_number = serial_number
        self.residual = residual
        super().__init__(
            f"Document {serial_number} is unbalanced by {residual}"
        )


class ExchangeRateNotFoundError(DocumentError):
    """No exchange rate on or before the cutoff date."""

    code: str = "EXCHANGE_RATE_NOT_FOUND"

    def __init__(self, currency: str, as_of: str):
        self.currency = currency
        self.as_of = as_of
        super().__init__(f"No exchange rate found for {currency} as of {as_of}")


class MissingReferenceError(DocumentError):
    """A platform id needed by one document could not be resolved."""

    code: str = "MISSING_REFERENCE"

    def __init__(self, kind: str, reference: str, document_key: str):
        self.kind = kind
        self.reference = reference
        self.document_key = document_key
        super().__init__(
            f"{kind} {reference!r} not found while building document {document_key}"
        )


# Source exceptions


class SourceError(InsuranceImporterError):
    """The legacy worksheet database could not be read or updated."""

    code: str = "WORKSHEET_SOURCE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Worksheet source {operation} failed: {reason}")


# Run control


class ImportCancelledError(InsuranceImporterError):
    """The cancellation signal was set."""

    code: str = "IMPORT_CANCELLED"

    def __init__(self, where: str):
        self.where = where
        super().__init__(f"Import cancelled at {where}")
