"""
Typed Exception Hierarchy for the Marketplace Money Core.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money code must fail precisely. Callers catch by type and read structured
attributes; they never parse message strings. Every exception class carries
a static ``code`` attribute that is safe to return through an API.

    try:
        outcome = settlement_service.settle(event)
    except UnknownSellerError as e:
        api_response(code=e.code, seller_id=e.seller_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    MarketKernelError (base)
    |
    +-- ValidationError
    |   +-- UnsupportedCurrencyError
    |   +-- InvalidVatNumberError
    |   +-- InvalidDateRangeError
    |   +-- InvalidPaymentEventError
    |
    +-- ConfigurationError
    |   +-- RateConfigNotFoundError
    |   +-- RateConfigInvalidError
    |
    +-- SettlementError
    |   +-- UnknownSellerError
    |   +-- SettlementNotFoundError
    |   +-- ConservationViolationError
    |   +-- InvalidStatusTransitionError
    |   +-- SettlementImmutableError
    |
    +-- InvoiceError
    |   +-- InvoiceNotFoundError
    |   +-- DeliveryFailureError
    |
    +-- BatchError
        +-- TaskNotRegisteredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed input field
                | UNSUPPORTED_CURRENCY        | Currency not in the registry
                | INVALID_VAT_NUMBER          | VAT number fails format check
                | INVALID_DATE_RANGE          | start > end, unknown preset
                | INVALID_PAYMENT_EVENT       | Payment event fails construction checks
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Rate configuration unusable
                | RATE_CONFIG_NOT_FOUND       | No active rate configuration
                | RATE_CONFIG_INVALID         | Stored config corrupt or inconsistent
----------------|-----------------------------|-----------------------------------------
Settlement      | UNKNOWN_SELLER              | Seller not in the party directory
                | SETTLEMENT_NOT_FOUND        | Settlement ID doesn't exist
                | CONSERVATION_VIOLATION      | gross != vat + fee + commission + earnings
                | INVALID_STATUS_TRANSITION   | e.g. refunded -> disputed
                | SETTLEMENT_IMMUTABLE        | Split field changed after persistence
----------------|-----------------------------|-----------------------------------------
Invoice         | INVOICE_NOT_FOUND           | Invoice number doesn't exist
                | DELIVERY_FAILURE            | Notifier reported a failure
----------------|-----------------------------|-----------------------------------------
Batch           | TASK_NOT_REGISTERED         | Unknown batch task type

===============================================================================
NOT EXCEPTIONS
===============================================================================

Duplicate settlement for the same gateway transaction id and a second
invoice request for the same settlement are NOT errors: those operations
return an outcome object with a ``created`` flag. A failing seller inside a
tier recompute is collected into the batch summary and never raised.
"""


class MarketKernelError(Exception):
    """
    Base exception for all marketplace money core errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "MARKET_KERNEL_ERROR"


# Validation


class ValidationError(MarketKernelError):
    """Input rejected before any state change."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class UnsupportedCurrencyError(ValidationError):
    """Currency code is not supported by the registry."""

    code: str = "UNSUPPORTED_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__("currency", currency, "unsupported currency")


class InvalidVatNumberError(ValidationError):
    """VAT number does not match the format for its country."""

    code: str = "INVALID_VAT_NUMBER"

    def __init__(self, vat_number: str, reason: str):
        self.vat_number = vat_number
        super().__init__("vat_number", vat_number, reason)


class InvalidDateRangeError(ValidationError):
    """Date range or preset cannot be resolved."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, value: object, reason: str):
        super().__init__("date_range", value, reason)


class InvalidPaymentEventError(ValidationError):
    """Payment event failed construction checks."""

    code: str = "INVALID_PAYMENT_EVENT"


# Configuration


class ConfigurationError(MarketKernelError):
    """Rate configuration is missing or unusable."""

    code: str = "CONFIGURATION_ERROR"


class RateConfigNotFoundError(ConfigurationError):
    """No active rate configuration has been published."""

    code: str = "RATE_CONFIG_NOT_FOUND"

    def __init__(self):
        super().__init__("No active rate configuration")


class RateConfigInvalidError(ConfigurationError):
    """Rate configuration is corrupt or violates its own invariants."""

    code: str = "RATE_CONFIG_INVALID"

    def __init__(self, reason: str, version: int | None = None):
        self.reason = reason
        self.version = version
        super().__init__(f"Invalid rate configuration (version={version}): {reason}")


# Settlement


class SettlementError(MarketKernelError):
    """Base exception for settlement errors."""

    code: str = "SETTLEMENT_ERROR"


class UnknownSellerError(SettlementError):
    """Seller is not known to the party directory."""

    code: str = "UNKNOWN_SELLER"

    def __init__(self, seller_id: str):
        self.seller_id = seller_id
        super().__init__(f"Unknown seller: {seller_id}")


class SettlementNotFoundError(SettlementError):
    """Settlement with given ID was not found."""

    code: str = "SETTLEMENT_NOT_FOUND"

    def __init__(self, settlement_id: str):
        self.settlement_id = settlement_id
        super().__init__(f"Settlement not found: {settlement_id}")


class ConservationViolationError(SettlementError):
    """Split components do not add back to the gross amount."""

    code: str = "CONSERVATION_VIOLATION"

    def __init__(
        self,
        gross: int,
        vat: int,
        fee: int,
        commission: int,
        earnings: int,
    ):
        self.gross = gross
        self.vat = vat
        self.fee = fee
        self.commission = commission
        self.earnings = earnings
        super().__init__(
            f"Split does not conserve gross {gross}: "
            f"vat={vat} fee={fee} commission={commission} earnings={earnings}"
        )


class InvalidStatusTransitionError(SettlementError):
    """Requested settlement status change is not allowed."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, settlement_id: str, from_status: str, to_status: str):
        self.settlement_id = settlement_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Settlement {settlement_id} cannot move from "
            f"{from_status} to {to_status}"
        )


class SettlementImmutableError(SettlementError):
    """Attempted to change the monetary split of a persisted settlement."""

    code: str = "SETTLEMENT_IMMUTABLE"

    def __init__(self, settlement_id: str, fields: list[str]):
        self.settlement_id = settlement_id
        self.fields = fields
        super().__init__(
            f"Settlement {settlement_id} is immutable; attempted to change {fields}"
        )


# Invoice


class InvoiceError(MarketKernelError):
    """Base exception for invoice errors."""

    code: str = "INVOICE_ERROR"


class InvoiceNotFoundError(InvoiceError):
    """Invoice with given number was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice not found: {invoice_number}")


class DeliveryFailureError(InvoiceError):
    """Notification collaborator failed to deliver an invoice."""

    code: str = "DELIVERY_FAILURE"

    def __init__(self, invoice_number: str, reason: str):
        self.invoice_number = invoice_number
        self.reason = reason
        super().__init__(f"Delivery of {invoice_number} failed: {reason}")


# Batch


class BatchError(MarketKernelError):
    """Base exception for batch errors."""

    code: str = "BATCH_ERROR"


class TaskNotRegisteredError(BatchError):
    """No batch task registered for the given task type."""

    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str):
        self.task_type = task_type
        super().__init__(f"No batch task registered for type: {task_type}")
