"""
VAT Engine - Determine the VAT treatment of a single transaction.

Decision order:
    1. VAT disabled, or buyer outside the applicable jurisdictions
       -> not applicable, exemption reason recorded, rate 0.
    2. Business buyer + VAT number + reverse charge enabled + cross-border
       inside the applicable region -> validate the VAT number against the
       buyer's country.  Valid -> reverse charge, VAT 0.  Invalid -> fall
       through to consumer treatment (fails closed, never silently exempt).
    3. Resolve the rate: domestic default, per-country override, else the
       domestic default.
    4. Inclusive pricing extracts VAT from the amount, exclusive pricing
       adds it on top.  Amounts captured by the payment gateway are always
       treated as VAT-inclusive.

Rounding is half-up to the nearest minor unit.

Usage:
    from market_engines.vat import VatCalculator, VatInput

    result = VatCalculator().calculate(
        VatInput(amount_minor_units=1000, currency="GBP", buyer_country_code="GB"),
        config,
    )
    result.vat_amount_minor_units  # 167
    result.net_amount_minor_units  # 833
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from market_config.schema import EU_COUNTRIES, UK_COUNTRIES, PricingType, RateConfig
from market_kernel.domain.currency import format_minor_units, normalize_currency
from market_kernel.domain.money import apply_rate, ensure_minor_units, extract_inclusive_tax
from market_kernel.exceptions import InvalidVatNumberError, ValidationError
from market_kernel.logging_config import get_logger

logger = get_logger("engines.vat")

_ZERO = Decimal("0")

# Number part after the two-letter prefix.
VAT_NUMBER_PATTERNS: dict[str, re.Pattern[str]] = {
    "AT": re.compile(r"^U\d{8}$"),
    "BE": re.compile(r"^\d{10}$"),
    "BG": re.compile(r"^\d{9,10}$"),
    "CY": re.compile(r"^\d{8}[A-Z]$"),
    "CZ": re.compile(r"^\d{8,10}$"),
    "DE": re.compile(r"^\d{9}$"),
    "DK": re.compile(r"^\d{8}$"),
    "EE": re.compile(r"^\d{9}$"),
    "GR": re.compile(r"^\d{9}$"),
    "ES": re.compile(r"^[A-Z0-9]\d{7}[A-Z0-9]$"),
    "FI": re.compile(r"^\d{8}$"),
    "FR": re.compile(r"^[A-Z0-9]{2}\d{9}$"),
    "GB": re.compile(r"^(\d{9}|\d{12}|(GD|HA)\d{3})$"),
    "HR": re.compile(r"^\d{11}$"),
    "HU": re.compile(r"^\d{8}$"),
    "IE": re.compile(r"^(\d{7}[A-Z]{1,2}|\d[A-Z+*]\d{5}[A-Z])$"),
    "IT": re.compile(r"^\d{11}$"),
    "LT": re.compile(r"^(\d{9}|\d{12})$"),
    "LU": re.compile(r"^\d{8}$"),
    "LV": re.compile(r"^\d{11}$"),
    "MT": re.compile(r"^\d{8}$"),
    "NL": re.compile(r"^\d{9}B\d{2}$"),
    "PL": re.compile(r"^\d{10}$"),
    "PT": re.compile(r"^\d{9}$"),
    "RO": re.compile(r"^\d{2,10}$"),
    "SE": re.compile(r"^\d{12}$"),
    "SI": re.compile(r"^\d{8}$"),
    "SK": re.compile(r"^\d{10}$"),
}

# VAT number prefixes that differ from the ISO country code
_PREFIX_ALIASES = {"EL": "GR", "UK": "GB"}


class AmountBasis(str, Enum):
    """How to read the amount handed to the calculator."""

    LIST_PRICE = "list_price"  # Apply the configured pricing type
    CAPTURED_GROSS = "captured_gross"  # Buyer already paid; VAT is inside


class VatExemptReason(str, Enum):
    """Why no VAT was charged."""

    VAT_DISABLED = "vat_disabled"
    OUTSIDE_REGION = "outside_region"
    REVERSE_CHARGE = "reverse_charge"


EXEMPT_REASON_TEXT: dict[VatExemptReason, str] = {
    VatExemptReason.VAT_DISABLED: "VAT not applicable",
    VatExemptReason.OUTSIDE_REGION: "Outside the scope of VAT: buyer located outside VAT applicable region",
    VatExemptReason.REVERSE_CHARGE: (
        "Reverse charge: customer to account for VAT to their local tax authority"
    ),
}


def _normalize_country(country_code: str | None) -> str:
    code = (country_code or "").strip().upper()
    return _PREFIX_ALIASES.get(code, code)


# ---------------------------------------------------------------------------
# VAT number format validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VatNumberCheck:
    """Outcome of a VAT number format check."""

    is_valid: bool
    country_code: str | None = None
    number: str | None = None
    error: str | None = None

    @property
    def full_number(self) -> str | None:
        if self.country_code is None or self.number is None:
            return None
        return f"{self.country_code}{self.number}"


def check_vat_number(vat_number: str | None, country_code: str | None = None) -> VatNumberCheck:
    """
    Check the format of a VAT number such as ``DE123456789``.

    Spaces are stripped and letters upper-cased.  When ``country_code`` is
    given, the number's prefix must match it.
    """
    if not vat_number or not vat_number.strip():
        return VatNumberCheck(is_valid=False, error="VAT number is required")

    clean = re.sub(r"\s", "", vat_number).upper()
    prefix = _normalize_country(clean[:2])
    number = clean[2:]

    if prefix not in EU_COUNTRIES and prefix not in UK_COUNTRIES:
        return VatNumberCheck(is_valid=False, error="Invalid country code in VAT number")

    if country_code and _normalize_country(country_code) != prefix:
        return VatNumberCheck(
            is_valid=False,
            country_code=prefix,
            number=number,
            error="VAT number country does not match buyer country",
        )

    pattern = VAT_NUMBER_PATTERNS.get(prefix)
    if pattern is not None and not pattern.match(number):
        return VatNumberCheck(
            is_valid=False,
            country_code=prefix,
            number=number,
            error=f"Invalid VAT number format for {prefix}",
        )

    return VatNumberCheck(is_valid=True, country_code=prefix, number=number)


def require_valid_vat_number(vat_number: str, country_code: str | None = None) -> str:
    """
    Return the normalized VAT number or raise.

    Raises:
        InvalidVatNumberError: if the format check fails.
    """
    check = check_vat_number(vat_number, country_code)
    if not check.is_valid:
        raise InvalidVatNumberError(vat_number, check.error or "invalid")
    return check.full_number or vat_number


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VatInput:
    """One VAT question: this amount, this buyer."""

    amount_minor_units: int
    currency: str
    buyer_country_code: str | None
    is_business_buyer: bool = False
    buyer_vat_number: str | None = None
    amount_basis: AmountBasis = AmountBasis.LIST_PRICE

    def __post_init__(self) -> None:
        ensure_minor_units("amount_minor_units", self.amount_minor_units)
        if self.amount_minor_units < 0:
            raise ValidationError(
                "amount_minor_units", self.amount_minor_units, "cannot be negative"
            )


@dataclass(frozen=True)
class VatResult:
    """The VAT treatment of one transaction."""

    vat_applicable: bool
    rate: Decimal
    vat_amount_minor_units: int
    net_amount_minor_units: int
    gross_amount_minor_units: int
    reverse_charge: bool
    exempt_reason: VatExemptReason | None
    currency: str
    buyer_country_code: str
    pricing_type: PricingType
    invoice_notes: tuple[str, ...] = ()
    vat_number_error: str | None = None

    @property
    def exempt_reason_text(self) -> str | None:
        if self.exempt_reason is None:
            return None
        return EXEMPT_REASON_TEXT[self.exempt_reason]


@dataclass(frozen=True)
class VatSummary:
    """Display summary of VAT treatment for a country."""

    country_code: str
    vat_enabled: bool
    vat_applicable: bool
    rate: Decimal
    pricing_type: PricingType
    region: str
    reverse_charge_available: bool

    @property
    def rate_percent(self) -> str:
        return f"{(self.rate * 100).normalize():f}%"


class VatCalculator:
    """
    Calculate VAT for transactions.

    Pure functions - no I/O.  The RateConfig is passed to every call.
    """

    def calculate(self, request: VatInput, config: RateConfig) -> VatResult:
        """
        Determine the VAT treatment for ``request`` under ``config``.

        Raises:
            UnsupportedCurrencyError: if the currency is not supported.  The
                caller must reject the transaction rather than assume no VAT.
        """
        t0 = time.monotonic()
        currency = normalize_currency(request.currency)
        country = _normalize_country(request.buyer_country_code)
        amount = request.amount_minor_units
        vat = config.vat

        logger.info("vat_calculation_started", extra={
            "amount": amount,
            "currency": currency,
            "buyer_country": country,
            "is_business_buyer": request.is_business_buyer,
            "amount_basis": request.amount_basis.value,
        })

        def _not_applicable(reason: VatExemptReason, notes: tuple[str, ...]) -> VatResult:
            return VatResult(
                vat_applicable=False,
                rate=_ZERO,
                vat_amount_minor_units=0,
                net_amount_minor_units=amount,
                gross_amount_minor_units=amount,
                reverse_charge=reason is VatExemptReason.REVERSE_CHARGE,
                exempt_reason=reason,
                currency=currency,
                buyer_country_code=country,
                pricing_type=vat.pricing_type,
                invoice_notes=notes,
            )

        if not vat.enabled:
            result = _not_applicable(VatExemptReason.VAT_DISABLED, ("VAT not applicable",))
            self._log_completed(result, t0)
            return result

        if not vat.is_applicable_country(country):
            result = _not_applicable(
                VatExemptReason.OUTSIDE_REGION,
                (f"No VAT - buyer location: {country or 'unknown'}",),
            )
            self._log_completed(result, t0)
            return result

        notes: list[str] = []
        vat_number_error: str | None = None

        if (
            request.is_business_buyer
            and request.buyer_vat_number
            and vat.reverse_charge_enabled
            and not vat.is_domestic(country)
        ):
            check = check_vat_number(request.buyer_vat_number, country)
            if check.is_valid:
                result = _not_applicable(
                    VatExemptReason.REVERSE_CHARGE,
                    (
                        EXEMPT_REASON_TEXT[VatExemptReason.REVERSE_CHARGE],
                        f"Customer VAT number: {check.full_number}",
                    ),
                )
                self._log_completed(result, t0)
                return result
            vat_number_error = check.error
            notes.append(f"VAT number validation failed: {check.error}")
            logger.warning("vat_number_rejected", extra={
                "buyer_country": country,
                "error": check.error,
            })

        rate = vat.rate_for_country(country)

        inclusive = (
            request.amount_basis is AmountBasis.CAPTURED_GROSS
            or vat.pricing_type is PricingType.INCLUSIVE
        )
        if inclusive:
            vat_amount = extract_inclusive_tax(amount, rate)
            net = amount - vat_amount
            gross = amount
        else:
            vat_amount = apply_rate(amount, rate)
            net = amount
            gross = amount + vat_amount

        notes.append(f"VAT rate: {(rate * 100).normalize():f}%")
        notes.append(f"VAT amount: {format_minor_units(vat_amount, currency)}")

        result = VatResult(
            vat_applicable=True,
            rate=rate,
            vat_amount_minor_units=vat_amount,
            net_amount_minor_units=net,
            gross_amount_minor_units=gross,
            reverse_charge=False,
            exempt_reason=None,
            currency=currency,
            buyer_country_code=country,
            pricing_type=vat.pricing_type,
            invoice_notes=tuple(notes),
            vat_number_error=vat_number_error,
        )
        self._log_completed(result, t0)
        return result

    def summary(self, country_code: str, config: RateConfig) -> VatSummary:
        """Region, applicability and rate for a country, for display."""
        code = _normalize_country(country_code)
        applicable = config.vat.enabled and config.vat.is_applicable_country(code)
        if code in UK_COUNTRIES:
            region = "UK"
        elif code in EU_COUNTRIES:
            region = "EU"
        else:
            region = "Other"
        return VatSummary(
            country_code=code,
            vat_enabled=config.vat.enabled,
            vat_applicable=applicable,
            rate=config.vat.rate_for_country(code) if applicable else _ZERO,
            pricing_type=config.vat.pricing_type,
            region=region,
            reverse_charge_available=applicable and config.vat.reverse_charge_enabled,
        )

    @staticmethod
    def _log_completed(result: VatResult, t0: float) -> None:
        logger.info("vat_calculation_completed", extra={
            "vat_applicable": result.vat_applicable,
            "rate": str(result.rate),
            "vat_amount": result.vat_amount_minor_units,
            "net_amount": result.net_amount_minor_units,
            "reverse_charge": result.reverse_charge,
            "exempt_reason": result.exempt_reason.value if result.exempt_reason else None,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
