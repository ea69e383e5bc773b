"""
Rate configuration loader (``market_config.loader``).

Responsibility
--------------
Loads RateConfig YAML files and converts between plain dicts (YAML / the
JSON payload stored by the rate store) and the frozen ``RateConfig`` schema.

Invariants enforced
-------------------
* Rates are parsed into ``Decimal`` via ``str`` so ``0.2`` in YAML becomes
  exactly ``Decimal("0.2")``.
* Amounts must be integers (minor units); anything else is rejected.
* ``rate_config_to_dict`` followed by ``parse_rate_config`` returns an equal
  RateConfig, and ``compute_checksum`` of the dict is stable.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError`` from the schema.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from market_config.schema import (
    InvoiceSettings,
    PricingType,
    RateConfig,
    TierDefinition,
    TransactionFeeRule,
    VatSettings,
)
from market_kernel.domain.money import to_rate
from market_kernel.logging_config import get_logger
from market_kernel.utils.hashing import hash_payload

logger = get_logger("config.loader")

DEFAULT_SET_PATH = Path(__file__).parent / "sets" / "default.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _amount(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer minor-unit amount, got {value!r}")
    return value


def _optional_amount(name: str, value: Any) -> int | None:
    if value is None:
        return None
    return _amount(name, value)


def parse_tier(data: dict[str, Any]) -> TierDefinition:
    """
    Parse one tier.

    ``platform_fee_rate`` is optional; when present it must be the exact
    complement of ``royalty_rate``.
    """
    royalty_rate = to_rate(data["royalty_rate"])
    if "platform_fee_rate" in data:
        platform_fee_rate = to_rate(data["platform_fee_rate"])
        if royalty_rate + platform_fee_rate != Decimal("1"):
            raise ValueError(
                f"tier {data['name']}: royalty_rate + platform_fee_rate must equal 1"
            )
    return TierDefinition(
        name=data["name"],
        royalty_rate=royalty_rate,
        min_net_sales=_amount("min_net_sales", data["min_net_sales"]),
        max_net_sales=_optional_amount("max_net_sales", data.get("max_net_sales")),
        description=data.get("description", ""),
    )


def parse_vat(data: dict[str, Any]) -> VatSettings:
    country_rates = tuple(
        sorted((code.upper(), to_rate(rate)) for code, rate in (data.get("country_rates") or {}).items())
    )
    return VatSettings(
        enabled=bool(data.get("enabled", True)),
        default_rate=to_rate(data.get("default_rate", "0.20")),
        pricing_type=PricingType(data.get("pricing_type", "inclusive")),
        applicable_jurisdictions=tuple(
            str(token).upper() for token in data.get("applicable_jurisdictions", ("UK", "EU"))
        ),
        country_rates=country_rates,
        reverse_charge_enabled=bool(data.get("reverse_charge_enabled", True)),
        domestic_country=str(data.get("domestic_country", "GB")).upper(),
    )


def parse_invoice(data: dict[str, Any]) -> InvoiceSettings:
    defaults = InvoiceSettings()
    return InvoiceSettings(
        auto_generate=bool(data.get("auto_generate", defaults.auto_generate)),
        send_to_email=bool(data.get("send_to_email", defaults.send_to_email)),
        company_name=data.get("company_name", defaults.company_name),
        company_address=data.get("company_address", defaults.company_address),
        vat_number=data.get("vat_number", defaults.vat_number),
        invoice_prefix=data.get("invoice_prefix", defaults.invoice_prefix),
        first_invoice_number=_amount(
            "first_invoice_number",
            data.get("first_invoice_number", defaults.first_invoice_number),
        ),
        support_email=data.get("support_email", defaults.support_email),
    )


def parse_rate_config(data: dict[str, Any]) -> RateConfig:
    """
    Parse a ``RateConfig`` from a dict.

    Preconditions:
        - ``data`` contains a non-empty ``tiers`` list.
    Raises:
        KeyError: if required keys are missing.
        ValueError: if any value violates the schema.
    """
    tiers = tuple(parse_tier(t) for t in data["tiers"])
    fees = tuple(
        TransactionFeeRule(
            currency=str(currency).upper(),
            fee_minor_units=_amount("fee_minor_units", rule["fee_minor_units"]),
            threshold_minor_units=_amount(
                "threshold_minor_units", rule["threshold_minor_units"]
            ),
        )
        for currency, rule in sorted((data.get("transaction_fees") or {}).items())
    )
    payouts = tuple(
        (str(currency).upper(), _amount("minimum_payout", amount))
        for currency, amount in sorted((data.get("minimum_payouts") or {}).items())
    )
    conversion = tuple(
        (str(currency).upper(), to_rate(rate))
        for currency, rate in sorted((data.get("tier_conversion_rates") or {}).items())
    )

    config = RateConfig(
        tiers=tiers,
        vat=parse_vat(data.get("vat") or {}),
        transaction_fees=fees,
        minimum_payouts=payouts,
        invoice=parse_invoice(data.get("invoice") or {}),
        tier_currency=str(data.get("tier_currency", "GBP")).upper(),
        tier_conversion_rates=conversion,
        tier_window_months=int(data.get("tier_window_months", 12)),
        recompute_interval_hours=int(data.get("recompute_interval_hours", 24)),
    )
    logger.debug(
        "rate_config_parsed",
        extra={
            "tier_count": len(config.tiers),
            "vat_enabled": config.vat.enabled,
            "pricing_type": config.vat.pricing_type.value,
        },
    )
    return config


def _rate_str(rate: Decimal) -> str:
    return format(rate.normalize(), "f")


def rate_config_to_dict(config: RateConfig) -> dict[str, Any]:
    """Serialize a RateConfig into a JSON/YAML-safe dict (rates as strings)."""
    return {
        "tiers": [
            {
                "name": t.name,
                "royalty_rate": _rate_str(t.royalty_rate),
                "min_net_sales": t.min_net_sales,
                "max_net_sales": t.max_net_sales,
                "description": t.description,
            }
            for t in config.tiers
        ],
        "vat": {
            "enabled": config.vat.enabled,
            "default_rate": _rate_str(config.vat.default_rate),
            "pricing_type": config.vat.pricing_type.value,
            "applicable_jurisdictions": list(config.vat.applicable_jurisdictions),
            "country_rates": {
                code: _rate_str(rate) for code, rate in config.vat.country_rates
            },
            "reverse_charge_enabled": config.vat.reverse_charge_enabled,
            "domestic_country": config.vat.domestic_country,
        },
        "transaction_fees": {
            r.currency: {
                "fee_minor_units": r.fee_minor_units,
                "threshold_minor_units": r.threshold_minor_units,
            }
            for r in config.transaction_fees
        },
        "minimum_payouts": dict(config.minimum_payouts),
        "invoice": {
            "auto_generate": config.invoice.auto_generate,
            "send_to_email": config.invoice.send_to_email,
            "company_name": config.invoice.company_name,
            "company_address": config.invoice.company_address,
            "vat_number": config.invoice.vat_number,
            "invoice_prefix": config.invoice.invoice_prefix,
            "first_invoice_number": config.invoice.first_invoice_number,
            "support_email": config.invoice.support_email,
        },
        "tier_currency": config.tier_currency,
        "tier_conversion_rates": {
            code: _rate_str(rate) for code, rate in config.tier_conversion_rates
        },
        "tier_window_months": config.tier_window_months,
        "recompute_interval_hours": config.recompute_interval_hours,
    }


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    return hash_payload(data)


def load_rate_config(path: Path = DEFAULT_SET_PATH) -> RateConfig:
    """Load and parse a RateConfig YAML file."""
    logger.info("rate_config_loading", extra={"path": str(path)})
    return parse_rate_config(load_yaml_file(path))
