"""
Settlement Engine - Split a gross payment into VAT, fee, commission, earnings.

The conservation law

    gross == vat + transaction_fee + platform_commission + seller_earnings

holds exactly for every split this engine returns.  Only one figure is ever
produced by multiplication (the commission); earnings are derived by
subtraction, so rounding cannot leak a minor unit.

Usage:
    split = SettlementCalculator().split(
        gross=1000, vat=167, transaction_fee=0, royalty_rate=Decimal("0.60"),
    )
    split.platform_commission  # round(833 * 0.40) = 333
    split.seller_earnings      # 833 - 333 = 500
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from market_kernel.domain.money import apply_rate
from market_kernel.exceptions import ConservationViolationError, ValidationError

_ONE = Decimal("1")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class SettlementSplit:
    """The four-way split of one gross amount (minor units)."""

    gross: int
    vat: int
    transaction_fee: int
    platform_commission: int
    seller_earnings: int
    royalty_rate: Decimal

    @property
    def net(self) -> int:
        """Amount shared between platform and seller."""
        return self.gross - self.vat - self.transaction_fee

    @property
    def is_conserved(self) -> bool:
        return self.gross == (
            self.vat + self.transaction_fee + self.platform_commission + self.seller_earnings
        )

    def verify(self) -> None:
        """
        Raises:
            ConservationViolationError: if the components do not add up or
                any component is negative.
        """
        parts = (self.vat, self.transaction_fee, self.platform_commission, self.seller_earnings)
        if not self.is_conserved or any(p < 0 for p in parts):
            raise ConservationViolationError(
                gross=self.gross,
                vat=self.vat,
                fee=self.transaction_fee,
                commission=self.platform_commission,
                earnings=self.seller_earnings,
            )


class SettlementCalculator:
    """Pure split arithmetic.  No I/O."""

    def split(
        self,
        gross: int,
        vat: int,
        transaction_fee: int,
        royalty_rate: Decimal,
    ) -> SettlementSplit:
        """
        Split ``gross``.

        The fee is capped at what is left after VAT, so a tiny ticket never
        produces negative earnings.  ``royalty_rate`` of 0 gives the whole
        net to the platform (subscriptions, ad payments).

        Raises:
            ValidationError: on negative inputs or a rate outside [0, 1].
        """
        if gross < 0 or vat < 0 or transaction_fee < 0:
            raise ValidationError("amount", (gross, vat, transaction_fee), "cannot be negative")
        if vat > gross:
            raise ValidationError("vat", vat, "exceeds gross amount")
        if royalty_rate < _ZERO or royalty_rate > _ONE:
            raise ValidationError("royalty_rate", royalty_rate, "must be between 0 and 1")

        after_vat = gross - vat
        fee = min(transaction_fee, after_vat)
        net = after_vat - fee
        commission = apply_rate(net, _ONE - royalty_rate)
        earnings = net - commission

        split = SettlementSplit(
            gross=gross,
            vat=vat,
            transaction_fee=fee,
            platform_commission=commission,
            seller_earnings=earnings,
            royalty_rate=royalty_rate,
        )
        split.verify()
        return split
