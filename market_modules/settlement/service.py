"""
Transaction Settlement (``market_modules.settlement.service``).

Turns a captured payment into an immutable four-way split:

    payment event -> VAT (captured gross, always inclusive)
                  -> seller tier snapshot (resource sales only)
                  -> transaction fee (resource sales below the ticket threshold)
                  -> commission by rate, earnings by subtraction
                  -> one row, committed atomically

Idempotency
-----------
The gateway transaction id is the idempotency key.  A replay is answered
from the stored row (``created=False``).  Two deliveries racing past the
read both try to insert; the UNIQUE constraint rejects the loser, whose
transaction is rolled back and resolved to the winner's row.

Failure modes
-------------
Every rejection happens before anything is written: invalid event, no
active rate configuration, unsupported currency, unknown seller, or a
split that would break the conservation law.  A persistence failure rolls
back everything, including a lazily created tier state.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market_engines.settlement import SettlementCalculator
from market_engines.vat import AmountBasis, VatCalculator, VatInput
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.exceptions import (
    InvalidStatusTransitionError,
    SettlementNotFoundError,
    UnknownSellerError,
)
from market_kernel.logging_config import LogContext, get_logger
from market_modules.parties.directory import PartyDirectory, SqlPartyDirectory
from market_modules.parties.models import PartyRole
from market_modules.rates.service import RateConfigStore
from market_modules.settlement.models import (
    ALLOWED_TRANSITIONS,
    AdjustmentKind,
    MonetaryBreakdown,
    PaymentEvent,
    Settlement,
    SettlementAdjustment,
    SettlementOutcome,
    SettlementStatus,
    SourceType,
)
from market_modules.settlement.orm import SettlementAdjustmentModel, SettlementModel
from market_modules.tiers.service import SellerTierTracker

logger = get_logger("modules.settlement.service")

_ZERO_RATE = Decimal("0")
_NO_MOVEMENT = MonetaryBreakdown(
    gross=0, vat=0, transaction_fee=0, platform_commission=0, seller_earnings=0,
)


class SettlementService:
    """
    Settles captured payments and records their status transitions.

    Contract:
        Write methods own the commit/rollback boundary.  Collaborators not
        supplied are built on the same session.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        party_directory: PartyDirectory | None = None,
        rate_store: RateConfigStore | None = None,
        tier_tracker: SellerTierTracker | None = None,
        vat_calculator: VatCalculator | None = None,
        split_calculator: SettlementCalculator | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._parties = party_directory or SqlPartyDirectory(session)
        self._rates = rate_store or RateConfigStore(session, self._clock)
        self._tiers = tier_tracker or SellerTierTracker(session, self._clock)
        self._vat = vat_calculator or VatCalculator()
        self._splitter = split_calculator or SettlementCalculator()

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, settlement_id: UUID) -> Settlement:
        """
        Raises:
            SettlementNotFoundError: if no such settlement exists.
        """
        row = self._session.get(SettlementModel, settlement_id)
        if row is None:
            raise SettlementNotFoundError(str(settlement_id))
        return row.to_dto()

    def get_by_gateway_id(self, gateway_transaction_id: str) -> Settlement | None:
        row = self._session.execute(
            select(SettlementModel).where(
                SettlementModel.gateway_transaction_id == gateway_transaction_id
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def adjustments_for(self, settlement_id: UUID) -> list[SettlementAdjustment]:
        rows = self._session.execute(
            select(SettlementAdjustmentModel)
            .where(SettlementAdjustmentModel.settlement_id == settlement_id)
            .order_by(SettlementAdjustmentModel.occurred_at, SettlementAdjustmentModel.created_at)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # =========================================================================
    # Settle
    # =========================================================================

    def settle(self, event: PaymentEvent, actor_id: UUID) -> SettlementOutcome:
        """
        Settle ``event`` at most once.

        Raises:
            RateConfigNotFoundError / RateConfigInvalidError: no usable rates.
            UnsupportedCurrencyError: the VAT calculation rejected the currency.
            UnknownSellerError: resource sale for a seller the directory
                does not know.
            ConservationViolationError: the split failed verification.
        """
        with LogContext.bind(correlation_id=event.gateway_transaction_id):
            existing = self.get_by_gateway_id(event.gateway_transaction_id)
            if existing is not None:
                logger.info(
                    "settlement_replayed",
                    extra={"settlement_id": str(existing.id), "source_type": existing.source_type.value},
                )
                return SettlementOutcome(settlement=existing, created=False)

            settlement = self._compute(event, actor_id)

            try:
                self._session.add(SettlementModel.from_dto(settlement, created_by_id=actor_id))
                self._session.flush()
                self._session.commit()
            except IntegrityError:
                self._session.rollback()
                winner = self.get_by_gateway_id(event.gateway_transaction_id)
                if winner is None:
                    logger.error("settlement_failed", exc_info=True)
                    raise
                logger.info(
                    "settlement_replayed",
                    extra={"settlement_id": str(winner.id), "race": True},
                )
                return SettlementOutcome(settlement=winner, created=False)
            except Exception:
                self._session.rollback()
                logger.error("settlement_failed", exc_info=True)
                raise

            logger.info(
                "settlement_created",
                extra={
                    "settlement_id": str(settlement.id),
                    "source_type": settlement.source_type.value,
                    "currency": settlement.currency,
                    "gross": settlement.breakdown.gross,
                    "vat": settlement.breakdown.vat,
                    "fee": settlement.breakdown.transaction_fee,
                    "commission": settlement.breakdown.platform_commission,
                    "earnings": settlement.breakdown.seller_earnings,
                    "tier": settlement.tier_snapshot,
                    "rate_config_version": settlement.rate_config_version,
                },
            )
            return SettlementOutcome(settlement=settlement, created=True)

    def _compute(self, event: PaymentEvent, actor_id: UUID) -> Settlement:
        """Everything that can reject a payment, before any write."""
        snapshot = self._rates.require_current()
        config = snapshot.config

        vat = self._vat.calculate(
            VatInput(
                amount_minor_units=event.gross_amount_minor_units,
                currency=event.currency,
                buyer_country_code=event.buyer_country_code,
                is_business_buyer=event.is_business_buyer,
                buyer_vat_number=event.buyer_vat_number,
                amount_basis=AmountBasis.CAPTURED_GROSS,
            ),
            config,
        )

        if event.source_type is SourceType.RESOURCE_SALE:
            seller = self._parties.get(event.seller_id)
            if seller is None or seller.role is not PartyRole.SELLER:
                logger.warning("settlement_unknown_seller", extra={"seller_id": str(event.seller_id)})
                raise UnknownSellerError(str(event.seller_id))
            tier = self._tiers.current_rate(event.seller_id, config, actor_id)
            royalty_rate = tier.royalty_rate
            tier_name = tier.tier
            fee = config.transaction_fee_for(vat.currency, event.gross_amount_minor_units)
        else:
            royalty_rate = _ZERO_RATE
            tier_name = None
            fee = 0

        split = self._splitter.split(
            gross=event.gross_amount_minor_units,
            vat=vat.vat_amount_minor_units,
            transaction_fee=fee,
            royalty_rate=royalty_rate,
        )

        return Settlement(
            id=uuid4(),
            gateway_transaction_id=event.gateway_transaction_id,
            source_type=event.source_type,
            currency=vat.currency,
            breakdown=MonetaryBreakdown(
                gross=split.gross,
                vat=split.vat,
                transaction_fee=split.transaction_fee,
                platform_commission=split.platform_commission,
                seller_earnings=split.seller_earnings,
            ),
            buyer_country_code=vat.buyer_country_code or None,
            is_business_buyer=event.is_business_buyer,
            buyer_vat_number=event.buyer_vat_number,
            vat_rate_applied=vat.rate,
            reverse_charge=vat.reverse_charge,
            vat_exempt_reason=vat.exempt_reason,
            royalty_rate_snapshot=royalty_rate,
            tier_snapshot=tier_name,
            rate_config_version=snapshot.version,
            seller_id=event.seller_id,
            buyer_id=event.buyer_id,
            occurred_at=event.occurred_at,
            buyer_email=event.buyer_email,
        )

    # =========================================================================
    # Status transitions
    # =========================================================================

    def refund(
        self,
        settlement_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SettlementAdjustment:
        """Full refund of a completed or disputed settlement."""
        return self._transition(
            settlement_id, SettlementStatus.REFUNDED, AdjustmentKind.REFUND, actor_id, reason,
        )

    def open_dispute(
        self,
        settlement_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SettlementAdjustment:
        """Hold a completed settlement while a chargeback is investigated."""
        return self._transition(
            settlement_id, SettlementStatus.DISPUTED, AdjustmentKind.DISPUTE_HOLD, actor_id, reason,
        )

    def resolve_dispute(
        self,
        settlement_id: UUID,
        seller_won: bool,
        actor_id: UUID,
        reason: str | None = None,
    ) -> SettlementAdjustment:
        """Release the hold (seller won) or turn it into a refund."""
        if seller_won:
            return self._transition(
                settlement_id,
                SettlementStatus.COMPLETED,
                AdjustmentKind.DISPUTE_RELEASE,
                actor_id,
                reason,
            )
        return self.refund(settlement_id, actor_id, reason)

    def _transition(
        self,
        settlement_id: UUID,
        to_status: SettlementStatus,
        kind: AdjustmentKind,
        actor_id: UUID,
        reason: str | None,
    ) -> SettlementAdjustment:
        with LogContext.bind(settlement_id=str(settlement_id)):
            try:
                row = self._session.execute(
                    select(SettlementModel)
                    .where(SettlementModel.id == settlement_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if row is None:
                    raise SettlementNotFoundError(str(settlement_id))

                settlement = row.to_dto()
                from_status = settlement.status
                if to_status not in ALLOWED_TRANSITIONS[from_status]:
                    raise InvalidStatusTransitionError(
                        str(settlement_id), from_status.value, to_status.value,
                    )

                adjustment = SettlementAdjustment(
                    id=uuid4(),
                    settlement_id=settlement_id,
                    kind=kind,
                    from_status=from_status,
                    to_status=to_status,
                    deltas=_deltas(settlement.breakdown, from_status, to_status),
                    currency=settlement.currency,
                    reason=reason,
                    occurred_at=self._clock.now(),
                )
                row.status = to_status.value
                row.updated_by_id = actor_id
                self._session.add(
                    SettlementAdjustmentModel.from_dto(adjustment, created_by_id=actor_id)
                )
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning(
                    "settlement_transition_failed",
                    extra={"to_status": to_status.value},
                    exc_info=True,
                )
                raise

            logger.info(
                "settlement_status_changed",
                extra={
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                    "adjustment_kind": kind.value,
                    "gross_delta": adjustment.deltas.gross,
                },
            )
            return adjustment


def _deltas(
    split: MonetaryBreakdown,
    from_status: SettlementStatus,
    to_status: SettlementStatus,
) -> MonetaryBreakdown:
    if from_status is SettlementStatus.COMPLETED:
        # refund or hold: the whole split is reversed
        return split.negated()
    if to_status is SettlementStatus.COMPLETED:
        return split
    # disputed -> refunded: already reversed by the hold
    return _NO_MOVEMENT
