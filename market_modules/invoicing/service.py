"""
Invoice Builder (``market_modules.invoicing.service``).

Builds a tax invoice from one settlement, on demand.

* Idempotent: the second request for a settlement returns the first invoice
  (``created=False``) and does not send it again.
* Numbering: ``{prefix}-{n}`` from the locked ``invoice:{prefix}`` counter.
  The counter increment and the invoice insert commit together, so a
  rejected insert leaves no gap in the sequence.
* Delivery happens after the invoice is committed.  Its outcome is recorded
  on the invoice and can be retried; it never undoes the invoice.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market_config.schema import InvoiceSettings
from market_engines.vat import EXEMPT_REASON_TEXT, VatExemptReason, check_vat_number
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.domain.currency import format_minor_units
from market_kernel.exceptions import (
    DeliveryFailureError,
    InvoiceNotFoundError,
    SettlementNotFoundError,
    ValidationError,
)
from market_kernel.logging_config import LogContext, get_logger
from market_kernel.services.sequence_service import SequenceService
from market_modules.invoicing.models import (
    BuyerOverrides,
    BuyerSnapshot,
    DeliveryOutcome,
    DeliveryStatus,
    Invoice,
    InvoiceOutcome,
    InvoicePage,
    InvoiceStatus,
    PlatformSnapshot,
    PricingBreakdown,
    SellerSnapshot,
)
from market_modules.invoicing.notifier import InvoiceNotifier
from market_modules.invoicing.orm import InvoiceModel
from market_modules.parties.directory import PartyDirectory, SqlPartyDirectory
from market_modules.rates.service import RateConfigStore
from market_modules.settlement.models import Settlement, SettlementStatus
from market_modules.settlement.orm import SettlementModel

logger = get_logger("modules.invoicing.service")


def exemption_text(settlement: Settlement) -> str | None:
    """Invoice prose for a settlement that charged no VAT."""
    if settlement.reverse_charge:
        return EXEMPT_REASON_TEXT[VatExemptReason.REVERSE_CHARGE]
    if settlement.vat_exempt_reason is not None:
        return EXEMPT_REASON_TEXT[settlement.vat_exempt_reason]
    return None


class InvoiceBuilder:
    """
    Get-or-create invoices for settlements.

    Contract:
        Write methods own the commit/rollback boundary.  Without a notifier
        every invoice is recorded with delivery status ``skipped``.
    """

    def __init__(
        self,
        session: Session,
        notifier: InvoiceNotifier | None = None,
        clock: Clock | None = None,
        party_directory: PartyDirectory | None = None,
        rate_store: RateConfigStore | None = None,
    ):
        self._session = session
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._parties = party_directory or SqlPartyDirectory(session)
        self._rates = rate_store or RateConfigStore(session, self._clock)
        self._sequences = SequenceService(session)

    # =========================================================================
    # Queries
    # =========================================================================

    def _row_for_settlement(self, settlement_id: UUID) -> InvoiceModel | None:
        return self._session.execute(
            select(InvoiceModel).where(InvoiceModel.settlement_id == settlement_id)
        ).scalar_one_or_none()

    def _row_for_number(self, invoice_number: str) -> InvoiceModel:
        row = self._session.execute(
            select(InvoiceModel).where(InvoiceModel.invoice_number == invoice_number)
        ).scalar_one_or_none()
        if row is None:
            raise InvoiceNotFoundError(invoice_number)
        return row

    def get_by_number(self, invoice_number: str) -> Invoice:
        return self._row_for_number(invoice_number).to_dto()

    def find_for_settlement(self, settlement_id: UUID) -> Invoice | None:
        row = self._row_for_settlement(settlement_id)
        return row.to_dto() if row is not None else None

    def invoices_for_buyer(
        self,
        buyer_id: UUID,
        page: int = 1,
        limit: int = 10,
        status: InvoiceStatus | None = None,
    ) -> InvoicePage:
        """A buyer's invoices, newest first."""
        if page < 1:
            raise ValidationError("page", page, "must be >= 1")
        if not 1 <= limit <= 100:
            raise ValidationError("limit", limit, "must be between 1 and 100")
        conditions = [InvoiceModel.buyer_id == buyer_id]
        if status is not None:
            conditions.append(InvoiceModel.status == status.value)
        total = self._session.execute(
            select(func.count(InvoiceModel.id)).where(*conditions)
        ).scalar_one()
        rows = self._session.execute(
            select(InvoiceModel)
            .where(*conditions)
            .order_by(InvoiceModel.issue_date.desc(), InvoiceModel.invoice_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return InvoicePage(
            items=tuple(row.to_dto() for row in rows),
            page=page,
            limit=limit,
            total=total,
        )

    # =========================================================================
    # Get-or-create
    # =========================================================================

    def get_invoice(
        self,
        settlement_id: UUID,
        actor_id: UUID,
        buyer_overrides: BuyerOverrides | None = None,
    ) -> InvoiceOutcome:
        """
        The invoice for ``settlement_id``, creating it on first request.

        Raises:
            SettlementNotFoundError: if the settlement does not exist.
        """
        with LogContext.bind(settlement_id=str(settlement_id)):
            existing = self._row_for_settlement(settlement_id)
            if existing is not None:
                return InvoiceOutcome(invoice=existing.to_dto(), created=False)

            settlement_row = self._session.get(SettlementModel, settlement_id)
            if settlement_row is None:
                raise SettlementNotFoundError(str(settlement_id))
            settlement = settlement_row.to_dto()
            settings = self._rates.current().config.invoice
            send = bool(settings.send_to_email and self._notifier is not None)

            try:
                number = self._sequences.next_value(
                    SequenceService.invoice_counter(settings.invoice_prefix),
                    start=settings.first_invoice_number,
                )
                invoice = self._build(
                    settlement,
                    f"{settings.invoice_prefix}-{number}",
                    settings,
                    buyer_overrides or BuyerOverrides(),
                    DeliveryStatus.PENDING if send else DeliveryStatus.SKIPPED,
                )
                row = InvoiceModel.from_dto(invoice, created_by_id=actor_id)
                self._session.add(row)
                self._session.flush()
                self._session.commit()
            except IntegrityError:
                # Lost a race for this settlement; our counter bump rolls back too.
                self._session.rollback()
                winner = self._row_for_settlement(settlement_id)
                if winner is None:
                    logger.error("invoice_create_failed", exc_info=True)
                    raise
                return InvoiceOutcome(invoice=winner.to_dto(), created=False)
            except Exception:
                self._session.rollback()
                logger.error("invoice_create_failed", exc_info=True)
                raise

            logger.info(
                "invoice_created",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "total": invoice.pricing.total,
                    "currency": invoice.pricing.currency,
                    "reverse_charge": invoice.pricing.reverse_charge,
                },
            )
            if send:
                invoice = self._deliver(row)
            return InvoiceOutcome(invoice=invoice, created=True)

    def _build(
        self,
        settlement: Settlement,
        invoice_number: str,
        settings: InvoiceSettings,
        overrides: BuyerOverrides,
        delivery_status: DeliveryStatus,
    ) -> Invoice:
        buyer_party = self._parties.get(settlement.buyer_id) if settlement.buyer_id else None
        email = overrides.email or (buyer_party.email if buyer_party else None) or settlement.buyer_email
        country = (
            overrides.country_code
            or settlement.buyer_country_code
            or (buyer_party.country_code if buyer_party else None)
        )
        vat_number = (
            overrides.vat_number
            or settlement.buyer_vat_number
            or (buyer_party.vat_number if buyer_party else None)
        )
        is_business = (
            overrides.is_business_buyer
            if overrides.is_business_buyer is not None
            else settlement.is_business_buyer or bool(buyer_party and buyer_party.is_business)
        )
        buyer = BuyerSnapshot(
            party_id=settlement.buyer_id,
            name=(
                overrides.name
                or (buyer_party.display_name if buyer_party else None)
                or email
                or "Customer"
            ),
            email=email,
            country_code=country.upper() if country else None,
            is_business_buyer=is_business,
            company_name=overrides.company_name or (buyer_party.company_name if buyer_party else None),
            vat_number=vat_number,
            vat_number_validated=bool(vat_number) and check_vat_number(vat_number, country).is_valid,
        )

        seller = None
        if settlement.seller_id is not None:
            seller_party = self._parties.get(settlement.seller_id)
            seller = SellerSnapshot(
                party_id=settlement.seller_id,
                name=seller_party.display_name if seller_party else str(settlement.seller_id),
                email=seller_party.email if seller_party else None,
            )

        b = settlement.breakdown
        return Invoice(
            id=uuid4(),
            invoice_number=invoice_number,
            settlement_id=settlement.id,
            buyer=buyer,
            seller=seller,
            platform=PlatformSnapshot(
                name=settings.company_name,
                address=settings.company_address,
                vat_number=settings.vat_number,
            ),
            pricing=PricingBreakdown(
                currency=settlement.currency,
                subtotal=b.gross - b.vat,
                vat_rate=settlement.vat_rate_applied,
                vat_amount=b.vat,
                total=b.gross,
                transaction_fee=b.transaction_fee,
                vat_applied=b.vat > 0,
                reverse_charge=settlement.reverse_charge,
                vat_exempt_reason=settlement.vat_exempt_reason,
            ),
            vat_exempt_text=exemption_text(settlement),
            status=(
                InvoiceStatus.REFUNDED
                if settlement.status is SettlementStatus.REFUNDED
                else InvoiceStatus.PAID
            ),
            issue_date=self._clock.now(),
            delivery_status=delivery_status,
        )

    # =========================================================================
    # Delivery
    # =========================================================================

    def _deliver(self, row: InvoiceModel) -> Invoice:
        """
        Hand the invoice to the notifier and record what happened.

        If the outcome cannot be recorded the invoice is returned as last
        committed, still PENDING or FAILED, so a later retry picks it up.
        """
        invoice = row.to_dto()
        try:
            outcome = self._notifier.send_invoice(invoice)
        except Exception as exc:
            # A crashing notifier counts as a failed delivery, never a failed invoice.
            outcome = DeliveryOutcome(success=False, error=f"{type(exc).__name__}: {exc}")

        try:
            row.delivery_attempts += 1
            if outcome.success:
                row.delivery_status = DeliveryStatus.SENT.value
                row.delivery_error = None
                row.delivered_at = self._clock.now()
            else:
                row.delivery_status = DeliveryStatus.FAILED.value
                row.delivery_error = (outcome.error or "unknown error")[:500]
            self._session.commit()
        except Exception:
            # The invoice itself is already committed; report it as it stands.
            self._session.rollback()
            logger.error(
                "invoice_delivery_record_failed",
                extra={"invoice_number": invoice.invoice_number, "sent": outcome.success},
                exc_info=True,
            )
            return invoice

        if outcome.success:
            logger.info(
                "invoice_delivered",
                extra={"invoice_number": row.invoice_number, "attempts": row.delivery_attempts},
            )
        else:
            logger.warning(
                "invoice_delivery_failed",
                extra={
                    "invoice_number": row.invoice_number,
                    "attempts": row.delivery_attempts,
                    "error": row.delivery_error,
                },
            )
        return row.to_dto()

    def retry_delivery(self, invoice_number: str) -> Invoice:
        """
        Send an invoice again, whatever its previous delivery status.

        Raises:
            InvoiceNotFoundError: no such invoice.
            DeliveryFailureError: no notifier is configured.
        """
        row = self._row_for_number(invoice_number)
        if self._notifier is None:
            raise DeliveryFailureError(invoice_number, "no notifier configured")
        return self._deliver(row)

    def retry_failed_deliveries(self, limit: int = 100) -> list[Invoice]:
        """Retry the oldest failed or never-attempted deliveries."""
        if self._notifier is None:
            return []
        rows = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.delivery_status.in_(
                [DeliveryStatus.FAILED.value, DeliveryStatus.PENDING.value]
            ))
            .order_by(InvoiceModel.issue_date, InvoiceModel.invoice_number)
            .limit(limit)
        ).scalars().all()
        results = [self._deliver(row) for row in rows]
        logger.info(
            "invoice_delivery_retry_completed",
            extra={
                "attempted": len(results),
                "sent": sum(1 for i in results if i.delivery_status is DeliveryStatus.SENT),
            },
        )
        return results

    # =========================================================================
    # Display
    # =========================================================================

    @staticmethod
    def formatted(invoice: Invoice) -> dict[str, str | None]:
        """Display strings for templates; money rendered with its currency."""
        p = invoice.pricing
        return {
            "invoice_number": invoice.invoice_number,
            "issue_date": invoice.issue_date.strftime("%d %B %Y"),
            "status": invoice.status.value,
            "buyer_name": invoice.buyer.name,
            "buyer_company": invoice.buyer.company_name,
            "buyer_vat_number": invoice.buyer.vat_number,
            "seller_name": invoice.seller.name if invoice.seller else None,
            "platform_name": invoice.platform.name,
            "platform_vat_number": invoice.platform.vat_number or None,
            "subtotal": format_minor_units(p.subtotal, p.currency),
            "vat_rate": f"{(p.vat_rate * 100).normalize():f}%",
            "vat_amount": format_minor_units(p.vat_amount, p.currency),
            "total": format_minor_units(p.total, p.currency),
            "vat_note": invoice.vat_exempt_text,
        }
