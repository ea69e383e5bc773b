"""
Seller Tier Tracker (``market_modules.tiers.service``).

Responsibility
--------------
Keeps, per seller, the trailing-window net sales and the tier / royalty rate
that settlement snapshots.

Read path
---------
``current_rate`` is the fast read used by every settlement.  It never
recomputes; a seller without state gets one lazily at the lowest tier.  A
tier may be stale by at most one recompute cycle.

Write path
----------
``recompute_all`` runs the ``tiers.recompute`` batch task: one item per
seller, each in its own savepoint, so one seller's failure is logged,
counted and skipped without touching the others.  Each seller is committed
as soon as it is done, so its row lock is held for that seller only and a
new tier is visible before the run ends.  No cross-seller lock is taken.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market_batch.domain.types import BatchItemStatus
from market_batch.services.executor import BatchExecutor
from market_batch.tasks.base import default_task_registry
from market_config.schema import RateConfig
from market_engines.tiers import (
    TierEvaluation,
    TierEvaluator,
    TierTransition,
    convert_to_tier_currency,
    rolling_window_start,
)
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.logging_config import LogContext, get_logger
from market_modules.settlement.models import SettlementStatus, SourceType
from market_modules.settlement.orm import SettlementModel
from market_modules.tiers.models import (
    RecomputeError,
    RecomputeSummary,
    SellerTierState,
    TierRate,
)
from market_modules.tiers.orm import SellerTierStateModel, TierHistoryModel

logger = get_logger("modules.tiers.service")


class SellerTierTracker:
    """
    Per-seller tier state.

    Contract:
        ``current_rate`` and ``apply_recompute`` join the caller's
        transaction.  ``recompute_seller`` and ``recompute_all`` own their
        commit/rollback boundary.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        evaluator: TierEvaluator | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._evaluator = evaluator or TierEvaluator()

    # =========================================================================
    # Reads
    # =========================================================================

    def _state_row(self, seller_id: UUID, lock: bool = False) -> SellerTierStateModel | None:
        stmt = select(SellerTierStateModel).where(SellerTierStateModel.seller_id == seller_id)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_state(self, seller_id: UUID) -> SellerTierState | None:
        row = self._state_row(seller_id)
        if row is None:
            return None
        history = self._session.execute(
            select(TierHistoryModel)
            .where(TierHistoryModel.seller_id == seller_id)
            .order_by(TierHistoryModel.achieved_at, TierHistoryModel.created_at)
        ).scalars().all()
        return row.to_dto(history=[h.to_dto() for h in history])

    def current_rate(self, seller_id: UUID, config: RateConfig, actor_id: UUID) -> TierRate:
        """
        The seller's stored tier and royalty rate.

        A seller seen for the first time gets state at the lowest tier.  Two
        sessions racing to create it both end up reading the same row.
        """
        row = self._state_row(seller_id)
        if row is not None:
            return TierRate(
                seller_id=seller_id,
                tier=row.current_tier,
                royalty_rate=row.current_royalty_rate,
            )

        row = self._create_state(seller_id, config, actor_id)
        if row is None:
            row = self._state_row(seller_id)
            if row is None:
                raise RuntimeError(f"tier state for {seller_id} vanished after conflict")
            return TierRate(
                seller_id=seller_id,
                tier=row.current_tier,
                royalty_rate=row.current_royalty_rate,
            )
        return TierRate(
            seller_id=seller_id,
            tier=row.current_tier,
            royalty_rate=row.current_royalty_rate,
            created=True,
        )

    def _create_state(
        self,
        seller_id: UUID,
        config: RateConfig,
        actor_id: UUID,
    ) -> SellerTierStateModel | None:
        """Insert lowest-tier state under a savepoint; None if another session won."""
        tier = config.lowest_tier()
        now = self._clock.now()
        savepoint = self._session.begin_nested()
        try:
            row = SellerTierStateModel(
                seller_id=seller_id,
                current_tier=tier.name,
                current_royalty_rate=tier.royalty_rate,
                tier_currency=config.tier_currency,
                next_recompute_due=now,
                created_by_id=actor_id,
            )
            self._session.add(row)
            self._session.add(TierHistoryModel(
                seller_id=seller_id,
                tier=tier.name,
                royalty_rate=tier.royalty_rate,
                achieved_at=now,
                net_sales_at_change=0,
                created_by_id=actor_id,
            ))
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("seller_tier_state_race", extra={"seller_id": str(seller_id)})
            return None

        logger.info(
            "seller_tier_state_created",
            extra={"seller_id": str(seller_id), "tier": tier.name},
        )
        return row

    def sellers_to_recompute(self) -> list[UUID]:
        """Every seller with tier state or at least one resource sale."""
        with_state = self._session.execute(
            select(SellerTierStateModel.seller_id)
        ).scalars().all()
        with_sales = self._session.execute(
            select(SettlementModel.seller_id)
            .where(
                SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
                SettlementModel.seller_id.is_not(None),
            )
            .distinct()
        ).scalars().all()
        return sorted(set(with_state) | set(with_sales), key=str)

    # =========================================================================
    # Recompute
    # =========================================================================

    def _sales_by_currency(
        self,
        seller_id: UUID,
        as_of: datetime,
        since: datetime | None = None,
    ) -> list[tuple[str, int, int, int]]:
        """(currency, net sales, earnings, count) over completed resource sales."""
        net = SettlementModel.gross_amount - SettlementModel.vat_amount
        stmt = (
            select(
                SettlementModel.currency,
                func.coalesce(func.sum(net), 0),
                func.coalesce(func.sum(SettlementModel.seller_earnings), 0),
                func.count(SettlementModel.id),
            )
            .where(
                SettlementModel.seller_id == seller_id,
                SettlementModel.source_type == SourceType.RESOURCE_SALE.value,
                SettlementModel.status == SettlementStatus.COMPLETED.value,
                SettlementModel.occurred_at <= as_of,
            )
            .group_by(SettlementModel.currency)
        )
        if since is not None:
            stmt = stmt.where(SettlementModel.occurred_at >= since)
        return [
            (currency, int(net_sum), int(earnings_sum), int(count))
            for currency, net_sum, earnings_sum, count in self._session.execute(stmt).all()
        ]

    def _in_tier_currency(
        self,
        seller_id: UUID,
        rows: list[tuple[str, int, int, int]],
        config: RateConfig,
    ) -> tuple[int, int, int]:
        net_total = 0
        earnings_total = 0
        count_total = 0
        for currency, net_sum, earnings_sum, count in rows:
            net_converted = convert_to_tier_currency(net_sum, currency, config)
            earnings_converted = convert_to_tier_currency(earnings_sum, currency, config)
            if net_converted is None or earnings_converted is None:
                logger.warning(
                    "tier_currency_conversion_missing",
                    extra={
                        "seller_id": str(seller_id),
                        "currency": currency,
                        "tier_currency": config.tier_currency,
                        "skipped_sales": count,
                    },
                )
                continue
            net_total += net_converted
            earnings_total += earnings_converted
            count_total += count
        return net_total, earnings_total, count_total

    def apply_recompute(
        self,
        seller_id: UUID,
        config: RateConfig,
        as_of: datetime,
        actor_id: UUID,
    ) -> TierEvaluation:
        """Recompute one seller inside the caller's transaction."""
        rolling_net, _, rolling_count = self._in_tier_currency(
            seller_id,
            self._sales_by_currency(seller_id, as_of, rolling_window_start(as_of, config)),
            config,
        )
        lifetime_net, lifetime_earnings, lifetime_count = self._in_tier_currency(
            seller_id, self._sales_by_currency(seller_id, as_of), config,
        )

        row = self._state_row(seller_id, lock=True)
        if row is None:
            self._create_state(seller_id, config, actor_id)
            row = self._state_row(seller_id, lock=True)
            if row is None:
                raise RuntimeError(f"tier state for {seller_id} could not be created")

        evaluation = self._evaluator.evaluate(row.current_tier, rolling_net, config)
        tier = evaluation.tier

        if evaluation.changed:
            self._session.add(TierHistoryModel(
                seller_id=seller_id,
                tier=tier.name,
                previous_tier=row.current_tier,
                royalty_rate=tier.royalty_rate,
                achieved_at=as_of,
                net_sales_at_change=rolling_net,
                created_by_id=actor_id,
            ))
            logger.info(
                "tier_changed",
                extra={
                    "seller_id": str(seller_id),
                    "from_tier": row.current_tier,
                    "to_tier": tier.name,
                    "transition": evaluation.transition.value,
                    "net_sales": rolling_net,
                },
            )
            row.current_tier = tier.name

        # The rate follows the config even when the tier name is unchanged.
        row.current_royalty_rate = tier.royalty_rate
        row.tier_currency = config.tier_currency
        row.rolling_net_sales_12mo = rolling_net
        row.rolling_sale_count_12mo = rolling_count
        row.lifetime_net_sales = lifetime_net
        row.lifetime_earnings = lifetime_earnings
        row.lifetime_sale_count = lifetime_count
        row.last_recomputed_at = as_of
        row.next_recompute_due = as_of + timedelta(hours=config.recompute_interval_hours)
        row.updated_by_id = actor_id
        self._session.flush()
        return evaluation

    def recompute_seller(
        self,
        seller_id: UUID,
        config: RateConfig,
        actor_id: UUID,
    ) -> TierEvaluation:
        """Recompute a single seller now and commit."""
        with LogContext.bind(seller_id=str(seller_id)):
            try:
                evaluation = self.apply_recompute(seller_id, config, self._clock.now(), actor_id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.error("tier_recompute_failed", exc_info=True)
                raise
        return evaluation

    def recompute_all(self, config: RateConfig, actor_id: UUID) -> RecomputeSummary:
        """
        Recompute every seller.

        Returns counts of recalculated / upgraded / downgraded / unchanged
        sellers and of errors.  A failing seller never aborts the run.
        Every seller is committed on its own; a crash part way through
        leaves the sellers already done in place.
        """
        from market_batch.tasks.tier_tasks import TierRecomputeTask

        registry = default_task_registry()
        task = TierRecomputeTask(config, clock=self._clock)
        registry.register(task)
        executor = BatchExecutor(self._session, registry, clock=self._clock, commit_each_item=True)

        try:
            run = executor.run(task.task_type, actor_id, parameters={"actor_id": str(actor_id)})
            self._session.commit()
        except Exception:
            self._session.rollback()
            logger.error("tier_recompute_all_failed", exc_info=True)
            raise

        counts = {t: 0 for t in TierTransition}
        error_details = []
        for item in run.item_results:
            if item.status is BatchItemStatus.SUCCEEDED:
                counts[TierTransition(item.result_data["transition"])] += 1
            elif item.status is BatchItemStatus.FAILED:
                error_details.append(RecomputeError(
                    seller_id=item.item_key,
                    error_code=item.error_code or "UNKNOWN",
                    error_message=item.error_message or "",
                ))

        summary = RecomputeSummary(
            recalculated=run.succeeded,
            upgraded=counts[TierTransition.UPGRADED],
            downgraded=counts[TierTransition.DOWNGRADED],
            unchanged=counts[TierTransition.UNCHANGED],
            errors=len(error_details),
            error_details=tuple(error_details),
            job_id=run.job_id,
            duration_ms=run.duration_ms,
        )
        logger.info(
            "tier_recompute_completed",
            extra={
                "recalculated": summary.recalculated,
                "upgraded": summary.upgraded,
                "downgraded": summary.downgraded,
                "unchanged": summary.unchanged,
                "errors": summary.errors,
            },
        )
        return summary
