"""
Batch task: Seller tier recomputation (wraps SellerTierTracker.apply_recompute).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from market_batch.domain.types import BatchItemStatus
from market_batch.tasks.base import BatchItemInput, BatchTaskResult
from market_config.schema import RateConfig
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.exceptions import MarketKernelError
from market_kernel.logging_config import LogContext


class TierRecomputeTask:
    """Batch task re-evaluating every seller's tier against one RateConfig.

    Parameters:
        actor_id: UUID string recorded on every written row (required).
        seller_ids: optional list of UUID strings restricting the run.
    """

    def __init__(self, config: RateConfig, clock: Clock | None = None):
        self._config = config
        self._clock = clock or SystemClock()

    @property
    def task_type(self) -> str:
        return "tiers.recompute"

    @property
    def description(self) -> str:
        return "Recompute rolling net sales and royalty tier for every seller"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        from market_modules.tiers.service import SellerTierTracker

        if parameters.get("seller_ids"):
            seller_ids = sorted((UUID(s) for s in parameters["seller_ids"]), key=str)
        else:
            seller_ids = SellerTierTracker(session, self._clock).sellers_to_recompute()

        return tuple(
            BatchItemInput(
                item_index=i,
                item_key=str(seller_id),
                payload={"seller_id": str(seller_id)},
            )
            for i, seller_id in enumerate(seller_ids)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        from market_modules.tiers.service import SellerTierTracker

        seller_id = UUID(item.payload["seller_id"])
        tracker = SellerTierTracker(session, self._clock)
        with LogContext.bind(seller_id=str(seller_id)):
            try:
                evaluation = tracker.apply_recompute(
                    seller_id,
                    self._config,
                    as_of,
                    UUID(parameters["actor_id"]),
                )
            except MarketKernelError as exc:
                return BatchTaskResult(
                    status=BatchItemStatus.FAILED,
                    error_code=exc.code,
                    error_message=str(exc),
                )
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "seller_id": str(seller_id),
                "tier": evaluation.tier.name,
                "previous_tier": evaluation.previous_tier_name,
                "transition": evaluation.transition.value,
                "net_sales": evaluation.net_sales,
            },
        )
