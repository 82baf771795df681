"""
Lottery bin count configuration.

A store declares how many lottery bins it uses. Changing that number
reconciles the bin rows of the store in one transaction:

- growing reactivates soft-deleted bins (lowest display_order first) and then
  creates new ones after the highest existing display_order;
- shrinking soft-deletes the highest display_order bins, and refuses the whole
  change if any of those bins still holds an ACTIVE pack.

``validate_bin_count_change`` is the read-only preview used by the
confirmation dialog; it predicts the same removal range.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Union
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.common.exceptions import (
    LotteryBinError, BinCountValidationError, StoreNotFoundError,
    BinsBlockedByActivePacksError, TransactionTimeoutError
)
from app.common.validators import parse_uuid, is_valid_bin_count
from app.core.config import settings
from app.core.query_metrics import QueryMetricsService, correlation_id_var, query_metrics_service
from app.database.database import set_transaction_timeout
from app.modules.lottery.models import LotteryBin, LotteryPack, PackStatus, bin_name
from app.modules.lottery.schemas import BinCountStatus, BinCountUpdateResult, BinCountValidation
from app.modules.stores.models import Store

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for "canceling statement due to statement timeout"
QUERY_CANCELED_PGCODE = "57014"


@dataclass
class BinChangePlan:
    """Row changes needed to move a store from its current bins to a target count."""
    to_reactivate: list = field(default_factory=list)
    new_display_orders: list = field(default_factory=list)
    to_deactivate: list = field(default_factory=list)
    bins_with_packs_count: int = 0
    blocked_count: int = 0

    @property
    def is_blocked(self) -> bool:
        return self.blocked_count > 0


def plan_bin_changes(bins: list, new_count: int) -> BinChangePlan:
    """
    Compute the bin changes for ``new_count`` without touching the database.

    ``bins`` are all bins of one store (active and inactive) with their
    ``packs`` collection limited to ACTIVE packs.
    """
    active = [b for b in bins if b.is_active]
    inactive = sorted((b for b in bins if not b.is_active), key=lambda b: b.display_order)
    plan = BinChangePlan()

    if new_count > len(active):
        needed = new_count - len(active)
        plan.to_reactivate = inactive[:needed]
        still_needed = needed - len(plan.to_reactivate)
        if still_needed > 0:
            start = max((b.display_order for b in bins), default=-1) + 1
            plan.new_display_orders = list(range(start, start + still_needed))

    elif new_count < len(active):
        to_remove = len(active) - new_count
        # Newest bins go first; the lower-numbered bins are always kept
        removal_range = sorted(active, key=lambda b: b.display_order, reverse=True)[:to_remove]
        for lottery_bin in removal_range:
            if lottery_bin.packs:
                plan.bins_with_packs_count += 1
            else:
                plan.to_deactivate.append(lottery_bin)
        plan.blocked_count = to_remove - len(plan.to_deactivate)

    return plan


def kept_display_order_threshold(active_orders: list, new_count: int) -> int:
    """
    Highest display_order that survives a shrink to ``new_count``.

    ``active_orders`` must be sorted ascending. With contiguous orders this is
    ``new_count - 1``; gaps left by deactivated bins shift it upwards.
    """
    if new_count <= 0:
        return -1
    return active_orders[min(new_count, len(active_orders)) - 1]


class LotteryBinCountService:
    """Service for lottery bin count configuration."""

    def __init__(
        self,
        db: Session,
        metrics: QueryMetricsService = query_metrics_service,
        max_bin_count: int = settings.LOTTERY_MAX_BIN_COUNT,
        transaction_timeout_ms: int = settings.LOTTERY_BIN_TX_TIMEOUT_MS
    ):
        self.db = db
        self.metrics = metrics
        self.max_bin_count = max_bin_count
        self.transaction_timeout_ms = transaction_timeout_ms

    def _get_store(self, store_id: UUID, tenant_id: Optional[UUID] = None, for_update: bool = False) -> Store:
        query = self.db.query(Store).filter(Store.id == store_id)
        if tenant_id is not None:
            query = query.filter(Store.tenant_id == tenant_id)
        if for_update:
            query = query.with_for_update()
        store = query.first()
        if not store:
            raise StoreNotFoundError(f"Store with ID {store_id} not found")
        return store

    def get_bin_count(self, store_id: Union[str, UUID], tenant_id: Optional[UUID] = None) -> BinCountStatus:
        """Configured bin count plus live statistics of the store's active bins."""
        store_uuid = parse_uuid(store_id, "store ID")
        store = self._get_store(store_uuid, tenant_id)

        active_query = self.db.query(LotteryBin).filter(
            LotteryBin.store_id == store.id,
            LotteryBin.is_active.is_(True)
        )
        active_bins = active_query.count()
        bins_with_packs = active_query.filter(
            LotteryBin.packs.any(LotteryPack.status == PackStatus.ACTIVE)
        ).count()

        return BinCountStatus(
            store_id=store.id,
            bin_count=store.lottery_bin_count,
            active_bins=active_bins,
            bins_with_packs=bins_with_packs,
            empty_bins=active_bins - bins_with_packs
        )

    def update_bin_count(
        self,
        store_id: Union[str, UUID],
        new_count: int,
        user_id: Union[str, UUID],
        tenant_id: Optional[UUID] = None
    ) -> BinCountUpdateResult:
        """
        Reconcile the store's bins to ``new_count`` active bins.

        Runs as a single transaction on ``self.db``: either every change is
        committed or none is. Raises BinsBlockedByActivePacksError without
        issuing any write when a bin to remove still holds an active pack.
        """
        store_uuid = parse_uuid(store_id, "store ID")
        user_uuid = parse_uuid(user_id, "user ID")
        if not is_valid_bin_count(new_count, self.max_bin_count):
            raise BinCountValidationError(
                f"Bin count must be an integer between 0 and {self.max_bin_count}"
            )

        deadline = time.monotonic() + self.transaction_timeout_ms / 1000
        try:
            set_transaction_timeout(self.db, self.transaction_timeout_ms)
            store = self._get_store(store_uuid, tenant_id, for_update=True)

            bins = self.db.query(LotteryBin).options(
                selectinload(LotteryBin.packs.and_(LotteryPack.status == PackStatus.ACTIVE))
            ).filter(
                LotteryBin.store_id == store.id
            ).order_by(LotteryBin.display_order.asc()).populate_existing().all()

            plan = plan_bin_changes(bins, new_count)
            if plan.is_blocked:
                raise BinsBlockedByActivePacksError(plan.blocked_count)

            previous_count = store.lottery_bin_count

            if plan.to_reactivate:
                self.db.query(LotteryBin).filter(
                    LotteryBin.id.in_([b.id for b in plan.to_reactivate])
                ).update(LotteryBin.reactivated_values(), synchronize_session=False)

            if plan.new_display_orders:
                self.db.add_all([
                    LotteryBin(
                        tenant_id=store.tenant_id,
                        store_id=store.id,
                        name=bin_name(order),
                        display_order=order,
                        is_active=True
                    )
                    for order in plan.new_display_orders
                ])

            if plan.to_deactivate:
                self.db.query(LotteryBin).filter(
                    LotteryBin.id.in_([b.id for b in plan.to_deactivate])
                ).update(LotteryBin.deactivated_values(), synchronize_session=False)

            store.lottery_bin_count = new_count
            self.db.flush()

            if time.monotonic() > deadline:
                raise TransactionTimeoutError(
                    f"Updating lottery bins exceeded {self.transaction_timeout_ms}ms; no changes were saved"
                )

            self.db.commit()

        except TransactionTimeoutError:
            self.db.rollback()
            self.metrics.record_transaction_timeout(
                f"lottery_bin_count.update store={store_uuid}", self.transaction_timeout_ms,
                correlation_id=correlation_id_var.get()
            )
            raise
        except LotteryBinError:
            self.db.rollback()
            raise
        except OperationalError as e:
            self.db.rollback()
            if getattr(e.orig, "pgcode", None) == QUERY_CANCELED_PGCODE:
                self.metrics.record_transaction_timeout(
                    f"lottery_bin_count.update store={store_uuid}", self.transaction_timeout_ms,
                    correlation_id=correlation_id_var.get()
                )
                raise TransactionTimeoutError(
                    f"Updating lottery bins exceeded {self.transaction_timeout_ms}ms; no changes were saved"
                )
            logger.error(f"Database error updating bin count for store {store_uuid}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error updating lottery bin count"
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error updating bin count for store {store_uuid}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error updating lottery bin count"
            )

        self.metrics.record_transaction_success()
        result = BinCountUpdateResult(
            previous_count=previous_count,
            new_count=new_count,
            bins_created=len(plan.new_display_orders),
            bins_reactivated=len(plan.to_reactivate),
            bins_deactivated=len(plan.to_deactivate),
            bins_with_packs_count=plan.bins_with_packs_count
        )
        logger.info(
            f"Lottery bin count for store {store_uuid} changed {previous_count} -> {new_count} "
            f"by user {user_uuid}: created={result.bins_created} "
            f"reactivated={result.bins_reactivated} deactivated={result.bins_deactivated}"
        )
        return result

    def validate_bin_count_change(
        self,
        store_id: Union[str, UUID],
        new_count: int,
        tenant_id: Optional[UUID] = None
    ) -> BinCountValidation:
        """Preview what update_bin_count would do, without writing anything."""
        store_uuid = parse_uuid(store_id, "store ID")
        if tenant_id is not None:
            self._get_store(store_uuid, tenant_id)

        active_orders = [
            order for (order,) in self.db.query(LotteryBin.display_order).filter(
                LotteryBin.store_id == store_uuid,
                LotteryBin.is_active.is_(True)
            ).order_by(LotteryBin.display_order.asc()).all()
        ]
        packed_orders = [
            order for (order,) in self.db.query(LotteryBin.display_order).join(LotteryBin.packs).filter(
                LotteryBin.store_id == store_uuid,
                LotteryBin.is_active.is_(True),
                LotteryPack.status == PackStatus.ACTIVE
            ).distinct().order_by(LotteryBin.display_order.desc()).all()
        ]

        current_count = len(active_orders)
        bins_to_add = max(0, new_count - current_count)
        bins_to_remove = max(0, current_count - new_count)

        bins_with_packs_blocking = 0
        if bins_to_remove > 0:
            threshold = kept_display_order_threshold(active_orders, new_count)
            bins_with_packs_blocking = sum(1 for order in packed_orders if order > threshold)

        if bins_with_packs_blocking > 0:
            message = (
                f"Cannot remove {bins_with_packs_blocking} bin(s): they contain active packs. "
                f"Move or close those packs before reducing the bin count."
            )
        elif bins_to_add > 0:
            message = f"This will add {bins_to_add} new bin(s)."
        elif bins_to_remove > 0:
            message = f"This will remove {bins_to_remove} empty bin(s)."
        else:
            message = "No changes needed."

        return BinCountValidation(
            allowed=bins_with_packs_blocking == 0,
            current_count=current_count,
            bins_to_add=bins_to_add,
            bins_to_remove=bins_to_remove,
            bins_with_packs_blocking=bins_with_packs_blocking,
            message=message
        )
