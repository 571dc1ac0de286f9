"""Eligibility filter: which pending orders a dispatch pass may consider."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
import logging

from ..errors import MissingGeoData
from ..models.domain import Order, OrderStatus, Warehouse

logger = logging.getLogger(__name__)


@dataclass
class EligibleOrder:
    """Pending order past its grace period, with its resolved warehouse."""

    order: Order
    warehouse: Warehouse
    weight_kg: float = 0.0


@dataclass
class EligibilityResult:
    """Outcome of filtering the pending orders for one pass."""

    eligible: List[EligibleOrder] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)  # younger than the grace period
    missing_geo: List[MissingGeoData] = field(default_factory=list)

    @property
    def missing_geo_order_ids(self) -> List[str]:
        return [e.order_id for e in self.missing_geo]


class EligibilityFilter:
    """Selects PENDING_ASSIGNMENT orders whose age is at least the grace period.

    Orders without destination coordinates, or whose warehouse cannot be
    resolved or has no coordinates, are left pending and reported as
    `MissingGeoData`. They are not retried until the data is fixed.
    """

    def __init__(self, grace_period_seconds: float = 30.0):
        self.grace_period_seconds = grace_period_seconds

    def is_past_grace(self, order: Order, now: datetime) -> bool:
        return (now - order.created_at).total_seconds() >= self.grace_period_seconds

    async def select(self, store, now: datetime) -> EligibilityResult:
        """Read pending orders from `store` and split them for this pass.

        Args:
            store: Unit of work exposing `orders` and `warehouses`
            now: Pass timestamp

        Returns:
            EligibilityResult with eligible orders oldest first (ties by id)
        """
        result = EligibilityResult()
        pending = await store.orders.find_by_status(OrderStatus.PENDING_ASSIGNMENT)
        warehouses: Dict[str, Optional[Warehouse]] = {}

        for order in sorted(pending, key=lambda o: (o.created_at, o.order_id)):
            if not self.is_past_grace(order, now):
                result.deferred.append(order.order_id)
                continue

            if not order.has_coordinates:
                result.missing_geo.append(MissingGeoData(order.order_id, "no destination coordinates"))
                continue

            if order.warehouse_id is None:
                result.missing_geo.append(MissingGeoData(order.order_id, "no warehouse"))
                continue

            if order.warehouse_id not in warehouses:
                warehouses[order.warehouse_id] = await store.warehouses.find_by_id(order.warehouse_id)
            warehouse = warehouses[order.warehouse_id]

            if warehouse is None:
                result.missing_geo.append(
                    MissingGeoData(order.order_id, f"warehouse {order.warehouse_id} not found")
                )
                continue
            if not warehouse.has_coordinates:
                result.missing_geo.append(
                    MissingGeoData(order.order_id, f"warehouse {order.warehouse_id} has no coordinates")
                )
                continue

            result.eligible.append(EligibleOrder(order=order, warehouse=warehouse))

        for missing in result.missing_geo:
            logger.warning(str(missing))
        if result.deferred:
            logger.debug(f"{len(result.deferred)} orders deferred by grace period")

        return result
