"""Vehicle capacity classification by order weight."""

from typing import Dict, Optional
import logging

from ..models.domain import Order, Product, VehicleCapacity

logger = logging.getLogger(__name__)

TWO_WHEELER_MAX_WEIGHT_KG = 0.4


def classify(total_weight_kg: float, threshold_kg: float = TWO_WHEELER_MAX_WEIGHT_KG) -> VehicleCapacity:
    """Map a weight to the vehicle tier that can carry it.

    Strictly below `threshold_kg` fits a two-wheeler; the threshold itself
    and anything heavier needs a four-wheeler.
    """
    if total_weight_kg < threshold_kg:
        return VehicleCapacity.TWO_WHEELER
    return VehicleCapacity.FOUR_WHEELER


class WeightCalculator:
    """Resolves order weights through a product store, caching products.

    One instance lives for a single dispatch pass so a product is read at
    most once per pass.
    """

    def __init__(self, product_store):
        self.product_store = product_store
        self._products: Dict[str, Optional[Product]] = {}

    async def order_weight_kg(self, order: Order) -> float:
        """Physical weight of `order` in kilograms (unit grams x quantity)."""
        if order.product_id not in self._products:
            self._products[order.product_id] = await self.product_store.find_by_id(order.product_id)

        product = self._products[order.product_id]
        if product is None:
            logger.warning(
                f"Product {order.product_id} of order {order.order_id} not found, weight counted as 0"
            )
            return 0.0

        return product.unit_weight_grams / 1000.0 * order.quantity
