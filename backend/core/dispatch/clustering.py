"""Clustering of eligible orders into batches for one joint assignment."""

from typing import List
import logging

from ...utils.geo import distance_km
from ..models.domain import Cluster
from .capacity import TWO_WHEELER_MAX_WEIGHT_KG, classify
from .eligibility import EligibleOrder

logger = logging.getLogger(__name__)


class ClusteringEngine:
    """Groups orders around an anchor.

    A candidate joins the anchor's cluster when it:
    - has destination coordinates
    - was created within `batch_window_seconds` of the anchor (either side)
    - lies within `radius_km` of the anchor's destination
    - classifies, on its own weight, to the anchor's capacity tier

    The tier of the cluster is the anchor's tier. The summed weight is kept
    for diagnostics only.
    """

    def __init__(
        self,
        radius_km: float = 3.0,
        batch_window_seconds: float = 30.0,
        two_wheeler_max_weight_kg: float = TWO_WHEELER_MAX_WEIGHT_KG,
    ):
        self.radius_km = radius_km
        self.batch_window_seconds = batch_window_seconds
        self.two_wheeler_max_weight_kg = two_wheeler_max_weight_kg

    def _is_batchable(self, anchor: EligibleOrder, candidate: EligibleOrder, tier) -> bool:
        a, c = anchor.order, candidate.order

        if c.order_id == a.order_id or not c.has_coordinates:
            return False

        offset = abs((c.created_at - a.created_at).total_seconds())
        if offset > self.batch_window_seconds:
            return False

        if distance_km(a.latitude, a.longitude, c.latitude, c.longitude) > self.radius_km:
            return False

        return classify(candidate.weight_kg, self.two_wheeler_max_weight_kg) == tier

    def build_cluster(self, anchor: EligibleOrder, pool: List[EligibleOrder]) -> Cluster:
        """Form the cluster for `anchor` from the still-unclustered `pool`."""
        tier = classify(anchor.weight_kg, self.two_wheeler_max_weight_kg)
        members = [anchor]
        members.extend(c for c in pool if self._is_batchable(anchor, c, tier))

        cluster = Cluster(
            anchor=anchor.order,
            members=[m.order for m in members],
            capacity=tier,
            warehouse=anchor.warehouse,
            total_weight_kg=sum(m.weight_kg for m in members),
        )
        logger.info(
            f"Formed cluster {cluster.order_ids} tier={tier.value} "
            f"total_weight={cluster.total_weight_kg:.3f}kg"
        )
        return cluster
