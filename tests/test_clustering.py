"""Tests for clustering eligible orders around an anchor."""

import pytest

from backend.core.dispatch.clustering import ClusteringEngine
from backend.core.dispatch.eligibility import EligibleOrder
from backend.core.models.domain import VehicleCapacity


@pytest.fixture
def engine():
    return ClusteringEngine(radius_km=3.0, batch_window_seconds=30.0)


@pytest.fixture
def eligible(warehouse, make_order):
    """EligibleOrder built from `make_order` arguments plus a weight."""

    def _make(order_id, weight_kg=0.2, **kwargs):
        return EligibleOrder(order=make_order(order_id, **kwargs), warehouse=warehouse, weight_kg=weight_kg)

    return _make


class TestClusterMembership:
    """Which candidates join the anchor."""

    def test_nearby_simultaneous_orders_batch(self, engine, eligible):
        anchor = eligible("ORD_1", seconds=0, km_north=0.5)
        other = eligible("ORD_2", seconds=5, km_north=0.8)

        cluster = engine.build_cluster(anchor, [other])

        assert cluster.order_ids == ["ORD_1", "ORD_2"]
        assert cluster.anchor.order_id == "ORD_1"
        assert cluster.capacity == VehicleCapacity.TWO_WHEELER

    def test_time_window_is_inclusive(self, engine, eligible):
        anchor = eligible("ORD_1", seconds=0)
        inside = eligible("ORD_2", seconds=30)
        outside = eligible("ORD_3", seconds=31)

        cluster = engine.build_cluster(anchor, [inside, outside])

        assert cluster.order_ids == ["ORD_1", "ORD_2"]

    def test_time_window_applies_both_sides(self, engine, eligible):
        anchor = eligible("ORD_1", seconds=100)
        earlier = eligible("ORD_2", seconds=75)
        much_earlier = eligible("ORD_3", seconds=60)

        cluster = engine.build_cluster(anchor, [earlier, much_earlier])

        assert cluster.order_ids == ["ORD_1", "ORD_2"]

    def test_radius_excludes_far_orders(self, engine, eligible):
        anchor = eligible("ORD_1", km_north=0.5)
        near = eligible("ORD_2", km_north=3.4)
        far = eligible("ORD_3", km_north=3.6)

        cluster = engine.build_cluster(anchor, [near, far])

        assert cluster.order_ids == ["ORD_1", "ORD_2"]

    def test_tier_mismatch_excluded(self, engine, eligible):
        anchor = eligible("ORD_1", weight_kg=0.2)
        heavy = eligible("ORD_2", weight_kg=5.0)

        cluster = engine.build_cluster(anchor, [heavy])

        assert cluster.order_ids == ["ORD_1"]

    def test_each_member_classified_on_its_own(self, engine, eligible):
        # 0.3 + 0.3 exceeds the threshold but each order alone fits a two-wheeler
        anchor = eligible("ORD_1", weight_kg=0.3)
        other = eligible("ORD_2", weight_kg=0.3)

        cluster = engine.build_cluster(anchor, [other])

        assert cluster.order_ids == ["ORD_1", "ORD_2"]
        assert cluster.capacity == VehicleCapacity.TWO_WHEELER
        assert cluster.total_weight_kg == pytest.approx(0.6)

    def test_heavy_anchor_forms_four_wheeler_cluster(self, engine, eligible):
        anchor = eligible("ORD_1", weight_kg=5.0)
        heavy = eligible("ORD_2", weight_kg=0.4)
        light = eligible("ORD_3", weight_kg=0.1)

        cluster = engine.build_cluster(anchor, [heavy, light])

        assert cluster.capacity == VehicleCapacity.FOUR_WHEELER
        assert cluster.order_ids == ["ORD_1", "ORD_2"]

    def test_candidate_without_coordinates_excluded(self, engine, eligible):
        anchor = eligible("ORD_1")
        blind = eligible("ORD_2", km_north=None)

        cluster = engine.build_cluster(anchor, [blind])

        assert cluster.order_ids == ["ORD_1"]

    def test_anchor_not_duplicated_when_in_pool(self, engine, eligible):
        anchor = eligible("ORD_1")

        cluster = engine.build_cluster(anchor, [anchor])

        assert cluster.order_ids == ["ORD_1"]


class TestClusterMetadata:
    """Cluster weight and warehouse."""

    def test_total_weight_sums_members(self, engine, eligible):
        cluster = engine.build_cluster(
            eligible("ORD_1", weight_kg=0.2),
            [eligible("ORD_2", weight_kg=0.15, seconds=2), eligible("ORD_3", weight_kg=0.1, seconds=4)],
        )

        assert cluster.total_weight_kg == pytest.approx(0.45)

    def test_cluster_uses_anchor_warehouse(self, engine, eligible, warehouse):
        cluster = engine.build_cluster(eligible("ORD_1"), [])

        assert cluster.warehouse is warehouse

    def test_smaller_radius(self, eligible):
        engine = ClusteringEngine(radius_km=1.0)
        anchor = eligible("ORD_1", km_north=0.5)
        other = eligible("ORD_2", km_north=2.0)

        assert engine.build_cluster(anchor, [other]).order_ids == ["ORD_1"]
