"""Shared fixtures for dispatch engine tests.

All positions are laid out on the meridian through the warehouse so that
`km_north` is the exact haversine distance from the warehouse.
"""

import asyncio
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest

from backend.core.models.domain import (
    AgentStatus,
    DeliveryAgent,
    Order,
    OrderStatus,
    Product,
    VehicleCapacity,
    Warehouse,
)
from backend.db.memory import InMemoryDatabase
from backend.utils.config import DispatchConfig
from backend.utils.geo import EARTH_RADIUS_KM

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0)
WAREHOUSE_LAT = 12.9352
WAREHOUSE_LON = 77.6245
KM_PER_DEGREE_LAT = EARTH_RADIUS_KM * math.pi / 180


def latitude_north(km: float) -> float:
    """Latitude `km` kilometers north of the warehouse."""
    return WAREHOUSE_LAT + km / KM_PER_DEGREE_LAT


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)

    def set(self, seconds_after_base: float):
        self.now = BASE_TIME + timedelta(seconds=seconds_after_base)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    """Default parameters with the background loop disabled."""
    return DispatchConfig(scheduler_enabled=False)


@pytest.fixture
def warehouse():
    return Warehouse("WH_001", "Koramangala Hub", WAREHOUSE_LAT, WAREHOUSE_LON)


@pytest.fixture
def products():
    """Light (0.2 kg), boundary (0.4 kg) and heavy (5 kg) products."""
    return [
        Product("PRD_LIGHT", "Spice Sampler", unit_weight_grams=200.0, price=Decimal("249.00")),
        Product("PRD_EXACT", "Tea Tin", unit_weight_grams=400.0, price=Decimal("399.00")),
        Product("PRD_HEAVY", "Rice Sack", unit_weight_grams=5000.0, price=Decimal("899.00")),
    ]


@pytest.fixture
def make_order():
    """Build a pending order `seconds` after BASE_TIME, `km_north` of the warehouse."""

    def _make(
        order_id: str,
        seconds: float = 0,
        km_north: Optional[float] = 0.5,
        product_id: str = "PRD_LIGHT",
        quantity: int = 1,
        warehouse_id: Optional[str] = "WH_001",
        status: OrderStatus = OrderStatus.PENDING_ASSIGNMENT,
        delivery_agent_id: Optional[str] = None,
    ) -> Order:
        return Order(
            order_id=order_id,
            customer_id=f"CUST_{order_id}",
            address=f"Address of {order_id}",
            product_id=product_id,
            quantity=quantity,
            total_amount=Decimal("249.00"),
            status=status,
            delivery_agent_id=delivery_agent_id,
            warehouse_id=warehouse_id,
            latitude=latitude_north(km_north) if km_north is not None else None,
            longitude=WAREHOUSE_LON if km_north is not None else None,
            created_at=BASE_TIME + timedelta(seconds=seconds),
        )

    return _make


@pytest.fixture
def make_agent():
    """Build an agent `km_north` of the warehouse."""

    def _make(
        agent_id: str,
        km_north: Optional[float] = 0.1,
        capacity: VehicleCapacity = VehicleCapacity.TWO_WHEELER,
        status: AgentStatus = AgentStatus.AVAILABLE,
        assigned_order_id: Optional[str] = None,
    ) -> DeliveryAgent:
        return DeliveryAgent(
            agent_id=agent_id,
            name=f"Agent {agent_id}",
            vehicle_capacity=capacity,
            status=status,
            latitude=latitude_north(km_north) if km_north is not None else None,
            longitude=WAREHOUSE_LON if km_north is not None else None,
            assigned_order_id=assigned_order_id,
        )

    return _make


@pytest.fixture
def db(warehouse, products):
    """In-memory database holding the warehouse and products."""
    database = InMemoryDatabase()
    asyncio.run(database.seed(warehouses=[warehouse], products=products))
    return database


@pytest.fixture
def seed(db):
    """Insert agents and orders into the in-memory database."""

    def _seed(agents=(), orders=()):
        asyncio.run(db.seed(agents=list(agents), orders=list(orders)))

    return _seed
