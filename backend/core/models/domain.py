"""Domain models for the delivery dispatch engine."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle statuses."""

    PENDING_ASSIGNMENT = "PENDING_ASSIGNMENT"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class AgentStatus(str, Enum):
    """Delivery agent statuses. OFFLINE is set outside the engine."""

    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    ON_DELIVERY = "ON_DELIVERY"
    OFFLINE = "OFFLINE"


class VehicleCapacity(str, Enum):
    """Vehicle capacity tiers."""

    TWO_WHEELER = "TWO_WHEELER"
    FOUR_WHEELER = "FOUR_WHEELER"


# Order statuses that hold a delivery agent
IN_FLIGHT_STATUSES = frozenset(
    {OrderStatus.ASSIGNED, OrderStatus.PICKED_UP, OrderStatus.OUT_FOR_DELIVERY}
)
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


@dataclass
class Warehouse:
    """Origin warehouse, read-only to the engine."""

    warehouse_id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    version: int = 0

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def location(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass
class Product:
    """Catalog product; only the unit weight matters for dispatch."""

    product_id: str
    name: str
    unit_weight_grams: float = 0.0
    price: Decimal = Decimal("0")
    version: int = 0


@dataclass
class Order:
    """Customer delivery order."""

    order_id: str
    customer_id: str
    address: str
    product_id: str
    quantity: int = 1
    total_amount: Decimal = Decimal("0")

    status: OrderStatus = OrderStatus.PENDING_ASSIGNMENT
    delivery_agent_id: Optional[str] = None
    confirmation_code: Optional[str] = None  # issued at pickup

    warehouse_id: Optional[str] = None
    latitude: Optional[float] = None  # destination
    longitude: Optional[float] = None

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    # Optimistic concurrency token, bumped by the store on every save
    version: int = 0

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def __repr__(self) -> str:
        return f"Order({self.order_id}, {self.status.value})"


@dataclass
class DeliveryAgent:
    """Courier with a vehicle tier and a position.

    `assigned_order_id` is the anchor of the agent's current batch. The full
    batch is the set of in-flight orders whose `delivery_agent_id` points at
    this agent; query it through `OrderStore.find_by_assigned_agent`.
    """

    agent_id: str
    name: str
    vehicle_capacity: VehicleCapacity
    status: AgentStatus = AgentStatus.AVAILABLE
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    assigned_order_id: Optional[str] = None
    version: int = 0

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self) -> str:
        return f"DeliveryAgent({self.agent_id}, {self.status.value}, {self.vehicle_capacity.value})"


@dataclass
class Cluster:
    """Batch of eligible orders decided jointly within one dispatch pass."""

    anchor: Order
    members: List[Order]
    capacity: VehicleCapacity
    warehouse: Warehouse
    total_weight_kg: float = 0.0

    @property
    def order_ids(self) -> List[str]:
        return [o.order_id for o in self.members]

    def __repr__(self) -> str:
        return f"Cluster(anchor={self.anchor.order_id}, orders={self.order_ids}, {self.capacity.value})"
