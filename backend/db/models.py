"""ORM Models for Database Persistence.

SQLAlchemy ORM models mapping to domain models:
- WarehouseModel: Origin warehouses (geographic anchor for dispatch)
- ProductModel: Catalog products (unit weight for capacity classification)
- DeliveryAgentModel: Couriers with vehicle tier, status and position
- OrderModel: Delivery orders and their lifecycle state

Every table carries a `version` column. Stores update rows with
`WHERE version = :expected` so only one concurrent writer wins.
"""

from datetime import datetime

from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    Enum as SQLEnum,
    Index,
)
from sqlalchemy.orm import declarative_base

from ..core.models.domain import AgentStatus, OrderStatus, VehicleCapacity

Base = declarative_base()


# ===========================
# Warehouse
# ===========================

class WarehouseModel(Base):
    """Warehouse model; read-only to the dispatch engine."""

    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    warehouse_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)

    # Coordinates may be missing; such orders are excluded from dispatch
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


# ===========================
# Product
# ===========================

class ProductModel(Base):
    """Product model; unit weight drives capacity classification."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    unit_weight_grams = Column(Float, nullable=False, default=0.0)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


# ===========================
# Delivery Agent
# ===========================

class DeliveryAgentModel(Base):
    """Delivery agent model."""

    __tablename__ = "delivery_agents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)

    vehicle_capacity = Column(SQLEnum(VehicleCapacity), nullable=False, index=True)
    status = Column(SQLEnum(AgentStatus), nullable=False, default=AgentStatus.AVAILABLE, index=True)

    # Position (nullable until the agent reports one)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Anchor order of the current batch; members are orders.delivery_agent_id
    assigned_order_id = Column(String(50), nullable=True)

    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index("idx_agents_status_capacity", "status", "vehicle_capacity"),
    )


# ===========================
# Order
# ===========================

class OrderModel(Base):
    """Order model for delivery requests."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(50), unique=True, nullable=False, index=True)
    customer_id = Column(String(50), nullable=False, index=True)
    address = Column(Text, nullable=False)

    # Item
    product_id = Column(String(50), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # Status
    status = Column(
        SQLEnum(OrderStatus),
        nullable=False,
        default=OrderStatus.PENDING_ASSIGNMENT,
        index=True,
    )
    delivery_agent_id = Column(
        String(50), ForeignKey("delivery_agents.agent_id"), nullable=True, index=True
    )
    confirmation_code = Column(String(6), nullable=True)

    # Geography
    warehouse_id = Column(String(50), ForeignKey("warehouses.warehouse_id"), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Metadata
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)
    updated_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_orders_status_created", "status", "created_at"),
        Index("idx_orders_agent_status", "delivery_agent_id", "status"),
    )
