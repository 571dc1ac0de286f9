"""SQLAlchemy implementation of the dispatch stores.

Each `SqlDispatchStore` wraps one `AsyncSession`. Saves are issued as
version-checked UPDATE statements (`WHERE version = :expected`); a row count
of zero means either the row does not exist yet (insert when the entity's
version is 0) or another writer got there first (`ConcurrentModification`).
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import ConcurrentModification, StoreUnavailable
from ..core.models.domain import (
    AgentStatus,
    DeliveryAgent,
    Order,
    OrderStatus,
    Product,
    Warehouse,
)
from .models import DeliveryAgentModel, OrderModel, ProductModel, WarehouseModel
from .stores import (
    AgentStore,
    DispatchStore,
    OrderStore,
    ProductStore,
    StoreFactory,
    WarehouseStore,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _translate_errors(entity: str, entity_id: Optional[str] = None):
    try:
        yield
    except IntegrityError as e:
        raise ConcurrentModification(entity, entity_id or "?", str(e.orig)) from e
    except SQLAlchemyError as e:
        logger.error(f"Store failure on {entity} {entity_id}: {e}")
        raise StoreUnavailable(f"{entity} store unavailable: {e}") from e


# ===========================
# Row <-> domain mappers
# ===========================

def _order_from_model(m: OrderModel) -> Order:
    return Order(
        order_id=m.order_id,
        customer_id=m.customer_id,
        address=m.address,
        product_id=m.product_id,
        quantity=m.quantity,
        total_amount=m.total_amount,
        status=m.status,
        delivery_agent_id=m.delivery_agent_id,
        confirmation_code=m.confirmation_code,
        warehouse_id=m.warehouse_id,
        latitude=m.latitude,
        longitude=m.longitude,
        created_at=m.created_at,
        updated_at=m.updated_at,
        delivered_at=m.delivered_at,
        version=m.version,
    )


def _order_values(order: Order) -> Dict[str, Any]:
    return {
        "customer_id": order.customer_id,
        "address": order.address,
        "product_id": order.product_id,
        "quantity": order.quantity,
        "total_amount": order.total_amount,
        "status": order.status,
        "delivery_agent_id": order.delivery_agent_id,
        "confirmation_code": order.confirmation_code,
        "warehouse_id": order.warehouse_id,
        "latitude": order.latitude,
        "longitude": order.longitude,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
        "delivered_at": order.delivered_at,
    }


def _agent_from_model(m: DeliveryAgentModel) -> DeliveryAgent:
    return DeliveryAgent(
        agent_id=m.agent_id,
        name=m.name,
        vehicle_capacity=m.vehicle_capacity,
        status=m.status,
        latitude=m.latitude,
        longitude=m.longitude,
        phone=m.phone,
        assigned_order_id=m.assigned_order_id,
        version=m.version,
    )


def _agent_values(agent: DeliveryAgent) -> Dict[str, Any]:
    return {
        "name": agent.name,
        "phone": agent.phone,
        "vehicle_capacity": agent.vehicle_capacity,
        "status": agent.status,
        "latitude": agent.latitude,
        "longitude": agent.longitude,
        "assigned_order_id": agent.assigned_order_id,
    }


def _warehouse_from_model(m: WarehouseModel) -> Warehouse:
    return Warehouse(
        warehouse_id=m.warehouse_id,
        name=m.name,
        latitude=m.latitude,
        longitude=m.longitude,
        address=m.address,
        version=m.version,
    )


def _warehouse_values(warehouse: Warehouse) -> Dict[str, Any]:
    return {
        "name": warehouse.name,
        "address": warehouse.address,
        "latitude": warehouse.latitude,
        "longitude": warehouse.longitude,
    }


def _product_from_model(m: ProductModel) -> Product:
    return Product(
        product_id=m.product_id,
        name=m.name,
        unit_weight_grams=m.unit_weight_grams,
        price=m.price,
        version=m.version,
    )


def _product_values(product: Product) -> Dict[str, Any]:
    return {
        "name": product.name,
        "unit_weight_grams": product.unit_weight_grams,
        "price": product.price,
    }


# ===========================
# Stores
# ===========================

class _SqlStore:
    """Shared versioned-upsert logic for one mapped table."""

    entity_name: str = ""
    model = None
    key_column: str = ""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _key(self):
        return getattr(self.model, self.key_column)

    async def _fetch_one(self, entity_id: str):
        query = (
            select(self.model)
            .where(self._key() == entity_id)
            .execution_options(populate_existing=True)
        )
        async with _translate_errors(self.entity_name, entity_id):
            result = await self.session.execute(query)
            return result.scalar_one_or_none()

    async def _fetch_many(self, query) -> list:
        async with _translate_errors(self.entity_name):
            result = await self.session.execute(
                query.execution_options(populate_existing=True)
            )
            return list(result.scalars().all())

    async def _upsert(self, entity_id: str, expected_version: int, values: Dict[str, Any]) -> None:
        stmt = (
            update(self.model)
            .where(self._key() == entity_id, self.model.version == expected_version)
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )

        async with _translate_errors(self.entity_name, entity_id):
            result = await self.session.execute(stmt)
            if result.rowcount == 1:
                return

            existing = await self.session.execute(
                select(self.model.version).where(self._key() == entity_id)
            )
            stored_version = existing.scalar_one_or_none()

            if stored_version is None and expected_version == 0:
                await self.session.execute(
                    insert(self.model).values(
                        **{self.key_column: entity_id}, **values, version=1
                    )
                )
                return

        raise ConcurrentModification(
            self.entity_name,
            entity_id,
            f"expected version {expected_version}, stored {stored_version}",
        )


class SqlOrderStore(_SqlStore, OrderStore):
    entity_name = "Order"
    model = OrderModel
    key_column = "order_id"

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        row = await self._fetch_one(order_id)
        return _order_from_model(row) if row is not None else None

    async def find_by_status(self, status: OrderStatus) -> List[Order]:
        rows = await self._fetch_many(
            select(OrderModel)
            .where(OrderModel.status == status)
            .order_by(OrderModel.created_at, OrderModel.order_id)
        )
        return [_order_from_model(r) for r in rows]

    async def find_by_assigned_agent(self, agent_id: str) -> List[Order]:
        rows = await self._fetch_many(
            select(OrderModel)
            .where(OrderModel.delivery_agent_id == agent_id)
            .order_by(OrderModel.created_at, OrderModel.order_id)
        )
        return [_order_from_model(r) for r in rows]

    async def save(self, order: Order) -> Order:
        await self._upsert(order.order_id, order.version, _order_values(order))
        order.version += 1
        return order


class SqlAgentStore(_SqlStore, AgentStore):
    entity_name = "DeliveryAgent"
    model = DeliveryAgentModel
    key_column = "agent_id"

    async def find_by_id(self, agent_id: str) -> Optional[DeliveryAgent]:
        row = await self._fetch_one(agent_id)
        return _agent_from_model(row) if row is not None else None

    async def find_by_status(self, status: AgentStatus) -> List[DeliveryAgent]:
        rows = await self._fetch_many(
            select(DeliveryAgentModel)
            .where(DeliveryAgentModel.status == status)
            .order_by(DeliveryAgentModel.agent_id)
        )
        return [_agent_from_model(r) for r in rows]

    async def save(self, agent: DeliveryAgent) -> DeliveryAgent:
        await self._upsert(agent.agent_id, agent.version, _agent_values(agent))
        agent.version += 1
        return agent


class SqlWarehouseStore(_SqlStore, WarehouseStore):
    entity_name = "Warehouse"
    model = WarehouseModel
    key_column = "warehouse_id"

    async def find_by_id(self, warehouse_id: str) -> Optional[Warehouse]:
        row = await self._fetch_one(warehouse_id)
        return _warehouse_from_model(row) if row is not None else None

    async def save(self, warehouse: Warehouse) -> Warehouse:
        await self._upsert(warehouse.warehouse_id, warehouse.version, _warehouse_values(warehouse))
        warehouse.version += 1
        return warehouse


class SqlProductStore(_SqlStore, ProductStore):
    entity_name = "Product"
    model = ProductModel
    key_column = "product_id"

    async def find_by_id(self, product_id: str) -> Optional[Product]:
        row = await self._fetch_one(product_id)
        return _product_from_model(row) if row is not None else None

    async def save(self, product: Product) -> Product:
        await self._upsert(product.product_id, product.version, _product_values(product))
        product.version += 1
        return product


class SqlDispatchStore(DispatchStore):
    """Unit of work bound to one `AsyncSession`."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = SqlOrderStore(session)
        self.agents = SqlAgentStore(session)
        self.warehouses = SqlWarehouseStore(session)
        self.products = SqlProductStore(session)

    async def commit(self) -> None:
        async with _translate_errors("Session"):
            await self.session.commit()

    async def rollback(self) -> None:
        async with _translate_errors("Session"):
            await self.session.rollback()

    async def close(self) -> None:
        await self.session.close()


def sql_store_factory(session_factory: async_sessionmaker[AsyncSession]) -> StoreFactory:
    """Build a `StoreFactory` that opens a new session per unit of work."""

    def factory() -> SqlDispatchStore:
        return SqlDispatchStore(session_factory())

    return factory
