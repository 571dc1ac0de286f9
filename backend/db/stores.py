"""Store interfaces consumed by the dispatch engine.

A `DispatchStore` is one unit of work: reads return detached copies, writes are
checked against each entity's `version` and become visible on commit. Use it as
an async context manager; a clean exit commits, an exception rolls back.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ..core.models.domain import (
    AgentStatus,
    DeliveryAgent,
    Order,
    OrderStatus,
    Product,
    Warehouse,
)


class OrderStore(ABC):
    """Orders, the system of record for dispatch state."""

    @abstractmethod
    async def find_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def find_by_status(self, status: OrderStatus) -> List[Order]:
        """Orders in `status`, oldest first (ties by id)."""
        pass

    @abstractmethod
    async def find_by_assigned_agent(self, agent_id: str) -> List[Order]:
        """Orders whose delivery agent is `agent_id`, oldest first."""
        pass

    @abstractmethod
    async def save(self, order: Order) -> Order:
        """Upsert `order`.

        Raises:
            ConcurrentModification: the stored version differs from `order.version`
        """
        pass


class AgentStore(ABC):
    """Delivery agents."""

    @abstractmethod
    async def find_by_id(self, agent_id: str) -> Optional[DeliveryAgent]:
        pass

    @abstractmethod
    async def find_by_status(self, status: AgentStatus) -> List[DeliveryAgent]:
        """Agents in `status`, ascending agent id."""
        pass

    @abstractmethod
    async def save(self, agent: DeliveryAgent) -> DeliveryAgent:
        pass


class WarehouseStore(ABC):
    """Read accessor for warehouses (save is for seeding)."""

    @abstractmethod
    async def find_by_id(self, warehouse_id: str) -> Optional[Warehouse]:
        pass

    @abstractmethod
    async def save(self, warehouse: Warehouse) -> Warehouse:
        pass


class ProductStore(ABC):
    """Read accessor for product weights (save is for seeding)."""

    @abstractmethod
    async def find_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def save(self, product: Product) -> Product:
        pass


class DispatchStore(ABC):
    """Unit of work over all stores."""

    orders: OrderStore
    agents: AgentStore
    warehouses: WarehouseStore
    products: ProductStore

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

    async def close(self) -> None:
        """Release underlying resources."""

    async def __aenter__(self) -> "DispatchStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self.commit()
            else:
                await self.rollback()
        finally:
            await self.close()


# Zero-argument callable returning a fresh unit of work
StoreFactory = Callable[[], DispatchStore]
