"""In-memory implementation of the dispatch stores.

Used by the test-suite and `demo.py`. Semantics match the SQL stores: reads
return copies, every save is version-checked, and staged writes are validated
again at commit so a unit of work either applies completely or not at all.
"""

from copy import deepcopy
from typing import Callable, Dict, Generic, List, Optional, TypeVar
import logging

from ..core.errors import ConcurrentModification
from ..core.models.domain import (
    AgentStatus,
    DeliveryAgent,
    Order,
    OrderStatus,
    Product,
    Warehouse,
)
from .stores import AgentStore, DispatchStore, OrderStore, ProductStore, WarehouseStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Table(Generic[T]):
    """Per-unit-of-work view of one committed table."""

    def __init__(self, name: str, rows: Dict[str, T], key: Callable[[T], str]):
        self.name = name
        self.rows = rows
        self.key = key
        self.staged: Dict[str, T] = {}
        self.base_versions: Dict[str, Optional[int]] = {}

    def get(self, entity_id: str) -> Optional[T]:
        row = self.staged.get(entity_id, self.rows.get(entity_id))
        return deepcopy(row) if row is not None else None

    def all(self) -> List[T]:
        merged = {**self.rows, **self.staged}
        return [deepcopy(row) for row in merged.values()]

    def stage(self, entity: T) -> T:
        entity_id = self.key(entity)
        current = self.staged.get(entity_id, self.rows.get(entity_id))
        current_version = current.version if current is not None else 0

        if entity.version != current_version:
            raise ConcurrentModification(
                self.name, entity_id, f"expected version {current_version}, got {entity.version}"
            )

        if entity_id not in self.base_versions:
            committed = self.rows.get(entity_id)
            self.base_versions[entity_id] = committed.version if committed is not None else None

        entity.version += 1
        self.staged[entity_id] = deepcopy(entity)
        return entity

    def validate(self) -> None:
        for entity_id, base in self.base_versions.items():
            committed = self.rows.get(entity_id)
            current = committed.version if committed is not None else None
            if current != base:
                raise ConcurrentModification(self.name, entity_id, "changed before commit")

    def apply(self) -> None:
        self.rows.update(self.staged)
        self.reset()

    def reset(self) -> None:
        self.staged.clear()
        self.base_versions.clear()


class InMemoryOrderStore(OrderStore):
    def __init__(self, table: _Table[Order]):
        self.table = table

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        return self.table.get(order_id)

    async def find_by_status(self, status: OrderStatus) -> List[Order]:
        orders = [o for o in self.table.all() if o.status == status]
        return sorted(orders, key=lambda o: (o.created_at, o.order_id))

    async def find_by_assigned_agent(self, agent_id: str) -> List[Order]:
        orders = [o for o in self.table.all() if o.delivery_agent_id == agent_id]
        return sorted(orders, key=lambda o: (o.created_at, o.order_id))

    async def save(self, order: Order) -> Order:
        return self.table.stage(order)


class InMemoryAgentStore(AgentStore):
    def __init__(self, table: _Table[DeliveryAgent]):
        self.table = table

    async def find_by_id(self, agent_id: str) -> Optional[DeliveryAgent]:
        return self.table.get(agent_id)

    async def find_by_status(self, status: AgentStatus) -> List[DeliveryAgent]:
        agents = [a for a in self.table.all() if a.status == status]
        return sorted(agents, key=lambda a: a.agent_id)

    async def save(self, agent: DeliveryAgent) -> DeliveryAgent:
        return self.table.stage(agent)


class InMemoryWarehouseStore(WarehouseStore):
    def __init__(self, table: _Table[Warehouse]):
        self.table = table

    async def find_by_id(self, warehouse_id: str) -> Optional[Warehouse]:
        return self.table.get(warehouse_id)

    async def save(self, warehouse: Warehouse) -> Warehouse:
        return self.table.stage(warehouse)


class InMemoryProductStore(ProductStore):
    def __init__(self, table: _Table[Product]):
        self.table = table

    async def find_by_id(self, product_id: str) -> Optional[Product]:
        return self.table.get(product_id)

    async def save(self, product: Product) -> Product:
        return self.table.stage(product)


class InMemoryDispatchStore(DispatchStore):
    """Unit of work over an `InMemoryDatabase`."""

    def __init__(self, database: "InMemoryDatabase"):
        self._tables = [
            _Table("Order", database.orders, lambda o: o.order_id),
            _Table("DeliveryAgent", database.agents, lambda a: a.agent_id),
            _Table("Warehouse", database.warehouses, lambda w: w.warehouse_id),
            _Table("Product", database.products, lambda p: p.product_id),
        ]
        order_table, agent_table, warehouse_table, product_table = self._tables
        self.orders = InMemoryOrderStore(order_table)
        self.agents = InMemoryAgentStore(agent_table)
        self.warehouses = InMemoryWarehouseStore(warehouse_table)
        self.products = InMemoryProductStore(product_table)

    async def commit(self) -> None:
        # Validate everything before applying anything
        try:
            for table in self._tables:
                table.validate()
        except ConcurrentModification:
            await self.rollback()
            raise

        for table in self._tables:
            table.apply()

    async def rollback(self) -> None:
        for table in self._tables:
            table.reset()


class InMemoryDatabase:
    """Committed state shared by every unit of work created from it.

    `session` is a `StoreFactory`.
    """

    def __init__(self):
        self.orders: Dict[str, Order] = {}
        self.agents: Dict[str, DeliveryAgent] = {}
        self.warehouses: Dict[str, Warehouse] = {}
        self.products: Dict[str, Product] = {}

    def session(self) -> InMemoryDispatchStore:
        return InMemoryDispatchStore(self)

    async def seed(
        self,
        warehouses: Optional[List[Warehouse]] = None,
        products: Optional[List[Product]] = None,
        agents: Optional[List[DeliveryAgent]] = None,
        orders: Optional[List[Order]] = None,
    ) -> None:
        """Insert entities in one unit of work."""
        async with self.session() as store:
            for warehouse in warehouses or []:
                await store.warehouses.save(warehouse)
            for product in products or []:
                await store.products.save(product)
            for agent in agents or []:
                await store.agents.save(agent)
            for order in orders or []:
                await store.orders.save(order)

        logger.debug(
            f"Seeded in-memory database: {len(self.warehouses)} warehouses, "
            f"{len(self.agents)} agents, {len(self.orders)} orders"
        )
