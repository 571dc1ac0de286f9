"""Manual order lifecycle operations.

assign -> pickup -> out-for-delivery -> deliver, plus cancel. Each operation
runs as one unit of work: read, validate, write. A lost race surfaces as
`ConcurrentModification`; every other typed error is raised to the caller.

Agents may hold a batch of orders. Pickup moves the agent to ON_DELIVERY the
first time; delivery or cancellation frees the agent only when it holds no
other in-flight order.
"""

from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
import asyncio
import logging
import secrets

from ..core.errors import (
    InvalidConfirmationCode,
    InvalidStateTransition,
    NotFound,
    StoreUnavailable,
)
from ..core.lifecycle import can_transition_order, transition_agent, transition_order
from ..core.models.domain import AgentStatus, DeliveryAgent, Order, OrderStatus
from ..db.stores import StoreFactory

logger = logging.getLogger(__name__)


def generate_confirmation_code() -> str:
    """Six-digit numeric one-time code."""
    return f"{secrets.randbelow(1_000_000):06d}"


class OrderWorkflowService:
    """Order/agent state machine operations invoked outside the dispatch pass.

    Responsibilities:
    - Transition validation through the lifecycle tables
    - Confirmation code issue (pickup) and check (delivery)
    - Batch-aware agent release
    - Transition audit trail and listeners
    """

    def __init__(
        self,
        store_factory: StoreFactory,
        clock: Callable[[], datetime] = datetime.now,
        code_generator: Callable[[], str] = generate_confirmation_code,
        store_timeout_seconds: Optional[float] = None,
        history_size: int = 1000,
    ):
        self.store_factory = store_factory
        self.clock = clock
        self.code_generator = code_generator
        self.store_timeout_seconds = store_timeout_seconds

        self.transitions: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._handlers: List[Callable[[Dict[str, Any]], None]] = []

    # ------------------------------------------------------------------
    # Unit-of-work plumbing
    # ------------------------------------------------------------------

    async def _run(self, operation: str, work) -> Order:
        async def in_unit_of_work():
            async with self.store_factory() as store:
                return await work(store)

        try:
            if self.store_timeout_seconds is None:
                order, records = await in_unit_of_work()
            else:
                order, records = await asyncio.wait_for(in_unit_of_work(), self.store_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"{operation} timed out after {self.store_timeout_seconds}s") from e

        # Only committed transitions are recorded
        for record in records:
            self._record_transition(operation, record)
        return order

    async def _load_order(self, store, order_id: str) -> Order:
        order = await store.orders.find_by_id(order_id)
        if order is None:
            raise NotFound("Order", order_id)
        return order

    async def _load_agent(self, store, agent_id: Optional[str]) -> DeliveryAgent:
        agent = await store.agents.find_by_id(agent_id) if agent_id else None
        if agent is None:
            raise NotFound("DeliveryAgent", agent_id)
        return agent

    def _move(self, order: Order, target: OrderStatus) -> Dict[str, Any]:
        previous = transition_order(order, target, self.clock())
        return {
            "order_id": order.order_id,
            "from_status": previous.value,
            "to_status": target.value,
            "agent_id": order.delivery_agent_id,
        }

    async def _release_agent(self, store, order: Order) -> None:
        """Free the agent of a finished order, or re-anchor it on its batch."""
        agent = await self._load_agent(store, order.delivery_agent_id)
        remaining = [
            o
            for o in await store.orders.find_by_assigned_agent(agent.agent_id)
            if o.is_in_flight and o.order_id != order.order_id
        ]

        if remaining:
            agent.assigned_order_id = remaining[0].order_id
            logger.info(
                f"Agent {agent.agent_id} still holds {len(remaining)} orders, "
                f"anchor now {agent.assigned_order_id}"
            )
        else:
            transition_agent(agent, AgentStatus.AVAILABLE)
            agent.assigned_order_id = None
            logger.info(f"Agent {agent.agent_id} is AVAILABLE")

        await store.agents.save(agent)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order:
        async with self.store_factory() as store:
            return await self._load_order(store, order_id)

    async def assign(self, order_id: str, agent_id: str) -> Order:
        """Assign a pending order to an AVAILABLE agent."""

        async def work(store) -> Tuple[Order, List[Dict[str, Any]]]:
            order = await self._load_order(store, order_id)
            agent = await self._load_agent(store, agent_id)

            if not can_transition_order(order.status, OrderStatus.ASSIGNED):
                raise InvalidStateTransition("Order", order_id, order.status, OrderStatus.ASSIGNED)
            transition_agent(agent, AgentStatus.ASSIGNED)
            agent.assigned_order_id = order_id

            order.delivery_agent_id = agent_id
            record = self._move(order, OrderStatus.ASSIGNED)

            await store.orders.save(order)
            await store.agents.save(agent)
            return order, [record]

        return await self._run("assign", work)

    async def mark_picked_up(self, order_id: str) -> Order:
        """ASSIGNED -> PICKED_UP; issues the confirmation code."""

        async def work(store):
            order = await self._load_order(store, order_id)
            if not can_transition_order(order.status, OrderStatus.PICKED_UP):
                raise InvalidStateTransition("Order", order_id, order.status, OrderStatus.PICKED_UP)

            agent = await self._load_agent(store, order.delivery_agent_id)
            # First pickup of a batch starts the trip; siblings find it ON_DELIVERY
            if agent.status != AgentStatus.ON_DELIVERY:
                transition_agent(agent, AgentStatus.ON_DELIVERY)
                await store.agents.save(agent)

            record = self._move(order, OrderStatus.PICKED_UP)
            order.confirmation_code = self.code_generator()
            await store.orders.save(order)
            return order, [record]

        return await self._run("pickup", work)

    async def mark_out_for_delivery(self, order_id: str) -> Order:
        async def work(store):
            order = await self._load_order(store, order_id)
            record = self._move(order, OrderStatus.OUT_FOR_DELIVERY)
            await store.orders.save(order)
            return order, [record]

        return await self._run("out_for_delivery", work)

    async def deliver(self, order_id: str, provided_code: str) -> Order:
        """OUT_FOR_DELIVERY -> DELIVERED after checking the confirmation code.

        Raises:
            InvalidStateTransition: order is not OUT_FOR_DELIVERY
            InvalidConfirmationCode: `provided_code` does not match; nothing changes
        """

        async def work(store):
            order = await self._load_order(store, order_id)
            if not can_transition_order(order.status, OrderStatus.DELIVERED):
                raise InvalidStateTransition("Order", order_id, order.status, OrderStatus.DELIVERED)

            expected = order.confirmation_code
            if expected is None or not secrets.compare_digest(str(provided_code).encode(), expected.encode()):
                raise InvalidConfirmationCode(order_id)

            await self._release_agent(store, order)
            record = self._move(order, OrderStatus.DELIVERED)
            order.delivery_agent_id = None
            await store.orders.save(order)
            return order, [record]

        return await self._run("deliver", work)

    async def cancel(self, order_id: str) -> Order:
        """Cancel an order before pickup, releasing its agent if one was held."""

        async def work(store):
            order = await self._load_order(store, order_id)
            if not can_transition_order(order.status, OrderStatus.CANCELLED):
                raise InvalidStateTransition("Order", order_id, order.status, OrderStatus.CANCELLED)

            if order.delivery_agent_id is not None:
                await self._release_agent(store, order)

            record = self._move(order, OrderStatus.CANCELLED)
            order.delivery_agent_id = None
            await store.orders.save(order)
            return order, [record]

        return await self._run("cancel", work)

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def _record_transition(self, operation: str, record: Dict[str, Any]) -> None:
        transition = {"timestamp": self.clock().isoformat(), "operation": operation, **record}
        self.transitions.append(transition)
        logger.info(
            f"Order {record['order_id']}: {record['from_status']} -> {record['to_status']} ({operation})"
        )
        self._fire_handlers(transition)

    def on_transition(self, handler: Callable[[Dict[str, Any]], None]) -> None:
        """Register a handler called with each committed transition."""
        self._handlers.append(handler)

    def _fire_handlers(self, transition: Dict[str, Any]) -> None:
        for handler in self._handlers:
            try:
                handler(transition)
            except Exception as e:
                logger.error(f"Error in transition handler: {e}")

    def get_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get up to `limit` recent committed transitions, oldest first."""
        if limit <= 0:
            return []
        return list(self.transitions)[-limit:]
