"""Order and agent state machines.

Both the dispatch pass and the manual workflow move entities through these
tables; nothing else writes `status` directly.
"""

from datetime import datetime
from typing import Dict, FrozenSet

from .errors import InvalidStateTransition
from .models.domain import AgentStatus, DeliveryAgent, Order, OrderStatus

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING_ASSIGNMENT: frozenset({OrderStatus.ASSIGNED, OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.PICKED_UP, OrderStatus.CANCELLED}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.OUT_FOR_DELIVERY}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

AGENT_TRANSITIONS: Dict[AgentStatus, FrozenSet[AgentStatus]] = {
    AgentStatus.AVAILABLE: frozenset({AgentStatus.ASSIGNED}),
    # ASSIGNED -> AVAILABLE only when the held order is cancelled
    AgentStatus.ASSIGNED: frozenset({AgentStatus.ON_DELIVERY, AgentStatus.AVAILABLE}),
    AgentStatus.ON_DELIVERY: frozenset({AgentStatus.AVAILABLE}),
    AgentStatus.OFFLINE: frozenset(),
}


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def can_transition_agent(current: AgentStatus, target: AgentStatus) -> bool:
    return target in AGENT_TRANSITIONS.get(current, frozenset())


def transition_order(order: Order, target: OrderStatus, now: datetime) -> OrderStatus:
    """Move `order` to `target`, stamping timestamps. Returns the previous status.

    Raises:
        InvalidStateTransition: `target` is not reachable from the current status;
            the order is left untouched
    """
    previous = order.status
    if not can_transition_order(previous, target):
        raise InvalidStateTransition("Order", order.order_id, previous, target)

    order.status = target
    order.updated_at = now
    if target == OrderStatus.DELIVERED:
        order.delivered_at = now
    return previous


def transition_agent(agent: DeliveryAgent, target: AgentStatus) -> AgentStatus:
    """Move `agent` to `target`. Returns the previous status."""
    previous = agent.status
    if not can_transition_agent(previous, target):
        raise InvalidStateTransition("DeliveryAgent", agent.agent_id, previous, target)

    agent.status = target
    return previous
