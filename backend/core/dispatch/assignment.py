"""Assignment policy: pick an agent for a cluster and write the assignment.

This is the only place the dispatch pass mutates orders and agents. All
writes for a cluster go through one unit of work, so a cluster is assigned
completely or not at all.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple
import logging

from ...utils.geo import distance_km
from ..errors import ConcurrentModification, NoEligibleAgent, NotFound
from ..lifecycle import transition_agent, transition_order
from ..models.domain import (
    AgentStatus,
    Cluster,
    DeliveryAgent,
    Order,
    OrderStatus,
)

logger = logging.getLogger(__name__)


class AssignmentKind(str, Enum):
    REUSED = "REUSED"
    NEW_AGENT = "NEW_AGENT"


@dataclass
class AssignmentOutcome:
    """Result of assigning one cluster."""

    kind: AssignmentKind
    agent_id: str
    order_ids: List[str] = field(default_factory=list)
    distance_km: float = 0.0


class AssignmentPolicy:
    """Reuse a busy nearby agent when possible, else the nearest free one.

    Reuse: an ASSIGNED agent of the cluster's tier, with coordinates within
    `radius_km` of the warehouse, whose earliest in-flight order is at least
    `grace_period_seconds` old. Candidates are tried in ascending agent id.

    New agent: the AVAILABLE agent of the cluster's tier with coordinates
    nearest to the warehouse (ties by agent id).
    """

    def __init__(self, radius_km: float = 3.0, grace_period_seconds: float = 30.0):
        self.radius_km = radius_km
        self.grace_period_seconds = grace_period_seconds

    async def _load_members(self, store, cluster: Cluster) -> List[Order]:
        """Re-read the cluster's orders and check they are still pending."""
        members = []
        for order_id in cluster.order_ids:
            order = await store.orders.find_by_id(order_id)
            if order is None:
                raise NotFound("Order", order_id)
            if order.status != OrderStatus.PENDING_ASSIGNMENT:
                raise ConcurrentModification(
                    "Order", order_id, f"status changed to {order.status.value}"
                )
            members.append(order)
        return members

    def _distance_to_warehouse(self, agent: DeliveryAgent, cluster: Cluster) -> float:
        wh = cluster.warehouse
        return distance_km(agent.latitude, agent.longitude, wh.latitude, wh.longitude)

    async def find_reusable_agent(
        self, store, cluster: Cluster, now: datetime
    ) -> Optional[Tuple[DeliveryAgent, float]]:
        busy = await store.agents.find_by_status(AgentStatus.ASSIGNED)

        for agent in sorted(busy, key=lambda a: a.agent_id):
            if agent.vehicle_capacity != cluster.capacity or not agent.has_coordinates:
                continue

            distance = self._distance_to_warehouse(agent, cluster)
            if distance > self.radius_km:
                continue

            in_flight = [o for o in await store.orders.find_by_assigned_agent(agent.agent_id) if o.is_in_flight]
            if not in_flight:
                logger.warning(f"Agent {agent.agent_id} is ASSIGNED but holds no in-flight order")
                continue

            earliest = min(o.created_at for o in in_flight)
            if (now - earliest).total_seconds() < self.grace_period_seconds:
                logger.debug(f"Agent {agent.agent_id} trip still in its grace window, not reused")
                continue

            return agent, distance

        return None

    async def find_nearest_available_agent(
        self, store, cluster: Cluster
    ) -> Optional[Tuple[DeliveryAgent, float]]:
        candidates = [
            (self._distance_to_warehouse(agent, cluster), agent.agent_id, agent)
            for agent in await store.agents.find_by_status(AgentStatus.AVAILABLE)
            if agent.vehicle_capacity == cluster.capacity and agent.has_coordinates
        ]
        if not candidates:
            return None

        distance, _, agent = min(candidates, key=lambda c: (c[0], c[1]))
        return agent, distance

    async def assign(self, store, cluster: Cluster, now: datetime) -> AssignmentOutcome:
        """Assign every order of `cluster` to a single agent.

        Raises:
            NoEligibleAgent: no reusable or available agent; nothing is written
            NotFound: a member order disappeared
            ConcurrentModification: a member order or the agent changed since read
        """
        members = await self._load_members(store, cluster)

        reusable = await self.find_reusable_agent(store, cluster, now)
        if reusable is not None:
            agent, distance = reusable
            kind = AssignmentKind.REUSED
        else:
            nearest = await self.find_nearest_available_agent(store, cluster)
            if nearest is None:
                raise NoEligibleAgent(cluster.order_ids, cluster.capacity)
            agent, distance = nearest
            kind = AssignmentKind.NEW_AGENT
            transition_agent(agent, AgentStatus.ASSIGNED)
            agent.assigned_order_id = cluster.anchor.order_id

        for order in members:
            transition_order(order, OrderStatus.ASSIGNED, now)
            order.delivery_agent_id = agent.agent_id
            await store.orders.save(order)

        # Version bump on reuse too; conflicts with a concurrent release
        await store.agents.save(agent)

        logger.info(
            f"{'Reused' if kind == AssignmentKind.REUSED else 'Assigned new'} agent "
            f"{agent.agent_id} ({distance:.2f}km from warehouse {cluster.warehouse.warehouse_id}) "
            f"for orders {cluster.order_ids}"
        )
        return AssignmentOutcome(
            kind=kind,
            agent_id=agent.agent_id,
            order_ids=cluster.order_ids,
            distance_km=distance,
        )
