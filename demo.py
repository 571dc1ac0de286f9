"""Demo script showing the end-to-end dispatch workflow.

This demonstrates, on the in-memory store:
1. Two nearby light orders batched onto one two-wheeler
2. A later order reusing the busy agent instead of a free one
3. The manual lifecycle: pickup, out-for-delivery, delivery with code
4. Cancellation rules and the transition history
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

from backend.core.errors import InvalidConfirmationCode, InvalidStateTransition
from backend.core.models.domain import (
    AgentStatus,
    DeliveryAgent,
    Order,
    Product,
    VehicleCapacity,
    Warehouse,
)
from backend.db.memory import InMemoryDatabase
from backend.services.dispatch_scheduler import DispatchScheduler
from backend.services.order_workflow import OrderWorkflowService
from backend.utils.config import DispatchConfig


class DemoClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


def create_sample_data(now: datetime):
    """Warehouse, products and agents around Koramangala, Bengaluru."""
    warehouse = Warehouse("WH_001", "Koramangala Hub", 12.9352, 77.6245)
    products = [
        Product("PRD_SPICE", "Spice Sampler", unit_weight_grams=200.0, price=Decimal("249.00")),
        Product("PRD_RICE", "Basmati Rice 5kg", unit_weight_grams=5000.0, price=Decimal("899.00")),
    ]
    agents = [
        # ~1.5 km from the warehouse
        DeliveryAgent("AGT_2W_001", "Ravi", VehicleCapacity.TWO_WHEELER, AgentStatus.AVAILABLE, 12.9487, 77.6245),
        # ~0.1 km from the warehouse
        DeliveryAgent("AGT_2W_002", "Meena", VehicleCapacity.TWO_WHEELER, AgentStatus.AVAILABLE, 12.9361, 77.6245),
        DeliveryAgent("AGT_4W_001", "Arjun", VehicleCapacity.FOUR_WHEELER, AgentStatus.AVAILABLE, 12.9340, 77.6260),
    ]
    orders = [
        Order("ORD_001", "CUST_A", "5th Block", "PRD_SPICE", warehouse_id="WH_001",
              latitude=12.9400, longitude=77.6200, created_at=now),
        # 5 s later, ~0.3 km away
        Order("ORD_002", "CUST_B", "6th Block", "PRD_SPICE", warehouse_id="WH_001",
              latitude=12.9427, longitude=77.6200, created_at=now + timedelta(seconds=5)),
        Order("ORD_003", "CUST_C", "BTM Layout", "PRD_RICE", warehouse_id="WH_001",
              latitude=12.9166, longitude=77.6101, created_at=now + timedelta(seconds=8)),
    ]
    return warehouse, products, agents, orders


def print_report(report):
    print(f"  Pass {report.pass_id}: {report.eligible_count} eligible, {report.deferred_count} deferred")
    for cluster in report.clusters:
        print(f"    {cluster.order_ids} [{cluster.capacity}] -> {cluster.outcome} {cluster.agent_id or ''}")


async def demo_batching(db: InMemoryDatabase, clock: DemoClock, scheduler: DispatchScheduler):
    print("\n" + "=" * 70)
    print("DEMO 1: Batching nearby orders")
    print("=" * 70)

    print("\nBefore the grace period:")
    print_report(await scheduler.run_dispatch_pass())

    clock.advance(40)
    print("\nAfter the grace period:")
    print_report(await scheduler.run_dispatch_pass())

    for agent in sorted(db.agents.values(), key=lambda a: a.agent_id):
        print(f"  {agent.agent_id}: {agent.status.value} anchor={agent.assigned_order_id}")


async def demo_reuse(db: InMemoryDatabase, clock: DemoClock, scheduler: DispatchScheduler):
    print("\n" + "=" * 70)
    print("DEMO 2: Reusing a busy agent")
    print("=" * 70)

    late = Order("ORD_004", "CUST_D", "7th Block", "PRD_SPICE", warehouse_id="WH_001",
                 latitude=12.9390, longitude=77.6230, created_at=clock())
    await db.seed(orders=[late])

    clock.advance(35)
    report = await scheduler.run_dispatch_pass()
    print_report(report)
    print(f"  ORD_004 went to {db.orders['ORD_004'].delivery_agent_id}")


async def demo_lifecycle(db: InMemoryDatabase, workflow: OrderWorkflowService):
    print("\n" + "=" * 70)
    print("DEMO 3: Manual lifecycle")
    print("=" * 70)

    order = await workflow.mark_picked_up("ORD_001")
    print(f"\n  Picked up ORD_001, confirmation code issued: {order.confirmation_code}")
    await workflow.mark_out_for_delivery("ORD_001")

    try:
        await workflow.deliver("ORD_001", "000000" if order.confirmation_code != "000000" else "111111")
    except InvalidConfirmationCode as e:
        print(f"  Wrong code rejected: {e}")

    await workflow.deliver("ORD_001", order.confirmation_code)
    agent = db.agents[db.orders["ORD_002"].delivery_agent_id]
    print(f"  ORD_001 delivered; agent {agent.agent_id} is {agent.status.value}, anchor now {agent.assigned_order_id}")

    try:
        await workflow.cancel("ORD_001")
    except InvalidStateTransition as e:
        print(f"  Cancel refused: {e}")

    await workflow.cancel("ORD_002")
    await workflow.cancel("ORD_004")
    print(f"  After cancelling the rest of the batch: {agent.agent_id} is {db.agents[agent.agent_id].status.value}")

    print("\nTransition history:")
    for transition in workflow.get_history(limit=10):
        print(f"  {transition['order_id']}: {transition['from_status']} -> {transition['to_status']}")


async def main():
    clock = DemoClock(datetime(2024, 1, 15, 10, 0, 0))
    db = InMemoryDatabase()
    warehouse, products, agents, orders = create_sample_data(clock())
    await db.seed(warehouses=[warehouse], products=products, agents=agents, orders=orders)

    config = DispatchConfig(scheduler_enabled=False)
    scheduler = DispatchScheduler(db.session, config, clock=clock)
    workflow = OrderWorkflowService(db.session, clock=clock)

    await demo_batching(db, clock, scheduler)
    await demo_reuse(db, clock, scheduler)
    await demo_lifecycle(db, workflow)


if __name__ == "__main__":
    print("\n" + "=" * 70)
    print("DELIVERY DISPATCH ENGINE - DEMO SUITE")
    print("=" * 70)

    asyncio.run(main())

    print("\n" + "=" * 70)
    print("DEMO COMPLETE")
    print("=" * 70)
