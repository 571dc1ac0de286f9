"""Tests for the manual order lifecycle."""

import asyncio
import re

import pytest

from backend.core.errors import (
    ConcurrentModification,
    InvalidConfirmationCode,
    InvalidStateTransition,
    NotFound,
)
from backend.core.lifecycle import can_transition_agent, can_transition_order
from backend.core.models.domain import AgentStatus, OrderStatus
from backend.services.order_workflow import OrderWorkflowService, generate_confirmation_code

CODE = "482913"


@pytest.fixture
def workflow(db, clock):
    return OrderWorkflowService(db.session, clock=clock, code_generator=lambda: CODE)


@pytest.fixture
def pending(seed, make_order, make_agent):
    """One pending order and one available agent."""
    seed(agents=[make_agent("AGT_1")], orders=[make_order("ORD_1")])


@pytest.fixture
def out_for_delivery(workflow, pending):
    asyncio.run(workflow.assign("ORD_1", "AGT_1"))
    asyncio.run(workflow.mark_picked_up("ORD_1"))
    asyncio.run(workflow.mark_out_for_delivery("ORD_1"))


@pytest.fixture
def batch(seed, make_order, make_agent):
    """AGT_1 holding ORD_A (anchor) and ORD_B."""
    seed(
        agents=[make_agent("AGT_1", status=AgentStatus.ASSIGNED, assigned_order_id="ORD_A")],
        orders=[
            make_order("ORD_A", seconds=0, status=OrderStatus.ASSIGNED, delivery_agent_id="AGT_1"),
            make_order("ORD_B", seconds=5, status=OrderStatus.ASSIGNED, delivery_agent_id="AGT_1"),
        ],
    )


# ============================================================================
# Transition tables
# ============================================================================


class TestTransitionTables:
    """Allowed order and agent moves."""

    def test_happy_path_order_moves(self):
        path = [
            OrderStatus.PENDING_ASSIGNMENT,
            OrderStatus.ASSIGNED,
            OrderStatus.PICKED_UP,
            OrderStatus.OUT_FOR_DELIVERY,
            OrderStatus.DELIVERED,
        ]
        for current, target in zip(path, path[1:]):
            assert can_transition_order(current, target), f"{current} -> {target} should be allowed"

    @pytest.mark.parametrize("status", [OrderStatus.PENDING_ASSIGNMENT, OrderStatus.ASSIGNED])
    def test_cancel_allowed_before_pickup(self, status):
        assert can_transition_order(status, OrderStatus.CANCELLED)

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PICKED_UP, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    )
    def test_cancel_refused_from_pickup_on(self, status):
        assert not can_transition_order(status, OrderStatus.CANCELLED)

    def test_terminal_states_have_no_exit(self):
        for terminal in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            assert not any(can_transition_order(terminal, s) for s in OrderStatus)

    def test_agent_moves(self):
        assert can_transition_agent(AgentStatus.AVAILABLE, AgentStatus.ASSIGNED)
        assert can_transition_agent(AgentStatus.ASSIGNED, AgentStatus.ON_DELIVERY)
        assert can_transition_agent(AgentStatus.ON_DELIVERY, AgentStatus.AVAILABLE)
        assert not can_transition_agent(AgentStatus.AVAILABLE, AgentStatus.ON_DELIVERY)
        assert not any(can_transition_agent(AgentStatus.OFFLINE, s) for s in AgentStatus)


# ============================================================================
# Operations
# ============================================================================


class TestAssign:
    def test_assign_pending_order(self, db, workflow, pending):
        order = asyncio.run(workflow.assign("ORD_1", "AGT_1"))

        assert order.status == OrderStatus.ASSIGNED
        assert order.delivery_agent_id == "AGT_1"
        assert order.updated_at is not None
        agent = db.agents["AGT_1"]
        assert agent.status == AgentStatus.ASSIGNED
        assert agent.assigned_order_id == "ORD_1"

    def test_assign_to_busy_agent_refused(self, db, workflow, seed, make_order, pending):
        seed(orders=[make_order("ORD_2")])
        asyncio.run(workflow.assign("ORD_1", "AGT_1"))

        with pytest.raises(InvalidStateTransition):
            asyncio.run(workflow.assign("ORD_2", "AGT_1"))

        assert db.orders["ORD_2"].status == OrderStatus.PENDING_ASSIGNMENT
        assert db.agents["AGT_1"].assigned_order_id == "ORD_1"

    def test_assign_unknown_order(self, workflow, pending):
        with pytest.raises(NotFound):
            asyncio.run(workflow.assign("ORD_404", "AGT_1"))

    def test_assign_unknown_agent(self, workflow, pending):
        with pytest.raises(NotFound) as exc_info:
            asyncio.run(workflow.assign("ORD_1", "AGT_404"))

        assert exc_info.value.entity == "DeliveryAgent"


class TestPickupAndTransit:
    def test_pickup_issues_code_and_starts_trip(self, db, workflow, pending):
        asyncio.run(workflow.assign("ORD_1", "AGT_1"))

        order = asyncio.run(workflow.mark_picked_up("ORD_1"))

        assert order.status == OrderStatus.PICKED_UP
        assert order.confirmation_code == CODE
        assert db.agents["AGT_1"].status == AgentStatus.ON_DELIVERY

    def test_pickup_requires_assigned(self, db, workflow, pending):
        with pytest.raises(InvalidStateTransition):
            asyncio.run(workflow.mark_picked_up("ORD_1"))

        assert db.orders["ORD_1"].status == OrderStatus.PENDING_ASSIGNMENT
        assert db.orders["ORD_1"].confirmation_code is None

    def test_out_for_delivery_requires_pickup(self, workflow, pending):
        asyncio.run(workflow.assign("ORD_1", "AGT_1"))

        with pytest.raises(InvalidStateTransition):
            asyncio.run(workflow.mark_out_for_delivery("ORD_1"))

    def test_out_for_delivery(self, db, out_for_delivery):
        assert db.orders["ORD_1"].status == OrderStatus.OUT_FOR_DELIVERY


class TestDeliver:
    def test_wrong_code_rejected(self, db, workflow, out_for_delivery):
        with pytest.raises(InvalidConfirmationCode):
            asyncio.run(workflow.deliver("ORD_1", "000000"))

        assert db.orders["ORD_1"].status == OrderStatus.OUT_FOR_DELIVERY
        assert db.agents["AGT_1"].status == AgentStatus.ON_DELIVERY

    def test_non_ascii_code_rejected(self, db, workflow, out_for_delivery):
        # Full-width digits look like the real code but must not match or crash
        with pytest.raises(InvalidConfirmationCode):
            asyncio.run(workflow.deliver("ORD_1", "４８２９１３"))

        assert db.orders["ORD_1"].status == OrderStatus.OUT_FOR_DELIVERY

    def test_correct_code_delivers_and_frees_agent(self, db, workflow, clock, out_for_delivery):
        clock.advance(600)

        order = asyncio.run(workflow.deliver("ORD_1", CODE))

        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_at == clock()
        assert order.delivery_agent_id is None
        agent = db.agents["AGT_1"]
        assert agent.status == AgentStatus.AVAILABLE
        assert agent.assigned_order_id is None

    def test_deliver_before_out_for_delivery(self, workflow, pending):
        asyncio.run(workflow.assign("ORD_1", "AGT_1"))
        asyncio.run(workflow.mark_picked_up("ORD_1"))

        with pytest.raises(InvalidStateTransition):
            asyncio.run(workflow.deliver("ORD_1", CODE))

    def test_deliver_twice_refused(self, workflow, out_for_delivery):
        asyncio.run(workflow.deliver("ORD_1", CODE))

        with pytest.raises(InvalidStateTransition):
            asyncio.run(workflow.deliver("ORD_1", CODE))


class TestCancel:
    def test_cancel_pending(self, db, workflow, pending):
        order = asyncio.run(workflow.cancel("ORD_1"))

        assert order.status == OrderStatus.CANCELLED
        assert db.agents["AGT_1"].status == AgentStatus.AVAILABLE

    def test_cancel_assigned_releases_agent(self, db, workflow, pending):
        asyncio.run(workflow.assign("ORD_1", "AGT_1"))

        order = asyncio.run(workflow.cancel("ORD_1"))

        assert order.delivery_agent_id is None
        assert db.agents["AGT_1"].status == AgentStatus.AVAILABLE
        assert db.agents["AGT_1"].assigned_order_id is None

    def test_cancel_picked_up_refused(self, db, workflow, pending):
        asyncio.run(workflow.assign("ORD_1", "AGT_1"))
        asyncio.run(workflow.mark_picked_up("ORD_1"))

        with pytest.raises(InvalidStateTransition):
            asyncio.run(workflow.cancel("ORD_1"))

        assert db.orders["ORD_1"].status == OrderStatus.PICKED_UP
        assert db.agents["AGT_1"].status == AgentStatus.ON_DELIVERY


# ============================================================================
# Batches
# ============================================================================


class TestBatchLifecycle:
    """Agent release with several in-flight orders."""

    def test_second_pickup_keeps_agent_on_delivery(self, db, workflow, batch):
        asyncio.run(workflow.mark_picked_up("ORD_A"))
        asyncio.run(workflow.mark_picked_up("ORD_B"))

        assert db.agents["AGT_1"].status == AgentStatus.ON_DELIVERY
        assert db.orders["ORD_B"].status == OrderStatus.PICKED_UP

    def test_agent_freed_after_last_delivery(self, db, workflow, batch):
        for order_id in ("ORD_A", "ORD_B"):
            asyncio.run(workflow.mark_picked_up(order_id))
            asyncio.run(workflow.mark_out_for_delivery(order_id))

        asyncio.run(workflow.deliver("ORD_A", CODE))
        agent = db.agents["AGT_1"]
        assert agent.status == AgentStatus.ON_DELIVERY
        assert agent.assigned_order_id == "ORD_B"

        asyncio.run(workflow.deliver("ORD_B", CODE))
        agent = db.agents["AGT_1"]
        assert agent.status == AgentStatus.AVAILABLE
        assert agent.assigned_order_id is None

    def test_cancel_anchor_moves_anchor(self, db, workflow, batch):
        asyncio.run(workflow.cancel("ORD_A"))

        agent = db.agents["AGT_1"]
        assert agent.status == AgentStatus.ASSIGNED
        assert agent.assigned_order_id == "ORD_B"
        assert db.orders["ORD_B"].delivery_agent_id == "AGT_1"


# ============================================================================
# Concurrency
# ============================================================================


class TestConcurrentWorkflow:
    def test_stale_write_loses(self, db, workflow, pending):
        async def race():
            async with db.session() as loser:
                order = await loser.orders.find_by_id("ORD_1")
                await workflow.cancel("ORD_1")
                order.status = OrderStatus.ASSIGNED
                await loser.orders.save(order)

        with pytest.raises(ConcurrentModification):
            asyncio.run(race())

        assert db.orders["ORD_1"].status == OrderStatus.CANCELLED


# ============================================================================
# Audit trail
# ============================================================================


class TestHistoryAndListeners:
    def test_history_records_committed_transitions(self, workflow, out_for_delivery):
        with pytest.raises(InvalidConfirmationCode):
            asyncio.run(workflow.deliver("ORD_1", "999999"))
        asyncio.run(workflow.deliver("ORD_1", CODE))

        history = workflow.get_history()
        moves = [(t["from_status"], t["to_status"]) for t in history]
        assert moves == [
            ("PENDING_ASSIGNMENT", "ASSIGNED"),
            ("ASSIGNED", "PICKED_UP"),
            ("PICKED_UP", "OUT_FOR_DELIVERY"),
            ("OUT_FOR_DELIVERY", "DELIVERED"),
        ]
        assert history[-1]["operation"] == "deliver"
        assert history[-1]["agent_id"] == "AGT_1"
        assert len(workflow.get_history(limit=2)) == 2

    def test_history_limit_zero_is_empty(self, workflow, pending):
        asyncio.run(workflow.assign("ORD_1", "AGT_1"))

        assert workflow.get_history(limit=0) == []
        assert len(workflow.get_history(limit=1)) == 1

    def test_history_is_bounded(self, db, clock, pending):
        workflow = OrderWorkflowService(db.session, clock=clock, code_generator=lambda: CODE, history_size=2)

        asyncio.run(workflow.assign("ORD_1", "AGT_1"))
        asyncio.run(workflow.mark_picked_up("ORD_1"))
        asyncio.run(workflow.mark_out_for_delivery("ORD_1"))

        history = workflow.get_history()
        assert [t["to_status"] for t in history] == ["PICKED_UP", "OUT_FOR_DELIVERY"]

    def test_listeners_called_and_failures_contained(self, workflow, pending):
        seen = []

        def broken(transition):
            raise ValueError("listener bug")

        workflow.on_transition(broken)
        workflow.on_transition(seen.append)

        order = asyncio.run(workflow.assign("ORD_1", "AGT_1"))

        assert order.status == OrderStatus.ASSIGNED
        assert [t["to_status"] for t in seen] == ["ASSIGNED"]


class TestConfirmationCode:
    def test_six_numeric_digits(self):
        for _ in range(50):
            assert re.fullmatch(r"\d{6}", generate_confirmation_code())
