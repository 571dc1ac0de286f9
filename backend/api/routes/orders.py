"""Order lifecycle endpoints for the Delivery Dispatch Engine.

Engine errors propagate to the `DispatchError` handler in `backend.api.main`,
which maps them to HTTP status codes.
"""

from fastapi import APIRouter, Depends
import logging

from backend.api.schemas import (
    AssignOrderRequest,
    DeliverOrderRequest,
    OrderResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_workflow():
    """Get the order workflow service from main app."""
    from backend.api.main import app_state
    return app_state.workflow


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, workflow=Depends(get_workflow)):
    """Get details of a specific order."""
    return await workflow.get_order(order_id)


@router.post("/orders/{order_id}/assign", response_model=OrderResponse)
async def assign_order(
    order_id: str,
    request: AssignOrderRequest,
    workflow=Depends(get_workflow),
):
    """Manually assign a pending order to an available agent.

    Args:
        order_id: Order in PENDING_ASSIGNMENT
        request: Agent to assign (must be AVAILABLE)

    Returns:
        The ASSIGNED order
    """
    logger.info(f"Manual assignment requested: {order_id} -> {request.agent_id}")
    return await workflow.assign(order_id, request.agent_id)


@router.post("/orders/{order_id}/pickup", response_model=OrderResponse)
async def pickup_order(order_id: str, workflow=Depends(get_workflow)):
    """Mark an order as picked up; a confirmation code is issued to the customer."""
    return await workflow.mark_picked_up(order_id)


@router.post("/orders/{order_id}/out-for-delivery", response_model=OrderResponse)
async def out_for_delivery(order_id: str, workflow=Depends(get_workflow)):
    return await workflow.mark_out_for_delivery(order_id)


@router.post("/orders/{order_id}/deliver", response_model=OrderResponse)
async def deliver_order(
    order_id: str,
    request: DeliverOrderRequest,
    workflow=Depends(get_workflow),
):
    """Complete delivery. The confirmation code issued at pickup is required."""
    return await workflow.deliver(order_id, request.confirmation_code)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: str, workflow=Depends(get_workflow)):
    """Cancel an order that has not been picked up yet."""
    return await workflow.cancel(order_id)
