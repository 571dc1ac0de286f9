"""Dispatch scheduler endpoints."""

from fastapi import APIRouter, Depends
import logging

from backend.api.schemas import DispatchReportResponse, SchedulerStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_scheduler():
    """Get the dispatch scheduler from main app."""
    from backend.api.main import app_state
    return app_state.scheduler


@router.post("/dispatch/run", response_model=DispatchReportResponse)
async def run_dispatch(scheduler=Depends(get_scheduler)):
    """Run one dispatch pass now.

    Waits for a pass already in progress, then runs a full pass.

    Returns:
        Report of the pass (clusters, assignments, skipped orders)
    """
    report = await scheduler.run_dispatch_pass()
    logger.info(f"On-demand dispatch pass {report.pass_id} assigned {len(report.assigned_order_ids)} orders")
    return report.to_dict()


@router.get("/dispatch/status", response_model=SchedulerStatusResponse)
async def dispatch_status(scheduler=Depends(get_scheduler)):
    return scheduler.get_status()
