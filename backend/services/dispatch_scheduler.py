"""Periodic dispatch driver.

One pass: Eligibility -> Clustering -> Assignment over every eligible order.
Passes never overlap; a pass requested while another runs waits for it.
Every cluster is assigned in its own unit of work under a timeout, and any
failure is recorded in the pass report instead of aborting the pass.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging
import uuid

from ..core.dispatch import (
    AssignmentPolicy,
    ClusteringEngine,
    EligibilityFilter,
    EligibleOrder,
    WeightCalculator,
)
from ..core.errors import DispatchError, NoEligibleAgent, StoreUnavailable
from ..core.models.domain import Cluster
from ..db.stores import StoreFactory
from ..utils.config import DispatchConfig

logger = logging.getLogger(__name__)

NO_MATCH = "NO_MATCH"
FAILED = "FAILED"


@dataclass
class ClusterReport:
    """What happened to one cluster in a pass."""

    anchor_order_id: str
    order_ids: List[str]
    capacity: str
    outcome: str  # REUSED, NEW_AGENT, NO_MATCH or FAILED
    agent_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anchor_order_id": self.anchor_order_id,
            "order_ids": self.order_ids,
            "capacity": self.capacity,
            "outcome": self.outcome,
            "agent_id": self.agent_id,
            "error_kind": self.error_kind,
            "error": self.error,
        }


@dataclass
class DispatchReport:
    """Summary of one dispatch pass."""

    pass_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    eligible_count: int = 0
    deferred_count: int = 0
    missing_geo_order_ids: List[str] = field(default_factory=list)
    clusters: List[ClusterReport] = field(default_factory=list)
    error: Optional[str] = None  # set when the pass could not read its input

    @property
    def assigned_order_ids(self) -> List[str]:
        return [
            order_id
            for c in self.clusters
            if c.outcome not in (NO_MATCH, FAILED)
            for order_id in c.order_ids
        ]

    @property
    def failed_clusters(self) -> List[ClusterReport]:
        return [c for c in self.clusters if c.outcome in (NO_MATCH, FAILED)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pass_id": self.pass_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "eligible_count": self.eligible_count,
            "deferred_count": self.deferred_count,
            "missing_geo_order_ids": self.missing_geo_order_ids,
            "assigned_order_ids": self.assigned_order_ids,
            "clusters": [c.to_dict() for c in self.clusters],
            "error": self.error,
        }


class DispatchScheduler:
    """Runs dispatch passes on demand and on a fixed interval.

    Args:
        store_factory: Opens a fresh unit of work per call
        config: Engine parameters
        clock: Source of the pass timestamp (injectable for tests)
    """

    def __init__(
        self,
        store_factory: StoreFactory,
        config: Optional[DispatchConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store_factory = store_factory
        self.config = config or DispatchConfig()
        self.clock = clock

        self.eligibility = EligibilityFilter(self.config.grace_period_seconds)
        self.clustering = ClusteringEngine(
            radius_km=self.config.proximity_radius_km,
            batch_window_seconds=self.config.batch_window_seconds,
            two_wheeler_max_weight_kg=self.config.two_wheeler_max_weight_kg,
        )
        self.policy = AssignmentPolicy(
            radius_km=self.config.proximity_radius_km,
            grace_period_seconds=self.config.grace_period_seconds,
        )

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.passes_completed = 0
        self.last_report: Optional[DispatchReport] = None

    # ------------------------------------------------------------------
    # Single pass
    # ------------------------------------------------------------------

    async def run_dispatch_pass(self) -> DispatchReport:
        """Run one full pass, waiting for any pass already in progress."""
        async with self._lock:
            report = await self._run_pass()
            self.passes_completed += 1
            self.last_report = report
            return report

    async def _run_pass(self) -> DispatchReport:
        now = self.clock()
        report = DispatchReport(pass_id=str(uuid.uuid4())[:8], started_at=now)

        try:
            eligible = await asyncio.wait_for(
                self._read_eligible(now, report), self.config.store_timeout_seconds
            )
        except (StoreUnavailable, asyncio.TimeoutError) as e:
            report.error = str(e) or type(e).__name__
            report.finished_at = self.clock()
            logger.error(f"Dispatch pass {report.pass_id} could not read pending orders: {report.error}")
            return report

        if not eligible:
            report.finished_at = self.clock()
            logger.debug(f"Dispatch pass {report.pass_id}: nothing eligible")
            return report

        logger.info(f"Dispatch pass {report.pass_id}: {len(eligible)} eligible orders")

        pool = list(eligible)
        while pool:
            anchor = pool.pop(0)
            cluster = self.clustering.build_cluster(anchor, pool)
            consumed = set(cluster.order_ids)
            pool = [e for e in pool if e.order.order_id not in consumed]
            report.clusters.append(await self._assign_cluster(cluster, now))

        report.finished_at = self.clock()
        logger.info(
            f"Dispatch pass {report.pass_id} done: {len(report.assigned_order_ids)} assigned, "
            f"{len(report.failed_clusters)} clusters left pending"
        )
        return report

    async def _read_eligible(self, now: datetime, report: DispatchReport) -> List[EligibleOrder]:
        async with self.store_factory() as store:
            result = await self.eligibility.select(store, now)
            weights = WeightCalculator(store.products)
            for entry in result.eligible:
                entry.weight_kg = await weights.order_weight_kg(entry.order)

        report.eligible_count = len(result.eligible)
        report.deferred_count = len(result.deferred)
        report.missing_geo_order_ids = result.missing_geo_order_ids
        return result.eligible

    async def _assign_in_store(self, cluster: Cluster, now: datetime):
        async with self.store_factory() as store:
            return await self.policy.assign(store, cluster, now)

    async def _assign_cluster(self, cluster: Cluster, now: datetime) -> ClusterReport:
        entry = ClusterReport(
            anchor_order_id=cluster.anchor.order_id,
            order_ids=cluster.order_ids,
            capacity=cluster.capacity.value,
            outcome=FAILED,
        )

        try:
            outcome = await asyncio.wait_for(
                self._assign_in_store(cluster, now), self.config.store_timeout_seconds
            )
        except NoEligibleAgent as e:
            logger.warning(str(e))
            entry.outcome = NO_MATCH
            entry.error_kind = e.kind
            entry.error = str(e)
        except DispatchError as e:
            logger.warning(f"Cluster {cluster.order_ids} skipped: {e.kind}: {e}")
            entry.error_kind = e.kind
            entry.error = str(e)
        except asyncio.TimeoutError:
            logger.warning(f"Cluster {cluster.order_ids} timed out after {self.config.store_timeout_seconds}s")
            entry.error_kind = "Timeout"
            entry.error = f"store call exceeded {self.config.store_timeout_seconds}s"
        except Exception as e:
            logger.exception(f"Unexpected failure assigning cluster {cluster.order_ids}")
            entry.error_kind = type(e).__name__
            entry.error = str(e)
        else:
            entry.outcome = outcome.kind.value
            entry.agent_id = outcome.agent_id

        return entry

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic loop on the running event loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name="dispatch-scheduler")
        logger.info(f"Dispatch scheduler started (every {self.config.tick_interval_seconds}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Dispatch scheduler stopped")

    def _delay_after(self, elapsed: float) -> float:
        """Sleep before the next tick so passes start on a fixed period."""
        return max(0.0, self.config.tick_interval_seconds - elapsed)

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.run_dispatch_pass()
            except Exception:
                logger.exception("Dispatch pass crashed")
            await asyncio.sleep(self._delay_after(loop.time() - started))

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "passes_completed": self.passes_completed,
            "tick_interval_seconds": self.config.tick_interval_seconds,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }
