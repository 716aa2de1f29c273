"""
Precondition checks for node transitions.

The check functions are pure: they inspect a NodeSnapshot and return a
Readiness verdict with a human readable reason. ReadinessProber gathers the
snapshot from the live cluster and never changes anything.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from loguru import logger

from .cluster import FailoverClusterClient
from .maintenance_windows import MaintenanceWindowChecker
from .models import ClusterNodeStatus, NodeSnapshot, Readiness, ReadinessStatus
from .scheduled_task import ClusteredTaskClient


def check_node_up_normal(node: ClusterNodeStatus) -> Readiness:
    if node.state == "Up" and node.status_information == "Normal":
        return Readiness.ready(f"Node {node.name} is Up/Normal")
    return Readiness.not_ready(
        f"Node {node.name} is {node.state}/{node.status_information}, waiting for Up/Normal"
    )


def check_node_paused(node: ClusterNodeStatus) -> Readiness:
    if node.state == "Paused":
        return Readiness.ready(f"Node {node.name} is Paused")
    return Readiness.not_ready(f"Node {node.name} is {node.state}, waiting for Paused")


def check_drain_completed(node: ClusterNodeStatus) -> Readiness:
    if node.status_information == "DrainCompleted":
        return Readiness.ready(f"Node {node.name} finished draining")
    if node.status_information == "DrainFailed":
        return Readiness.failed(f"Drain of node {node.name} failed - roles could not be moved")
    return Readiness.not_ready(f"Node {node.name} drain status is {node.status_information}")


def check_no_storage_jobs(snapshot: NodeSnapshot) -> Readiness:
    active = snapshot.active_storage_jobs
    if not active:
        return Readiness.ready("No active storage jobs")
    jobs = ", ".join(
        f"{job.name} ({job.job_state}{f' {job.percent_complete}%' if job.percent_complete is not None else ''})"
        for job in active
    )
    return Readiness.not_ready(f"{len(active)} storage job(s) still running: {jobs}")


def check_rebooted_since_start(snapshot: NodeSnapshot) -> Readiness:
    """Detect a node that claims to be restarted but never actually rebooted."""
    if snapshot.last_boot_time is None:
        return Readiness.not_ready("Last boot time unknown")
    if snapshot.task_start_boundary is None:
        return Readiness.not_ready("Task start boundary unknown")
    if snapshot.last_boot_time >= snapshot.task_start_boundary:
        return Readiness.ready(f"Node booted at {snapshot.last_boot_time.isoformat()}")
    return Readiness.not_ready(
        f"Node last booted at {snapshot.last_boot_time.isoformat()}, before the restart cycle "
        f"started at {snapshot.task_start_boundary.isoformat()}"
    )


def check_maintenance_window(snapshot: NodeSnapshot) -> Readiness:
    if snapshot.maintenance_window_open:
        return Readiness.ready(snapshot.maintenance_reason)
    return Readiness.not_ready(snapshot.maintenance_reason)


def combine(*results: Readiness) -> Readiness:
    """Failed beats NotReady beats Ready; the first of the worst kind wins."""
    for status in (ReadinessStatus.FAILED, ReadinessStatus.NOT_READY):
        for result in results:
            if result.status == status:
                return result
    return Readiness.ready("; ".join(r.reason for r in results if r.reason))


class ReadinessProber:
    """Collects live state for the precondition checks."""

    def __init__(
        self,
        cluster: FailoverClusterClient,
        tasks: ClusteredTaskClient,
        task_name: str,
        maintenance: Optional[MaintenanceWindowChecker] = None,
        check_storage_jobs: bool = True,
    ):
        self.cluster = cluster
        self.tasks = tasks
        self.task_name = task_name
        self.maintenance = maintenance
        self.check_storage_jobs = check_storage_jobs

    def snapshot(self, node_name: str, now: Optional[datetime] = None) -> NodeSnapshot:
        """
        Gather a snapshot of the given node.

        Raises:
            ClusterCommandError: if any cluster query fails
        """
        node = self.cluster.get_node(node_name)
        storage_jobs = self.cluster.list_storage_jobs() if self.check_storage_jobs else []
        last_boot_time = self.cluster.last_boot_time()

        task = self.tasks.get_task(self.task_name)
        start_boundary = task.start_boundary if task else None

        window_open, window_reason = True, "No maintenance windows configured"
        if self.maintenance is not None:
            cluster_name = self.cluster.cluster_name()
            window_open, window_reason = self.maintenance.may_start_drain(
                cluster_name, now or datetime.now(timezone.utc)
            )

        snapshot = NodeSnapshot(
            node=node,
            storage_jobs=storage_jobs,
            last_boot_time=last_boot_time,
            task_start_boundary=start_boundary,
            maintenance_window_open=window_open,
            maintenance_reason=window_reason,
        )
        logger.debug(
            f"Snapshot of {node.name}: {node.state}/{node.status_information}, "
            f"{len(snapshot.active_storage_jobs)} active storage job(s), last boot {last_boot_time}"
        )
        return snapshot

    def cluster_ready(self, nodes: Optional[Iterable[ClusterNodeStatus]] = None) -> Readiness:
        """Every node must be Up/Normal before a restart cycle may begin."""
        nodes = list(nodes) if nodes is not None else self.cluster.list_nodes()
        if not nodes:
            return Readiness.failed("Cluster reports no nodes")
        return combine(*(check_node_up_normal(node) for node in nodes))
