"""
Data models for the rolling-restart coordinator.

The persisted aggregate (``ClusterRestartState``) lives in the description of
the clustered scheduled task; everything else describes live cluster state or
the outcome of a single tick.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class NodeRestartState(str, Enum):
    """Progress of a single node through the restart cycle."""

    EMPTY = ""
    PAUSED = "Paused"
    RESTARTED = "Restarted"
    RESUMED = "Resumed"
    COMPLETE = "Complete"
    RESTART_FAILED = "RestartFailed"

    @property
    def label(self) -> str:
        return self.value or "Empty"


# Forward order of the cycle; RestartFailed sits outside it.
STATE_SEQUENCE = (
    NodeRestartState.EMPTY,
    NodeRestartState.PAUSED,
    NodeRestartState.RESTARTED,
    NodeRestartState.RESUMED,
    NodeRestartState.COMPLETE,
)


class NodeState(BaseModel):
    """Persisted restart progress of one cluster node."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(alias="Name", min_length=1)
    state: NodeRestartState = Field(default=NodeRestartState.EMPTY, alias="State")

    @field_validator("state", mode="before")
    @classmethod
    def normalize_state(cls, v):
        """PowerShell writes $null for a node that has not started yet."""
        if v is None:
            return NodeRestartState.EMPTY
        return v


class ClusterRestartState(BaseModel):
    """Ordered per-node state list stored in the clustered task description."""

    nodes: List[NodeState] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def sort_and_check_nodes(cls, v: List[NodeState]) -> List[NodeState]:
        """Keep nodes sorted by name and reject duplicates."""
        seen = set()
        for node in v:
            key = node.name.lower()
            if key in seen:
                raise ValueError(f"Duplicate node name in restart state: {node.name}")
            seen.add(key)
        return sorted(v, key=lambda n: n.name.lower())

    @classmethod
    def initial(cls, node_names: Iterable[str]) -> "ClusterRestartState":
        """Build a fresh aggregate with every node in the Empty state."""
        return cls(nodes=[NodeState(name=name) for name in node_names])

    @classmethod
    def from_json(cls, text: str) -> "ClusterRestartState":
        """
        Parse the description JSON.

        Raises:
            ValueError: if the text is not a JSON list of Name/State objects
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Restart state is not valid JSON: {e}") from e

        # ConvertTo-Json collapses a one-element array into a bare object
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise ValueError(f"Restart state must be a JSON array, got {type(data).__name__}")

        try:
            return cls(nodes=[NodeState.model_validate(item) for item in data])
        except ValidationError as e:
            raise ValueError(f"Restart state has an invalid entry: {e}") from e

    def to_json(self) -> str:
        """Serialize to the compact JSON stored in the task description."""
        payload = [node.model_dump(by_alias=True, mode="json") for node in self.nodes]
        return json.dumps(payload, separators=(",", ":"))

    def get(self, name: str) -> Optional[NodeState]:
        for node in self.nodes:
            if node.name.lower() == name.lower():
                return node
        return None

    def current_node(self) -> Optional[NodeState]:
        """The node whose turn it is: the first one not yet Complete."""
        for node in self.nodes:
            if node.state != NodeRestartState.COMPLETE:
                return node
        return None

    def is_complete(self) -> bool:
        return self.current_node() is None

    def with_state(self, name: str, state: NodeRestartState) -> "ClusterRestartState":
        """Return a copy with one node's state replaced."""
        if self.get(name) is None:
            raise KeyError(f"Node {name} is not part of the restart state")
        return ClusterRestartState(
            nodes=[
                NodeState(name=node.name, state=state) if node.name.lower() == name.lower() else node
                for node in self.nodes
            ]
        )


class ClusterNodeStatus(BaseModel):
    """Live status of a failover cluster node as reported by Get-ClusterNode."""

    name: str
    state: str  # Up, Down, Paused, Joining, Unknown
    status_information: str = "Normal"  # Normal, DrainInProgress, DrainCompleted, DrainFailed


class StorageJob(BaseModel):
    """A storage job (pool resync/repair) reported by Get-StorageJob."""

    name: str
    job_state: str
    percent_complete: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.job_state.lower() != "completed"


class ClusteredTaskInfo(BaseModel):
    """The clustered scheduled task that re-invokes the coordinator."""

    task_name: str
    description: Optional[str] = None
    enabled: bool = True
    start_boundary: Optional[datetime] = None


class NodeSnapshot(BaseModel):
    """Everything the driver needs to know about the local node for one tick."""

    node: ClusterNodeStatus
    storage_jobs: List[StorageJob] = Field(default_factory=list)
    last_boot_time: Optional[datetime] = None
    task_start_boundary: Optional[datetime] = None
    maintenance_window_open: bool = True
    maintenance_reason: str = "No maintenance windows configured"

    @property
    def active_storage_jobs(self) -> List[StorageJob]:
        return [job for job in self.storage_jobs if job.is_active]


class ReadinessStatus(str, Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    FAILED = "failed"


class Readiness(BaseModel):
    """Verdict of a precondition check: Ready, NotReady(reason) or Failed(error)."""

    status: ReadinessStatus
    reason: str = ""

    @classmethod
    def ready(cls, reason: str = "") -> "Readiness":
        return cls(status=ReadinessStatus.READY, reason=reason)

    @classmethod
    def not_ready(cls, reason: str) -> "Readiness":
        return cls(status=ReadinessStatus.NOT_READY, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "Readiness":
        return cls(status=ReadinessStatus.FAILED, reason=reason)

    @property
    def is_ready(self) -> bool:
        return self.status == ReadinessStatus.READY


class TickAction(str, Enum):
    NONE = "none"
    SUSPEND = "suspend"
    RESTART = "restart"
    RESUME = "resume"
    COMPLETE = "complete"


class TickOutcome(str, Enum):
    NOT_MY_TURN = "not_my_turn"
    ALL_COMPLETE = "all_complete"
    NOT_READY = "not_ready"
    INCONSISTENT = "inconsistent"
    OPERATOR_REQUIRED = "operator_required"
    FAILED = "failed"
    TRANSITIONED = "transitioned"


class TickDecision(BaseModel):
    """Pure result of evaluating one tick against persisted and live state."""

    outcome: TickOutcome
    action: TickAction = TickAction.NONE
    turn_node: Optional[str] = None
    state: ClusterRestartState
    reason: str = ""


class TickResult(BaseModel):
    """What a tick actually did once the decision was executed."""

    outcome: TickOutcome
    action: TickAction = TickAction.NONE
    node: Optional[str] = None
    previous_state: Optional[NodeRestartState] = None
    new_state: Optional[NodeRestartState] = None
    persisted: bool = False
    message: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
