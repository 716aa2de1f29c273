"""
Control plane for the clustered scheduled task that drives the restart cycle.
"""

import sys
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from .cluster import FailoverClusterClient
from .config import CoordinatorConfig
from .models import ClusteredTaskInfo, ClusterNodeStatus, ClusterRestartState, NodeRestartState
from .readiness import ReadinessProber
from .scheduled_task import ClusteredTaskClient
from .state_store import StateStore, StateStoreError, TaskNotFoundError


class LifecycleError(Exception):
    """Raised when a control-plane operation cannot be performed."""


def build_invocation(path: str, config_path: Optional[str] = None) -> Tuple[str, str]:
    """
    Build the (execute, argument) pair of the scheduled task action.

    A ``.py`` path is run through the current interpreter; anything else (the
    installed ``crr`` launcher) is executed directly.
    """
    options = f'--config "{config_path}" ' if config_path else ""
    if path.lower().endswith(".py"):
        return sys.executable, f'"{path}" {options}invoke'
    return path, f"{options}invoke"


class TaskLifecycleManager:
    """Registers, controls and resets the restart cycle."""

    def __init__(
        self,
        config: CoordinatorConfig,
        cluster: FailoverClusterClient,
        tasks: ClusteredTaskClient,
        store: StateStore,
        prober: ReadinessProber,
    ):
        self.config = config
        self.cluster = cluster
        self.tasks = tasks
        self.store = store
        self.prober = prober

    @property
    def task_name(self) -> str:
        return self.config.task_name

    def _require_task(self) -> ClusteredTaskInfo:
        task = self.tasks.get_task(self.task_name)
        if task is None:
            raise TaskNotFoundError(f"Clustered task {self.task_name} not found")
        return task

    def start(self, path: str, suspended: bool = False) -> ClusterRestartState:
        """
        Validate the cluster and register the clustered task.

        Args:
            path: program the task runs on every node; must exist at the same path everywhere
            suspended: register the task disabled

        Returns:
            The initial restart state written to the task description
        """
        if self.tasks.get_task(self.task_name) is not None:
            raise LifecycleError(
                f"Clustered task {self.task_name} already exists - use 'restart' to reset it or 'stop' to remove it"
            )

        nodes = self.cluster.list_nodes()
        readiness = self.prober.cluster_ready(nodes)
        if not readiness.is_ready:
            raise LifecycleError(f"Cluster is not ready for a rolling restart: {readiness.reason}")

        # The task runs the same command line on every node
        self._require_on_every_node(nodes, path, "Program")
        if self.config.config_path:
            self._require_on_every_node(nodes, self.config.config_path, "Configuration file")

        state = ClusterRestartState.initial(node.name for node in nodes)
        execute, argument = build_invocation(path, self.config.config_path)
        duration_days = len(nodes) * self.config.duration_days_per_node

        self.tasks.register(
            task_name=self.task_name,
            execute=execute,
            argument=argument,
            description=state.to_json(),
            interval_minutes=self.config.interval_minutes,
            duration_days=duration_days,
            enabled=not suspended,
        )
        logger.success(
            f"Registered {self.task_name} for {len(nodes)} node(s)"
            f"{' (suspended)' if suspended else ''}: {', '.join(n.name for n in state.nodes)}"
        )
        return state

    def _require_on_every_node(self, nodes: List[ClusterNodeStatus], path: str, what: str) -> None:
        missing = [node.name for node in nodes if not self.cluster.path_exists_on_node(node.name, path)]
        if missing:
            raise LifecycleError(f"{what} {path} is not present on node(s): {', '.join(missing)}")

    def stop(self) -> None:
        self._require_task()
        self.tasks.unregister(self.task_name)
        logger.success(f"Unregistered {self.task_name}")

    def pause(self) -> None:
        self._require_task()
        self.tasks.set_enabled(self.task_name, False)
        logger.success(f"Suspended {self.task_name}")

    def resume(self) -> None:
        self._require_task()
        self.tasks.set_enabled(self.task_name, True)
        logger.success(f"Resumed {self.task_name}")

    def restart(self, keep_completed: bool = False) -> ClusterRestartState:
        """
        Reset the restart cycle without touching the task trigger or enabled flag.

        Args:
            keep_completed: keep nodes that already completed instead of restarting them again
        """
        self._require_task()
        names: List[str] = [node.name for node in self.cluster.list_nodes()]
        state = ClusterRestartState.initial(names)

        if keep_completed:
            try:
                previous = self.store.load()
            except StateStoreError as e:
                logger.warning(f"Previous restart state unusable, resetting every node: {e}")
            else:
                for node in previous.nodes:
                    if node.state == NodeRestartState.COMPLETE and state.get(node.name) is not None:
                        state = state.with_state(node.name, NodeRestartState.COMPLETE)

        self.store.save(state)
        logger.success(f"Reset restart state of {self.task_name}: {state.to_json()}")
        return state

    def status(self) -> Tuple[ClusteredTaskInfo, Optional[ClusterRestartState], Optional[str]]:
        """Return the task, its parsed restart state and the parse error, if any."""
        task = self._require_task()
        try:
            return task, self.store.load(), None
        except StateStoreError as e:
            return task, None, str(e)


def default_program_path() -> str:
    """Path of the running program, used as the scheduled task action by default."""
    return str(Path(sys.argv[0]).resolve())
