"""
Wiring of the coordinator components for one process invocation.
"""

from typing import Optional

from .cluster import FailoverClusterClient
from .config import CoordinatorConfig
from .driver import Coordinator
from .lifecycle import TaskLifecycleManager
from .maintenance_windows import MaintenanceWindowChecker
from .powershell import PowerShellRunner
from .readiness import ReadinessProber
from .scheduled_task import ClusteredTaskClient
from .state_store import ClusteredTaskDescriptionStore, StateStore


class CoordinatorContext:
    """Holds the configured clients and hands out the high-level operations."""

    def __init__(
        self,
        config: CoordinatorConfig,
        cluster: Optional[FailoverClusterClient] = None,
        tasks: Optional[ClusteredTaskClient] = None,
        store: Optional[StateStore] = None,
        maintenance: Optional[MaintenanceWindowChecker] = None,
    ):
        self.config = config
        runner = PowerShellRunner(config.powershell, timeout=config.command_timeout)
        self.cluster = cluster or FailoverClusterClient(runner)
        self.tasks = tasks or ClusteredTaskClient(runner)
        self.store = store or StateStore(ClusteredTaskDescriptionStore(config.task_name, self.tasks))

        if maintenance is None and config.maintenance_config:
            maintenance = MaintenanceWindowChecker(config.maintenance_config)
        self.maintenance = maintenance

        self.prober = ReadinessProber(
            self.cluster,
            self.tasks,
            config.task_name,
            maintenance=self.maintenance,
            check_storage_jobs=config.check_storage_jobs,
        )

    def coordinator(self, dry_run: bool = False) -> Coordinator:
        return Coordinator(self.store, self.cluster, self.prober, dry_run=dry_run)

    def lifecycle(self) -> TaskLifecycleManager:
        return TaskLifecycleManager(self.config, self.cluster, self.tasks, self.store, self.prober)
