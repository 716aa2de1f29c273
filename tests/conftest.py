"""
Shared fixtures: an in-memory cluster, scheduler and description store.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from loguru import logger

from crr.cluster import ClusterCommandError
from crr.config import CoordinatorConfig
from crr.driver import Coordinator
from crr.models import ClusteredTaskInfo, ClusterNodeStatus, StorageJob
from crr.readiness import ReadinessProber
from crr.state_store import StateStore, TaskNotFoundError

TASK_NAME = "ClusterRollingRestart"
CYCLE_START = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
OLD_BOOT = datetime(2024, 2, 1, 8, 0, tzinfo=timezone.utc)


class FakeCluster:
    """Failover cluster double that records every action in a shared event log."""

    def __init__(self, node_names: List[str], local: str, events: List[tuple]):
        self.nodes: Dict[str, ClusterNodeStatus] = {
            name: ClusterNodeStatus(name=name, state="Up", status_information="Normal") for name in node_names
        }
        self.local = local
        self.events = events
        self.name = "TESTCLUSTER"
        self.storage_jobs: List[StorageJob] = []
        self.last_boot = OLD_BOOT
        self.drain_completes = True
        self.fail_restart = False
        self.fail_suspend = False
        self.fail_queries = False
        self.missing_path_on: set = set()
        self.missing_files: Dict[str, set] = {}
        self.checked_paths: List[tuple] = []

    def local_node_name(self) -> str:
        return self.local

    def cluster_name(self) -> str:
        return self.name

    def list_nodes(self) -> List[ClusterNodeStatus]:
        if self.fail_queries:
            raise ClusterCommandError("cluster service unreachable")
        return list(self.nodes.values())

    def get_node(self, name: str) -> ClusterNodeStatus:
        for node in self.list_nodes():
            if node.name.lower() == name.lower():
                return node
        raise ClusterCommandError(f"Node {name} is not a member of the cluster")

    def list_storage_jobs(self) -> List[StorageJob]:
        return list(self.storage_jobs)

    def last_boot_time(self) -> datetime:
        return self.last_boot

    def set_node(self, name: str, state: str, status_information: str = "Normal") -> None:
        self.nodes[name] = ClusterNodeStatus(name=name, state=state, status_information=status_information)

    def suspend_node(self, name: str) -> None:
        self.events.append(("suspend", name))
        if self.fail_suspend:
            raise ClusterCommandError(f"Failed to suspend node {name}")
        self.set_node(name, "Paused", "DrainCompleted" if self.drain_completes else "DrainInProgress")

    def resume_node(self, name: str) -> None:
        self.events.append(("resume", name))
        self.set_node(name, "Up", "Normal")

    def restart_computer(self) -> None:
        self.events.append(("restart", self.local))
        if self.fail_restart:
            raise ClusterCommandError("Failed to restart computer: access denied")
        # The node comes back paused, with a fresh boot time
        self.last_boot = CYCLE_START + timedelta(minutes=30)

    def path_exists_on_node(self, node: str, path: str) -> bool:
        self.checked_paths.append((node, path))
        return node not in self.missing_path_on and node not in self.missing_files.get(path, set())


class FakeTasks:
    """Clustered scheduled task double."""

    def __init__(self):
        self.tasks: Dict[str, ClusteredTaskInfo] = {}
        self.registered: Optional[dict] = None
        self.unregistered: List[str] = []

    def add(self, name: str = TASK_NAME, description: Optional[str] = None, enabled: bool = True) -> None:
        self.tasks[name] = ClusteredTaskInfo(
            task_name=name, description=description, enabled=enabled, start_boundary=CYCLE_START
        )

    def get_task(self, task_name: str) -> Optional[ClusteredTaskInfo]:
        return self.tasks.get(task_name)

    def set_description(self, task_name: str, description: str) -> None:
        if task_name not in self.tasks:
            raise ClusterCommandError(f"Task {task_name} not found")
        self.tasks[task_name] = self.tasks[task_name].model_copy(update={"description": description})

    def register(self, task_name, execute, argument, description, interval_minutes, duration_days, enabled=True):
        self.registered = {
            "task_name": task_name,
            "execute": execute,
            "argument": argument,
            "description": description,
            "interval_minutes": interval_minutes,
            "duration_days": duration_days,
            "enabled": enabled,
        }
        self.add(task_name, description=description, enabled=enabled)

    def unregister(self, task_name: str) -> None:
        self.unregistered.append(task_name)
        del self.tasks[task_name]

    def set_enabled(self, task_name: str, enabled: bool) -> None:
        self.tasks[task_name] = self.tasks[task_name].model_copy(update={"enabled": enabled})


class InMemoryDescriptionStore:
    """DescriptionStore kept in memory, optionally failing writes."""

    def __init__(self, events: List[tuple], text: Optional[str] = ""):
        self.text = text
        self.events = events
        self.writes: List[str] = []
        self.fail_writes = False

    def read(self) -> str:
        if self.text is None:
            raise TaskNotFoundError("Clustered task not found")
        return self.text

    def write(self, text: str) -> None:
        self.events.append(("save", text))
        if self.fail_writes:
            raise ClusterCommandError("Set-ClusteredScheduledTask: the cluster resource is offline")
        self.text = text
        self.writes.append(text)


@pytest.fixture
def events():
    return []


@pytest.fixture
def cluster(events):
    return FakeCluster(["A", "B", "C"], local="A", events=events)


@pytest.fixture
def tasks():
    fake = FakeTasks()
    fake.add()
    return fake


@pytest.fixture
def memory_store(events):
    return InMemoryDescriptionStore(events, text='[{"Name":"A","State":""},{"Name":"B","State":""},{"Name":"C","State":""}]')


@pytest.fixture
def store(memory_store):
    return StateStore(memory_store)


@pytest.fixture
def prober(cluster, tasks):
    return ReadinessProber(cluster, tasks, TASK_NAME)


@pytest.fixture
def coordinator(store, cluster, prober):
    return Coordinator(store, cluster, prober, clock=lambda: CYCLE_START + timedelta(hours=1))


@pytest.fixture
def config():
    return CoordinatorConfig(task_name=TASK_NAME)


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during the test."""
    messages: List[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
