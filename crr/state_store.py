"""
Persistence of the per-node restart state.

The state is a JSON blob stored in the description of the clustered scheduled
task. ``DescriptionStore`` is the blob abstraction; ``StateStore`` adds parsing
and the error taxonomy on top of it.
"""

from typing import Protocol

from loguru import logger

from .cluster import ClusterCommandError
from .models import ClusterRestartState
from .scheduled_task import ClusteredTaskClient


class StateStoreError(Exception):
    """Base class for state load/save failures."""


class TaskNotFoundError(StateStoreError):
    """The clustered scheduled task does not exist."""


class EmptyDescriptionError(StateStoreError):
    """The task exists but carries no restart state."""


class MalformedStateError(StateStoreError):
    """The task description could not be parsed as restart state."""


class PersistError(StateStoreError):
    """Writing the restart state back failed."""


class DescriptionStore(Protocol):
    """A named text blob that survives process restarts and reboots."""

    def read(self) -> str:
        """Return the blob; raise TaskNotFoundError if it does not exist."""
        ...

    def write(self, text: str) -> None:
        ...


class ClusteredTaskDescriptionStore:
    """DescriptionStore backed by the Description property of a clustered task."""

    def __init__(self, task_name: str, tasks: ClusteredTaskClient):
        self.task_name = task_name
        self.tasks = tasks

    def read(self) -> str:
        try:
            task = self.tasks.get_task(self.task_name)
        except ClusterCommandError as e:
            raise StateStoreError(str(e)) from e
        if task is None:
            raise TaskNotFoundError(f"Clustered task {self.task_name} not found")
        return task.description or ""

    def write(self, text: str) -> None:
        self.tasks.set_description(self.task_name, text)


class StateStore:
    """Loads and saves ClusterRestartState through a DescriptionStore."""

    def __init__(self, backend: DescriptionStore):
        self.backend = backend

    def load(self) -> ClusterRestartState:
        """
        Read the current restart state.

        Raises:
            TaskNotFoundError: the backing task is missing
            EmptyDescriptionError: the description is blank
            MalformedStateError: the description is not valid restart state
            StateStoreError: the backing store could not be queried
        """
        text = self.backend.read()
        if not text or not text.strip():
            raise EmptyDescriptionError("Restart state description is empty")

        try:
            state = ClusterRestartState.from_json(text)
        except ValueError as e:
            raise MalformedStateError(str(e)) from e

        logger.debug(f"Loaded restart state: {state.to_json()}")
        return state

    def save(self, state: ClusterRestartState) -> None:
        """
        Persist the restart state.

        Raises:
            PersistError: if the backing store rejects the write
        """
        payload = state.to_json()
        try:
            self.backend.write(payload)
        except Exception as e:
            raise PersistError(f"Failed to persist restart state: {e}") from e
        logger.debug(f"Saved restart state: {payload}")
