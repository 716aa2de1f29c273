"""
Rolling-restart state machine.

Each invocation of the coordinator is one tick: load the persisted state,
decide what (if anything) the local node must do, do it, persist, exit.

States (per node, only the node whose turn it is moves):
    Empty -> Paused -> Restarted -> Resumed -> Complete
    Paused -> RestartFailed when the restart call itself fails

Restart ordering contract: ``Restarted`` is persisted *before* the OS restart
is issued, because the process does not survive a successful restart. If that
write fails the restart is not issued. If the restart call raises,
``RestartFailed`` is persisted afterwards.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from .cluster import ClusterCommandError, FailoverClusterClient
from .models import (
    ClusterRestartState,
    NodeRestartState,
    NodeSnapshot,
    Readiness,
    ReadinessStatus,
    TickAction,
    TickDecision,
    TickOutcome,
    TickResult,
)
from .readiness import (
    ReadinessProber,
    check_drain_completed,
    check_maintenance_window,
    check_no_storage_jobs,
    check_node_paused,
    check_node_up_normal,
    check_rebooted_since_start,
    combine,
)
from .state_store import PersistError, StateStore, StateStoreError

RESTART_PERSIST_ORDER = "persist-before-restart"

ALL_RESTARTED_MESSAGE = "All cluster nodes have restarted"

# Live node states that contradict the stored state
INCONSISTENT_LIVE_STATES: Dict[NodeRestartState, Tuple[str, ...]] = {
    NodeRestartState.EMPTY: ("Paused",),
    NodeRestartState.PAUSED: ("Up",),
    NodeRestartState.RESTARTED: ("Up",),
    NodeRestartState.RESUMED: ("Paused",),
}


def _preconditions(stored: NodeRestartState, snapshot: NodeSnapshot) -> Readiness:
    node = snapshot.node
    if stored == NodeRestartState.EMPTY:
        return combine(
            check_node_up_normal(node),
            check_no_storage_jobs(snapshot),
            check_maintenance_window(snapshot),
        )
    if stored == NodeRestartState.PAUSED:
        return combine(check_node_paused(node), check_drain_completed(node))
    if stored == NodeRestartState.RESTARTED:
        return combine(check_node_paused(node), check_rebooted_since_start(snapshot))
    if stored == NodeRestartState.RESUMED:
        return combine(check_node_up_normal(node), check_no_storage_jobs(snapshot))
    return Readiness.failed(f"No transition defined from state {stored.label}")


TRANSITIONS = {
    NodeRestartState.EMPTY: (TickAction.SUSPEND, NodeRestartState.PAUSED),
    NodeRestartState.PAUSED: (TickAction.RESTART, NodeRestartState.RESTARTED),
    NodeRestartState.RESTARTED: (TickAction.RESUME, NodeRestartState.RESUMED),
    NodeRestartState.RESUMED: (TickAction.COMPLETE, NodeRestartState.COMPLETE),
}


def decide(state: ClusterRestartState, local_node: str, snapshot: Optional[NodeSnapshot] = None) -> TickDecision:
    """
    Compute the single transition this tick should perform.

    Pure function: it looks only at the persisted state, the local node name
    and the live snapshot of the local node. ``snapshot`` is only consulted when
    the local node holds the turn.
    """
    turn = state.current_node()
    if turn is None:
        return TickDecision(outcome=TickOutcome.ALL_COMPLETE, state=state, reason=ALL_RESTARTED_MESSAGE)

    if turn.name.lower() != local_node.lower():
        return TickDecision(
            outcome=TickOutcome.NOT_MY_TURN,
            turn_node=turn.name,
            state=state,
            reason=f"It is node {turn.name}'s turn ({turn.state.label}), not {local_node}'s",
        )

    if turn.state == NodeRestartState.RESTART_FAILED:
        return TickDecision(
            outcome=TickOutcome.OPERATOR_REQUIRED,
            turn_node=turn.name,
            state=state,
            reason=f"Restart of node {turn.name} failed earlier - operator intervention required",
        )

    if snapshot is None:
        raise ValueError(f"A live snapshot of {turn.name} is required to evaluate its transition")

    live = snapshot.node
    if live.state in INCONSISTENT_LIVE_STATES.get(turn.state, ()):
        return TickDecision(
            outcome=TickOutcome.INCONSISTENT,
            turn_node=turn.name,
            state=state,
            reason=(
                f"Stored state of {turn.name} is {turn.state.label} but the cluster reports "
                f"{live.state}/{live.status_information} - not acting"
            ),
        )

    readiness = _preconditions(turn.state, snapshot)
    if readiness.status == ReadinessStatus.FAILED:
        return TickDecision(outcome=TickOutcome.FAILED, turn_node=turn.name, state=state, reason=readiness.reason)
    if readiness.status == ReadinessStatus.NOT_READY:
        return TickDecision(outcome=TickOutcome.NOT_READY, turn_node=turn.name, state=state, reason=readiness.reason)

    action, next_state = TRANSITIONS[turn.state]
    return TickDecision(
        outcome=TickOutcome.TRANSITIONED,
        action=action,
        turn_node=turn.name,
        state=state.with_state(turn.name, next_state),
        reason=f"{turn.name}: {turn.state.label} -> {next_state.label}",
    )


class Coordinator:
    """Executes one tick against the live cluster and the state store."""

    def __init__(
        self,
        store: StateStore,
        cluster: FailoverClusterClient,
        prober: ReadinessProber,
        dry_run: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.cluster = cluster
        self.prober = prober
        self.dry_run = dry_run
        self.clock = clock

    def tick(self) -> TickResult:
        """Run one invocation. Never raises; every failure ends up in the result."""
        started_at = self.clock()
        try:
            result = self._tick(started_at)
        except Exception as e:
            logger.exception(f"[TICK] Unexpected error: {e!r}")
            result = TickResult(outcome=TickOutcome.FAILED, message=f"Unexpected error: {e!r}")
        result.started_at = started_at
        result.completed_at = self.clock()
        return result

    def _tick(self, now: datetime) -> TickResult:
        try:
            state = self.store.load()
        except StateStoreError as e:
            logger.warning(f"[TICK] Could not load restart state: {e}")
            return TickResult(outcome=TickOutcome.FAILED, message=str(e))

        local_node = self.cluster.local_node_name()
        turn = state.current_node()

        snapshot = None
        if turn is not None and turn.name.lower() == local_node.lower() and turn.state != NodeRestartState.RESTART_FAILED:
            try:
                snapshot = self.prober.snapshot(turn.name, now=now)
            except ClusterCommandError as e:
                logger.warning(f"[TICK] Could not query live state of {turn.name}: {e}")
                return TickResult(
                    outcome=TickOutcome.FAILED, node=turn.name, previous_state=turn.state, message=str(e)
                )

        decision = decide(state, local_node, snapshot)
        return self._execute(state, decision)

    def _execute(self, state: ClusterRestartState, decision: TickDecision) -> TickResult:
        node = decision.turn_node
        previous = state.get(node).state if node else None
        result = TickResult(
            outcome=decision.outcome,
            action=decision.action,
            node=node,
            previous_state=previous,
            message=decision.reason,
        )

        if decision.outcome == TickOutcome.ALL_COMPLETE:
            logger.info(f"[TICK] {ALL_RESTARTED_MESSAGE}")
            return result
        if decision.outcome == TickOutcome.NOT_MY_TURN:
            logger.debug(f"[TICK] {decision.reason}")
            self._warn_if_not_member(node)
            return result
        if decision.outcome == TickOutcome.NOT_READY:
            logger.info(f"[TICK] {node} not ready: {decision.reason}")
            return result
        if decision.outcome == TickOutcome.INCONSISTENT:
            logger.warning(f"[TICK] {decision.reason}")
            return result
        if decision.outcome in (TickOutcome.FAILED, TickOutcome.OPERATOR_REQUIRED):
            logger.error(f"[TICK] {decision.reason}")
            return result

        new_state = decision.state.get(node).state
        result.new_state = new_state

        if self.dry_run:
            logger.info(f"[TICK] Dry run - would {decision.action.value}: {decision.reason}")
            return result

        logger.info(f"[TICK] {decision.reason} ({decision.action.value})")

        if decision.action == TickAction.RESTART:
            return self._restart(decision, result)

        try:
            if decision.action == TickAction.SUSPEND:
                self.cluster.suspend_node(node)
            elif decision.action == TickAction.RESUME:
                self.cluster.resume_node(node)
        except ClusterCommandError as e:
            logger.warning(f"[TICK] {decision.action.value} of {node} failed: {e}")
            result.outcome = TickOutcome.FAILED
            result.new_state = None
            result.message = str(e)
            return result

        if not self._persist(decision.state, result):
            return result

        if decision.state.is_complete():
            logger.success(f"[TICK] {ALL_RESTARTED_MESSAGE}")
        return result

    def _warn_if_not_member(self, node: str) -> None:
        """A turn held by a node that left the cluster stalls every other node."""
        try:
            members = {member.name.lower() for member in self.cluster.list_nodes()}
        except ClusterCommandError as e:
            logger.debug(f"[TICK] Could not list cluster nodes: {e}")
            return
        if node.lower() not in members:
            logger.warning(
                f"[TICK] Node {node} holds the turn but is not a member of the cluster - "
                "run 'crr restart --keep-completed' to rebuild the node list"
            )

    def _restart(self, decision: TickDecision, result: TickResult) -> TickResult:
        node = decision.turn_node

        # The process does not come back from a successful restart
        if not self._persist(decision.state, result):
            logger.warning(f"[TICK] Not restarting {node} because its state could not be persisted")
            result.new_state = None
            return result

        try:
            self.cluster.restart_computer()
        except ClusterCommandError as e:
            logger.error(f"[TICK] Restart of {node} failed: {e} - operator intervention required")
            failed_state = decision.state.with_state(node, NodeRestartState.RESTART_FAILED)
            result.outcome = TickOutcome.FAILED
            result.new_state = NodeRestartState.RESTART_FAILED
            result.message = str(e)
            self._persist(failed_state, result)
        return result

    def _persist(self, state: ClusterRestartState, result: TickResult) -> bool:
        try:
            self.store.save(state)
        except PersistError as e:
            logger.warning(f"[TICK] {e}")
            result.outcome = TickOutcome.FAILED
            result.persisted = False
            result.message = str(e)
            return False
        result.persisted = True
        return True
