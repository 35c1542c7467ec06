"""Join daemon: converge a node into the swarm from the shared cluster record.

Each invocation is one bounded tick. A node that is already a member returns
immediately, so the recurring schedule can re-trigger it forever; a node that
is not polls the shared record and attempts to join until its deadline.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable

from swarm_manager.exceptions import DockerError, StateStoreError
from swarm_manager.logging_config import get_logger
from swarm_manager.models.cluster import NodeRole, NodeState
from swarm_manager.status import RunState, StatusFile

logger = get_logger(__name__)


@dataclass
class JoinResult:
    """Outcome of one join tick.

    Attributes:
        joined: True if the node is a member (or a join is already in flight)
        state: Local membership state observed at the start of the tick
        attempts: Number of `swarm join` calls made during the tick
        address: Rendezvous address used by the successful join, if any
    """

    joined: bool
    state: NodeState
    attempts: int = 0
    address: str | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.joined else 1


class JoinDaemon:
    """Poll the shared cluster record and join the swarm before a deadline."""

    def __init__(
        self,
        runtime,
        store,
        cluster_id: str,
        role: NodeRole = NodeRole.WORKER,
        timeout_seconds: float = 300,
        interval_seconds: float = 10,
        status: StatusFile | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the daemon.

        Args:
            runtime: Container runtime (see swarm_manager.runtime.DockerSwarm)
            store: Shared state store (see swarm_manager.state_store.ClusterStateStore)
            cluster_id: Key of the shared cluster record
            role: Which join token to use
            timeout_seconds: Wall-clock deadline for this tick
            interval_seconds: Fixed backoff between polls
            status: Optional status artifact to update
            clock: Monotonic clock, injectable for tests
            sleep: Sleep function, injectable for tests
        """
        self.runtime = runtime
        self.store = store
        self.cluster_id = cluster_id
        self.role = role
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.status = status
        self.clock = clock
        self.sleep = sleep

    def _record(self, state: RunState, message: str) -> None:
        if self.status is not None:
            self.status.record(state, message)

    def run(self) -> JoinResult:
        """Run one tick.

        Returns:
            JoinResult; `joined` is False only when the deadline elapsed
        """
        try:
            info = self.runtime.info()
        except DockerError as e:
            self._record(RunState.FAILED, e.message)
            raise
        state = info.node_state()
        if state.in_cluster:
            logger.info("Node already in swarm; nothing to do")
            self._record(RunState.SUCCESS, "already in swarm")
            return JoinResult(joined=True, state=state)
        if state == NodeState.JOINING:
            # At most one join in flight
            logger.info("Swarm join already in progress; leaving it to settle")
            self._record(RunState.SUCCESS, "join in progress")
            return JoinResult(joined=True, state=state)

        if info.is_error:
            logger.warning("Runtime reports swarm error state; resetting before join")
            self.runtime.leave(force=True)

        self._record(RunState.IN_PROGRESS, f"joining cluster {self.cluster_id} as {self.role.value}")
        attempts = 0
        started = self.clock()
        deadline = started + self.timeout_seconds

        while self.clock() < deadline:
            # Re-read every iteration
            try:
                record = self.store.read(self.cluster_id)
            except StateStoreError as e:
                logger.warning(f"Could not read cluster record: {e.message}")
                record = None
            target = record.join_target(self.role) if record else None

            if target is not None:
                address, token = target
                attempts += 1
                budget = max(1, math.ceil(deadline - self.clock()))
                if self.runtime.join(address, token, timeout=budget):
                    logger.info(f"Joined swarm at {address} as {self.role.value}")
                    self._record(RunState.SUCCESS, f"joined {address}")
                    return JoinResult(joined=True, state=state, attempts=attempts, address=address)
            else:
                logger.info(f"Join details for '{self.cluster_id}' not published yet")

            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            elapsed = int(self.clock() - started)
            logger.info(f"Waiting for swarm join: {elapsed}s elapsed of {self.timeout_seconds}s")
            self.sleep(min(self.interval_seconds, remaining))

        self._fail_closed()
        logger.error(
            f"Join attempt timed out after {self.timeout_seconds}s; will retry next run"
        )
        self._record(RunState.FAILED, f"join timed out after {self.timeout_seconds}s")
        return JoinResult(joined=False, state=state, attempts=attempts)

    def _fail_closed(self) -> None:
        """Discard any half-finished membership a failed join left behind."""
        state = self.runtime.info()
        if state.local_node_state in ("pending", "error"):
            logger.warning(f"Leaving swarm after failed join (state: {state.local_node_state})")
            self.runtime.leave(force=True)
