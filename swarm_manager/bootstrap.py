"""Bootstrap coordinator: initialize a new swarm or join the one a peer created.

Runs once at node start. A manager that finds no published cluster record
races its peers for the init claim in the shared record; the winner runs
`swarm init` and publishes the rendezvous address and join tokens, everyone
else falls back to the join loop.
"""

import socket
from dataclasses import dataclass
from enum import Enum

from swarm_manager.exceptions import BootstrapError, DockerError, JoinTimeoutError
from swarm_manager.join import JoinDaemon
from swarm_manager.logging_config import get_logger
from swarm_manager.models.cluster import NodeRole, NodeState
from swarm_manager.models.config import SwarmConfig

logger = get_logger(__name__)


class BootstrapOutcome(str, Enum):
    ALREADY_MEMBER = "already-member"
    DEFERRED = "deferred"
    INITIALIZED = "initialized"
    JOINED = "joined"


@dataclass
class BootstrapResult:
    outcome: BootstrapOutcome
    state: NodeState
    manager_address: str | None = None


def discover_private_address() -> str:
    """Return the primary private IPv4 address of this host.

    Opens a UDP socket towards a non-routable address; no packet is sent,
    the kernel only selects the outbound interface.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
        except OSError as e:
            raise BootstrapError(
                "Could not determine the private network address",
                f"Set ADVERTISE_ADDRESS explicitly ({e})",
            )


class BootstrapCoordinator:
    """Decide between initializing and joining, and publish after init."""

    def __init__(self, config: SwarmConfig, runtime, store, join_daemon: JoinDaemon | None = None):
        """Initialize the coordinator.

        Args:
            config: Node configuration (cluster name, role, lease, ...)
            runtime: Container runtime (see swarm_manager.runtime.DockerSwarm)
            store: Shared state store (see swarm_manager.state_store.ClusterStateStore)
            join_daemon: Join loop used when a peer wins the init claim
        """
        self.config = config
        self.runtime = runtime
        self.store = store
        self.join_daemon = join_daemon or JoinDaemon(
            runtime,
            store,
            config.cluster_name,
            role=NodeRole.MANAGER,
            timeout_seconds=config.join.timeout_seconds,
            interval_seconds=config.join.interval_seconds,
        )

    @property
    def advertise_address(self) -> str:
        return self.config.advertise_address or discover_private_address()

    def run(self) -> BootstrapResult:
        """Bring this node into the cluster.

        Raises:
            BootstrapError: If `swarm init` or publishing the record fails
            JoinTimeoutError: If a peer holds the init claim but the join never succeeds
        """
        try:
            state = self.runtime.node_state()
        except DockerError as e:
            raise BootstrapError("Container runtime unavailable", e.format_message())

        if state == NodeState.LEADER:
            logger.info("This node is the swarm leader; refreshing published join details")
            self._publish()
            return BootstrapResult(BootstrapOutcome.ALREADY_MEMBER, state)
        if state.in_cluster or state == NodeState.JOINING:
            logger.info(f"Node already in swarm ({state.value}); nothing to bootstrap")
            return BootstrapResult(BootstrapOutcome.ALREADY_MEMBER, state)

        if self.config.role == NodeRole.WORKER:
            logger.info("Worker node; joining is left to the join daemon")
            return BootstrapResult(BootstrapOutcome.DEFERRED, state)

        cluster_id = self.config.cluster_name
        record = self.store.read(cluster_id)
        target = record.join_target(NodeRole.MANAGER) if record else None
        if target is not None:
            address, token = target
            logger.info(f"Cluster '{cluster_id}' already published; joining {address} as manager")
            if self.runtime.join(address, token):
                return BootstrapResult(BootstrapOutcome.JOINED, state, address)
            logger.warning("Join to published manager failed; trying to claim initialization")

        if self.store.try_claim(cluster_id, self.config.node_id, self.config.lease_seconds):
            address = self._initialize()
            return BootstrapResult(BootstrapOutcome.INITIALIZED, state, address)

        logger.info("A peer holds the init claim; waiting for it to publish join details")
        result = self.join_daemon.run()
        if not result.joined:
            raise JoinTimeoutError(
                f"Could not join cluster '{cluster_id}' within "
                f"{self.join_daemon.timeout_seconds}s",
                "The peer holding the init claim has not published join details; "
                "the claim lease expires after LEASE_SECONDS",
            )
        return BootstrapResult(BootstrapOutcome.JOINED, state, result.address)

    def _initialize(self) -> str:
        advertise = self.advertise_address
        try:
            self.runtime.init(advertise)
        except DockerError as e:
            logger.error(f"Swarm init failed: {e.message}")
            raise BootstrapError("Swarm init failed", e.format_message())

        address = self._publish(advertise)
        logger.info(f"Swarm initialized; manager reachable at {address}")
        return address

    def _publish(self, advertise: str | None = None) -> str:
        """Publish the current address and tokens, then ensure the overlay network."""
        advertise = advertise or self.advertise_address
        address = self.config.rendezvous_address(advertise)
        try:
            worker_token = self.runtime.join_token(NodeRole.WORKER)
            manager_token = self.runtime.join_token(NodeRole.MANAGER)
        except DockerError as e:
            raise BootstrapError("Could not read swarm join tokens", e.format_message())

        self.store.publish(
            self.config.cluster_name,
            address,
            worker_token,
            manager_token,
            node_id=self.config.node_id,
            overlay_network=self.config.overlay_network,
            lease_seconds=self.config.lease_seconds,
        )

        if self.config.overlay_network:
            self.runtime.ensure_overlay_network(self.config.overlay_network)
        return address
