"""Pytest configuration and shared fixtures."""

import pytest
from hypothesis import Verbosity, settings

from swarm_manager.exceptions import DockerError
from swarm_manager.models.cluster import ClusterRecord, NodeRole, NodeState, SwarmInfo

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRuntime:
    """In-memory stand-in for DockerSwarm that records every call."""

    def __init__(self, local_node_state="inactive", control_available=False, is_leader=False):
        self.swarm = SwarmInfo(
            node_id="node-1",
            local_node_state=local_node_state,
            control_available=control_available,
        )
        self.is_leader = is_leader
        self.unreachable = False
        self.join_results = []
        self.join_timeouts = []
        self.init_error = None
        self.secrets = set()
        self.services = set()
        self.failing_services = set()
        self.calls = []

    def info(self) -> SwarmInfo:
        self.calls.append(("info",))
        if self.unreachable:
            raise DockerError("Docker is not installed or not in PATH")
        return self.swarm

    def node_state(self) -> NodeState:
        self.calls.append(("node_state",))
        if self.unreachable:
            raise DockerError("Docker is not installed or not in PATH")
        return self.swarm.node_state(is_leader=self.is_leader)

    def init(self, advertise_address):
        self.calls.append(("init", advertise_address))
        if self.init_error:
            raise self.init_error
        self.swarm = SwarmInfo(node_id="node-1", local_node_state="active", control_available=True)
        self.is_leader = True

    def join_token(self, role: NodeRole) -> str:
        self.calls.append(("join_token", role))
        return f"SWMTKN-1-{role.value}"

    def join(self, address, token, timeout=120) -> bool:
        self.calls.append(("join", address, token))
        self.join_timeouts.append(timeout)
        ok = self.join_results.pop(0) if self.join_results else True
        if ok:
            self.swarm = SwarmInfo(node_id="node-1", local_node_state="active")
        return ok

    def leave(self, force=True):
        self.calls.append(("leave", force))
        self.swarm = SwarmInfo(node_id="node-1", local_node_state="inactive")

    def ensure_overlay_network(self, name) -> bool:
        self.calls.append(("ensure_overlay_network", name))
        return True

    def secret_exists(self, name) -> bool:
        return name in self.secrets

    def remove_secret(self, name):
        self.calls.append(("remove_secret", name))
        self.secrets.discard(name)

    def create_secret(self, name, path):
        self.calls.append(("create_secret", name))
        self.secrets.add(name)

    def service_exists(self, name) -> bool:
        return name in self.services

    def force_update_service(self, name):
        self.calls.append(("force_update_service", name))
        if name in self.failing_services:
            raise DockerError(f"docker service update failed for {name}")

    def called(self, name) -> list:
        return [c for c in self.calls if c[0] == name]


class FakeStateStore:
    """In-memory shared cluster record store.

    `publish_at` makes the record appear only once `clock()` reaches the
    given time, to model a peer that publishes late.
    """

    def __init__(self, clock=None):
        self.records = {}
        self.claims = {}
        self.clock = clock
        self.scheduled = []
        self.reads = 0
        self.published = []

    def publish_at(self, when: float, record: ClusterRecord) -> None:
        self.scheduled.append((when, record))

    def read(self, cluster_id):
        self.reads += 1
        for when, record in list(self.scheduled):
            if self.clock is not None and self.clock() >= when:
                self.records[record.cluster_name] = record
                self.scheduled.remove((when, record))
        return self.records.get(cluster_id)

    def publish(self, cluster_id, manager_address, worker_credential, manager_credential, **kwargs):
        record = ClusterRecord(
            cluster_name=cluster_id,
            manager_address=manager_address,
            worker_token=worker_credential,
            manager_token=manager_credential,
            manager_node_id=kwargs.get("node_id"),
            overlay_network=kwargs.get("overlay_network"),
        )
        self.records[cluster_id] = record
        self.published.append(record)
        return record

    def try_claim(self, cluster_id, node_id, lease_seconds) -> bool:
        if cluster_id in self.records or cluster_id in self.claims:
            return False
        self.claims[cluster_id] = node_id
        return True


class FakeSecretStore:
    def __init__(self, document=None):
        self.document = document
        self.writes = []

    def read(self):
        return self.document

    def merge_key(self, key, value):
        self.document = {**(self.document or {}), key: value}
        self.writes.append((key, value))
        return self.document


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def state_store(clock):
    return FakeStateStore(clock=clock)


@pytest.fixture
def secret_store():
    return FakeSecretStore({"OTHER_KEY": "keep-me"})


@pytest.fixture
def published_record():
    return ClusterRecord(
        cluster_name="test-cluster",
        manager_address="10.0.1.10:2377",
        worker_token="SWMTKN-1-worker",
        manager_token="SWMTKN-1-manager",
    )


# Session-scoped factories for hypothesis tests, which cannot take
# function-scoped fixtures
@pytest.fixture(scope="session")
def make_runtime():
    return FakeRuntime


@pytest.fixture(scope="session")
def make_state_store():
    return FakeStateStore


@pytest.fixture(scope="session")
def make_secret_store():
    return FakeSecretStore


@pytest.fixture(scope="session")
def make_clock():
    return FakeClock
