"""Certificate lifecycle manager: renew the bundle on the leader and propagate it."""

from enum import Enum
from pathlib import Path

from swarm_manager.certificates import ARTIFACTS, generate_bundle, needs_renewal
from swarm_manager.exceptions import (
    ConfigurationError,
    DockerError,
    LeadershipError,
    SwarmManagerError,
)
from swarm_manager.lock import HostLock
from swarm_manager.logging_config import get_logger
from swarm_manager.models.cluster import NodeState
from swarm_manager.models.config import CertificateSettings
from swarm_manager.status import RunState, StatusFile

logger = get_logger(__name__)


class RotationOutcome(str, Enum):
    NOT_LEADER = "not-leader"
    VALID = "valid"
    RENEWED = "renewed"


class CertificateLifecycleManager:
    """Keep the cluster's TLS bundle valid; only the swarm leader acts."""

    def __init__(
        self,
        runtime,
        secret_store,
        settings: CertificateSettings,
        status: StatusFile,
        lock: HostLock,
        cert_dir: Path | None = None,
    ):
        """Initialize the manager.

        Args:
            runtime: Container runtime (see swarm_manager.runtime.DockerSwarm)
            secret_store: External secret store (see swarm_manager.secret_store.SecretStore)
            settings: Domain, validity, threshold and dependent services
            status: Status artifact for this component
            lock: Host lock held for the whole run
            cert_dir: Override for settings.cert_dir
        """
        self.runtime = runtime
        self.secret_store = secret_store
        self.settings = settings
        self.status = status
        self.lock = lock
        self.cert_dir = Path(cert_dir or settings.cert_dir)

    def run(self, force: bool = False) -> RotationOutcome:
        """Run one rotation tick under the host lock.

        Raises:
            LockError: If another run holds the host lock
            ConfigurationError: If certificates.validity_days is unset
            LeadershipError: If this node cannot be the leader
            SwarmManagerError: If regeneration or propagation fails
        """
        with self.lock:
            return self._run_locked(force)

    def _run_locked(self, force: bool) -> RotationOutcome:
        try:
            self._check_settings()
            leader = self.is_leader()
        except SwarmManagerError as e:
            self.status.record(RunState.FAILED, e.message)
            raise
        if not leader:
            logger.info("Not the swarm leader; skipping certificate management")
            self.status.record(RunState.SUCCESS, "not leader")
            return RotationOutcome.NOT_LEADER

        self.status.record(RunState.IN_PROGRESS, "checking certificates")
        reasons = needs_renewal(self.cert_dir, self.settings.renewal_threshold_days, force=force)
        if not reasons:
            logger.info("Certificates are valid and not near expiry")
            self.status.record(RunState.SUCCESS, "valid")
            return RotationOutcome.VALID

        for reason in reasons:
            logger.info(f"Renewal required: {reason}")

        try:
            self._renew()
        except SwarmManagerError as e:
            self.status.record(RunState.FAILED, e.message)
            raise

        self.status.record(RunState.SUCCESS, "renewed")
        return RotationOutcome.RENEWED

    def is_leader(self) -> bool:
        """Return True on the leader, False on a non-leading manager.

        Raises:
            LeadershipError: If the runtime is unreachable, the node is not in
                the cluster, or it is not a manager
        """
        try:
            state = self.runtime.node_state()
        except DockerError as e:
            raise LeadershipError("Cannot determine swarm leadership", e.format_message())

        if state == NodeState.LEADER:
            return True
        if state == NodeState.MANAGER_NOT_LEADER:
            return False
        raise LeadershipError(
            f"Certificate management requires a swarm manager (node state: {state.value})",
            "Run this task only on manager nodes that are members of the swarm",
        )

    def _check_settings(self) -> None:
        if self.settings.validity_days is None:
            raise ConfigurationError(
                "Missing required configuration: certificates.validity_days",
                "Set CERT_VALIDITY_DAYS or certificates.validity_days in the --config file",
            )

    def _renew(self) -> None:
        self.status.record(RunState.IN_PROGRESS, "generating certificates")
        bundle = generate_bundle(
            self.cert_dir,
            self.settings.domain,
            self.settings.validity_days,
            key_size=self.settings.key_size,
        )

        self.status.record(RunState.IN_PROGRESS, "storing certificate password")
        self.secret_store.merge_key(self.settings.password_key, bundle.password)

        self.status.record(RunState.IN_PROGRESS, "rotating swarm secrets")
        for name in ARTIFACTS:
            if self.runtime.secret_exists(name):
                self.runtime.remove_secret(name)
            self.runtime.create_secret(name, bundle.path(name))

        self.status.record(RunState.IN_PROGRESS, "updating services")
        for service in self.settings.services:
            if not self.runtime.service_exists(service):
                logger.info(f"Service {service} does not exist; skipping")
                continue
            self.runtime.force_update_service(service)
