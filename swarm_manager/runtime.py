"""Docker Swarm runtime access through the docker CLI."""

import json
import subprocess
from pathlib import Path

from swarm_manager.exceptions import DockerError
from swarm_manager.logging_config import get_logger
from swarm_manager.models.cluster import NodeRole, NodeState, SwarmInfo

logger = get_logger(__name__)


class DockerSwarm:
    """Thin wrapper over the docker CLI for swarm membership, secrets and services."""

    def __init__(self, docker_bin: str = "docker", timeout: int = 30):
        """Initialize the runtime wrapper.

        Args:
            docker_bin: docker executable to invoke
            timeout: Default timeout in seconds for each command
        """
        self.docker_bin = docker_bin
        self.timeout = timeout

    def _run(
        self, args: list[str], check: bool = True, timeout: int | None = None
    ) -> subprocess.CompletedProcess:
        """Run a docker subcommand.

        Raises:
            DockerError: If docker is missing, times out, or (with check) fails
        """
        cmd = [self.docker_bin, *args]
        timeout = timeout or self.timeout
        logger.debug(f"Running: {' '.join(cmd[:3])} ...")

        try:
            return subprocess.run(
                cmd, capture_output=True, text=True, check=check, timeout=timeout
            )
        except FileNotFoundError:
            logger.error("docker binary not found in PATH")
            raise DockerError(
                "Docker is not installed or not in PATH",
                "Install Docker Engine and ensure the 'docker' command is in PATH",
            )
        except subprocess.TimeoutExpired:
            logger.error(f"docker {args[0]} timed out after {timeout} seconds")
            raise DockerError(
                f"docker {' '.join(args[:2])} timed out",
                f"The command did not respond within {timeout} seconds. "
                "Check the daemon: sudo systemctl status docker",
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"docker {' '.join(args[:2])} failed with code {e.returncode}: {e.stderr}")
            raise DockerError(
                f"docker {' '.join(args[:2])} failed",
                f"Command output: {(e.stderr or '').strip()}",
            )

    # Membership

    def info(self) -> SwarmInfo:
        """Return the local swarm membership as reported by `docker info`."""
        result = self._run(["info", "--format", "{{json .Swarm}}"])

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse docker info output: {e}")
            raise DockerError(
                "Failed to parse docker info output",
                "docker info returned invalid JSON. The Docker daemon may be unhealthy.",
            )

        return SwarmInfo(
            node_id=data.get("NodeID") or "",
            local_node_state=data.get("LocalNodeState") or "inactive",
            control_available=bool(data.get("ControlAvailable")),
            node_addr=data.get("NodeAddr") or "",
        )

    def leader_id(self) -> str | None:
        """Return the node ID of the current swarm leader, or None if none is reported."""
        result = self._run(
            ["node", "ls", "--filter", "role=manager", "--format", "{{.ID}} {{.ManagerStatus}}"]
        )
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[1] == "Leader":
                return parts[0]
        return None

    def node_state(self) -> NodeState:
        """Derive the local NodeState; only managers query the leader."""
        info = self.info()
        if info.local_node_state != "active" or not info.control_available:
            return info.node_state()

        leader = self.leader_id()
        if leader is None:
            raise DockerError(
                "Could not determine swarm leader",
                "docker node ls reported no manager with Leader status",
            )
        return info.node_state(is_leader=leader == info.node_id)

    def init(self, advertise_address: str) -> None:
        """Initialize a new swarm advertising on `advertise_address`."""
        logger.info(f"Initializing new swarm on {advertise_address}")
        self._run(["swarm", "init", "--advertise-addr", advertise_address], timeout=120)

    def join_token(self, role: NodeRole) -> str:
        """Return the join token for `role`."""
        result = self._run(["swarm", "join-token", "-q", role.value])
        token = result.stdout.strip()
        if not token:
            raise DockerError(f"docker returned an empty {role.value} join token")
        return token

    def join(self, address: str, token: str, timeout: int = 120) -> bool:
        """Attempt one swarm join.

        Args:
            address: Rendezvous address of a manager
            token: Worker or manager join token
            timeout: Seconds to wait for docker before giving up

        Returns:
            True if the node joined, False if docker rejected or timed out
        """
        logger.info(f"Attempting docker swarm join to {address}")
        try:
            result = self._run(
                ["swarm", "join", "--token", token, address], check=False, timeout=timeout
            )
        except DockerError as e:
            if "timed out" not in e.message:
                raise
            logger.warning(f"Swarm join to {address} timed out")
            return False

        if result.returncode != 0:
            logger.warning(f"Swarm join to {address} failed: {result.stderr.strip()}")
            return False
        return True

    def leave(self, force: bool = True) -> None:
        """Leave the swarm, discarding any half-finished membership."""
        args = ["swarm", "leave"]
        if force:
            args.append("--force")
        self._run(args, check=False)

    def ensure_overlay_network(self, name: str) -> bool:
        """Create an attachable overlay network unless it exists.

        Returns:
            True if the network exists afterwards
        """
        if self._run(["network", "inspect", name], check=False).returncode == 0:
            logger.debug(f"Overlay network '{name}' already exists")
            return True

        result = self._run(
            ["network", "create", "--driver", "overlay", "--attachable", name], check=False
        )
        if result.returncode != 0:
            logger.warning(f"Failed to create overlay network '{name}': {result.stderr.strip()}")
            return False
        logger.info(f"Overlay network '{name}' created")
        return True

    # Secrets

    def secret_exists(self, name: str) -> bool:
        return self._run(["secret", "inspect", name], check=False).returncode == 0

    def remove_secret(self, name: str) -> None:
        self._run(["secret", "rm", name])
        logger.info(f"Removed secret {name}")

    def create_secret(self, name: str, path: Path) -> None:
        self._run(["secret", "create", name, str(path)])
        logger.info(f"Created secret {name} from {path}")

    # Services

    def service_exists(self, name: str) -> bool:
        return self._run(["service", "inspect", name], check=False).returncode == 0

    def force_update_service(self, name: str) -> None:
        """Force a rolling restart so replicas remount the current secrets."""
        self._run(["service", "update", "--force", "--detach", name], timeout=300)
        logger.info(f"Forced update of service {name}")
