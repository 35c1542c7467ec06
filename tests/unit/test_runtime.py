"""Tests for the docker CLI wrapper."""

import json
import subprocess
from unittest.mock import Mock, patch

import pytest

from swarm_manager.exceptions import DockerError
from swarm_manager.models.cluster import NodeRole, NodeState
from swarm_manager.runtime import DockerSwarm


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> Mock:
    result = Mock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


def swarm_json(state="active", control=True, node_id="abc123") -> str:
    return json.dumps(
        {
            "NodeID": node_id,
            "LocalNodeState": state,
            "ControlAvailable": control,
            "NodeAddr": "10.0.1.10",
        }
    )


@pytest.fixture
def docker():
    return DockerSwarm()


def test_info_parses_swarm_section(docker):
    with patch("subprocess.run", return_value=completed(swarm_json())) as mock_run:
        info = docker.info()

    assert info.node_id == "abc123"
    assert info.local_node_state == "active"
    assert info.control_available is True
    assert mock_run.call_args.args[0] == ["docker", "info", "--format", "{{json .Swarm}}"]


def test_info_inactive_node(docker):
    output = json.dumps({"NodeID": "", "LocalNodeState": "inactive", "ControlAvailable": False})
    with patch("subprocess.run", return_value=completed(output)):
        assert docker.info().node_state() == NodeState.NOT_IN_CLUSTER


def test_info_invalid_json(docker):
    with patch("subprocess.run", return_value=completed("not json")):
        with pytest.raises(DockerError) as exc_info:
            docker.info()

    assert "parse" in exc_info.value.message


def test_docker_not_installed(docker):
    with patch("subprocess.run", side_effect=FileNotFoundError()):
        with pytest.raises(DockerError) as exc_info:
            docker.info()

    assert "not installed" in exc_info.value.message


def test_docker_timeout(docker):
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("docker", 30)):
        with pytest.raises(DockerError) as exc_info:
            docker.info()

    assert "timed out" in exc_info.value.message


def test_docker_command_fails(docker):
    error = subprocess.CalledProcessError(1, "docker", stderr="Cannot connect to the Docker daemon")
    with patch("subprocess.run", side_effect=error):
        with pytest.raises(DockerError) as exc_info:
            docker.info()

    assert "Cannot connect" in exc_info.value.details


def test_node_state_leader(docker):
    outputs = [
        completed(swarm_json(node_id="abc123")),
        completed("abc123 Leader\ndef456 Reachable\n"),
    ]
    with patch("subprocess.run", side_effect=outputs):
        assert docker.node_state() == NodeState.LEADER


def test_node_state_manager_not_leader(docker):
    outputs = [
        completed(swarm_json(node_id="def456")),
        completed("abc123 Leader\ndef456 Reachable\n"),
    ]
    with patch("subprocess.run", side_effect=outputs):
        assert docker.node_state() == NodeState.MANAGER_NOT_LEADER


def test_node_state_worker_skips_manager_list(docker):
    with patch("subprocess.run", return_value=completed(swarm_json(control=False))) as mock_run:
        assert docker.node_state() == NodeState.MEMBER

    assert mock_run.call_count == 1


def test_node_state_leader_undeterminable(docker):
    outputs = [completed(swarm_json()), completed("abc123 Unreachable\n")]
    with patch("subprocess.run", side_effect=outputs):
        with pytest.raises(DockerError):
            docker.node_state()


def test_join_token(docker):
    with patch("subprocess.run", return_value=completed("SWMTKN-1-xyz\n")) as mock_run:
        assert docker.join_token(NodeRole.WORKER) == "SWMTKN-1-xyz"

    assert mock_run.call_args.args[0] == ["docker", "swarm", "join-token", "-q", "worker"]


def test_join_success(docker):
    with patch("subprocess.run", return_value=completed()) as mock_run:
        assert docker.join("10.0.1.10:2377", "SWMTKN-1-xyz") is True

    assert mock_run.call_args.args[0] == [
        "docker",
        "swarm",
        "join",
        "--token",
        "SWMTKN-1-xyz",
        "10.0.1.10:2377",
    ]


def test_join_rejected(docker):
    with patch("subprocess.run", return_value=completed(returncode=1, stderr="invalid token")):
        assert docker.join("10.0.1.10:2377", "bad") is False


def test_join_timeout_is_not_fatal(docker):
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("docker", 120)):
        assert docker.join("10.0.1.10:2377", "SWMTKN-1-xyz") is False


def test_init_advertises_address(docker):
    with patch("subprocess.run", return_value=completed()) as mock_run:
        docker.init("10.0.1.10")

    assert mock_run.call_args.args[0] == [
        "docker",
        "swarm",
        "init",
        "--advertise-addr",
        "10.0.1.10",
    ]


def test_ensure_overlay_network_creates_missing(docker):
    outputs = [completed(returncode=1), completed()]
    with patch("subprocess.run", side_effect=outputs) as mock_run:
        assert docker.ensure_overlay_network("app-network") is True

    assert mock_run.call_args.args[0] == [
        "docker",
        "network",
        "create",
        "--driver",
        "overlay",
        "--attachable",
        "app-network",
    ]


def test_ensure_overlay_network_existing(docker):
    with patch("subprocess.run", return_value=completed()) as mock_run:
        assert docker.ensure_overlay_network("app-network") is True

    assert mock_run.call_count == 1


def test_secret_rotation_commands(docker):
    with patch("subprocess.run", return_value=completed()) as mock_run:
        docker.remove_secret("cert.pem")
        docker.create_secret("cert.pem", "/certs/cert.pem")

    commands = [call.args[0] for call in mock_run.call_args_list]
    assert commands == [
        ["docker", "secret", "rm", "cert.pem"],
        ["docker", "secret", "create", "cert.pem", "/certs/cert.pem"],
    ]


def test_force_update_service(docker):
    with patch("subprocess.run", return_value=completed()) as mock_run:
        docker.force_update_service("envoy_app")

    assert mock_run.call_args.args[0] == [
        "docker",
        "service",
        "update",
        "--force",
        "--detach",
        "envoy_app",
    ]


def test_join_uses_given_timeout(docker):
    with patch("subprocess.run", return_value=completed()) as mock_run:
        docker.join("10.0.1.10:2377", "SWMTKN-1-xyz", timeout=7)

    assert mock_run.call_args.kwargs["timeout"] == 7
