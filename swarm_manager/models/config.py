"""Configuration models for the bootstrap, join and certificate tasks.

Nodes are launched with their inputs in the environment (see
`SwarmConfig.from_env`); the same settings can also be kept in a YAML file
and passed with `--config`.
"""

import os
import socket
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from swarm_manager.models.cluster import NodeRole

CERT_PASSWORD_KEY = "Infrastructure_CERTIFICATE_PASSWORD"
DEFAULT_SERVICES = ["envoy_app", "auth_app", "greeter_app"]


class JoinSettings(BaseModel):
    """Join daemon timing."""

    timeout_seconds: int = 300
    interval_seconds: int = 10

    @field_validator("timeout_seconds", "interval_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v


class CertificateSettings(BaseModel):
    """Certificate lifecycle settings."""

    domain: str = "localhost"
    # No default: the two deployed variants disagreed (45 vs 365 days)
    validity_days: int | None = None
    renewal_threshold_days: int = 30
    key_size: int = 2048
    cert_dir: Path = Path("/var/lib/certificate-manager/certs")
    password_key: str = CERT_PASSWORD_KEY
    services: list[str] = Field(default_factory=lambda: list(DEFAULT_SERVICES))

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        if not v:
            raise ValueError("domain cannot be empty")
        return v

    @field_validator("validity_days")
    @classmethod
    def validate_validity_days(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("validity_days must be greater than zero")
        return v

    @field_validator("renewal_threshold_days")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if v < 0:
            raise ValueError("renewal_threshold_days cannot be negative")
        return v

    @field_validator("key_size")
    @classmethod
    def validate_key_size(cls, v: int) -> int:
        if v < 2048:
            raise ValueError("key_size must be at least 2048 bits")
        return v


class ScheduleSettings(BaseModel):
    """systemd timer settings for the recurring tasks."""

    unit_dir: Path = Path("/etc/systemd/system")
    env_file: Path = Path("/etc/swarm-manager.env")
    executable: str = "/usr/local/bin/swarm-mgr"
    join_interval: str = "5min"
    certificate_interval: str = "6h"


class SwarmConfig(BaseModel):
    """Inputs shared by every swarm manager task."""

    region: str
    cluster_name: str
    lock_table: str | None = None
    secret_name: str | None = None
    role: NodeRole = NodeRole.MANAGER
    node_id: str = Field(default_factory=socket.gethostname)
    advertise_address: str | None = None
    swarm_port: int = 2377
    overlay_network: str | None = "app-network"
    lease_seconds: int = 300
    status_dir: Path = Path("/var/log/swarm-manager")
    lock_file: Path = Path("/run/swarm-manager/certificate-manager.lock")
    lock_timeout_seconds: float = 0
    join: JoinSettings = Field(default_factory=JoinSettings)
    certificates: CertificateSettings = Field(default_factory=CertificateSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)

    @field_validator("region", "cluster_name")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("lock_table", "secret_name", "advertise_address", "overlay_network")
    @classmethod
    def empty_as_none(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("swarm_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"swarm_port must be between 1 and 65535, got {v}")
        return v

    def rendezvous_address(self, host: str) -> str:
        return f"{host}:{self.swarm_port}"

    def save(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "SwarmConfig":
        """Load configuration from YAML file."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "SwarmConfig":
        """Build configuration from the node-provisioning environment.

        Unset variables fall back to the model defaults; required ones
        (AWS_REGION, CLUSTER_NAME) fail validation when missing. An empty
        SWARM_OVERLAY_NETWORK_NAME disables the overlay network and an empty
        CERT_SERVICES means no dependent services.
        """
        env = os.environ if environ is None else environ

        def pick(mapping: dict[str, str]) -> dict:
            return {field: env[name] for field, name in mapping.items() if env.get(name)}

        data = pick(
            {
                "region": "AWS_REGION",
                "cluster_name": "CLUSTER_NAME",
                "lock_table": "SWARM_LOCK_TABLE",
                "secret_name": "AWS_SECRET_NAME",
                "role": "NODE_ROLE",
                "node_id": "NODE_ID",
                "advertise_address": "ADVERTISE_ADDRESS",
                "swarm_port": "SWARM_PORT",
                "lease_seconds": "LEASE_SECONDS",
                "status_dir": "STATUS_DIR",
                "lock_file": "LOCK_FILE",
                "lock_timeout_seconds": "LOCK_TIMEOUT_SECONDS",
            }
        )
        data.setdefault("region", "")
        data.setdefault("cluster_name", "")
        if "SWARM_OVERLAY_NETWORK_NAME" in env:
            data["overlay_network"] = env["SWARM_OVERLAY_NETWORK_NAME"]
        data["join"] = pick(
            {"timeout_seconds": "JOIN_TIMEOUT_SECONDS", "interval_seconds": "JOIN_INTERVAL_SECONDS"}
        )
        certificates = pick(
            {
                "domain": "DOMAIN_NAME",
                "validity_days": "CERT_VALIDITY_DAYS",
                "renewal_threshold_days": "RENEWAL_THRESHOLD_DAYS",
                "key_size": "CERT_KEY_SIZE",
                "cert_dir": "CERT_DIR",
                "password_key": "CERT_PASSWORD_KEY",
            }
        )
        if "CERT_SERVICES" in env:
            certificates["services"] = [
                s.strip() for s in env["CERT_SERVICES"].split(",") if s.strip()
            ]
        data["certificates"] = certificates
        data["schedule"] = pick(
            {
                "unit_dir": "SCHEDULE_UNIT_DIR",
                "env_file": "SCHEDULE_ENV_FILE",
                "executable": "SWARM_MGR_EXECUTABLE",
                "join_interval": "JOIN_SCHEDULE_INTERVAL",
                "certificate_interval": "CERT_SCHEDULE_INTERVAL",
            }
        )
        return cls(**data)

    def to_env(self) -> dict[str, str]:
        """Inverse of `from_env`, used to write the systemd environment file."""
        env = {
            "AWS_REGION": self.region,
            "CLUSTER_NAME": self.cluster_name,
            "NODE_ROLE": self.role.value,
            "NODE_ID": self.node_id,
            "SWARM_PORT": str(self.swarm_port),
            "SWARM_OVERLAY_NETWORK_NAME": self.overlay_network or "",
            "LEASE_SECONDS": str(self.lease_seconds),
            "STATUS_DIR": str(self.status_dir),
            "LOCK_FILE": str(self.lock_file),
            "LOCK_TIMEOUT_SECONDS": str(self.lock_timeout_seconds),
            "JOIN_TIMEOUT_SECONDS": str(self.join.timeout_seconds),
            "JOIN_INTERVAL_SECONDS": str(self.join.interval_seconds),
            "DOMAIN_NAME": self.certificates.domain,
            "RENEWAL_THRESHOLD_DAYS": str(self.certificates.renewal_threshold_days),
            "CERT_KEY_SIZE": str(self.certificates.key_size),
            "CERT_DIR": str(self.certificates.cert_dir),
            "CERT_PASSWORD_KEY": self.certificates.password_key,
            "CERT_SERVICES": ",".join(self.certificates.services),
            "SCHEDULE_UNIT_DIR": str(self.schedule.unit_dir),
            "SCHEDULE_ENV_FILE": str(self.schedule.env_file),
            "SWARM_MGR_EXECUTABLE": self.schedule.executable,
            "JOIN_SCHEDULE_INTERVAL": self.schedule.join_interval,
            "CERT_SCHEDULE_INTERVAL": self.schedule.certificate_interval,
        }
        optional = {
            "SWARM_LOCK_TABLE": self.lock_table,
            "AWS_SECRET_NAME": self.secret_name,
            "ADVERTISE_ADDRESS": self.advertise_address,
            "CERT_VALIDITY_DAYS": (
                str(self.certificates.validity_days)
                if self.certificates.validity_days is not None
                else None
            ),
        }
        env.update({k: v for k, v in optional.items() if v})
        return env

    def require(self, *fields: str) -> None:
        """Fail with ConfigurationError if any of the dotted `fields` is unset.

        Raises:
            ConfigurationError: Naming every missing input
        """
        from swarm_manager.exceptions import ConfigurationError

        missing = []
        for field in fields:
            value = self
            for part in field.split("."):
                value = getattr(value, part)
            if value is None or value == "":
                missing.append(field)
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                "Set the matching environment variables (e.g. SWARM_LOCK_TABLE, "
                "AWS_SECRET_NAME, CERT_VALIDITY_DAYS) or add them to the --config file",
            )
