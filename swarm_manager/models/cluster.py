"""Data models for swarm membership and the shared cluster state record."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, field_validator


class NodeRole(str, Enum):
    """Role a node is provisioned for."""

    MANAGER = "manager"
    WORKER = "worker"


class NodeState(str, Enum):
    """Local membership state, derived from the runtime on every call."""

    NOT_IN_CLUSTER = "not-in-cluster"
    JOINING = "joining"
    MEMBER = "member"
    MANAGER_NOT_LEADER = "manager-not-leader"
    LEADER = "leader"

    @property
    def in_cluster(self) -> bool:
        """True for every state that already counts as joined."""
        return self in (NodeState.MEMBER, NodeState.MANAGER_NOT_LEADER, NodeState.LEADER)


class SwarmInfo(BaseModel):
    """Subset of `docker info` describing the local swarm membership."""

    node_id: str = ""
    local_node_state: str = "inactive"  # inactive, pending, active, error, locked
    control_available: bool = False
    node_addr: str = ""

    @property
    def is_error(self) -> bool:
        return self.local_node_state == "error"

    def node_state(self, is_leader: bool = False) -> NodeState:
        """Map the runtime's view onto a NodeState.

        Args:
            is_leader: Whether this manager currently holds swarm leadership

        Returns:
            The derived NodeState
        """
        if self.local_node_state == "pending":
            return NodeState.JOINING
        if self.local_node_state != "active":
            return NodeState.NOT_IN_CLUSTER
        if not self.control_available:
            return NodeState.MEMBER
        return NodeState.LEADER if is_leader else NodeState.MANAGER_NOT_LEADER


# DynamoDB attribute names, kept compatible with the lock table layout
RECORD_ATTRIBUTES = {
    "manager_address": "manager_address",
    "worker_token": "swarm_join_token_worker",
    "manager_token": "swarm_join_token_manager",
    "manager_node_id": "manager_instance_id",
    "lease_expires_at": "lease_expires_at",
    "overlay_network": "swarm_overlay_network_name",
}


class ClusterRecord(BaseModel):
    """Shared cluster state record, one per cluster name."""

    cluster_name: str
    manager_address: str | None = None
    worker_token: str | None = None
    manager_token: str | None = None
    manager_node_id: str | None = None
    lease_expires_at: datetime | None = None
    overlay_network: str | None = None

    @field_validator("cluster_name")
    @classmethod
    def validate_cluster_name(cls, v: str) -> str:
        """Validate cluster name is not empty."""
        if not v:
            raise ValueError("cluster_name cannot be empty")
        return v

    @field_validator("manager_address")
    @classmethod
    def validate_manager_address(cls, v: str | None) -> str | None:
        """Validate the rendezvous address is host:port."""
        if v is None:
            return v
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"manager_address '{v}' must be in host:port form")
        return v

    @property
    def is_published(self) -> bool:
        """True once the initializer has written the address and both tokens."""
        return bool(self.manager_address and self.worker_token and self.manager_token)

    def join_target(self, role: NodeRole) -> tuple[str, str] | None:
        """Return the (address, token) pair a node of `role` joins with.

        Returns:
            The pair, or None if either half has not been published yet
        """
        token = self.manager_token if role == NodeRole.MANAGER else self.worker_token
        if not self.manager_address or not token:
            return None
        return self.manager_address, token

    def lease_expired(self, now: datetime | None = None) -> bool:
        if self.lease_expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.lease_expires_at <= now

    def to_item(self) -> dict:
        """Convert to a DynamoDB item (string attributes only)."""
        item = {"cluster_name": {"S": self.cluster_name}}
        for field, attribute in RECORD_ATTRIBUTES.items():
            value = getattr(self, field)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = format_timestamp(value)
            item[attribute] = {"S": value}
        return item

    @classmethod
    def from_item(cls, item: dict) -> "ClusterRecord":
        """Parse a DynamoDB item; empty strings are treated as missing."""
        values = {}
        for field, attribute in RECORD_ATTRIBUTES.items():
            raw = item.get(attribute, {}).get("S")
            if raw:
                values[field] = raw
        return cls(cluster_name=item["cluster_name"]["S"], **values)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as the ISO-8601 UTC string stored in the record."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
