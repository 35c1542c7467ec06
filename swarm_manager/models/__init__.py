"""Data models for swarm membership, shared state and configuration."""

from swarm_manager.models.cluster import ClusterRecord, NodeRole, NodeState, SwarmInfo
from swarm_manager.models.config import (
    CertificateSettings,
    JoinSettings,
    ScheduleSettings,
    SwarmConfig,
)

__all__ = [
    "ClusterRecord",
    "NodeRole",
    "NodeState",
    "SwarmInfo",
    "CertificateSettings",
    "JoinSettings",
    "ScheduleSettings",
    "SwarmConfig",
]
