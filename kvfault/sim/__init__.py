"""
In-memory reference cluster for exercising the harness without a real deployment.
"""

from .cluster import ClusterClosed, SimClerk, SimulatedCluster, SimulatedFaults
from .network import NetworkConfig, NetworkState
from .server import ServerState
from .store import LogEntry, PersistentStore

__all__ = [
    "ClusterClosed",
    "LogEntry",
    "NetworkConfig",
    "NetworkState",
    "PersistentStore",
    "ServerState",
    "SimClerk",
    "SimulatedCluster",
    "SimulatedFaults",
]
