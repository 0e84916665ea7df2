"""
Synchronization module.

This module provides components for keeping the local store in step with
the rental API:
- ConnectivityMonitor: tri-state reachability signal gating remote calls
- RemoteGateway: HTTP client with retry logic
- Synchronizer: pull/apply/push cycle with a durable checkpoint
"""

from .connectivity import ConnectivityMonitor, ConnectivityState
from .remote_gateway import RemoteGateway
from .synchronizer import SyncOutcome, SyncState, SyncStatus, Synchronizer

__all__ = [
    'ConnectivityMonitor', 'ConnectivityState', 'RemoteGateway',
    'SyncOutcome', 'SyncState', 'SyncStatus', 'Synchronizer',
]
