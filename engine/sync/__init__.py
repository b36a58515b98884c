"""
Runbook Sync — the client-side sync engine.

  manager / registry    — reference-counted shared-state managers
  adapter               — transport to the hub (WebSocket or offline)
  folder_ops            — optimistic folder operations with rollback
  operation_log         — durable log of operations awaiting delivery
  processor             — single-flight delivery of the log to the hub
  client                — composition root
"""

from engine.sync.client import SyncClient
from engine.sync.connectivity import ConnectionState, ConnectivityMonitor
from engine.sync.folder_ops import FolderOpResult, WorkspaceFolders, do_folder_op
from engine.sync.manager import SharedStateManager
from engine.sync.processor import DeliveryOutcome, OperationProcessor
from engine.sync.registry import ManagerHandle, SharedStateRegistry

__all__ = [
    "SyncClient",
    "ConnectionState",
    "ConnectivityMonitor",
    "FolderOpResult",
    "WorkspaceFolders",
    "do_folder_op",
    "SharedStateManager",
    "SharedStateRegistry",
    "ManagerHandle",
    "OperationProcessor",
    "DeliveryOutcome",
]
