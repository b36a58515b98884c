"""
Repository layer for the runbook hub.

All SQL lives here and ONLY here. No database access outside this module.
"""

from backend.repos.hub_store import HubStore, MemoryHubStore, VersionConflict
from backend.repos.postgres_hub_store import PostgresHubStore

__all__ = [
    "HubStore",
    "MemoryHubStore",
    "PostgresHubStore",
    "VersionConflict",
]
