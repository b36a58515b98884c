"""
PostgreSQL implementation of HubStore.

Expects a pool created by backend.db.init_pool so JSONB columns round-trip
as Python dicts.
"""

from __future__ import annotations

import asyncpg

from backend.db import transaction
from backend.models.shared_state import SharedStateChange, SharedStateDocument
from backend.models.workspace import Workspace
from backend.repos.hub_store import HubStore, VersionConflict


def _row_to_workspace(row: asyncpg.Record) -> Workspace:
    return Workspace(
        id=row["id"],
        name=row["name"],
        owner_id=row["owner_id"],
        org_id=row["org_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_change(row: asyncpg.Record) -> SharedStateChange:
    return SharedStateChange(
        state_id=row["state_id"],
        version=row["version"],
        change_ref=row["change_ref"],
        delta=row["delta"],
        created_at=row["created_at"],
    )


class PostgresHubStore(HubStore):
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    # Workspaces

    async def create_workspace(self, workspace: Workspace, state_id: str) -> Workspace:
        async with transaction(self.pool) as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO workspaces (id, name, owner_id, org_id, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
                """,
                workspace.id,
                workspace.name,
                workspace.owner_id,
                workspace.org_id,
                workspace.created_at,
                workspace.updated_at,
            )
            await conn.execute(
                """
                INSERT INTO shared_state_documents (state_id, value, version)
                VALUES ($1, '{}'::jsonb, 0)
                ON CONFLICT (state_id) DO NOTHING
                """,
                state_id,
            )
            return _row_to_workspace(row)

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM workspaces WHERE id = $1", workspace_id)
            return _row_to_workspace(row) if row else None

    async def rename_workspace(self, workspace_id: str, name: str) -> Workspace | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE workspaces SET name = $2, updated_at = now()
                WHERE id = $1
                RETURNING *
                """,
                workspace_id,
                name,
            )
            return _row_to_workspace(row) if row else None

    async def delete_workspace(self, workspace_id: str, state_id: str) -> bool:
        async with transaction(self.pool) as conn:
            await conn.execute("DELETE FROM runbooks WHERE workspace_id = $1", workspace_id)
            await conn.execute("DELETE FROM shared_state_changes WHERE state_id = $1", state_id)
            await conn.execute("DELETE FROM shared_state_documents WHERE state_id = $1", state_id)
            result = await conn.execute("DELETE FROM workspaces WHERE id = $1", workspace_id)
            return result == "DELETE 1"

    # Runbook index

    async def index_runbooks(self, workspace_id: str, added: list[str], removed: list[str]) -> None:
        async with transaction(self.pool) as conn:
            if removed:
                await conn.execute(
                    "DELETE FROM runbooks WHERE workspace_id = $1 AND id = ANY($2::text[])",
                    workspace_id,
                    removed,
                )
            if added:
                await conn.executemany(
                    """
                    INSERT INTO runbooks (id, workspace_id) VALUES ($1, $2)
                    ON CONFLICT (id) DO UPDATE SET workspace_id = EXCLUDED.workspace_id
                    """,
                    [(runbook_id, workspace_id) for runbook_id in added],
                )

    async def get_runbook_workspace(self, runbook_id: str) -> str | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT workspace_id FROM runbooks WHERE id = $1", runbook_id)

    # Documents

    async def get_document(self, state_id: str) -> SharedStateDocument | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT state_id, value, version FROM shared_state_documents WHERE state_id = $1",
                state_id,
            )
            if row is None:
                return None
            return SharedStateDocument(state_id=row["state_id"], value=row["value"], version=row["version"])

    async def record_change(self, document: SharedStateDocument, change: SharedStateChange) -> None:
        async with transaction(self.pool) as conn:
            result = await conn.execute(
                """
                UPDATE shared_state_documents
                SET value = $2, version = $3, updated_at = now()
                WHERE state_id = $1 AND version = $3 - 1
                """,
                document.state_id,
                document.value,
                document.version,
            )
            if result != "UPDATE 1":
                raise VersionConflict(document.state_id)
            await conn.execute(
                """
                INSERT INTO shared_state_changes (state_id, version, change_ref, delta)
                VALUES ($1, $2, $3, $4)
                """,
                change.state_id,
                change.version,
                change.change_ref,
                change.delta,
            )

    async def has_change_ref(self, state_id: str, change_ref: str) -> bool:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT EXISTS(SELECT 1 FROM shared_state_changes WHERE state_id = $1 AND change_ref = $2)",
                state_id,
                change_ref,
            )

    async def changes_since(self, state_id: str, version: int) -> list[SharedStateChange]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM shared_state_changes
                WHERE state_id = $1 AND version > $2
                ORDER BY version
                """,
                state_id,
                version,
            )
            return [_row_to_change(r) for r in rows]
