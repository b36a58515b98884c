"""
Local persistence for shared-state documents.

Each document keeps its last confirmed value and version plus the ordered
list of optimistic updates not yet acknowledged by the hub, so a restarted
client resumes exactly where it stopped.

Tables (Postgres):
  shared_state_documents(name, value, version)
  shared_state_optimistic_updates(id, document_name, delta, change_ref, source_version)
"""

from __future__ import annotations

import copy
import json
from typing import Any

import asyncpg
from pydantic import BaseModel, Field


class OptimisticUpdate(BaseModel):
    change_ref: str
    delta: dict[str, Any] = Field(default_factory=dict)
    source_version: int = 0


class SharedStateDocument(BaseModel):
    value: dict[str, Any] = Field(default_factory=dict)
    version: int = 0
    optimistic_updates: list[OptimisticUpdate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class SharedStateDocumentStore:
    """
    Abstract storage interface.
    Implement with Postgres for persistent clients, or in-memory for tests.
    """

    async def get_document(self, name: str) -> SharedStateDocument:
        """Stored document, or an empty one at version 0."""
        raise NotImplementedError

    async def update_document(self, name: str, value: dict[str, Any], version: int) -> None:
        raise NotImplementedError

    async def delete_document(self, name: str) -> None:
        """Remove the document and its pending updates."""
        raise NotImplementedError

    async def push_optimistic_update(self, name: str, update: OptimisticUpdate) -> None:
        raise NotImplementedError

    async def remove_optimistic_updates(self, name: str, change_refs: list[str]) -> None:
        raise NotImplementedError


class MemoryDocumentStore(SharedStateDocumentStore):
    def __init__(self) -> None:
        self.documents: dict[str, SharedStateDocument] = {}

    async def get_document(self, name: str) -> SharedStateDocument:
        doc = self.documents.get(name)
        return doc.model_copy(deep=True) if doc else SharedStateDocument()

    async def update_document(self, name: str, value: dict[str, Any], version: int) -> None:
        doc = self.documents.setdefault(name, SharedStateDocument())
        doc.value = copy.deepcopy(value)
        doc.version = version

    async def delete_document(self, name: str) -> None:
        self.documents.pop(name, None)

    async def push_optimistic_update(self, name: str, update: OptimisticUpdate) -> None:
        doc = self.documents.setdefault(name, SharedStateDocument())
        doc.optimistic_updates.append(update.model_copy(deep=True))

    async def remove_optimistic_updates(self, name: str, change_refs: list[str]) -> None:
        doc = self.documents.get(name)
        if doc is None or not change_refs:
            return
        refs = set(change_refs)
        doc.optimistic_updates = [u for u in doc.optimistic_updates if u.change_ref not in refs]


class PostgresDocumentStore(SharedStateDocumentStore):
    """Postgres-backed store. Call ensure_schema() once before use."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS shared_state_documents (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    version BIGINT NOT NULL DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS shared_state_optimistic_updates (
                    id BIGSERIAL PRIMARY KEY,
                    document_name TEXT NOT NULL,
                    delta TEXT NOT NULL,
                    change_ref TEXT NOT NULL,
                    source_version BIGINT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_optimistic_updates_document
                    ON shared_state_optimistic_updates (document_name, id);
                """
            )

    async def get_document(self, name: str) -> SharedStateDocument:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT value, version FROM shared_state_documents WHERE name = $1", name)
            updates = await conn.fetch(
                """
                SELECT delta, change_ref, source_version
                FROM shared_state_optimistic_updates
                WHERE document_name = $1
                ORDER BY id
                """,
                name,
            )
        return SharedStateDocument(
            value=json.loads(row["value"]) if row else {},
            version=row["version"] if row else 0,
            optimistic_updates=[
                OptimisticUpdate(
                    change_ref=u["change_ref"],
                    delta=json.loads(u["delta"]),
                    source_version=u["source_version"],
                )
                for u in updates
            ],
        )

    async def update_document(self, name: str, value: dict[str, Any], version: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO shared_state_documents (name, value, version)
                VALUES ($1, $2, $3)
                ON CONFLICT (name)
                DO UPDATE SET value = EXCLUDED.value, version = EXCLUDED.version
                """,
                name,
                json.dumps(value),
                version,
            )

    async def delete_document(self, name: str) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM shared_state_optimistic_updates WHERE document_name = $1", name)
                await conn.execute("DELETE FROM shared_state_documents WHERE name = $1", name)

    async def push_optimistic_update(self, name: str, update: OptimisticUpdate) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO shared_state_optimistic_updates (document_name, delta, change_ref, source_version)
                VALUES ($1, $2, $3, $4)
                """,
                name,
                json.dumps(update.delta),
                update.change_ref,
                update.source_version,
            )

    async def remove_optimistic_updates(self, name: str, change_refs: list[str]) -> None:
        if not change_refs:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                DELETE FROM shared_state_optimistic_updates
                WHERE document_name = $1 AND change_ref = ANY($2::text[])
                """,
                name,
                change_refs,
            )
