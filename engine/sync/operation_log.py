"""
Durable operation log.

Operations are appended when an optimistic mutation is accepted and marked
processed once the hub has them (or they no longer matter). The core never
deletes rows.

Table (Postgres):
  operation_log(id, operation, processed_at, created, updated)
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

import asyncpg

from engine.sync.operations import Operation, OperationData, next_created_at, parse_operation_data


def _row_to_operation(row: Any) -> Operation:
    raw = row["operation"]
    if isinstance(raw, str):
        raw = json.loads(raw)
    return Operation(
        id=row["id"],
        operation=parse_operation_data(raw),
        processed_at=row["processed_at"],
        created=row["created"],
        updated=row["updated"],
    )


# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class OperationLog:
    """
    Abstract operation log.
    Implement with Postgres for persistent clients, or in-memory for tests.
    """

    async def create(self, data: OperationData) -> Operation:
        """Append an unprocessed operation."""
        raise NotImplementedError

    async def get(self, operation_id: str) -> Operation | None:
        raise NotImplementedError

    async def get_unprocessed(self) -> list[Operation]:
        """Unprocessed operations, oldest first."""
        raise NotImplementedError

    async def mark_processed(self, operation_id: str, when: datetime | None = None) -> None:
        raise NotImplementedError


class MemoryOperationLog(OperationLog):
    """Rows are kept in their stored (JSON) shape and parsed on read."""

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    async def create(self, data: OperationData) -> Operation:
        created = next_created_at()
        row = {
            "id": str(uuid.uuid4()),
            "operation": data.model_dump(mode="json"),
            "processed_at": None,
            "created": created,
            "updated": created,
        }
        self.rows.append(row)
        return _row_to_operation(row)

    async def get(self, operation_id: str) -> Operation | None:
        for row in self.rows:
            if row["id"] == operation_id:
                return _row_to_operation(row)
        return None

    async def get_unprocessed(self) -> list[Operation]:
        rows = sorted((r for r in self.rows if r["processed_at"] is None), key=lambda r: r["created"])
        return [_row_to_operation(r) for r in rows]

    async def mark_processed(self, operation_id: str, when: datetime | None = None) -> None:
        when = when or datetime.now(UTC)
        for row in self.rows:
            if row["id"] == operation_id:
                row["processed_at"] = when
                row["updated"] = when
                return


class PostgresOperationLog(OperationLog):
    """Postgres-backed log. Call ensure_schema() once before use."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS operation_log (
                    id TEXT PRIMARY KEY,
                    operation TEXT NOT NULL,
                    processed_at TIMESTAMPTZ,
                    created TIMESTAMPTZ NOT NULL,
                    updated TIMESTAMPTZ NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_operation_log_unprocessed
                    ON operation_log (created) WHERE processed_at IS NULL;
                """
            )

    async def create(self, data: OperationData) -> Operation:
        created = next_created_at()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO operation_log (id, operation, processed_at, created, updated)
                VALUES ($1, $2, NULL, $3, $3)
                RETURNING *
                """,
                str(uuid.uuid4()),
                data.model_dump_json(),
                created,
            )
        return _row_to_operation(row)

    async def get(self, operation_id: str) -> Operation | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM operation_log WHERE id = $1", operation_id)
        return _row_to_operation(row) if row else None

    async def get_unprocessed(self) -> list[Operation]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM operation_log WHERE processed_at IS NULL ORDER BY created, id")
        return [_row_to_operation(r) for r in rows]

    async def mark_processed(self, operation_id: str, when: datetime | None = None) -> None:
        when = when or datetime.now(UTC)
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE operation_log SET processed_at = $2, updated = $2 WHERE id = $1",
                operation_id,
                when,
            )
