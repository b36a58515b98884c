"""Hub schema: workspaces, runbook index, shared-state documents and changes.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute("""
        CREATE TABLE workspaces (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            org_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX idx_workspaces_owner ON workspaces(owner_id);")

    # Which workspace tree each runbook lives in
    op.execute("""
        CREATE TABLE runbooks (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE
        );
    """)
    op.execute("CREATE INDEX idx_runbooks_workspace ON runbooks(workspace_id);")

    op.execute("""
        CREATE TABLE shared_state_documents (
            state_id TEXT PRIMARY KEY,
            value JSONB NOT NULL DEFAULT '{}'::jsonb,
            version INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    # One row per document version; change_ref is NULL for hub-originated changes
    op.execute("""
        CREATE TABLE shared_state_changes (
            state_id TEXT NOT NULL REFERENCES shared_state_documents(state_id) ON DELETE CASCADE,
            version INTEGER NOT NULL,
            change_ref TEXT,
            delta JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (state_id, version)
        );
    """)
    op.execute("""
        CREATE UNIQUE INDEX idx_shared_state_changes_ref
        ON shared_state_changes(state_id, change_ref)
        WHERE change_ref IS NOT NULL;
    """)


def downgrade():
    op.execute("DROP TABLE IF EXISTS shared_state_changes;")
    op.execute("DROP TABLE IF EXISTS shared_state_documents;")
    op.execute("DROP TABLE IF EXISTS runbooks;")
    op.execute("DROP TABLE IF EXISTS workspaces;")
