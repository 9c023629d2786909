"""Legacy import foundation: sessions, documents, clusters, re-cluster jobs.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Rows carry the full model as JSONB in ``data``; the remaining columns exist
for filtering, ordering and uniqueness. All keys are tenant-scoped.
"""

from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the legacy import tables and their lookup indexes."""
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS import_sessions (
            tenant_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            pipeline_status TEXT NOT NULL,
            created_at TIMESTAMPTZ,
            data JSONB NOT NULL,
            PRIMARY KEY (tenant_id, session_id)
        )
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS import_documents (
            tenant_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            cluster_id TEXT,
            triage_status TEXT,
            validation_status TEXT NOT NULL,
            file_name TEXT NOT NULL,
            email_subject TEXT,
            created_at TIMESTAMPTZ,
            data JSONB NOT NULL,
            PRIMARY KEY (tenant_id, document_id)
        )
        """
    )

    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_import_documents_session_cluster
        ON import_documents (tenant_id, session_id, cluster_id)
        """
    )

    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_import_documents_session_validation
        ON import_documents (tenant_id, session_id, validation_status)
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS document_clusters (
            tenant_id TEXT NOT NULL,
            cluster_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            status TEXT NOT NULL,
            retired_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ,
            data JSONB NOT NULL,
            PRIMARY KEY (tenant_id, cluster_id)
        )
        """
    )

    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_document_clusters_session
        ON document_clusters (tenant_id, session_id)
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS recluster_jobs (
            tenant_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            status TEXT NOT NULL,
            data JSONB NOT NULL,
            PRIMARY KEY (tenant_id, session_id)
        )
        """
    )


def downgrade() -> None:
    """Drop the legacy import tables."""
    op.execute("DROP TABLE IF EXISTS recluster_jobs")
    op.execute("DROP TABLE IF EXISTS document_clusters")
    op.execute("DROP TABLE IF EXISTS import_documents")
    op.execute("DROP TABLE IF EXISTS import_sessions")
