"""create projects and change_requests tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS projects (
            project_id TEXT PRIMARY KEY,
            slug TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            description TEXT,
            client_name TEXT,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            rules_json TEXT,
            freelancer_json TEXT,
            context_notes_json TEXT NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL
        )
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS change_requests (
            request_id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
            client_name TEXT,
            client_email TEXT,
            request_text TEXT NOT NULL,
            status TEXT NOT NULL,
            ai_analysis_json TEXT,
            suggested_price NUMERIC(12, 2),
            estimated_hours NUMERIC(8, 2),
            labor_cost NUMERIC(12, 2),
            overhead_cost NUMERIC(12, 2),
            profit_amount NUMERIC(12, 2),
            buffer_amount NUMERIC(12, 2),
            buffer_reasoning TEXT,
            pricing_reasoning TEXT,
            quoted_price NUMERIC(12, 2),
            freelancer_modified_price BOOLEAN NOT NULL DEFAULT FALSE,
            price_modification_reason TEXT,
            run_metrics_json TEXT,
            created_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_change_requests_status ON change_requests (status)")
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_change_requests_project_created "
        "ON change_requests (project_id, created_at DESC)"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_change_requests_project_created")
    op.execute("DROP INDEX IF EXISTS idx_change_requests_status")
    op.execute("DROP TABLE IF EXISTS change_requests")
    op.execute("DROP TABLE IF EXISTS projects")
