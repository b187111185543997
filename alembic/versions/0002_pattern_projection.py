"""Pattern projection tables.

Documents and their flattened person entries, written only by the
projector and rebuildable from the relational tables at any time.

Revision ID: 0002
Revises: 0001
Create Date: 2026-09-21

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "pattern_documents",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("doc_type", sa.String(16), nullable=False),
        sa.Column("doc_id", sa.String(64), nullable=False),
        sa.Column("document", sa.JSON, nullable=False),
        sa.Column("source_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("indexed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "doc_type", "doc_id", name="uq_pattern_documents_doc"),
    )

    op.create_table(
        "pattern_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("doc_type", sa.String(16), nullable=False),
        sa.Column("doc_id", sa.String(64), nullable=False),
        sa.Column("person_id", sa.String(64), nullable=False),
        sa.Column("label", sa.String(32), nullable=False),
        sa.Column("evidentiary_status", sa.String(16), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true"),
    )
    op.create_index(
        "ix_pattern_entries_tenant_person",
        "pattern_entries", ["tenant_id", "doc_type", "person_id"],
    )
    op.create_index(
        "ix_pattern_entries_tenant_doc", "pattern_entries", ["tenant_id", "doc_type", "doc_id"]
    )


def downgrade() -> None:
    op.drop_table("pattern_entries")
    op.drop_table("pattern_documents")
