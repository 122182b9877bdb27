"""Add projects and sections tables.

Revision ID: 001
Revises:
Create Date: 2026-10-16

Remote store for the offline-first GDD manager. Clients keep the full
collection locally and push whole projects; rows here are upserted by
their client-generated ids.

Tables:
- projects: One row per project, owned by a session identity.
- sections: Section forest of a project. parent_id is a plain reference,
  the forest shape is enforced client side.

Key design decisions:
- VARCHAR(255) primary keys hold client-generated ids.
- sections.project_id ON DELETE CASCADE so deleting a project drops its sections.
- owner_id carries no FK; identities come from the session token.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("mindmap_settings", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_projects_owner_id", "projects", ["owner_id"])

    op.create_table(
        "sections",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column(
            "project_id",
            sa.String(255),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("parent_id", sa.String(255), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        sa.Column("order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("color", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_sections_project_order", "sections", ["project_id", "order"])


def downgrade() -> None:
    op.drop_index("idx_sections_project_order", table_name="sections")
    op.drop_table("sections")
    op.drop_index("idx_projects_owner_id", table_name="projects")
    op.drop_table("projects")
