"""initial_schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -----------------------------
    # USERS
    # -----------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("admin", "user", name="user_role_enum", native_enum=False),
            server_default="user",
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_user_email"),
        sa.CheckConstraint("length(email) >= 5", name="ck_user_email_length"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("idx_user_email_active", "users", ["email", "is_active"])
    op.create_index("idx_user_created_at", "users", ["created_at"])

    # -----------------------------
    # PROJECTS
    # -----------------------------
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("category", sa.String(length=100), server_default="other", nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column(
            "data_source",
            sa.Enum("excel", "csv", "api", "database", name="data_source_enum", native_enum=False),
            server_default="excel",
            nullable=False,
        ),
        sa.Column(
            "refresh_frequency",
            sa.Enum("manual", "daily", "weekly", "monthly", name="refresh_frequency_enum", native_enum=False),
            server_default="manual",
            nullable=False,
        ),
        sa.Column(
            "ingestion_status",
            sa.Enum("empty", "pending", "complete", name="ingestion_status_enum", native_enum=False),
            server_default="empty",
            nullable=False,
        ),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_id", "projects", ["id"])
    op.create_index("ix_projects_created_by", "projects", ["created_by"])
    op.create_index("idx_projects_created_by_created_at", "projects", ["created_by", "created_at"])

    # -----------------------------
    # PROJECT COLUMNS
    # -----------------------------
    op.create_table(
        "project_columns",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("column_name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_selected", sa.Boolean(), nullable=False),
        sa.Column("selected_position", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "column_name", name="uq_project_columns_project_column"),
    )
    op.create_index("ix_project_columns_project_id", "project_columns", ["project_id"])

    # -----------------------------
    # PROJECT DATA
    # -----------------------------
    op.create_table(
        "project_data",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("row_data", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_project_data_project_id", "project_data", ["project_id"])

    # -----------------------------
    # PROJECT USERS
    # -----------------------------
    op.create_table(
        "project_users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("viewer", "editor", "admin", name="project_role_enum", native_enum=False),
            server_default="viewer",
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_project_users_project_id", "project_users", ["project_id"])
    op.create_index("idx_project_users_project_id_role", "project_users", ["project_id", "role"])
    op.create_index("idx_project_users_user_id", "project_users", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_project_users_user_id", table_name="project_users")
    op.drop_index("idx_project_users_project_id_role", table_name="project_users")
    op.drop_index("ix_project_users_project_id", table_name="project_users")
    op.drop_table("project_users")

    op.drop_index("ix_project_data_project_id", table_name="project_data")
    op.drop_table("project_data")

    op.drop_index("ix_project_columns_project_id", table_name="project_columns")
    op.drop_table("project_columns")

    op.drop_index("idx_projects_created_by_created_at", table_name="projects")
    op.drop_index("ix_projects_created_by", table_name="projects")
    op.drop_index("ix_projects_id", table_name="projects")
    op.drop_table("projects")

    op.drop_index("idx_user_created_at", table_name="users")
    op.drop_index("idx_user_email_active", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
