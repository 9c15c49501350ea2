from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "todos",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "reporter_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "assignee_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.CheckConstraint("position >= 0", name="ck_todos_position_non_negative"),
        sa.CheckConstraint(
            "status IN ('todo', 'in_progress', 'done')", name="ck_todos_status"
        ),
    )
    op.create_index("ix_todos_reporter_id", "todos", ["reporter_id"])
    op.create_index("ix_todos_assignee_id", "todos", ["assignee_id"])
    op.create_index(
        "ix_todos_partition", "todos", ["assignee_id", "status", "position"]
    )


def downgrade() -> None:
    op.drop_index("ix_todos_partition", table_name="todos")
    op.drop_index("ix_todos_assignee_id", table_name="todos")
    op.drop_index("ix_todos_reporter_id", table_name="todos")
    op.drop_table("todos")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
