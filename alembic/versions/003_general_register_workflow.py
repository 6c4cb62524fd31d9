"""General register workflow: routing of documents between users

Revision ID: 003_register_workflow
Revises: 002_registratura
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "003_register_workflow"
down_revision: Union[str, None] = "002_registratura"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "general_register_workflow",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("document_id", sa.BigInteger(), nullable=False),
        sa.Column("parent_step_id", sa.BigInteger(), nullable=True),
        sa.Column("from_user_id", sa.BigInteger(), nullable=False),
        sa.Column("to_user_id", sa.BigInteger(), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("step_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_general_register_workflow"),
        sa.ForeignKeyConstraint(
            ["document_id"],
            ["general_register.id"],
            name="fk_general_register_workflow_document_id_general_register",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["parent_step_id"],
            ["general_register_workflow.id"],
            name="fk_general_register_workflow_parent_step_id_general_register_workflow",
        ),
        sa.ForeignKeyConstraint(
            ["from_user_id"], ["users.id"], name="fk_general_register_workflow_from_user_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["to_user_id"], ["users.id"], name="fk_general_register_workflow_to_user_id_users"
        ),
    )
    op.create_index(
        "ix_general_register_workflow_document_id", "general_register_workflow", ["document_id"]
    )
    op.create_index(
        "ix_general_register_workflow_to_user_id", "general_register_workflow", ["to_user_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_general_register_workflow_to_user_id", table_name="general_register_workflow")
    op.drop_index("ix_general_register_workflow_document_id", table_name="general_register_workflow")
    op.drop_table("general_register_workflow")
