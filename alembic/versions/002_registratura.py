"""General register: register configurations, counters, documents

Revision ID: 002_registratura
Revises: 001_initial
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_registratura"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "register_configurations",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("parish_id", sa.BigInteger(), nullable=True),
        sa.Column("resets_annually", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("starting_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.BigInteger(), nullable=False),
        sa.Column("updated_by_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_register_configurations"),
        sa.ForeignKeyConstraint(
            ["parish_id"], ["parishes.id"], name="fk_register_configurations_parish_id_parishes"
        ),
        sa.ForeignKeyConstraint(
            ["created_by_id"], ["users.id"], name="fk_register_configurations_created_by_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["updated_by_id"], ["users.id"], name="fk_register_configurations_updated_by_id_users"
        ),
        sa.CheckConstraint(
            "starting_number >= 1",
            name="ck_register_configurations_starting_number_positive",
        ),
    )
    op.create_index(
        "ix_register_configurations_parish_id", "register_configurations", ["parish_id"]
    )

    # One row per numbering scope; scope_year = 0 for registers that never reset
    op.create_table(
        "register_counters",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("register_configuration_id", sa.BigInteger(), nullable=False),
        sa.Column("scope_year", sa.Integer(), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_register_counters"),
        sa.ForeignKeyConstraint(
            ["register_configuration_id"],
            ["register_configurations.id"],
            name="fk_register_counters_register_configuration_id_register_configurations",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "register_configuration_id", "scope_year", name="uq_register_counter_scope"
        ),
    )

    op.create_table(
        "general_register",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("register_configuration_id", sa.BigInteger(), nullable=False),
        sa.Column("parish_id", sa.BigInteger(), nullable=True),
        sa.Column("document_number", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("scope_year", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(20), nullable=False),
        sa.Column("registration_date", sa.Date(), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("sender", sa.String(255), nullable=True),
        sa.Column("recipient", sa.String(255), nullable=True),
        sa.Column("petitioner_client_id", sa.BigInteger(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("file_path", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("resolution_status", sa.String(20), nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by_id", sa.BigInteger(), nullable=True),
        sa.Column("idempotency_key", sa.String(100), nullable=True),
        sa.Column("created_by_id", sa.BigInteger(), nullable=False),
        sa.Column("updated_by_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_general_register"),
        sa.ForeignKeyConstraint(
            ["register_configuration_id"],
            ["register_configurations.id"],
            name="fk_general_register_register_configuration_id_register_configurations",
        ),
        sa.ForeignKeyConstraint(
            ["parish_id"], ["parishes.id"], name="fk_general_register_parish_id_parishes"
        ),
        sa.ForeignKeyConstraint(
            ["resolved_by_id"], ["users.id"], name="fk_general_register_resolved_by_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["created_by_id"], ["users.id"], name="fk_general_register_created_by_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["updated_by_id"], ["users.id"], name="fk_general_register_updated_by_id_users"
        ),
        sa.UniqueConstraint(
            "register_configuration_id",
            "scope_year",
            "document_number",
            name="uq_general_register_scope_number",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_general_register_idempotency_key"),
    )
    op.create_index(
        "ix_general_register_register_configuration_id",
        "general_register",
        ["register_configuration_id"],
    )
    op.create_index("ix_general_register_parish_id", "general_register", ["parish_id"])
    op.create_index("ix_general_register_year", "general_register", ["year"])
    op.create_index("ix_general_register_document_type", "general_register", ["document_type"])
    op.create_index("ix_general_register_status", "general_register", ["status"])


def downgrade() -> None:
    op.drop_table("general_register")
    op.drop_table("register_counters")
    op.drop_table("register_configurations")
