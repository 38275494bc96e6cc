"""create members, point_purchases and ledger_entries

Revision ID: 0001
Revises:
Create Date: 2026-10-18 12:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), server_default="member", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_members_id"), "members", ["id"], unique=False)

    op.create_table(
        "point_purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("points_amount", sa.Integer(), nullable=False),
        sa.Column("local_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(10, 4), nullable=False),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("external_reference", sa.String(), nullable=False),
        sa.Column("gateway_handle", sa.String(), nullable=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_point_purchases_id"), "point_purchases", ["id"], unique=False)
    op.create_index(op.f("ix_point_purchases_external_reference"), "point_purchases", ["external_reference"], unique=True)
    op.create_index("point_purchases_member_date_idx", "point_purchases", ["member_id", "created_at"], unique=False)

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ledger_entries_id"), "ledger_entries", ["id"], unique=False)
    op.create_index("ledger_entries_member_date_idx", "ledger_entries", ["member_id", "created_at"], unique=False)
    op.create_index("ledger_entries_reference_idx", "ledger_entries", ["reference_type", "reference_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ledger_entries_reference_idx", table_name="ledger_entries")
    op.drop_index("ledger_entries_member_date_idx", table_name="ledger_entries")
    op.drop_index(op.f("ix_ledger_entries_id"), table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("point_purchases_member_date_idx", table_name="point_purchases")
    op.drop_index(op.f("ix_point_purchases_external_reference"), table_name="point_purchases")
    op.drop_index(op.f("ix_point_purchases_id"), table_name="point_purchases")
    op.drop_table("point_purchases")
    op.drop_index(op.f("ix_members_id"), table_name="members")
    op.drop_table("members")
