"""create diary entries and versions tables

Revision ID: 0001_create_diary_tables
Revises: 
Create Date: 2025-01-10 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


revision = "0001_create_diary_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "diary_entries",
        sa.Column("date", sa.Date(), primary_key=True, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_entries_date_desc",
        "diary_entries",
        [sa.text("date DESC")],
    )

    op.create_table(
        "diary_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "entry_date",
            sa.Date(),
            sa.ForeignKey("diary_entries.date"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_versions_entry_date",
        "diary_versions",
        ["entry_date", sa.text("version_number DESC")],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("idx_versions_entry_date", table_name="diary_versions")
    op.drop_table("diary_versions")
    op.drop_index("idx_entries_date_desc", table_name="diary_entries")
    op.drop_table("diary_entries")
