from alembic import op
import sqlalchemy as sa


revision = "0002_admin_sessions"
down_revision = "0001_create_diary_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "admin_sessions",
        sa.Column("token_hash", sa.Text(), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("admin_sessions_expires_idx", "admin_sessions", ["expires_at"])


def downgrade() -> None:
    op.drop_index("admin_sessions_expires_idx", table_name="admin_sessions")
    op.drop_table("admin_sessions")
