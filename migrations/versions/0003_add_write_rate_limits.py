from alembic import op
import sqlalchemy as sa


revision = "0003_write_rate_limits"
down_revision = "0002_admin_sessions"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "write_rate_limits",
        sa.Column("client_key", sa.Text(), primary_key=True, nullable=False),
        sa.Column("window_started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("write_rate_limits")
