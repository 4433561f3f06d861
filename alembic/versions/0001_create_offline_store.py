from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "cached_bookings",
        sa.Column("booking_key", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_cached_bookings_user_id", "cached_bookings", ["user_id"], unique=False)

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("table_name", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("booking_key", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sync_queue_user_id", "sync_queue", ["user_id"], unique=False)
    op.create_index("ix_sync_queue_booking_key", "sync_queue", ["booking_key"], unique=False)

    op.create_table(
        "booking_key_aliases",
        sa.Column("local_key", sa.String(), primary_key=True),
        sa.Column("server_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
    )
    op.create_index("ix_booking_key_aliases_user_id", "booking_key_aliases", ["user_id"], unique=False)

def downgrade():
    op.drop_index("ix_booking_key_aliases_user_id", table_name="booking_key_aliases")
    op.drop_table("booking_key_aliases")
    op.drop_index("ix_sync_queue_booking_key", table_name="sync_queue")
    op.drop_index("ix_sync_queue_user_id", table_name="sync_queue")
    op.drop_table("sync_queue")
    op.drop_index("ix_cached_bookings_user_id", table_name="cached_bookings")
    op.drop_table("cached_bookings")
