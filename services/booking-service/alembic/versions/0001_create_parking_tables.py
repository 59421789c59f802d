from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade():
    op.create_table(
        "spots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("has_schedule", sa.Boolean(), nullable=False),
        sa.Column("default_available", sa.Boolean(), nullable=False),
        sa.Column("price", MONEY, nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_spots_owner_id", "spots", ["owner_id"], unique=False)
    op.create_index("ix_spots_status", "spots", ["status"], unique=False)

    op.create_table(
        "weekly_schedule_slots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("spot_id", sa.Integer(), sa.ForeignKey("spots.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_slot_day_of_week"),
    )
    op.create_index("ix_weekly_schedule_slots_spot_id", "weekly_schedule_slots", ["spot_id"], unique=False)

    op.create_table(
        "blackout_dates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("spot_id", sa.Integer(), sa.ForeignKey("spots.id", ondelete="CASCADE"), nullable=False),
        sa.Column("blocked_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.UniqueConstraint("spot_id", "blocked_date", name="uq_blackout_spot_date"),
    )
    op.create_index("ix_blackout_dates_spot_id", "blackout_dates", ["spot_id"], unique=False)

    op.create_table(
        "booking_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("requester_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("spot_id", sa.Integer(), sa.ForeignKey("spots.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("requester_timezone", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("total_hours", sa.Numeric(8, 2), nullable=False),
        sa.Column("total_price", MONEY, nullable=True),
        sa.Column("payment_session_id", sa.String(), nullable=True, unique=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_amount", MONEY, nullable=True),
        sa.Column("payment_processed", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_booking_requests_booking_id", "booking_requests", ["booking_id"], unique=True)
    op.create_index("ix_booking_requests_requester_id", "booking_requests", ["requester_id"], unique=False)
    op.create_index("ix_booking_requests_owner_id", "booking_requests", ["owner_id"], unique=False)
    op.create_index("ix_booking_requests_spot_id", "booking_requests", ["spot_id"], unique=False)
    op.create_index("ix_booking_requests_status", "booking_requests", ["status"], unique=False)

    op.create_table(
        "wallet_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_id", sa.String(), nullable=False, unique=True),
        sa.Column("balance", MONEY, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    op.create_table(
        "settlement_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("booking_id", sa.String(), nullable=True),
        sa.Column("from_actor", sa.String(), nullable=True),
        sa.Column("to_actor", sa.String(), nullable=False),
        sa.Column("booking_amount", MONEY, nullable=False),
        sa.Column("platform_fee", MONEY, nullable=False),
        sa.Column("total_charged", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_settlement_records_idempotency_key", "settlement_records", ["idempotency_key"], unique=True)
    op.create_index("ix_settlement_records_booking_id", "settlement_records", ["booking_id"], unique=False)


def downgrade():
    op.drop_index("ix_settlement_records_booking_id", table_name="settlement_records")
    op.drop_index("ix_settlement_records_idempotency_key", table_name="settlement_records")
    op.drop_table("settlement_records")
    op.drop_table("wallet_accounts")
    op.drop_index("ix_booking_requests_status", table_name="booking_requests")
    op.drop_index("ix_booking_requests_spot_id", table_name="booking_requests")
    op.drop_index("ix_booking_requests_owner_id", table_name="booking_requests")
    op.drop_index("ix_booking_requests_requester_id", table_name="booking_requests")
    op.drop_index("ix_booking_requests_booking_id", table_name="booking_requests")
    op.drop_table("booking_requests")
    op.drop_index("ix_blackout_dates_spot_id", table_name="blackout_dates")
    op.drop_table("blackout_dates")
    op.drop_index("ix_weekly_schedule_slots_spot_id", table_name="weekly_schedule_slots")
    op.drop_table("weekly_schedule_slots")
    op.drop_index("ix_spots_status", table_name="spots")
    op.drop_index("ix_spots_owner_id", table_name="spots")
    op.drop_table("spots")
