"""create lead, campaign and suppression tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "lead_datasets",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("original_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "lead_rows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "dataset_id",
            sa.String(length=32),
            sa.ForeignKey("lead_datasets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("address", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("city", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("zip_code", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("phone_key", sa.String(length=10), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="not-called"),
        sa.Column("ended_reason", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("success_evaluation", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("transcript", sa.Text(), nullable=False, server_default=""),
        sa.Column("extra", sa.JSON(), nullable=False),
        sa.UniqueConstraint("dataset_id", "row_index", name="uq_lead_rows_dataset_row"),
    )
    op.create_index("ix_lead_rows_dataset_id", "lead_rows", ["dataset_id"])
    op.create_index("ix_lead_rows_phone_key", "lead_rows", ["phone_key"])

    op.create_table(
        "campaign_configs",
        sa.Column("campaign_id", sa.String(length=32), primary_key=True),
        sa.Column("assistant_id", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("caller_ids", sa.JSON(), nullable=False),
        sa.Column("dataset_id", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("start_time", sa.String(length=8), nullable=False, server_default=""),
        sa.Column("end_time", sa.String(length=8), nullable=False, server_default=""),
        sa.Column("days_of_week", sa.JSON(), nullable=True),
        sa.Column("call_every_seconds", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("target_zip", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("double_tap", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("voicemail_leave", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("voicemail_cycle", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("voicemail_message", sa.Text(), nullable=False, server_default=""),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "campaign_run_states",
        sa.Column("campaign_id", sa.String(length=32), primary_key=True),
        sa.Column("running", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("round_robin_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("call_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("calls_placed_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("calls_answered_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("calls_not_answered_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("appointments_booked_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stats_date", sa.String(length=10), nullable=False, server_default=""),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "in_flight_calls",
        sa.Column("external_id", sa.String(length=64), primary_key=True),
        sa.Column("campaign_id", sa.String(length=32), nullable=False),
        sa.Column("dataset_id", sa.String(length=32), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("caller_id", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("call_id", sa.String(length=100), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_in_flight_calls_campaign_id", "in_flight_calls", ["campaign_id"])
    op.create_index("ix_in_flight_calls_dataset_id", "in_flight_calls", ["dataset_id"])

    op.create_table(
        "double_tap_retries",
        sa.Column("external_id", sa.String(length=64), primary_key=True),
        sa.Column("campaign_id", sa.String(length=32), nullable=False),
        sa.Column("dataset_id", sa.String(length=32), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("caller_id", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fired_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_double_tap_retries_dataset_id", "double_tap_retries", ["dataset_id"])

    op.create_table(
        "processed_outcomes",
        sa.Column("dedupe_key", sa.String(length=255), primary_key=True),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processed_outcomes_external_id", "processed_outcomes", ["external_id"])

    op.create_table(
        "blacklisted_phones",
        sa.Column("phone", sa.String(length=10), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("address", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("normalized_address", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("transcript", sa.Text(), nullable=False, server_default=""),
        sa.Column("campaign_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("normalized_address", name="uq_bookings_normalized_address"),
    )


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("blacklisted_phones")
    op.drop_index("ix_processed_outcomes_external_id", table_name="processed_outcomes")
    op.drop_table("processed_outcomes")
    op.drop_index("ix_double_tap_retries_dataset_id", table_name="double_tap_retries")
    op.drop_table("double_tap_retries")
    op.drop_index("ix_in_flight_calls_dataset_id", table_name="in_flight_calls")
    op.drop_index("ix_in_flight_calls_campaign_id", table_name="in_flight_calls")
    op.drop_table("in_flight_calls")
    op.drop_table("campaign_run_states")
    op.drop_table("campaign_configs")
    op.drop_index("ix_lead_rows_phone_key", table_name="lead_rows")
    op.drop_index("ix_lead_rows_dataset_id", table_name="lead_rows")
    op.drop_table("lead_rows")
    op.drop_table("lead_datasets")
