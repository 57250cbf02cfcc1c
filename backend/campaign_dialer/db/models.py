"""SQLAlchemy ORM models."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campaign_dialer.db.base import Base
from campaign_dialer.models.lead import LeadStatus


def utc_now() -> datetime:
    """Timezone-aware UTC now for defaults."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class LeadDatasetDB(Base):
    """Uploaded lead spreadsheet."""

    __tablename__ = "lead_datasets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    original_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    headers: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    rows: Mapped[list["LeadRowDB"]] = relationship(
        back_populates="dataset",
        cascade="all, delete-orphan",
        order_by="LeadRowDB.row_index",
    )


class LeadRowDB(Base):
    """One lead row of a dataset."""

    __tablename__ = "lead_rows"
    __table_args__ = (
        UniqueConstraint("dataset_id", "row_index", name="uq_lead_rows_dataset_row"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("lead_datasets.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    address: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    city: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    zip_code: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    phone: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    phone_key: Mapped[str] = mapped_column(String(10), default="", index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=LeadStatus.NOT_CALLED.value, nullable=False
    )
    ended_reason: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    success_evaluation: Mapped[str] = mapped_column(String(16), default="", nullable=False)
    transcript: Mapped[str] = mapped_column(Text, default="", nullable=False)

    extra: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    dataset: Mapped[LeadDatasetDB] = relationship(back_populates="rows")


class CampaignConfigDB(Base):
    """Per-campaign dialer settings."""

    __tablename__ = "campaign_configs"

    campaign_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    assistant_id: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    caller_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    dataset_id: Mapped[str] = mapped_column(String(32), default="", nullable=False)

    start_time: Mapped[str] = mapped_column(String(8), default="", nullable=False)
    end_time: Mapped[str] = mapped_column(String(8), default="", nullable=False)
    days_of_week: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)

    call_every_seconds: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    target_zip: Mapped[str] = mapped_column(String(16), default="", nullable=False)
    double_tap: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    voicemail_leave: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    voicemail_cycle: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    voicemail_message: Mapped[str] = mapped_column(Text, default="", nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class CampaignRunStateDB(Base):
    """Per-campaign runtime state and daily counters."""

    __tablename__ = "campaign_run_states"

    campaign_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    running: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    round_robin_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    call_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    calls_placed_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    calls_answered_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    calls_not_answered_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    appointments_booked_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stats_date: Mapped[str] = mapped_column(String(10), default="", nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class InFlightCallDB(Base):
    """Dispatched call awaiting its end-of-call report."""

    __tablename__ = "in_flight_calls"

    external_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    dataset_id: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    caller_id: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    dispatched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    call_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class DoubleTapRetryDB(Base):
    """Second-attempt redial, one per external id."""

    __tablename__ = "double_tap_retries"

    external_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(String(32), nullable=False)
    dataset_id: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    caller_id: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ProcessedOutcomeDB(Base):
    """Dedupe ledger for outcome events."""

    __tablename__ = "processed_outcomes"

    dedupe_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    external_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class BlacklistedPhoneDB(Base):
    """Phone number that must never be dialed again."""

    __tablename__ = "blacklisted_phones"

    phone: Mapped[str] = mapped_column(String(10), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class BookingDB(Base):
    """Booked appointment; its address suppresses further calls."""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    address: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    normalized_address: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    transcript: Mapped[str] = mapped_column(Text, default="", nullable=False)
    campaign_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
