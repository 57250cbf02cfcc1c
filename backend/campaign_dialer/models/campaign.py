"""Campaign domain model."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Fixed dialer slots; each runs its own independent loop.
CAMPAIGN_IDS: tuple[str, ...] = ("dialer1", "dialer2", "dialer3")

# Synthetic campaign used by operator test calls; never counted in stats.
TEST_CAMPAIGN_ID = "test"

# 0=Sun, 1=Mon, ..., 6=Sat
DEFAULT_DAYS_OF_WEEK: tuple[int, ...] = (1, 2, 3, 4, 5)


class CampaignStatus(str, Enum):
    """Campaign run status."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class InvalidCampaignStateError(Exception):
    """Raised when an invalid campaign state transition is attempted."""

    def __init__(self, current_status: CampaignStatus, attempted_action: str, reason: str = ""):
        self.current_status = current_status
        self.attempted_action = attempted_action
        self.reason = reason
        message = f"Cannot {attempted_action} campaign in {current_status.value} status"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class UnknownCampaignError(KeyError):
    """Raised for a campaign id outside the fixed slot set."""

    def __init__(self, campaign_id: str):
        self.campaign_id = campaign_id
        super().__init__(f"Unknown campaign: {campaign_id}")

    def __str__(self) -> str:
        return f"Unknown campaign: {self.campaign_id}"


def validate_campaign_id(campaign_id: str) -> str:
    """Return the campaign id, raising UnknownCampaignError for anything else."""
    if campaign_id not in CAMPAIGN_IDS:
        raise UnknownCampaignError(campaign_id)
    return campaign_id


@dataclass
class CampaignConfig:
    """
    Persisted per-campaign settings.

    Unset values resolve to the defaults below: 30 second cadence,
    voicemail off, Monday to Friday, no time window.
    """

    campaign_id: str
    assistant_id: str = ""
    caller_ids: list[str] = field(default_factory=list)
    dataset_id: str = ""

    # Run window (dialer time zone); empty bound = open on that side
    start_time: str = ""
    end_time: str = ""
    days_of_week: list[int] = field(default_factory=lambda: list(DEFAULT_DAYS_OF_WEEK))

    call_every_seconds: int = 30
    target_zip: str = ""
    double_tap: bool = False

    # Leave a voicemail on N out of every M calls
    voicemail_leave: int = 0
    voicemail_cycle: int = 1
    voicemail_message: str = ""

    @property
    def is_complete(self) -> bool:
        """Assistant, caller-id pool and dataset are all required to dial."""
        return bool(self.assistant_id and self.caller_ids and self.dataset_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "campaign_id": self.campaign_id,
            "assistant_id": self.assistant_id,
            "caller_ids": list(self.caller_ids),
            "dataset_id": self.dataset_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "days_of_week": list(self.days_of_week),
            "call_every_seconds": self.call_every_seconds,
            "target_zip": self.target_zip,
            "double_tap": self.double_tap,
            "voicemail_leave": self.voicemail_leave,
            "voicemail_cycle": self.voicemail_cycle,
            "voicemail_message": self.voicemail_message,
        }


@dataclass
class CampaignRunState:
    """Mutable runtime state of one campaign."""

    campaign_id: str
    running: bool = False
    paused: bool = False
    round_robin_index: int = 0
    call_count: int = 0

    # Reset at civil-day rollover
    calls_placed_today: int = 0
    calls_answered_today: int = 0
    calls_not_answered_today: int = 0
    appointments_booked_today: int = 0
    stats_date: str = ""

    @property
    def status(self) -> CampaignStatus:
        if not self.running:
            return CampaignStatus.STOPPED
        if self.paused:
            return CampaignStatus.PAUSED
        return CampaignStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "campaign_id": self.campaign_id,
            "status": self.status.value,
            "running": self.running,
            "paused": self.paused,
            "round_robin_index": self.round_robin_index,
            "call_count": self.call_count,
            "calls_placed_today": self.calls_placed_today,
            "calls_answered_today": self.calls_answered_today,
            "calls_not_answered_today": self.calls_not_answered_today,
            "appointments_booked_today": self.appointments_booked_today,
            "stats_date": self.stats_date,
        }


@dataclass
class InFlightCall:
    """A dispatched call still waiting for its outcome event."""

    external_id: str
    campaign_id: str
    dataset_id: str
    row_index: int
    caller_id: str
    dispatched_at: datetime
    call_id: str | None = None
    attempt: int = 1

    def age_seconds(self, now: datetime) -> float:
        return (now - self.dispatched_at).total_seconds()


@dataclass
class DoubleTapRetry:
    """A second-attempt redial scheduled after a no-answer outcome."""

    external_id: str
    campaign_id: str
    dataset_id: str
    row_index: int
    caller_id: str
    scheduled_at: datetime
    fired_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.fired_at is None
