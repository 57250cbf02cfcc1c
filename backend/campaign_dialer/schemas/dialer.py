"""Dialer schemas."""

import re

from pydantic import BaseModel, Field, field_validator

from campaign_dialer.models.campaign import CampaignConfig, CampaignRunState
from campaign_dialer.models.lead import Lead

_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


class CampaignConfigUpdate(BaseModel):
    """Partial campaign settings update; omitted fields are left alone."""

    assistant_id: str | None = None
    caller_ids: list[str] | None = None
    dataset_id: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    days_of_week: list[int] | None = None
    call_every_seconds: int | None = Field(default=None, ge=1, le=86400)
    target_zip: str | None = None
    double_tap: bool | None = None
    voicemail_leave: int | None = Field(default=None, ge=0)
    voicemail_cycle: int | None = Field(default=None, ge=1)
    voicemail_message: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        if value is None or value.strip() == "":
            return value
        if not _TIME_PATTERN.match(value.strip()):
            raise ValueError("Time must be HH:MM")
        return value.strip()

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, value: list[int] | None) -> list[int] | None:
        if value is not None and any(day < 0 or day > 6 for day in value):
            raise ValueError("Days are numbered 0 (Sunday) to 6 (Saturday)")
        return value


class CampaignConfigResponse(BaseModel):
    """Campaign settings response."""

    campaign_id: str
    assistant_id: str
    caller_ids: list[str]
    dataset_id: str
    start_time: str
    end_time: str
    days_of_week: list[int]
    call_every_seconds: int
    target_zip: str
    double_tap: bool
    voicemail_leave: int
    voicemail_cycle: int
    voicemail_message: str
    is_complete: bool

    @classmethod
    def from_config(cls, config: CampaignConfig) -> "CampaignConfigResponse":
        return cls(**config.to_dict(), is_complete=config.is_complete)


class CampaignStateResponse(BaseModel):
    """Campaign run state and today's counters."""

    campaign_id: str
    status: str
    running: bool
    paused: bool
    armed: bool
    round_robin_index: int
    call_count: int
    calls_placed_today: int
    calls_answered_today: int
    calls_not_answered_today: int
    appointments_booked_today: int
    stats_date: str
    in_flight: int = 0

    @classmethod
    def from_state(
        cls, state: CampaignRunState, armed: bool, in_flight: int = 0
    ) -> "CampaignStateResponse":
        return cls(**state.to_dict(), armed=armed, in_flight=in_flight)


class DialerStateResponse(BaseModel):
    """All campaigns at a glance."""

    campaigns: list[CampaignStateResponse]
    blacklist_size: int
    pending_retries: int


class LeadPreview(BaseModel):
    """Lead as shown to the operator."""

    dataset_id: str
    row_index: int
    first_name: str
    last_name: str
    address: str
    city: str
    zip_code: str
    phone: str

    @classmethod
    def from_lead(cls, lead: Lead) -> "LeadPreview":
        return cls(
            dataset_id=lead.dataset_id,
            row_index=lead.row_index,
            first_name=lead.first_name,
            last_name=lead.last_name,
            address=lead.address,
            city=lead.city,
            zip_code=lead.zip_code,
            phone=lead.phone,
        )


class NextUpEntry(BaseModel):
    """Next lead for one campaign; ``done`` when its queue is empty."""

    campaign_id: str
    done: bool
    lead: LeadPreview | None = None


class OperatorTestCallRequest(BaseModel):
    """Operator test call."""

    campaign_id: str
    phone: str = Field(..., min_length=10)
    first_name: str = ""
    last_name: str = ""
    address: str = ""
    city: str = ""
    zip_code: str = ""


class OperatorTestCallResponse(BaseModel):
    call_id: str
    external_id: str


class ProviderInfoResponse(BaseModel):
    """Assistants and caller ids available on the provider account."""

    assistants: list[dict]
    phone_numbers: list[dict]
