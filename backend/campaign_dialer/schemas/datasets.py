"""Dataset schemas."""

from datetime import datetime

from pydantic import BaseModel

from campaign_dialer.models.lead import Lead
from campaign_dialer.services.lead_store import Dataset


class DatasetResponse(BaseModel):
    """Uploaded dataset."""

    id: str
    original_name: str
    headers: list[str]
    row_count: int
    created_at: datetime | None = None

    @classmethod
    def from_dataset(cls, dataset: Dataset) -> "DatasetResponse":
        return cls(
            id=dataset.id,
            original_name=dataset.original_name,
            headers=dataset.headers,
            row_count=dataset.row_count,
            created_at=dataset.created_at,
        )


class DatasetImportResponse(DatasetResponse):
    """Import result with skipped duplicates and row warnings."""

    duplicates_skipped: int = 0
    errors: list[dict[str, str]] = []


class LeadResponse(BaseModel):
    """Lead row response."""

    row_index: int
    first_name: str
    last_name: str
    address: str
    city: str
    zip_code: str
    phone: str
    email: str
    status: str
    ended_reason: str
    success_evaluation: str
    transcript: str

    @classmethod
    def from_lead(cls, lead: Lead) -> "LeadResponse":
        data = lead.to_dict()
        data.pop("dataset_id")
        return cls(**data)


class DatasetRowsResponse(BaseModel):
    dataset: DatasetResponse
    rows: list[LeadResponse]


class PhoneMatch(BaseModel):
    """Lead found by phone lookup."""

    dataset_id: str
    dataset_name: str
    row_index: int
    first_name: str
    last_name: str
    address: str
    city: str
    zip_code: str


class PhoneLookupResponse(BaseModel):
    matches: list[PhoneMatch]


class SuppressionSyncResponse(BaseModel):
    datasets: int
    processed: int
    blacklisted: int
    booked: int


class BlacklistClearResponse(BaseModel):
    removed: int
