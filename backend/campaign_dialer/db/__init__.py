"""Database package exports."""

from campaign_dialer.db.base import Base
from campaign_dialer.db.models import (
    BlacklistedPhoneDB,
    BookingDB,
    CampaignConfigDB,
    CampaignRunStateDB,
    DoubleTapRetryDB,
    InFlightCallDB,
    LeadDatasetDB,
    LeadRowDB,
    ProcessedOutcomeDB,
)

__all__ = [
    "Base",
    "BlacklistedPhoneDB",
    "BookingDB",
    "CampaignConfigDB",
    "CampaignRunStateDB",
    "DoubleTapRetryDB",
    "InFlightCallDB",
    "LeadDatasetDB",
    "LeadRowDB",
    "ProcessedOutcomeDB",
]
