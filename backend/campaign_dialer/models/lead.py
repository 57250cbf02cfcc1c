"""Lead domain model."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LeadStatus(str, Enum):
    """Lead call status as stored in the dataset's Status column."""

    NOT_CALLED = "not-called"
    CALLED = "called"


_NON_DIGIT = re.compile(r"\D")

MIN_PHONE_DIGITS = 10


def phone_digits(phone: str | None) -> str:
    """Strip everything but digits from a phone number."""
    return _NON_DIGIT.sub("", str(phone or ""))


def normalize_phone(phone: str | None) -> str:
    """Normalize a phone number to its last 10 digits (blacklist / lookup key)."""
    return phone_digits(phone)[-MIN_PHONE_DIGITS:]


def has_valid_phone(phone: str | None) -> bool:
    """A phone is dialable when it carries at least 10 digits."""
    return len(phone_digits(phone)) >= MIN_PHONE_DIGITS


def zip_prefix(zip_code: str | None) -> str:
    """First five digits of a postal code (ZIP+4 and formatting ignored)."""
    return phone_digits(zip_code)[:5]


def is_truthy_evaluation(value: Any) -> bool:
    """Success evaluation counts as a booking only when it reads "true"."""
    return str(value if value is not None else "").strip().lower() == "true"


def normalize_evaluation(value: Any) -> str:
    """Collapse the provider's tri-state success evaluation to "true", "false" or ""."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


@dataclass
class CallOutcome:
    """Outcome fields written back to a lead row after a call attempt."""

    ended_reason: str = ""
    success_evaluation: str = ""
    transcript: str = ""


@dataclass
class Lead:
    """
    Lead domain model.

    One row of an uploaded dataset. Identity is (dataset_id, row_index);
    row_index is 1-based and follows upload order.
    """

    dataset_id: str
    row_index: int
    phone: str = ""
    first_name: str = ""
    last_name: str = ""
    address: str = ""
    city: str = ""
    zip_code: str = ""
    email: str = ""

    # Call status
    status: LeadStatus = LeadStatus.NOT_CALLED
    ended_reason: str = ""
    success_evaluation: str = ""
    transcript: str = ""

    # Uploaded columns the dialer does not interpret, kept for export
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def normalized_phone(self) -> str:
        return normalize_phone(self.phone)

    def matches_zip(self, target_zip: str | None) -> bool:
        """Check the first five postal-code digits against a target (empty target matches all)."""
        target = zip_prefix(target_zip)
        if not target:
            return True
        return zip_prefix(self.zip_code) == target

    def can_be_called(self, target_zip: str | None = None) -> bool:
        """Status and phone part of the eligibility rule (suppression is checked by the scheduler)."""
        return (
            self.status == LeadStatus.NOT_CALLED
            and has_valid_phone(self.phone)
            and self.matches_zip(target_zip)
        )

    def variable_values(self) -> dict[str, str]:
        """Template / assistant variables for this lead."""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "address": self.address,
            "city": self.city,
            "zip": self.zip_code,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "dataset_id": self.dataset_id,
            "row_index": self.row_index,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "address": self.address,
            "city": self.city,
            "zip_code": self.zip_code,
            "phone": self.phone,
            "email": self.email,
            "status": self.status.value,
            "ended_reason": self.ended_reason,
            "success_evaluation": self.success_evaluation,
            "transcript": self.transcript,
        }
