"""Calling-provider webhook schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from campaign_dialer.models.call_outcome import CallOutcomeEvent
from campaign_dialer.models.lead import normalize_evaluation


class ProviderCustomer(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    number: str | None = None
    external_id: str | None = Field(default=None, alias="externalId")


class ProviderCall(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    customer: ProviderCustomer | None = None


class ProviderMessage(BaseModel):
    """
    One webhook message from the provider.

    Only ``end-of-call-report`` messages are acted on; every other type is
    acknowledged and ignored.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = ""
    ended_reason: str | None = Field(default=None, alias="endedReason")
    analysis: dict[str, Any] | None = None
    artifact: dict[str, Any] | None = None
    customer: ProviderCustomer | None = None
    call: ProviderCall | None = None
    recording_url: str | None = Field(default=None, alias="recordingUrl")

    @property
    def is_end_of_call_report(self) -> bool:
        return self.type == "end-of-call-report"

    def to_event(self) -> CallOutcomeEvent:
        """Flatten the report into the fields the reconciler needs."""
        customer = self.customer or (self.call.customer if self.call else None)
        analysis = self.analysis or {}
        artifact = self.artifact or {}
        return CallOutcomeEvent(
            external_id=(customer.external_id if customer else None) or "",
            ended_reason=self.ended_reason or "",
            success_evaluation=normalize_evaluation(analysis.get("successEvaluation")),
            transcript=str(artifact.get("transcript") or ""),
            recording_url=self.recording_url or artifact.get("recordingUrl"),
            customer_phone=(customer.number if customer else None) or "",
            call_id=self.call.id if self.call else None,
        )


class WebhookAck(BaseModel):
    received: bool = True


class InboundLookupRequest(BaseModel):
    """Inbound caller lookup; the number may arrive under several keys."""

    model_config = ConfigDict(extra="allow")

    phone: str | None = None
    number: str | None = None
    customer: ProviderCustomer | None = None

    @property
    def resolved_phone(self) -> str:
        return self.phone or (self.customer.number if self.customer else None) or self.number or ""


class InboundLookupResponse(BaseModel):
    found: bool
    first_name: str | None = Field(default=None, serialization_alias="firstName")
    last_name: str | None = Field(default=None, serialization_alias="lastName")
    address: str | None = None
    city: str | None = None
    zip: str | None = None
    phone: str | None = None
