"""Call outcome events reported by the calling provider."""

from dataclasses import dataclass

NOT_ANSWERED_REASON = "customer-did-not-answer"
TIMEOUT_REASON = "call-failed-timeout"
BLACKLISTED_REASON = "blacklisted"
ADDRESS_BOOKED_REASON = "address-already-booked"

# Outcomes that trigger a double-tap redial
RETRYABLE_ENDED_REASONS = frozenset(
    {
        NOT_ANSWERED_REASON,
        "voicemail",
        "customer-busy",
    }
)

# Bad number / connectivity failures: the phone goes on the blacklist
BAD_NUMBER_ENDED_REASONS = frozenset(
    {
        "call.start.error-get-transport",
        "call.start.error-get-customer",
        "call.start.error-get-org",
        "call.start.error-get-subscription",
        "call.start.error-get-assistant",
        "call.start.error-get-phone-number",
        "call.start.error-get-resources-validation",
        "call.start.error-vapi-number-international",
        "call.start.error-vapi-number-outbound-daily-limit",
        "call-start-error-neither-assistant-nor-server-set",
        "twilio-failed-to-connect-call",
        "twilio-reported-customer-misdialed",
        "vonage-failed-to-connect-call",
        "vonage-rejected",
        "vonage-disconnected",
        "call.in-progress.error-sip-telephony-provider-failed-to-connect-call",
        "phone-call-provider-closed-websocket",
        "phone-call-provider-bypass-enabled-but-no-call-received",
        TIMEOUT_REASON,
    }
)


@dataclass
class CallOutcomeEvent:
    """End-of-call report for one call attempt."""

    external_id: str
    ended_reason: str = ""
    success_evaluation: str = ""
    transcript: str = ""
    recording_url: str | None = None
    customer_phone: str = ""
    call_id: str | None = None

    def dedupe_key(self, attempt: int = 1) -> str:
        """
        Provider call id when known, otherwise external id, attempt and ended reason.

        A redial reuses its external id, so the attempt keeps the second
        report of a double tap from looking like a redelivery of the first.
        """
        if self.call_id:
            return f"call:{self.call_id}"
        return f"{self.external_id}|{attempt}|{self.ended_reason}"
