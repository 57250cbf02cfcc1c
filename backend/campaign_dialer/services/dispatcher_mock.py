"""Mock call dispatcher for development and testing."""

import uuid
from typing import Any

import structlog

from campaign_dialer.services.dispatcher_protocol import (
    CallDispatcherProtocol,
    CallRequest,
    CallResult,
    DispatchError,
)

logger = structlog.get_logger(__name__)


class MockDispatcher(CallDispatcherProtocol):
    """
    Mock implementation of the calling provider.

    Accepts every call without dialing anything and remembers the requests.
    Can be configured to reject the next N calls to simulate provider errors.
    """

    def __init__(
        self,
        assistants: list[dict[str, Any]] | None = None,
        phone_numbers: list[dict[str, Any]] | None = None,
    ):
        """
        Initialize mock dispatcher.

        Args:
            assistants: Assistants reported by list_assistants
            phone_numbers: Caller-id numbers reported by list_phone_numbers
        """
        self.assistants = assistants or [{"id": "mock-assistant", "name": "Mock Assistant"}]
        self.phone_numbers = phone_numbers or [{"id": "mock-number", "number": "+15555550100"}]
        self.calls: list[CallRequest] = []
        self._failures_remaining = 0
        self._failure_message = "Mock provider rejected the call"
        self.closed = False

    def _generate_call_id(self) -> str:
        return f"mock-{uuid.uuid4().hex[:24]}"

    async def place_call(self, request: CallRequest) -> CallResult:
        """Record the call and hand back a generated call id."""
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise DispatchError(self._failure_message, status_code=400)

        self.calls.append(request)
        call_id = self._generate_call_id()
        logger.info(
            "Mock call placed",
            call_id=call_id,
            external_id=request.external_id,
            caller_id=request.caller_id,
        )
        return CallResult(call_id=call_id, external_id=request.external_id)

    async def list_assistants(self) -> list[dict[str, Any]]:
        return list(self.assistants)

    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        return list(self.phone_numbers)

    async def aclose(self) -> None:
        self.closed = True

    # Test helper methods

    def fail_next_calls(self, count: int = 1, message: str | None = None) -> None:
        """Make the next ``count`` place_call invocations raise DispatchError."""
        self._failures_remaining = count
        if message:
            self._failure_message = message

    @property
    def last_call(self) -> CallRequest | None:
        return self.calls[-1] if self.calls else None

    def reset(self) -> None:
        """Reset all mock data (for testing)."""
        self.calls.clear()
        self._failures_remaining = 0
