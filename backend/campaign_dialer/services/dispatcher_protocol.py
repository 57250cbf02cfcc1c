"""Outbound call dispatcher protocol definition."""

from dataclasses import dataclass, field
from typing import Any, Protocol


class DispatchError(Exception):
    """Raised when the provider rejects a call or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class CallRequest:
    """Everything the provider needs to place one outbound call."""

    assistant_id: str
    caller_id: str
    customer_phone: str
    external_id: str
    customer_name: str = ""
    variable_values: dict[str, str] = field(default_factory=dict)
    voicemail_message: str | None = None


@dataclass
class CallResult:
    """Result of a call initiation."""

    call_id: str
    external_id: str


class CallDispatcherProtocol(Protocol):
    """Protocol for calling-provider implementations."""

    async def place_call(self, request: CallRequest) -> CallResult:
        """
        Initiate an outbound call.

        Args:
            request: Assistant, caller id, customer and voicemail details

        Returns:
            CallResult with the provider's call id

        Raises:
            DispatchError: On transport failure or provider-side validation error
        """
        ...

    async def list_assistants(self) -> list[dict[str, Any]]:
        """List voice assistants available on the provider account."""
        ...

    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        """List caller-id phone numbers available on the provider account."""
        ...

    async def aclose(self) -> None:
        """Release provider connections; called once at shutdown."""
        return None
