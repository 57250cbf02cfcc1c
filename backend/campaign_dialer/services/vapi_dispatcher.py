"""Voice-AI provider (VAPI) dispatcher implementation."""

from typing import Any

import httpx
import structlog

from campaign_dialer.config import get_settings
from campaign_dialer.models.lead import phone_digits
from campaign_dialer.services.dispatcher_protocol import (
    CallDispatcherProtocol,
    CallRequest,
    CallResult,
    DispatchError,
)

logger = structlog.get_logger(__name__)


def to_e164(phone: str) -> str:
    """Format a US-style number for the provider: 10 digits get +1, others just a leading +."""
    digits = phone_digits(phone)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


class VapiDispatcher(CallDispatcherProtocol):
    """
    Real provider implementation.

    Talks to the provider's REST API over httpx. A client can be injected
    (tests use ``httpx.MockTransport``); otherwise one is built from settings.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, api_key: str | None = None) -> None:
        """Initialize with API credentials from settings."""
        settings = get_settings()
        self._api_key = settings.vapi_api_key if api_key is None else api_key
        self._max_external_id = settings.external_id_max_length
        self._client = client or httpx.AsyncClient(
            base_url=settings.vapi_base_url,
            timeout=settings.vapi_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise DispatchError("VAPI_API_KEY not set")
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _truncate_external_id(self, external_id: str) -> str:
        if len(external_id) <= self._max_external_id:
            return external_id
        truncated = external_id[: self._max_external_id]
        logger.warning(
            "External id truncated for provider",
            external_id=external_id,
            truncated=truncated,
        )
        return truncated

    def build_payload(self, request: CallRequest) -> dict[str, Any]:
        """Build the provider's call-creation body."""
        values = request.variable_values
        body: dict[str, Any] = {
            "assistantId": request.assistant_id,
            "phoneNumberId": request.caller_id,
            "customer": {
                "number": to_e164(request.customer_phone),
                "name": request.customer_name,
                "externalId": self._truncate_external_id(request.external_id),
            },
            "assistantOverrides": {
                "variableValues": {
                    key: values.get(key, "")
                    for key in ("firstName", "lastName", "address", "city", "zip")
                },
            },
        }
        if request.voicemail_message:
            overrides = body["assistantOverrides"]
            overrides["voicemailMessage"] = request.voicemail_message
            overrides["voicemailDetection"] = {"provider": "vapi"}
        return body

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise DispatchError(f"VAPI {method} {path} failed: {e}") from e

        if response.is_error:
            raise DispatchError(
                f"VAPI {method} {path}: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise DispatchError(
                f"VAPI {method} {path}: unreadable response body",
                status_code=response.status_code,
            ) from e

    async def place_call(self, request: CallRequest) -> CallResult:
        """Initiate an outbound call via the provider."""
        data = await self._request("POST", "/call", json=self.build_payload(request))
        call_id = str(data.get("id", "")) if isinstance(data, dict) else ""
        return CallResult(call_id=call_id, external_id=request.external_id)

    async def list_assistants(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/assistant", params={"limit": 100})
        return data if isinstance(data, list) else data.get("data", [])

    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/phone-number", params={"limit": 100})
        return data if isinstance(data, list) else data.get("data", [])

    async def aclose(self) -> None:
        await self._client.aclose()
