"""Dialer API endpoints."""

from typing import Any, NoReturn

from fastapi import APIRouter, HTTPException, status

from campaign_dialer.api.v1.auth import CurrentUser
from campaign_dialer.models.campaign import (
    CAMPAIGN_IDS,
    CampaignRunState,
    InvalidCampaignStateError,
    UnknownCampaignError,
    validate_campaign_id,
)
from campaign_dialer.schemas.dialer import (
    CampaignConfigResponse,
    CampaignConfigUpdate,
    CampaignStateResponse,
    DialerStateResponse,
    LeadPreview,
    NextUpEntry,
    OperatorTestCallRequest,
    OperatorTestCallResponse,
    ProviderInfoResponse,
)
from campaign_dialer.services.dependencies import Runtime
from campaign_dialer.services.dispatcher_protocol import DispatchError
from campaign_dialer.services.runtime import DialerRuntime

router = APIRouter(prefix="/dialer", tags=["dialer"])


def _check_campaign(campaign_id: str) -> str:
    try:
        return validate_campaign_id(campaign_id)
    except UnknownCampaignError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


def _raise_transition_error(error: InvalidCampaignStateError) -> NoReturn:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error)) from error


async def _state_response(runtime: DialerRuntime, state: CampaignRunState) -> CampaignStateResponse:
    in_flight = await runtime.campaigns.list_in_flight(state.campaign_id)
    return CampaignStateResponse.from_state(
        state,
        armed=runtime.registry.is_armed(state.campaign_id),
        in_flight=len(in_flight),
    )


@router.get("/config", response_model=list[CampaignConfigResponse])
async def list_configs(current_user: CurrentUser, runtime: Runtime) -> list[CampaignConfigResponse]:
    """Settings of every campaign."""
    configs = await runtime.campaigns.get_all_configs()
    return [CampaignConfigResponse.from_config(config) for config in configs]


@router.get("/{campaign_id}/config", response_model=CampaignConfigResponse)
async def get_config(campaign_id: str, current_user: CurrentUser, runtime: Runtime) -> CampaignConfigResponse:
    _check_campaign(campaign_id)
    return CampaignConfigResponse.from_config(await runtime.campaigns.get_config(campaign_id))


@router.put("/{campaign_id}/config", response_model=CampaignConfigResponse)
async def update_config(
    campaign_id: str,
    update: CampaignConfigUpdate,
    current_user: CurrentUser,
    runtime: Runtime,
) -> CampaignConfigResponse:
    """Update some of a campaign's settings."""
    _check_campaign(campaign_id)
    changes = update.model_dump(exclude_unset=True)

    dataset_id = changes.get("dataset_id")
    if dataset_id and await runtime.leads.get_dataset(dataset_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Dataset not found")

    try:
        config = await runtime.campaigns.update_config(campaign_id, changes)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return CampaignConfigResponse.from_config(config)


@router.get("/state", response_model=DialerStateResponse)
async def get_state(current_user: CurrentUser, runtime: Runtime) -> DialerStateResponse:
    """Run state and today's counters for all campaigns."""
    states = [await _state_response(runtime, state) for state in await runtime.campaigns.get_all_run_states()]
    return DialerStateResponse(
        campaigns=states,
        blacklist_size=await runtime.suppression.blacklist_size(),
        pending_retries=runtime.registry.pending_retry_count(),
    )


@router.get("/next-up", response_model=list[NextUpEntry])
async def next_up(current_user: CurrentUser, runtime: Runtime) -> list[NextUpEntry]:
    preview = await runtime.orchestrator.next_up()
    return [
        NextUpEntry(
            campaign_id=campaign_id,
            done=lead is None,
            lead=LeadPreview.from_lead(lead) if lead else None,
        )
        for campaign_id, lead in preview.items()
    ]


@router.get("/provider", response_model=ProviderInfoResponse)
async def provider_info(current_user: CurrentUser, runtime: Runtime) -> ProviderInfoResponse:
    """Assistants and phone numbers available on the calling provider."""
    try:
        assistants = await runtime.dispatcher.list_assistants()
        phone_numbers = await runtime.dispatcher.list_phone_numbers()
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return ProviderInfoResponse(assistants=assistants, phone_numbers=phone_numbers)


@router.post("/{campaign_id}/start", response_model=CampaignStateResponse)
async def start_campaign(campaign_id: str, current_user: CurrentUser, runtime: Runtime) -> CampaignStateResponse:
    """
    Start (or restart from pause) a campaign.

    Requires assistant, caller ids and dataset to be configured.
    """
    _check_campaign(campaign_id)
    try:
        state = await runtime.registry.start(campaign_id)
    except InvalidCampaignStateError as e:
        _raise_transition_error(e)
    return await _state_response(runtime, state)


@router.post("/{campaign_id}/stop", response_model=CampaignStateResponse)
async def stop_campaign(campaign_id: str, current_user: CurrentUser, runtime: Runtime) -> CampaignStateResponse:
    _check_campaign(campaign_id)
    state = await runtime.registry.stop(campaign_id)
    return await _state_response(runtime, state)


@router.post("/{campaign_id}/pause", response_model=CampaignStateResponse)
async def pause_campaign(campaign_id: str, current_user: CurrentUser, runtime: Runtime) -> CampaignStateResponse:
    _check_campaign(campaign_id)
    try:
        state = await runtime.registry.pause(campaign_id)
    except InvalidCampaignStateError as e:
        _raise_transition_error(e)
    return await _state_response(runtime, state)


@router.post("/{campaign_id}/resume", response_model=CampaignStateResponse)
async def resume_campaign(campaign_id: str, current_user: CurrentUser, runtime: Runtime) -> CampaignStateResponse:
    _check_campaign(campaign_id)
    try:
        state = await runtime.registry.resume(campaign_id)
    except InvalidCampaignStateError as e:
        _raise_transition_error(e)
    return await _state_response(runtime, state)


@router.post("/pause-all")
async def pause_all(current_user: CurrentUser, runtime: Runtime) -> dict[str, Any]:
    paused = await runtime.registry.pause_all()
    return {"paused": paused, "campaigns": list(CAMPAIGN_IDS)}


@router.post("/test-call", response_model=OperatorTestCallResponse)
async def place_test_call(
    request: OperatorTestCallRequest,
    current_user: CurrentUser,
    runtime: Runtime,
) -> OperatorTestCallResponse:
    """Place a one-off call with a campaign's assistant to check the setup."""
    _check_campaign(request.campaign_id)
    try:
        result = await runtime.orchestrator.place_test_call(
            request.campaign_id,
            phone=request.phone,
            first_name=request.first_name,
            last_name=request.last_name,
            address=request.address,
            city=request.city,
            zip_code=request.zip_code,
        )
    except InvalidCampaignStateError as e:
        _raise_transition_error(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return OperatorTestCallResponse(call_id=result.call_id, external_id=result.external_id)
