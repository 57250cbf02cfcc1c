"""Dialer orchestrator - one scheduling tick per campaign."""

import asyncio
import random
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

import structlog
from sqlalchemy.exc import SQLAlchemyError

from campaign_dialer.config import Settings
from campaign_dialer.models.call_outcome import (
    ADDRESS_BOOKED_REASON,
    BLACKLISTED_REASON,
    TIMEOUT_REASON,
)
from campaign_dialer.models.campaign import (
    CAMPAIGN_IDS,
    TEST_CAMPAIGN_ID,
    CampaignConfig,
    InFlightCall,
    InvalidCampaignStateError,
    validate_campaign_id,
)
from campaign_dialer.models.external_id import ExternalId
from campaign_dialer.models.lead import CallOutcome, Lead, LeadStatus, has_valid_phone
from campaign_dialer.services.campaign_store import CampaignStore
from campaign_dialer.services.dispatcher_protocol import (
    CallDispatcherProtocol,
    CallRequest,
    CallResult,
    DispatchError,
)
from campaign_dialer.services.lead_store import DatasetUnavailableError, LeadStore
from campaign_dialer.services.run_window import (
    Clock,
    is_allowed_day,
    is_within_run_window,
    now_local,
    utc_clock,
)
from campaign_dialer.services.spin import render_voicemail, should_leave_voicemail
from campaign_dialer.services.suppression import SuppressionRegistry

logger = structlog.get_logger(__name__)


class TickOutcome(str, Enum):
    """What a single tick (or retry firing) ended up doing."""

    NOT_RUNNING = "not_running"
    PAUSED = "paused"
    MISCONFIGURED = "misconfigured"
    OUTSIDE_WINDOW = "outside_window"
    DATASET_UNAVAILABLE = "dataset_unavailable"
    NO_LEADS = "no_leads"
    AWAITING_OUTCOME = "awaiting_outcome"
    RETRY_PENDING = "retry_pending"
    RECOVERED_STALE = "recovered_stale"
    DISPATCHED = "dispatched"
    DISPATCH_FAILED = "dispatch_failed"
    BUSY = "busy"


@dataclass
class DialerTimings:
    """Timeouts the orchestrator works with."""

    stale_call_timeout_seconds: float = 120
    double_tap_delay_seconds: float = 30
    external_id_max_length: int = 40

    @classmethod
    def from_settings(cls, settings: Settings) -> "DialerTimings":
        return cls(
            stale_call_timeout_seconds=settings.stale_call_timeout_seconds,
            double_tap_delay_seconds=settings.double_tap_delay_seconds,
            external_id_max_length=settings.external_id_max_length,
        )


class DialerOrchestrator:
    """
    Campaign dialer orchestrator.

    Each tick walks one campaign through the dialing decision:
    - Skip when stopped, paused, misconfigured or outside the run window
    - Pick the next eligible lead, marking suppressed ones as called
    - Hold off while a call for that lead is in flight or a redial is due
    - Recover calls whose outcome never arrived
    - Otherwise pick a caller id, decide on voicemail and place the call

    At most one call per campaign is outstanding. Ticks of the same campaign
    never overlap; a tick that finds one in progress returns ``BUSY``.
    """

    def __init__(
        self,
        leads: LeadStore,
        suppression: SuppressionRegistry,
        campaigns: CampaignStore,
        dispatcher: CallDispatcherProtocol,
        timezone: str,
        timings: DialerTimings | None = None,
        clock: Clock = utc_clock,
        rng: random.Random | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            leads: Lead datasets
            suppression: Blacklist and booked addresses
            campaigns: Campaign config, run state and call tracking
            dispatcher: Calling provider client
            timezone: Civil time zone for run windows
            timings: Stale-call timeout, redial delay and external id limit
            clock: Returns the current UTC time
            rng: Random source for voicemail spin
        """
        self.leads = leads
        self.suppression = suppression
        self.campaigns = campaigns
        self.dispatcher = dispatcher
        self.timezone = timezone
        self.timings = timings or DialerTimings()
        self._clock = clock
        self._rng = rng or random.Random()
        self._tick_locks: dict[str, asyncio.Lock] = {
            campaign_id: asyncio.Lock() for campaign_id in CAMPAIGN_IDS
        }

    def external_id_for(self, campaign_id: str, lead: Lead) -> str:
        return ExternalId.build(
            campaign_id,
            lead.dataset_id,
            lead.row_index,
            max_length=self.timings.external_id_max_length,
        ).encode()

    async def tick(self, campaign_id: str) -> TickOutcome:
        """
        Run one scheduling step for a campaign.

        Transient storage failures end the tick with ``DATASET_UNAVAILABLE``;
        the next tick simply tries again.
        """
        validate_campaign_id(campaign_id)
        lock = self._tick_locks[campaign_id]
        if lock.locked():
            logger.debug("Tick skipped, previous tick still running", campaign_id=campaign_id)
            return TickOutcome.BUSY

        async with lock:
            try:
                outcome = await self._tick(campaign_id)
            except (DatasetUnavailableError, SQLAlchemyError) as e:
                logger.warning("Tick aborted, storage unavailable", campaign_id=campaign_id, error=str(e))
                return TickOutcome.DATASET_UNAVAILABLE
        logger.debug("Tick finished", campaign_id=campaign_id, outcome=outcome.value)
        return outcome

    async def _tick(self, campaign_id: str) -> TickOutcome:
        state = await self.campaigns.get_run_state(campaign_id)
        if not state.running:
            return TickOutcome.NOT_RUNNING
        if state.paused:
            return TickOutcome.PAUSED

        config = await self.campaigns.get_config(campaign_id)
        if not config.is_complete:
            logger.info("Campaign not fully configured", campaign_id=campaign_id)
            return TickOutcome.MISCONFIGURED

        local_now = now_local(self.timezone, self._clock)
        if not is_allowed_day(config.days_of_week, local_now) or not is_within_run_window(
            config.start_time, config.end_time, local_now
        ):
            return TickOutcome.OUTSIDE_WINDOW

        lead = await self._next_unsuppressed_lead(config)
        if lead is None:
            logger.info("No eligible leads", campaign_id=campaign_id, dataset_id=config.dataset_id)
            return TickOutcome.NO_LEADS

        external_id = self.external_id_for(campaign_id, lead)

        in_flight = await self.campaigns.get_in_flight(external_id)
        if in_flight is not None:
            if in_flight.age_seconds(self._clock()) > self.timings.stale_call_timeout_seconds:
                await self._recover_stale(in_flight, lead)
                return TickOutcome.RECOVERED_STALE
            return TickOutcome.AWAITING_OUTCOME

        if await self._retry_pending(external_id):
            return TickOutcome.RETRY_PENDING

        index = await self.campaigns.advance_round_robin(campaign_id, len(config.caller_ids))
        caller_id = config.caller_ids[index]

        voicemail = None
        if should_leave_voicemail(state.call_count, config.voicemail_leave, config.voicemail_cycle):
            voicemail = render_voicemail(config.voicemail_message, lead.variable_values(), self._rng) or None

        request = CallRequest(
            assistant_id=config.assistant_id,
            caller_id=caller_id,
            customer_phone=lead.phone,
            customer_name=lead.full_name,
            external_id=external_id,
            variable_values=lead.variable_values(),
            voicemail_message=voicemail,
        )
        result = await self._dispatch(campaign_id, lead, request, attempt=1)
        if result is None:
            return TickOutcome.DISPATCH_FAILED
        await self.campaigns.record_dispatch(campaign_id, count_for_cadence=True)
        logger.info(
            "Call dispatched",
            campaign_id=campaign_id,
            external_id=external_id,
            caller_id=caller_id,
            call_id=result.call_id,
            voicemail=voicemail is not None,
        )
        return TickOutcome.DISPATCHED

    async def _next_unsuppressed_lead(self, config: CampaignConfig) -> Lead | None:
        """Next eligible lead, closing out blacklisted or already-booked ones on the way."""
        while True:
            lead = await self.leads.next_eligible_lead(config.dataset_id, config.target_zip or None)
            if lead is None:
                return None
            if await self.suppression.is_blacklisted(lead.phone):
                reason = BLACKLISTED_REASON
            elif await self.suppression.is_address_booked(lead.address):
                reason = ADDRESS_BOOKED_REASON
            else:
                return lead
            logger.info(
                "Lead suppressed",
                campaign_id=config.campaign_id,
                dataset_id=lead.dataset_id,
                row_index=lead.row_index,
                reason=reason,
            )
            if not await self.leads.mark_called(lead.dataset_id, lead.row_index, CallOutcome(ended_reason=reason)):
                return None

    async def _recover_stale(self, in_flight: InFlightCall, lead: Lead) -> None:
        logger.warning(
            "No outcome received, treating call as failed",
            campaign_id=in_flight.campaign_id,
            external_id=in_flight.external_id,
            dispatched_at=in_flight.dispatched_at.isoformat(),
        )
        await self.leads.mark_called(
            in_flight.dataset_id, in_flight.row_index, CallOutcome(ended_reason=TIMEOUT_REASON)
        )
        await self.suppression.add_to_blacklist(lead.phone)
        await self.campaigns.clear_in_flight(in_flight.external_id)

    async def _retry_pending(self, external_id: str) -> bool:
        """True while a scheduled redial for this external id has not fired yet."""
        retry = await self.campaigns.get_retry(external_id)
        if retry is None or not retry.is_pending:
            return False
        overdue_after = timedelta(
            seconds=self.timings.double_tap_delay_seconds + self.timings.stale_call_timeout_seconds
        )
        if self._clock() - retry.scheduled_at > overdue_after:
            logger.warning("Abandoning overdue redial", external_id=external_id)
            await self.campaigns.mark_retry_fired(external_id, self._clock())
            return False
        return True

    async def _dispatch(
        self, campaign_id: str, lead: Lead, request: CallRequest, attempt: int
    ) -> CallResult | None:
        """Reserve the in-flight slot, place the call, and release the slot if it fails."""
        reserved = await self.campaigns.reserve_in_flight(
            external_id=request.external_id,
            campaign_id=campaign_id,
            dataset_id=lead.dataset_id,
            row_index=lead.row_index,
            caller_id=request.caller_id,
            dispatched_at=self._clock(),
            attempt=attempt,
        )
        if not reserved:
            logger.info("Call already in flight", external_id=request.external_id)
            return None

        try:
            result = await self.dispatcher.place_call(request)
        except DispatchError as e:
            await self.campaigns.clear_in_flight(request.external_id)
            logger.warning(
                "Dispatch failed",
                campaign_id=campaign_id,
                external_id=request.external_id,
                status_code=e.status_code,
                error=str(e),
            )
            return None
        except BaseException:
            await self.campaigns.clear_in_flight(request.external_id)
            raise

        if result.call_id:
            await self.campaigns.attach_call_id(request.external_id, result.call_id)
        return result

    async def dispatch_retry(self, external_id: str) -> TickOutcome:
        """
        Fire a scheduled double-tap redial.

        The row must still be not-called. The redial reuses the external id
        and the original caller id, never leaves a voicemail, and does not
        advance the voicemail counter.
        """
        parsed = ExternalId.parse(external_id)
        if parsed is None or parsed.campaign_id not in CAMPAIGN_IDS:
            logger.warning("Redial for unknown external id", external_id=external_id)
            return TickOutcome.NO_LEADS

        async with self._tick_locks[parsed.campaign_id]:
            try:
                return await self._dispatch_retry(parsed.campaign_id, external_id)
            except (DatasetUnavailableError, SQLAlchemyError) as e:
                logger.warning("Redial aborted, storage unavailable", external_id=external_id, error=str(e))
                return TickOutcome.DATASET_UNAVAILABLE

    async def _dispatch_retry(self, campaign_id: str, external_id: str) -> TickOutcome:
        retry = await self.campaigns.get_retry(external_id)
        if retry is None or not await self.campaigns.mark_retry_fired(external_id, self._clock()):
            return TickOutcome.NO_LEADS

        lead = await self.leads.get_lead(retry.dataset_id, retry.row_index)
        if lead is None or lead.status != LeadStatus.NOT_CALLED:
            logger.info("Redial skipped, lead no longer waiting", external_id=external_id)
            return TickOutcome.NO_LEADS
        if await self.suppression.is_blacklisted(lead.phone):
            await self.leads.mark_called(
                lead.dataset_id, lead.row_index, CallOutcome(ended_reason=BLACKLISTED_REASON)
            )
            return TickOutcome.NO_LEADS

        config = await self.campaigns.get_config(campaign_id)
        caller_id = retry.caller_id or (config.caller_ids[0] if config.caller_ids else "")
        if not config.assistant_id or not caller_id:
            logger.info("Redial skipped, campaign not configured", external_id=external_id)
            return TickOutcome.MISCONFIGURED

        request = CallRequest(
            assistant_id=config.assistant_id,
            caller_id=caller_id,
            customer_phone=lead.phone,
            customer_name=lead.full_name,
            external_id=external_id,
            variable_values=lead.variable_values(),
        )
        result = await self._dispatch(campaign_id, lead, request, attempt=2)
        if result is None:
            return TickOutcome.DISPATCH_FAILED
        await self.campaigns.record_dispatch(campaign_id, count_for_cadence=False)
        logger.info("Redial dispatched", campaign_id=campaign_id, external_id=external_id, call_id=result.call_id)
        return TickOutcome.DISPATCHED

    async def place_test_call(
        self,
        campaign_id: str,
        phone: str,
        first_name: str = "",
        last_name: str = "",
        address: str = "",
        city: str = "",
        zip_code: str = "",
    ) -> CallResult:
        """
        Place an operator test call with a campaign's assistant and first caller id.

        The call is tagged ``test:test:0`` so its outcome never touches leads
        or daily counters.

        Raises:
            ValueError: Phone has fewer than 10 digits
            InvalidCampaignStateError: Campaign lacks assistant or caller id
            DispatchError: Provider rejected the call
        """
        validate_campaign_id(campaign_id)
        if not has_valid_phone(phone):
            raise ValueError("Enter a phone number with at least 10 digits")

        config = await self.campaigns.get_config(campaign_id)
        if not config.assistant_id or not config.caller_ids:
            state = await self.campaigns.get_run_state(campaign_id)
            raise InvalidCampaignStateError(
                state.status, "place a test call for", "assistant and caller id are required"
            )

        lead = Lead(
            dataset_id=TEST_CAMPAIGN_ID,
            row_index=0,
            phone=phone,
            first_name=first_name,
            last_name=last_name,
            address=address,
            city=city,
            zip_code=zip_code,
        )
        voicemail = None
        if config.voicemail_leave >= 1 and config.voicemail_message:
            voicemail = render_voicemail(config.voicemail_message, lead.variable_values(), self._rng) or None

        external_id = ExternalId(TEST_CAMPAIGN_ID, TEST_CAMPAIGN_ID, 0).encode()
        result = await self.dispatcher.place_call(
            CallRequest(
                assistant_id=config.assistant_id,
                caller_id=config.caller_ids[0],
                customer_phone=phone,
                customer_name=lead.full_name,
                external_id=external_id,
                variable_values=lead.variable_values(),
                voicemail_message=voicemail,
            )
        )
        logger.info("Test call placed", campaign_id=campaign_id, call_id=result.call_id)
        return result

    async def next_up(self) -> dict[str, Lead | None]:
        """Preview the lead each campaign would dial next (None when its queue is empty)."""
        preview: dict[str, Lead | None] = {}
        for config in await self.campaigns.get_all_configs():
            lead = None
            if config.dataset_id:
                try:
                    lead = await self.leads.next_eligible_lead(config.dataset_id, config.target_zip or None)
                except DatasetUnavailableError:
                    logger.info("Next-up preview unavailable", campaign_id=config.campaign_id)
            preview[config.campaign_id] = lead
        return preview
