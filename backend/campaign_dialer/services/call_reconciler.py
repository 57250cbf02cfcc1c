"""Call lifecycle reconciler - applies end-of-call reports."""

from collections.abc import Callable
from enum import Enum

import structlog

from campaign_dialer.models.call_outcome import (
    BAD_NUMBER_ENDED_REASONS,
    RETRYABLE_ENDED_REASONS,
    CallOutcomeEvent,
)
from campaign_dialer.models.campaign import CAMPAIGN_IDS, TEST_CAMPAIGN_ID, InFlightCall
from campaign_dialer.models.external_id import ExternalId
from campaign_dialer.models.lead import CallOutcome, Lead, is_truthy_evaluation
from campaign_dialer.services.campaign_store import CampaignStore
from campaign_dialer.services.lead_store import LeadStore
from campaign_dialer.services.run_window import Clock, utc_clock
from campaign_dialer.services.suppression import SuppressionRegistry

logger = structlog.get_logger(__name__)

RetryScheduler = Callable[[str], None]


class ReconcileOutcome(str, Enum):
    """How an outcome event was handled."""

    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    APPLIED = "applied"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


class CallReconciler:
    """
    Applies call outcome events to leads, counters and suppression data.

    Every step is best effort: storage errors are logged and the event is
    still acknowledged. Redelivered events are recognised by their dedupe
    key and do nothing.
    """

    def __init__(
        self,
        leads: LeadStore,
        suppression: SuppressionRegistry,
        campaigns: CampaignStore,
        schedule_retry: RetryScheduler | None = None,
        clock: Clock = utc_clock,
    ):
        self.leads = leads
        self.suppression = suppression
        self.campaigns = campaigns
        self.schedule_retry = schedule_retry
        self._clock = clock

    async def handle_outcome(self, event: CallOutcomeEvent) -> ReconcileOutcome:
        parsed = ExternalId.parse(event.external_id)
        if parsed is None:
            logger.info("Outcome without a usable external id", external_id=event.external_id)
            return ReconcileOutcome.IGNORED

        try:
            if await self._is_duplicate(event, parsed):
                await self.campaigns.clear_in_flight(event.external_id)
                return ReconcileOutcome.DUPLICATE
            return await self._apply(event, parsed)
        except Exception:
            logger.exception("Failed to reconcile call outcome", external_id=event.external_id)
            return ReconcileOutcome.FAILED

    async def _attempt_for(self, external_id: str) -> int:
        """Attempt the report belongs to: the in-flight row's, else 2 once a redial has fired."""
        in_flight = await self.campaigns.get_in_flight(external_id)
        if in_flight is not None:
            return in_flight.attempt
        retry = await self.campaigns.get_retry(external_id)
        return 2 if retry is not None and not retry.is_pending else 1

    async def _is_duplicate(self, event: CallOutcomeEvent, parsed: ExternalId) -> bool:
        # Test calls all share one external id and only touch the blacklist
        if parsed.campaign_id == TEST_CAMPAIGN_ID and not event.call_id:
            return False
        key = event.dedupe_key(await self._attempt_for(event.external_id))
        if await self.campaigns.mark_outcome_processed(key, event.external_id):
            return False
        logger.info("Duplicate outcome ignored", external_id=event.external_id, key=key)
        return True

    async def _apply(self, event: CallOutcomeEvent, parsed: ExternalId) -> ReconcileOutcome:
        is_test = parsed.campaign_id == TEST_CAMPAIGN_ID
        try:
            if is_test:
                logger.info("Test call ended", ended_reason=event.ended_reason)
            elif parsed.campaign_id in CAMPAIGN_IDS:
                await self.campaigns.record_call_ended(parsed.campaign_id, event.ended_reason)
            else:
                logger.warning("Outcome for unknown campaign", campaign_id=parsed.campaign_id)

            in_flight = await self.campaigns.get_in_flight(event.external_id)
            retry = await self.campaigns.get_retry(event.external_id)
            dataset_id = None
            if not is_test:
                if in_flight is not None:
                    dataset_id = in_flight.dataset_id
                elif retry is not None:
                    dataset_id = retry.dataset_id
                else:
                    dataset_id = await self.leads.resolve_dataset_ref(parsed.dataset_ref)

            lead = await self._persist(event, parsed, dataset_id)
            phone = event.customer_phone or (lead.phone if lead else "")

            if is_truthy_evaluation(event.success_evaluation):
                await self._record_booking(event, parsed, lead, is_test)

            if event.ended_reason in BAD_NUMBER_ENDED_REASONS:
                await self.suppression.add_to_blacklist(phone)

            if (
                event.ended_reason in RETRYABLE_ENDED_REASONS
                and parsed.campaign_id in CAMPAIGN_IDS
                and dataset_id is not None
                and retry is None
                and await self._schedule_double_tap(event, parsed, dataset_id, in_flight)
            ):
                return ReconcileOutcome.RETRY_SCHEDULED
            return ReconcileOutcome.APPLIED
        finally:
            await self.campaigns.clear_in_flight(event.external_id)

    async def _persist(
        self, event: CallOutcomeEvent, parsed: ExternalId, dataset_id: str | None
    ) -> Lead | None:
        if dataset_id is None:
            if parsed.campaign_id != TEST_CAMPAIGN_ID:
                logger.warning(
                    "Outcome dataset not found",
                    external_id=event.external_id,
                    dataset_ref=parsed.dataset_ref,
                )
            return None
        outcome = CallOutcome(
            ended_reason=event.ended_reason,
            success_evaluation=event.success_evaluation,
            transcript=event.transcript,
        )
        await self.leads.mark_called(dataset_id, parsed.row_index, outcome)
        return await self.leads.get_lead(dataset_id, parsed.row_index)

    async def _record_booking(
        self, event: CallOutcomeEvent, parsed: ExternalId, lead: Lead | None, is_test: bool
    ) -> None:
        if lead is None:
            logger.info("Booking without lead details not recorded", external_id=event.external_id)
            return
        added = await self.suppression.add_booking(
            first_name=lead.first_name,
            last_name=lead.last_name,
            address=lead.address,
            phone=event.customer_phone or lead.phone,
            transcript=event.transcript,
            campaign_id=None if is_test else parsed.campaign_id,
        )
        if added and not is_test and parsed.campaign_id in CAMPAIGN_IDS:
            await self.campaigns.record_booking(parsed.campaign_id)

    async def _schedule_double_tap(
        self,
        event: CallOutcomeEvent,
        parsed: ExternalId,
        dataset_id: str,
        in_flight: InFlightCall | None,
    ) -> bool:
        config = await self.campaigns.get_config(parsed.campaign_id)
        if not config.double_tap:
            return False
        scheduled = await self.campaigns.try_schedule_retry(
            external_id=event.external_id,
            campaign_id=parsed.campaign_id,
            dataset_id=dataset_id,
            row_index=parsed.row_index,
            caller_id=in_flight.caller_id if in_flight is not None else "",
            scheduled_at=self._clock(),
        )
        if not scheduled:
            return False
        await self.leads.mark_not_called(dataset_id, parsed.row_index)
        if self.schedule_retry is not None:
            self.schedule_retry(event.external_id)
        logger.info("Double tap scheduled", external_id=event.external_id, ended_reason=event.ended_reason)
        return True
