"""Recurring tick loops, one per campaign."""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from campaign_dialer.models.campaign import (
    CAMPAIGN_IDS,
    CampaignRunState,
    CampaignStatus,
    InvalidCampaignStateError,
    validate_campaign_id,
)
from campaign_dialer.services.campaign_store import CampaignStore
from campaign_dialer.services.dialer_orchestrator import DialerOrchestrator

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

MIN_INTERVAL_SECONDS = 1


class SchedulerRegistry:
    """
    Owns the timer task of every campaign and every pending redial.

    State transitions:
    - start: stopped/paused -> running, ticks immediately then every cadence seconds
    - stop: any -> stopped, cancels the loop
    - pause: running -> paused, the loop keeps going but ticks do nothing
    - resume: paused -> running

    Stopping does not cancel a call already on the wire; its outcome is
    still reconciled when it arrives.
    """

    def __init__(
        self,
        orchestrator: DialerOrchestrator,
        campaigns: CampaignStore,
        retry_delay_seconds: float = 30,
        sleep: Sleep = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.campaigns = campaigns
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._retries: dict[str, asyncio.Task[None]] = {}

    def is_armed(self, campaign_id: str) -> bool:
        task = self._loops.get(campaign_id)
        return task is not None and not task.done()

    def pending_retry_count(self) -> int:
        return sum(1 for task in self._retries.values() if not task.done())

    # Transitions

    async def start(self, campaign_id: str) -> CampaignRunState:
        validate_campaign_id(campaign_id)
        state = await self.campaigns.get_run_state(campaign_id)
        if state.status == CampaignStatus.RUNNING:
            raise InvalidCampaignStateError(state.status, "start")

        config = await self.campaigns.get_config(campaign_id)
        if not config.is_complete:
            raise InvalidCampaignStateError(
                state.status, "start", "assistant, caller ids and dataset are required"
            )

        state = await self.campaigns.set_running(campaign_id, True)
        self._arm(campaign_id)
        logger.info("Campaign started", campaign_id=campaign_id)
        return state

    async def stop(self, campaign_id: str) -> CampaignRunState:
        validate_campaign_id(campaign_id)
        await self._disarm(campaign_id)
        state = await self.campaigns.set_running(campaign_id, False)
        logger.info("Campaign stopped", campaign_id=campaign_id)
        return state

    async def pause(self, campaign_id: str) -> CampaignRunState:
        validate_campaign_id(campaign_id)
        state = await self.campaigns.get_run_state(campaign_id)
        if state.status != CampaignStatus.RUNNING:
            raise InvalidCampaignStateError(state.status, "pause")
        state = await self.campaigns.set_paused(campaign_id, True)
        logger.info("Campaign paused", campaign_id=campaign_id)
        return state

    async def resume(self, campaign_id: str) -> CampaignRunState:
        validate_campaign_id(campaign_id)
        state = await self.campaigns.get_run_state(campaign_id)
        if state.status != CampaignStatus.PAUSED:
            raise InvalidCampaignStateError(state.status, "resume")
        state = await self.campaigns.set_paused(campaign_id, False)
        if not self.is_armed(campaign_id):
            self._arm(campaign_id)
        logger.info("Campaign resumed", campaign_id=campaign_id)
        return state

    async def pause_all(self) -> list[str]:
        """Pause every running campaign; returns the ids that were paused."""
        paused = []
        for campaign_id in CAMPAIGN_IDS:
            state = await self.campaigns.get_run_state(campaign_id)
            if state.status == CampaignStatus.RUNNING:
                await self.campaigns.set_paused(campaign_id, True)
                paused.append(campaign_id)
        if paused:
            logger.info("Campaigns paused", campaign_ids=paused)
        return paused

    async def restore(self) -> list[str]:
        """Re-arm loops for campaigns persisted as running, and pending redials."""
        armed = []
        for campaign_id in CAMPAIGN_IDS:
            state = await self.campaigns.get_run_state(campaign_id)
            if state.running and not self.is_armed(campaign_id):
                self._arm(campaign_id)
                armed.append(campaign_id)
        for retry in await self.campaigns.list_pending_retries():
            self.schedule_retry(retry.external_id)
        if armed:
            logger.info("Campaign loops restored", campaign_ids=armed)
        return armed

    async def shutdown(self) -> None:
        tasks = [*self._loops.values(), *self._retries.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._retries.clear()

    # Redials

    def schedule_retry(self, external_id: str, delay_seconds: float | None = None) -> None:
        """Fire a double-tap redial for an external id after the delay."""
        existing = self._retries.get(external_id)
        if existing is not None and not existing.done():
            return
        delay = self.retry_delay_seconds if delay_seconds is None else delay_seconds
        task = asyncio.create_task(self._fire_retry(external_id, delay), name=f"redial:{external_id}")
        self._retries[external_id] = task
        task.add_done_callback(lambda t, key=external_id: self._forget_retry(key, t))

    def _forget_retry(self, external_id: str, task: asyncio.Task[None]) -> None:
        if self._retries.get(external_id) is task:
            del self._retries[external_id]

    async def _fire_retry(self, external_id: str, delay: float) -> None:
        await self._sleep(delay)
        try:
            outcome = await self.orchestrator.dispatch_retry(external_id)
        except Exception:
            logger.exception("Redial failed", external_id=external_id)
            return
        logger.info("Redial fired", external_id=external_id, outcome=outcome.value)

    # Loops

    def _arm(self, campaign_id: str) -> None:
        current = self._loops.get(campaign_id)
        if current is not None and not current.done():
            current.cancel()
        self._loops[campaign_id] = asyncio.create_task(
            self._run_loop(campaign_id), name=f"dialer:{campaign_id}"
        )

    async def _disarm(self, campaign_id: str) -> None:
        task = self._loops.pop(campaign_id, None)
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run_loop(self, campaign_id: str) -> None:
        while True:
            try:
                # A tick already dispatching finishes even if the loop is cancelled
                await asyncio.shield(self.orchestrator.tick(campaign_id))
            except Exception:
                logger.exception("Tick failed", campaign_id=campaign_id)
            try:
                config = await self.campaigns.get_config(campaign_id)
                interval = max(MIN_INTERVAL_SECONDS, config.call_every_seconds)
            except Exception:
                logger.exception("Could not read cadence", campaign_id=campaign_id)
                interval = MIN_INTERVAL_SECONDS
            await self._sleep(interval)
