"""Dialer runtime: the object graph built once per process."""

import random
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaign_dialer.config import Settings
from campaign_dialer.services.call_reconciler import CallReconciler
from campaign_dialer.services.campaign_store import CampaignStore
from campaign_dialer.services.dialer_orchestrator import DialerOrchestrator, DialerTimings
from campaign_dialer.services.dispatcher_mock import MockDispatcher
from campaign_dialer.services.dispatcher_protocol import CallDispatcherProtocol
from campaign_dialer.services.lead_store import LeadStore
from campaign_dialer.services.run_window import Clock, utc_clock
from campaign_dialer.services.scheduler_registry import SchedulerRegistry, Sleep
from campaign_dialer.services.suppression import SuppressionRegistry
from campaign_dialer.services.vapi_dispatcher import VapiDispatcher


@dataclass
class DialerRuntime:
    """Stores, dispatcher, scheduler and reconciler wired together."""

    settings: Settings
    leads: LeadStore
    suppression: SuppressionRegistry
    campaigns: CampaignStore
    dispatcher: CallDispatcherProtocol
    orchestrator: DialerOrchestrator
    registry: SchedulerRegistry
    reconciler: CallReconciler


def build_dispatcher(settings: Settings) -> CallDispatcherProtocol:
    """MockDispatcher in development, VapiDispatcher when VAPI_USE_MOCK is off."""
    if settings.vapi_use_mock:
        return MockDispatcher()
    return VapiDispatcher()


def build_runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: CallDispatcherProtocol | None = None,
    clock: Clock = utc_clock,
    rng: random.Random | None = None,
    sleep: Sleep | None = None,
) -> DialerRuntime:
    leads = LeadStore(session_factory)
    suppression = SuppressionRegistry(session_factory)
    campaigns = CampaignStore(session_factory, settings.dialer_timezone, clock=clock)
    dispatcher = dispatcher or build_dispatcher(settings)

    orchestrator = DialerOrchestrator(
        leads=leads,
        suppression=suppression,
        campaigns=campaigns,
        dispatcher=dispatcher,
        timezone=settings.dialer_timezone,
        timings=DialerTimings.from_settings(settings),
        clock=clock,
        rng=rng,
    )
    registry_kwargs = {"sleep": sleep} if sleep is not None else {}
    registry = SchedulerRegistry(
        orchestrator,
        campaigns,
        retry_delay_seconds=settings.double_tap_delay_seconds,
        **registry_kwargs,
    )
    reconciler = CallReconciler(
        leads=leads,
        suppression=suppression,
        campaigns=campaigns,
        schedule_retry=registry.schedule_retry,
        clock=clock,
    )
    return DialerRuntime(
        settings=settings,
        leads=leads,
        suppression=suppression,
        campaigns=campaigns,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        registry=registry,
        reconciler=reconciler,
    )
