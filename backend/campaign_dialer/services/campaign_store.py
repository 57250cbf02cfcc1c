"""Campaign configuration, run state and call tracking persistence."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaign_dialer.db.models import (
    CampaignConfigDB,
    CampaignRunStateDB,
    DoubleTapRetryDB,
    InFlightCallDB,
    ProcessedOutcomeDB,
    as_utc,
)
from campaign_dialer.models.call_outcome import NOT_ANSWERED_REASON
from campaign_dialer.models.campaign import (
    CAMPAIGN_IDS,
    DEFAULT_DAYS_OF_WEEK,
    CampaignConfig,
    CampaignRunState,
    DoubleTapRetry,
    InFlightCall,
    validate_campaign_id,
)
from campaign_dialer.services.run_window import Clock, now_local, today_date_string, utc_clock

logger = structlog.get_logger(__name__)

CONFIG_FIELDS = frozenset(
    {
        "assistant_id",
        "caller_ids",
        "dataset_id",
        "start_time",
        "end_time",
        "days_of_week",
        "call_every_seconds",
        "target_zip",
        "double_tap",
        "voicemail_leave",
        "voicemail_cycle",
        "voicemail_message",
    }
)

_DAILY_COUNTERS_RESET = {
    "calls_placed_today": 0,
    "calls_answered_today": 0,
    "calls_not_answered_today": 0,
    "appointments_booked_today": 0,
}


def _config_from_db(row: CampaignConfigDB) -> CampaignConfig:
    days = row.days_of_week
    return CampaignConfig(
        campaign_id=row.campaign_id,
        assistant_id=row.assistant_id,
        caller_ids=list(row.caller_ids or []),
        dataset_id=row.dataset_id,
        start_time=row.start_time,
        end_time=row.end_time,
        days_of_week=list(DEFAULT_DAYS_OF_WEEK) if days is None else list(days),
        call_every_seconds=row.call_every_seconds,
        target_zip=row.target_zip,
        double_tap=row.double_tap,
        voicemail_leave=row.voicemail_leave,
        voicemail_cycle=row.voicemail_cycle,
        voicemail_message=row.voicemail_message,
    )


def _state_from_db(row: CampaignRunStateDB) -> CampaignRunState:
    return CampaignRunState(
        campaign_id=row.campaign_id,
        running=row.running,
        paused=row.paused,
        round_robin_index=row.round_robin_index,
        call_count=row.call_count,
        calls_placed_today=row.calls_placed_today,
        calls_answered_today=row.calls_answered_today,
        calls_not_answered_today=row.calls_not_answered_today,
        appointments_booked_today=row.appointments_booked_today,
        stats_date=row.stats_date,
    )


def _in_flight_from_db(row: InFlightCallDB) -> InFlightCall:
    return InFlightCall(
        external_id=row.external_id,
        campaign_id=row.campaign_id,
        dataset_id=row.dataset_id,
        row_index=row.row_index,
        caller_id=row.caller_id,
        dispatched_at=as_utc(row.dispatched_at),
        call_id=row.call_id,
        attempt=row.attempt,
    )


def _retry_from_db(row: DoubleTapRetryDB) -> DoubleTapRetry:
    return DoubleTapRetry(
        external_id=row.external_id,
        campaign_id=row.campaign_id,
        dataset_id=row.dataset_id,
        row_index=row.row_index,
        caller_id=row.caller_id,
        scheduled_at=as_utc(row.scheduled_at),
        fired_at=as_utc(row.fired_at) if row.fired_at else None,
    )


def _clean_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in changes.items():
        if key not in CONFIG_FIELDS:
            raise ValueError(f"Unknown campaign setting: {key}")
        if key == "target_zip":
            value = str(value or "").strip()
        elif key == "caller_ids":
            value = [str(item).strip() for item in value or [] if str(item).strip()]
        elif key == "days_of_week":
            value = sorted({int(day) for day in value}) if value is not None else None
        elif key in ("assistant_id", "dataset_id", "start_time", "end_time"):
            value = str(value or "").strip()
        values[key] = value
    return values


class CampaignStore:
    """
    Per-campaign settings and run state, plus in-flight call tracking.

    Daily counters belong to the civil date in the dialer time zone; the
    first read on a new date resets them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timezone: str,
        clock: Clock = utc_clock,
    ):
        self._session_factory = session_factory
        self._timezone = timezone
        self._clock = clock

    def _today(self) -> str:
        return today_date_string(now_local(self._timezone, self._clock))

    # Configuration

    async def get_config(self, campaign_id: str) -> CampaignConfig:
        validate_campaign_id(campaign_id)
        async with self._session_factory() as session:
            row = await session.get(CampaignConfigDB, campaign_id)
            if row is None:
                return CampaignConfig(campaign_id=campaign_id)
            return _config_from_db(row)

    async def get_all_configs(self) -> list[CampaignConfig]:
        return [await self.get_config(campaign_id) for campaign_id in CAMPAIGN_IDS]

    async def update_config(self, campaign_id: str, changes: Mapping[str, Any]) -> CampaignConfig:
        """Apply a partial settings update and return the resulting config."""
        validate_campaign_id(campaign_id)
        values = _clean_changes(changes)
        async with self._session_factory() as session:
            row = await session.get(CampaignConfigDB, campaign_id)
            if row is None:
                defaults = CampaignConfig(campaign_id=campaign_id).to_dict()
                row = CampaignConfigDB(**defaults)
                session.add(row)
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()
            logger.info("Campaign config updated", campaign_id=campaign_id, fields=sorted(values))
            return _config_from_db(row)

    async def clear_dataset_references(self, dataset_id: str) -> list[str]:
        """Unset a deleted dataset from every campaign that points at it."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(CampaignConfigDB).where(CampaignConfigDB.dataset_id == dataset_id)
            )
            cleared = []
            for row in result.scalars():
                row.dataset_id = ""
                cleared.append(row.campaign_id)
            await session.commit()
        return cleared

    # Run state

    async def _ensure_state(self, session: AsyncSession, campaign_id: str) -> None:
        """Create the run-state row on first use and roll daily counters over."""
        today = self._today()
        if await session.get(CampaignRunStateDB, campaign_id) is None:
            session.add(CampaignRunStateDB(campaign_id=campaign_id, stats_date=today))
            await session.flush()
            return
        # Compare-and-reset: a concurrent reader on the same date matches no rows.
        result = await session.execute(
            update(CampaignRunStateDB)
            .where(
                CampaignRunStateDB.campaign_id == campaign_id,
                CampaignRunStateDB.stats_date != today,
            )
            .values(stats_date=today, **_DAILY_COUNTERS_RESET)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Daily counters reset", campaign_id=campaign_id, stats_date=today)

    async def _load_state(self, session: AsyncSession, campaign_id: str) -> CampaignRunStateDB:
        result = await session.execute(
            select(CampaignRunStateDB)
            .where(CampaignRunStateDB.campaign_id == campaign_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get_run_state(self, campaign_id: str) -> CampaignRunState:
        validate_campaign_id(campaign_id)
        async with self._session_factory() as session:
            await self._ensure_state(session, campaign_id)
            await session.commit()
            return _state_from_db(await self._load_state(session, campaign_id))

    async def get_all_run_states(self) -> list[CampaignRunState]:
        return [await self.get_run_state(campaign_id) for campaign_id in CAMPAIGN_IDS]

    async def _update_state(self, campaign_id: str, **values: Any) -> CampaignRunState:
        validate_campaign_id(campaign_id)
        async with self._session_factory() as session:
            await self._ensure_state(session, campaign_id)
            await session.execute(
                update(CampaignRunStateDB)
                .where(CampaignRunStateDB.campaign_id == campaign_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return _state_from_db(await self._load_state(session, campaign_id))

    async def set_running(self, campaign_id: str, running: bool) -> CampaignRunState:
        """Start or stop; either way the paused flag is cleared."""
        return await self._update_state(campaign_id, running=running, paused=False)

    async def set_paused(self, campaign_id: str, paused: bool) -> CampaignRunState:
        return await self._update_state(campaign_id, paused=paused)

    async def advance_round_robin(self, campaign_id: str, pool_size: int) -> int:
        """Return ``cursor mod pool_size`` and move the cursor on by one."""
        if pool_size < 1:
            raise ValueError("Caller id pool is empty")
        validate_campaign_id(campaign_id)
        async with self._session_factory() as session:
            await self._ensure_state(session, campaign_id)
            row = await self._load_state(session, campaign_id)
            index = row.round_robin_index % pool_size
            row.round_robin_index = row.round_robin_index + 1
            await session.commit()
        return index

    async def record_dispatch(self, campaign_id: str, count_for_cadence: bool = True) -> CampaignRunState:
        """A call went out: bump calls placed today and, unless a retry, the voicemail counter."""
        values: dict[str, Any] = {
            "calls_placed_today": CampaignRunStateDB.calls_placed_today + 1,
        }
        if count_for_cadence:
            values["call_count"] = CampaignRunStateDB.call_count + 1
        return await self._update_state(campaign_id, **values)

    async def record_call_ended(self, campaign_id: str, ended_reason: str) -> CampaignRunState:
        if ended_reason == NOT_ANSWERED_REASON:
            values = {"calls_not_answered_today": CampaignRunStateDB.calls_not_answered_today + 1}
        else:
            values = {"calls_answered_today": CampaignRunStateDB.calls_answered_today + 1}
        return await self._update_state(campaign_id, **values)

    async def record_booking(self, campaign_id: str) -> CampaignRunState:
        return await self._update_state(
            campaign_id,
            appointments_booked_today=CampaignRunStateDB.appointments_booked_today + 1,
        )

    # In-flight calls

    async def reserve_in_flight(
        self,
        external_id: str,
        campaign_id: str,
        dataset_id: str,
        row_index: int,
        caller_id: str,
        dispatched_at: datetime,
        attempt: int = 1,
    ) -> bool:
        """Claim the in-flight slot for an external id; False if one is already held."""
        async with self._session_factory() as session:
            session.add(
                InFlightCallDB(
                    external_id=external_id,
                    campaign_id=campaign_id,
                    dataset_id=dataset_id,
                    row_index=row_index,
                    caller_id=caller_id,
                    dispatched_at=dispatched_at,
                    attempt=attempt,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def attach_call_id(self, external_id: str, call_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(InFlightCallDB)
                .where(InFlightCallDB.external_id == external_id)
                .values(call_id=call_id or None)
            )
            await session.commit()

    async def get_in_flight(self, external_id: str) -> InFlightCall | None:
        async with self._session_factory() as session:
            row = await session.get(InFlightCallDB, external_id)
            return _in_flight_from_db(row) if row else None

    async def list_in_flight(self, campaign_id: str | None = None) -> list[InFlightCall]:
        async with self._session_factory() as session:
            stmt = select(InFlightCallDB).order_by(InFlightCallDB.dispatched_at)
            if campaign_id:
                stmt = stmt.where(InFlightCallDB.campaign_id == campaign_id)
            result = await session.execute(stmt)
            return [_in_flight_from_db(row) for row in result.scalars()]

    async def clear_in_flight(self, external_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(InFlightCallDB).where(InFlightCallDB.external_id == external_id)
            )
            await session.commit()
        return result.rowcount > 0

    # Double-tap retries

    async def try_schedule_retry(
        self,
        external_id: str,
        campaign_id: str,
        dataset_id: str,
        row_index: int,
        caller_id: str,
        scheduled_at: datetime,
    ) -> bool:
        """Record the one retry allowed per external id; False if it already exists."""
        async with self._session_factory() as session:
            session.add(
                DoubleTapRetryDB(
                    external_id=external_id,
                    campaign_id=campaign_id,
                    dataset_id=dataset_id,
                    row_index=row_index,
                    caller_id=caller_id,
                    scheduled_at=scheduled_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def get_retry(self, external_id: str) -> DoubleTapRetry | None:
        async with self._session_factory() as session:
            row = await session.get(DoubleTapRetryDB, external_id)
            return _retry_from_db(row) if row else None

    async def list_pending_retries(self) -> list[DoubleTapRetry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DoubleTapRetryDB).where(DoubleTapRetryDB.fired_at.is_(None))
            )
            return [_retry_from_db(row) for row in result.scalars()]

    async def mark_retry_fired(self, external_id: str, fired_at: datetime) -> bool:
        """Claim a pending retry. Only the first caller gets True."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(DoubleTapRetryDB)
                .where(
                    DoubleTapRetryDB.external_id == external_id,
                    DoubleTapRetryDB.fired_at.is_(None),
                )
                .values(fired_at=fired_at)
            )
            await session.commit()
        return result.rowcount == 1

    async def clear_dataset_tracking(self, dataset_id: str) -> None:
        """Forget in-flight calls and retries of a removed or replaced dataset."""
        async with self._session_factory() as session:
            await session.execute(delete(InFlightCallDB).where(InFlightCallDB.dataset_id == dataset_id))
            await session.execute(
                delete(DoubleTapRetryDB).where(DoubleTapRetryDB.dataset_id == dataset_id)
            )
            await session.commit()

    # Outcome dedupe

    async def mark_outcome_processed(self, dedupe_key: str, external_id: str) -> bool:
        """True the first time a key is seen, False for a redelivery."""
        async with self._session_factory() as session:
            session.add(ProcessedOutcomeDB(dedupe_key=dedupe_key, external_id=external_id))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True
