"""Unit tests for SchedulerRegistry."""

import asyncio

import pytest

from campaign_dialer.models.campaign import CampaignStatus, InvalidCampaignStateError
from campaign_dialer.services.dispatcher_mock import MockDispatcher
from campaign_dialer.services.runtime import DialerRuntime
from conftest import LEAD_HEADERS, FakeClock, FakeSleep, make_lead


async def configure(runtime: DialerRuntime, campaign_id: str = "dialer1", **overrides) -> str:
    dataset = await runtime.leads.create_dataset(
        "leads.csv", LEAD_HEADERS, [make_lead("5125550101"), make_lead("5125550102")]
    )
    await runtime.campaigns.update_config(
        campaign_id,
        {"assistant_id": "asst-1", "caller_ids": ["num-1"], "dataset_id": dataset.id, **overrides},
    )
    return dataset.id


async def wait_for_calls(dispatcher: MockDispatcher, count: int) -> None:
    async with asyncio.timeout(2):
        while len(dispatcher.calls) < count:
            await asyncio.sleep(0.01)


class TestStart:
    """Tests for starting campaigns."""

    @pytest.mark.asyncio
    async def test_requires_complete_config(self, runtime: DialerRuntime):
        """設定が揃っていなければ開始できない"""
        with pytest.raises(InvalidCampaignStateError, match="required"):
            await runtime.registry.start("dialer1")
        assert not runtime.registry.is_armed("dialer1")

    @pytest.mark.asyncio
    async def test_ticks_immediately_then_sleeps(
        self, runtime: DialerRuntime, dispatcher: MockDispatcher, fake_sleep: FakeSleep
    ):
        """開始直後に1回発信し、その後は間隔待ち"""
        await configure(runtime)
        state = await runtime.registry.start("dialer1")

        assert state.status == CampaignStatus.RUNNING
        assert runtime.registry.is_armed("dialer1")
        await fake_sleep.wait_for_calls(1)
        assert len(dispatcher.calls) == 1
        assert fake_sleep.delays == [30]

    @pytest.mark.asyncio
    async def test_already_running(self, runtime: DialerRuntime):
        """実行中は再開始できない"""
        await configure(runtime)
        await runtime.registry.start("dialer1")
        with pytest.raises(InvalidCampaignStateError):
            await runtime.registry.start("dialer1")

    @pytest.mark.asyncio
    async def test_cadence_read_each_loop(self, runtime: DialerRuntime, fake_sleep: FakeSleep):
        """間隔は毎回設定から読む"""
        await configure(runtime)
        await runtime.registry.start("dialer1")
        await fake_sleep.wait_for_calls(1)

        await runtime.campaigns.update_config("dialer1", {"call_every_seconds": 45})
        fake_sleep.release()
        await fake_sleep.wait_for_calls(2)
        assert fake_sleep.delays == [30, 45]

    @pytest.mark.asyncio
    async def test_minimum_interval(self, runtime: DialerRuntime, fake_sleep: FakeSleep):
        """間隔は最低1秒"""
        await configure(runtime, call_every_seconds=0)
        await runtime.registry.start("dialer1")
        await fake_sleep.wait_for_calls(1)
        assert fake_sleep.delays == [1]


class TestStopPauseResume:
    """Tests for the other transitions."""

    @pytest.mark.asyncio
    async def test_stop_keeps_call_in_flight(
        self, runtime: DialerRuntime, dispatcher: MockDispatcher, fake_sleep: FakeSleep
    ):
        """停止しても発信中の通話はそのまま"""
        await configure(runtime)
        await runtime.registry.start("dialer1")
        await fake_sleep.wait_for_calls(1)

        state = await runtime.registry.stop("dialer1")
        assert state.status == CampaignStatus.STOPPED
        assert not runtime.registry.is_armed("dialer1")
        assert len(await runtime.campaigns.list_in_flight("dialer1")) == 1

    @pytest.mark.asyncio
    async def test_pause_and_resume(
        self, runtime: DialerRuntime, dispatcher: MockDispatcher, fake_sleep: FakeSleep
    ):
        """一時停止中は発信せず、再開で戻る"""
        await configure(runtime)
        await runtime.registry.start("dialer1")
        await fake_sleep.wait_for_calls(1)

        state = await runtime.registry.pause("dialer1")
        assert state.status == CampaignStatus.PAUSED
        assert runtime.registry.is_armed("dialer1")

        state = await runtime.registry.resume("dialer1")
        assert state.status == CampaignStatus.RUNNING
        assert runtime.registry.is_armed("dialer1")

    @pytest.mark.asyncio
    async def test_pause_requires_running(self, runtime: DialerRuntime):
        """停止中は一時停止できない"""
        with pytest.raises(InvalidCampaignStateError):
            await runtime.registry.pause("dialer1")

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, runtime: DialerRuntime):
        """一時停止中でなければ再開できない"""
        await configure(runtime)
        await runtime.registry.start("dialer1")
        with pytest.raises(InvalidCampaignStateError):
            await runtime.registry.resume("dialer1")

    @pytest.mark.asyncio
    async def test_pause_all(self, runtime: DialerRuntime):
        """実行中のキャンペーンをすべて一時停止"""
        await configure(runtime, "dialer1")
        await configure(runtime, "dialer3")
        await runtime.registry.start("dialer1")
        await runtime.registry.start("dialer3")

        assert await runtime.registry.pause_all() == ["dialer1", "dialer3"]
        assert (await runtime.campaigns.get_run_state("dialer2")).status == CampaignStatus.STOPPED


class TestRestore:
    """Tests for re-arming after a restart."""

    @pytest.mark.asyncio
    async def test_restores_running_campaigns_and_retries(self, runtime: DialerRuntime, clock: FakeClock):
        """再起動時に実行中のキャンペーンと保留中のリトライを復元"""
        dataset_id = await configure(runtime)
        await runtime.campaigns.set_running("dialer1", True)
        lead = await runtime.leads.get_lead(dataset_id, 2)
        external_id = runtime.orchestrator.external_id_for("dialer1", lead)
        await runtime.campaigns.try_schedule_retry(external_id, "dialer1", dataset_id, 2, "num-1", clock())

        assert await runtime.registry.restore() == ["dialer1"]
        assert runtime.registry.is_armed("dialer1")
        assert runtime.registry.pending_retry_count() == 1

    @pytest.mark.asyncio
    async def test_shutdown(self, runtime: DialerRuntime):
        """シャットダウンで全タスクを停止"""
        await configure(runtime)
        await runtime.registry.start("dialer1")
        runtime.registry.schedule_retry("dialer1:x:1")

        await runtime.registry.shutdown()
        assert not runtime.registry.is_armed("dialer1")
        assert runtime.registry.pending_retry_count() == 0


class TestScheduledRetry:
    """Tests for firing redials."""

    @pytest.mark.asyncio
    async def test_fires_after_delay(
        self,
        runtime: DialerRuntime,
        dispatcher: MockDispatcher,
        fake_sleep: FakeSleep,
        clock: FakeClock,
    ):
        """待機後にリトライ発信"""
        dataset_id = await configure(runtime)
        lead = await runtime.leads.get_lead(dataset_id, 1)
        external_id = runtime.orchestrator.external_id_for("dialer1", lead)
        await runtime.campaigns.try_schedule_retry(external_id, "dialer1", dataset_id, 1, "num-1", clock())

        runtime.registry.schedule_retry(external_id)
        runtime.registry.schedule_retry(external_id)
        await fake_sleep.wait_for_calls(1)
        assert fake_sleep.delays == [30]

        fake_sleep.release()
        await wait_for_calls(dispatcher, 1)
        assert dispatcher.last_call.external_id == external_id
