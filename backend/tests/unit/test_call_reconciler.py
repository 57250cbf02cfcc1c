"""Unit tests for CallReconciler."""

import pytest

from campaign_dialer.models.call_outcome import CallOutcomeEvent
from campaign_dialer.models.lead import LeadStatus
from campaign_dialer.services.call_reconciler import ReconcileOutcome
from campaign_dialer.services.dialer_orchestrator import TickOutcome
from campaign_dialer.services.dispatcher_mock import MockDispatcher
from campaign_dialer.services.runtime import DialerRuntime
from conftest import LEAD_HEADERS, FakeClock, make_lead


async def dispatch_one(runtime: DialerRuntime, dispatcher: MockDispatcher, **overrides) -> tuple[str, str]:
    """Configure dialer1 on a one-lead dataset and place its call."""
    dataset = await runtime.leads.create_dataset(
        "leads.csv", LEAD_HEADERS, [make_lead("5125550101", address="12 Main St")]
    )
    await runtime.campaigns.update_config(
        "dialer1",
        {"assistant_id": "asst-1", "caller_ids": ["num-1", "num-2"], "dataset_id": dataset.id, **overrides},
    )
    await runtime.campaigns.set_running("dialer1", True)
    await runtime.orchestrator.tick("dialer1")
    return dataset.id, dispatcher.last_call.external_id


class TestIgnored:
    """Tests for events that cannot be applied."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("external_id", ["", "not-an-id", "dialer1:abc"])
    async def test_malformed_external_id(self, runtime: DialerRuntime, external_id: str):
        """外部IDが不正なら無視"""
        event = CallOutcomeEvent(external_id=external_id, ended_reason="customer-ended-call")
        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.IGNORED


class TestApply:
    """Tests for applying outcomes."""

    @pytest.mark.asyncio
    async def test_writes_outcome_and_books(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """結果を書き込み、成功なら予約を記録"""
        dataset_id, external_id = await dispatch_one(runtime, dispatcher)
        event = CallOutcomeEvent(
            external_id=external_id,
            ended_reason="customer-ended-call",
            success_evaluation="true",
            transcript="AI: Hello",
            call_id="call-1",
        )

        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.APPLIED

        lead = await runtime.leads.get_lead(dataset_id, 1)
        assert lead.status == LeadStatus.CALLED
        assert lead.ended_reason == "customer-ended-call"
        assert lead.transcript == "AI: Hello"
        assert await runtime.suppression.is_address_booked("12 main st")
        assert await runtime.campaigns.get_in_flight(external_id) is None

        state = await runtime.campaigns.get_run_state("dialer1")
        assert state.calls_answered_today == 1
        assert state.appointments_booked_today == 1

    @pytest.mark.asyncio
    async def test_not_answered_counter(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """不応答をカウント"""
        _, external_id = await dispatch_one(runtime, dispatcher)
        await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="customer-did-not-answer")
        )
        state = await runtime.campaigns.get_run_state("dialer1")
        assert state.calls_not_answered_today == 1
        assert state.calls_answered_today == 0

    @pytest.mark.asyncio
    async def test_duplicate_applied_once(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """再送された結果は1回だけ反映"""
        _, external_id = await dispatch_one(runtime, dispatcher)
        event = CallOutcomeEvent(
            external_id=external_id, ended_reason="customer-ended-call", success_evaluation="true"
        )

        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.APPLIED
        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.DUPLICATE

        state = await runtime.campaigns.get_run_state("dialer1")
        assert state.calls_answered_today == 1
        assert state.appointments_booked_today == 1

    @pytest.mark.asyncio
    async def test_duplicate_by_call_id(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """同じ通話IDは終了理由が違っても重複"""
        _, external_id = await dispatch_one(runtime, dispatcher)
        first = CallOutcomeEvent(external_id=external_id, ended_reason="customer-ended-call", call_id="c-1")
        second = CallOutcomeEvent(external_id=external_id, ended_reason="assistant-ended-call", call_id="c-1")

        await runtime.reconciler.handle_outcome(first)
        assert await runtime.reconciler.handle_outcome(second) == ReconcileOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_bad_number_blacklisted(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """接続エラーの番号はブラックリストへ"""
        _, external_id = await dispatch_one(runtime, dispatcher)
        await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="twilio-failed-to-connect-call")
        )
        assert await runtime.suppression.is_blacklisted("5125550101")

    @pytest.mark.asyncio
    async def test_resolves_dataset_without_in_flight(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """追跡情報がなくても切り詰めた参照からデータセットを解決"""
        dataset_id, external_id = await dispatch_one(runtime, dispatcher)
        await runtime.campaigns.clear_in_flight(external_id)

        await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="customer-ended-call")
        )
        assert (await runtime.leads.get_lead(dataset_id, 1)).status == LeadStatus.CALLED

    @pytest.mark.asyncio
    async def test_storage_error_reported_as_failed(
        self, runtime: DialerRuntime, dispatcher: MockDispatcher, monkeypatch: pytest.MonkeyPatch
    ):
        """保存に失敗してもFAILEDを返し例外を外に出さない"""
        _, external_id = await dispatch_one(runtime, dispatcher)

        async def broken(*args, **kwargs):
            raise RuntimeError("database is gone")

        monkeypatch.setattr(runtime.leads, "mark_called", broken)
        event = CallOutcomeEvent(external_id=external_id, ended_reason="customer-ended-call")

        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.FAILED
        assert await runtime.campaigns.get_in_flight(external_id) is None


class TestDoubleTap:
    """Tests for scheduling a second attempt."""

    @pytest.mark.asyncio
    async def test_no_answer_schedules_retry(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """不応答ならリトライを予約しリードを未発信に戻す"""
        dataset_id, external_id = await dispatch_one(runtime, dispatcher, double_tap=True)

        outcome = await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="customer-did-not-answer", call_id="c-1")
        )

        assert outcome == ReconcileOutcome.RETRY_SCHEDULED
        assert (await runtime.leads.get_lead(dataset_id, 1)).status == LeadStatus.NOT_CALLED
        retry = await runtime.campaigns.get_retry(external_id)
        assert retry.caller_id == "num-1"
        assert retry.is_pending
        assert runtime.registry.pending_retry_count() == 1

    @pytest.mark.asyncio
    async def test_second_no_answer_is_final(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """2回目の不応答ではリトライしない"""
        dataset_id, external_id = await dispatch_one(runtime, dispatcher, double_tap=True)
        await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="customer-did-not-answer", call_id="c-1")
        )
        await runtime.orchestrator.dispatch_retry(external_id)

        outcome = await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="customer-did-not-answer", call_id="c-2")
        )

        assert outcome == ReconcileOutcome.APPLIED
        lead = await runtime.leads.get_lead(dataset_id, 1)
        assert lead.status == LeadStatus.CALLED
        assert lead.ended_reason == "customer-did-not-answer"
        assert len(dispatcher.calls) == 2

    @pytest.mark.asyncio
    async def test_second_no_answer_without_call_id(
        self, runtime: DialerRuntime, dispatcher: MockDispatcher, clock: FakeClock
    ):
        """通話IDなしでも2回目の不応答は反映され、発信中の記録も消える"""
        dataset_id, external_id = await dispatch_one(runtime, dispatcher, double_tap=True)
        event = CallOutcomeEvent(external_id=external_id, ended_reason="customer-did-not-answer")

        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.RETRY_SCHEDULED
        await runtime.orchestrator.dispatch_retry(external_id)
        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.APPLIED

        lead = await runtime.leads.get_lead(dataset_id, 1)
        assert lead.status == LeadStatus.CALLED
        assert lead.ended_reason == "customer-did-not-answer"
        assert await runtime.campaigns.get_in_flight(external_id) is None

        clock.advance(121)
        assert await runtime.orchestrator.tick("dialer1") == TickOutcome.NO_LEADS
        assert not await runtime.suppression.is_blacklisted("5125550101")

    @pytest.mark.asyncio
    async def test_redelivered_redial_report_is_duplicate(
        self, runtime: DialerRuntime, dispatcher: MockDispatcher
    ):
        """再送された2回目のレポートは重複として扱う"""
        _, external_id = await dispatch_one(runtime, dispatcher, double_tap=True)
        event = CallOutcomeEvent(external_id=external_id, ended_reason="customer-did-not-answer")
        await runtime.reconciler.handle_outcome(event)
        await runtime.orchestrator.dispatch_retry(external_id)
        await runtime.reconciler.handle_outcome(event)

        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.DUPLICATE
        state = await runtime.campaigns.get_run_state("dialer1")
        assert state.calls_not_answered_today == 2

    @pytest.mark.asyncio
    async def test_duplicate_clears_in_flight(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """重複レポートでも発信中の記録は消す"""
        _, external_id = await dispatch_one(runtime, dispatcher)
        event = CallOutcomeEvent(external_id=external_id, ended_reason="customer-ended-call")
        key = event.dedupe_key(attempt=1)
        await runtime.campaigns.mark_outcome_processed(key, external_id)

        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.DUPLICATE
        assert await runtime.campaigns.get_in_flight(external_id) is None

    @pytest.mark.asyncio
    async def test_disabled(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """ダブルタップ無効ならそのまま発信済み"""
        dataset_id, external_id = await dispatch_one(runtime, dispatcher)
        outcome = await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="voicemail")
        )
        assert outcome == ReconcileOutcome.APPLIED
        assert (await runtime.leads.get_lead(dataset_id, 1)).status == LeadStatus.CALLED
        assert await runtime.campaigns.get_retry(external_id) is None

    @pytest.mark.asyncio
    async def test_answered_call_not_retried(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """応答した通話はリトライしない"""
        _, external_id = await dispatch_one(runtime, dispatcher, double_tap=True)
        outcome = await runtime.reconciler.handle_outcome(
            CallOutcomeEvent(external_id=external_id, ended_reason="customer-ended-call")
        )
        assert outcome == ReconcileOutcome.APPLIED
        assert runtime.registry.pending_retry_count() == 0


class TestTestCallOutcome:
    """Tests for outcomes of operator test calls."""

    @pytest.mark.asyncio
    async def test_not_counted(self, runtime: DialerRuntime):
        """テスト発信の結果は統計に含めない"""
        event = CallOutcomeEvent(
            external_id="test:test:0",
            ended_reason="customer-did-not-answer",
            customer_phone="+15125550199",
        )
        assert await runtime.reconciler.handle_outcome(event) == ReconcileOutcome.APPLIED

        for state in await runtime.campaigns.get_all_run_states():
            assert state.calls_not_answered_today == 0
            assert state.calls_answered_today == 0

    @pytest.mark.asyncio
    async def test_bad_number_still_blacklisted(self, runtime: DialerRuntime):
        """テスト発信でも不正番号はブラックリストへ"""
        event = CallOutcomeEvent(
            external_id="test:test:0",
            ended_reason="twilio-failed-to-connect-call",
            customer_phone="+15125550199",
        )
        await runtime.reconciler.handle_outcome(event)
        assert await runtime.suppression.is_blacklisted("5125550199")

    @pytest.mark.asyncio
    async def test_repeated_test_calls_not_deduplicated(self, runtime: DialerRuntime):
        """同じ終了理由のテスト発信が続いても毎回反映"""
        first = CallOutcomeEvent(
            external_id="test:test:0",
            ended_reason="twilio-failed-to-connect-call",
            customer_phone="+15125550198",
        )
        second = CallOutcomeEvent(
            external_id="test:test:0",
            ended_reason="twilio-failed-to-connect-call",
            customer_phone="+15125550199",
        )
        assert await runtime.reconciler.handle_outcome(first) == ReconcileOutcome.APPLIED
        assert await runtime.reconciler.handle_outcome(second) == ReconcileOutcome.APPLIED
        assert await runtime.suppression.is_blacklisted("5125550199")
