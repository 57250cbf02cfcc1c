"""Unit tests for LeadStore."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaign_dialer.db.models import LeadDatasetDB
from campaign_dialer.models.lead import CallOutcome, LeadStatus
from campaign_dialer.services.csv_parser import ParsedLead
from campaign_dialer.services.lead_store import DatasetUnavailableError, LeadStore
from conftest import LEAD_HEADERS, make_lead


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> LeadStore:
    return LeadStore(session_factory)


class TestNextEligibleLead:
    """Tests for picking the next lead."""

    @pytest.mark.asyncio
    async def test_returns_first_not_called_row(self, store: LeadStore):
        """アップロード順で最初の未発信行"""
        dataset = await store.create_dataset(
            "leads.csv",
            LEAD_HEADERS,
            [
                make_lead("5125550101", status=LeadStatus.CALLED),
                make_lead("5125550102"),
                make_lead("5125550103"),
            ],
        )
        lead = await store.next_eligible_lead(dataset.id)
        assert lead is not None
        assert lead.row_index == 2

    @pytest.mark.asyncio
    async def test_skips_invalid_phones(self, store: LeadStore):
        """無効な電話番号はスキップ"""
        dataset = await store.create_dataset(
            "leads.csv", LEAD_HEADERS, [make_lead("555-0101"), make_lead("5125550102")]
        )
        lead = await store.next_eligible_lead(dataset.id)
        assert lead is not None
        assert lead.phone == "5125550102"

    @pytest.mark.asyncio
    async def test_target_zip_filters(self, store: LeadStore):
        """ターゲットZIPで絞り込む"""
        dataset = await store.create_dataset(
            "leads.csv",
            LEAD_HEADERS,
            [make_lead("5125550101", zip_code="73301"), make_lead("5125550102", zip_code="78701-0001")],
        )
        lead = await store.next_eligible_lead(dataset.id, "78701")
        assert lead is not None
        assert lead.row_index == 2
        assert await store.next_eligible_lead(dataset.id, "90210") is None

    @pytest.mark.asyncio
    async def test_none_when_exhausted(self, store: LeadStore):
        """全件発信済みならNone"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("5125550101")])
        await store.mark_called(dataset.id, 1, CallOutcome(ended_reason="customer-ended-call"))
        assert await store.next_eligible_lead(dataset.id) is None

    @pytest.mark.asyncio
    async def test_unknown_dataset_raises(self, store: LeadStore):
        """存在しないデータセットはエラー"""
        with pytest.raises(DatasetUnavailableError):
            await store.next_eligible_lead("missing")


class TestMarkCalled:
    """Tests for writing outcomes."""

    @pytest.mark.asyncio
    async def test_writes_outcome_fields(self, store: LeadStore):
        """結果を書き込む"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("5125550101")])
        outcome = CallOutcome(ended_reason="customer-ended-call", success_evaluation="true", transcript="hi")
        assert await store.mark_called(dataset.id, 1, outcome)

        lead = await store.get_lead(dataset.id, 1)
        assert lead.status == LeadStatus.CALLED
        assert lead.ended_reason == "customer-ended-call"
        assert lead.success_evaluation == "true"
        assert lead.transcript == "hi"

    @pytest.mark.asyncio
    async def test_idempotent(self, store: LeadStore):
        """同じ結果を2回書いても同じ状態"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("5125550101")])
        outcome = CallOutcome(ended_reason="voicemail")
        await store.mark_called(dataset.id, 1, outcome)
        first = await store.get_lead(dataset.id, 1)
        await store.mark_called(dataset.id, 1, outcome)
        assert await store.get_lead(dataset.id, 1) == first

    @pytest.mark.asyncio
    async def test_missing_row_returns_false(self, store: LeadStore):
        """存在しない行はFalse"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("5125550101")])
        assert not await store.mark_called(dataset.id, 99, CallOutcome())

    @pytest.mark.asyncio
    async def test_mark_not_called_requeues(self, store: LeadStore):
        """未発信に戻すと再び対象になる"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("5125550101")])
        await store.mark_called(dataset.id, 1, CallOutcome(ended_reason="customer-did-not-answer"))
        assert await store.mark_not_called(dataset.id, 1)
        lead = await store.next_eligible_lead(dataset.id)
        assert lead is not None
        assert lead.ended_reason == "customer-did-not-answer"


class TestPhoneLookup:
    """Tests for phone lookups."""

    @pytest.mark.asyncio
    async def test_find_by_phone_last_ten_digits(self, store: LeadStore):
        """末尾10桁で検索"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("(512) 555-0101")])
        lead = await store.find_by_phone(dataset.id, "+15125550101")
        assert lead is not None
        assert lead.row_index == 1

    @pytest.mark.asyncio
    async def test_find_anywhere_one_match_per_dataset(self, store: LeadStore):
        """データセットごとに最初の一致を返す"""
        first = await store.create_dataset(
            "a.csv", LEAD_HEADERS, [make_lead("5125550101", first_name="A"), make_lead("5125550101")]
        )
        second = await store.create_dataset("b.csv", LEAD_HEADERS, [make_lead("5125550101", first_name="B")])

        matches = await store.find_by_phone_anywhere("512-555-0101")
        assert [(lead.dataset_id, lead.first_name) for lead in matches] == [(first.id, "A"), (second.id, "B")]

    @pytest.mark.asyncio
    async def test_short_phone_finds_nothing(self, store: LeadStore):
        """10桁未満は検索しない"""
        await store.create_dataset("a.csv", LEAD_HEADERS, [make_lead("5125550101")])
        assert await store.find_by_phone_anywhere("0101") == []

    @pytest.mark.asyncio
    async def test_known_phones(self, store: LeadStore):
        """既存の電話番号一覧"""
        dataset = await store.create_dataset(
            "a.csv", LEAD_HEADERS, [make_lead("+1 512 555 0101"), make_lead("555")]
        )
        assert await store.known_phones() == {"5125550101"}
        assert await store.known_phones(exclude_dataset_id=dataset.id) == set()


class TestDatasets:
    """Tests for dataset administration."""

    @pytest.mark.asyncio
    async def test_create_assigns_row_indexes(self, store: LeadStore):
        """行番号は1から"""
        dataset = await store.create_dataset(
            "leads.csv", LEAD_HEADERS, [make_lead("5125550101"), make_lead("5125550102")]
        )
        assert dataset.row_count == 2
        assert len(dataset.id) == 32
        assert [lead.row_index for lead in await store.list_leads(dataset.id)] == [1, 2]

    @pytest.mark.asyncio
    async def test_replace_keeps_id(self, store: LeadStore):
        """置き換えてもIDは同じ"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("5125550101")])
        replaced = await store.replace_dataset(
            dataset.id, "new.csv", ["Phone"], [ParsedLead(phone="5125550199"), ParsedLead(phone="5125550198")]
        )
        assert replaced.id == dataset.id
        assert replaced.row_count == 2
        assert replaced.original_name == "new.csv"
        leads = await store.list_leads(dataset.id)
        assert leads[0].phone == "5125550199"

    @pytest.mark.asyncio
    async def test_replace_unknown_raises(self, store: LeadStore):
        """存在しないデータセットの置き換えはエラー"""
        with pytest.raises(DatasetUnavailableError):
            await store.replace_dataset("missing", "x.csv", ["Phone"], [])

    @pytest.mark.asyncio
    async def test_delete(self, store: LeadStore):
        """削除"""
        dataset = await store.create_dataset("leads.csv", LEAD_HEADERS, [make_lead("5125550101")])
        assert await store.delete_dataset(dataset.id)
        assert await store.get_dataset(dataset.id) is None
        assert not await store.delete_dataset(dataset.id)

    @pytest.mark.asyncio
    async def test_list_datasets_counts_rows(self, store: LeadStore):
        """一覧に行数を含む"""
        await store.create_dataset("a.csv", LEAD_HEADERS, [make_lead("5125550101")])
        await store.create_dataset("b.csv", LEAD_HEADERS, [])
        datasets = await store.list_datasets()
        assert sorted((d.original_name, d.row_count) for d in datasets) == [("a.csv", 1), ("b.csv", 0)]


class TestResolveDatasetRef:
    """Tests for mapping truncated references back to datasets."""

    async def _add_dataset(self, session_factory, dataset_id: str) -> None:
        async with session_factory() as session:
            session.add(LeadDatasetDB(id=dataset_id, original_name=f"{dataset_id}.csv", headers=["Phone"]))
            await session.commit()

    @pytest.mark.asyncio
    async def test_exact_id(self, store: LeadStore):
        """完全一致"""
        dataset = await store.create_dataset("a.csv", LEAD_HEADERS, [])
        assert await store.resolve_dataset_ref(dataset.id) == dataset.id

    @pytest.mark.asyncio
    async def test_unique_prefix(self, store: LeadStore, session_factory):
        """一意な前方一致"""
        await self._add_dataset(session_factory, "aaaa1111")
        await self._add_dataset(session_factory, "bbbb2222")
        assert await store.resolve_dataset_ref("aaaa") == "aaaa1111"

    @pytest.mark.asyncio
    async def test_ambiguous_prefix_resolves_nothing(self, store: LeadStore, session_factory):
        """曖昧な前方一致はNone"""
        await self._add_dataset(session_factory, "abcd1111")
        await self._add_dataset(session_factory, "abcd2222")
        assert await store.resolve_dataset_ref("abcd") is None

    @pytest.mark.asyncio
    async def test_unknown_prefix(self, store: LeadStore):
        """一致なし"""
        assert await store.resolve_dataset_ref("zzzz") is None
        assert await store.resolve_dataset_ref("") is None
