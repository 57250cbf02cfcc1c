"""Lead store: datasets of lead rows and their call status."""

import asyncio
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaign_dialer.db.models import LeadDatasetDB, LeadRowDB
from campaign_dialer.models.lead import (
    MIN_PHONE_DIGITS,
    CallOutcome,
    Lead,
    LeadStatus,
    normalize_phone,
)
from campaign_dialer.services.csv_parser import ParsedLead

logger = structlog.get_logger(__name__)


class DatasetUnavailableError(Exception):
    """Raised when a dataset is unknown or cannot be read or written."""

    def __init__(self, dataset_id: str, reason: str = ""):
        self.dataset_id = dataset_id
        self.reason = reason
        message = f"Dataset {dataset_id} unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)


@dataclass
class Dataset:
    """Uploaded dataset summary."""

    id: str
    original_name: str
    headers: list[str] = field(default_factory=list)
    row_count: int = 0
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "headers": list(self.headers),
            "row_count": self.row_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _to_lead(row: LeadRowDB) -> Lead:
    return Lead(
        dataset_id=row.dataset_id,
        row_index=row.row_index,
        phone=row.phone,
        first_name=row.first_name,
        last_name=row.last_name,
        address=row.address,
        city=row.city,
        zip_code=row.zip_code,
        email=row.email,
        status=LeadStatus(row.status),
        ended_reason=row.ended_reason,
        success_evaluation=row.success_evaluation,
        transcript=row.transcript,
        extra=dict(row.extra or {}),
    )


def _to_row(dataset_id: str, row_index: int, parsed: ParsedLead) -> LeadRowDB:
    return LeadRowDB(
        dataset_id=dataset_id,
        row_index=row_index,
        first_name=parsed.first_name,
        last_name=parsed.last_name,
        address=parsed.address,
        city=parsed.city,
        zip_code=parsed.zip_code,
        phone=parsed.phone,
        phone_key=normalize_phone(parsed.phone),
        email=parsed.email,
        status=parsed.status.value,
        ended_reason=parsed.ended_reason,
        success_evaluation=parsed.success_evaluation,
        transcript=parsed.transcript,
        extra=dict(parsed.extra),
    )


class LeadStore:
    """
    Persistent lead datasets.

    Reads go straight to the database. Every mutation of one dataset runs
    under that dataset's lock so concurrent writers (a tick skipping
    suppressed rows, a webhook writing an outcome) are applied one at a time.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, dataset_id: str) -> asyncio.Lock:
        return self._locks.setdefault(dataset_id, asyncio.Lock())

    @asynccontextmanager
    async def _session(self, dataset_id: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise DatasetUnavailableError(dataset_id, str(e)) from e

    async def _require_dataset(self, session: AsyncSession, dataset_id: str) -> LeadDatasetDB:
        dataset = await session.get(LeadDatasetDB, dataset_id)
        if dataset is None:
            raise DatasetUnavailableError(dataset_id, "not found")
        return dataset

    async def _get_row(
        self, session: AsyncSession, dataset_id: str, row_index: int
    ) -> LeadRowDB | None:
        result = await session.execute(
            select(LeadRowDB).where(
                LeadRowDB.dataset_id == dataset_id,
                LeadRowDB.row_index == row_index,
            )
        )
        return result.scalar_one_or_none()

    # Lead reads

    async def next_eligible_lead(self, dataset_id: str, target_zip: str | None = None) -> Lead | None:
        """
        First row, in upload order, that may be dialed.

        Eligible means status not-called and a phone with at least 10
        digits; with a target zip, the first five postal digits must match.
        Suppression is not checked here.
        """
        async with self._session(dataset_id) as session:
            await self._require_dataset(session, dataset_id)
            result = await session.execute(
                select(LeadRowDB)
                .where(
                    LeadRowDB.dataset_id == dataset_id,
                    LeadRowDB.status == LeadStatus.NOT_CALLED.value,
                    func.length(LeadRowDB.phone_key) == MIN_PHONE_DIGITS,
                )
                .order_by(LeadRowDB.row_index)
            )
            for row in result.scalars():
                lead = _to_lead(row)
                if lead.can_be_called(target_zip):
                    return lead
        return None

    async def get_lead(self, dataset_id: str, row_index: int) -> Lead | None:
        async with self._session(dataset_id) as session:
            row = await self._get_row(session, dataset_id, row_index)
            return _to_lead(row) if row else None

    async def list_leads(self, dataset_id: str) -> list[Lead]:
        async with self._session(dataset_id) as session:
            await self._require_dataset(session, dataset_id)
            result = await session.execute(
                select(LeadRowDB)
                .where(LeadRowDB.dataset_id == dataset_id)
                .order_by(LeadRowDB.row_index)
            )
            return [_to_lead(row) for row in result.scalars()]

    async def find_by_phone(self, dataset_id: str, phone: str) -> Lead | None:
        """First row of a dataset whose phone ends with the same 10 digits."""
        key = normalize_phone(phone)
        if len(key) < MIN_PHONE_DIGITS:
            return None
        async with self._session(dataset_id) as session:
            result = await session.execute(
                select(LeadRowDB)
                .where(LeadRowDB.dataset_id == dataset_id, LeadRowDB.phone_key == key)
                .order_by(LeadRowDB.row_index)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_lead(row) if row else None

    async def find_by_phone_anywhere(self, phone: str) -> list[Lead]:
        """First matching row of every dataset, oldest dataset first."""
        key = normalize_phone(phone)
        if len(key) < MIN_PHONE_DIGITS:
            return []
        async with self._session("*") as session:
            result = await session.execute(
                select(LeadRowDB)
                .join(LeadDatasetDB, LeadDatasetDB.id == LeadRowDB.dataset_id)
                .where(LeadRowDB.phone_key == key)
                .order_by(LeadDatasetDB.created_at, LeadRowDB.row_index)
            )
            matches: dict[str, Lead] = {}
            for row in result.scalars():
                matches.setdefault(row.dataset_id, _to_lead(row))
            return list(matches.values())

    async def known_phones(self, exclude_dataset_id: str | None = None) -> set[str]:
        """Normalized phones already present in other datasets."""
        async with self._session("*") as session:
            stmt = select(LeadRowDB.phone_key).where(
                func.length(LeadRowDB.phone_key) == MIN_PHONE_DIGITS
            )
            if exclude_dataset_id:
                stmt = stmt.where(LeadRowDB.dataset_id != exclude_dataset_id)
            result = await session.execute(stmt.distinct())
            return set(result.scalars())

    # Lead mutations

    async def mark_called(self, dataset_id: str, row_index: int, outcome: CallOutcome) -> bool:
        """Set status called and store the outcome fields. Idempotent; False if the row is gone."""
        async with self._lock(dataset_id), self._session(dataset_id) as session:
            result = await session.execute(
                update(LeadRowDB)
                .where(
                    LeadRowDB.dataset_id == dataset_id,
                    LeadRowDB.row_index == row_index,
                )
                .values(
                    status=LeadStatus.CALLED.value,
                    ended_reason=outcome.ended_reason,
                    success_evaluation=outcome.success_evaluation,
                    transcript=outcome.transcript,
                )
            )
            await session.commit()
        if result.rowcount == 0:
            logger.warning("Lead row not found", dataset_id=dataset_id, row_index=row_index)
            return False
        return True

    async def mark_not_called(self, dataset_id: str, row_index: int) -> bool:
        """Put a row back in the queue (double tap)."""
        async with self._lock(dataset_id), self._session(dataset_id) as session:
            result = await session.execute(
                update(LeadRowDB)
                .where(
                    LeadRowDB.dataset_id == dataset_id,
                    LeadRowDB.row_index == row_index,
                )
                .values(status=LeadStatus.NOT_CALLED.value)
            )
            await session.commit()
        return result.rowcount > 0

    # Dataset admin

    async def create_dataset(
        self, original_name: str, headers: list[str], leads: Iterable[ParsedLead]
    ) -> Dataset:
        dataset_id = uuid.uuid4().hex
        async with self._lock(dataset_id), self._session(dataset_id) as session:
            dataset = LeadDatasetDB(id=dataset_id, original_name=original_name, headers=list(headers))
            session.add(dataset)
            rows = [_to_row(dataset_id, index, lead) for index, lead in enumerate(leads, start=1)]
            session.add_all(rows)
            await session.commit()
            logger.info("Dataset created", dataset_id=dataset_id, rows=len(rows))
            return Dataset(
                id=dataset_id,
                original_name=original_name,
                headers=list(headers),
                row_count=len(rows),
                created_at=dataset.created_at,
            )

    async def replace_dataset(
        self, dataset_id: str, original_name: str, headers: list[str], leads: Iterable[ParsedLead]
    ) -> Dataset:
        """Swap every row of a dataset for a new upload, keeping its id."""
        async with self._lock(dataset_id), self._session(dataset_id) as session:
            dataset = await self._require_dataset(session, dataset_id)
            await session.execute(delete(LeadRowDB).where(LeadRowDB.dataset_id == dataset_id))
            dataset.original_name = original_name or dataset.original_name
            dataset.headers = list(headers)
            rows = [_to_row(dataset_id, index, lead) for index, lead in enumerate(leads, start=1)]
            session.add_all(rows)
            await session.commit()
            logger.info("Dataset replaced", dataset_id=dataset_id, rows=len(rows))
            return Dataset(
                id=dataset_id,
                original_name=dataset.original_name,
                headers=list(dataset.headers),
                row_count=len(rows),
                created_at=dataset.created_at,
            )

    async def delete_dataset(self, dataset_id: str) -> bool:
        async with self._lock(dataset_id), self._session(dataset_id) as session:
            await session.execute(delete(LeadRowDB).where(LeadRowDB.dataset_id == dataset_id))
            result = await session.execute(
                delete(LeadDatasetDB).where(LeadDatasetDB.id == dataset_id)
            )
            await session.commit()
        self._locks.pop(dataset_id, None)
        if result.rowcount:
            logger.info("Dataset deleted", dataset_id=dataset_id)
        return result.rowcount > 0

    async def list_datasets(self) -> list[Dataset]:
        async with self._session("*") as session:
            result = await session.execute(
                select(LeadDatasetDB, func.count(LeadRowDB.id))
                .outerjoin(LeadRowDB, LeadRowDB.dataset_id == LeadDatasetDB.id)
                .group_by(LeadDatasetDB.id)
                .order_by(LeadDatasetDB.created_at)
            )
            return [
                Dataset(
                    id=dataset.id,
                    original_name=dataset.original_name,
                    headers=list(dataset.headers or []),
                    row_count=int(count),
                    created_at=dataset.created_at,
                )
                for dataset, count in result.all()
            ]

    async def get_dataset(self, dataset_id: str) -> Dataset | None:
        async with self._session(dataset_id) as session:
            dataset = await session.get(LeadDatasetDB, dataset_id)
            if dataset is None:
                return None
            count = await session.scalar(
                select(func.count(LeadRowDB.id)).where(LeadRowDB.dataset_id == dataset_id)
            )
            return Dataset(
                id=dataset.id,
                original_name=dataset.original_name,
                headers=list(dataset.headers or []),
                row_count=int(count or 0),
                created_at=dataset.created_at,
            )

    async def resolve_dataset_ref(self, dataset_ref: str) -> str | None:
        """
        Map the dataset part of an external id back to a dataset id.

        The reference may be a truncated prefix. An exact id wins; otherwise
        the prefix must match exactly one dataset.
        """
        if not dataset_ref:
            return None
        async with self._session(dataset_ref) as session:
            if await session.get(LeadDatasetDB, dataset_ref) is not None:
                return dataset_ref
            result = await session.execute(
                select(LeadDatasetDB.id).where(LeadDatasetDB.id.startswith(dataset_ref, autoescape=True))
            )
            candidates = list(result.scalars())
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.warning(
                "Ambiguous dataset reference",
                dataset_ref=dataset_ref,
                candidates=candidates,
            )
        return None
