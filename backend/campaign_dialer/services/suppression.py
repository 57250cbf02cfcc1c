"""Suppression registry: blacklisted phones and already-booked addresses."""

import asyncio
import re
from collections.abc import Iterable
from dataclasses import dataclass

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaign_dialer.db.models import BlacklistedPhoneDB, BookingDB
from campaign_dialer.models.call_outcome import BAD_NUMBER_ENDED_REASONS
from campaign_dialer.models.lead import (
    MIN_PHONE_DIGITS,
    Lead,
    is_truthy_evaluation,
    normalize_phone,
)

logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_address(address: str | None) -> str:
    """Trim, lowercase and collapse whitespace."""
    return _WHITESPACE.sub(" ", str(address or "").strip().lower())


@dataclass
class SuppressionSyncResult:
    """Counts from re-scanning lead rows into the registry."""

    processed: int = 0
    blacklisted: int = 0
    booked: int = 0


class SuppressionRegistry:
    """
    Numbers and addresses that must not be called.

    The blacklist only grows (apart from the operator's explicit clear);
    bookings are recorded when a call ends with a positive evaluation.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()

    # Blacklist

    async def is_blacklisted(self, phone: str | None) -> bool:
        key = normalize_phone(phone)
        if len(key) < MIN_PHONE_DIGITS:
            return False
        async with self._session_factory() as session:
            return await session.get(BlacklistedPhoneDB, key) is not None

    async def add_to_blacklist(self, phone: str | None) -> bool:
        """Add a phone; False when already listed or shorter than 10 digits."""
        key = normalize_phone(phone)
        if len(key) < MIN_PHONE_DIGITS:
            return False
        async with self._write_lock, self._session_factory() as session:
            if await session.get(BlacklistedPhoneDB, key) is not None:
                return False
            session.add(BlacklistedPhoneDB(phone=key))
            await session.commit()
        logger.info("Phone blacklisted", phone=key)
        return True

    async def clear_blacklist(self) -> int:
        async with self._write_lock, self._session_factory() as session:
            result = await session.execute(delete(BlacklistedPhoneDB))
            await session.commit()
        logger.info("Blacklist cleared", removed=result.rowcount)
        return result.rowcount

    async def blacklist_size(self) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(BlacklistedPhoneDB))
            return int(count or 0)

    # Bookings

    async def is_address_booked(self, address: str | None) -> bool:
        normalized = normalize_address(address)
        if not normalized:
            return False
        async with self._session_factory() as session:
            result = await session.execute(
                select(BookingDB.id).where(BookingDB.normalized_address == normalized)
            )
            return result.first() is not None

    async def add_booking(
        self,
        first_name: str,
        last_name: str,
        address: str,
        phone: str = "",
        transcript: str = "",
        campaign_id: str | None = None,
    ) -> bool:
        """Record a booking; False when the address is empty or already booked."""
        normalized = normalize_address(address)
        if not normalized:
            return False
        async with self._write_lock, self._session_factory() as session:
            existing = await session.execute(
                select(BookingDB.id).where(BookingDB.normalized_address == normalized)
            )
            if existing.first() is not None:
                return False
            session.add(
                BookingDB(
                    first_name=first_name or "",
                    last_name=last_name or "",
                    address=address.strip(),
                    normalized_address=normalized,
                    phone=phone or "",
                    transcript=transcript or "",
                    campaign_id=campaign_id,
                )
            )
            await session.commit()
        logger.info("Booking recorded", address=normalized, campaign_id=campaign_id)
        return True

    async def list_bookings(self) -> list[BookingDB]:
        async with self._session_factory() as session:
            result = await session.execute(select(BookingDB).order_by(BookingDB.created_at))
            return list(result.scalars())

    async def sync_from_leads(self, leads: Iterable[Lead]) -> SuppressionSyncResult:
        """
        Rebuild suppression entries from stored call outcomes.

        Rows that ended with a bad-number reason are blacklisted and rows
        with a positive evaluation are recorded as bookings.
        """
        counts = SuppressionSyncResult()
        for lead in leads:
            counts.processed += 1
            if lead.ended_reason in BAD_NUMBER_ENDED_REASONS:
                if await self.add_to_blacklist(lead.phone):
                    counts.blacklisted += 1
            if is_truthy_evaluation(lead.success_evaluation):
                added = await self.add_booking(
                    first_name=lead.first_name,
                    last_name=lead.last_name,
                    address=lead.address,
                    phone=lead.phone,
                    transcript=lead.transcript,
                )
                if added:
                    counts.booked += 1
        return counts
