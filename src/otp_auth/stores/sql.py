"""Relational OTP store backed by SQLAlchemy (asyncio)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from otp_auth.models.otp import OTPRow
from otp_auth.stores.base import OTPRecord, OTPStore, utcnow

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _to_record(row: OTPRow) -> OTPRecord:
    return OTPRecord(
        identity=row.email,
        code_hash=row.code_hash,
        issued_at=_aware(row.issued_at),
        expires_at=_aware(row.expires_at),
        consumed=row.verified,
        attempts=row.attempts,
    )


class SqlOTPStore(OTPStore):
    """OTP records in the ``otps`` table, one row per email.

    Consumption flips ``verified`` with a conditional ``UPDATE`` so the
    database decides which of several concurrent verifications wins.
    Consumed and expired rows stay until :meth:`purge_expired` runs.
    """

    storage_type = "database"
    durable = True

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _live(self, identity: str, now: datetime):
        return (
            OTPRow.email == identity,
            OTPRow.verified.is_(False),
            OTPRow.expires_at > now,
        )

    async def put(self, record: OTPRecord) -> None:
        try:
            await self._replace(record)
        except IntegrityError:
            # A concurrent put for the same email inserted first; retry so
            # the latest writer wins.
            logger.debug("Concurrent OTP put for %s, retrying", record.identity)
            await self._replace(record)

    async def _replace(self, record: OTPRecord) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(delete(OTPRow).where(OTPRow.email == record.identity))
            session.add(
                OTPRow(
                    email=record.identity,
                    code_hash=record.code_hash,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                    verified=False,
                    attempts=record.attempts,
                )
            )

    async def take_if_present(self, identity: str) -> OTPRecord | None:
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            row = (
                await session.execute(select(OTPRow).where(*self._live(identity, now)))
            ).scalar_one_or_none()
            if row is None:
                return None
            record = _to_record(row)
            result = await session.execute(
                update(OTPRow)
                .where(*self._live(identity, now), OTPRow.code_hash == record.code_hash)
                .values(verified=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
        record.consumed = True
        return record

    async def peek(self, identity: str) -> OTPRecord | None:
        now = self._clock()
        async with self._session_factory() as session:
            row = (
                await session.execute(select(OTPRow).where(*self._live(identity, now)))
            ).scalar_one_or_none()
            return _to_record(row) if row else None

    async def consume(self, identity: str, code_hash: str) -> bool:
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(OTPRow)
                .where(*self._live(identity, now), OTPRow.code_hash == code_hash)
                .values(verified=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def register_failure(self, identity: str, code_hash: str) -> int:
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(OTPRow)
                .where(*self._live(identity, now), OTPRow.code_hash == code_hash)
                .values(attempts=OTPRow.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return 0
            attempts = await session.scalar(
                select(OTPRow.attempts).where(OTPRow.email == identity)
            )
            return int(attempts or 0)

    async def purge_expired(self) -> int:
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(OTPRow)
                .where(or_(OTPRow.expires_at <= now, OTPRow.verified.is_(True)))
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("Purged %d expired or used OTP rows", result.rowcount)
        return result.rowcount or 0

    async def count_active(self) -> int:
        now = self._clock()
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(OTPRow)
                .where(OTPRow.verified.is_(False), OTPRow.expires_at > now)
            )
            return int(count or 0)
