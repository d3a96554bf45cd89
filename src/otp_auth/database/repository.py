"""User repository — data access layer for login bookkeeping."""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otp_auth.models.user import LoginUser


class UserRepository:
    """Encapsulates all database queries related to logged-in users."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_email(self, email: str) -> LoginUser | None:
        """Look up a user by their normalized email."""
        stmt = select(LoginUser).where(LoginUser.email == email)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_login(self, email: str) -> LoginUser:
        """Create the user on first login, otherwise bump the counters."""
        now = datetime.now(UTC)
        user = await self.find_by_email(email)
        if user is None:
            user = LoginUser(email=email, first_login=now, last_login=now, login_count=1)
            self._session.add(user)
        else:
            user.last_login = now
            user.login_count = (user.login_count or 0) + 1
        await self._session.flush()
        return user


class LoginRecorder:
    """Callable the OTP service invokes after each successful login."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def __call__(self, email: str) -> None:
        async with self._session_factory() as session:
            await UserRepository(session).record_login(email)
            await session.commit()
