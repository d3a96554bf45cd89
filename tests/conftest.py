"""Shared fixtures: a controllable clock and a mailer that records codes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from otp_auth.errors import DeliveryFailure


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingMailer:
    """Stands in for the SMTP email service; never actually sends emails."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send_code(self, to_email: str, code: str, ttl_minutes: int) -> None:
        if self.fail:
            raise DeliveryFailure("SMTP down")
        self.sent.append((to_email, code))

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()
