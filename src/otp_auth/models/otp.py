"""SQLAlchemy model backing the relational OTP store."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from otp_auth.models.user import Base


class OTPRow(Base):
    """One row per identity; re-issuing a code replaces the row."""

    __tablename__ = "otps"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    code_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (Index("ix_otps_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<OTPRow email={self.email!r} expires_at={self.expires_at} verified={self.verified}>"
