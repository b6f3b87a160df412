"""Alert model for DB persistence."""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from models import Base


class Alert(Base):
    """Alert table. id is derived from the condition it represents, never random."""

    __tablename__ = "alert"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    unit_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("unit.id", ondelete="CASCADE"),
        nullable=False,
    )
    unit_code: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dismissed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
