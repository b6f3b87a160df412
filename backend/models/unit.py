"""Unit model for DB persistence."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from models import Base


class Unit(Base):
    """Unit table: one row per physical device, keyed by id; lot is unique."""

    __tablename__ = "unit"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    lot: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    # charging | ready | in-use | at-clinic | maintenance
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ready")
    # office | clinic
    location: Mapped[str] = mapped_column(String(16), nullable=False, default="office")
    battery_level: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    charging_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_charged_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_disconnected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_deep_charge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Set by the projector when a clinic deep charge completes; cleared only by manual disconnect.
    needs_manual_disconnection: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    clinic_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    clinic_city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
