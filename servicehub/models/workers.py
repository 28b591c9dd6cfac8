"""
Worker model - field technicians ("pros") that can be assigned to requests.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import String, Boolean, DateTime, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.lib.db import Base


class Worker(Base):
    """
    Worker entity.

    Coverage is the declared ``postal_code`` and/or ``city``; a worker with
    neither is available everywhere. ``skills`` are free-text tags matched
    fuzzily against the requested service.
    """
    __tablename__ = "workers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Coverage
    city: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, index=True)

    skills: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Worker(id={self.id}, name={self.name}, postal_code={self.postal_code})>"
