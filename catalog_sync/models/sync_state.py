# catalog_sync/models/sync_state.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db import Base


class SyncState(Base):
    __tablename__ = "sync_state"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)   # "catalog" | "prices" | "duplicates" | "seed"
    last_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # ok | error
    seed_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)            # json summary of the last run
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
