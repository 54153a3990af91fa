from typing import Optional

from sqlalchemy import String, Text, Float, Index
from sqlalchemy.orm import Mapped, mapped_column

from fleet.db.session import Base

class StoreEntry(Base):
    """One key of the SQL-backed Lease Store."""
    __tablename__ = "fleet_store"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    # Epoch seconds; NULL never expires (completion markers)
    expires_at: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_fleet_store_expires_at", "expires_at"),
    )
