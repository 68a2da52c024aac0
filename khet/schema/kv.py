from __future__ import annotations

import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from khet.core.database import Base


class KeyValueEntry(Base):
  __tablename__ = "kv_entries"

  key: Mapped[str] = mapped_column(String(255), primary_key=True)
  value: Mapped[str] = mapped_column(Text, nullable=False)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
