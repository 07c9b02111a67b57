"""
models/record.py
----------------
Named JSON record collection.

Each row holds one whole collection (tenants, tenant-requests, alumni,
email-log) serialised as JSON text, plus the last-known-good previous value
in `backup`. Payloads are stored as text, not a native JSON column, so a
damaged primary payload can be detected on load and recovered from the
backup instead of failing inside the driver.
"""

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin


class RecordCollection(Base, TimestampMixin):
    __tablename__ = "record_collections"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    backup: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<RecordCollection name={self.name}>"
