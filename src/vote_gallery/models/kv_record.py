# src/vote_gallery/models/kv_record.py
"""Key-value records backing the local single-writer vote store."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from vote_gallery.db.session import Base


class KeyValueRecord(Base):
    """Serialized value stored under a fixed key.

    The local vote store keeps the whole ``imageId -> {voter: vote}``
    structure as one JSON document and rewrites it wholesale.
    """

    __tablename__ = "kv_record"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
