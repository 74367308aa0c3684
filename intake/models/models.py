from __future__ import annotations

import datetime as dt

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from intake.db.base_class import Base
from intake.utils.id_generator import generate_id


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _post_id() -> str:
    return generate_id("PST")


class Post(Base):
    """A news article, event, or course hole that may own one stored image.

    ``image_url`` holds the relative URL returned by the storage layer; it is
    rewritten against the current base URL on every read and deleted from
    disk by whoever clears or replaces it.
    """

    id: Mapped[str] = mapped_column(String(40), primary_key=True, default=_post_id)
    category: Mapped[str] = mapped_column(String(32), index=True)
    title: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text, default="")
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
