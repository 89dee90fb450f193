"""
SQLAlchemy ORM models
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, String, TIMESTAMP, func
from sqlalchemy.orm import Mapped, mapped_column

from subtracker.infrastructure.db.session import Base


class KeyValueEntry(Base):
    """
    Namespaced key-value storage.

    Holds the serialized subscription list, its local mirror, migration flags
    and the pending reminder action record. Values are JSON documents.
    """
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value_json: Mapped[Any] = mapped_column(JSON, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
