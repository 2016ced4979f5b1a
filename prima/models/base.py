"""Shared model mixins and column helpers."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, func
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from prima.core.clock import utcnow


class TimestampMixin:
    """Adds created_at/updated_at columns maintained on insert and update."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


def enum_column(enum_cls: type[Enum]) -> SQLEnum:
    """VARCHAR-backed enum storing member values rather than names."""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=50,
        values_callable=lambda members: [member.value for member in members],
    )
