# src/arcade_manual_rag/backend/db/base.py

"""
[职责] ORM 基座：DeclarativeBase 与通用时间戳 mixin。
[边界] 不定义业务表；不创建 engine。
[上游关系] 无。
[下游关系] db/models/* 继承 Base/TimestampMixin；engine.init_db 使用 Base.metadata。
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    """created_at / updated_at（UTC）。"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
        comment="创建时间（UTC）",  # docstring: merge 复制记录时不继承源记录时间
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
        comment="更新时间（UTC）",  # docstring: enrich 更新时自动刷新
    )
