# src/arcade_manual_rag/backend/db/models/tenant.py

from __future__ import annotations

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


class ProfileModel(Base, TimestampMixin):
    """
    [职责] 用户 profile：bearer token 指纹 -> 租户归属。
    [边界] 只存 token 的 sha256；会话/签发由外部认证平台负责。
    [上游关系] 认证平台（外部）同步。
    [下游关系] api/deps.get_tenant_id 解析 merge 请求的租户。
    """

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    token_sha256: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
