# src/arcade_manual_rag/backend/db/repo/profile_repo.py

"""
[职责] ProfileRepo：bearer token 指纹 -> profile（租户归属）查找。
[边界] 不签发/校验 JWT；只按 sha256 指纹查表。
[上游关系] api/deps.get_tenant_id 调用。
[下游关系] merge 请求以解析出的 tenant_id 作为显式作用域参数。
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.utils.logging_ import hash_text

from ..models.tenant import ProfileModel


class ProfileRepo:
    """Profile repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_token(self, token: str) -> Optional[ProfileModel]:
        """按 token 的 sha256 指纹查找 profile。"""
        raw = str(token or "").strip()
        if not raw:
            return None
        stmt = select(ProfileModel).where(ProfileModel.token_sha256 == hash_text(raw))
        return await self._session.scalar(stmt)

    async def create(
        self,
        *,
        user_id: str,
        tenant_id: str,
        token: str,
        display_name: Optional[str] = None,
    ) -> ProfileModel:
        """Create a profile bound to a token fingerprint (seeding / tests)."""
        profile = ProfileModel(
            user_id=user_id,
            tenant_id=tenant_id,
            token_sha256=hash_text(token) or "",
            display_name=display_name,
        )
        self._session.add(profile)
        await self._session.flush()
        return profile
