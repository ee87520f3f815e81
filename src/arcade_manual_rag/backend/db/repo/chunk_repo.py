# src/arcade_manual_rag/backend/db/repo/chunk_repo.py

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.manual import ChunkModel


class ChunkRepo:
    """
    [职责] ChunkRepo：文本块读写（按手册列举、按 id 批量回查、插入/丰富）。
    [边界] 不做去重判定；FTS 同步由触发器负责。
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_by_manual(self, manual_id: str, *, tenant_id: Optional[str] = None) -> List[ChunkModel]:
        stmt = select(ChunkModel).where(ChunkModel.manual_id == str(manual_id))
        if tenant_id:
            stmt = stmt.where(ChunkModel.tenant_id == str(tenant_id))  # docstring: 显式租户作用域
        stmt = stmt.order_by(ChunkModel.page_start, ChunkModel.created_at)
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_many(self, chunk_ids: Iterable[str]) -> Dict[str, ChunkModel]:
        ids = [str(c) for c in chunk_ids if c]
        if not ids:
            return {}
        stmt = select(ChunkModel).where(ChunkModel.id.in_(ids))
        return {c.id: c for c in (await self._session.execute(stmt)).scalars().all()}

    async def create(
        self,
        *,
        manual_id: str,
        tenant_id: str,
        content: str,
        page_start: Optional[int] = None,
        page_end: Optional[int] = None,
        section_path: Optional[List[str]] = None,
        menu_path: Optional[List[str]] = None,
        meta_data: Optional[Dict[str, Any]] = None,
        merged_from: Optional[str] = None,
    ) -> ChunkModel:
        chunk = ChunkModel(
            manual_id=manual_id,
            tenant_id=tenant_id,
            content=content,
            page_start=page_start,
            page_end=page_end,
            section_path=list(section_path or []),
            menu_path=list(menu_path or []),
            meta_data=dict(meta_data or {}),
            merged_from=merged_from,
        )
        self._session.add(chunk)
        await self._session.flush()  # docstring: 获取 chunk.id（UUID default）
        return chunk

    async def save(self, chunk: ChunkModel) -> ChunkModel:
        """Flush in-place changes (enrich)."""
        self._session.add(chunk)
        await self._session.flush()
        return chunk
