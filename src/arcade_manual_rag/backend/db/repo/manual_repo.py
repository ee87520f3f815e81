# src/arcade_manual_rag/backend/db/repo/manual_repo.py

"""
[职责] ManualRepo：手册与手册元数据的数据访问（存在性校验、标题批量查找、元数据读写）。
[边界] 不做合并规则（由 pipelines/merge/metadata.py 负责）；不提交事务。
[上游关系] services（search/merge）与 pipelines 通过 PipelineContext 获取。
[下游关系] 结果组装补全 manual_title；merge validate 阶段校验 source/target。
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.manual import ManualMetadataModel, ManualModel


class ManualRepo:
    """Manual repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session  # docstring: DB 会话（由 deps 注入）

    async def get(self, manual_id: str) -> Optional[ManualModel]:
        mid = str(manual_id or "").strip()
        if not mid:
            return None
        return await self._session.get(ManualModel, mid)

    async def titles_for(self, manual_ids: Iterable[str]) -> Dict[str, str]:
        """
        [职责] 单次批量查询 manual_id -> title。
        [边界] 标题为空的手册不返回；调用方负责回退为 manual_id。
        """
        ids: List[str] = sorted({str(m) for m in manual_ids if m})
        if not ids:
            return {}
        stmt = select(ManualModel.manual_id, ManualModel.title).where(ManualModel.manual_id.in_(ids))
        rows = (await self._session.execute(stmt)).all()
        return {str(mid): str(title) for mid, title in rows if title}

    async def create(
        self,
        *,
        manual_id: str,
        tenant_id: str,
        title: Optional[str] = None,
        source_filename: Optional[str] = None,
    ) -> ManualModel:
        """Create a manual row (seeding / external ingest)."""
        manual = ManualModel(
            manual_id=manual_id,
            tenant_id=tenant_id,
            title=title,
            source_filename=source_filename,
        )
        self._session.add(manual)
        await self._session.flush()
        return manual

    async def get_metadata(self, manual_id: str) -> Optional[ManualMetadataModel]:
        return await self._session.get(ManualMetadataModel, str(manual_id))

    async def add_metadata(self, metadata: ManualMetadataModel) -> ManualMetadataModel:
        self._session.add(metadata)
        await self._session.flush()
        return metadata
