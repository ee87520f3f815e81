# src/arcade_manual_rag/backend/db/repo/figure_repo.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.manual import FigureModel


class FigureRepo:
    """
    [职责] FigureRepo：图片记录读写（按手册列举、插入、丰富后回写）。
    [边界] 不访问对象存储；storage_path 仅作为引用字符串。
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_by_manual(self, manual_id: str, *, tenant_id: Optional[str] = None) -> List[FigureModel]:
        stmt = select(FigureModel).where(FigureModel.manual_id == str(manual_id))
        if tenant_id:
            stmt = stmt.where(FigureModel.tenant_id == str(tenant_id))  # docstring: 显式租户作用域
        stmt = stmt.order_by(FigureModel.page_number, FigureModel.created_at)
        return list((await self._session.execute(stmt)).scalars().all())

    async def create(self, *, manual_id: str, tenant_id: str, **fields: Any) -> FigureModel:
        """Insert a figure; unknown keys raise TypeError from the model constructor."""
        figure = FigureModel(manual_id=manual_id, tenant_id=tenant_id, **fields)
        self._session.add(figure)
        await self._session.flush()
        return figure

    async def save(self, figure: FigureModel) -> FigureModel:
        self._session.add(figure)
        await self._session.flush()
        return figure

    async def get(self, figure_id: str) -> Optional[FigureModel]:
        return await self._session.get(FigureModel, str(figure_id))

    @staticmethod
    def copyable_fields(figure: FigureModel) -> Dict[str, Any]:
        """源记录中可复制到目标手册的字段（不含 id / 归属 / 时间戳）。"""
        return {
            "page_number": figure.page_number,
            "figure_label": figure.figure_label,
            "storage_path": figure.storage_path,
            "figure_type": figure.figure_type,
            "caption_text": figure.caption_text,
            "ocr_text": figure.ocr_text,
            "component": figure.component,
            "topics": list(figure.topics or []),
            "keywords": list(figure.keywords or []),
            "detected_components": dict(figure.detected_components or {}),
            "vision_metadata": dict(figure.vision_metadata or {}),
        }
