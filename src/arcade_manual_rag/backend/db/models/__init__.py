# src/arcade_manual_rag/backend/db/models/__init__.py

"""
[职责] db.models 聚合导出：集中声明 ORM Models，供 init_db 注册元数据与应用层统一导入。
[边界] 仅做导入与 __all__ 暴露；不包含任何业务逻辑。
[上游关系] 依赖各模型文件（manual/qa/tenant）。
[下游关系] backend.db.engine / repo 层 / 测试 fixture 导入本模块以加载元数据。
"""

from __future__ import annotations

from ..base import Base
from .manual import ChunkModel, FigureModel, ManualMetadataModel, ManualModel
from .qa import GoldenQuestionModel, ManualQuestionModel
from .tenant import ProfileModel

__all__ = [
    # base
    "Base",
    # manuals
    "ManualModel",
    "ManualMetadataModel",
    "ChunkModel",
    "FigureModel",
    # qa pairs
    "GoldenQuestionModel",
    "ManualQuestionModel",
    # auth
    "ProfileModel",
]
