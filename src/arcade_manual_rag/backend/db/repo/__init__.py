# src/arcade_manual_rag/backend/db/repo/__init__.py

"""
[职责] db.repo 聚合导出：集中暴露仓储（Repo）对象，供 service / pipeline 层调用。
[边界] 仅做导入与 __all__ 暴露；不包含业务编排。
[上游关系] 依赖各 repo 模块（manual/chunk/figure/qa/profile）。
[下游关系] PipelineContext 按 session 装配；测试用例可直接引用以做 gate tests。
"""

from __future__ import annotations

from .chunk_repo import ChunkRepo
from .figure_repo import FigureRepo
from .manual_repo import ManualRepo
from .profile_repo import ProfileRepo
from .qa_repo import (
    GoldenQuestionStore,
    ManualQuestionStore,
    QAPair,
    QuestionAnswerStore,
    default_qa_stores,
    select_store,
)

__all__ = [
    "ManualRepo",
    "ChunkRepo",
    "FigureRepo",
    "ProfileRepo",
    "QAPair",
    "QuestionAnswerStore",
    "GoldenQuestionStore",
    "ManualQuestionStore",
    "default_qa_stores",
    "select_store",
]
