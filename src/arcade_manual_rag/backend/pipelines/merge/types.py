# src/arcade_manual_rag/backend/pipelines/merge/types.py

"""
[职责] Merge types：合并报告与阶段计数器（各 stage 共享）。
[边界] 仅数据结构；不访问 DB。
[上游关系] merge/chunks|figures|qa|metadata 产出 StageCounts。
[下游关系] merge/pipeline 汇总为 MergeReport；HTTP 层直接序列化 to_dict()。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass
class StageCounts:
    """单阶段计数：inserted / updated / skipped / failed。"""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)  # docstring: 失败记录 id（仅日志/调试）
    created: List[Tuple[str, str]] = field(default_factory=list)  # docstring: (source record id, new record id)


@dataclass(frozen=True)
class MergeReport:
    """
    [职责] 一次 merge 的结构化报告（各类别计数 + 来源/目标回显）。
    [边界] total_items_merged = 新插入 chunk + figure 插入/丰富 + 新增 QA（失败项不计入）。
    """

    source_manual_id: str
    target_manual_id: str
    merged_chunks: int = 0
    skipped_chunk_duplicates: int = 0
    enriched_chunks: int = 0
    merged_figures: int = 0
    updated_figures: int = 0
    skipped_figure_duplicates: int = 0
    added_qa: int = 0
    skipped_qa_duplicates: int = 0
    metadata_updated: bool = False
    failed_items: int = 0
    qa_store: str = ""
    record_copies: Tuple[Tuple[str, str], ...] = ()  # docstring: 新插入 chunk/figure 的 (源 id, 新 id)，提交后复制向量；不进入 to_dict
    success: bool = True
    message: str = "Manual data merged successfully"

    @property
    def total_items_merged(self) -> int:
        return self.merged_chunks + self.merged_figures + self.updated_figures + self.added_qa

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "source_manual_id": self.source_manual_id,
            "target_manual_id": self.target_manual_id,
            "merged_chunks": self.merged_chunks,
            "skipped_chunk_duplicates": self.skipped_chunk_duplicates,
            "enriched_chunks": self.enriched_chunks,
            "merged_figures": self.merged_figures,
            "updated_figures": self.updated_figures,
            "skipped_figure_duplicates": self.skipped_figure_duplicates,
            "added_qa": self.added_qa,
            "skipped_qa_duplicates": self.skipped_qa_duplicates,
            "metadata_updated": self.metadata_updated,
            "failed_items": self.failed_items,
            "qa_store": self.qa_store,
            "total_items_merged": self.total_items_merged,
            "message": self.message,
        }
