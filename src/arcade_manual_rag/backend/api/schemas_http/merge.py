# src/arcade_manual_rag/backend/api/schemas_http/merge.py

"""
[职责] /merge-manual-data 的 HTTP 合同：MergeRequest / MergeResponse（各类别计数）。
[边界] ID 的存在性/相同性校验由 merge pipeline 负责（BadRequest/NotFound）。
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MergeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_manual_id: Optional[str] = Field(default=None)
    target_manual_id: Optional[str] = Field(default=None)


class MergeResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool = True
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
    failed_items: int = 0  # docstring: PartialWriteFailure 计数（既非合并也非重复）
    qa_store: str = ""
    total_items_merged: int = 0
    merged_vectors: int = 0  # docstring: 提交后复制到 Milvus 的向量实体数
    message: str = ""
    trace_id: Optional[str] = None
    request_id: Optional[str] = None
