# src/arcade_manual_rag/backend/pipelines/merge/chunks.py

"""
[职责] merge_chunks：把 source 手册的文本块合入 target，去重后插入，重复项以 source 元数据丰富 target。
[边界] 重复判定 = trim 后内容完全一致，或（页码区间重叠 且 前 200 字符一致）；丰富只补缺不覆盖。
[上游关系] merge/pipeline 在 validate 之后调用。
[下游关系] 返回 StageCounts（inserted -> merged_chunks，skipped -> skipped_chunk_duplicates，updated -> enriched_chunks）。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from arcade_manual_rag.backend.db.models.manual import ChunkModel
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.utils.constants import CHUNK_PREFIX_CHARS
from arcade_manual_rag.backend.utils.matching import normalize_content, pages_overlap, same_prefix

from .types import StageCounts
from .writes import guarded_write


def find_duplicate_chunk(source: ChunkModel, targets: Sequence[ChunkModel]) -> Optional[ChunkModel]:
    """
    [职责] 在 target 中寻找 source 的重复块。
    [边界] 精确内容匹配优先于"页码重叠 + 前缀"匹配。
    """
    content = normalize_content(source.content)
    for t in targets:
        if content and normalize_content(t.content) == content:
            return t
    for t in targets:
        if pages_overlap(source.page_start, source.page_end, t.page_start, t.page_end) and same_prefix(
            source.content, t.content, length=CHUNK_PREFIX_CHARS
        ):
            return t
    return None


def _enriched_meta(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """target 已有键保持不变，只补 source 独有键。"""
    merged = dict(source or {})
    merged.update(target or {})
    return merged


async def merge_chunks(
    ctx: PipelineContext,
    *,
    source_manual_id: str,
    target_manual_id: str,
    tenant_id: str,
) -> StageCounts:
    counts = StageCounts()
    sources = await ctx.chunk_repo.list_by_manual(source_manual_id, tenant_id=tenant_id)
    targets: List[ChunkModel] = await ctx.chunk_repo.list_by_manual(target_manual_id, tenant_id=tenant_id)

    for src in sources:
        dup = find_duplicate_chunk(src, targets)

        if dup is None:
            async def _insert(src: ChunkModel = src) -> None:
                created = await ctx.chunk_repo.create(
                    manual_id=target_manual_id,
                    tenant_id=tenant_id,
                    content=src.content,
                    page_start=src.page_start,
                    page_end=src.page_end,
                    section_path=list(src.section_path or []),
                    menu_path=list(src.menu_path or []),
                    meta_data=dict(src.meta_data or {}),
                    merged_from=source_manual_id,
                )
                targets.append(created)  # docstring: source 内部的重复块也只插入一次
                counts.created.append((str(src.id), str(created.id)))

            if await guarded_write(ctx, counts, stage="merge_chunks", record_id=src.id, write=_insert):
                counts.inserted += 1
            continue

        counts.skipped += 1

        meta = _enriched_meta(dict(dup.meta_data or {}), dict(src.meta_data or {}))
        fill_section = not dup.section_path and bool(src.section_path)
        fill_menu = not dup.menu_path and bool(src.menu_path)
        if meta == dict(dup.meta_data or {}) and not fill_section and not fill_menu:
            continue

        async def _enrich(dup: ChunkModel = dup, src: ChunkModel = src) -> None:
            dup.meta_data = meta
            if fill_section:
                dup.section_path = list(src.section_path)
            if fill_menu:
                dup.menu_path = list(src.menu_path)
            await ctx.chunk_repo.save(dup)

        if await guarded_write(ctx, counts, stage="merge_chunks", record_id=dup.id, write=_enrich):
            counts.updated += 1

    return counts
