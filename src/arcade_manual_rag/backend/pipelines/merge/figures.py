# src/arcade_manual_rag/backend/pipelines/merge/figures.py

"""
[职责] merge_figures：按 page_number + (figure_label | storage_path | basename) 匹配 figure；匹配则丰富，未匹配且有图片引用则插入。
[边界] 丰富规则：keywords 取并集；空字段才填充；JSON 对象浅合并（target 已有键优先）；被丰富的 figure 在 vision_metadata 中写入 merged_from。
       丰富后无任何变化的匹配记为重复跳过；没有 storage_path 的未匹配 figure 不合入。
[上游关系] merge/pipeline 在 merge_chunks 之后调用。
[下游关系] StageCounts.inserted -> merged_figures，updated -> updated_figures，skipped -> skipped_figure_duplicates。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from arcade_manual_rag.backend.db.models.manual import FigureModel
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.utils.constants import MERGED_FROM_KEY
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event
from arcade_manual_rag.backend.utils.matching import path_basename

from .types import StageCounts
from .writes import guarded_write


logger = get_logger("merge.figures")

_FILL_FIELDS = ("figure_label", "storage_path", "figure_type", "caption_text", "ocr_text", "component")
_JSON_FIELDS = ("detected_components", "vision_metadata")


def _same_text(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and str(a).strip() == str(b).strip()


def figures_match(source: FigureModel, target: FigureModel) -> bool:
    if source.page_number != target.page_number:
        return False
    if _same_text(source.figure_label, target.figure_label):
        return True
    if _same_text(source.storage_path, target.storage_path):
        return True
    return _same_text(path_basename(source.storage_path), path_basename(target.storage_path))


def find_matching_figure(source: FigureModel, targets: Sequence[FigureModel]) -> Optional[FigureModel]:
    for t in targets:
        if figures_match(source, t):
            return t
    return None


def _union(target: Sequence[Any], source: Sequence[Any]) -> List[Any]:
    out = list(target or [])
    for item in source or []:
        if item not in out:
            out.append(item)
    return out


def enrichment_changes(target: FigureModel, source: FigureModel) -> Dict[str, Any]:
    """
    [职责] 计算 source 对 target 的丰富字段（只返回会变化的字段）。
    [边界] 返回空 dict 即为完全重复；merged_from 标记不在此处计算。
    """
    changes: Dict[str, Any] = {}

    for name in _FILL_FIELDS:
        if not getattr(target, name) and getattr(source, name):
            changes[name] = getattr(source, name)

    if not (target.topics or []) and (source.topics or []):
        changes["topics"] = list(source.topics)

    keywords = _union(target.keywords or [], source.keywords or [])
    if keywords != list(target.keywords or []):
        changes["keywords"] = keywords

    for name in _JSON_FIELDS:
        current = dict(getattr(target, name) or {})
        incoming = {k: v for k, v in dict(getattr(source, name) or {}).items() if k != MERGED_FROM_KEY}
        merged = {**incoming, **current}
        if merged != current:
            changes[name] = merged

    return changes


async def merge_figures(
    ctx: PipelineContext,
    *,
    source_manual_id: str,
    target_manual_id: str,
    tenant_id: str,
) -> StageCounts:
    counts = StageCounts()
    sources = await ctx.figure_repo.list_by_manual(source_manual_id, tenant_id=tenant_id)
    targets: List[FigureModel] = await ctx.figure_repo.list_by_manual(target_manual_id, tenant_id=tenant_id)

    for src in sources:
        match = find_matching_figure(src, targets)

        if match is not None:
            changes = enrichment_changes(match, src)
            if not changes:
                counts.skipped += 1
                continue

            vision = dict(changes.get("vision_metadata") or match.vision_metadata or {})
            vision[MERGED_FROM_KEY] = source_manual_id
            changes["vision_metadata"] = vision

            async def _enrich(match: FigureModel = match, changes: Dict[str, Any] = changes) -> None:
                for name, value in changes.items():
                    setattr(match, name, value)
                await ctx.figure_repo.save(match)

            if await guarded_write(ctx, counts, stage="merge_figures", record_id=match.id, write=_enrich):
                counts.updated += 1
            continue

        if not (src.storage_path or "").strip():
            log_event(
                logger,
                logging.DEBUG,
                "figure without storage path not merged",
                context=ctx,
                fields={"figure_id": src.id, "page_number": src.page_number},
            )
            continue

        async def _insert(src: FigureModel = src) -> None:
            created = await ctx.figure_repo.create(
                manual_id=target_manual_id,
                tenant_id=tenant_id,
                merged_from=source_manual_id,
                **ctx.figure_repo.copyable_fields(src),
            )
            targets.append(created)
            counts.created.append((str(src.id), str(created.id)))

        if await guarded_write(ctx, counts, stage="merge_figures", record_id=src.id, write=_insert):
            counts.inserted += 1

    return counts
