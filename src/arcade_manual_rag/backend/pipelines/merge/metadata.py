# src/arcade_manual_rag/backend/pipelines/merge/metadata.py

"""
[职责] merge_metadata：合并手册元数据（tags/aliases 并集；page_count/quality_score 取最大；厂商/版本/平台只填空；notes 带来源标记拼接）。
[边界] source 无元数据时为空操作；target 无元数据时新建一行再按同一规则合并。重复合并不会重复拼接同一段 notes。
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

from arcade_manual_rag.backend.db.models.manual import ManualMetadataModel
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.utils.constants import NOTES_PROVENANCE_TEMPLATE

from .types import StageCounts
from .writes import guarded_write


_FILL_FIELDS = ("canonical_title", "manufacturer", "version", "platform")


def _union(target: Sequence[Any], source: Sequence[Any]) -> List[Any]:
    out = list(target or [])
    for item in source or []:
        if item not in out:
            out.append(item)
    return out


def _max_of(a: Optional[float], b: Optional[float]) -> Optional[float]:
    values = [v for v in (a, b) if v is not None]
    return max(values) if values else None


def merged_notes(target_notes: Optional[str], source_notes: Optional[str], *, source_manual_id: str) -> Optional[str]:
    src = (source_notes or "").strip()
    if not src:
        return target_notes
    block = f"{NOTES_PROVENANCE_TEMPLATE.format(source_manual_id=source_manual_id)} {src}"
    current = (target_notes or "").strip()
    if block in current:
        return target_notes
    return f"{current}\n\n{block}" if current else block


def apply_metadata_merge(target: ManualMetadataModel, source: ManualMetadataModel, *, source_manual_id: str) -> bool:
    """就地合并；返回是否有字段变化。"""
    changed = False

    def _set(name: str, value: Any) -> None:
        nonlocal changed
        if getattr(target, name) != value:
            setattr(target, name, value)
            changed = True

    _set("tags", _union(target.tags or [], source.tags or []))
    _set("aliases", _union(target.aliases or [], source.aliases or []))
    _set("page_count", _max_of(target.page_count, source.page_count))
    _set("quality_score", _max_of(target.quality_score, source.quality_score))
    for name in _FILL_FIELDS:
        if not getattr(target, name) and getattr(source, name):
            _set(name, getattr(source, name))
    _set("notes", merged_notes(target.notes, source.notes, source_manual_id=source_manual_id))
    return changed


async def merge_metadata(
    ctx: PipelineContext,
    *,
    source_manual_id: str,
    target_manual_id: str,
) -> StageCounts:
    counts = StageCounts()
    source = await ctx.manual_repo.get_metadata(source_manual_id)
    if source is None:
        return counts

    changed = False

    async def _write() -> None:
        nonlocal changed
        target = await ctx.manual_repo.get_metadata(target_manual_id)
        if target is None:
            target = ManualMetadataModel(manual_id=target_manual_id, tags=[], aliases=[])
        changed = apply_metadata_merge(target, source, source_manual_id=source_manual_id)
        if changed:
            await ctx.manual_repo.add_metadata(target)

    if await guarded_write(ctx, counts, stage="merge_metadata", record_id=target_manual_id, write=_write) and changed:
        counts.updated += 1
    return counts
