# src/arcade_manual_rag/backend/pipelines/retrieval/scoring.py

"""
[职责] rerank 之后的确定性打分调整：
       1) Content-Type Score Adjuster：文本类 figure 惩罚、真实视觉 figure 提升；
       2) Visual-Intent Booster：与高分文本同页的 figure 锚点提升 + 视觉意图 query 的额外提升。
[边界] 纯函数，无外部调用；不修改输入对象（返回新列表）；乘数来自 constants，可经 retrieval config 覆盖。
[上游关系] retrieval pipeline 在 rerank 之后依次调用 adjust_content_type -> apply_visual_boost。
[下游关系] diversity（MMR）以调整后的 effective_score 为相关性。
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Set

from arcade_manual_rag.backend.utils.constants import (
    ANCHOR_BOOST,
    ANCHOR_TEXT_WINDOW,
    TEXT_FIGURE_PENALTY,
    TEXT_LIKE_FIGURE_MARKERS,
    VISUAL_FIGURE_BOOST,
    VISUAL_INTENT_BOOST,
    VISUAL_INTENT_TERMS,
)

from .types import BASE_SCORE_KEY, Candidate, sort_by_effective_score


_ADJUST_BASE_KEY = "content_type_base"  # docstring: 内容类型调整前的分数（保证重复调用幂等）
_VISUAL_BASE_KEY = "visual_base"  # docstring: 视觉提升前的分数


def _compact(value: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


def is_text_like_figure(figure_type: Optional[str], markers: Iterable[str] = TEXT_LIKE_FIGURE_MARKERS) -> bool:
    """figure_type 是否属于“文本类”分类（section header / 纯文本片段）。"""
    compact = _compact(figure_type)
    if not compact:
        return False
    return any(_compact(m) and _compact(m) in compact for m in markers)


def _with_effective(cand: Candidate, value: float, details: dict) -> Candidate:
    """写回排序依据字段：已 rerank 写 rerank_score，否则写 score（首次覆盖前保留原始分）。"""
    if cand.rerank_score is not None:
        return replace(cand, rerank_score=value, score_details=details)
    return replace(cand, score=value, score_details={**details, BASE_SCORE_KEY: cand.base_score})


def adjust_content_type(
    candidates: Sequence[Candidate],
    *,
    text_figure_penalty: float = TEXT_FIGURE_PENALTY,
    visual_figure_boost: float = VISUAL_FIGURE_BOOST,
    markers: Iterable[str] = TEXT_LIKE_FIGURE_MARKERS,
) -> List[Candidate]:
    """
    [职责] figure 按分类施加固定乘数，随后全体按 effective_score 降序重排。
    [边界] 幂等：乘数总是作用于首次调整前记录的基准分，重复调用结果不变。
    """
    marker_list = list(markers)
    out: List[Candidate] = []
    for cand in candidates:
        if not cand.is_figure:
            out.append(cand)
            continue
        base = float(cand.score_details.get(_ADJUST_BASE_KEY, cand.effective_score))
        text_like = is_text_like_figure(cand.figure_type, marker_list)
        multiplier = text_figure_penalty if text_like else visual_figure_boost
        details = {
            **cand.score_details,
            _ADJUST_BASE_KEY: base,
            "content_type_multiplier": multiplier,
            "text_like_figure": text_like,
        }
        out.append(_with_effective(cand, base * multiplier, details))
    return sort_by_effective_score(out)


def detect_visual_intent(query: str, terms: Iterable[str] = VISUAL_INTENT_TERMS) -> bool:
    """整词、大小写不敏感的视觉意图检测（非模型分类）。"""
    words = [re.escape(t) for t in terms if t]
    if not words:
        return False
    pattern = r"\b(?:" + "|".join(words) + r")\b"
    return re.search(pattern, str(query or ""), flags=re.IGNORECASE) is not None


def anchor_pages(candidates: Sequence[Candidate], *, window: int = ANCHOR_TEXT_WINDOW) -> Set[int]:
    """当前排序下前 window 个文本候选的 page_start 集合。"""
    texts = [c for c in sort_by_effective_score(list(candidates)) if not c.is_figure]
    return {c.page_start for c in texts[: max(int(window), 0)] if c.page_start is not None}


def apply_visual_boost(
    candidates: Sequence[Candidate],
    *,
    visual_intent: bool,
    anchor_boost: float = ANCHOR_BOOST,
    intent_boost: float = VISUAL_INTENT_BOOST,
    window: int = ANCHOR_TEXT_WINDOW,
) -> List[Candidate]:
    """
    [职责] figure 锚点提升（同页）与意图提升，乘法叠加后重排。
    [边界] 文本候选不变；基准分记录在 score_details，重复调用不叠加。
    """
    anchors = anchor_pages(candidates, window=window)
    out: List[Candidate] = []
    for cand in candidates:
        if not cand.is_figure:
            out.append(cand)
            continue
        base = float(cand.score_details.get(_VISUAL_BASE_KEY, cand.effective_score))
        anchored = cand.page_start is not None and cand.page_start in anchors
        multiplier = 1.0
        if anchored:
            multiplier *= anchor_boost
        if visual_intent:
            multiplier *= intent_boost
        details = {
            **cand.score_details,
            _VISUAL_BASE_KEY: base,
            "anchor_boost": anchored,
            "intent_boost": bool(visual_intent),
        }
        out.append(_with_effective(cand, base * multiplier, details))
    return sort_by_effective_score(out)
