# src/arcade_manual_rag/backend/pipelines/retrieval/diversity.py

"""
[职责] Diversity Selector（MMR）：在相关性与冗余度之间贪心选择子集，避免返回近似重复的段落。
[边界] 相似度为小写+空白切分词集合的 Jaccard（词袋重叠，非语义）；不做重新打分。
[上游关系] retrieval pipeline 在打分调整之后调用。
[下游关系] isolation 过滤与 assemble 分区使用选择结果。
"""

from __future__ import annotations

from typing import FrozenSet, List, Sequence

from arcade_manual_rag.backend.utils.constants import MMR_LAMBDA, MMR_TARGET_COUNT
from arcade_manual_rag.backend.utils.matching import set_jaccard, word_set

from .types import Candidate


def mmr_select(
    candidates: Sequence[Candidate],
    *,
    target_count: int = MMR_TARGET_COUNT,
    lam: float = MMR_LAMBDA,
) -> List[Candidate]:
    """
    [职责] MMR 贪心选择：每步最大化 lam*relevance + (1-lam)*(1 - max_sim_to_selected)。
    [边界] len(candidates) <= target_count 时原样返回（必须的短路）；首个选择恒为最高相关性候选；
           同分时保留输入顺序中靠前者。复杂度 O(target_count * remaining)。
    """
    items = list(candidates)
    if len(items) <= int(target_count):
        return items
    if int(target_count) <= 0:
        return []

    bags: List[FrozenSet[str]] = [word_set(c.content) for c in items]
    remaining = list(range(len(items)))

    seed = max(remaining, key=lambda i: (items[i].effective_score, -i))  # docstring: 最高相关性；同分取靠前
    selected = [seed]
    remaining.remove(seed)

    while remaining and len(selected) < int(target_count):
        best_idx = remaining[0]
        best_score = float("-inf")
        for i in remaining:
            max_sim = max(set_jaccard(bags[i], bags[j]) for j in selected)
            mmr = lam * items[i].effective_score + (1.0 - lam) * (1.0 - max_sim)
            if mmr > best_score:
                best_score = mmr
                best_idx = i
        selected.append(best_idx)
        remaining.remove(best_idx)

    return [items[i] for i in selected]
