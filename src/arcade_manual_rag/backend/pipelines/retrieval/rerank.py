# src/arcade_manual_rag/backend/pipelines/retrieval/rerank.py

"""
[职责] Cross-Encoder Reranker：把 query 与候选文本提交给相关性模型，写入 rerank_score 并按其排序（可截断到 top-N 窗口）。
[边界] 软失败：服务不可用 / 未配置 / 候选为空时原样返回输入（reranked=False），pipeline 以降级模式继续。
[上游关系] retrieval pipeline 在级联检索之后调用 rerank()；Reranker 由 service 依据 settings 装配。
[下游关系] scoring / diversity 以 rerank_score（effective_score）为唯一排序依据。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, Sequence, Tuple

import cohere

from arcade_manual_rag.backend.utils.constants import RERANK_MAX_CHARS, RERANK_TOP_N
from arcade_manual_rag.backend.utils.errors import ExternalDependencyError
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event

from .types import Candidate


logger = get_logger("retrieval.rerank")


class Reranker(Protocol):
    """相关性模型协议：返回 (输入下标, 相关性分数) 列表，按相关性降序。"""

    name: str
    model: str

    async def score(self, *, query: str, documents: Sequence[str], top_n: int) -> List[Tuple[int, float]]: ...


class CohereReranker:
    """Cohere rerank endpoint (AsyncClientV2)."""

    name = "cohere"

    def __init__(self, *, model: str, api_key: Optional[str] = None, client: Optional[cohere.AsyncClientV2] = None) -> None:
        self.model = model
        self._client = client or cohere.AsyncClientV2(api_key=api_key)

    async def score(self, *, query: str, documents: Sequence[str], top_n: int) -> List[Tuple[int, float]]:
        try:
            response = await self._client.rerank(
                model=self.model,
                query=query,
                documents=list(documents),
                top_n=int(top_n),
            )
        except Exception as exc:  # cohere/httpx raise heterogeneous transport errors
            raise ExternalDependencyError(
                "rerank service unavailable",
                detail={"provider": self.name, "model": self.model},
                cause=exc,
            ) from exc
        return [(int(r.index), float(r.relevance_score)) for r in response.results]


@dataclass(frozen=True)
class RerankOutcome:
    candidates: List[Candidate]
    reranked: bool
    error: Optional[str] = None


def truncate_for_model(text: str, max_chars: int = RERANK_MAX_CHARS) -> str:
    """静默截断到模型输入上限（不影响候选本身的 content）。"""
    return str(text or "")[: max(int(max_chars), 0)]


async def rerank(
    *,
    query: str,
    candidates: Sequence[Candidate],
    reranker: Optional[Reranker],
    top_n: int = RERANK_TOP_N,
    max_chars: int = RERANK_MAX_CHARS,
    context: Optional[object] = None,
) -> RerankOutcome:
    """
    [职责] 执行 rerank：提交截断后的文本，按模型返回的下标回填 rerank_score。
    [边界] 输出长度 <= min(top_n, len(candidates))；任何上游异常降级为直通。
    """
    items = list(candidates)
    if not items or reranker is None:
        return RerankOutcome(candidates=items, reranked=False)

    window = min(int(top_n), len(items))
    documents = [truncate_for_model(c.content, max_chars) for c in items]
    try:
        scored = await reranker.score(query=query, documents=documents, top_n=window)
    except ExternalDependencyError as exc:
        log_event(
            logger,
            logging.WARNING,
            "reranker unavailable, continuing unranked",
            context=context,
            fields={"provider": getattr(reranker, "name", None), "error": exc.message, "candidates": len(items)},
        )
        return RerankOutcome(candidates=items, reranked=False, error=exc.message)

    out: List[Candidate] = []
    seen = set()
    for index, relevance in scored:
        if index < 0 or index >= len(items) or index in seen:
            continue  # docstring: 忽略越界/重复下标
        seen.add(index)
        cand = items[index]
        out.append(
            replace(
                cand,
                rerank_score=float(relevance),
                score_details={**cand.score_details, "rerank_raw": float(relevance)},
            )
        )
    if not out:
        return RerankOutcome(candidates=items, reranked=False, error="empty rerank response")
    out.sort(key=lambda c: c.effective_score, reverse=True)
    return RerankOutcome(candidates=out[:window], reranked=True)
