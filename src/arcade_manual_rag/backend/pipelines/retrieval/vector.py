# src/arcade_manual_rag/backend/pipelines/retrieval/vector.py

"""
[职责] dense 策略：query embedding + Milvus 相似度检索（manual/tenant 作用域、最低相似度阈值、top_k 上限），映射为 Candidate。
[边界] 仅执行向量检索与分数归一化；不做 rerank/打分调整；embedding 或向量库失败抛 ExternalDependencyError。
[上游关系] cascade.CandidateRetriever 按顺序调用 retrieve；依赖 QueryEmbedder 与 MilvusRepo。
[下游关系] 命中数 >= min_hits 时直接作为最终候选集；否则作为级联的后备结果。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, cast

from pymilvus.exceptions import MilvusException

from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.kb.schema import (
    CONTENT_FIELD,
    CONTENT_TYPE_FIELD,
    FIGURE_TYPE_FIELD,
    MANUAL_ID_FIELD,
    PAGE_END_FIELD,
    PAGE_START_FIELD,
    PAYLOAD_FIELDS,
    RECORD_ID_FIELD,
    TENANT_ID_FIELD,
    build_expr_for_scope,
)
from arcade_manual_rag.backend.utils.constants import DENSE_MIN_SCORE, DENSE_SUFFICIENT_HITS, STRATEGY_VECTOR
from arcade_manual_rag.backend.utils.errors import ExternalDependencyError

from .embedding import QueryEmbedder
from .types import Candidate, ContentType, RetrievalConstraints, coerce_page


MetricType = Literal["IP", "L2", "COSINE"]


def _normalize_metric_type(metric_type: Optional[str]) -> MetricType:
    mt = str(metric_type or "COSINE").strip().upper()
    if mt in {"IP", "L2", "COSINE"}:
        return cast(MetricType, mt)
    return cast(MetricType, "COSINE")


def _normalize_vector_score(raw_score: float, metric_type: MetricType) -> float:
    """向量距离/相似度统一为“越大越好”。"""
    if metric_type == "L2":
        dist = float(raw_score) if raw_score >= 0 else 0.0
        return 1.0 / (1.0 + dist)
    return float(raw_score)


def _hit_to_candidate(hit: Dict[str, Any], *, metric_type: MetricType) -> Optional[Candidate]:
    """
    [职责] Milvus hit -> Candidate。
    [边界] 缺失 record_id / manual_id / tenant_id 的 hit 直接丢弃（违反候选归属不变量）。
    """
    payload = hit.get("payload") or {}
    record_id = payload.get(RECORD_ID_FIELD)
    manual_id = payload.get(MANUAL_ID_FIELD)
    tenant_id = payload.get(TENANT_ID_FIELD)
    if not record_id or not manual_id or not tenant_id:
        return None

    raw_score = float(hit.get("score") or 0.0)
    norm_score = _normalize_vector_score(raw_score, metric_type)
    content_type: ContentType = "figure" if str(payload.get(CONTENT_TYPE_FIELD) or "") == "figure" else "text"

    return Candidate(
        record_id=str(record_id),
        content=str(payload.get(CONTENT_FIELD) or ""),
        content_type=content_type,
        manual_id=str(manual_id),
        tenant_id=str(tenant_id),
        page_start=coerce_page(payload.get(PAGE_START_FIELD)),
        page_end=coerce_page(payload.get(PAGE_END_FIELD)),
        figure_type=str(payload.get(FIGURE_TYPE_FIELD) or "") or None,
        score=norm_score,
        source="vector",
        score_details={
            "raw_score": raw_score,
            "metric_type": metric_type,
            "vector_id": str(hit.get("vector_id") or ""),
        },
    )


class DenseStrategy:
    """
    [职责] 级联第 1 级：向量相似度检索。
    [边界] milvus_repo 缺失（未配置向量库）时视为上游不可用。
    """

    name = STRATEGY_VECTOR
    last_resort = False

    def __init__(
        self,
        *,
        embedder: QueryEmbedder,
        milvus_repo: Optional[MilvusRepo],
        collection: str,
        min_score: float = DENSE_MIN_SCORE,
        min_hits: int = DENSE_SUFFICIENT_HITS,
        metric_type: Optional[str] = None,
    ) -> None:
        self._embedder = embedder
        self._milvus_repo = milvus_repo
        self._collection = collection
        self.min_score = float(min_score)
        self.min_hits = int(min_hits)
        self._metric_type = _normalize_metric_type(metric_type)

    async def retrieve(self, query: str, constraints: RetrievalConstraints) -> List[Candidate]:
        if int(constraints.top_k) <= 0:
            return []
        if self._milvus_repo is None:
            raise ExternalDependencyError("vector store not configured", detail={"collection": self._collection})

        vector = await self._embedder.embed_query(query)  # docstring: 失败抛 ExternalDependencyError，级联进入下一策略
        expr = build_expr_for_scope(manual_id=constraints.manual_id, tenant_id=constraints.tenant_id)
        try:
            results = await self._milvus_repo.search(
                collection=self._collection,
                query_vectors=[vector],
                top_k=int(constraints.top_k),
                expr=expr,
                output_fields=list(PAYLOAD_FIELDS),
                metric_type=self._metric_type,
            )
        except MilvusException as exc:
            raise ExternalDependencyError(
                "vector search failed",
                detail={"collection": self._collection},
                cause=exc,
            ) from exc

        hits = results[0] if results else []
        candidates: List[Candidate] = []
        for h in hits:
            cand = _hit_to_candidate(h, metric_type=self._metric_type)
            if cand is None or cand.score < self.min_score:
                continue  # docstring: 低于相似度阈值不进入候选
            candidates.append(cand)
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[: int(constraints.top_k)]
