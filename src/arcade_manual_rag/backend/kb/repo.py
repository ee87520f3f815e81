# src/arcade_manual_rag/backend/kb/repo.py

"""
[职责] Milvus 数据访问仓储：封装向量实体的 upsert/search/query，作为向量侧的唯一数据接口。
[边界] 不负责 SQL 写入；不负责 rerank/打分调整；不依赖 LlamaIndex。
[上游关系] kb/client.py 提供 MilvusClient；kb/schema.py 定义字段契约与 payload 字段。
[下游关系] pipelines/retrieval/vector.py 使用 search；pipelines/merge/vectors.py 使用 query_by_expr + upsert_embeddings 复制合并记录的向量。
"""

from __future__ import annotations

import inspect
from typing import Any, Dict, List, Optional

from .client import MilvusClient
from .schema import EMBEDDING_FIELD, PAYLOAD_FIELDS, RECORD_ID_FIELD, VECTOR_ID_FIELD


class MilvusRepo:
    """
    Repository for Milvus vector storage operations.
    """

    def __init__(self, client: MilvusClient) -> None:
        self._client = client  # docstring: MilvusClient（连接与 collection 管理封装）

    async def healthcheck(self) -> str:
        return await self._client.healthcheck()

    async def upsert_embeddings(self, *, collection: str, entities: List[Dict[str, Any]]) -> None:
        """
        Upsert vector entities into collection.

        entities: list of dict keyed by schema fields (vector_id, embedding, record_id, content, ...)
        """
        col = await self._client.get_collection(collection)
        await self._maybe_await(col.upsert(entities))
        await self._maybe_await(col.flush())  # docstring: 保证随后检索可见

    async def search(
        self,
        *,
        collection: str,
        query_vectors: List[List[float]],
        top_k: int,
        expr: Optional[str] = None,
        output_fields: Optional[List[str]] = None,
        metric_type: Optional[str] = None,
        search_params: Optional[Dict[str, Any]] = None,
    ) -> List[List[Dict[str, Any]]]:
        """
        Vector search.

        Returns:
          list per query vector; each item is
            {"vector_id": str, "score": float, "payload": dict}
        """
        col = await self._client.get_collection(collection)

        fields = list(output_fields or PAYLOAD_FIELDS)
        if RECORD_ID_FIELD not in fields:
            fields.insert(0, RECORD_ID_FIELD)

        mt = str(metric_type or "COSINE").strip().upper()
        params = dict(search_params or {"ef": 128, "nprobe": 16})
        call = col.search(
            data=query_vectors,
            anns_field=EMBEDDING_FIELD,
            param={"metric_type": mt, "params": params},
            limit=int(top_k),
            expr=expr,  # docstring: manual/tenant scope
            output_fields=fields,
        )
        raw = await self._maybe_await(call)

        out: List[List[Dict[str, Any]]] = []
        for hits in raw:
            q_res: List[Dict[str, Any]] = []
            for h in hits:
                vector_id = getattr(h, "id", None)
                score = getattr(h, "score", None)
                entity = getattr(h, "entity", None)
                payload: Dict[str, Any] = {}
                if entity is not None:
                    getter = getattr(entity, "get", None)
                    for f in fields:
                        payload[f] = getter(f) if callable(getter) else getattr(entity, f, None)
                q_res.append(
                    {
                        "vector_id": str(vector_id) if vector_id is not None else "",
                        "score": float(score) if score is not None else 0.0,
                        "payload": payload,
                    }
                )
            out.append(q_res)
        return out

    async def query_by_expr(
        self,
        *,
        collection: str,
        expr: str,
        output_fields: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Scalar query (no ANN); returns entity dicts including the embedding by default."""
        col = await self._client.get_collection(collection)
        fields = list(output_fields or [VECTOR_ID_FIELD, EMBEDDING_FIELD, *PAYLOAD_FIELDS])
        raw = await self._maybe_await(col.query(expr=expr, output_fields=fields))
        return [dict(row) for row in raw or []]

    @staticmethod
    async def _maybe_await(value: Any) -> Any:
        """Normalize pymilvus calls across versions: some return plain values, others awaitables."""
        if inspect.isawaitable(value):
            return await value
        return value
