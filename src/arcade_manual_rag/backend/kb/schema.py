# src/arcade_manual_rag/backend/kb/schema.py

"""
[职责] Milvus collection 契约：字段名常量、collection spec、pymilvus schema 构造与 scope 过滤表达式。
[边界] 不建立连接；不执行检索；只定义结构与表达式。
[上游关系] config 提供 collection 名与向量维度。
[下游关系] kb/client.py 建表/建索引；kb/repo.py 与 retrieval/vector.py 使用字段常量与 build_expr_for_scope。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence

from pymilvus import CollectionSchema, DataType, FieldSchema


MetricType = Literal["IP", "L2", "COSINE"]
IndexType = Literal["HNSW", "IVF_FLAT", "IVF_SQ8", "AUTOINDEX"]

VECTOR_ID_FIELD = "vector_id"  # docstring: 主键（VARCHAR）
EMBEDDING_FIELD = "embedding"  # docstring: 向量字段
RECORD_ID_FIELD = "record_id"  # docstring: chunks_text.id / figures.id
CONTENT_FIELD = "content"  # docstring: 候选文本（文本块正文或图片描述）
CONTENT_TYPE_FIELD = "content_type"  # docstring: "text" | "figure"
MANUAL_ID_FIELD = "manual_id"
TENANT_ID_FIELD = "tenant_id"
PAGE_START_FIELD = "page_start"  # docstring: 0 表示未知页码
PAGE_END_FIELD = "page_end"
FIGURE_TYPE_FIELD = "figure_type"  # docstring: 空串表示无分类

PAYLOAD_FIELDS: List[str] = [
    RECORD_ID_FIELD,
    CONTENT_FIELD,
    CONTENT_TYPE_FIELD,
    MANUAL_ID_FIELD,
    TENANT_ID_FIELD,
    PAGE_START_FIELD,
    PAGE_END_FIELD,
    FIGURE_TYPE_FIELD,
]  # docstring: 检索返回的 payload 字段（构造 Candidate 所需全部字段）

_CONTENT_MAX_LEN = 8192
_ID_MAX_LEN = 128


@dataclass(frozen=True)
class CollectionSpec:
    """collection 参数快照（建表/建索引/检索共用）。"""

    name: str
    embed_dim: int
    metric_type: MetricType = "COSINE"
    index_type: IndexType = "HNSW"
    default_top_k: int = 75
    description: str = ""

    def index_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.index_type == "HNSW":
            params = {"M": 16, "efConstruction": 200}
        elif self.index_type in ("IVF_FLAT", "IVF_SQ8"):
            params = {"nlist": 1024}
        return {"index_type": self.index_type, "metric_type": self.metric_type, "params": params}


def build_collection_spec(
    *,
    name: str,
    embed_dim: int,
    metric_type: MetricType = "COSINE",
    index_type: IndexType = "HNSW",
    default_top_k: int = 75,
    description: str = "Arcade manual chunks and figures",
) -> CollectionSpec:
    if not str(name or "").strip():
        raise ValueError("collection name is required")
    if int(embed_dim) <= 0:
        raise ValueError("embed_dim must be > 0")
    return CollectionSpec(
        name=str(name).strip(),
        embed_dim=int(embed_dim),
        metric_type=metric_type,
        index_type=index_type,
        default_top_k=int(default_top_k),
        description=description,
    )


def build_collection_schema(spec: CollectionSpec) -> CollectionSchema:
    """CollectionSpec -> pymilvus CollectionSchema。"""
    fields = [
        FieldSchema(name=VECTOR_ID_FIELD, dtype=DataType.VARCHAR, is_primary=True, max_length=64),
        FieldSchema(name=EMBEDDING_FIELD, dtype=DataType.FLOAT_VECTOR, dim=spec.embed_dim),
        FieldSchema(name=RECORD_ID_FIELD, dtype=DataType.VARCHAR, max_length=64),
        FieldSchema(name=CONTENT_FIELD, dtype=DataType.VARCHAR, max_length=_CONTENT_MAX_LEN),
        FieldSchema(name=CONTENT_TYPE_FIELD, dtype=DataType.VARCHAR, max_length=16),
        FieldSchema(name=MANUAL_ID_FIELD, dtype=DataType.VARCHAR, max_length=_ID_MAX_LEN),
        FieldSchema(name=TENANT_ID_FIELD, dtype=DataType.VARCHAR, max_length=_ID_MAX_LEN),
        FieldSchema(name=PAGE_START_FIELD, dtype=DataType.INT64),
        FieldSchema(name=PAGE_END_FIELD, dtype=DataType.INT64),
        FieldSchema(name=FIGURE_TYPE_FIELD, dtype=DataType.VARCHAR, max_length=64),
    ]
    return CollectionSchema(fields=fields, description=spec.description)


def _quote(value: str) -> str:
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_expr_for_scope(
    *,
    manual_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> Optional[str]:
    """
    [职责] 构造 Milvus 布尔过滤表达式（manual_id / tenant_id 显式作用域）。
    [边界] 两者都为空时返回 None（不过滤）。
    """
    clauses: List[str] = []
    if manual_id:
        clauses.append(f"{MANUAL_ID_FIELD} == {_quote(manual_id)}")
    if tenant_id:
        clauses.append(f"{TENANT_ID_FIELD} == {_quote(tenant_id)}")
    if not clauses:
        return None
    return " and ".join(clauses)


def build_expr_for_records(record_ids: Sequence[str]) -> Optional[str]:
    """record_id in [...]；空列表返回 None（调用方应跳过查询）。"""
    ids = [str(r) for r in record_ids if r]
    if not ids:
        return None
    return f"{RECORD_ID_FIELD} in [{', '.join(_quote(r) for r in ids)}]"
