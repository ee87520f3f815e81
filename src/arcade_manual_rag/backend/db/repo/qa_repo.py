# src/arcade_manual_rag/backend/db/repo/qa_repo.py

"""
[职责] QuestionAnswerStore：QA 对的存储抽象 + 两个具体适配器（golden_questions / manual_questions）。
[边界] 适配器只做字段映射与读写；去重由 pipelines/merge/qa.py 负责；不提交事务。
[上游关系] merge pipeline 按顺序传入 stores，由 select_store 选择本次使用的 schema。
[下游关系] merge/qa 读取 source/target QA 并插入缺失问题。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import func, inspect as sa_inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.qa import GoldenQuestionModel, ManualQuestionModel


@dataclass(frozen=True)
class QAPair:
    """schema 无关的 QA 对。"""

    question: str
    answer: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class QuestionAnswerStore(Protocol):
    """QA 存储协议：适配器按 table 区分，调用方不感知字段命名差异。"""

    name: str

    async def is_available(self) -> bool: ...

    async def count(self, manual_id: str) -> int: ...

    async def list_pairs(self, manual_id: str) -> List[QAPair]: ...

    async def add_pair(self, *, manual_id: str, tenant_id: str, pair: QAPair) -> None: ...


class _TableStore:
    """共享实现：表存在性探测 + count。"""

    name = ""
    model: Any = None

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def is_available(self) -> bool:
        conn = await self._session.connection()
        table = self.model.__tablename__
        return bool(await conn.run_sync(lambda sync_conn: sa_inspect(sync_conn).has_table(table)))

    async def count(self, manual_id: str) -> int:
        stmt = select(func.count()).select_from(self.model).where(self.model.manual_id == str(manual_id))
        return int(await self._session.scalar(stmt) or 0)


class GoldenQuestionStore(_TableStore):
    """主 schema：golden_questions(question, expected_answer)。"""

    name = "golden_questions"
    model = GoldenQuestionModel

    async def list_pairs(self, manual_id: str) -> List[QAPair]:
        stmt = select(GoldenQuestionModel).where(GoldenQuestionModel.manual_id == str(manual_id))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            QAPair(
                question=r.question,
                answer=r.expected_answer,
                meta={**dict(r.meta_data or {}), "category": r.category} if r.category else dict(r.meta_data or {}),
            )
            for r in rows
        ]

    async def add_pair(self, *, manual_id: str, tenant_id: str, pair: QAPair) -> None:
        meta = dict(pair.meta or {})
        category = meta.pop("category", None)
        self._session.add(
            GoldenQuestionModel(
                manual_id=manual_id,
                tenant_id=tenant_id,
                question=pair.question,
                expected_answer=pair.answer,
                category=category,
                meta_data=meta,
            )
        )
        await self._session.flush()


class ManualQuestionStore(_TableStore):
    """备用 schema：manual_questions(question_text, answer_text)。"""

    name = "manual_questions"
    model = ManualQuestionModel

    async def list_pairs(self, manual_id: str) -> List[QAPair]:
        stmt = select(ManualQuestionModel).where(ManualQuestionModel.manual_id == str(manual_id))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [QAPair(question=r.question_text, answer=r.answer_text, meta=dict(r.meta_data or {})) for r in rows]

    async def add_pair(self, *, manual_id: str, tenant_id: str, pair: QAPair) -> None:
        self._session.add(
            ManualQuestionModel(
                manual_id=manual_id,
                tenant_id=tenant_id,
                question_text=pair.question,
                answer_text=pair.answer,
                meta_data=dict(pair.meta or {}),
            )
        )
        await self._session.flush()


def default_qa_stores(session: AsyncSession) -> List[QuestionAnswerStore]:
    """按优先级排列的 QA stores（主 schema 在前）。"""
    return [GoldenQuestionStore(session), ManualQuestionStore(session)]


async def select_store(
    stores: Sequence[QuestionAnswerStore],
    *,
    manual_id: str,
) -> Optional[QuestionAnswerStore]:
    """
    [职责] 按顺序选择 QA store：第一个可用且持有该手册 QA 的 store；都没有数据时取第一个可用 store。
    [边界] 没有任何可用 store 时返回 None（QA 阶段记为 0 条）。
    """
    available: List[QuestionAnswerStore] = []
    for store in stores:
        if not await store.is_available():
            continue
        available.append(store)
        if await store.count(manual_id) > 0:
            return store
    return available[0] if available else None
