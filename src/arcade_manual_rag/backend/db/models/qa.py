# src/arcade_manual_rag/backend/db/models/qa.py

"""
[职责] QA 对的两套存储表：golden_questions（主 schema）与 manual_questions（迁移前的备用 schema）。
[边界] 两表字段命名不同（question/expected_answer vs question_text/answer_text）；由 QuestionAnswerStore 适配器屏蔽差异。
[上游关系] QA 生成流程（外部）写入。
[下游关系] merge/qa 通过 db/repo/qa_repo 的适配器按顺序选择可用 store。
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


class GoldenQuestionModel(Base, TimestampMixin):
    """golden_questions：question / expected_answer / category。"""

    __tablename__ = "golden_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    manual_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("documents.manual_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    expected_answer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    meta_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class ManualQuestionModel(Base, TimestampMixin):
    """manual_questions（旧 schema）：question_text / answer_text。"""

    __tablename__ = "manual_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    manual_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("documents.manual_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    answer_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
