# src/arcade_manual_rag/backend/db/models/manual.py

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, TimestampMixin


class ManualModel(Base, TimestampMixin):
    """
    [职责] 手册实体（documents）：manual_id 作用域的根，携带租户归属与展示标题。
    [边界] 不存储正文与图片；正文在 ChunkModel，图片在 FigureModel，向量在 Milvus。
    [上游关系] 上传/导入流程创建（外部协作方）。
    [下游关系] 检索结果通过 manual_id -> title 批量查表补全 manual_title；merge 校验 source/target 存在性。
    """

    __tablename__ = "documents"

    manual_id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="手册ID（文档库分配）",  # docstring: 全系统的隔离边界
    )

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="所属租户ID",  # docstring: 每本手册只属于一个租户
    )

    title: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="手册标题（展示用）",  # docstring: 结果展示 manual_title
    )

    source_filename: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="源文件名",
    )

    chunks: Mapped[List["ChunkModel"]] = relationship(
        "ChunkModel",
        back_populates="manual",
        cascade="all, delete-orphan",
    )

    figures: Mapped[List["FigureModel"]] = relationship(
        "FigureModel",
        back_populates="manual",
        cascade="all, delete-orphan",
    )


class ManualMetadataModel(Base, TimestampMixin):
    """
    [职责] 手册元数据（manual_metadata）：厂商/版本/平台/标签/别名/页数/质量分。
    [边界] 仅存描述性字段；merge 时按 set-union / max / 空值填充规则合并，不做破坏性覆盖。
    """

    __tablename__ = "manual_metadata"

    manual_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("documents.manual_id", ondelete="CASCADE"),
        primary_key=True,
        comment="手册ID（一对一）",
    )

    canonical_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manufacturer: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    platform: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)  # docstring: 标签集合（list 存储）
    aliases: Mapped[list] = mapped_column(JSON, default=list, nullable=False)  # docstring: 别名集合（list 存储）

    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quality_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class ChunkModel(Base, TimestampMixin):
    """
    [职责] 文本块（chunks_text）：手册正文切片，带页码区间与章节路径。
    [边界] 不存向量（Milvus 以 id 作为 record_id 关联）；FTS 索引由 db/fts.py 触发器同步。
    [上游关系] ingest（外部）写入；merge 插入/丰富。
    [下游关系] keyword/substring 检索；rundown 用 section_path 聚类。
    """

    __tablename__ = "chunks_text"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="文本块ID（UUID字符串）",
    )

    manual_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("documents.manual_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="所属手册ID",
    )

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="所属租户ID（冗余，便于作用域过滤）",
    )

    content: Mapped[str] = mapped_column(Text, nullable=False, comment="正文")

    page_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    page_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    section_path: Mapped[list] = mapped_column(JSON, default=list, nullable=False)  # docstring: 章节路径（顶层在前）
    menu_path: Mapped[list] = mapped_column(JSON, default=list, nullable=False)  # docstring: 菜单路径（section_path 缺失时兜底）

    meta_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)  # docstring: 结构化元数据（merge 时浅合并）

    merged_from: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="合并来源手册ID（merge 插入时写入）",
    )

    manual: Mapped["ManualModel"] = relationship("ManualModel", back_populates="chunks")


class FigureModel(Base, TimestampMixin):
    """
    [职责] 图片/图表（figures）：页码、标签、存储路径、分类、caption/OCR 与视觉元数据。
    [边界] 不存二进制；storage_path 指向对象存储（外部协作方）。
    [上游关系] ingest/vision 处理（外部）写入；merge 插入/丰富。
    [下游关系] keyword 检索以 caption/ocr/keywords 作为描述文本；figure_type 决定 rerank 后的加权。
    """

    __tablename__ = "figures"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="图片ID（UUID字符串）",
    )

    manual_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("documents.manual_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    page_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    figure_label: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    figure_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # docstring: 分类（diagram/text/sectionHeader 等）

    caption_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ocr_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    component: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    topics: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    keywords: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    detected_components: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    vision_metadata: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    merged_from: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    manual: Mapped["ManualModel"] = relationship("ManualModel", back_populates="figures")

    def description(self) -> str:
        """检索用描述文本：caption / OCR / keywords 拼接。"""  # docstring: figure 的 content 字段来源
        parts = [self.caption_text or "", self.ocr_text or "", " ".join(str(k) for k in (self.keywords or []))]
        return " ".join(p.strip() for p in parts if p and p.strip())
