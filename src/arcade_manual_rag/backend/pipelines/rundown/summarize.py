# src/arcade_manual_rag/backend/pipelines/rundown/summarize.py

"""
[职责] rundown 摘要：把检索结果按顶层章节聚类，生成每节 gist（清洗后的拼接正文）与引用。
[边界] 纯文本处理，不调用 LLM；不访问 DB（section_path 由 service 预先补全）。
[上游关系] services/rundown_service 在检索完成后调用 cluster_sections。
[下游关系] HTTP 层直接序列化 RundownSection 列表。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from arcade_manual_rag.backend.utils.constants import (
    RUNDOWN_GIST_MAX_CHARS,
    RUNDOWN_GIST_MIN_CHARS,
    RUNDOWN_MAX_CITATIONS,
    RUNDOWN_MAX_SECTIONS,
    RUNDOWN_MIN_SNIPPET_CHARS,
    RUNDOWN_SECTION_TITLE_MAX,
)


DEFAULT_SECTION = "General"

_HTML_COMMENT = re.compile(r"<!--[\s\S]{0,500}?-->")
_PAGE_MARK = re.compile(r"\bPage\s+(?:[0-9IVX]+)\b", re.IGNORECASE)
_PAGE_HEADER_LINE = re.compile(r"^\s*#\s*Page\s+[0-9IVX]+\s*$", re.IGNORECASE | re.MULTILINE)
_PART_NUMBER = re.compile(r"\bP/N\s*[:#]?\s*[A-Z0-9\-.]{3,}\b", re.IGNORECASE)
_REVISION = re.compile(r"\bREV\.?\s*[A-Z]?(?:,\s*)?\d{1,2}/\d{2}\b", re.IGNORECASE)
_LINE_BREAKS = re.compile(r"[\r\n]+")
_SPACED_CAPS = re.compile(r"\b[A-Z](?:\s+[A-Z]){2,}\b")
_SPACED_LOWER = re.compile(r"\b[a-z](?:\s+[a-z]){3,}\b")
_LETTER_PARADE = re.compile(r"\b(?:[A-Za-z]\s+){4,}[A-Za-z]\b")
_HYPHEN_SPLIT = re.compile(r"(\w)[-–]\s+(\w)")
_BULLETS = re.compile("[·•●▪︎◦_]+")
_MULTI_SPACE = re.compile(r"\s{2,}")
_JUNK_GIST = re.compile(r"table of contents|installation manual\s+cover", re.IGNORECASE)


def _squash(match: "re.Match[str]") -> str:
    return re.sub(r"\s+", "", match.group(0))


def normalize_gist(raw: Optional[str]) -> str:
    """
    [职责] 清洗 PDF 抽取噪声：HTML 注释、页眉页脚、料号/版本码、逐字母空格、断行连字符、项目符号、多余空白。
    [边界] 只删除"看起来像代码"的 P/N 与 REV；正文中的普通单词 page 不受影响（只删 "Page <数字|罗马数字>"）。
    """
    s = str(raw or "")
    s = _HTML_COMMENT.sub(" ", s)
    s = _PAGE_MARK.sub(" ", s)
    s = _PAGE_HEADER_LINE.sub(" ", s)
    s = _PART_NUMBER.sub(" ", s)
    s = _REVISION.sub(" ", s)
    s = _LINE_BREAKS.sub(" ", s)  # docstring: 先把换行转空格，逐行字母随后按空格规则折叠
    s = _SPACED_CAPS.sub(_squash, s)
    s = _SPACED_LOWER.sub(_squash, s)
    s = _LETTER_PARADE.sub(_squash, s)
    s = _HYPHEN_SPLIT.sub(r"\1\2", s)
    s = _BULLETS.sub(" ", s)
    return _MULTI_SPACE.sub(" ", s).strip()


@dataclass(frozen=True)
class RundownSnippet:
    """聚类输入：一条检索结果的正文与章节路径。"""

    manual_id: Optional[str]
    content: str
    page_start: Optional[int] = None
    section_path: List[str] = field(default_factory=list)
    menu_path: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RundownSection:
    title: str
    gist: str
    citations: List[Dict[str, object]]


def section_key(snippet: RundownSnippet) -> str:
    """顶层章节：section_path[0] -> menu_path[0] -> General，截断到 80 字符。"""
    if snippet.section_path:
        top = snippet.section_path[0]
    elif snippet.menu_path:
        top = snippet.menu_path[0]
    else:
        top = DEFAULT_SECTION
    return str(top)[:RUNDOWN_SECTION_TITLE_MAX]


def cluster_sections(
    snippets: Sequence[RundownSnippet],
    *,
    max_sections: int = RUNDOWN_MAX_SECTIONS,
) -> List[RundownSection]:
    """
    [职责] 按顶层章节分桶，桶按成员数降序取前 max_sections 个，逐桶生成 gist 与引用。
    [边界] gist 过短（< 120）或像目录/封面的桶被丢弃，因此返回数可能小于 max_sections；
           同样大小的桶保持首次出现顺序。
    """
    buckets: Dict[str, List[RundownSnippet]] = {}
    for snip in snippets:
        buckets.setdefault(section_key(snip), []).append(snip)

    ranked = sorted(buckets.items(), key=lambda kv: len(kv[1]), reverse=True)[: max(int(max_sections), 0)]

    sections: List[RundownSection] = []
    for title, members in ranked:
        joined = " ".join(
            m.content for m in members if m.content and len(m.content) > RUNDOWN_MIN_SNIPPET_CHARS
        )
        gist = normalize_gist(joined)[:RUNDOWN_GIST_MAX_CHARS]
        if len(gist) < RUNDOWN_GIST_MIN_CHARS or _JUNK_GIST.search(gist):
            continue
        citations = [{"manual_id": m.manual_id, "page": m.page_start} for m in members[:RUNDOWN_MAX_CITATIONS]]
        sections.append(RundownSection(title=title, gist=gist, citations=citations))
    return sections


def summary_sentence(system: Optional[str]) -> str:
    return f"High-level overview of {system or 'the requested system'}."
