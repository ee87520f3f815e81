# src/arcade_manual_rag/backend/utils/matching.py

"""
[职责] 候选匹配基础函数：词袋 Jaccard 相似度、页码区间重叠、内容前缀比对、问题文本归一化。
[边界] 纯函数；不做语义相似度；不依赖 DB/模型。
[上游关系] retrieval/diversity（MMR 冗余度）与 merge/chunks|figures|qa（去重判定）共用。
[下游关系] 决定 MMR 选择顺序与 merge 的 insert/enrich/skip 分支。
"""

from __future__ import annotations

import os
import re
import string
from typing import FrozenSet, Optional


_PUNCT_TABLE = str.maketrans("", "", string.punctuation)  # docstring: ASCII 标点删除表


def word_set(text: Optional[str]) -> FrozenSet[str]:
    """小写 + 空白切分的词集合（空文本返回空集）。"""
    return frozenset(t for t in str(text or "").lower().split() if t)


def set_jaccard(wa: FrozenSet[str], wb: FrozenSet[str]) -> float:
    """
    [职责] 词袋 Jaccard：|A∩B| / |A∪B|（输入为 word_set 结果，MMR 内循环复用）。
    [边界] 两侧均为空集时返回 0.0（无内容不视为重复）。
    """
    union = wa | wb
    if not union:
        return 0.0
    return len(wa & wb) / len(union)


def pages_overlap(
    a_start: Optional[int],
    a_end: Optional[int],
    b_start: Optional[int],
    b_end: Optional[int],
) -> bool:
    """
    [职责] 判断两个闭区间页码范围是否重叠。
    [边界] 任一侧起始页缺失即视为不重叠；结束页缺失时按单页处理。
    """
    if a_start is None or b_start is None:
        return False
    a_stop = a_end if a_end is not None else a_start
    b_stop = b_end if b_end is not None else b_start
    return a_start <= b_stop and b_start <= a_stop


def normalize_content(text: Optional[str]) -> str:
    """去除首尾空白后的内容（用于精确重复判定）。"""
    return str(text or "").strip()


def same_prefix(a: Optional[str], b: Optional[str], *, length: int) -> bool:
    """
    [职责] 比较两段内容（trim 后）前 length 个字符是否完全一致。
    [边界] 任一侧为空时返回 False。
    """
    na = normalize_content(a)
    nb = normalize_content(b)
    if not na or not nb:
        return False
    return na[:length] == nb[:length]


def normalize_question(text: Optional[str]) -> str:
    """问题文本归一化：小写、去标点、合并空白。"""
    lowered = str(text or "").lower().translate(_PUNCT_TABLE)
    return " ".join(lowered.split())


def path_basename(path: Optional[str]) -> str:
    """存储路径 basename（兼容 URL 与 posix 路径，忽略 query string）。"""
    raw = str(path or "").strip()
    if not raw:
        return ""
    raw = re.split(r"[?#]", raw, maxsplit=1)[0]
    return os.path.basename(raw.rstrip("/"))
