# src/arcade_manual_rag/backend/utils/constants.py

"""
[职责] 集中定义检索/合并的默认调参常量与协议字段名（trace/timing/strategy），降低跨模块硬编码。
[边界] 不读取环境变量；不包含运行时可变配置（per-request 覆盖由 retrieval pipeline 的 config 归一化负责）。
[上游关系] pipelines/services/api 在构建请求、日志与响应时引用。
[下游关系] 调参值均为经验值，可通过 config mapping 覆盖后重新调优。
"""

from __future__ import annotations


# --- retrieval: candidate cascade ---
DEFAULT_TOP_K = 75  # docstring: 检索候选上限（HTTP 默认值）
DENSE_MIN_SCORE = 0.18  # docstring: 向量相似度下限（低于此值不进入候选）
DENSE_SUFFICIENT_HITS = 3  # docstring: 向量命中数 >= 该值时不再尝试后续策略
SUBSTRING_FLAT_SCORE = 0.5  # docstring: 子串检索的统一合成分数

STRATEGY_VECTOR = "vector_search"  # docstring: 策略标签：向量检索
STRATEGY_TEXT = "text_search"  # docstring: 策略标签：全文检索
STRATEGY_SIMPLE = "simple_search"  # docstring: 策略标签：子串检索
STRATEGY_NONE = "none"  # docstring: 所有策略均为空

# --- retrieval: rerank ---
RERANK_TOP_N = 15  # docstring: rerank 输出窗口
RERANK_MAX_CHARS = 1500  # docstring: 单候选提交给 rerank 模型的最大字符数

# --- retrieval: content-type adjustment ---
TEXT_FIGURE_PENALTY = 0.5  # docstring: 文本类 figure（section header / text snippet）惩罚乘数
VISUAL_FIGURE_BOOST = 1.2  # docstring: 真实视觉 figure 提升乘数
TEXT_LIKE_FIGURE_MARKERS = ("text", "sectionheader", "section_header", "section-header")  # docstring: 文本类 figure_type 标记

# --- retrieval: visual intent ---
VISUAL_INTENT_TERMS = (
    "diagram",
    "show",
    "illustration",
    "schematic",
    "drawing",
    "image",
    "picture",
    "figure",
)  # docstring: 视觉意图词表（整词、大小写不敏感）
ANCHOR_BOOST = 1.12  # docstring: 与高分文本同页的 figure 提升乘数
VISUAL_INTENT_BOOST = 1.10  # docstring: 视觉意图 query 下 figure 的额外提升乘数
ANCHOR_TEXT_WINDOW = 6  # docstring: 计算锚点页时参考的文本候选数

# --- retrieval: diversity / assemble ---
MMR_LAMBDA = 0.7  # docstring: MMR 相关性权重
MMR_TARGET_COUNT = 15  # docstring: MMR 选择数量
TEXT_RESULTS_CAP = 10  # docstring: textResults 上限
FIGURE_RESULTS_CAP = 5  # docstring: figureResults 上限
COMBINED_RESULTS_CAP = 10  # docstring: allResults（向后兼容）上限

# --- merge ---
CHUNK_PREFIX_CHARS = 200  # docstring: chunk 去重时比对的前缀长度
MERGED_FROM_KEY = "merged_from"  # docstring: 合并来源标记字段
NOTES_PROVENANCE_TEMPLATE = "[merged from {source_manual_id}]"  # docstring: notes 拼接时的来源标记

# --- rundown ---
RUNDOWN_DEFAULT_LIMIT = 80  # docstring: 摘要入口默认检索上限
RUNDOWN_MAX_SECTIONS = 8  # docstring: 最多输出的 section 数
RUNDOWN_GIST_MAX_CHARS = 900  # docstring: gist 最大长度
RUNDOWN_GIST_MIN_CHARS = 120  # docstring: gist 最小长度（过短视为噪声）
RUNDOWN_MAX_CITATIONS = 3  # docstring: 每个 section 的引用数
RUNDOWN_SECTION_TITLE_MAX = 80  # docstring: section 标题最大长度
RUNDOWN_MIN_SNIPPET_CHARS = 20  # docstring: 参与 gist 的最短片段

# --- protocol keys ---
TRACE_ID_KEY = "trace_id"  # docstring: trace_id 字段
REQUEST_ID_KEY = "request_id"  # docstring: request_id 字段
TENANT_ID_KEY = "tenant_id"  # docstring: tenant_id 字段
MANUAL_ID_KEY = "manual_id"  # docstring: manual_id 字段
MERGE_ID_KEY = "merge_id"  # docstring: merge_id 字段

TRACE_FIELD_KEYS = (  # docstring: 结构化日志推荐字段集合
    TRACE_ID_KEY,
    REQUEST_ID_KEY,
    TENANT_ID_KEY,
    MANUAL_ID_KEY,
    MERGE_ID_KEY,
)

TIMING_MS_KEY = "timing_ms"  # docstring: timing_ms 字段
TIMING_TOTAL_KEY = "total"  # docstring: timing_ms 的总耗时 key（短形式）
TIMING_TOTAL_MS_KEY = "total_ms"  # docstring: timing_ms 的总耗时 key（含单位）

ERROR_KEY = "error"  # docstring: 错误响应顶层字段
