# src/arcade_manual_rag/backend/pipelines/base/timing.py

"""
[职责] 阶段计时：收集 retrieval / merge 各阶段耗时（ms），供 debug 响应与结构化日志输出。
[边界] 不做分布式 tracing；不写日志；单请求单协程内使用，无线程安全保证。
[上游关系] pipelines 用 `with ctx.timing.stage("embed"): ...` 包裹阶段。
[下游关系] search_service 的 debug 输出与 merge 完成日志读取 to_dict()。
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional


def _now_ms() -> float:
    return time.perf_counter() * 1000.0


@dataclass
class TimingCollector:
    """Stage name -> elapsed ms; total is measured from construction."""

    _stages_ms: Dict[str, float] = field(default_factory=dict)
    _start_ms: float = field(default_factory=_now_ms)

    def add_ms(self, key: str, ms: float, *, accumulate: bool = True) -> None:
        k = str(key).strip()
        if not k:
            return
        v = max(float(ms), 0.0)  # docstring: 负值截断为 0
        self._stages_ms[k] = self._stages_ms.get(k, 0.0) + v if accumulate else v

    @contextmanager
    def stage(self, key: str, *, accumulate: bool = False) -> Iterator[None]:
        """
        [职责] 上下文管理器形式的阶段计时；异常退出时同样记录耗时。
        [边界] 默认覆盖同名阶段；级联策略等重复阶段需显式 accumulate=True。
        """
        start = _now_ms()
        try:
            yield
        finally:
            self.add_ms(key, _now_ms() - start, accumulate=accumulate)

    def total_ms(self) -> float:
        return _now_ms() - self._start_ms

    def to_dict(self, *, include_total: bool = True, total_key: str = "total") -> Dict[str, float]:
        out = {k: round(v, 3) for k, v in self._stages_ms.items()}
        if include_total:
            out[total_key] = round(self.total_ms(), 3)
        return out

    def get(self, key: str, default: Optional[float] = None) -> Optional[float]:
        return self._stages_ms.get(key, default)
