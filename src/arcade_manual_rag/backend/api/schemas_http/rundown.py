# src/arcade_manual_rag/backend/api/schemas_http/rundown.py

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RundownRequest(BaseModel):
    """query 与 q 二选一（query 优先）。"""

    model_config = ConfigDict(extra="ignore")

    query: Optional[str] = None
    q: Optional[str] = None
    manual_id: Optional[str] = None
    system: Optional[str] = None
    vendor: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=500)

    def resolved_query(self) -> Optional[str]:
        text = self.query if isinstance(self.query, str) and self.query.strip() else self.q
        return text.strip() if text and text.strip() else None


class Citation(BaseModel):
    manual_id: Optional[str] = None
    page: Optional[int] = None


class RundownSectionView(BaseModel):
    title: str
    gist: str
    citations: List[Citation] = Field(default_factory=list)


class RundownResponse(BaseModel):
    ok: bool = True
    summary: str
    sections: List[RundownSectionView] = Field(default_factory=list)
