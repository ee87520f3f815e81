# src/arcade_manual_rag/config.py
from __future__ import annotations

import os
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


def _find_repo_root(start: Path) -> Path:
    """
    Best-effort repository root discovery.
    - Prefer the closest ancestor containing `pyproject.toml`.
    - Fallback to the start directory if not found.
    """
    cur = start.resolve()
    for _ in range(20):
        if (cur / "pyproject.toml").exists():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    return start.resolve()


PACKAGE_ROOT = Path(__file__).resolve().parent
REPO_ROOT = _find_repo_root(PACKAGE_ROOT)

# Load .env into process environment early so downstream SDKs can read it.
load_dotenv(str(REPO_ROOT / ".env"), override=False)

LOCAL_ROOT = REPO_ROOT / ".Local"


class Settings(BaseSettings):
    DEBUG: bool = False

    ARCADE_RAG_DATABASE_URL: str = f"sqlite+aiosqlite:///{(LOCAL_ROOT / 'arcade_manual_rag.db').as_posix()}"

    MILVUS_URI: str | None = None
    MILVUS_HOST: str | None = None
    MILVUS_PORT: str | None = None
    MILVUS_TOKEN: str | None = None
    ARCADE_RAG_MILVUS_COLLECTION: str = "manual_vectors"

    EMBED_PROVIDER: str = "openai"
    EMBED_MODEL: str = "text-embedding-3-small"
    EMBED_DIM: int = int(1536)

    OPENAI_API_KEY: str | None = None
    OPENAI_API_BASE: str | None = "https://api.openai.com/v1"

    OLLAMA_BASE_URL: str | None = "http://localhost:11434"
    OLLAMA_REQUEST_TIMEOUT_S: int = int(60)

    RERANK_PROVIDER: str = "cohere"
    RERANK_MODEL: str = "rerank-english-v3.0"
    COHERE_API_KEY: str | None = None
    RERANK_TOP_N: int = int(15)
    RERANK_MAX_CHARS: int = int(1500)

    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()


def _set_env_if_missing(key: str, value: str | None) -> None:
    """
    Keep provider SDKs working with .env-based Settings by exporting to os.environ.
    Do not override explicitly provided environment variables.
    """
    if value is None:
        return
    raw = str(value).strip()
    if not raw:
        return
    if os.getenv(key):
        return
    os.environ[key] = raw


def _bootstrap_provider_env(s: Settings) -> None:
    """
    Export provider-related settings into os.environ for downstream SDKs.
    """
    _set_env_if_missing("OPENAI_API_KEY", s.OPENAI_API_KEY)
    _set_env_if_missing("OPENAI_API_BASE", s.OPENAI_API_BASE)
    _set_env_if_missing("CO_API_KEY", s.COHERE_API_KEY)
    _set_env_if_missing("MILVUS_URI", s.MILVUS_URI)
    _set_env_if_missing("MILVUS_TOKEN", s.MILVUS_TOKEN)


_bootstrap_provider_env(settings)
