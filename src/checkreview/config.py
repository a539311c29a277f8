"""Environment-based configuration and engine construction."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from checkreview.constants import (
    CATEGORY_REVIEW_CONCURRENCY,
    DEFAULT_POLLING_INTERVAL_MS,
    DOCUMENT_REVIEW_CONCURRENCY,
    MIN_POLLING_INTERVAL_MS,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and environment variables."""

    # LLM Provider
    ai_api_key: str = ""
    ai_api_url: str = ""

    # Model chain (first = primary, rest = fallbacks tried in order)
    litellm_model_chain: Annotated[list[str], NoDecode] = [
        "openai/gpt-4.1-mini",
        "openai/gpt-4o-mini",
    ]
    llm_timeout_seconds: int = 120

    # Database
    database_url: str = "sqlite:///data/checkreview.db"

    # Directories
    data_dir: Path = Path("data")
    task_file_dir: Path = Path("data/task_files")
    review_cache_dir: Path = Path("data/review_cache")

    # Logging
    log_level: str = "INFO"
    debug_mode: bool = False

    # Queue
    ai_queue_polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    ai_queue_concurrency: int = 1

    # Review engine
    review_document_concurrency: int = DOCUMENT_REVIEW_CONCURRENCY
    review_category_concurrency: int = CATEGORY_REVIEW_CONCURRENCY
    large_document_threshold_chars: int = 400_000

    @field_validator("litellm_model_chain", mode="before")
    @classmethod
    def _parse_chain(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("litellm_model_chain")
    @classmethod
    def _validate_chain(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError(
                "litellm_model_chain must contain at least one model"
            )
        seen: set[str] = set()
        dupes: list[str] = []
        for m in v:
            if m in seen:
                dupes.append(m)
            seen.add(m)
        if dupes:
            logger.warning(
                "Duplicate models in LITELLM_MODEL_CHAIN: %s",
                ", ".join(dupes),
            )
        return v

    @field_validator("ai_queue_polling_interval_ms")
    @classmethod
    def _clamp_polling_interval(cls, v: int) -> int:
        if v < MIN_POLLING_INTERVAL_MS:
            logger.warning(
                "AI_QUEUE_POLLING_INTERVAL_MS=%d below minimum, using %d",
                v,
                MIN_POLLING_INTERVAL_MS,
            )
            return MIN_POLLING_INTERVAL_MS
        return v

    @field_validator(
        "ai_queue_concurrency",
        "review_document_concurrency",
        "review_category_concurrency",
    )
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, v)

    @property
    def polling_interval_seconds(self) -> float:
        return self.ai_queue_polling_interval_ms / 1000

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "",
        "extra": "ignore",
    }


def create_app_engine(
    url: str, *, echo: bool = False
) -> AsyncEngine:
    """Create async SQLite engine with WAL journal mode.

    Handles URL conversion (sqlite:/// → sqlite+aiosqlite:///)
    and sets WAL mode via a pool-connect event listener so it
    fires once per raw DBAPI connection, not per ORM session.
    Foreign keys are switched on in the same hook so file and
    result rows cascade with their parents.
    """
    if url.startswith("sqlite:///"):
        db_url = "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    else:
        db_url = url
    engine = create_async_engine(db_url, echo=echo)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragmas(
            dbapi_conn: object,
            _connection_record: object,
        ) -> None:
            cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
            cursor.execute("PRAGMA journal_mode=WAL")  # pyright: ignore[reportUnknownMemberType]
            cursor.execute("PRAGMA foreign_keys=ON")  # pyright: ignore[reportUnknownMemberType]
            cursor.close()  # pyright: ignore[reportUnknownMemberType]

    return engine
