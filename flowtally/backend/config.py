"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    DB_PATH=data/flowtally.db
    SNAPSHOT_TAG=latest
    RAW_METRIC_COLUMN=7
    HEADER_TOKENS=src,source,dst,destination,date
"""

from __future__ import annotations

from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Storage: an empty DB_PATH means "no destination store configured"
    DB_PATH: str = "data/flowtally.db"
    SNAPSHOT_TAG: str = "latest"

    # Raw flow-record layout (0-based column positions)
    RAW_SRC_COLUMN: int = 1
    RAW_DST_COLUMN: int = 3
    RAW_TIMESTAMP_COLUMN: int = 6
    RAW_METRIC_COLUMN: int = 7     # flow duration, summed per group
    RAW_PACKETS_COLUMN: int = 8    # forward packets, validated as integer

    # Leading-token heuristic for header rows (first row only)
    HEADER_TOKENS: Annotated[list[str], NoDecode] = ["src", "source", "dst", "destination", "date"]

    # Data quality
    MAX_REJECTED_SAMPLES: int = 20

    # Parallel summarization of input units
    EXTRACT_WORKERS: int = 4

    # Consolidation retry budget
    MERGE_MAX_ATTEMPTS: int = 5
    RETRY_BACKOFF_SECONDS: float = 0.2
    RETRY_BACKOFF_MAX_SECONDS: float = 5.0

    # Outputs
    SUMMARY_DIR: str = "summaries"
    EXPORT_DIR: str = "exports"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("HEADER_TOKENS", mode="before")
    @classmethod
    def parse_header_tokens(cls, v):
        if isinstance(v, str):
            import json as _json
            v = v.strip()
            if v.startswith("["):
                try:
                    return [str(t).strip().lower() for t in _json.loads(v)]
                except ValueError:
                    pass
            return [t.strip().lower() for t in v.split(",") if t.strip()]
        return [str(t).strip().lower() for t in v]


settings = Settings()
