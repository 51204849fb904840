import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core import settings
from bridge_ingestion.utils import as_utc

logger = logging.getLogger(__name__)


class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, validate_default=True)


class DatabaseConfig(StrictBaseModel):
    path: str = str(settings.DATABASE_PATH)
    batch_size: int = Field(default=settings.INSERT_BATCH_SIZE, ge=1)


class PipelineConfig(StrictBaseModel):
    base_url: str = settings.DEFAULT_BASE_URL
    directories: list[str] = Field(default_factory=lambda: list(settings.DEFAULT_DIRECTORIES))
    min_last_modified: datetime | None = None

    max_concurrency: int = Field(default=settings.DEFAULT_MAX_CONCURRENCY, ge=1)
    request_timeout_seconds: float = Field(default=settings.DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    max_documents: int | None = Field(default=None, ge=1)

    clear: bool = False

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got '{value}'")
        return value if value.endswith("/") else value + "/"

    @field_validator("directories")
    @classmethod
    def normalize_directories(cls, value: list[str]) -> list[str]:
        return [d.strip().strip("/") for d in value if d.strip().strip("/")]

    @field_validator("min_last_modified")
    @classmethod
    def coerce_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        if not self.directories:
            raise ValueError("At least one directory must be configured")

        if len(set(self.directories)) != len(self.directories):
            raise ValueError(f"Duplicate directories configured: {self.directories}")

        return self

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Re-validated copy with non-None overrides applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return PipelineConfig.model_validate(data)


def load_pipeline_config(file_path: str | Path) -> PipelineConfig:
    with open(file_path, "r") as file:
        config_yaml = yaml.safe_load(file) or {}

    try:
        return PipelineConfig.model_validate(config_yaml)
    except Exception as e:
        raise ValueError(f"Error loading pipeline config from {file_path}: {e}") from e
