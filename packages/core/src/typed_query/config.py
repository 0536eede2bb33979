"""Process-wide settings: execution mode and logging options."""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict

ENV_MODE = "TYPED_QUERY_ENV"
ENV_LOG_LEVEL = "TYPED_QUERY_LOG_LEVEL"
ENV_LOG_FORMAT = "TYPED_QUERY_LOG_FORMAT"


class ExecutionMode(str, Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"

    @property
    def is_production_like(self) -> bool:
        return self is ExecutionMode.PRODUCTION


class QuerySettings(BaseModel):
    """
    Immutable settings, normally read once at startup via :meth:`from_env`.

    ``log_level`` / ``log_format`` default per mode: DEBUG + pretty in
    development, DEBUG + pretty (to a temp file) in test, INFO + JSON in
    production.
    """

    model_config = ConfigDict(frozen=True)

    mode: ExecutionMode = ExecutionMode.DEVELOPMENT
    log_level: str | None = None
    log_format: Literal["pretty", "json"] | None = None

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "INFO" if self.mode.is_production_like else "DEBUG"

    @property
    def effective_log_format(self) -> str:
        if self.log_format:
            return self.log_format
        return "json" if self.mode.is_production_like else "pretty"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> QuerySettings:
        env = os.environ if environ is None else environ
        return cls(
            mode=ExecutionMode(env.get(ENV_MODE, ExecutionMode.DEVELOPMENT.value).lower()),
            log_level=env.get(ENV_LOG_LEVEL) or None,
            log_format=env.get(ENV_LOG_FORMAT) or None,  # type: ignore[arg-type]
        )
