"""
Request / response contracts and the candidate query that flows between
generation, validation and execution.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class OutcomeKind(str, Enum):
    """Which path produced the rows of a response."""

    CACHED = "cached"        # served from the cache, nothing executed
    GENERATED = "generated"  # generated SQL, primary procedure
    FALLBACK = "fallback"    # canned report SQL, primary procedure
    DIRECT = "direct"        # primary failed, direct view read


@dataclass(frozen=True)
class CandidateQuery:
    """Not-yet-validated SQL plus its chart binding."""

    sql: str
    chart_type: str = "table"
    x_axis: str = ""
    y_axis: list[str] = field(default_factory=list)
    confidence: float = 0.5
    used_fallback: bool = False
    explanation: str = ""


# ── HTTP contracts ───────────────────────────────────────

class DateFilters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: str | None = Field(None, alias="startDate", description="ISO date or relative term (hoje, inicio_mes_atual, ...)")
    end_date: str | None = Field(None, alias="endDate")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class InsightsRequest(BaseModel):
    """Body of ``POST /insights-query``."""

    model_config = ConfigDict(populate_by_name=True)

    question: str | None = Field(None, alias="pergunta", max_length=1000, description="Pergunta em linguagem natural")
    filters: DateFilters = Field(default_factory=DateFilters, alias="filtros")
    fallback_key: str | None = Field(None, alias="fallbackKey", description="Chave de relatório pronto")

    @field_validator("question", "fallback_key", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("filters", mode="before")
    @classmethod
    def none_filters(cls, value: Any) -> Any:
        return {} if value is None else value


class InsightsResponse(BaseModel):
    """Successful answer; serialised in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data: list[dict[str, Any]]
    kpis: dict[str, int | float]
    sql: str
    chart_type: str
    x_axis: str
    y_axis: list[str]
    confidence: float
    explanation: str
    text_response: str
    used_fallback: bool
    row_count: int
    execution_time_ms: int
    wants_chart: bool
    period_used: str | None = None
    used_question_dates: bool = False
    cached: bool = False
    cache_hash: str
    next_steps: list[str] = Field(default_factory=list)
    source: OutcomeKind


class ErrorResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    error: str
    suggestion: str | None = None
    text_response: str | None = None
