from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

AVAILABLE_MODELS: tuple[str, ...] = ("deepseek-v3", "doubao-pro", "qwen-max")


class ScanCreate(BaseModel):
    brand_name: str = Field(min_length=1, max_length=200)
    search_query: str = Field(min_length=1, max_length=500)
    competitors: Optional[str] = Field(default=None, max_length=1000)
    models: List[str] = Field(default_factory=lambda: ["deepseek-v3"], min_length=1)

    @field_validator("brand_name", "search_query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("models")
    @classmethod
    def _known_models(cls, value: List[str]) -> List[str]:
        seen: list[str] = []
        for model in value:
            m = (model or "").strip()
            if m not in AVAILABLE_MODELS:
                raise ValueError(f"unsupported model: {m}")
            if m not in seen:
                seen.append(m)
        return seen

    def competitor_list(self) -> list[str]:
        raw = (self.competitors or "").replace("，", ",")
        return [c.strip() for c in raw.split(",") if c.strip()]


class DiagnosisCreate(BaseModel):
    scan_result_id: str = Field(min_length=1)


class SimulationCreate(BaseModel):
    diagnosis_id: str = Field(min_length=1)
    strategy_id: str = Field(default="geo_optimization", min_length=1)


class TriggerResponse(BaseModel):
    id: str
    status: str
    reused: bool = False
    webhook_ok: bool = True
    credits_required: int


class ReportUpdate(BaseModel):
    content: str = Field(max_length=100_000)


class ScanResultResponse(BaseModel):
    id: str
    job_id: str
    model_name: str
    avs_score: Optional[int] = None
    spi_score: Optional[int] = None
    sentiment_score: Optional[int] = None
    rank_position: Optional[int] = None
    is_visible: Optional[bool] = None
    citations: Optional[Any] = None
    competitors_mentioned: Optional[str] = None
    raw_response_text: Optional[str] = None
    diag_attribution_report: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ScanJobResponse(BaseModel):
    id: str
    brand_name: str
    search_query: str
    competitors: Optional[List[str]] = None
    selected_models: Optional[List[str]] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    results: List[ScanResultResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class DiagnosisReportResponse(BaseModel):
    id: str
    scan_result_id: str
    job_id: Optional[str] = None
    status: Optional[str] = None
    industry: Optional[str] = None
    diagnostic_model: Optional[str] = None
    root_cause_analysis: Optional[str] = None
    missing_geo_pillars: Optional[str] = None
    optimization_suggestions: Optional[str] = None
    reasoning_trace: Optional[str] = None
    faithfulness_score: Optional[float] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SimulationResultResponse(BaseModel):
    id: str
    diagnosis_id: str
    job_id: Optional[str] = None
    applied_strategy_id: str
    status: Optional[str] = None
    optimized_content_snippet: Optional[str] = None
    predicted_rank_change: Optional[str] = None
    improvement_analysis: Optional[str] = None
    strategies_used: Optional[Any] = None
    model_outputs: Optional[Any] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
