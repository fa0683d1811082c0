from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

WebhookEndpoint = Literal["monitoring", "diagnosis", "simulation"]
ALLOWED_ENDPOINTS: tuple[str, ...] = ("monitoring", "diagnosis", "simulation")


class _WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class MonitoringPayload(_WebhookPayload):
    job_id: str = Field(min_length=1)
    brand_name: str | None = None
    search_query: str | None = None
    competitors: str | None = None
    selected_models: str | None = None


class DiagnosisPayload(_WebhookPayload):
    diagnosis_id: str = Field(min_length=1)
    scan_result_id: str = Field(min_length=1)
    job_id: str | None = None


class SimulationPayload(_WebhookPayload):
    simulation_id: str = Field(min_length=1)
    diagnosis_id: str = Field(min_length=1)


PAYLOAD_MODELS: dict[str, type[_WebhookPayload]] = {
    "monitoring": MonitoringPayload,
    "diagnosis": DiagnosisPayload,
    "simulation": SimulationPayload,
}


class WebhookProxyRequest(BaseModel):
    endpoint: str | None = None
    payload: dict[str, object] = Field(default_factory=dict)


class LegacyWebhookProxyRequest(BaseModel):
    """Request shape accepted by the signed ``n8n-webhook-proxy`` function."""

    webhook_type: str | None = None
    job_id: str | None = None
    diagnosis_id: str | None = None
    scan_result_id: str | None = None
    simulation_id: str | None = None

    def as_payload(self) -> dict[str, object]:
        return self.model_dump(exclude={"webhook_type"}, exclude_none=True)


class WebhookProxyResponse(BaseModel):
    success: bool
    error: str | None = None
    status: int | None = None
