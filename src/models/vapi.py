from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field

from src.models.base import ProviderPayloadModel


class _VapiModel(ProviderPayloadModel):
    model_config = ConfigDict(populate_by_name=True)


class VapiNumber(_VapiModel):
    number: str | None = None


class VapiTranscriptMessage(_VapiModel):
    role: str | None = None
    message: str | None = None
    time: float | None = None
    end_time: float | None = Field(default=None, alias="endTime")


class VapiArtifact(_VapiModel):
    transcript: str | None = None
    recording_url: str | None = Field(default=None, alias="recordingUrl")
    summary: str | None = None
    messages: list[VapiTranscriptMessage] | None = None


class VapiAnalysis(_VapiModel):
    summary: str | None = None
    success_evaluation: Any = Field(default=None, alias="successEvaluation")
    structured_data: dict[str, Any] | None = Field(default=None, alias="structuredData")


class VapiCostBreakdown(_VapiModel):
    total: float | None = None
    voice: float | None = None
    transport: float | None = None


class VapiCall(_VapiModel):
    id: str
    type: str | None = None
    status: str | None = None
    ended_reason: str | None = Field(default=None, alias="endedReason")
    customer: VapiNumber | None = None
    phone_number: VapiNumber | None = Field(default=None, alias="phoneNumber")
    started_at: str | None = Field(default=None, alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    cost: float | None = None
    cost_breakdown: VapiCostBreakdown | None = Field(default=None, alias="costBreakdown")
    artifact: VapiArtifact | None = None
    analysis: VapiAnalysis | None = None
    assistant_id: str | None = Field(default=None, alias="assistantId")
    metadata: dict[str, Any] | None = None


class VapiMessage(_VapiModel):
    type: str | None = None
    call: VapiCall | None = None
    status: str | None = None
    ended_reason: str | None = Field(default=None, alias="endedReason")
    started_at: str | None = Field(default=None, alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    duration_seconds: float | None = Field(default=None, alias="durationSeconds")
    cost: float | None = None
    transcript: str | None = None
    artifact: VapiArtifact | None = None
    analysis: VapiAnalysis | None = None


class VapiWebhookPayload(_VapiModel):
    message: VapiMessage | None = None
