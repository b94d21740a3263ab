from __future__ import annotations

from typing import Any

from src.models.base import ProviderPayloadModel


class RetellWord(ProviderPayloadModel):
    word: str | None = None
    start: float | None = None
    end: float | None = None


class RetellTranscriptTurn(ProviderPayloadModel):
    role: str | None = None
    content: str | None = None
    words: list[RetellWord] | None = None


class RetellCallAnalysis(ProviderPayloadModel):
    call_summary: str | None = None
    user_sentiment: str | None = None
    call_successful: bool | None = None
    custom_analysis_data: dict[str, Any] | None = None


class RetellCall(ProviderPayloadModel):
    call_id: str
    call_type: str | None = None
    agent_id: str | None = None
    from_number: str | None = None
    to_number: str | None = None
    direction: str | None = None
    call_status: str | None = None
    start_timestamp: float | None = None
    end_timestamp: float | None = None
    duration_ms: float | None = None
    recording_url: str | None = None
    transcript: str | None = None
    transcript_object: list[RetellTranscriptTurn] | None = None
    call_analysis: RetellCallAnalysis | None = None
    metadata: dict[str, Any] | None = None


class RetellWebhookPayload(ProviderPayloadModel):
    event: str | None = None
    call: RetellCall | None = None
