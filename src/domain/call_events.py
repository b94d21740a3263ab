from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.domain.normalization import (
    CallDirection,
    CallPhase,
    CallProvider,
    CanonicalCallStatus,
    derive_duration_seconds,
    epoch_ms_to_iso,
    normalize_call_direction,
    normalize_retell_call_status,
    normalize_retell_phase,
    normalize_speaker,
    normalize_vapi_ended_reason,
    normalize_vapi_phase,
)
from src.models.retell import RetellTranscriptTurn, RetellWebhookPayload
from src.models.vapi import VapiAnalysis, VapiArtifact, VapiTranscriptMessage, VapiWebhookPayload


@dataclass
class TranscriptSegment:
    speaker: str
    text: str
    start_time: float = 0
    end_time: float = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "speaker": self.speaker,
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


@dataclass
class CallEvent:
    """Provider-neutral view of one call-lifecycle webhook."""
    provider: CallProvider
    provider_call_id: str
    phase: CallPhase
    direction: CallDirection
    status: CanonicalCallStatus
    phone_number: str = ""
    from_number: str | None = None
    started_at: str | None = None
    ended_at: str | None = None
    duration_seconds: int = 0
    recording_url: str | None = None
    transcript: str | None = None
    transcript_segments: list[TranscriptSegment] | None = None
    summary: str | None = None
    sentiment: str | None = None
    appointment_set: bool | None = None
    key_topics: list[Any] | None = None
    cost_amount: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    agent_or_assistant_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in ("ended", "analyzed")


def _as_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _as_list(value: Any) -> list[Any] | None:
    if value is None:
        return None
    if isinstance(value, list):
        return value
    return [value]


def retell_transcript_segments(turns: list[RetellTranscriptTurn] | None) -> list[TranscriptSegment] | None:
    if turns is None:
        return None
    segments: list[TranscriptSegment] = []
    for turn in turns:
        words = turn.words or []
        segments.append(
            TranscriptSegment(
                speaker="agent" if (turn.role or "").lower() == "agent" else "caller",
                text=turn.content or "",
                start_time=(words[0].start or 0) if words else 0,
                end_time=(words[-1].end or 0) if words else 0,
            )
        )
    return segments


def vapi_transcript_segments(messages: list[VapiTranscriptMessage] | None) -> list[TranscriptSegment] | None:
    if messages is None:
        return None
    segments: list[TranscriptSegment] = []
    for item in messages:
        speaker = normalize_speaker(item.role)
        if speaker is None:
            continue
        segments.append(
            TranscriptSegment(
                speaker=speaker,
                text=item.message or "",
                start_time=item.time or 0,
                end_time=item.end_time or 0,
            )
        )
    return segments


def normalize_retell_event(payload: RetellWebhookPayload) -> CallEvent | None:
    """Returns None when the payload carries no call or an event type we do not track."""
    call = payload.call
    phase = normalize_retell_phase(payload.event)
    if call is None or phase is None:
        return None

    direction = normalize_call_direction(call.call_type)
    phone_number = call.to_number if direction == "outbound" else call.from_number
    started_at = epoch_ms_to_iso(call.start_timestamp)
    ended_at = epoch_ms_to_iso(call.end_timestamp)
    explicit_seconds = call.duration_ms / 1000 if call.duration_ms is not None else None
    analysis = call.call_analysis
    custom = (analysis.custom_analysis_data if analysis else None) or {}

    return CallEvent(
        provider="retell",
        provider_call_id=call.call_id,
        phase=phase,
        direction=direction,
        status="in_progress" if phase == "started" else normalize_retell_call_status(call.call_status),
        phone_number=phone_number or "",
        from_number=call.from_number,
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=derive_duration_seconds(explicit_seconds, started_at, ended_at),
        recording_url=call.recording_url,
        transcript=call.transcript,
        transcript_segments=retell_transcript_segments(call.transcript_object),
        summary=analysis.call_summary if analysis else None,
        sentiment=analysis.user_sentiment if analysis else None,
        appointment_set=_as_bool(custom.get("appointment_set")),
        key_topics=_as_list(custom.get("topics")),
        cost_amount=None,
        metadata=dict(call.metadata or {}),
        agent_or_assistant_id=call.agent_id,
    )


def normalize_vapi_event(payload: VapiWebhookPayload) -> CallEvent | None:
    """Returns None when the payload carries no call or a message type we do not track."""
    message = payload.message
    call = message.call if message else None
    if message is None or call is None:
        return None
    phase = normalize_vapi_phase(message.type, message.status or call.status)
    if phase is None:
        return None

    direction = normalize_call_direction(call.type)
    customer_number = call.customer.number if call.customer else None
    line_number = call.phone_number.number if call.phone_number else None
    artifact: VapiArtifact | None = call.artifact or message.artifact
    analysis: VapiAnalysis | None = call.analysis or message.analysis
    structured = (analysis.structured_data if analysis else None) or {}
    started_at = call.started_at or message.started_at
    ended_at = call.ended_at or message.ended_at
    cost = call.cost
    if cost is None and call.cost_breakdown is not None:
        cost = call.cost_breakdown.total
    if cost is None:
        cost = message.cost

    return CallEvent(
        provider="vapi",
        provider_call_id=call.id,
        phase=phase,
        direction=direction,
        status=(
            "in_progress"
            if phase == "started"
            else normalize_vapi_ended_reason(call.ended_reason or message.ended_reason)
        ),
        phone_number=customer_number or line_number or "",
        from_number=line_number if direction == "outbound" else customer_number,
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=derive_duration_seconds(message.duration_seconds, started_at, ended_at),
        recording_url=artifact.recording_url if artifact else None,
        transcript=(artifact.transcript if artifact else None) or message.transcript,
        transcript_segments=vapi_transcript_segments(artifact.messages if artifact else None),
        summary=(analysis.summary if analysis else None) or (artifact.summary if artifact else None),
        sentiment=structured.get("sentiment"),
        appointment_set=_as_bool(structured.get("appointment_set")),
        key_topics=_as_list(structured.get("topics")),
        cost_amount=cost,
        metadata=dict(call.metadata or {}),
        agent_or_assistant_id=call.assistant_id,
    )
