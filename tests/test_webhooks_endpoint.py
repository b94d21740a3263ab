import hashlib
import hmac
import json
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from src.main import app
from src.routers import webhooks as webhooks_router
from tests.fakes import FakeSupabase


@pytest.fixture(autouse=True)
def _no_webhook_secrets(monkeypatch):
    monkeypatch.setattr(webhooks_router.settings, "retell_webhook_secret", None)
    monkeypatch.setattr(webhooks_router.settings, "vapi_webhook_secret", None)
    monkeypatch.setattr(webhooks_router.settings, "lead_phone_match_mode", "exact")


def _install_db(monkeypatch, tables: dict | None = None, failing_tables: set | None = None) -> FakeSupabase:
    fake_db = FakeSupabase(tables or {}, failing_tables=failing_tables)
    monkeypatch.setattr(webhooks_router, "supabase", fake_db)
    return fake_db


def _retell_payload(event: str, **call_fields) -> dict:
    call = {
        "call_id": "c1",
        "call_type": "outbound",
        "agent_id": "agent-1",
        "from_number": "+14155550000",
        "to_number": "+14155550100",
        "metadata": {"organization_id": "org1", "lead_id": "lead1"},
    }
    call.update(call_fields)
    return {"event": event, "call": call}


def _vapi_payload(message_type: str, **overrides) -> dict:
    message = {
        "type": message_type,
        "call": {
            "id": "v1",
            "type": "outboundPhoneCall",
            "assistantId": "asst-1",
            "customer": {"number": "+14155550100"},
            "phoneNumber": {"number": "+14155550000"},
            "metadata": {"organization_id": "org1"},
        },
    }
    message.update(overrides)
    return {"message": message}


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def test_started_event_creates_in_progress_call_log(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    response = client.post("/api/webhooks/retell", json=_retell_payload("call_started"))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    rows = fake_db.tables["call_logs"]
    assert len(rows) == 1
    assert rows[0]["provider_call_id"] == "c1"
    assert rows[0]["organization_id"] == "org1"
    assert rows[0]["lead_id"] == "lead1"
    assert rows[0]["call_status"] == "in_progress"
    assert rows[0]["call_type"] == "outbound"
    assert rows[0]["phone_number"] == "+14155550100"
    assert rows[0]["provider"] == "retell"


def test_started_event_redelivery_keeps_single_identical_row(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)
    payload = _retell_payload("call_started", start_timestamp=1_700_000_000_000)

    first = client.post("/api/webhooks/retell", json=payload)
    after_first = dict(fake_db.tables["call_logs"][0])
    second = client.post("/api/webhooks/retell", json=payload)

    assert first.status_code == 200
    assert second.status_code == 200
    assert len(fake_db.tables["call_logs"]) == 1
    assert fake_db.tables["call_logs"][0] == after_first


def test_end_to_end_started_then_ended_updates_row_and_usage(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_ended", call_status="ended", duration_ms=125000),
    )

    assert response.status_code == 200
    row = fake_db.tables["call_logs"][0]
    assert row["call_status"] == "completed"
    assert row["duration_seconds"] == 125
    assert row["ended_at"]
    usage = fake_db.tables["billing_usage"]
    assert len(usage) == 1
    assert usage[0]["organization_id"] == "org1"
    assert usage[0]["provider"] == "retell"
    assert usage[0]["usage_date"] == _today()
    assert usage[0]["minutes_used"] == pytest.approx(125 / 60)
    assert usage[0]["calls_made"] == 1
    assert usage[0]["calls_answered"] == 1


def test_usage_accumulates_across_ended_events(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)
    durations_ms = [60000, 90000, 30000, 125000]

    for index, duration_ms in enumerate(durations_ms):
        call_id = f"c{index}"
        client.post("/api/webhooks/retell", json=_retell_payload("call_started", call_id=call_id))
        client.post(
            "/api/webhooks/retell",
            json=_retell_payload("call_ended", call_id=call_id, call_status="ended", duration_ms=duration_ms),
        )

    usage = fake_db.tables["billing_usage"]
    assert len(usage) == 1
    assert usage[0]["calls_made"] == len(durations_ms)
    assert usage[0]["calls_answered"] == len(durations_ms)
    assert usage[0]["minutes_used"] == pytest.approx(sum(durations_ms) / 1000 / 60)


def test_unanswered_call_counts_as_made_but_not_answered(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_ended", call_status="voicemail", duration_ms=20000),
    )

    usage = fake_db.tables["billing_usage"][0]
    assert usage["calls_made"] == 1
    assert usage["calls_answered"] == 0


def test_ended_before_started_is_noop_then_started_creates_row(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    ended = client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_ended", call_status="ended", duration_ms=30000),
    )
    assert ended.status_code == 200
    assert fake_db.tables.get("call_logs", []) == []

    started = client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    assert started.status_code == 200
    assert len(fake_db.tables["call_logs"]) == 1
    assert fake_db.tables["call_logs"][0]["call_status"] == "in_progress"


def test_orphan_event_acknowledged_with_warning_and_no_write(monkeypatch):
    fake_db = _install_db(monkeypatch, {"agent_settings": [{"organization_id": "org9", "retell_agent_id": "other"}]})
    client = TestClient(app)

    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_started", metadata={}, agent_id="unknown-agent"),
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "warning": "No organization ID"}
    assert fake_db.tables.get("call_logs", []) == []
    assert fake_db.writes == []


def test_organization_resolved_from_agent_settings(monkeypatch):
    fake_db = _install_db(
        monkeypatch,
        {
            "agent_settings": [{"organization_id": "org2", "retell_agent_id": "agent-1"}],
            "leads": [{"id": "lead7", "organization_id": "org2", "phone_number": "+14155550100", "campaign_id": "cmp-1"}],
        },
    )
    client = TestClient(app)

    response = client.post("/api/webhooks/retell", json=_retell_payload("call_started", metadata=None))

    assert response.status_code == 200
    row = fake_db.tables["call_logs"][0]
    assert row["organization_id"] == "org2"
    assert row["lead_id"] == "lead7"
    assert row["campaign_id"] == "cmp-1"


def test_retell_signature_rejected_without_writes_and_accepted_when_correct(monkeypatch):
    fake_db = _install_db(monkeypatch)
    monkeypatch.setattr(webhooks_router.settings, "retell_webhook_secret", "secret123")
    client = TestClient(app)
    raw_body = json.dumps(_retell_payload("call_started")).encode("utf-8")

    rejected = client.post(
        "/api/webhooks/retell",
        content=raw_body,
        headers={"Content-Type": "application/json", "X-Retell-Signature": "not-the-signature"},
    )
    assert rejected.status_code == 401
    assert rejected.json()["detail"]["type"] == "webhook_signature_invalid"
    assert fake_db.writes == []

    missing = client.post("/api/webhooks/retell", content=raw_body, headers={"Content-Type": "application/json"})
    assert missing.status_code == 401
    assert missing.json()["detail"]["reason"] == "missing_signature"
    assert fake_db.writes == []

    signature = hmac.new(b"secret123", raw_body, hashlib.sha256).hexdigest()
    accepted = client.post(
        "/api/webhooks/retell",
        content=raw_body,
        headers={"Content-Type": "application/json", "X-Retell-Signature": signature},
    )
    assert accepted.status_code == 200
    assert len(fake_db.tables["call_logs"]) == 1


def test_vapi_signature_requires_sha256_prefix(monkeypatch):
    fake_db = _install_db(monkeypatch)
    monkeypatch.setattr(webhooks_router.settings, "vapi_webhook_secret", "vapi-secret")
    client = TestClient(app)
    raw_body = json.dumps(_vapi_payload("status-update", status="in-progress")).encode("utf-8")
    digest = hmac.new(b"vapi-secret", raw_body, hashlib.sha256).hexdigest()

    bare = client.post(
        "/api/webhooks/vapi",
        content=raw_body,
        headers={"Content-Type": "application/json", "X-Vapi-Signature": digest},
    )
    assert bare.status_code == 401
    assert fake_db.writes == []

    prefixed = client.post(
        "/api/webhooks/vapi",
        content=raw_body,
        headers={"Content-Type": "application/json", "X-Vapi-Signature": f"sha256={digest}"},
    )
    assert prefixed.status_code == 200
    assert fake_db.tables["call_logs"][0]["provider_call_id"] == "v1"


def test_vapi_end_of_call_report_records_analysis_and_cost(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    client.post("/api/webhooks/vapi", json=_vapi_payload("status-update", status="in-progress"))
    response = client.post(
        "/api/webhooks/vapi",
        json=_vapi_payload(
            "end-of-call-report",
            endedReason="customer-busy",
            durationSeconds=42.4,
            cost=0.35,
            artifact={
                "transcript": "AI: Hi\nUser: Not now",
                "recordingUrl": "https://recordings.example/v1.wav",
                "messages": [
                    {"role": "system", "message": "prompt"},
                    {"role": "bot", "message": "Hi", "time": 1.0, "endTime": 1.5},
                    {"role": "user", "message": "Not now", "time": 2.0, "endTime": 3.0},
                ],
            },
            analysis={
                "summary": "Caller was busy.",
                "structuredData": {"sentiment": "neutral", "appointment_set": False, "topics": ["timing"]},
            },
        ),
    )

    assert response.status_code == 200
    row = fake_db.tables["call_logs"][0]
    assert row["call_status"] == "busy"
    assert row["duration_seconds"] == 42
    assert row["cost_amount"] == 0.35
    assert row["recording_url"] == "https://recordings.example/v1.wav"
    assert row["call_summary"] == "Caller was busy."
    assert row["call_sentiment"] == "neutral"
    assert row["key_topics"] == ["timing"]
    assert [segment["speaker"] for segment in row["transcript_segments"]] == ["agent", "caller"]
    usage = fake_db.tables["billing_usage"][0]
    assert usage["provider"] == "vapi"
    assert usage["cost_amount"] == pytest.approx(0.35)
    assert usage["calls_answered"] == 0


def test_analyzed_event_with_appointment_advances_lead(monkeypatch):
    fake_db = _install_db(
        monkeypatch,
        {"leads": [{"id": "lead1", "organization_id": "org1", "phone_number": "+14155550100", "lead_status": "new"}]},
    )
    client = TestClient(app)

    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload(
            "call_analyzed",
            call_analysis={
                "call_summary": "Booked for Tuesday.",
                "user_sentiment": "Positive",
                "custom_analysis_data": {"appointment_set": True, "topics": ["pricing", "demo"]},
            },
        ),
    )

    assert response.status_code == 200
    row = fake_db.tables["call_logs"][0]
    assert row["appointment_set"] is True
    assert row["call_summary"] == "Booked for Tuesday."
    assert row["key_topics"] == ["pricing", "demo"]
    assert fake_db.tables["leads"][0]["lead_status"] == "appointment_set"
    assert "billing_usage" not in fake_db.tables


def test_completed_call_does_not_demote_appointment_lead(monkeypatch):
    fake_db = _install_db(
        monkeypatch,
        {"leads": [{"id": "lead1", "organization_id": "org1", "lead_status": "appointment_set"}]},
    )
    client = TestClient(app)

    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_ended", call_status="ended", duration_ms=30000),
    )

    assert fake_db.tables["leads"][0]["lead_status"] == "appointment_set"


def test_completed_call_marks_new_lead_contacted(monkeypatch):
    fake_db = _install_db(monkeypatch, {"leads": [{"id": "lead1", "organization_id": "org1", "lead_status": "new"}]})
    client = TestClient(app)

    client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_ended", call_status="ended", duration_ms=30000),
    )

    lead = fake_db.tables["leads"][0]
    assert lead["lead_status"] == "contacted"
    assert lead["last_call_date"]


def test_lead_side_effect_failure_does_not_fail_webhook(monkeypatch):
    fake_db = _install_db(monkeypatch, failing_tables={"leads"})
    client = TestClient(app)

    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_ended", call_status="ended", duration_ms=30000),
    )

    assert response.status_code == 200
    assert fake_db.tables["call_logs"][0]["call_status"] == "completed"


def test_store_failure_returns_500_for_redelivery(monkeypatch):
    _install_db(monkeypatch, failing_tables={"call_logs"})
    client = TestClient(app)

    response = client.post("/api/webhooks/retell", json=_retell_payload("call_started"))

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["type"] == "webhook_processing_failed"
    assert detail["provider"] == "retell"


def test_invalid_json_returns_400(monkeypatch):
    _install_db(monkeypatch)
    client = TestClient(app)

    response = client.post(
        "/api/webhooks/retell",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_payload_without_call_is_acknowledged_with_note(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    retell = client.post("/api/webhooks/retell", json={"event": "call_started"})
    vapi = client.post("/api/webhooks/vapi", json={"message": {"type": "end-of-call-report"}})

    assert retell.json() == {"received": True, "note": "No call data"}
    assert vapi.json() == {"received": True, "note": "No call data"}
    assert fake_db.writes == []


def test_untracked_event_types_are_ignored(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    retell = client.post("/api/webhooks/retell", json=_retell_payload("transcript_updated"))
    vapi = client.post("/api/webhooks/vapi", json=_vapi_payload("status-update", status="ringing"))

    assert retell.status_code == 200
    assert vapi.status_code == 200
    assert fake_db.writes == []


def test_request_id_header_is_echoed(monkeypatch):
    _install_db(monkeypatch)
    client = TestClient(app)

    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_started"),
        headers={"X-Request-ID": "req-123"},
    )

    assert response.headers["X-Request-ID"] == "req-123"


def test_ended_event_with_null_word_list_still_completes_call(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload(
            "call_ended",
            call_status="ended",
            duration_ms=60000,
            transcript_object=[{"role": "agent", "content": "hi", "words": None}],
        ),
    )

    assert response.json() == {"received": True}
    row = fake_db.tables["call_logs"][0]
    assert row["call_status"] == "completed"
    assert row["duration_seconds"] == 60
    assert row["transcript_segments"] == [{"speaker": "agent", "text": "hi", "start_time": 0, "end_time": 0}]
    assert fake_db.tables["billing_usage"][0]["calls_made"] == 1


def test_malformed_nested_field_is_dropped_not_the_event(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload(
            "call_ended",
            call_status="ended",
            duration_ms=30000,
            call_analysis="not-an-object",
            transcript_object=["not-a-turn"],
            recording_url=12,
        ),
    )

    assert response.json() == {"received": True}
    row = fake_db.tables["call_logs"][0]
    assert row["call_status"] == "completed"
    assert row["duration_seconds"] == 30
    assert "transcript_segments" not in row


def test_missing_call_id_still_acknowledged_with_note(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    response = client.post("/api/webhooks/retell", json={"event": "call_ended", "call": {"call_status": "ended"}})

    assert response.json() == {"received": True, "note": "No call data"}
    assert fake_db.writes == []


def test_non_finite_duration_falls_back_to_timestamps(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)
    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    payload = _retell_payload(
        "call_ended",
        call_status="ended",
        duration_ms=0,
        start_timestamp=1_700_000_000_000,
        end_timestamp=1_700_000_125_000,
    )
    raw_body = json.dumps(payload).replace('"duration_ms": 0', '"duration_ms": 1e400')

    response = client.post(
        "/api/webhooks/retell",
        content=raw_body.encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert fake_db.tables["call_logs"][0]["duration_seconds"] == 125


def test_nan_duration_is_treated_as_missing(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)
    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    raw_body = json.dumps(_retell_payload("call_ended", call_status="ended", duration_ms=0)).replace(
        '"duration_ms": 0', '"duration_ms": NaN'
    )

    response = client.post(
        "/api/webhooks/retell",
        content=raw_body.encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert fake_db.tables["call_logs"][0]["duration_seconds"] == 0
    assert "billing_usage" not in fake_db.tables


def test_later_phases_keep_fields_written_earlier(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_started", start_timestamp=1_700_000_000_000),
    )
    started_at = fake_db.tables["call_logs"][0]["started_at"]
    client.post(
        "/api/webhooks/retell",
        json=_retell_payload(
            "call_ended",
            call_status="ended",
            duration_ms=45000,
            from_number=None,
            recording_url="https://recordings.example/c1.wav",
        ),
    )
    client.post(
        "/api/webhooks/retell",
        json=_retell_payload(
            "call_analyzed",
            from_number=None,
            call_analysis={"call_summary": "Asked for a callback."},
        ),
    )

    row = fake_db.tables["call_logs"][0]
    assert started_at.startswith("2023-11-14T22:13:20")
    assert row["started_at"] == started_at
    assert row["from_number"] == "+14155550000"
    assert row["recording_url"] == "https://recordings.example/c1.wav"
    assert row["call_status"] == "completed"
    assert row["duration_seconds"] == 45
    assert row["call_summary"] == "Asked for a callback."


def test_analyzed_before_started_creates_no_row(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)

    response = client.post(
        "/api/webhooks/retell",
        json=_retell_payload("call_analyzed", call_analysis={"call_summary": "Early analysis."}),
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert fake_db.tables.get("call_logs", []) == []


def test_redelivered_ended_event_is_counted_again_until_reaggregated(monkeypatch):
    fake_db = _install_db(monkeypatch)
    client = TestClient(app)
    ended = _retell_payload("call_ended", call_status="ended", duration_ms=60000)

    client.post("/api/webhooks/retell", json=_retell_payload("call_started"))
    client.post("/api/webhooks/retell", json=ended)
    client.post("/api/webhooks/retell", json=ended)

    assert len(fake_db.tables["call_logs"]) == 1
    usage = fake_db.tables["billing_usage"][0]
    assert usage["calls_made"] == 2
    assert usage["minutes_used"] == pytest.approx(2.0)
