import openai
import pytest

from rxgateway.fallback import analysis_fallback_text
from rxgateway.uploads import MAX_UPLOAD_BYTES
from tests.helpers import (
    PNG_2KB,
    FakeClient,
    completed,
    decode_events,
    delta,
    event_types,
    joined_chunks,
    make_pdf,
    status_error,
)


def _png(name="rx.png"):
    return {"file": (name, PNG_2KB, "image/png")}


# ----------------------------
# Document analysis
# ----------------------------

def test_png_stream_with_model(make_client):
    fake = FakeClient(events=[delta("Amoxicillin "), delta("500mg"), completed()])
    client = make_client(fake)

    resp = client.post("/analyze_stream", files=_png())

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    events = decode_events(resp.text)
    assert event_types(events) == ["metadata", "chunk", "chunk", "done"]
    assert events[0]["fileType"] == "image/png"
    assert events[0]["filename"] == "rx.png"
    assert events[0]["fileSize"] == len(PNG_2KB)
    assert joined_chunks(events) == "Amoxicillin 500mg"
    assert events[-1]["filename"] == "rx.png"
    assert len(fake.responses.calls) == 1


def test_png_stream_without_key_is_fallback(make_client, unconfigured_settings):
    client = make_client(app_settings=unconfigured_settings)

    resp = client.post("/analyze_stream", files=_png())

    assert resp.status_code == 200
    events = decode_events(resp.text)
    assert events[0]["type"] == "metadata"
    assert events[-1]["type"] == "done"
    assert set(event_types(events[1:-1])) == {"chunk"}
    assert joined_chunks(events) == analysis_fallback_text("rx.png", "image/png", len(PNG_2KB))


def test_oversized_upload_rejected_before_stream(make_client):
    fake = FakeClient(events=[delta("never")])
    client = make_client(fake)

    big = b"\x00" * (MAX_UPLOAD_BYTES + 1)
    resp = client.post("/analyze_stream", files={"file": ("huge.png", big, "image/png")})

    assert resp.status_code == 400
    assert resp.json() == {"error": "File size exceeds 25MB limit"}
    assert "metadata" not in resp.text
    assert fake.responses.calls == []


def test_missing_file(make_client):
    resp = make_client(FakeClient()).post("/analyze_stream", data={"note": "x"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No file provided"}


def test_unsupported_type(make_client):
    resp = make_client(FakeClient()).post(
        "/analyze_stream", files={"file": ("notes.txt", b"hello" * 100, "text/plain")}
    )
    assert resp.status_code == 400
    assert "Unsupported file type" in resp.json()["error"]


def test_pdf_metadata_carries_page_count(make_client):
    fake = FakeClient(events=[delta("ok"), completed()])
    resp = make_client(fake).post(
        "/analyze_stream", files={"file": ("rx.pdf", make_pdf(2), "application/pdf")}
    )
    events = decode_events(resp.text)
    assert events[0]["fileType"] == "application/pdf"
    assert events[0]["pages"] == 2
    assert fake.responses.calls[0]["input"][0]["content"][1]["type"] == "input_file"


def test_remote_failure_mid_stream_is_in_band(make_client):
    fake = FakeClient(events=[delta("partial")], stream_error=status_error(openai.RateLimitError, 429))
    resp = make_client(fake).post("/analyze_stream", files=_png())

    assert resp.status_code == 200
    events = decode_events(resp.text)
    assert event_types(events) == ["metadata", "chunk", "error"]
    assert events[-1]["kind"] == "quota_exceeded"
    assert events[-1]["filename"] == "rx.png"


def test_analyze_unary(make_client):
    fake = FakeClient(text="Take one tablet daily.")
    resp = make_client(fake).post("/analyze", files=_png())
    assert resp.status_code == 200
    assert resp.json() == {"result": "Take one tablet daily."}


def test_analyze_unary_without_key(make_client, unconfigured_settings):
    resp = make_client(app_settings=unconfigured_settings).post("/analyze", files=_png())
    assert resp.json() == {"result": analysis_fallback_text("rx.png", "image/png", len(PNG_2KB))}


@pytest.mark.parametrize("cls,status", [
    (openai.BadRequestError, 400),
    (openai.RateLimitError, 429),
    (openai.InternalServerError, 503),
])
def test_analyze_unary_error_statuses(make_client, cls, status):
    fake = FakeClient(error=status_error(cls, 500 if status == 503 else status))
    resp = make_client(fake).post("/analyze", files=_png())
    assert resp.status_code == status
    assert "error" in resp.json()


def test_upload_validation_runs_off_the_event_loop(make_client, monkeypatch):
    from rxgateway import app as app_module

    offloaded = []
    real = app_module.run_in_threadpool

    async def recording(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return await real(func, *args, **kwargs)

    monkeypatch.setattr(app_module, "run_in_threadpool", recording)
    fake = FakeClient(text="One page.")
    resp = make_client(fake).post("/analyze", files={"file": ("rx.pdf", make_pdf(), "application/pdf")})

    assert resp.status_code == 200
    assert offloaded == ["validate_upload"]


# ----------------------------
# Chat
# ----------------------------

def test_chat_empty_message(make_client):
    fake = FakeClient()
    resp = make_client(fake).post("/chat_stream", json={"message": ""})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Message is required and must be a non-empty string"}
    assert fake.responses.calls == []


def test_chat_invalid_json(make_client):
    resp = make_client(FakeClient()).post(
        "/chat", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON in request body"}


def test_chat_malformed_history_rejected(make_client):
    resp = make_client(FakeClient()).post("/chat", json={
        "message": "hi",
        "conversationHistory": [{"text": 5, "isUser": "yes"}],
    })
    assert resp.status_code == 400
    assert "conversationHistory" in resp.json()["error"]


def test_chat_stream_assembles_full_prompt(make_client):
    fake = FakeClient(events=[delta("Yes, "), delta("with food."), completed()])
    resp = make_client(fake).post("/chat_stream", json={
        "message": "Can I take it with food?",
        "threadId": "thread-1",
        "prescriptionContext": {
            "filename": "rx.png", "analysis": "Amoxicillin", "uploadDate": "today", "fileType": "image/png",
        },
        "conversationHistory": [
            {"id": "1", "text": "What is this?", "isUser": True, "timestamp": "t"},
            {"id": "2", "text": "An antibiotic.", "isUser": False, "timestamp": "t"},
        ],
    })

    events = decode_events(resp.text)
    assert event_types(events) == ["metadata", "chunk", "chunk", "done"]
    assert events[0]["threadId"] == "thread-1"
    assert events[-1]["threadId"] == "thread-1"
    assert joined_chunks(events) == "Yes, with food."

    sent = fake.responses.calls[0]["input"]
    assert [item["role"] for item in sent] == ["system", "user", "user", "assistant", "user"]
    assert sent[-1]["content"] == "Can I take it with food?"


def test_chat_stream_mints_thread_id(make_client):
    fake = FakeClient(events=[delta("hi"), completed()])
    events = decode_events(make_client(fake).post("/chat_stream", json={"message": "hello"}).text)
    assert events[0]["threadId"]


def test_chat_unary(make_client):
    fake = FakeClient(text="Twice a day.")
    resp = make_client(fake).post("/chat", json={"message": "How often?", "threadId": "abc"})
    assert resp.status_code == 200
    assert resp.json() == {"result": "Twice a day.", "threadId": "abc"}


def test_chat_fallback_has_same_shape(make_client, unconfigured_settings):
    resp = make_client(app_settings=unconfigured_settings).post(
        "/chat_stream", json={"message": "hello", "threadId": "abc"}
    )
    events = decode_events(resp.text)
    assert events[0]["type"] == "metadata"
    assert events[-1]["type"] == "done"
    assert "- **Thread**: abc" in joined_chunks(events)


# ----------------------------
# Combined endpoint and info
# ----------------------------

def test_api_ai_dispatches_multipart_to_analysis(make_client):
    fake = FakeClient(events=[delta("ok"), completed()])
    events = decode_events(make_client(fake).post("/api/ai", files=_png()).text)
    assert events[0]["fileType"] == "image/png"


def test_api_ai_dispatches_json_to_chat(make_client):
    fake = FakeClient(events=[delta("ok"), completed()])
    events = decode_events(make_client(fake).post("/api/ai", json={"message": "hi", "threadId": "t"}).text)
    assert events[0]["threadId"] == "t"


def test_api_ai_multipart_without_file(make_client):
    resp = make_client(FakeClient()).post("/api/ai", data={"file": "not-a-file"}, files={"other": ("a", b"b")})
    assert resp.status_code == 400


def test_info_and_health(make_client, unconfigured_settings):
    client = make_client(app_settings=unconfigured_settings)
    assert client.get("/health").json() == {"ok": True}
    info = client.get("/").json()
    assert info["model_configured"] is False
    assert info["max_upload_mb"] == 25


def test_chat_rejected_by_model_has_neutral_message(make_client):
    fake = FakeClient(error=status_error(openai.BadRequestError, 400))
    resp = make_client(fake).post("/chat", json={"message": "Can I take this with ibuprofen?"})

    assert resp.status_code == 400
    assert "image" not in resp.json()["error"].lower()
