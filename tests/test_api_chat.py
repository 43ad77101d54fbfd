import json

import config
import llm
import repository
from conftest import CONTACT_SCHEMA, OTHER, auth
from models import Form


def _chat(client, slug, message, answers=None, session_id=None, headers=None):
    body = {"message": message, "schema": CONTACT_SCHEMA, "answers": answers or {}}
    if session_id:
        body["sessionId"] = session_id
    return client.post(f"/api/forms/{slug}/chat", json=body, headers=headers or {})


def test_chat_turn_extracts_coerces_and_asks_next(client, db, fake_llm, published_form):
    fake_llm.queue(
        {
            "assistant": "Nice to meet you, Ada! What's your email?",
            "extractedValues": [
                {"fieldId": "name", "value": " Ada Lovelace "},
                {"fieldId": "age", "value": "36"},
                {"fieldId": "made_up", "value": "x"},
            ],
            "nextField": {"fieldId": "email", "prompt": "What's your email?"},
            "complete": True,
        }
    )
    resp = _chat(client, published_form.slug, "I'm Ada Lovelace, 36", headers={"User-Agent": "pytest"})
    assert resp.status_code == 200
    body = resp.json()

    assert body["updates"] == [
        {"fieldId": "name", "value": "Ada Lovelace"},
        {"fieldId": "age", "value": 36},
    ]
    assert body["draft"]["answers"] == {"name": "Ada Lovelace", "age": 36}
    assert body["draft"]["meta"] == {"isSubmitted": False, "lastAsked": "email"}
    assert body["next"] == {"fieldId": "email", "prompt": "What's your email?"}
    # the model said complete, but email and plan are still open
    assert body["complete"] is False

    session = repository.get_chat_session(db, body["sessionId"])
    assert session.user_id.startswith("anonymous_")
    assert session.title == "Form Fill: Contact Form"
    assert session.form_id == published_form.id

    messages = repository.get_session_messages(db, session.id)
    assert [m.role for m in messages] == ["user", "assistant", "tool"]
    assert messages[2].tool_name == "processFormResponse"
    assert messages[2].content == "Updated fields: name=Ada Lovelace, age=36"

    assert "REQUIRED FIELDS NOT YET ANSWERED" in fake_llm.prompts[0]


def test_chat_turn_completes_and_reuses_session(client, db, fake_llm, published_form):
    fake_llm.queue(
        {"assistant": "Hi! What's your name?", "nextField": {"fieldId": "name", "prompt": "Name?"}, "complete": False},
        {
            "assistant": "All done, thanks!",
            "extractedValues": [{"fieldId": "plan", "value": "premium"}],
            "nextField": {"fieldId": "invented", "prompt": "?"},
            "complete": False,
        },
    )
    first = _chat(client, published_form.slug, "hello").json()
    assert "updates" not in first
    assert first["next"]["fieldId"] == "name"

    second = _chat(
        client,
        published_form.slug,
        "premium please",
        answers={"name": "Ada", "email": "ada@example.com"},
        session_id=first["sessionId"],
    ).json()
    assert second["sessionId"] == first["sessionId"]
    assert second["draft"]["answers"]["plan"] == "Premium"
    assert second["complete"] is True
    assert "next" not in second
    assert "lastAsked" not in second["draft"]["meta"]

    messages = repository.get_session_messages(db, first["sessionId"])
    assert [m.role for m in messages] == ["user", "assistant", "user", "assistant", "tool"]


def test_chat_invented_next_field_falls_back_to_first_open_required(client, fake_llm, published_form):
    fake_llm.queue({"assistant": "Tell me your shoe size", "nextField": {"fieldId": "shoe", "prompt": "Shoe?"}})
    body = _chat(client, published_form.slug, "hi", answers={"name": "Ada"}).json()
    assert body["next"] == {"fieldId": "email", "prompt": "What is your email?"}


def test_chat_request_validation(client, published_form):
    slug = published_form.slug
    resp = client.post(f"/api/forms/{slug}/chat", json={"message": "", "schema": CONTACT_SCHEMA})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Message is required"

    resp = client.post(f"/api/forms/{slug}/chat", json={"message": "hi"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Form schema is required"

    resp = client.post(f"/api/forms/missing/chat", json={"message": "hi", "schema": CONTACT_SCHEMA})
    assert resp.status_code == 404


def test_chat_llm_failure_is_a_502(client, fake_llm, published_form):
    fake_llm.queue(llm.LLMError("Gemini error: boom"))
    resp = _chat(client, published_form.slug, "hi")
    assert resp.status_code == 502


def test_chat_session_from_another_form_is_rejected(client, db, fake_llm, published_form):
    other = repository.create_chat_session(db, OTHER, "Form Creation Chat")
    resp = _chat(client, published_form.slug, "hi", session_id=other.id)
    assert resp.status_code == 404


def test_create_form_from_message(client, db, fake_llm):
    fake_llm.queue(
        {
            "title": "Event RSVP",
            "fields": [
                {"id": "name", "name": "Full Name", "type": "text"},
                {"id": "attending", "name": "Attending", "type": "radio", "options": ["Yes", "No"]},
            ],
        }
    )
    resp = client.post("/api/response", json={"message": "an RSVP form"}, headers=auth())
    assert resp.status_code == 200
    body = resp.json()
    assert body["type"] == "form_created"
    assert body["formUrl"].startswith("/f/event-rsvp-")
    assert body["message"] == f'I\'ve created your form: "Event RSVP"! You can access it at {body["formUrl"]}'
    assert body["formSchema"]["submitText"] == "Submit"

    form = db.get(Form, body["formId"])
    assert form.user_id == "user_owner"
    assert form.is_published is False

    session = repository.get_chat_session(db, body["sessionId"])
    assert session.form_id == form.id
    assert session.title == "Form Creation Chat"
    roles = [m.role for m in repository.get_session_messages(db, session.id)]
    assert roles == ["user", "assistant", "tool"]


def test_create_form_conversation_and_invalid_schema(client, fake_llm):
    fake_llm.queue({"reply": "Happy to help! What should the form collect?"}, {"title": "Empty", "fields": []})

    body = client.post("/api/response", json={"message": "hello"}, headers=auth()).json()
    assert body["type"] == "conversation"
    assert body["message"] == "Happy to help! What should the form collect?"

    body = client.post(
        "/api/response", json={"message": "a form", "sessionId": body["sessionId"]}, headers=auth()
    ).json()
    assert body["type"] == "form_creation_error"
    assert "fields" in body["error"]


def test_create_form_requires_message_and_own_session(client, db, fake_llm):
    assert client.post("/api/response", json={"message": " "}, headers=auth()).status_code == 400
    assert client.post("/api/response", json={"message": "x"}).status_code == 401

    theirs = repository.create_chat_session(db, OTHER, "Form Creation Chat")
    resp = client.post("/api/response", json={"message": "x", "sessionId": theirs.id}, headers=auth())
    assert resp.status_code == 404


def test_create_form_stream(client, db, fake_llm):
    fake_llm.chunks = ['{"title": "Bug Report", ', '"fields": [{"id": "summary", "name": "Summary", "type": "textarea"}]}']
    with client.stream("POST", "/api/response/stream", json={"message": "bug form"}, headers=auth()) as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = [
            json.loads(line[len("data: "):])
            for line in resp.iter_lines()
            if line.startswith("data: ")
        ]

    assert [e["type"] for e in events] == ["text", "text", "tool_result", "complete"]
    assert events[2]["content"]["type"] == "form_created"
    assert events[3]["fullText"].startswith('{"title": "Bug Report"')

    forms = client.get("/api/forms", headers=auth()).json()["forms"]
    assert forms[0]["title"] == "Bug Report"


def test_create_form_stream_reports_errors_as_events(client, fake_llm):
    fake_llm.chunks = ["not json at all"]
    with client.stream("POST", "/api/response/stream", json={"message": "x"}, headers=auth()) as resp:
        events = [json.loads(line[6:]) for line in resp.iter_lines() if line.startswith("data: ")]
    assert events[-1]["type"] == "error"


def test_chat_history_for_owner(client, fake_llm, published_form):
    fake_llm.queue({"assistant": "What's your name?"})
    session_id = _chat(client, published_form.slug, "hi").json()["sessionId"]

    resp = client.get(f"/api/forms/{published_form.slug}/chat-history", headers=auth())
    assert resp.status_code == 200
    sessions = resp.json()["sessions"]
    assert [s["id"] for s in sessions] == [session_id]
    assert [m["content"] for m in sessions[0]["messages"]] == ["hi", "What's your name?"]

    assert client.get(f"/api/forms/{published_form.slug}/chat-history", headers=auth(OTHER)).status_code == 404


def test_session_messages_for_owner_only(client, db):
    session = repository.create_chat_session(db, "user_owner", "Form Creation Chat")
    repository.save_chat_message(db, session.id, "user", "make me a form")

    resp = client.get(f"/api/chat-sessions/{session.id}/messages", headers=auth())
    assert resp.status_code == 200
    assert resp.json()["messages"][0]["content"] == "make me a form"
    assert client.get(f"/api/chat-sessions/{session.id}/messages", headers=auth(OTHER)).status_code == 404


def test_missing_gemini_key_is_a_503(client, monkeypatch):
    monkeypatch.setattr(config, "GEMINI_API_KEY", None)
    resp = client.post("/api/response", json={"message": "a contact form"}, headers=auth())
    assert resp.status_code == 503
    assert resp.json()["detail"] == "AI service is not configured"


def test_chat_keeps_good_values_when_one_is_malformed(client, fake_llm, published_form):
    fake_llm.queue(
        {
            "assistant": "Thanks Ada! What's your email?",
            "extractedValues": [
                {"fieldId": "name", "value": "Ada"},
                {"fieldId": "age", "value": None},
                {"fieldId": "plan", "value": [36]},
            ],
            "nextField": {"fieldId": "email", "prompt": "What's your email?"},
        }
    )
    resp = _chat(client, published_form.slug, "I'm Ada")
    assert resp.status_code == 200
    body = resp.json()
    assert body["updates"] == [{"fieldId": "name", "value": "Ada"}]
    assert body["draft"]["answers"] == {"name": "Ada"}


def test_chat_empty_value_is_an_update(client, db, fake_llm, published_form):
    fake_llm.queue(
        {
            "assistant": "No message, got it.",
            "extractedValues": [{"fieldId": "message", "value": ""}],
        }
    )
    body = _chat(client, published_form.slug, "nothing to add").json()
    assert body["updates"] == [{"fieldId": "message", "value": ""}]
    assert body["draft"]["answers"] == {"message": ""}

    messages = repository.get_session_messages(db, body["sessionId"])
    assert messages[-1].content == "Updated fields: message="
