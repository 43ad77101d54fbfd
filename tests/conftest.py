from __future__ import annotations

import os
import tempfile

# must be set before config/db are imported anywhere
_TMP_DIR = tempfile.mkdtemp(prefix="formpilot-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ["PUBLIC_BASE_URL"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import llm  # noqa: E402
import repository  # noqa: E402
from db import SessionLocal, engine  # noqa: E402
from main import app  # noqa: E402
from models import Base  # noqa: E402
from schemas import FormSchema  # noqa: E402

OWNER = "user_owner"
OTHER = "user_other"

CONTACT_SCHEMA = {
    "title": "Contact Form",
    "description": "Get in touch",
    "fields": [
        {"id": "name", "name": "Full Name", "type": "text", "required": True},
        {"id": "email", "name": "Email", "type": "email", "required": True},
        {"id": "age", "name": "Age", "type": "number", "required": False},
        {
            "id": "plan",
            "name": "Plan",
            "type": "select",
            "required": True,
            "options": ["Basic", "Premium"],
        },
        {"id": "message", "name": "Message", "type": "textarea", "required": False},
    ],
    "submitText": "Send",
    "successMessage": "Thanks, we will be in touch!",
}


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def auth(user_id: str = OWNER) -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture
def contact_schema() -> FormSchema:
    return FormSchema.model_validate(CONTACT_SCHEMA)


@pytest.fixture
def published_form(db, contact_schema):
    return repository.create_form(db, OWNER, contact_schema, published=True)


class FakeLLM:
    """Queued JSON replies instead of Gemini; records every prompt it sees."""

    def __init__(self):
        self.replies = []
        self.prompts = []
        self.chunks = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def generate_json(self, prompt):
        self.prompts.append(prompt)
        if not self.replies:
            raise AssertionError("unexpected LLM call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def stream_text(self, prompt):
        self.prompts.append(prompt)
        for chunk in self.chunks:
            yield chunk


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(llm, "generate_json", fake.generate_json)
    monkeypatch.setattr(llm, "stream_text", fake.stream_text)
    return fake
