# form_builder.py
"""
Form creation by conversation: one user message in, one saved form out.
"""
import json
import logging
import re
from typing import Any, Dict, Iterator, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

import config
import llm
import repository
from form_config import (
    COMMON_FIELD_MAPPINGS,
    DEFAULT_SUBMIT_TEXT,
    DEFAULT_SUCCESS_MESSAGE,
    FIELD_TYPES,
)
from models import ChatSession
from schemas import FormSchema

logger = logging.getLogger(__name__)

TOOL_NAME = "createForm"
SESSION_TITLE = "Form Creation Chat"
DEFAULT_CONVERSATION_REPLY = (
    "I'm here to help you create forms! Just describe what kind of form you need."
)


class FormGenerationError(Exception):
    """The model's form did not have a title or any usable fields."""


def form_url(slug: str) -> str:
    return f"{config.PUBLIC_BASE_URL}/f/{slug}"


def build_creation_prompt(message: str) -> str:
    mappings = "\n".join(
        f'- "{key}" → {json.dumps(value)}' for key, value in COMMON_FIELD_MAPPINGS.items()
    )
    return f"""You are a Form Creator Bot. Your primary job is to help users create forms by analyzing their requests.

IMPORTANT: When a user mentions form-related content, you MUST reply with a form definition.

EXAMPLE: If user says "I need a contact form with name, email, phone"
You MUST reply with:
{{
  "title": "Contact Form",
  "fields": [
    {{"id": "name", "name": "Full Name", "type": "text", "required": true, "placeholder": "Enter your name"}},
    {{"id": "email", "name": "Email", "type": "email", "required": true, "placeholder": "Enter your email"}},
    {{"id": "phone", "name": "Phone", "type": "text", "required": true, "placeholder": "Enter your phone number"}}
  ]
}}

Always extract field information and create appropriate field objects. Common field mappings:
{mappings}

Field "type" must be one of: {", ".join(FIELD_TYPES)}.
Use "options" (a list of strings) for select, radio and checkbox fields.
You may also set "description", "submitText" and "successMessage".

If the message has nothing to do with building a form, reply with {{"reply": "<short answer>"}} instead.

You MUST respond with ONLY valid JSON. Do NOT wrap it in markdown or add explanations.

User request: {message}"""


def _field_id_from_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "field"


def normalize_generated_schema(data: Dict[str, Any]) -> FormSchema:
    """
    Turn the model's form definition into a validated `FormSchema`.

    Applies the defaults the model tends to leave out, gives fields without an
    id one derived from their name, and suffixes duplicate ids (`email`,
    `email_2`, ...).
    """
    title = data.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if not title:
        raise FormGenerationError("Missing required parameter: title")

    raw_fields = data.get("fields")
    if not isinstance(raw_fields, list) or not raw_fields:
        raise FormGenerationError("Missing or invalid parameter: fields")

    fields = []
    seen: Dict[str, int] = {}
    for raw in raw_fields:
        if not isinstance(raw, dict):
            raise FormGenerationError(f"Invalid field definition: {raw!r}")
        field = dict(raw)
        field["name"] = (field.get("name") or field.get("label") or field.get("id") or "").strip()
        if not field["name"]:
            raise FormGenerationError("Field without a name")
        field.pop("label", None)
        field_type = (field.get("type") or "text").lower()
        if field_type not in FIELD_TYPES:
            raise FormGenerationError(f"Unsupported field type '{field_type}'")
        field["type"] = field_type
        field.setdefault("required", True)

        base_id = (field.get("id") or "").strip() or _field_id_from_name(field["name"])
        n = seen.get(base_id, 0) + 1
        seen[base_id] = n
        field["id"] = base_id if n == 1 else f"{base_id}_{n}"
        fields.append(field)

    try:
        return FormSchema(
            title=title,
            description=data.get("description") or f"Form for {title}",
            fields=fields,
            submitText=data.get("submitText") or DEFAULT_SUBMIT_TEXT,
            successMessage=data.get("successMessage") or DEFAULT_SUCCESS_MESSAGE,
        )
    except ValidationError as e:
        raise FormGenerationError(str(e)) from e


# ---------- session plumbing shared by both routes ----------

def open_session(db: Session, user_id: str, session_id: Optional[int], message: str) -> ChatSession:
    """Find or create the creation chat and store the user's message in it."""
    if session_id:
        session = repository.get_chat_session(db, session_id, user_id=user_id)
    else:
        logger.info("Creating new chat session for %s", user_id)
        session = repository.create_chat_session(db, user_id=user_id, title=SESSION_TITLE)

    repository.save_chat_message(db, session.id, "user", message)
    return session


def _save_generated_form(
    db: Session, user_id: str, session: ChatSession, schema: FormSchema
) -> Dict[str, Any]:
    form = repository.create_form(db, user_id, schema)
    url = form_url(form.slug)
    repository.link_session_to_form(db, session, form.id)
    logger.info("Session %s linked to form %s", session.id, form.id)
    return {
        "formSchema": dict(schema.to_json(), id=f"form_{form.id}"),
        "formUrl": url,
        "formId": form.id,
        "sessionId": session.id,
        "type": "form_created",
    }


def _handle_reply(db: Session, user_id: str, session: ChatSession, data: Dict[str, Any]) -> Dict[str, Any]:
    if "fields" not in data and "title" not in data:
        reply = data.get("reply") or data.get("message") or DEFAULT_CONVERSATION_REPLY
        repository.save_chat_message(db, session.id, "assistant", reply)
        return {"message": reply, "sessionId": session.id, "type": "conversation"}

    try:
        schema = normalize_generated_schema(data)
    except FormGenerationError as e:
        logger.error("Invalid form schema returned from model: %s", e)
        reply = "Failed to create form - invalid schema generated"
        repository.save_chat_message(db, session.id, "assistant", reply)
        return {
            "message": reply,
            "error": str(e),
            "sessionId": session.id,
            "type": "form_creation_error",
        }

    result = _save_generated_form(db, user_id, session, schema)
    reply = f'I\'ve created your form: "{schema.title}"! You can access it at {result["formUrl"]}'
    repository.save_chat_message(db, session.id, "assistant", reply)
    repository.save_chat_message(
        db, session.id, "tool", json.dumps(result["formSchema"]), tool_name=TOOL_NAME
    )
    return dict(result, message=reply)


# ---------- entry points ----------

def create_form_from_message(
    db: Session, user_id: str, message: str, session_id: Optional[int] = None
) -> Dict[str, Any]:
    session = open_session(db, user_id, session_id, message)
    data = llm.generate_json(build_creation_prompt(message))
    return _handle_reply(db, user_id, session, data)


def sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def stream_form_creation(
    db: Session, user_id: str, session: ChatSession, message: str
) -> Iterator[str]:
    """
    SSE events for one creation turn: `text` per model chunk, then
    `tool_result` with the creation outcome, then `complete`. A failure
    mid-stream becomes an `error` event, the HTTP status is already sent.
    """
    full_text = ""
    try:
        for chunk in llm.stream_text(build_creation_prompt(message)):
            full_text += chunk
            yield sse({"type": "text", "content": chunk, "sessionId": session.id})

        data = llm.parse_json_reply(full_text)
        result = _handle_reply(db, user_id, session, data)
        yield sse({"type": "tool_result", "content": result, "sessionId": session.id})
    except Exception as e:
        logger.exception("Error generating streaming response")
        yield sse({"type": "error", "message": str(e), "sessionId": session.id})
        return

    yield sse({"type": "complete", "sessionId": session.id, "fullText": full_text})
