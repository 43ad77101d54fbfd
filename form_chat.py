# form_chat.py
"""
Conversational form filling.

One call to `process_chat_turn` is one respondent message: the model reads the
message against the form schema and the answers so far, proposes extracted
values and the next question, and this module keeps it honest:

- values are only accepted for field ids that exist in the schema, and are
  coerced to the field's type;
- the next question always points at a real field;
- completion is decided here (every required field answered), never by the
  model.
"""
import base64
import json
import logging
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

import llm
import repository
from form_config import get_fallback_question
from models import Form
from schemas import ChatRequest, ExtractedValue, FormField, FormResponseAction, FormSchema, NextField

logger = logging.getLogger(__name__)

TOOL_NAME = "processFormResponse"

_TRUE_WORDS = {"true", "yes", "y", "1", "on", "checked", "agree", "i agree"}
_FALSE_WORDS = {"false", "no", "n", "0", "off", "unchecked", ""}

_DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)


# ---------- request context ----------

def client_ip(headers) -> Optional[str]:
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or None


def anonymous_user_id(ip_address: str, user_agent: str, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    raw = f"{ip_address}_{user_agent}_{now_ms}".encode("utf-8")
    return "anonymous_" + base64.b64encode(raw).decode("ascii")[:16]


# ---------- state ----------

def required_fields(schema: FormSchema) -> List[FormField]:
    return [f for f in schema.fields if f.required]


def unanswered_required(schema: FormSchema, answers: Dict[str, Any]) -> List[FormField]:
    # presence of the key counts as answered, the value is not inspected
    return [f for f in required_fields(schema) if f.id not in answers]


def is_complete(schema: FormSchema, answers: Dict[str, Any]) -> bool:
    return not unanswered_required(schema, answers)


# ---------- coercion ----------

def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    if isinstance(value, list):
        return len(value) > 0
    return bool(value)


def _to_number(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip().replace(",", ""))
    except ValueError:
        return value
    if number != number or number in (float("inf"), float("-inf")):
        return value
    return int(number) if number.is_integer() else number


def _to_iso_date(value: Any) -> Any:
    if not isinstance(value, str) or not value.strip():
        return value
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return value


def match_option(options: List[str], value: str) -> Optional[str]:
    """Exact, then case-insensitive, then substring match against the options."""
    if value in options:
        return value
    lowered = value.strip().lower()
    if not lowered:
        return None
    for opt in options:
        if opt.lower() == lowered:
            return opt
    for opt in options:
        if lowered in opt.lower():
            return opt
    for opt in options:
        if opt.lower() in lowered:
            return opt
    return None


def coerce_value(field: FormField, value: Any) -> Any:
    """Coerce one extracted value to what `field.type` expects; unknown shapes pass through."""
    if field.type == "checkbox":
        if not field.options:
            return _to_bool(value)
        if isinstance(value, str):
            items = [v.strip() for v in value.split(",") if v.strip()]
        elif isinstance(value, list):
            items = [str(v) for v in value]
        else:
            return value
        return [match_option(field.options, item) or item for item in items]

    if field.type == "number":
        return _to_number(value)

    if field.type == "date":
        return _to_iso_date(value)

    if field.type in ("select", "radio"):
        if field.options and isinstance(value, str) and value not in field.options:
            return match_option(field.options, value) or value
        return value

    if isinstance(value, str):
        return value.strip()
    return value


def apply_extracted_values(
    schema: FormSchema, answers: Dict[str, Any], extracted: List[ExtractedValue]
) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """Merge the model's extracted values into a copy of `answers`."""
    updates: List[Dict[str, Any]] = []
    new_answers = dict(answers)

    for item in extracted:
        field = schema.field_by_id(item.field_id)
        if field is None:
            logger.warning("Dropping value for unknown field id %r", item.field_id)
            continue
        try:
            value = coerce_value(field, item.value)
        except Exception:
            logger.warning("Type coercion failed for %s", field.id, exc_info=True)
            value = item.value
        updates.append({"fieldId": field.id, "value": value})
        new_answers[field.id] = value

    return updates, new_answers


def choose_next_field(
    schema: FormSchema, proposed: Optional[NextField], answers: Dict[str, Any]
) -> Optional[NextField]:
    """
    The question to ask next.

    The model's choice is kept when it names a real field. Otherwise, or when
    it proposed nothing while required fields are still open, the first
    unanswered required field is asked with a plain question.
    """
    if proposed is not None and schema.field_by_id(proposed.field_id) is not None:
        return proposed

    pending = unanswered_required(schema, answers)
    if not pending:
        return None
    field = pending[0]
    return NextField(field_id=field.id, prompt=get_fallback_question(field))


# ---------- model call ----------

def build_fill_prompt(
    schema: FormSchema, answers: Dict[str, Any], pending: List[FormField], message: str
) -> str:
    pending_lines = "\n".join(f"- {f.id}: {f.name} ({f.type})" for f in pending) or "(none)"

    return f"""You are a form-filling assistant. Your job is to help users fill out a form by asking questions one at a time and extracting answers from their responses.

FORM SCHEMA:
{json.dumps(schema.to_json(), indent=2)}

CURRENT ANSWERS:
{json.dumps(answers, indent=2, default=str)}

REQUIRED FIELDS NOT YET ANSWERED:
{pending_lines}

RULES:
1. Ask for ONE field at a time, starting with required unanswered fields
2. Extract field values from user responses when possible
3. Validate extracted values against field types and constraints
4. Never invent field IDs that don't exist in the schema
5. Set complete=true only when ALL required fields are answered
6. Keep responses short and conversational

USER MESSAGE: "{message}"

Based on the user's message, either:
1. Extract field values if they provided information
2. Ask for the next required field if no extractable info
3. Mark complete if all required fields are filled

You MUST respond with ONLY valid JSON in this exact format:
{{
  "assistant": "<short, conversational response to the user>",
  "extractedValues": [{{"fieldId": "<field id from schema>", "value": <string | number | boolean | list of strings>}}],
  "nextField": {{"fieldId": "<next field to ask about>", "prompt": "<question to ask>"}},
  "complete": <true | false>
}}
Omit "nextField" when the form is complete. Do NOT wrap it in markdown or add explanations."""


def parse_extracted_values(raw: Any) -> List[ExtractedValue]:
    """Validate the model's extracted values one by one; malformed items are dropped."""
    if not isinstance(raw, list):
        if raw:
            logger.warning("Ignoring extractedValues that is not a list: %r", raw)
        return []

    values: List[ExtractedValue] = []
    for item in raw:
        try:
            values.append(ExtractedValue.model_validate(item))
        except ValidationError as e:
            logger.warning("Dropping malformed extracted value %r: %s", item, e)
    return values


def ask_model(schema: FormSchema, answers: Dict[str, Any], message: str) -> FormResponseAction:
    pending = unanswered_required(schema, answers)
    data = dict(llm.generate_json(build_fill_prompt(schema, answers, pending, message)))
    raw_values = data.pop("extractedValues", None)
    try:
        action = FormResponseAction.model_validate(data)
    except ValidationError as e:
        raise llm.LLMError(f"{TOOL_NAME} reply did not match the expected shape: {e}") from e
    action.extracted_values = parse_extracted_values(raw_values)
    logger.debug("%s executed: %s", TOOL_NAME, action)
    return action


# ---------- one turn ----------

def process_chat_turn(
    db: Session,
    form: Form,
    body: ChatRequest,
    schema: FormSchema,
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> Dict[str, Any]:
    session_id = body.session_id
    if not session_id:
        user_id = anonymous_user_id(ip_address or "unknown", user_agent or "")
        session = repository.create_chat_session(
            db, user_id=user_id, title=f"Form Fill: {form.title}", form_id=form.id
        )
        session_id = session.id
    else:
        session = repository.get_chat_session(db, session_id)
        if session.form_id != form.id:
            raise repository.NotFoundError("Chat session not found")

    repository.save_chat_message(db, session_id, "user", body.message)

    answers = dict(body.answers)
    logger.info(
        "Form analysis for %s: %d fields, %d required, %d answered, %d required open",
        form.slug,
        len(schema.fields),
        len(required_fields(schema)),
        len(answers),
        len(unanswered_required(schema, answers)),
    )

    action = ask_model(schema, answers, body.message)

    updates, new_answers = apply_extracted_values(schema, answers, action.extracted_values)
    next_field = choose_next_field(schema, action.next_field, new_answers)
    complete = is_complete(schema, new_answers)

    assistant = action.assistant or (next_field.prompt if next_field else "Thanks, that's everything!")
    repository.save_chat_message(db, session_id, "assistant", assistant)

    if updates:
        repository.save_chat_message(
            db,
            session_id,
            "tool",
            "Updated fields: " + ", ".join(f"{u['fieldId']}={u['value']}" for u in updates),
            tool_name=TOOL_NAME,
        )

    logger.info(
        "Chat turn for %s: next=%s updates=%d complete=%s",
        form.slug,
        next_field.field_id if next_field else None,
        len(updates),
        complete,
    )

    response: Dict[str, Any] = {
        "assistant": assistant,
        "draft": {
            "answers": new_answers,
            "meta": {"isSubmitted": False},
        },
        "complete": complete,
        "sessionId": session_id,
    }
    if next_field is not None:
        response["next"] = next_field.model_dump(by_alias=True)
        response["draft"]["meta"]["lastAsked"] = next_field.field_id
    if updates:
        response["updates"] = updates
    return response
