# api.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

import analytics
import config
import form_builder
import form_chat
import repository
from db import SessionLocal, get_db
from form_config import get_field_prompt
from form_filler import render_responses_pdf, render_submission_pdf
from models import ChatMessage, Form
from schemas import (
    AnswerCheckRequest,
    ChatRequest,
    CreateFormRequest,
    FormSchema,
    PopularForm,
    ResponsesOut,
    SentimentAnalysis,
    SpeechRequest,
    SubmissionOut,
    UpdateFormRequest,
)
from speech import tts_to_bytes
from validation import validate_answer, validate_submission

logger = logging.getLogger(__name__)

# ---------- FastAPI router ----------
router = APIRouter(prefix="/api")


def get_current_user(request: Request) -> str:
    """
    The verified user id, as forwarded by the auth provider in front of us.
    Sign-in itself happens upstream; here it is only read.
    """
    user_id = (request.headers.get(config.AUTH_USER_HEADER) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return user_id


def _form_schema(form: Form) -> FormSchema:
    try:
        return FormSchema.model_validate(form.schema_json)
    except ValidationError as e:
        logger.error("Stored schema of form %s is invalid: %s", form.id, e)
        raise HTTPException(status_code=500, detail="Stored form schema is invalid")


def _form_out(form: Form, include_owner_fields: bool = False) -> Dict[str, Any]:
    out = {
        "id": form.id,
        "slug": form.slug,
        "title": form.title,
        "description": form.description,
        "schema": form.schema_json,
        "createdAt": form.created_at,
        "updatedAt": form.updated_at,
    }
    if include_owner_fields:
        out["version"] = form.version
        out["isPublished"] = form.is_published
        out["url"] = form_builder.form_url(form.slug)
    return out


def _message_out(m: ChatMessage) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "toolName": m.tool_name,
        "createdAt": m.created_at,
    }


# ===================== 1) Health =====================
@router.get("/health-check")
def health_check() -> Dict[str, Any]:
    return {
        "message": "health okay",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": "success",
    }


# ===================== 2) Form creation chat (Gemini) =====================
@router.post("/response")
def create_form_chat(
    body: CreateFormRequest,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Uses Gemini to turn the user's description into a form schema, saves the
    form and links it to the creation chat.
    """
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    logger.info("Incoming form request from %s, sessionId=%s", user_id, body.session_id)
    return form_builder.create_form_from_message(db, user_id, body.message, body.session_id)


@router.post("/response/stream")
def create_form_chat_stream(
    body: CreateFormRequest,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    """Same as /response, streamed as Server-Sent Events."""
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    session = form_builder.open_session(db, user_id, body.session_id, body.message)
    session_id = session.id

    def gen():
        # the request-scoped session may be closed before the body is sent
        stream_db = SessionLocal()
        try:
            chat = repository.get_chat_session(stream_db, session_id)
            yield from form_builder.stream_form_creation(stream_db, user_id, chat, body.message)
        finally:
            stream_db.close()

    return StreamingResponse(
        gen(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ===================== 3) Owner form CRUD =====================
@router.get("/forms")
def list_my_forms(
    user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, List[Dict[str, Any]]]:
    rows = repository.list_forms_for_user(db, user_id)
    return {
        "forms": [
            dict(_form_out(form, include_owner_fields=True), submissionCount=count)
            for form, count in rows
        ]
    }


@router.get("/forms/{slug}")
def get_form(slug: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Public view of a published form; the owner id is never exposed."""
    form = repository.get_published_form(db, slug)
    return _form_out(form)


@router.put("/forms/{slug}")
def update_form(
    slug: str,
    body: UpdateFormRequest,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    form = repository.get_owned_form(db, slug, user_id)
    form = repository.update_form_schema(db, form, body.form_schema)
    logger.info("Form %s updated to version %s", form.id, form.version)
    return _form_out(form, include_owner_fields=True)


@router.post("/forms/{slug}/publish")
def publish_form(
    slug: str, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    form = repository.set_published(db, repository.get_owned_form(db, slug, user_id), True)
    return _form_out(form, include_owner_fields=True)


@router.post("/forms/{slug}/unpublish")
def unpublish_form(
    slug: str, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    form = repository.set_published(db, repository.get_owned_form(db, slug, user_id), False)
    return _form_out(form, include_owner_fields=True)


@router.delete("/forms/{slug}")
def delete_form(
    slug: str, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    form = repository.get_owned_form(db, slug, user_id)
    form_id = form.id
    repository.delete_form(db, form)
    logger.info("Form %s deleted by %s", form_id, user_id)
    return {"success": True, "id": form_id}


# ===================== 4) Submit form endpoint (DB-backed) =====================
@router.post("/forms/{slug}/submit")
def submit_form(
    slug: str,
    request: Request,
    data: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    1. Validate the answers against the published form's schema.
    2. Save the submission with the client IP.
    """
    form = repository.get_published_form(db, slug)
    schema = _form_schema(form)

    is_valid, errors = validate_submission(data, schema)
    if not is_valid:
        raise HTTPException(
            status_code=400, detail={"error": "Validation failed", "details": errors}
        )

    known = {f.id for f in schema.fields}
    answers = {k: v for k, v in data.items() if k in known}
    saved = repository.save_submission(
        db, form.id, answers, ip_address=form_chat.client_ip(request.headers)
    )

    return {
        "success": True,
        "message": schema.success_message or "Thank you for your submission!",
        "submissionId": saved.id,
        "submittedAt": saved.submitted_at,
    }


# ===================== 5) Responses (owner) =====================
@router.get("/forms/{slug}/responses", response_model=ResponsesOut)
def list_responses(
    slug: str, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> ResponsesOut:
    form = repository.get_owned_form(db, slug, user_id)
    rows = repository.get_submissions(db, form.id)
    logger.info("Fetched %d responses for %s", len(rows), slug)
    return ResponsesOut(
        responses=[
            SubmissionOut(id=r.id, data=r.data or {}, submittedAt=r.submitted_at, ipAddress=r.ip_address)
            for r in rows
        ],
        form={"id": form.id, "title": form.title, "schema": form.schema_json},
    )


@router.get("/forms/{slug}/responses/pdf")
def export_responses_pdf(
    slug: str, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Response:
    form = repository.get_owned_form(db, slug, user_id)
    pdf = render_responses_pdf(_form_schema(form), repository.get_submissions(db, form.id))
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{form.slug}_responses.pdf"'},
    )


@router.get("/forms/{slug}/responses/{submission_id}/pdf")
def export_response_pdf(
    slug: str,
    submission_id: int,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    form = repository.get_owned_form(db, slug, user_id)
    row = repository.get_submission(db, form.id, submission_id)
    pdf = render_submission_pdf(_form_schema(form), row.data or {}, row.id, row.submitted_at)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="submission_{row.id}.pdf"'},
    )


# ===================== 6) Conversational filling (public) =====================
@router.post("/forms/{slug}/chat")
def chat_fill_form(
    slug: str, body: ChatRequest, request: Request, db: Session = Depends(get_db)
) -> Dict[str, Any]:
    logger.info("Chat request for form %s, sessionId=%s", slug, body.session_id)

    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    if not body.form_schema or not body.form_schema.get("fields"):
        raise HTTPException(status_code=400, detail="Form schema is required")
    try:
        schema = FormSchema.model_validate(body.form_schema)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid form schema: {e}")

    form = repository.get_published_form(db, slug)
    return form_chat.process_chat_turn(
        db,
        form,
        body,
        schema,
        ip_address=form_chat.client_ip(request.headers),
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/forms/{slug}/chat/speech")
def chat_speech(slug: str, body: SpeechRequest, db: Session = Depends(get_db)) -> Response:
    """Read an assistant message aloud (MP3)."""
    repository.get_published_form(db, slug)
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")
    audio = tts_to_bytes(body.text, body.language)
    return Response(content=audio, media_type="audio/mpeg")


@router.get("/forms/{slug}/fields/{field_id}/prompt")
def field_prompt(slug: str, field_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """The question for one field in the step-by-step filler."""
    schema = _form_schema(repository.get_published_form(db, slug))
    field = schema.field_by_id(field_id)
    if field is None:
        raise HTTPException(status_code=404, detail="Field not found")
    return {"fieldId": field.id, "prompt": get_field_prompt(field)}


@router.post("/forms/{slug}/fields/{field_id}/check")
def check_answer(
    slug: str, field_id: str, body: AnswerCheckRequest, db: Session = Depends(get_db)
) -> Dict[str, Any]:
    schema = _form_schema(repository.get_published_form(db, slug))
    field = schema.field_by_id(field_id)
    if field is None:
        raise HTTPException(status_code=404, detail="Field not found")

    error = validate_answer(field, body.value.strip())
    out: Dict[str, Any] = {"valid": error is None, "error": error}
    if error is None:
        value: Any = body.value.strip()
        if field.type == "number" and value:
            value = form_chat.coerce_value(field, value)
        out["value"] = value
    return out


# ===================== 7) Chat history (owner) =====================
@router.get("/forms/{slug}/chat-history")
def form_chat_history(
    slug: str, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    form = repository.get_owned_form(db, slug, user_id)
    sessions = repository.get_chat_history_for_form(db, form)
    return {
        "sessions": [
            {
                "id": s.id,
                "title": s.title,
                "createdAt": s.created_at,
                "messages": [_message_out(m) for m in s.messages],
            }
            for s in sessions
        ]
    }


@router.get("/chat-sessions/{session_id}/messages")
def session_messages(
    session_id: int, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    session = repository.get_chat_session(db, session_id, user_id=user_id)
    messages = repository.get_session_messages(db, session.id)
    return {
        "sessionId": session.id,
        "formId": session.form_id,
        "messages": [_message_out(m) for m in messages],
    }


# ===================== 8) Analytics (owner) =====================
@router.get("/analytics/sentiment", response_model=SentimentAnalysis)
def sentiment(
    user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> SentimentAnalysis:
    return analytics.sentiment_for_user(db, user_id)


@router.get("/analytics/popular-form", response_model=Optional[PopularForm])
def popular_form(
    user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Optional[PopularForm]:
    return analytics.most_popular_form(db, user_id)


@router.get("/analytics/summary")
def analytics_summary(
    user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return analytics.user_summary(db, user_id)


@router.get("/forms/{slug}/analytics")
def form_analytics(
    slug: str, user_id: str = Depends(get_current_user), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    form = repository.get_owned_form(db, slug, user_id)
    return analytics.form_field_stats(db, form)
