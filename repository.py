# repository.py
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models import ChatMessage, ChatSession, Form, Submission
from schemas import FormSchema

logger = logging.getLogger(__name__)

SLUG_MAX_LEN = 120
_SLUG_ATTEMPTS = 5


class NotFoundError(Exception):
    pass


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")
    return slug or "form"


def make_slug(title: str) -> str:
    suffix = uuid.uuid4().hex[:6]
    base = slugify(title)[: SLUG_MAX_LEN - len(suffix) - 1].rstrip("-")
    return f"{base}-{suffix}"


# ===================== Forms =====================

def create_form(db: Session, user_id: str, schema: FormSchema, published: bool = False) -> Form:
    """Store a new form under a fresh unique slug."""
    for _ in range(_SLUG_ATTEMPTS):
        obj = Form(
            user_id=user_id,
            slug=make_slug(schema.title),
            title=schema.title,
            description=schema.description,
            schema_json=schema.to_json(),
            is_published=published,
        )
        db.add(obj)
        try:
            db.commit()
        except IntegrityError:
            # slug collision, try another suffix
            db.rollback()
            continue
        db.refresh(obj)
        logger.info("Form %s saved for user %s (slug=%s)", obj.id, user_id, obj.slug)
        return obj
    raise RuntimeError("could not allocate a unique slug")


def get_form_by_slug(db: Session, slug: str) -> Optional[Form]:
    return db.query(Form).filter(Form.slug == slug).first()


def get_published_form(db: Session, slug: str) -> Form:
    form = get_form_by_slug(db, slug)
    if not form or not form.is_published:
        raise NotFoundError("Form not found")
    return form


def get_owned_form(db: Session, slug: str, user_id: str) -> Form:
    form = db.query(Form).filter(Form.slug == slug, Form.user_id == user_id).first()
    if not form:
        raise NotFoundError("Form not found or access denied")
    return form


def list_forms_for_user(db: Session, user_id: str) -> List[Tuple[Form, int]]:
    counts = (
        db.query(Submission.form_id, func.count(Submission.id).label("n"))
        .group_by(Submission.form_id)
        .subquery()
    )
    rows = (
        db.query(Form, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.form_id == Form.id)
        .filter(Form.user_id == user_id)
        .order_by(Form.created_at.desc(), Form.id.desc())
        .all()
    )
    return [(form, int(n)) for form, n in rows]


def update_form_schema(db: Session, form: Form, schema: FormSchema) -> Form:
    form.title = schema.title
    form.description = schema.description
    form.schema_json = schema.to_json()
    form.version = (form.version or 1) + 1
    form.updated_at = func.now()
    db.commit()
    db.refresh(form)
    return form


def set_published(db: Session, form: Form, published: bool) -> Form:
    form.is_published = published
    form.updated_at = func.now()
    db.commit()
    db.refresh(form)
    return form


def delete_form(db: Session, form: Form) -> None:
    db.delete(form)
    db.commit()


# ===================== Chat sessions =====================

def create_chat_session(
    db: Session, user_id: str, title: str, form_id: Optional[int] = None
) -> ChatSession:
    obj = ChatSession(user_id=user_id, title=title, form_id=form_id)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info("Chat session %s created for %s", obj.id, user_id)
    return obj


def get_chat_session(db: Session, session_id: int, user_id: Optional[str] = None) -> ChatSession:
    q = db.query(ChatSession).filter(ChatSession.id == session_id)
    if user_id is not None:
        q = q.filter(ChatSession.user_id == user_id)
    session = q.first()
    if not session:
        raise NotFoundError("Chat session not found")
    return session


def link_session_to_form(db: Session, session: ChatSession, form_id: int) -> ChatSession:
    session.form_id = form_id
    session.updated_at = func.now()
    db.commit()
    db.refresh(session)
    return session


def save_chat_message(
    db: Session,
    session_id: int,
    role: str,
    content: str,
    tool_name: Optional[str] = None,
) -> ChatMessage:
    obj = ChatMessage(session_id=session_id, role=role, content=content, tool_name=tool_name)
    db.add(obj)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(obj)
    return obj


def get_session_messages(db: Session, session_id: int) -> List[ChatMessage]:
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.id.asc())
        .all()
    )


def get_chat_history_for_form(db: Session, form: Form) -> List[ChatSession]:
    return (
        db.query(ChatSession)
        .options(selectinload(ChatSession.messages))
        .filter(ChatSession.form_id == form.id)
        .order_by(ChatSession.id.asc())
        .all()
    )


# ===================== Submissions =====================

def save_submission(
    db: Session, form_id: int, data: Dict[str, Any], ip_address: Optional[str] = None
) -> Submission:
    obj = Submission(form_id=form_id, data=data, ip_address=ip_address)
    db.add(obj)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(obj)
    logger.info("Form submission saved: %s (form %s)", obj.id, form_id)
    return obj


def get_submissions(db: Session, form_id: int) -> List[Submission]:
    return (
        db.query(Submission)
        .filter(Submission.form_id == form_id)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        .all()
    )


def get_submission(db: Session, form_id: int, submission_id: int) -> Submission:
    row = (
        db.query(Submission)
        .filter(Submission.form_id == form_id, Submission.id == submission_id)
        .first()
    )
    if not row:
        raise NotFoundError("Submission not found")
    return row


def get_submissions_for_user(db: Session, user_id: str) -> List[Tuple[Submission, Form]]:
    return (
        db.query(Submission, Form)
        .join(Form, Submission.form_id == Form.id)
        .filter(Form.user_id == user_id)
        .order_by(Submission.id.asc())
        .all()
    )


def get_most_popular_form(db: Session, user_id: str) -> Optional[Tuple[Form, int]]:
    rows = list_forms_for_user(db, user_id)
    if not rows:
        return None
    # ties go to the most recently created form
    return max(rows, key=lambda r: r[1])
