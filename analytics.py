# analytics.py
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

import llm
import repository
from form_config import CHOICE_TYPES, FREE_TEXT_TYPES
from models import Form
from schemas import FormSchema, PopularForm, SentimentAnalysis
from validation import is_empty

logger = logging.getLogger(__name__)

POSITIVE_THRESHOLD = 0.1
NEGATIVE_THRESHOLD = -0.1


def classify_score(score: float) -> str:
    if score > POSITIVE_THRESHOLD:
        return "positive"
    if score < NEGATIVE_THRESHOLD:
        return "negative"
    return "neutral"


def load_schema(form: Form) -> Optional[FormSchema]:
    try:
        return FormSchema.model_validate(form.schema_json)
    except ValidationError:
        logger.warning("Form %s has an invalid stored schema", form.id)
        return None


def free_text_of(data: Dict[str, Any], schema: Optional[FormSchema]) -> str:
    """The respondent's own words in one submission, joined into one string."""
    if schema is None:
        parts = [v for v in data.values() if isinstance(v, str)]
    else:
        parts = [
            data.get(f.id)
            for f in schema.fields
            if f.type in FREE_TEXT_TYPES and isinstance(data.get(f.id), str)
        ]
    return "\n".join(p.strip() for p in parts if p and p.strip())


def build_sentiment_prompt(texts: List[str]) -> str:
    numbered = json.dumps([{"index": i, "text": t} for i, t in enumerate(texts)], indent=2)
    return f"""You are a sentiment analysis engine for form responses.

For every response below return a sentiment score between -1 (very negative)
and 1 (very positive); 0 is neutral.

RESPONSES:
{numbered}

You MUST respond with ONLY valid JSON in this exact format:
{{
  "scores": [{{"index": <int>, "score": <float>}}]
}}

Do NOT wrap it in markdown or add explanations."""


def score_texts(texts: List[str]) -> List[float]:
    if not texts:
        return []

    data = llm.generate_json(build_sentiment_prompt(texts))
    scores = [0.0] * len(texts)
    for item in data.get("scores") or []:
        try:
            index = int(item["index"])
            score = float(item["score"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed sentiment item %r", item)
            continue
        if 0 <= index < len(texts):
            scores[index] = max(-1.0, min(1.0, score))
    return scores


def sentiment_for_user(db: Session, user_id: str) -> SentimentAnalysis:
    rows = repository.get_submissions_for_user(db, user_id)
    if not rows:
        return SentimentAnalysis()

    schemas: Dict[int, Optional[FormSchema]] = {}
    texts: List[str] = []
    for submission, form in rows:
        if form.id not in schemas:
            schemas[form.id] = load_schema(form)
        texts.append(free_text_of(submission.data or {}, schemas[form.id]))

    # responses without free text are neutral and never sent to the model
    to_score = [(i, t) for i, t in enumerate(texts) if t]
    scored = score_texts([t for _, t in to_score])
    scores = [0.0] * len(texts)
    for (i, _), score in zip(to_score, scored):
        scores[i] = score

    result = SentimentAnalysis(totalResponses=len(scores))
    for score in scores:
        bucket = classify_score(score)
        setattr(result, bucket, getattr(result, bucket) + 1)
    result.averageScore = round(sum(scores) / len(scores), 4)
    logger.info("Sentiment for %s over %d responses: %s", user_id, len(scores), result)
    return result


def most_popular_form(db: Session, user_id: str) -> Optional[PopularForm]:
    row = repository.get_most_popular_form(db, user_id)
    if row is None:
        return None
    form, count = row
    return PopularForm(
        id=form.id,
        slug=form.slug,
        title=form.title,
        createdAt=form.created_at,
        submissionCount=count,
    )


def user_summary(db: Session, user_id: str) -> Dict[str, Any]:
    forms = repository.list_forms_for_user(db, user_id)
    return {
        "totalForms": len(forms),
        "publishedForms": sum(1 for form, _ in forms if form.is_published),
        "totalSubmissions": sum(n for _, n in forms),
        "forms": [
            {"id": form.id, "slug": form.slug, "title": form.title, "submissionCount": n}
            for form, n in forms
        ],
    }


def form_field_stats(db: Session, form: Form) -> Dict[str, Any]:
    """Per-field answer counts, plus the option distribution for choice fields."""
    schema = load_schema(form)
    submissions = repository.get_submissions(db, form.id)
    total = len(submissions)

    fields = []
    for field in schema.fields if schema else []:
        answered = 0
        distribution: Dict[str, int] = {opt: 0 for opt in field.options or []}
        for s in submissions:
            value = (s.data or {}).get(field.id)
            if is_empty(value):
                continue
            answered += 1
            if field.type in CHOICE_TYPES:
                for choice in value if isinstance(value, list) else [value]:
                    key = str(choice)
                    distribution[key] = distribution.get(key, 0) + 1

        stats: Dict[str, Any] = {
            "fieldId": field.id,
            "name": field.name,
            "type": field.type,
            "answered": answered,
            "answerRate": round(answered / total, 4) if total else 0.0,
        }
        if field.type in CHOICE_TYPES:
            stats["distribution"] = distribution
        fields.append(stats)

    return {"formId": form.id, "slug": form.slug, "totalSubmissions": total, "fields": fields}
