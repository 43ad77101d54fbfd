import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from schemas import FormSchema

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50
LINE_GAP = 16


def format_answer(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or "-"
    text = str(value).strip()
    return text or "-"


def _placements(
    schema: FormSchema, data: Dict[str, Any], submission_id: int, submitted_at: Optional[datetime]
) -> List[Dict[str, Any]]:
    """
    Lines to draw for one response, top to bottom:
    { "text": str, "size": int, "font": str, "indent": float }
    """
    lines = [
        {"text": schema.title, "size": 16, "font": "Helvetica-Bold", "indent": 0},
        {
            "text": f"Response #{submission_id}"
            + (f" - submitted {submitted_at:%Y-%m-%d %H:%M}" if submitted_at else ""),
            "size": 9,
            "font": "Helvetica",
            "indent": 0,
        },
        {"text": "", "size": 10, "font": "Helvetica", "indent": 0},
    ]
    for field in schema.fields:
        label = field.name + (" *" if field.required else "")
        lines.append({"text": label, "size": 11, "font": "Helvetica-Bold", "indent": 0})
        answer = format_answer(data.get(field.id))
        for part in simpleSplit(answer, "Helvetica", 11, PAGE_WIDTH - 2 * MARGIN - 15):
            lines.append({"text": part, "size": 11, "font": "Helvetica", "indent": 15})
        lines.append({"text": "", "size": 6, "font": "Helvetica", "indent": 0})
    return lines


def _draw(placements: List[Dict[str, Any]]) -> bytes:
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=(PAGE_WIDTH, PAGE_HEIGHT))

    y = PAGE_HEIGHT - MARGIN
    for p in placements:
        if y < MARGIN:
            c.showPage()
            y = PAGE_HEIGHT - MARGIN
        c.setFont(p["font"], p["size"])
        c.drawString(MARGIN + p["indent"], y, p["text"])
        y -= max(LINE_GAP, p["size"] + 4)

    c.save()
    packet.seek(0)
    return packet.read()


def render_submission_pdf(
    schema: FormSchema,
    data: Dict[str, Any],
    submission_id: int,
    submitted_at: Optional[datetime] = None,
) -> bytes:
    """One response as a standalone PDF document."""
    return _draw(_placements(schema, data, submission_id, submitted_at))


def merge_pdfs(documents: List[bytes]) -> bytes:
    writer = PdfWriter()
    for doc in documents:
        for page in PdfReader(io.BytesIO(doc)).pages:
            writer.add_page(page)

    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def render_responses_pdf(schema: FormSchema, submissions) -> bytes:
    """
    Every response of a form in one PDF, each starting on a new page.
    An empty form still gets a cover page saying so.
    """
    if not submissions:
        return _draw(
            [
                {"text": schema.title, "size": 16, "font": "Helvetica-Bold", "indent": 0},
                {"text": "No responses yet.", "size": 11, "font": "Helvetica", "indent": 0},
            ]
        )

    docs = [
        render_submission_pdf(schema, s.data or {}, s.id, s.submitted_at) for s in submissions
    ]
    merged = merge_pdfs(docs)
    logger.info("Rendered %d responses of '%s' to PDF", len(docs), schema.title)
    return merged
