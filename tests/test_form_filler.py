import io
from datetime import datetime

from pypdf import PdfReader

import repository
from conftest import OTHER, auth
from form_filler import format_answer, render_responses_pdf, render_submission_pdf


def _pages(pdf: bytes) -> int:
    return len(PdfReader(io.BytesIO(pdf)).pages)


def test_format_answer():
    assert format_answer(None) == "-"
    assert format_answer(True) == "Yes"
    assert format_answer(["Email", "SMS"]) == "Email, SMS"
    assert format_answer([]) == "-"
    assert format_answer("  ") == "-"
    assert format_answer(42) == "42"


def test_single_response_pdf(contact_schema):
    pdf = render_submission_pdf(
        contact_schema,
        {"name": "Ada", "email": "ada@example.com", "plan": "Basic"},
        7,
        datetime(2024, 3, 5, 10, 30),
    )
    assert pdf.startswith(b"%PDF")
    assert _pages(pdf) == 1
    assert "Ada" in PdfReader(io.BytesIO(pdf)).pages[0].extract_text()


def test_long_answer_spills_onto_next_page(contact_schema):
    pdf = render_submission_pdf(contact_schema, {"message": "word " * 5000}, 1)
    assert _pages(pdf) > 1


def test_responses_pdf_one_page_per_response(db, contact_schema, published_form):
    repository.save_submission(db, published_form.id, {"name": "Ada"})
    repository.save_submission(db, published_form.id, {"name": "Bob"})
    pdf = render_responses_pdf(contact_schema, repository.get_submissions(db, published_form.id))
    assert _pages(pdf) == 2


def test_empty_responses_pdf_has_cover_page(contact_schema):
    pdf = render_responses_pdf(contact_schema, [])
    assert _pages(pdf) == 1
    assert "No responses yet." in PdfReader(io.BytesIO(pdf)).pages[0].extract_text()


def test_pdf_routes(client, db, published_form):
    row = repository.save_submission(db, published_form.id, {"name": "Ada", "plan": "Basic"})

    resp = client.get(f"/api/forms/{published_form.slug}/responses/pdf", headers=auth())
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert f"{published_form.slug}_responses.pdf" in resp.headers["content-disposition"]
    assert resp.content.startswith(b"%PDF")

    resp = client.get(f"/api/forms/{published_form.slug}/responses/{row.id}/pdf", headers=auth())
    assert resp.status_code == 200
    assert _pages(resp.content) == 1

    missing = client.get(f"/api/forms/{published_form.slug}/responses/999/pdf", headers=auth())
    assert missing.status_code == 404
    other = client.get(f"/api/forms/{published_form.slug}/responses/pdf", headers=auth(OTHER))
    assert other.status_code == 404
