from io import BytesIO

import pytest
from PIL import Image

from conftest import build_text_pdf, gemini_reply, pdf_text
from formless.config import Config
from formless.main import app
from formless.models import SubmissionStatus
from formless.services.form_pipeline.schema import FormField
from formless.services.form_validation import INVALID_EMAIL
from formless.utils.rate_limiter import RateLimiter


def pdf_upload(pdf_bytes, filename="intake.pdf", content_type="application/pdf"):
    return {"file": (filename, pdf_bytes, content_type)}


@pytest.fixture
def intake_pdf():
    return build_text_pdf([["Full Name:"], ["Email Address:"]])


@pytest.fixture
def form_id(client, intake_pdf):
    response = client.post("/api/upload?strategy=heuristic", files=pdf_upload(intake_pdf))
    assert response.status_code == 200
    return response.json()["formId"]


def test_health_check(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_upload_creates_form_with_inferred_fields(client, form_id):
    response = client.get(f"/api/forms/{form_id}")

    body = response.json()
    assert response.status_code == 200
    assert body["name"] == "intake"
    assert body["user_id"] == "anonymous"
    assert body["pdf_url"].startswith("/api/files/forms/anonymous/")
    assert [f["id"] for f in body["schema"]["fields"]] == ["name", "email"]
    assert client.get(body["pdf_url"]).content.startswith(b"%PDF")


def test_list_forms_is_per_user(client, form_id):
    assert [f["id"] for f in client.get("/api/forms").json()] == [form_id]
    assert client.get("/api/forms", headers={"X-User-Id": "someone-else"}).json() == []


def test_upload_rejects_non_pdf(client):
    response = client.post("/api/upload", files=pdf_upload(b"hello", "notes.txt", "text/plain"))

    assert response.status_code == 400


def test_upload_rejects_bad_magic_bytes(client):
    response = client.post("/api/upload", files=pdf_upload(b"not a pdf at all"))

    assert response.status_code == 400


def test_upload_rejects_large_files(client, intake_pdf, monkeypatch):
    monkeypatch.setattr(Config, "MAX_UPLOAD_BYTES", 10)

    response = client.post("/api/upload", files=pdf_upload(intake_pdf))

    assert response.status_code == 413


def test_unreadable_pdf_creates_empty_form_with_warning(client):
    response = client.post("/api/upload?strategy=heuristic", files=pdf_upload(b"%PDF-1.4 truncated"))

    body = response.json()
    assert response.status_code == 200
    assert body["warning"].endswith("the form was created without fields")
    assert client.get(f"/api/forms/{body['formId']}").json()["schema"]["fields"] == []


def test_unknown_form_is_404(client):
    assert client.get("/api/forms/missing").status_code == 404


def test_schema_edits_are_owner_only(client, form_id):
    update = {"title": "Intake", "fields": [{"id": "name", "label": "Name", "required": True}]}

    forbidden = client.put(f"/api/forms/{form_id}/schema", json=update, headers={"X-User-Id": "mallory"})
    allowed = client.put(f"/api/forms/{form_id}/schema", json=update)

    assert forbidden.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json()["schema"]["title"] == "Intake"
    assert allowed.json()["schema"]["fields"][0]["required"] is True


def test_schema_edit_rejects_duplicate_ids(client, form_id):
    update = {"fields": [{"id": "name", "label": "Name"}, {"id": "name", "label": "Again"}]}

    response = client.put(f"/api/forms/{form_id}/schema", json=update)

    assert response.status_code == 422


def test_invalid_submission_is_rejected(client, form_id):
    response = client.post(f"/api/forms/{form_id}/submit", json={"name": "Ada", "email": "ada-at-example"})

    assert response.status_code == 422
    assert response.json()["detail"]["errors"] == {"email": INVALID_EMAIL}


def test_submission_produces_completed_pdf(client, form_id):
    submitted = client.post(
        f"/api/forms/{form_id}/submit",
        json={"name": "Ada Lovelace", "email": "ada@example.com", "submitter_email": "ada@example.com"}
    )
    submission_id = submitted.json()["submissionId"]

    response = client.get(f"/api/forms/{form_id}/submissions/{submission_id}/pdf")

    filename = f"intake-submission-{submission_id}.pdf"
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == f'attachment; filename="{filename}"'
    text = pdf_text(response.content)
    assert "Full Name:" in text
    assert "Ada Lovelace" in text and "ada@example.com" in text

    submission = app.state.store.get_submission(form_id, submission_id)
    assert submission.status == SubmissionStatus.COMPLETED
    assert submission.submitter_email == "ada@example.com"
    assert client.get(submission.completed_pdf_url).content == response.content


def test_missing_source_pdf_yields_summary(client, form_id):
    submission_id = client.post(f"/api/forms/{form_id}/submit", json={"name": "Ada"}).json()["submissionId"]
    app.state.store.blobs.clear()

    response = client.get(f"/api/forms/{form_id}/submissions/{submission_id}/pdf")

    text = pdf_text(response.content)
    assert response.status_code == 200
    assert "Form Submission" in text
    assert "Full Name: Ada" in text


def test_owner_lists_submissions(client, form_id):
    submission_id = client.post(f"/api/forms/{form_id}/submit", json={"name": "Ada"}).json()["submissionId"]

    listed = client.get(f"/api/forms/{form_id}/submissions")

    assert [s["id"] for s in listed.json()] == [submission_id]
    assert listed.json()[0]["status"] == "pending"
    assert client.get(f"/api/forms/{form_id}/submissions", headers={"X-User-Id": "mallory"}).status_code == 403


def test_unknown_submission_is_404(client, form_id):
    assert client.get(f"/api/forms/{form_id}/submissions/missing/pdf").status_code == 404


def test_generate_form(client):
    response = client.post("/api/forms/generate", json={
        "title": "Visitor Log",
        "fields": [{"id": "visitor", "label": "Visitor"}, {"id": "agree", "label": "Agree", "type": "checkbox"}],
    })

    assert response.status_code == 200
    assert response.headers["content-disposition"] == 'attachment; filename="Visitor_Log.pdf"'
    assert "Visitor" in pdf_text(response.content)


def test_generate_requires_fields(client):
    assert client.post("/api/forms/generate", json={"title": "Empty", "fields": []}).status_code == 422


def test_extract_image_with_ocr(client):
    buffer = BytesIO()
    Image.new('RGB', (20, 20), 'white').save(buffer, format='PNG')

    response = client.post(
        "/api/extract?strategy=heuristic", files={"file": ("scan.png", buffer.getvalue(), "image/png")}
    )

    body = response.json()
    assert response.status_code == 200
    assert body["source"] == "heuristic"
    assert [f["id"] for f in body["fields"]] == ["name", "email"]


def test_extract_with_ai_strategy(client, intake_pdf):
    response = client.post("/api/extract?strategy=ai", files=pdf_upload(intake_pdf))

    body = response.json()
    assert body["source"] == "ai_extracted"
    assert [f["id"] for f in body["fields"]] == ["full_name"]


def test_extract_rejects_unsupported_type(client):
    response = client.post("/api/extract", files=pdf_upload(b"plain", "notes.txt", "text/plain"))

    assert response.status_code == 400


def test_extract_unreadable_pdf_with_heuristics_is_422(client):
    response = client.post("/api/extract?strategy=heuristic", files=pdf_upload(b"%PDF-1.4 truncated"))

    assert response.status_code == 422


def test_rate_limit_returns_429(client):
    app.state.rate_limiter = RateLimiter(limit=1, window_seconds=60)

    first = client.post("/api/extract", files=pdf_upload(b"plain", "notes.txt", "text/plain"))
    second = client.post("/api/extract", files=pdf_upload(b"plain", "notes.txt", "text/plain"))

    assert first.status_code == 400
    assert second.status_code == 429
    assert second.headers["retry-after"] == "60"
    assert client.get("/api/rate-limit/status").json()["rejected"] == 1


def test_ai_upload_with_colliding_ids_creates_form(client, intake_pdf):
    ai_session = app.state.pipeline.inference_service.ai_extractor.session
    ai_session.response = gemini_reply(
        '[{"id": "a", "type": "text"}, {"id": "a", "type": "text"}, {"id": "a_2", "type": "text"}]'
    )

    response = client.post("/api/upload?strategy=ai", files=pdf_upload(intake_pdf))

    assert response.status_code == 200
    form = client.get(f"/api/forms/{response.json()['formId']}").json()
    assert [f["id"] for f in form["schema"]["fields"]] == ["a", "a_2", "a_2_2"]


def test_upload_survives_duplicate_inferred_ids(client, intake_pdf, monkeypatch):
    extractor = app.state.pipeline.inference_service.ai_extractor
    duplicated = [FormField(id="a", label="A", type="text"), FormField(id="a", label="Again", type="text")]
    monkeypatch.setattr(extractor, "parse_fields", lambda content: duplicated)

    response = client.post("/api/upload?strategy=ai", files=pdf_upload(intake_pdf))

    assert response.status_code == 200
    assert "inconsistent" in response.json()["warning"]
    form = client.get(f"/api/forms/{response.json()['formId']}").json()
    assert form["schema"]["fields"] == []
