import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app import create_app
from kyc_engine.models import DocumentType

from tests.fakes import FakeFaceExtractor
from tests.factories import PAN_FIELDS, make_capture, make_ocr


@pytest.fixture
def face_extractor():
    return FakeFaceExtractor(default=make_capture())


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as c:
        yield c


def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (64, 64), "white").save(buffer, "PNG")
    return buffer.getvalue()


def start(client, user_id="user-1"):
    response = client.post("/kyc/applications", json={
        "user_id": user_id,
        "personal_info": {"name": "Ravi Kumar", "date_of_birth": "12-05-1990"},
        "consent_given": True,
    })
    assert response.status_code == 201
    return response.json()


def upload_documents(client, application_id, *types):
    files = [("files", (f"{t.value.lower()}.png", png_bytes(), "image/png")) for t in types]
    data = {"document_types": [t.value for t in types]}
    return client.post(f"/kyc/applications/{application_id}/documents", files=files, data=data)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_full_lifecycle(client):
    application = start(client)
    app_id = application["application_id"]
    assert application["status"] == "DOCUMENTS_PENDING"
    assert "ip_address" not in application["compliance"]
    assert application["personal_info"]["name"] == "RXXXX Kumar"

    response = upload_documents(client, app_id, DocumentType.AADHAAR_FRONT, DocumentType.PAN_CARD)
    assert response.status_code == 200
    body = response.json()
    assert body["accepted"] is True
    aadhaar = body["documents"][0]
    assert aadhaar["fields"]["aadhaar_number"] == "XXXX XXXX 9012"
    assert "raw_text" not in aadhaar

    files = {"live_image": ("selfie.png", png_bytes(), "image/png"),
             "reference_image": ("photo.png", png_bytes(), "image/png")}
    response = client.post(f"/kyc/applications/{app_id}/face", files=files)
    assert response.status_code == 200
    assert response.json()["passed"] is True
    assert response.json()["liveness"]["details"]["type"] == "LIVENESS"

    response = client.post(f"/kyc/applications/{app_id}/submit")
    assert response.status_code == 200
    assert response.json()["status"] == "APPROVED"

    response = client.get(f"/kyc/applications/{app_id}")
    assert response.status_code == 200
    assert len(response.json()["documents"]) == 2
    assert len(response.json()["verifications"]) == 2


def test_submit_too_early_conflicts(client):
    app_id = start(client)["application_id"]

    response = client.post(f"/kyc/applications/{app_id}/submit")

    assert response.status_code == 409


def test_mutating_cancelled_application_conflicts(client):
    app_id = start(client)["application_id"]
    assert client.post(f"/kyc/applications/{app_id}/cancel", json={"reason": "changed my mind"}).status_code == 200

    response = upload_documents(client, app_id, DocumentType.PAN_CARD)

    assert response.status_code == 409


def test_unknown_application_is_404(client):
    assert client.get("/kyc/applications/KYC_missing").status_code == 404


def test_consent_is_required(client):
    response = client.post("/kyc/applications", json={
        "user_id": "user-2", "personal_info": {"name": "A B"}, "consent_given": False})

    assert response.status_code == 422


def test_unsupported_upload_type(client):
    app_id = start(client)["application_id"]
    files = [("files", ("notes.txt", b"hello", "text/plain"))]

    response = client.post(f"/kyc/applications/{app_id}/documents", files=files,
                           data={"document_types": ["PAN_CARD"]})

    assert response.status_code == 422


def test_review_flow(client, text_extractor):
    text_extractor.results[DocumentType.PAN_CARD] = make_ocr(dict(PAN_FIELDS, name="Vikram Singh"))
    app_id = start(client)["application_id"]
    upload_documents(client, app_id, DocumentType.AADHAAR_FRONT, DocumentType.PAN_CARD)
    client.post(f"/kyc/applications/{app_id}/face",
                files={"live_image": ("selfie.png", png_bytes(), "image/png"),
                       "reference_image": ("photo.png", png_bytes(), "image/png")})

    submitted = client.post(f"/kyc/applications/{app_id}/submit").json()
    assert submitted["status"] == "UNDER_REVIEW"

    response = client.post(f"/kyc/applications/{app_id}/review",
                           json={"reviewer_id": "officer-7", "approved": True, "notes": "Name change on record"})
    assert response.status_code == 200
    assert response.json()["status"] == "APPROVED"
    assert response.json()["review"]["reviewer_id"] == "officer-7"
