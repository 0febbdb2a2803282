from fastapi import FastAPI, File, UploadFile, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import logging
import tempfile
import os
import shutil
from typing import Optional, Dict, Any, List

from config import settings
from kyc_engine.context import EngineContext, build_context
from kyc_engine.errors import ApplicationNotFoundError, ExtractionError, InconsistentStateError
from kyc_engine.file_converter import first_page_bytes, is_supported
from kyc_engine.masking import FieldMasker
from kyc_engine.models import Application, ConsentStatus, Document, DocumentType, KycMethod, Priority
from kyc_engine.service import DocumentUpload, KycService

logger = logging.getLogger(__name__)

masker = FieldMasker()


# ------------------------
# Request bodies
# ------------------------
class StartApplicationRequest(BaseModel):
    user_id: str
    personal_info: Dict[str, Any]
    consent_given: bool
    method: KycMethod = KycMethod.DOCUMENTS
    priority: Priority = Priority.NORMAL


class ConsentRequest(BaseModel):
    completed: Optional[bool] = None
    fields: Dict[str, str] = Field(default_factory=dict)


class ReviewRequest(BaseModel):
    reviewer_id: str
    approved: bool
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


# ------------------------
# Response shaping
# ------------------------
def application_view(application: Application) -> Dict[str, Any]:
    data = application.model_dump(mode="json", exclude={"compliance": {"ip_address", "user_agent"}})
    data["personal_info"] = {k: masker.mask_value(k, v) if isinstance(v, str) else v
                             for k, v in application.personal_info.items()}
    return data


def document_view(document: Document) -> Dict[str, Any]:
    data = document.model_dump(mode="json", exclude={"raw_text", "fields"})
    data["fields"] = masker.mask_document(document)
    return data


def save_upload(upload: UploadFile, temp_dir: str, label: str) -> bytes:
    """Persist an upload to disk, convert it and return first-page JPEG bytes"""
    if not upload or not upload.filename:
        raise ValueError(f"Missing file for {label}")
    if not is_supported(upload.filename):
        raise ValueError(f"Unsupported file type for {label}: {upload.filename}")

    raw_path = os.path.join(temp_dir, f"raw_{label}_{os.path.basename(upload.filename)}")
    with open(raw_path, "wb") as buffer:
        shutil.copyfileobj(upload.file, buffer)
    return first_page_bytes(raw_path, os.path.join(temp_dir, label))


def configure_logging():
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(context: Optional[EngineContext] = None) -> FastAPI:
    configure_logging()
    service = KycService(context or build_context(settings))

    app = FastAPI(
        title="KYC Verification Service",
        description="KYC verification and risk decisioning: documents, liveness, face match and review",
        version="1.0.0"
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------
    # Error mapping
    # ------------------------
    @app.exception_handler(InconsistentStateError)
    async def inconsistent_state_handler(request: Request, exc: InconsistentStateError):
        return JSONResponse(status_code=409, content={
            "detail": str(exc),
            "missing_steps": exc.missing_steps,
        })

    @app.exception_handler(ApplicationNotFoundError)
    async def not_found_handler(request: Request, exc: ApplicationNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def invalid_input_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(ExtractionError)
    async def extraction_handler(request: Request, exc: ExtractionError):
        logger.error("Upload could not be processed: %s", exc)
        return JSONResponse(status_code=422, content={
            "detail": "The uploaded file could not be read. Please upload a clearer image and try again."
        })

    @app.exception_handler(Exception)
    async def unexpected_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"detail": "KYC verification failed. Please try again later."})

    # ------------------------
    # KYC lifecycle API
    # ------------------------
    @app.post("/kyc/applications", status_code=201)
    def start_application(body: StartApplicationRequest, request: Request):
        application = service.start_application(
            user_id=body.user_id,
            personal_info=body.personal_info,
            consent_given=body.consent_given,
            method=body.method,
            priority=body.priority,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        return application_view(application)

    @app.post("/kyc/applications/{application_id}/documents")
    def upload_documents(
        application_id: str,
        files: List[UploadFile] = File(...),
        document_types: List[DocumentType] = Form(...),
    ):
        """
        Upload a batch of documents. ``document_types[i]`` declares the type of ``files[i]``.
        Supports JPG / PNG / HEIC / WEBP / PDF uploads.
        """
        if len(files) != len(document_types):
            raise HTTPException(status_code=422, detail="Each file needs exactly one document type")

        temp_dir = tempfile.mkdtemp(prefix="kyc_")
        try:
            uploads = [
                DocumentUpload(document_type=doc_type,
                               image=save_upload(upload, temp_dir, f"{i}_{doc_type.value.lower()}"))
                for i, (upload, doc_type) in enumerate(zip(files, document_types))
            ]
            result = service.submit_documents(application_id, uploads)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        if result is None:
            raise HTTPException(status_code=409, detail="Document processing was cancelled")
        return {
            "accepted": result.accepted,
            "application": application_view(result.application),
            "documents": [document_view(d) for d in result.documents],
        }

    @app.post("/kyc/applications/{application_id}/face")
    def verify_face(
        application_id: str,
        live_image: UploadFile = File(...),
        reference_image: Optional[UploadFile] = File(None),
    ):
        temp_dir = tempfile.mkdtemp(prefix="kyc_")
        try:
            live = save_upload(live_image, temp_dir, "live")
            reference = None
            if reference_image is not None and reference_image.filename:
                reference = save_upload(reference_image, temp_dir, "reference")
            outcome = service.record_face_verification(application_id, live, reference)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        if outcome is None:
            raise HTTPException(status_code=409, detail="Face verification was cancelled")
        return {
            "passed": outcome.passed,
            "application": application_view(outcome.application),
            "liveness": outcome.liveness.model_dump(mode="json"),
            "face_match": outcome.face_match.model_dump(mode="json") if outcome.face_match else None,
        }

    @app.post("/kyc/applications/{application_id}/consent")
    def complete_consent(application_id: str, body: Optional[ConsentRequest] = None):
        status = None
        if body is not None and body.completed is not None:
            status = ConsentStatus(completed=body.completed, fields=body.fields)
        return application_view(service.complete_consent(application_id, status))

    @app.post("/kyc/applications/{application_id}/submit")
    def submit_for_review(application_id: str):
        return application_view(service.submit_for_review(application_id))

    @app.post("/kyc/applications/{application_id}/review")
    def record_review(application_id: str, body: ReviewRequest):
        application = service.record_review_decision(
            application_id,
            reviewer_id=body.reviewer_id,
            approved=body.approved,
            notes=body.notes,
            rejection_reason=body.rejection_reason,
        )
        return application_view(application)

    @app.post("/kyc/applications/{application_id}/cancel")
    def cancel_application(application_id: str, body: Optional[CancelRequest] = None):
        reason = body.reason if body is not None else None
        return application_view(service.cancel_application(application_id, reason=reason))

    @app.get("/kyc/applications/{application_id}")
    def get_application(application_id: str):
        application = service.get_application(application_id)
        return {
            "application": application_view(application),
            "documents": [document_view(d) for d in service.documents(application_id)],
            "verifications": [v.model_dump(mode="json") for v in service.verifications(application_id)],
        }

    @app.post("/kyc/applications/{application_id}/risk")
    def recompute_risk(application_id: str):
        return service.recompute_risk(application_id).model_dump(mode="json")

    @app.post("/kyc/maintenance/expire")
    def expire_stale():
        return {"expired": service.expire_stale()}

    # ------------------------
    # Health Check
    # ------------------------
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "kyc-verification"
        }

    return app


# ------------------------
# Local Dev Entry
# ------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
