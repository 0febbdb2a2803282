"""
KYC application orchestration.

KycService drives one application through its lifecycle: it runs feature
extraction (with timeout and retry), hands the extracted records to the pure
scorers, and persists the results together with the matching state-machine
transition. Writes to one application happen under its repository lock.

Extraction problems never reach the caller: once retries are exhausted they
are recorded as an ERROR verification result or a NEEDS_REVIEW document and
the application is flagged for a human reviewer.
"""
import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from .checks import DocumentChecks
from .context import EngineContext
from .decision import RiskDecisionEngine, RiskInputs
from .document_validation import DocumentValidator
from .errors import ExtractionError, InconsistentStateError
from .face_match import FaceMatchScorer
from .liveness import LivenessScorer, error_result
from .models import (
    Application, ApplicationStatus, Capture, ComplianceInfo, ConsentStatus, Disposition,
    Document, DocumentStatus, DocumentType, KycMethod, Priority, ReviewInfo, RiskAssessment,
    VerificationResult, VerificationStatus, VerificationType,
)
from .notifications import NotificationEvent
from .state_machine import ApplicationEvent, ApplicationStateMachine, append_audit
from .utils import ImageSource, load_image

logger = logging.getLogger(__name__)

EXTRACTION_FAILED = "EXTRACTION_FAILED"
LOW_OCR_CONFIDENCE = "LOW_OCR_CONFIDENCE"


@dataclass(frozen=True)
class DocumentUpload:
    document_type: DocumentType
    image: ImageSource


@dataclass(frozen=True)
class DocumentBatchResult:
    application: Application
    documents: List[Document]
    accepted: bool


@dataclass(frozen=True)
class FaceVerificationOutcome:
    application: Application
    liveness: VerificationResult
    face_match: Optional[VerificationResult]
    passed: bool


class KycService:

    def __init__(self, context: EngineContext):
        self.context = context
        settings = context.settings
        self.repository = context.repository
        self.state_machine = ApplicationStateMachine()
        self.checker = DocumentChecks()
        self.validator = DocumentValidator(settings, self.checker)
        self.liveness = LivenessScorer(settings)
        self.face_match = FaceMatchScorer(settings)
        self.risk_engine = RiskDecisionEngine(settings, reviewer_assigner=context.reviewer_assigner)
        self.min_ocr_confidence = settings.MIN_OCR_CONFIDENCE
        self.timeout = settings.EXTRACTION_TIMEOUT_SECONDS
        self.retention = timedelta(days=settings.APPLICATION_RETENTION_DAYS)
        # Fan-out threads only wait on extraction futures running in context.executor
        self._fan_out = ThreadPoolExecutor(max_workers=settings.EXTRACTION_WORKERS,
                                           thread_name_prefix="kyc-fan-out")
        self._inflight: Dict[str, Set[threading.Event]] = defaultdict(set)
        self._inflight_lock = threading.Lock()

    def close(self):
        self._fan_out.shutdown(wait=False)

    # ------------------------
    # Plumbing
    # ------------------------
    def _now(self) -> datetime:
        return self.context.clock()

    def _extract(self, fn, *args):
        """Run one extraction call in the worker pool with a timeout, retrying ExtractionError"""
        def attempt():
            future = self.context.executor.submit(fn, *args)
            try:
                return future.result(timeout=self.timeout)
            except FuturesTimeout as e:
                future.cancel()
                raise ExtractionError(f"Extraction timed out after {self.timeout}s") from e

        return self.context.retry_policy.call(attempt)

    def _notify(self, event: NotificationEvent, application: Application, payload: Optional[Dict[str, Any]] = None):
        try:
            self.context.notifier.emit(event, application.application_id, application.user_id, payload or {})
        except Exception:
            # The transition is already persisted
            logger.exception("Failed to emit %s for application %s", event.value, application.application_id)

    @contextmanager
    def _tracked(self, application_id: str, cancel_event: Optional[threading.Event]):
        event = cancel_event or threading.Event()
        with self._inflight_lock:
            self._inflight[application_id].add(event)
        try:
            yield event
        finally:
            with self._inflight_lock:
                self._inflight[application_id].discard(event)
                if not self._inflight[application_id]:
                    del self._inflight[application_id]

    def _cancel_inflight(self, application_id: str):
        with self._inflight_lock:
            events = list(self._inflight.get(application_id, ()))
        for event in events:
            event.set()

    def _load(self, application_id: str) -> Application:
        """Fetch an application, expiring it first if its retention window has passed"""
        application = self.repository.get(application_id)
        if application.is_terminal or application.expires_at is None or application.expires_at > self._now():
            return application
        expired = self.repository.save(self.state_machine.apply(application, ApplicationEvent.EXPIRED))
        self._notify(NotificationEvent.KYC_EXPIRED, expired)
        raise InconsistentStateError(f"Application {application_id} has expired", application_id=application_id)

    # ------------------------
    # Operations
    # ------------------------
    def start_application(self, user_id: str, personal_info: Dict[str, Any], consent_given: bool,
                          method: KycMethod = KycMethod.DOCUMENTS, priority: Priority = Priority.NORMAL,
                          ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Application:
        if not consent_given:
            raise ValueError("Consent is required to start KYC verification")
        if not personal_info:
            raise ValueError("Personal information is required to start KYC verification")

        existing = self.repository.find_open_for_user(user_id)
        if existing is not None and existing.expires_at is not None and existing.expires_at <= self._now():
            self.expire_stale()
            existing = self.repository.find_open_for_user(user_id)
        if existing is not None:
            raise InconsistentStateError(
                f"User already has an open application ({existing.application_id})",
                application_id=existing.application_id,
            )

        now = self._now()
        application = Application(
            user_id=user_id,
            method=method,
            priority=priority,
            compliance=ComplianceInfo(consent_given=True, consent_timestamp=now,
                                      ip_address=ip_address, user_agent=user_agent),
            created_at=now,
            expires_at=now + self.retention,
        )
        application = append_audit(application, "CREATED", actor=user_id,
                                   details={"method": method.value}, at=now)
        application = self.state_machine.apply(application, ApplicationEvent.PERSONAL_INFO_COMPLETED,
                                               actor=user_id, changes={"personal_info": dict(personal_info)},
                                               at=now)
        application = self.repository.create(application)
        logger.info("Started application %s (%s)", application.application_id, method.value)
        self._notify(NotificationEvent.KYC_INITIATED, application)
        return application

    def submit_documents(self, application_id: str, uploads: Sequence[DocumentUpload],
                         cancel_event: Optional[threading.Event] = None) -> Optional[DocumentBatchResult]:
        """
        Extract, score and persist a batch of documents.
        Returns None when the call was cancelled before its results were persisted.
        """
        if not uploads:
            raise ValueError("At least one document is required")
        with self.repository.lock(application_id):
            self.state_machine.require(self._load(application_id), ApplicationEvent.DOCUMENTS_SUBMITTED)

        with self._tracked(application_id, cancel_event) as cancelled:
            futures = [self._fan_out.submit(self._process_document, application_id, upload)
                       for upload in uploads]
            documents = [f.result() for f in futures]

            with self.repository.lock(application_id):
                if cancelled.is_set():
                    logger.info("Document batch for %s cancelled; results dropped", application_id)
                    return None
                application = self._load(application_id)
                rejected = [d for d in documents if d.status == DocumentStatus.REJECTED]
                needs_review = any(
                    d.status == DocumentStatus.NEEDS_REVIEW or (d.validation is not None and d.validation.needs_review)
                    for d in documents
                )
                accepted = not rejected

                application = self.state_machine.apply(
                    application, ApplicationEvent.DOCUMENTS_SUBMITTED,
                    details={"documents": [d.document_id for d in documents]},
                    changes={"document_ids": application.document_ids + tuple(d.document_id for d in documents)},
                )
                changes = {}
                if needs_review and accepted:
                    changes["review"] = application.review.model_copy(update={"required": True})
                outcome = ApplicationEvent.DOCUMENTS_VALIDATED if accepted else ApplicationEvent.DOCUMENTS_REJECTED
                application = self.state_machine.apply(
                    application, outcome,
                    details={"rejected": [d.document_id for d in rejected]},
                    changes=changes,
                )
                for document in documents:
                    self.repository.add_document(document)
                application = self.repository.save(application)

        if accepted:
            self._notify(NotificationEvent.DOCUMENTS_ACCEPTED, application,
                         {"documents": [d.document_type.value for d in documents]})
        else:
            reasons = [r for d in rejected for r in (d.validation.reasons if d.validation else ())]
            self._notify(NotificationEvent.DOCUMENTS_REJECTED, application, {"reasons": reasons})
        return DocumentBatchResult(application=application, documents=documents, accepted=accepted)

    def _process_document(self, application_id: str, upload: DocumentUpload) -> Document:
        try:
            img = self._extract(load_image, upload.image)
            ocr = self._extract(self.context.text_extractor.extract_text, img, upload.document_type)
            quality = self._extract(self.context.quality_gate.assess, img)
        except ExtractionError as e:
            logger.error("Extraction failed for %s document of %s: %s",
                         upload.document_type.value, application_id, e)
            return Document(application_id=application_id, document_type=upload.document_type,
                            status=DocumentStatus.NEEDS_REVIEW, issues=(EXTRACTION_FAILED,))

        confident = ocr.confidence > self.min_ocr_confidence
        document = Document(
            application_id=application_id,
            document_type=upload.document_type,
            raw_text=ocr.raw_text,
            fields=ocr.fields,
            ocr_confidence=ocr.confidence,
            quality=quality,
            security_features=ocr.security_features,
            tampering=ocr.tampering,
            status=DocumentStatus.PROCESSED if confident else DocumentStatus.NEEDS_REVIEW,
            issues=() if confident else (LOW_OCR_CONFIDENCE,),
        )
        validated = self.validator.validate(document)
        if validated.status == DocumentStatus.VALIDATED and not confident:
            validated = validated.model_copy(update={"status": DocumentStatus.NEEDS_REVIEW})
        return validated

    def _capture(self, image: ImageSource) -> Capture:
        return self._extract(self.context.face_extractor.extract_face, image)

    def record_face_verification(self, application_id: str, live_image: ImageSource,
                                 reference_image: Optional[ImageSource] = None,
                                 cancel_event: Optional[threading.Event] = None) -> Optional[FaceVerificationOutcome]:
        """
        Liveness on the live capture and, when a reference image (the document
        photo) is given, a face match against it.
        Returns None when the call was cancelled before its results were persisted.
        """
        with self.repository.lock(application_id):
            self.state_machine.require(self._load(application_id), ApplicationEvent.FACE_VERIFIED)

        with self._tracked(application_id, cancel_event) as cancelled:
            live_future = self._fan_out.submit(self._capture, live_image)
            reference_future = None
            if reference_image is not None:
                reference_future = self._fan_out.submit(self._capture, reference_image)

            liveness, match = self._score_face(application_id, live_future, reference_future)
            passed = liveness.decision and (match is None or match.decision)
            errored = any(r is not None and r.status == VerificationStatus.ERROR for r in (liveness, match))

            with self.repository.lock(application_id):
                if cancelled.is_set():
                    logger.info("Face verification for %s cancelled; results dropped", application_id)
                    return None
                application = self._load(application_id)
                results = [r for r in (liveness, match) if r is not None]
                changes = {"verification_ids": application.verification_ids + tuple(r.verification_id for r in results)}
                if errored:
                    changes["review"] = application.review.model_copy(update={"required": True})
                application = self.state_machine.apply(
                    application,
                    ApplicationEvent.FACE_VERIFIED if passed else ApplicationEvent.FACE_FAILED,
                    details={"liveness": liveness.score_percent,
                             "face_match": match.score_percent if match else None},
                    changes=changes,
                )
                for result in results:
                    self.repository.add_verification(result)
                application = self.repository.save(application)

        if passed:
            self._notify(NotificationEvent.FACE_VERIFICATION_SUCCESS, application)
        else:
            recommendations = list(liveness.recommendations) + list(match.recommendations if match else ())
            self._notify(NotificationEvent.FACE_VERIFICATION_FAILED, application,
                         {"recommendations": recommendations})
        return FaceVerificationOutcome(application=application, liveness=liveness, face_match=match, passed=passed)

    def _score_face(self, application_id: str, live_future, reference_future):
        try:
            live = live_future.result()
        except ExtractionError as e:
            liveness = error_result(VerificationType.LIVENESS, e, application_id)
            match = error_result(VerificationType.FACE_MATCH, e, application_id) if reference_future else None
            if reference_future is not None:
                reference_future.cancel()
            return liveness, match

        try:
            liveness = self.liveness.score(live, application_id)
        except ExtractionError as e:
            liveness = error_result(VerificationType.LIVENESS, e, application_id)

        match = None
        if reference_future is not None:
            try:
                match = self.face_match.compare(live, reference_future.result(), application_id=application_id)
            except ExtractionError as e:
                match = error_result(VerificationType.FACE_MATCH, e, application_id)
        return liveness, match

    def complete_consent(self, application_id: str, status: Optional[ConsentStatus] = None) -> Application:
        """Record the consent-exchange outcome, fetching it from the consent client when not given"""
        if status is None:
            status = self.context.consent_client.fetch_status(application_id)
        with self.repository.lock(application_id):
            application = self._load(application_id)
            if status.completed:
                application = self.state_machine.apply(
                    application, ApplicationEvent.CONSENT_COMPLETED,
                    details={"fields": sorted(status.fields)},
                    changes={"consent_fields": dict(status.fields)},
                )
            else:
                self.state_machine.ensure_mutable(application)
                application = append_audit(application, "CONSENT_PENDING")
            return self.repository.save(application)

    def _risk_inputs(self, application: Application) -> RiskInputs:
        documents = self.repository.documents_for(application.application_id)
        active = [d for d in documents if d.status != DocumentStatus.REJECTED]
        issues = self.checker.cross_document_consistency(active, application.consent_fields or None)
        return RiskInputs(
            application_id=application.application_id,
            documents=tuple(active),
            verifications=tuple(self.repository.verifications_for(application.application_id)),
            documents_submitted=application.steps.documents_submitted,
            face_verification_completed=application.steps.face_verification_completed,
            consent_completed=application.steps.consent_completed,
            consistency_issues=tuple(issues),
        )

    def submit_for_review(self, application_id: str) -> Application:
        """
        One-time submission. Runs the risk engine and either auto-approves the
        application or routes it to a reviewer.
        """
        with self.repository.lock(application_id):
            application = self._load(application_id)
            self.state_machine.require(application, ApplicationEvent.SUBMITTED)
            missing = self.state_machine.missing_for_submission(application)
            if missing:
                raise InconsistentStateError(
                    f"Application {application_id} is missing steps: {', '.join(missing)}",
                    application_id=application_id,
                    missing_steps=missing,
                )

            risk = self.risk_engine.assess(self._risk_inputs(application))
            auto = risk.disposition == Disposition.AUTO_APPROVE and not application.review.required
            details = {"risk_score": risk.score, "factors": list(risk.factors)}
            if auto:
                review = application.review.model_copy(update={
                    "required": False, "decision": ApplicationStatus.APPROVED.value, "reviewed_at": self._now(),
                })
                application = self.state_machine.apply(application, ApplicationEvent.AUTO_APPROVED,
                                                       details=details, changes={"risk": risk, "review": review})
            else:
                review = application.review.model_copy(update={
                    "required": True,
                    "reviewer_id": risk.assigned_reviewer or self.context.settings.DEFAULT_REVIEWER,
                })
                application = self.state_machine.apply(application, ApplicationEvent.SUBMITTED,
                                                       details=details, changes={"risk": risk, "review": review})
            application = self.repository.save(application)

        if auto:
            self._notify(NotificationEvent.KYC_APPROVED, application)
        else:
            self._notify(NotificationEvent.KYC_UNDER_REVIEW, application, {"reasons": list(risk.reasons)})
        return application

    def record_review_decision(self, application_id: str, reviewer_id: str, approved: bool,
                               notes: Optional[str] = None, rejection_reason: Optional[str] = None) -> Application:
        if not approved and not rejection_reason:
            raise ValueError("A rejection reason is required")
        with self.repository.lock(application_id):
            application = self._load(application_id)
            event = ApplicationEvent.REVIEW_APPROVED if approved else ApplicationEvent.REVIEW_REJECTED
            review = ReviewInfo(
                required=True,
                reviewer_id=reviewer_id,
                decision=(ApplicationStatus.APPROVED if approved else ApplicationStatus.REJECTED).value,
                notes=notes,
                rejection_reason=None if approved else rejection_reason,
                reviewed_at=self._now(),
            )
            application = self.state_machine.apply(application, event, actor=reviewer_id,
                                                   details={"notes": notes} if notes else None,
                                                   changes={"review": review})
            application = self.repository.save(application)

        if approved:
            self._notify(NotificationEvent.KYC_APPROVED, application)
        else:
            self._notify(NotificationEvent.KYC_REJECTED, application, {"reason": rejection_reason})
        return application

    def cancel_application(self, application_id: str, actor: str = "user",
                           reason: Optional[str] = None) -> Application:
        self._cancel_inflight(application_id)
        with self.repository.lock(application_id):
            application = self.repository.get(application_id)
            application = self.state_machine.apply(application, ApplicationEvent.CANCELLED, actor=actor,
                                                   details={"reason": reason} if reason else None)
            application = self.repository.save(application)
        self._notify(NotificationEvent.KYC_CANCELLED, application)
        return application

    def expire_stale(self, now: Optional[datetime] = None) -> List[str]:
        """Expire every open application past its retention window; returns their ids"""
        now = now or self._now()
        expired = []
        for candidate in self.repository.list_open():
            if candidate.expires_at is None or candidate.expires_at > now:
                continue
            self._cancel_inflight(candidate.application_id)
            with self.repository.lock(candidate.application_id):
                application = self.repository.get(candidate.application_id)
                if application.is_terminal:
                    continue
                application = self.repository.save(
                    self.state_machine.apply(application, ApplicationEvent.EXPIRED, at=now))
            expired.append(application.application_id)
            self._notify(NotificationEvent.KYC_EXPIRED, application)
        if expired:
            logger.info("Expired %d stale applications", len(expired))
        return expired

    def get_application(self, application_id: str) -> Application:
        return self.repository.get(application_id)

    def documents(self, application_id: str) -> List[Document]:
        return self.repository.documents_for(application_id)

    def verifications(self, application_id: str) -> List[VerificationResult]:
        return self.repository.verifications_for(application_id)

    def recompute_risk(self, application_id: str) -> RiskAssessment:
        """
        Reassess risk from the application's current documents and results.
        Persisted for open applications; terminal ones only get the assessment back.
        """
        with self.repository.lock(application_id):
            application = self.repository.get(application_id)
            risk = self.risk_engine.assess(self._risk_inputs(application))
            if not application.is_terminal:
                application = append_audit(application, "RISK_RECOMPUTED",
                                           details={"risk_score": risk.score})
                self.repository.save(application.model_copy(update={"risk": risk}))
        return risk
