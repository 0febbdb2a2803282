"""
Application lifecycle.

    INITIATED -> DOCUMENTS_PENDING -> DOCUMENTS_UPLOADED -> FACE_VERIFICATION_PENDING
        -> IN_PROGRESS -> UNDER_REVIEW -> APPROVED | REJECTED

IN_PROGRESS may also go straight to APPROVED (auto-approval), and any
non-terminal state may be CANCELLED or EXPIRED. Terminal applications accept
audit entries and nothing else.

Progress is derived from the step flags every time an event is applied and is
never lowered.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InconsistentStateError
from .models import (
    Application, ApplicationStatus, AuditEntry, KycStep, ProgressRecord,
    StepFlags, TERMINAL_STATUSES, utcnow,
)

logger = logging.getLogger(__name__)

S = ApplicationStatus
OPEN_STATUSES = frozenset(s for s in ApplicationStatus if s not in TERMINAL_STATUSES)


class ApplicationEvent(str, Enum):
    PERSONAL_INFO_COMPLETED = "PERSONAL_INFO_COMPLETED"
    DOCUMENTS_SUBMITTED = "DOCUMENTS_SUBMITTED"
    DOCUMENTS_VALIDATED = "DOCUMENTS_VALIDATED"
    DOCUMENTS_REJECTED = "DOCUMENTS_REJECTED"
    FACE_VERIFIED = "FACE_VERIFIED"
    FACE_FAILED = "FACE_FAILED"
    CONSENT_COMPLETED = "CONSENT_COMPLETED"
    SUBMITTED = "SUBMITTED"
    AUTO_APPROVED = "AUTO_APPROVED"
    REVIEW_APPROVED = "REVIEW_APPROVED"
    REVIEW_REJECTED = "REVIEW_REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


E = ApplicationEvent

# event -> (statuses it may be applied in, resulting status or None to stay put)
TRANSITIONS = {
    E.PERSONAL_INFO_COMPLETED: (frozenset({S.INITIATED}), S.DOCUMENTS_PENDING),
    E.DOCUMENTS_SUBMITTED: (frozenset({S.INITIATED, S.DOCUMENTS_PENDING}), S.DOCUMENTS_UPLOADED),
    E.DOCUMENTS_VALIDATED: (frozenset({S.DOCUMENTS_UPLOADED}), S.FACE_VERIFICATION_PENDING),
    E.DOCUMENTS_REJECTED: (frozenset({S.DOCUMENTS_UPLOADED}), S.DOCUMENTS_PENDING),
    E.FACE_VERIFIED: (frozenset({S.FACE_VERIFICATION_PENDING}), S.IN_PROGRESS),
    E.FACE_FAILED: (frozenset({S.FACE_VERIFICATION_PENDING}), None),
    E.CONSENT_COMPLETED: (OPEN_STATUSES, None),
    E.SUBMITTED: (frozenset({S.IN_PROGRESS}), S.UNDER_REVIEW),
    E.AUTO_APPROVED: (frozenset({S.IN_PROGRESS}), S.APPROVED),
    E.REVIEW_APPROVED: (frozenset({S.UNDER_REVIEW}), S.APPROVED),
    E.REVIEW_REJECTED: (frozenset({S.UNDER_REVIEW}), S.REJECTED),
    E.CANCELLED: (OPEN_STATUSES, S.CANCELLED),
    E.EXPIRED: (OPEN_STATUSES, S.EXPIRED),
}

STEP_FLAGS = {
    E.PERSONAL_INFO_COMPLETED: "personal_info",
    E.DOCUMENTS_VALIDATED: "documents_submitted",
    E.FACE_VERIFIED: "face_verification_completed",
    E.CONSENT_COMPLETED: "consent_completed",
}

DECIDED = frozenset({S.APPROVED, S.REJECTED})


def compute_progress(steps: StepFlags, status: ApplicationStatus,
                     previous: Optional[ProgressRecord] = None) -> ProgressRecord:
    """Progress from step flags: 25 / 50 / 75 / 100, never below the previous record"""
    percentage = 0
    completed = []
    if steps.personal_info:
        percentage = 25
        completed.append(KycStep.PERSONAL_INFO)
    if steps.documents_submitted:
        percentage = 50
        completed.append(KycStep.DOCUMENT_UPLOAD)
    if steps.face_verification_completed:
        percentage = 75
        completed.append(KycStep.FACE_VERIFICATION)
    if status in DECIDED:
        percentage = 100
        completed.append(KycStep.REVIEW)

    if not steps.personal_info:
        current = KycStep.PERSONAL_INFO
    elif not steps.documents_submitted:
        current = KycStep.DOCUMENT_UPLOAD
    elif not steps.face_verification_completed:
        current = KycStep.FACE_VERIFICATION
    elif status not in DECIDED:
        current = KycStep.REVIEW
    else:
        current = KycStep.COMPLETED

    if previous is not None:
        percentage = max(percentage, previous.percentage)
        completed = list(previous.steps_completed) + [s for s in completed if s not in previous.steps_completed]

    return ProgressRecord(percentage=percentage, current_step=current, steps_completed=tuple(completed))


def append_audit(application: Application, action: str, actor: str = "system",
                 details: Optional[Dict[str, Any]] = None, at: Optional[datetime] = None) -> Application:
    """Append-only history; allowed on terminal applications too"""
    entry = AuditEntry(action=action, actor=actor, details=details or {}, at=at or utcnow())
    return application.model_copy(update={"audit": application.audit + (entry,)})


class ApplicationStateMachine:

    def ensure_mutable(self, application: Application):
        if application.is_terminal:
            raise InconsistentStateError(
                f"Application {application.application_id} is {application.status.value} and cannot change",
                application_id=application.application_id,
            )

    def can_apply(self, application: Application, event: ApplicationEvent) -> bool:
        allowed, _ = TRANSITIONS[event]
        return application.status in allowed

    def require(self, application: Application, event: ApplicationEvent):
        self.ensure_mutable(application)
        if not self.can_apply(application, event):
            raise InconsistentStateError(
                f"Cannot apply {event.value} to application {application.application_id} "
                f"in status {application.status.value}",
                application_id=application.application_id,
            )

    def missing_for_submission(self, application: Application) -> List[str]:
        missing = []
        if not application.steps.documents_submitted:
            missing.append(KycStep.DOCUMENT_UPLOAD.value)
        if not application.steps.face_verification_completed:
            missing.append(KycStep.FACE_VERIFICATION.value)
        return missing

    def apply(self, application: Application, event: ApplicationEvent, actor: str = "system",
              details: Optional[Dict[str, Any]] = None, changes: Optional[Dict[str, Any]] = None,
              at: Optional[datetime] = None) -> Application:
        """
        Return a copy of the application with the event applied.

        ``changes`` are extra field updates persisted together with the
        transition (document ids, review info, risk assessment).
        Raises InconsistentStateError for terminal applications and for
        events not allowed in the current status.
        """
        self.require(application, event)
        _, target = TRANSITIONS[event]
        if event == E.SUBMITTED or event == E.AUTO_APPROVED:
            missing = self.missing_for_submission(application)
            if missing:
                raise InconsistentStateError(
                    f"Application {application.application_id} is missing steps: {', '.join(missing)}",
                    application_id=application.application_id,
                    missing_steps=missing,
                )

        status = target or application.status
        steps = application.steps
        flag = STEP_FLAGS.get(event)
        if flag is not None:
            steps = steps.model_copy(update={flag: True})

        update = dict(changes or {})
        update.update({
            "status": status,
            "steps": steps,
            "progress": compute_progress(steps, status, application.progress),
        })
        updated = application.model_copy(update=update)

        audit_details = {"from": application.status.value, "to": status.value}
        audit_details.update(details or {})
        updated = append_audit(updated, event.value, actor=actor, details=audit_details, at=at)

        if status != application.status:
            logger.info("Application %s %s -> %s (%s)", application.application_id,
                        application.status.value, status.value, event.value)
        return updated
