import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from config import settings as default_settings

from .checks import IDENTITY_ISSUES
from .models import (
    Disposition, Document, RiskAssessment, RiskLevel, VerificationResult,
    VerificationStatus, VerificationType,
)

logger = logging.getLogger(__name__)


class ReviewerAssigner(Protocol):
    def assign(self, application_id: str, assessment: RiskAssessment) -> str:
        ...


@dataclass(frozen=True)
class RiskInputs:
    """Everything the engine looks at for one application"""
    application_id: str
    documents: Sequence[Document] = ()
    verifications: Sequence[VerificationResult] = ()
    documents_submitted: bool = False
    face_verification_completed: bool = False
    consent_completed: bool = False
    consistency_issues: Sequence[str] = ()

    @property
    def best_face_match(self) -> Optional[VerificationResult]:
        matches = [v for v in self.verifications
                   if v.type == VerificationType.FACE_MATCH and v.status != VerificationStatus.ERROR]
        if not matches:
            return None
        return max(matches, key=lambda v: v.score)

    @property
    def identity_mismatch(self) -> bool:
        return any(issue in IDENTITY_ISSUES for issue in self.consistency_issues)


@dataclass(frozen=True)
class RiskFactor:
    """A named fixed penalty applied when its predicate holds"""
    name: str
    points: int
    predicate: Callable[[RiskInputs], bool] = field(compare=False)


def _low_face_match(min_confidence: float) -> Callable[[RiskInputs], bool]:
    def predicate(inputs: RiskInputs) -> bool:
        best = inputs.best_face_match
        return best is None or best.confidence < min_confidence
    return predicate


class RiskDecisionEngine:
    """
    Turns an application's documents, verification results and step flags
    into a risk score and a disposition.

    Lower is better. The engine only ever auto-approves or routes to manual
    review; a REJECTED status needs a recorded reviewer decision.
    """

    def __init__(self, settings=None, reviewer_assigner: Optional[ReviewerAssigner] = None,
                 extra_factors: Iterable[RiskFactor] = ()):
        settings = settings or default_settings
        self.auto_approve_max = settings.AUTO_APPROVE_MAX_RISK
        self.manual_review_min = settings.MANUAL_REVIEW_MIN_RISK
        self.rejection_candidate = settings.REJECTION_CANDIDATE_RISK
        self.default_reviewer = settings.DEFAULT_REVIEWER
        self.reviewer_assigner = reviewer_assigner

        self.factors: List[RiskFactor] = [
            RiskFactor("DOCUMENT_INCONSISTENCY", settings.RISK_DOCUMENT_INCONSISTENCY,
                       lambda inputs: bool(inputs.consistency_issues)),
            RiskFactor("CONSENT_NOT_COMPLETED", settings.RISK_CONSENT_NOT_COMPLETED,
                       lambda inputs: not inputs.consent_completed),
            RiskFactor("LOW_FACE_MATCH_CONFIDENCE", settings.RISK_LOW_FACE_MATCH,
                       _low_face_match(settings.FACE_MATCH_MIN_CONFIDENCE)),
        ]
        for factor in extra_factors:
            self.register(factor)

    def register(self, factor: RiskFactor):
        if any(f.name == factor.name for f in self.factors):
            raise ValueError(f"Risk factor already registered: {factor.name}")
        self.factors.append(factor)

    def level(self, score: int) -> RiskLevel:
        if score <= self.auto_approve_max:
            return RiskLevel.LOW
        if score <= self.manual_review_min:
            return RiskLevel.MEDIUM
        if score <= self.rejection_candidate:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL

    def assess(self, inputs: RiskInputs) -> RiskAssessment:
        fired = [f for f in self.factors if f.predicate(inputs)]
        score = max(0, min(100, sum(f.points for f in fired)))
        identity_mismatch = inputs.identity_mismatch

        steps_complete = inputs.documents_submitted and inputs.face_verification_completed
        manual = score > self.manual_review_min or identity_mismatch
        if not manual and score <= self.auto_approve_max and steps_complete:
            disposition = Disposition.AUTO_APPROVE
        else:
            disposition = Disposition.MANUAL_REVIEW

        reasons = []
        rejection_candidate = score > self.rejection_candidate
        if rejection_candidate:
            reasons.extend(["High risk score", "Manual review required"])
        elif identity_mismatch:
            reasons.append("Identity details differ across documents")
        elif disposition == Disposition.MANUAL_REVIEW and not steps_complete:
            reasons.append("Verification steps incomplete")

        assessment = RiskAssessment(
            score=score,
            level=self.level(score),
            factors=tuple(f.name for f in fired),
            disposition=disposition,
            identity_mismatch=identity_mismatch,
            rejection_candidate=rejection_candidate,
            reasons=tuple(reasons),
        )
        if disposition == Disposition.MANUAL_REVIEW:
            reviewer = self.default_reviewer
            if self.reviewer_assigner is not None:
                reviewer = self.reviewer_assigner.assign(inputs.application_id, assessment) or reviewer
            assessment = assessment.model_copy(update={"assigned_reviewer": reviewer})

        logger.info("Risk %s score=%d level=%s factors=%s -> %s", inputs.application_id, score,
                    assessment.level.value, list(assessment.factors), disposition.value)
        return assessment
