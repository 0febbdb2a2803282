"""
Document validation scoring.

Five checks share 100 points:

    required fields present   25
    identity-number format    20
    image quality             30
    security features         15
    anti-tampering            10

The total is a straight sum; documents at or above the validity score are
VALIDATED (flagged for review below the review score), the rest REJECTED with
one reason line per failed check. Confident tampering forfeits the
anti-tampering points and caps the total below the validity score.
"""
import logging
from typing import Dict, List, Optional

from config import settings as default_settings, SECURITY_MARKERS

from .checks import DocumentChecks
from .models import (
    Document, DocumentStatus, DocumentType, DocumentValidation, ImageQuality,
    OcrField, ResolutionClass, TamperingSignal, ValidationCheck,
)

logger = logging.getLogger(__name__)

RESOLUTION_SCORES = {
    ResolutionClass.HIGH: 1.0,
    ResolutionClass.MEDIUM: 0.6,
    ResolutionClass.LOW: 0.2,
}

QUALITY_WEIGHTS = {"brightness": 0.25, "contrast": 0.25, "sharpness": 0.35, "resolution": 0.15}


def _points(value: float) -> float:
    return round(value, 2)


class DocumentValidator:
    """Scores one document from its extracted fields and image-quality snapshot"""

    def __init__(self, settings=None, checker: Optional[DocumentChecks] = None):
        settings = settings or default_settings
        self.checker = checker or DocumentChecks()
        self.points_required = settings.POINTS_REQUIRED_FIELDS
        self.points_format = settings.POINTS_FORMAT
        self.points_quality = settings.POINTS_IMAGE_QUALITY
        self.points_security = settings.POINTS_SECURITY_FEATURES
        self.points_tampering = settings.POINTS_ANTI_TAMPERING
        self.valid_score = settings.DOCUMENT_VALID_SCORE
        self.review_score = settings.DOCUMENT_REVIEW_SCORE
        self.quality_full_credit = settings.DOCUMENT_QUALITY_FULL_CREDIT
        self.tampering_threshold = settings.TAMPERING_CONFIDENCE_THRESHOLD
        self.tampered_cap = settings.TAMPERED_SCORE_CAP

    def legibility(self, quality: Optional[ImageQuality]) -> float:
        if quality is None:
            return 0.0
        return (
            QUALITY_WEIGHTS["brightness"] * quality.brightness
            + QUALITY_WEIGHTS["contrast"] * quality.contrast
            + QUALITY_WEIGHTS["sharpness"] * quality.sharpness
            + QUALITY_WEIGHTS["resolution"] * RESOLUTION_SCORES[quality.resolution]
        )

    def check_required_fields(self, document_type: DocumentType, fields: Dict[str, OcrField]) -> ValidationCheck:
        missing = []
        for name in self.checker.required_fields(document_type):
            f = fields.get(name)
            if f is None or f.value is None or not str(f.value).strip():
                missing.append(name)
        passed = not missing
        return ValidationCheck(
            name="required_fields",
            label="required fields missing",
            score=self.points_required if passed else 0,
            max_points=self.points_required,
            passed=passed,
            detail=", ".join(missing),
        )

    def check_format(self, format_results: Dict[str, bool]) -> ValidationCheck:
        if not format_results:
            return ValidationCheck(name="format", label="format compliance",
                                   score=self.points_format, max_points=self.points_format, passed=True)
        valid = sum(1 for ok in format_results.values() if ok)
        invalid = [name for name, ok in format_results.items() if not ok]
        return ValidationCheck(
            name="format",
            label="format compliance",
            score=_points(self.points_format * valid / len(format_results)),
            max_points=self.points_format,
            passed=not invalid,
            detail=", ".join(invalid),
        )

    def check_image_quality(self, quality: Optional[ImageQuality]) -> ValidationCheck:
        legibility = self.legibility(quality)
        ratio = min(1.0, legibility / self.quality_full_credit) if self.quality_full_credit else 1.0
        score = _points(self.points_quality * ratio)
        return ValidationCheck(
            name="image_quality",
            label="image quality",
            score=score,
            max_points=self.points_quality,
            passed=score >= self.points_quality,
            detail=f"legibility {legibility:.2f}",
        )

    def check_security_features(self, security_features: Dict[str, bool]) -> ValidationCheck:
        detected = [m for m in SECURITY_MARKERS if security_features.get(m)]
        absent = [m for m in SECURITY_MARKERS if m not in detected]
        return ValidationCheck(
            name="security_features",
            label="security features",
            score=_points(self.points_security * len(detected) / len(SECURITY_MARKERS)),
            max_points=self.points_security,
            passed=not absent,
            detail=", ".join(absent),
        )

    def check_tampering(self, tampering: TamperingSignal) -> ValidationCheck:
        tampered = tampering.detected and tampering.confidence >= self.tampering_threshold
        return ValidationCheck(
            name="anti_tampering",
            label="anti-tampering",
            score=0 if tampered else self.points_tampering,
            max_points=self.points_tampering,
            passed=not tampered,
            detail=f"tampering confidence {tampering.confidence:.2f}" if tampering.detected else "",
        )

    def score(self, document_type: DocumentType, fields: Dict[str, OcrField],
              format_results: Dict[str, bool], quality: Optional[ImageQuality],
              security_features: Dict[str, bool], tampering: TamperingSignal) -> DocumentValidation:
        checks = (
            self.check_required_fields(document_type, fields),
            self.check_format(format_results),
            self.check_image_quality(quality),
            self.check_security_features(security_features),
            self.check_tampering(tampering),
        )

        total = sum(c.score for c in checks)
        tampered = not checks[4].passed
        if tampered:
            total = min(total, self.tampered_cap)
        total = _points(max(0.0, min(100.0, total)))

        is_valid = total >= self.valid_score
        needs_review = is_valid and total < self.review_score

        issues = self._issues(checks)
        reasons = [] if is_valid else self._reasons(checks)

        return DocumentValidation(
            score=total,
            is_valid=is_valid,
            needs_review=needs_review,
            checks=checks,
            issues=tuple(issues),
            reasons=tuple(reasons),
        )

    def validate(self, document: Document) -> Document:
        """Score a processed document and return its VALIDATED / REJECTED copy"""
        validation = self.score(
            document.document_type,
            document.fields,
            self.checker.format_results(document),
            document.quality,
            document.security_features,
            document.tampering,
        )
        status = DocumentStatus.VALIDATED if validation.is_valid else DocumentStatus.REJECTED
        logger.info("Document %s (%s) scored %.2f -> %s%s", document.document_id,
                    document.document_type.value, validation.score, status.value,
                    " (needs review)" if validation.needs_review else "")
        return document.model_copy(update={
            "validation": validation,
            "status": status,
            "issues": tuple(document.issues) + validation.issues,
        })

    def _issues(self, checks) -> List[str]:
        issues = []
        for check in checks:
            if check.passed:
                continue
            if check.name == "required_fields":
                issues.append("REQUIRED_FIELDS_MISSING")
            elif check.name == "format":
                issues.extend(f"INVALID_{field.strip().upper()}_FORMAT" for field in check.detail.split(","))
            elif check.name == "image_quality":
                issues.append("POOR_IMAGE_QUALITY")
            elif check.name == "security_features":
                issues.append("SECURITY_FEATURES_MISSING")
            elif check.name == "anti_tampering":
                issues.append("TAMPERING_DETECTED")
        return issues

    def _reasons(self, checks) -> List[str]:
        reasons = []
        for check in checks:
            if check.passed:
                continue
            detail = f" ({check.detail})" if check.detail else ""
            if check.name == "required_fields":
                line = f"{check.label}{detail}"
            else:
                line = f"{check.label} failed{detail}"
            reasons.append(f"{line}: {check.score:g}/{check.max_points}")
        return reasons
