import logging
import time
from typing import List, Optional

import numpy as np
from config import settings as default_settings

from .errors import ExtractionError
from .landmarks import geometric_similarity
from .models import (
    Capture, CheckOutcome, FaceMatchDetails, FaceMatchReason, RiskLevel,
    VerificationResult, VerificationStatus, VerificationType,
)

logger = logging.getLogger(__name__)

GEOMETRY_FLOOR = 0.5
LOW_SIMILARITY = 0.4
CLEAR_DETECTION = 0.8


class FaceMatchScorer:
    """
    Compares a live capture against a reference capture (document photo).
    Combined score = descriptor similarity and landmark geometry, weighted.
    """

    def __init__(self, settings=None, threshold: Optional[float] = None):
        settings = settings or default_settings
        self.threshold = settings.FACE_MATCH_THRESHOLD if threshold is None else threshold
        self.descriptor_weight = settings.DESCRIPTOR_WEIGHT
        self.geometric_weight = settings.GEOMETRIC_WEIGHT

    def descriptor_distance(self, source: Capture, reference: Capture) -> float:
        if len(source.descriptor) != len(reference.descriptor):
            raise ExtractionError(
                f"Descriptor length mismatch ({len(source.descriptor)} vs {len(reference.descriptor)})"
            )
        return float(np.linalg.norm(np.asarray(source.descriptor) - np.asarray(reference.descriptor)))

    def recommendations(self, similarity: float, geometry: float,
                        source: Capture, reference: Capture, threshold: float) -> List[str]:
        recommendations = []
        # Advice for whichever factor contributed least
        if min(similarity, geometry) < threshold:
            if similarity <= geometry:
                recommendations.append("Please ensure both images show the same person clearly")
            else:
                recommendations.append("Please face the camera directly so facial proportions can be compared")
        if source.detector_confidence < CLEAR_DETECTION:
            recommendations.append("Please provide a clearer live image")
        if reference.detector_confidence < CLEAR_DETECTION:
            recommendations.append("Please provide a clearer reference image")
        return recommendations

    def assess_risk_level(self, combined: float, threshold: float) -> RiskLevel:
        if combined >= 0.8:
            return RiskLevel.LOW
        if combined >= threshold:
            return RiskLevel.MEDIUM
        if combined >= LOW_SIMILARITY:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL

    def compare(self, source: Capture, reference: Capture, threshold: Optional[float] = None,
                application_id: Optional[str] = None) -> VerificationResult:
        start = time.monotonic()
        threshold = self.threshold if threshold is None else threshold

        if source.face_count == 0:
            return self._missing_face(FaceMatchReason.NO_FACE_IN_SOURCE, "live", threshold, application_id, start)
        if reference.face_count == 0:
            return self._missing_face(FaceMatchReason.NO_FACE_IN_REFERENCE, "reference", threshold, application_id, start)
        if not source.descriptor or not reference.descriptor:
            raise ExtractionError("Capture has a face but no descriptor")
        if source.landmarks is None or reference.landmarks is None:
            raise ExtractionError("Capture has a face but no landmarks")

        distance = self.descriptor_distance(source, reference)
        similarity = max(0.0, 1 - distance)
        geometry = geometric_similarity(source.landmarks, reference.landmarks)
        combined = self.descriptor_weight * similarity + self.geometric_weight * geometry
        combined = max(0.0, min(1.0, combined))
        matched = combined >= threshold
        confidence = (source.detector_confidence + reference.detector_confidence) / 2

        failure_reasons = []
        if not matched:
            if similarity < LOW_SIMILARITY:
                failure_reasons.append(FaceMatchReason.LOW_FACE_SIMILARITY.value)
            if geometry < GEOMETRY_FLOOR:
                failure_reasons.append(FaceMatchReason.POOR_GEOMETRIC_MATCH.value)
            if not failure_reasons:
                failure_reasons.append(FaceMatchReason.BELOW_THRESHOLD.value)

        checks = (
            CheckOutcome(name="descriptor_similarity", passed=similarity >= threshold,
                         confidence=similarity, detail={"distance": round(distance, 4)}),
            CheckOutcome(name="geometric_similarity", passed=geometry >= GEOMETRY_FLOOR,
                         confidence=geometry),
            CheckOutcome(name="combined", passed=matched, confidence=combined,
                         detail={"threshold": threshold}),
        )

        result = VerificationResult(
            application_id=application_id,
            type=VerificationType.FACE_MATCH,
            status=VerificationStatus.SUCCESS if matched else VerificationStatus.FAILED,
            score=combined,
            decision=matched,
            confidence=confidence,
            checks=checks,
            failure_reasons=tuple(failure_reasons),
            recommendations=tuple(self.recommendations(similarity, geometry, source, reference, threshold)),
            risk_level=self.assess_risk_level(combined, threshold),
            details=FaceMatchDetails(
                descriptor_distance=distance,
                raw_similarity=similarity,
                geometric_similarity=geometry,
                combined_score=combined,
                threshold=threshold,
                source_confidence=source.detector_confidence,
                reference_confidence=reference.detector_confidence,
            ),
            processing_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info("Face match %s vs %s combined=%.2f (descriptor=%.2f geometry=%.2f) match=%s",
                    source.capture_id, reference.capture_id, combined, similarity, geometry, matched)
        return result

    def _missing_face(self, reason: FaceMatchReason, side: str, threshold: float,
                      application_id: Optional[str], start: float) -> VerificationResult:
        logger.info("Face match skipped: %s", reason.value)
        return VerificationResult(
            application_id=application_id,
            type=VerificationType.FACE_MATCH,
            status=VerificationStatus.FAILED,
            score=0.0,
            decision=False,
            confidence=0.0,
            failure_reasons=(reason.value,),
            recommendations=(f"Could not detect a face in the {side} image - please retake it",),
            risk_level=RiskLevel.HIGH,
            details=FaceMatchDetails(threshold=threshold),
            processing_ms=int((time.monotonic() - start) * 1000),
        )
