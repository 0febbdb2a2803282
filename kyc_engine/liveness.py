"""
Liveness and anti-spoofing scoring for a single face capture.

The score is a weighted sum of three groups of signals:

- liveness checks (eye openness, head pose, expression naturalness)
- anti-spoofing (full credit only when no indicator fires)
- image quality (scaled by the combined quality score)

A capture is accepted when the score reaches the configured minimum, no
spoofing indicator fired, exactly one face was found and every required
liveness check passed. Scoring never raises for a failed capture; a capture
the scorer cannot interpret is reported through ``error_result``.
"""
import logging
import time
from typing import List, Optional

from config import settings as default_settings

from .errors import ExtractionError
from .landmarks import estimate_head_pose, eye_aspect_ratio
from .models import (
    Capture, CheckOutcome, LivenessDetails, LivenessReason, RiskLevel,
    VerificationResult, VerificationStatus, VerificationType,
)

logger = logging.getLogger(__name__)

REASON_ORDER = list(LivenessReason)

RECOMMENDATIONS = {
    LivenessReason.NO_FACE: "Please make sure your face is clearly visible in the frame",
    LivenessReason.MULTIPLE_FACES: "Multiple faces detected - please ensure only one person is in frame",
    LivenessReason.SPOOFING_DETECTED: "Please use a live camera capture, not a photo, screen or mask",
    LivenessReason.EYES_CLOSED: "Please keep your eyes open and look directly at the camera",
    LivenessReason.POOR_HEAD_POSE: "Please hold your head straight and face the camera directly",
    LivenessReason.POOR_IMAGE_QUALITY: "Please ensure good lighting and a clear image",
    LivenessReason.PROCESSING_ERROR: "Please try again with a clearer image",
}


def _ordered(reasons) -> List[str]:
    return [r.value for r in sorted(set(reasons), key=REASON_ORDER.index)]


class LivenessScorer:
    """
    Scores one capture for liveness.
    Thresholds and weights come from settings unless overridden.
    """

    def __init__(self, settings=None, min_confidence: Optional[float] = None,
                 min_score: Optional[float] = None):
        settings = settings or default_settings
        self.min_confidence = settings.LIVENESS_MIN_CONFIDENCE if min_confidence is None else min_confidence
        self.min_score = settings.LIVENESS_MIN_SCORE if min_score is None else min_score
        self.ear_threshold = settings.EYE_ASPECT_RATIO_THRESHOLD
        self.max_yaw = settings.MAX_YAW
        self.max_roll = settings.MAX_ROLL
        self.natural_expressions = {e.lower() for e in settings.NATURAL_EXPRESSIONS}
        self.quality_floor = settings.LIVENESS_QUALITY_FLOOR
        self.required_checks = set(settings.LIVENESS_REQUIRED_CHECKS)
        self.weights = {
            "eyes_open": settings.WEIGHT_EYES,
            "head_pose": settings.WEIGHT_POSE,
            "expression": settings.WEIGHT_EXPRESSION,
            "anti_spoofing": settings.WEIGHT_ANTI_SPOOFING,
            "image_quality": settings.WEIGHT_IMAGE_QUALITY,
        }

    # ------------------------
    # Individual checks
    # ------------------------
    def check_eyes(self, capture: Capture) -> CheckOutcome:
        left = eye_aspect_ratio(capture.landmarks.left_eye)
        right = eye_aspect_ratio(capture.landmarks.right_eye)
        ear = (left + right) / 2
        return CheckOutcome(
            name="eyes_open",
            passed=ear > self.ear_threshold,
            confidence=min(1.0, ear * 3),
            detail={"left_eye": round(left, 4), "right_eye": round(right, 4), "ear": round(ear, 4)},
        )

    def check_head_pose(self, capture: Capture) -> CheckOutcome:
        pose = capture.pose or estimate_head_pose(capture.landmarks)
        neutral = abs(pose.yaw) < self.max_yaw and abs(pose.roll) < self.max_roll
        return CheckOutcome(
            name="head_pose",
            passed=neutral,
            confidence=0.9 if neutral else 0.6,
            detail={"yaw": round(pose.yaw, 2), "roll": round(pose.roll, 2), "pitch": round(pose.pitch, 2)},
        )

    def check_expression(self, capture: Capture) -> CheckOutcome:
        if not capture.expressions:
            return CheckOutcome(name="expression", passed=False, confidence=0.0,
                                detail={"dominant": None})
        dominant = max(capture.expressions, key=capture.expressions.get)
        probability = capture.expressions[dominant]
        natural = dominant.lower() in self.natural_expressions
        return CheckOutcome(
            name="expression",
            passed=natural,
            confidence=probability if natural else 1 - probability,
            detail={"dominant": dominant, "probability": round(probability, 4)},
        )

    def check_anti_spoofing(self, capture: Capture) -> CheckOutcome:
        fired = [name for name, indicator in capture.spoof_indicators.items()
                 if indicator.detected and indicator.confidence >= self.min_confidence]
        if fired:
            confidence = max(getattr(capture.spoof_indicators, name).confidence for name in fired)
        else:
            confidence = 1 - max(indicator.confidence for _, indicator in capture.spoof_indicators.items())
        return CheckOutcome(
            name="anti_spoofing",
            passed=not fired,
            confidence=confidence,
            detail={"fired": fired},
        )

    def check_image_quality(self, capture: Capture) -> CheckOutcome:
        if capture.quality is not None:
            overall = capture.quality.overall
            detail = {
                "brightness": capture.quality.brightness,
                "contrast": capture.quality.contrast,
                "sharpness": capture.quality.sharpness,
                "resolution": capture.quality.resolution.value,
            }
        else:
            # No quality snapshot: fall back to detector confidence
            overall = min(1.0, capture.detector_confidence * 1.1)
            detail = {"estimated_from": "detector_confidence"}
        detail["overall"] = round(overall, 4)
        return CheckOutcome(
            name="image_quality",
            passed=overall >= self.quality_floor,
            confidence=overall,
            detail=detail,
        )

    # ------------------------
    # Combination
    # ------------------------
    def combine(self, eyes: CheckOutcome, pose: CheckOutcome, expression: CheckOutcome,
                spoofing: CheckOutcome, quality: CheckOutcome) -> float:
        score = 0.0
        if eyes.passed:
            score += self.weights["eyes_open"]
        if pose.passed:
            score += self.weights["head_pose"]
        if expression.passed:
            score += self.weights["expression"]
        if spoofing.passed:
            score += self.weights["anti_spoofing"]
        score += self.weights["image_quality"] * quality.confidence
        return max(0.0, min(1.0, score))

    def assess_risk_level(self, score: float, spoofing_passed: bool) -> RiskLevel:
        if not spoofing_passed:
            return RiskLevel.CRITICAL
        if score > 0.9:
            return RiskLevel.LOW
        if score > 0.7:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

    def score(self, capture: Capture, application_id: Optional[str] = None) -> VerificationResult:
        start = time.monotonic()

        if capture.face_count == 0 or (capture.face_count == 1 and capture.detector_confidence < self.min_confidence):
            return self._rejected(capture, LivenessReason.NO_FACE, application_id, start)
        if capture.face_count > 1:
            return self._rejected(capture, LivenessReason.MULTIPLE_FACES, application_id, start)
        if capture.landmarks is None:
            raise ExtractionError("Capture has a face but no landmarks")

        eyes = self.check_eyes(capture)
        pose = self.check_head_pose(capture)
        expression = self.check_expression(capture)
        spoofing = self.check_anti_spoofing(capture)
        quality = self.check_image_quality(capture)
        checks = (eyes, pose, expression, spoofing, quality)

        score = self.combine(eyes, pose, expression, spoofing, quality)
        required_ok = all(c.passed for c in checks if c.name in self.required_checks)
        passed = score >= self.min_score and spoofing.passed and required_ok

        reasons = []
        if not spoofing.passed:
            reasons.append(LivenessReason.SPOOFING_DETECTED)
        if not eyes.passed:
            reasons.append(LivenessReason.EYES_CLOSED)
        if not pose.passed:
            reasons.append(LivenessReason.POOR_HEAD_POSE)
        if not quality.passed:
            reasons.append(LivenessReason.POOR_IMAGE_QUALITY)

        recommendations = [RECOMMENDATIONS[r] for r in reasons]
        if not expression.passed:
            recommendations.append("Please keep a neutral, relaxed expression")

        failure_reasons = []
        if not passed:
            failure_reasons = _ordered(reasons) or [LivenessReason.LOW_LIVENESS_SCORE.value]

        liveness_share = sum(c.passed for c in (eyes, pose, expression, quality)) / 4
        risk_factors = []
        if liveness_share < 0.5:
            risk_factors.append("LOW_LIVENESS_SCORE")
        if not spoofing.passed:
            risk_factors.append("SPOOFING_DETECTED")
        if quality.confidence < 0.6:
            risk_factors.append("POOR_IMAGE_QUALITY")

        result = VerificationResult(
            application_id=application_id,
            type=VerificationType.LIVENESS,
            status=VerificationStatus.SUCCESS if passed else VerificationStatus.FAILED,
            score=score,
            decision=passed,
            confidence=capture.detector_confidence,
            checks=checks,
            failure_reasons=tuple(failure_reasons),
            recommendations=tuple(recommendations),
            risk_level=self.assess_risk_level(score, spoofing.passed),
            risk_factors=tuple(risk_factors),
            details=LivenessDetails(
                face_count=capture.face_count,
                detector_confidence=capture.detector_confidence,
                eye_aspect_ratio=eyes.detail["ear"],
                yaw=pose.detail["yaw"],
                roll=pose.detail["roll"],
                dominant_expression=expression.detail["dominant"],
                image_quality=quality.confidence,
                fired_indicators=tuple(spoofing.detail["fired"]),
            ),
            processing_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info("Liveness %s score=%.2f decision=%s reasons=%s",
                    capture.capture_id, score, passed, list(result.failure_reasons))
        return result

    def _rejected(self, capture: Capture, reason: LivenessReason,
                  application_id: Optional[str], start: float) -> VerificationResult:
        logger.info("Liveness %s rejected: %s (faces=%d)", capture.capture_id, reason.value, capture.face_count)
        return VerificationResult(
            application_id=application_id,
            type=VerificationType.LIVENESS,
            status=VerificationStatus.FAILED,
            score=0.0,
            decision=False,
            confidence=0.0,
            failure_reasons=(reason.value,),
            recommendations=(RECOMMENDATIONS[reason],),
            risk_level=RiskLevel.HIGH,
            details=LivenessDetails(
                face_count=capture.face_count,
                detector_confidence=capture.detector_confidence,
            ),
            processing_ms=int((time.monotonic() - start) * 1000),
        )


def error_result(verification_type: VerificationType, error: Exception,
                 application_id: Optional[str] = None) -> VerificationResult:
    """Result for a verification that could not run (extraction failure, timeout)"""
    logger.error("%s verification could not run: %s", verification_type.value, error)
    reason = LivenessReason.PROCESSING_ERROR.value
    return VerificationResult(
        application_id=application_id,
        type=verification_type,
        status=VerificationStatus.ERROR,
        score=0.0,
        decision=False,
        failure_reasons=(reason,),
        recommendations=("Please try again with a clearer image",),
        risk_level=RiskLevel.HIGH,
        risk_factors=("PROCESSING_ERROR",),
    )
