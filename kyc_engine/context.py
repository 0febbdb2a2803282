"""
Engine wiring.

One EngineContext is built at process start and passed to KycService; tests
build their own with fakes in place of the OpenCV / OpenAI adapters.
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Protocol

from config import settings as default_settings

from .decision import ReviewerAssigner
from .errors import ConfigurationError
from .extractor import FaceExtractor, OpenCVFaceExtractor, TextExtractor, VisionFaceAnalyzer, VisionTextExtractor
from .models import ConsentStatus, RiskAssessment, utcnow
from .notifications import LoggingNotifier, Notifier
from .quality import ImageQualityGate
from .repository import ApplicationRepository, InMemoryRepository
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

UNIT_SETTINGS = (
    "LIVENESS_MIN_CONFIDENCE", "LIVENESS_MIN_SCORE", "LIVENESS_QUALITY_FLOOR",
    "EYE_ASPECT_RATIO_THRESHOLD", "FACE_MATCH_THRESHOLD", "FACE_MATCH_MIN_CONFIDENCE",
    "TAMPERING_CONFIDENCE_THRESHOLD", "MIN_OCR_CONFIDENCE", "DOCUMENT_QUALITY_FULL_CREDIT",
    "WEIGHT_EYES", "WEIGHT_POSE", "WEIGHT_EXPRESSION", "WEIGHT_ANTI_SPOOFING", "WEIGHT_IMAGE_QUALITY",
)


class ConsentClient(Protocol):
    def fetch_status(self, application_id: str) -> ConsentStatus:
        ...


class NullConsentClient:
    """No consent-exchange integration configured: consent is never completed"""

    def fetch_status(self, application_id: str) -> ConsentStatus:
        return ConsentStatus(completed=False)


class StaticReviewerAssigner:
    def __init__(self, reviewer_id: str):
        self.reviewer_id = reviewer_id

    def assign(self, application_id: str, assessment: RiskAssessment) -> str:
        return self.reviewer_id


@dataclass
class EngineContext:
    settings: object
    face_extractor: FaceExtractor
    text_extractor: TextExtractor
    quality_gate: ImageQualityGate
    repository: ApplicationRepository
    notifier: Notifier
    consent_client: ConsentClient
    reviewer_assigner: ReviewerAssigner
    retry_policy: RetryPolicy
    executor: ThreadPoolExecutor
    clock: Callable[[], datetime] = field(default=utcnow)

    def shutdown(self):
        self.executor.shutdown(wait=False)


def _unit(name: str, value: float):
    if not 0 <= value <= 1:
        raise ConfigurationError(f"{name} must be between 0 and 1, got {value}")


def validate_settings(settings=None):
    """Reject inconsistent thresholds and weights before the engine starts"""
    settings = settings or default_settings

    liveness_weights = (settings.WEIGHT_EYES, settings.WEIGHT_POSE, settings.WEIGHT_EXPRESSION,
                        settings.WEIGHT_ANTI_SPOOFING, settings.WEIGHT_IMAGE_QUALITY)
    if not math.isclose(sum(liveness_weights), 1.0, abs_tol=1e-6):
        raise ConfigurationError(f"Liveness weights must sum to 1, got {sum(liveness_weights):.3f}")
    if not math.isclose(settings.DESCRIPTOR_WEIGHT + settings.GEOMETRIC_WEIGHT, 1.0, abs_tol=1e-6):
        raise ConfigurationError("Face match descriptor and geometric weights must sum to 1")

    for name in UNIT_SETTINGS:
        _unit(name, getattr(settings, name))

    points = (settings.POINTS_REQUIRED_FIELDS, settings.POINTS_FORMAT, settings.POINTS_IMAGE_QUALITY,
              settings.POINTS_SECURITY_FEATURES, settings.POINTS_ANTI_TAMPERING)
    if sum(points) != 100:
        raise ConfigurationError(f"Document check points must sum to 100, got {sum(points)}")
    if not settings.TAMPERED_SCORE_CAP < settings.DOCUMENT_VALID_SCORE <= settings.DOCUMENT_REVIEW_SCORE <= 100:
        raise ConfigurationError("Document score thresholds must satisfy tamper cap < valid <= review <= 100")
    if not 0 <= settings.AUTO_APPROVE_MAX_RISK <= settings.MANUAL_REVIEW_MIN_RISK <= settings.REJECTION_CANDIDATE_RISK <= 100:
        raise ConfigurationError("Risk thresholds must satisfy auto-approve <= manual review <= rejection candidate")

    unknown = set(settings.LIVENESS_REQUIRED_CHECKS) - {"eyes_open", "head_pose", "expression", "image_quality"}
    if unknown:
        raise ConfigurationError(f"Unknown required liveness checks: {sorted(unknown)}")

    if settings.EXTRACTION_MAX_ATTEMPTS < 1 or settings.EXTRACTION_WORKERS < 1:
        raise ConfigurationError("Extraction attempts and workers must be at least 1")
    if settings.EXTRACTION_TIMEOUT_SECONDS <= 0:
        raise ConfigurationError("EXTRACTION_TIMEOUT_SECONDS must be positive")


def build_context(settings=None, **overrides) -> EngineContext:
    """Validate settings and wire the default collaborators; any of them may be overridden"""
    settings = settings or default_settings
    validate_settings(settings)

    if "quality_gate" not in overrides:
        overrides["quality_gate"] = ImageQualityGate(settings)
    if "face_extractor" not in overrides:
        overrides["face_extractor"] = OpenCVFaceExtractor(
            settings, analyzer=VisionFaceAnalyzer(settings), quality_gate=overrides["quality_gate"])
    if "text_extractor" not in overrides:
        overrides["text_extractor"] = VisionTextExtractor(settings)
    overrides.setdefault("repository", InMemoryRepository())
    overrides.setdefault("notifier", LoggingNotifier())
    overrides.setdefault("consent_client", NullConsentClient())
    overrides.setdefault("reviewer_assigner", StaticReviewerAssigner(settings.DEFAULT_REVIEWER))
    overrides.setdefault("retry_policy", RetryPolicy.from_settings(settings))
    if "executor" not in overrides:
        overrides["executor"] = ThreadPoolExecutor(max_workers=settings.EXTRACTION_WORKERS,
                                                   thread_name_prefix="kyc-extract")

    logger.info("Engine context ready: repository=%s notifier=%s max_attempts=%d",
                type(overrides["repository"]).__name__, type(overrides["notifier"]).__name__,
                overrides["retry_policy"].max_attempts)
    return EngineContext(settings=settings, **overrides)
