"""
Records exchanged between the engine components.

Captures, documents and verification results are frozen; a lifecycle step
produces a new copy (``model_copy(update=...)``) rather than an in-place edit.
The Application aggregate references its documents and verification results
by id only.
"""
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Iterator, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

LANDMARK_COUNT = 68


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Identifier in the form PREFIX_<epoch millis>_<random>"""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9].upper()}"


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)


# ------------------------
# Enumerations
# ------------------------
class VerificationType(str, Enum):
    LIVENESS = "LIVENESS"
    FACE_MATCH = "FACE_MATCH"


class VerificationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ERROR = "ERROR"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ResolutionClass(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DocumentType(str, Enum):
    AADHAAR_FRONT = "AADHAAR_FRONT"
    AADHAAR_BACK = "AADHAAR_BACK"
    PAN_CARD = "PAN_CARD"
    DRIVING_LICENSE_FRONT = "DRIVING_LICENSE_FRONT"
    DRIVING_LICENSE_BACK = "DRIVING_LICENSE_BACK"
    VOTER_ID_FRONT = "VOTER_ID_FRONT"
    VOTER_ID_BACK = "VOTER_ID_BACK"
    PASSPORT = "PASSPORT"
    UTILITY_BILL = "UTILITY_BILL"
    BANK_STATEMENT = "BANK_STATEMENT"
    OTHER = "OTHER"


class DocumentStatus(str, Enum):
    UPLOADED = "UPLOADED"
    PROCESSED = "PROCESSED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"


class ApplicationStatus(str, Enum):
    INITIATED = "INITIATED"
    DOCUMENTS_PENDING = "DOCUMENTS_PENDING"
    DOCUMENTS_UPLOADED = "DOCUMENTS_UPLOADED"
    FACE_VERIFICATION_PENDING = "FACE_VERIFICATION_PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.EXPIRED,
    ApplicationStatus.CANCELLED,
})


class KycMethod(str, Enum):
    DOCUMENTS = "DOCUMENTS"
    DIGILOCKER = "DIGILOCKER"
    HYBRID = "HYBRID"


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class KycStep(str, Enum):
    PERSONAL_INFO = "PERSONAL_INFO"
    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"
    FACE_VERIFICATION = "FACE_VERIFICATION"
    REVIEW = "REVIEW"
    COMPLETED = "COMPLETED"


class Disposition(str, Enum):
    AUTO_APPROVE = "AUTO_APPROVE"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class LivenessReason(str, Enum):
    """Liveness failure reasons, declared in reporting order"""
    NO_FACE = "NO_FACE"
    MULTIPLE_FACES = "MULTIPLE_FACES"
    SPOOFING_DETECTED = "SPOOFING_DETECTED"
    EYES_CLOSED = "EYES_CLOSED"
    POOR_HEAD_POSE = "POOR_HEAD_POSE"
    POOR_IMAGE_QUALITY = "POOR_IMAGE_QUALITY"
    LOW_LIVENESS_SCORE = "LOW_LIVENESS_SCORE"
    PROCESSING_ERROR = "PROCESSING_ERROR"


class FaceMatchReason(str, Enum):
    NO_FACE_IN_SOURCE = "NO_FACE_IN_SOURCE"
    NO_FACE_IN_REFERENCE = "NO_FACE_IN_REFERENCE"
    LOW_FACE_SIMILARITY = "LOW_FACE_SIMILARITY"
    POOR_GEOMETRIC_MATCH = "POOR_GEOMETRIC_MATCH"
    BELOW_THRESHOLD = "BELOW_THRESHOLD"
    PROCESSING_ERROR = "PROCESSING_ERROR"


# ------------------------
# Capture measurements
# ------------------------
class Point(Record):
    x: float
    y: float


class FaceLandmarks(Record):
    """68-point landmark set (iBUG 300-W ordering)"""
    points: Tuple[Point, ...]

    @field_validator("points")
    @classmethod
    def _check_count(cls, value):
        if len(value) != LANDMARK_COUNT:
            raise ValueError(f"expected {LANDMARK_COUNT} landmark points, got {len(value)}")
        return value

    @property
    def jaw(self) -> Tuple[Point, ...]:
        return self.points[0:17]

    @property
    def nose(self) -> Tuple[Point, ...]:
        return self.points[27:36]

    @property
    def left_eye(self) -> Tuple[Point, ...]:
        return self.points[36:42]

    @property
    def right_eye(self) -> Tuple[Point, ...]:
        return self.points[42:48]


class HeadPose(Record):
    yaw: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0


class ImageQuality(Record):
    brightness: float = Field(ge=0, le=1)
    contrast: float = Field(ge=0, le=1)
    sharpness: float = Field(ge=0, le=1)
    resolution: ResolutionClass = ResolutionClass.MEDIUM
    width: int = 0
    height: int = 0

    @property
    def overall(self) -> float:
        return (self.brightness + self.contrast + self.sharpness) / 3


class SpoofIndicator(Record):
    detected: bool = False
    confidence: float = Field(default=0.0, ge=0, le=1)


class SpoofIndicators(Record):
    screen_replay: SpoofIndicator = SpoofIndicator()
    mask_photo: SpoofIndicator = SpoofIndicator()
    deepfake: SpoofIndicator = SpoofIndicator()

    def items(self) -> Iterator[Tuple[str, SpoofIndicator]]:
        yield "screen_replay", self.screen_replay
        yield "mask_photo", self.mask_photo
        yield "deepfake", self.deepfake


class Capture(Record):
    capture_id: str = Field(default_factory=lambda: new_id("CAP"))
    face_count: int = Field(ge=0)
    detector_confidence: float = Field(default=0.0, ge=0, le=1)
    landmarks: Optional[FaceLandmarks] = None
    expressions: Dict[str, float] = Field(default_factory=dict)
    pose: Optional[HeadPose] = None
    descriptor: Tuple[float, ...] = ()
    quality: Optional[ImageQuality] = None
    spoof_indicators: SpoofIndicators = SpoofIndicators()
    captured_at: datetime = Field(default_factory=utcnow)


# ------------------------
# Documents
# ------------------------
class OcrField(Record):
    value: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0, le=1)


class TamperingSignal(Record):
    detected: bool = False
    confidence: float = Field(default=0.0, ge=0, le=1)


class OcrResult(Record):
    fields: Dict[str, OcrField] = Field(default_factory=dict)
    raw_text: str = ""
    security_features: Dict[str, bool] = Field(default_factory=dict)
    tampering: TamperingSignal = TamperingSignal()

    @property
    def confidence(self) -> float:
        values = [f.confidence for f in self.fields.values() if f.value]
        return sum(values) / len(values) if values else 0.0


class ValidationCheck(Record):
    name: str
    label: str
    score: float
    max_points: int
    passed: bool
    detail: str = ""


class DocumentValidation(Record):
    score: float = Field(ge=0, le=100)
    is_valid: bool
    needs_review: bool
    checks: Tuple[ValidationCheck, ...] = ()
    issues: Tuple[str, ...] = ()
    reasons: Tuple[str, ...] = ()


class Document(Record):
    document_id: str = Field(default_factory=lambda: new_id("DOC"))
    application_id: str
    document_type: DocumentType
    raw_text: str = ""
    fields: Dict[str, OcrField] = Field(default_factory=dict)
    ocr_confidence: float = 0.0
    quality: Optional[ImageQuality] = None
    security_features: Dict[str, bool] = Field(default_factory=dict)
    tampering: TamperingSignal = TamperingSignal()
    status: DocumentStatus = DocumentStatus.UPLOADED
    validation: Optional[DocumentValidation] = None
    issues: Tuple[str, ...] = ()
    uploaded_at: datetime = Field(default_factory=utcnow)

    def field_value(self, name: str) -> Optional[str]:
        f = self.fields.get(name)
        if f is None or f.value is None:
            return None
        value = str(f.value).strip()
        return value or None


# ------------------------
# Verification results
# ------------------------
class CheckOutcome(Record):
    name: str
    passed: bool
    confidence: float = 0.0
    detail: Dict[str, Any] = Field(default_factory=dict)


class LivenessDetails(Record):
    type: Literal["LIVENESS"] = "LIVENESS"
    face_count: int = 0
    detector_confidence: float = 0.0
    eye_aspect_ratio: Optional[float] = None
    yaw: Optional[float] = None
    roll: Optional[float] = None
    dominant_expression: Optional[str] = None
    image_quality: Optional[float] = None
    fired_indicators: Tuple[str, ...] = ()


class FaceMatchDetails(Record):
    type: Literal["FACE_MATCH"] = "FACE_MATCH"
    descriptor_distance: Optional[float] = None
    raw_similarity: float = 0.0
    geometric_similarity: float = 0.0
    combined_score: float = 0.0
    threshold: float = 0.0
    source_confidence: float = 0.0
    reference_confidence: float = 0.0


VerificationDetails = Annotated[
    Union[LivenessDetails, FaceMatchDetails], Field(discriminator="type")
]


class VerificationResult(Record):
    verification_id: str = Field(default_factory=lambda: new_id("FACE"))
    application_id: Optional[str] = None
    type: VerificationType
    status: VerificationStatus
    score: float = Field(default=0.0, ge=0, le=1)
    decision: bool = False
    confidence: float = 0.0
    checks: Tuple[CheckOutcome, ...] = ()
    failure_reasons: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    risk_level: RiskLevel = RiskLevel.HIGH
    risk_factors: Tuple[str, ...] = ()
    details: Optional[VerificationDetails] = None
    processing_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def score_percent(self) -> int:
        return int(round(self.score * 100))


# ------------------------
# Application aggregate
# ------------------------
class RiskAssessment(Record):
    score: int = Field(default=0, ge=0, le=100)
    level: RiskLevel = RiskLevel.LOW
    factors: Tuple[str, ...] = ()
    disposition: Disposition = Disposition.MANUAL_REVIEW
    identity_mismatch: bool = False
    rejection_candidate: bool = False
    reasons: Tuple[str, ...] = ()
    assigned_reviewer: Optional[str] = None
    assessed_at: datetime = Field(default_factory=utcnow)


class ProgressRecord(Record):
    percentage: int = Field(default=0, ge=0, le=100)
    current_step: KycStep = KycStep.PERSONAL_INFO
    steps_completed: Tuple[KycStep, ...] = ()


class StepFlags(Record):
    personal_info: bool = False
    documents_submitted: bool = False
    face_verification_completed: bool = False
    consent_completed: bool = False


class ComplianceInfo(Record):
    consent_given: bool
    consent_timestamp: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class ReviewInfo(Record):
    required: bool = False
    reviewer_id: Optional[str] = None
    decision: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class AuditEntry(Record):
    action: str
    at: datetime = Field(default_factory=utcnow)
    actor: str = "system"
    details: Dict[str, Any] = Field(default_factory=dict)


class Application(Record):
    application_id: str = Field(default_factory=lambda: new_id("KYC"))
    user_id: str
    status: ApplicationStatus = ApplicationStatus.INITIATED
    method: KycMethod = KycMethod.DOCUMENTS
    priority: Priority = Priority.NORMAL
    progress: ProgressRecord = ProgressRecord()
    steps: StepFlags = StepFlags()
    personal_info: Dict[str, Any] = Field(default_factory=dict)
    consent_fields: Dict[str, str] = Field(default_factory=dict)
    document_ids: Tuple[str, ...] = ()
    verification_ids: Tuple[str, ...] = ()
    risk: Optional[RiskAssessment] = None
    compliance: ComplianceInfo
    review: ReviewInfo = ReviewInfo()
    audit: Tuple[AuditEntry, ...] = ()
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ConsentStatus(Record):
    completed: bool = False
    fields: Dict[str, str] = Field(default_factory=dict)
