from pydantic_settings import BaseSettings
from typing import Dict, Any, List

class Settings(BaseSettings):
    # OpenAI Configuration
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4.1-mini"
    # Model used for expression / spoof-indicator analysis of face captures
    FACE_MODEL: str = "gpt-4.1-mini"

    # OpenCV face models (YuNet detector, SFace recognizer, LBF facemark)
    FACE_MODELS_DIR: str = "models"
    YUNET_MODEL: str = "face_detection_yunet_2023mar.onnx"
    SFACE_MODEL: str = "face_recognition_sface_2021dec.onnx"
    LBF_MODEL: str = "lbfmodel.yaml"

    # Image Quality Thresholds
    MIN_IMAGE_WIDTH: int = 800
    MIN_IMAGE_HEIGHT: int = 600
    HIGH_RESOLUTION_PIXELS: int = 2_000_000
    MEDIUM_RESOLUTION_PIXELS: int = 500_000
    BLUR_THRESHOLD: float = 100
    MIN_BRIGHTNESS: int = 50
    MAX_BRIGHTNESS: int = 200
    MIN_CONTRAST: int = 30

    # Liveness & anti-spoofing
    LIVENESS_MIN_CONFIDENCE: float = 0.5
    LIVENESS_MIN_SCORE: float = 0.75
    EYE_ASPECT_RATIO_THRESHOLD: float = 0.2
    MAX_YAW: float = 20
    MAX_ROLL: float = 15
    NATURAL_EXPRESSIONS: List[str] = ["neutral", "happy"]
    LIVENESS_QUALITY_FLOOR: float = 0.6
    LIVENESS_REQUIRED_CHECKS: List[str] = ["eyes_open"]
    WEIGHT_EYES: float = 0.15
    WEIGHT_POSE: float = 0.15
    WEIGHT_EXPRESSION: float = 0.10
    WEIGHT_ANTI_SPOOFING: float = 0.35
    WEIGHT_IMAGE_QUALITY: float = 0.25

    # Face match
    FACE_MATCH_THRESHOLD: float = 0.6
    DESCRIPTOR_WEIGHT: float = 0.7
    GEOMETRIC_WEIGHT: float = 0.3

    # Document validation (points out of 100)
    POINTS_REQUIRED_FIELDS: int = 25
    POINTS_FORMAT: int = 20
    POINTS_IMAGE_QUALITY: int = 30
    POINTS_SECURITY_FEATURES: int = 15
    POINTS_ANTI_TAMPERING: int = 10
    DOCUMENT_VALID_SCORE: float = 70
    DOCUMENT_REVIEW_SCORE: float = 90
    DOCUMENT_QUALITY_FULL_CREDIT: float = 0.8
    TAMPERING_CONFIDENCE_THRESHOLD: float = 0.7
    TAMPERED_SCORE_CAP: float = 60
    MIN_OCR_CONFIDENCE: float = 0.8

    # Decision Rules
    RISK_DOCUMENT_INCONSISTENCY: int = 25
    RISK_CONSENT_NOT_COMPLETED: int = 15
    RISK_LOW_FACE_MATCH: int = 20
    FACE_MATCH_MIN_CONFIDENCE: float = 0.8
    AUTO_APPROVE_MAX_RISK: int = 20
    MANUAL_REVIEW_MIN_RISK: int = 40
    REJECTION_CANDIDATE_RISK: int = 70

    # Orchestration
    EXTRACTION_TIMEOUT_SECONDS: float = 30
    EXTRACTION_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 1.0
    RETRY_BACKOFF_MAX_SECONDS: float = 10.0
    EXTRACTION_WORKERS: int = 4
    APPLICATION_RETENTION_DAYS: int = 30
    DEFAULT_REVIEWER: str = "system_reviewer"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()

# Document type configurations
DOCUMENT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "AADHAAR_FRONT": {
        "required_fields": ["name", "date_of_birth", "gender", "aadhaar_number"],
        "optional_fields": ["year_of_birth"],
        "id_fields": ["aadhaar_number"],
    },
    "AADHAAR_BACK": {
        "required_fields": ["address", "pincode"],
        "optional_fields": ["state", "aadhaar_number"],
        "id_fields": ["aadhaar_number", "pincode"],
    },
    "PAN_CARD": {
        "required_fields": ["name", "father_name", "date_of_birth", "pan_number"],
        "optional_fields": [],
        "id_fields": ["pan_number"],
    },
    "DRIVING_LICENSE_FRONT": {
        "required_fields": ["name", "license_number", "date_of_birth"],
        "optional_fields": ["issue_date", "valid_upto", "issuing_authority"],
        "id_fields": ["license_number"],
    },
    "DRIVING_LICENSE_BACK": {
        "required_fields": ["address"],
        "optional_fields": ["license_number", "valid_upto"],
        "id_fields": ["license_number"],
    },
    "VOTER_ID_FRONT": {
        "required_fields": ["name", "voter_id_number"],
        "optional_fields": ["father_name", "date_of_birth", "gender"],
        "id_fields": ["voter_id_number"],
    },
    "VOTER_ID_BACK": {
        "required_fields": ["address"],
        "optional_fields": ["voter_id_number", "date_of_birth"],
        "id_fields": ["voter_id_number"],
    },
    "PASSPORT": {
        "required_fields": ["name", "passport_number", "date_of_birth", "expiry_date"],
        "optional_fields": ["place_of_birth", "issue_date"],
        "id_fields": ["passport_number"],
    },
    "UTILITY_BILL": {
        "required_fields": ["name", "address"],
        "optional_fields": ["bill_date"],
        "id_fields": [],
    },
    "BANK_STATEMENT": {
        "required_fields": ["name", "address"],
        "optional_fields": ["statement_date"],
        "id_fields": [],
    },
    "OTHER": {
        "required_fields": [],
        "optional_fields": ["name", "date_of_birth", "address"],
        "id_fields": [],
    },
}

# Aadhaar number format (spaced or compact)
AADHAAR_REGEX = r"^\d{4}\s?\d{4}\s?\d{4}$"

# PAN format
PAN_REGEX = r"^[A-Z]{5}\d{4}[A-Z]$"

# DL number format
DL_REGEX = r"^[A-Z]{2}\d{2}\s?\d{11}$"

# Voter ID (EPIC) format
VOTER_ID_REGEX = r"^[A-Z]{3}\d{7}$"

# Passport number format
PASSPORT_REGEX = r"^[A-Z]\d{7}$"

# Pincode format
PINCODE_REGEX = r"^\d{6}$"

ID_FIELD_PATTERNS: Dict[str, str] = {
    "aadhaar_number": AADHAAR_REGEX,
    "pan_number": PAN_REGEX,
    "license_number": DL_REGEX,
    "voter_id_number": VOTER_ID_REGEX,
    "passport_number": PASSPORT_REGEX,
    "pincode": PINCODE_REGEX,
}

# Security markers looked for on identity documents
SECURITY_MARKERS = ["watermark", "hologram", "microprint"]
