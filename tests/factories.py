"""Builders for capture, document and verification records used across the tests."""
import numpy as np

from kyc_engine.models import (
    Capture, Document, DocumentType, FaceLandmarks, HeadPose, ImageQuality, OcrField,
    OcrResult, Point, ResolutionClass, SpoofIndicator, SpoofIndicators, TamperingSignal,
    VerificationResult, VerificationStatus, VerificationType,
)

BLANK_IMAGE = np.zeros((10, 10, 3), dtype=np.uint8)


def make_landmarks(eye_height=6.0, eye_spread=1.0, nose_offset=0.0):
    """
    Synthetic 68-point face, 200 px wide.

    Eyes sit at x=70 / x=130 (scaled around the face centre by ``eye_spread``)
    with horizontal span 30 * eye_spread, so EAR = eye_height / (15 * eye_spread).
    The nose tip is at the eye midpoint plus ``nose_offset``.
    """
    points = [Point(x=100, y=150) for _ in range(68)]
    for i in range(17):
        points[i] = Point(x=i * 200 / 16, y=120)
    for i, y in zip(range(27, 31), (70, 80, 90, 100)):
        points[i] = Point(x=100, y=y)
    points[30] = Point(x=100 + nose_offset, y=110)
    for i in range(31, 36):
        points[i] = Point(x=90 + (i - 31) * 5, y=115)

    def eye(center_x):
        cx = 100 + (center_x - 100) * eye_spread
        half = 15 * eye_spread
        quarter = 8 * eye_spread
        return [
            Point(x=cx - half, y=80),
            Point(x=cx - quarter, y=80 - eye_height),
            Point(x=cx + quarter, y=80 - eye_height),
            Point(x=cx + half, y=80),
            Point(x=cx + quarter, y=80 + eye_height),
            Point(x=cx - quarter, y=80 + eye_height),
        ]

    points[36:42] = eye(70)
    points[42:48] = eye(130)
    return FaceLandmarks(points=tuple(points))


def good_quality(resolution=ResolutionClass.HIGH):
    return ImageQuality(brightness=1.0, contrast=1.0, sharpness=1.0, resolution=resolution,
                        width=1920, height=1080)


def make_capture(face_count=1, detector_confidence=0.95, eye_height=6.0, eye_spread=1.0,
                 expressions=None, pose=None, descriptor=(1.0, 0.0), quality=None,
                 spoof_indicators=None):
    return Capture(
        face_count=face_count,
        detector_confidence=detector_confidence,
        landmarks=make_landmarks(eye_height=eye_height, eye_spread=eye_spread) if face_count else None,
        expressions={"neutral": 0.9, "happy": 0.05, "sad": 0.05} if expressions is None else expressions,
        pose=HeadPose(yaw=0.0, roll=0.0) if pose is None else pose,
        descriptor=descriptor if face_count else (),
        quality=good_quality() if quality is None else quality,
        spoof_indicators=spoof_indicators or SpoofIndicators(),
    )


def spoofed(name="screen_replay", confidence=0.9):
    return SpoofIndicators(**{name: SpoofIndicator(detected=True, confidence=confidence)})


def ocr_fields(**values):
    return {name: OcrField(value=value, confidence=0.95) for name, value in values.items()}


AADHAAR_FRONT_FIELDS = dict(name="Ravi Kumar", date_of_birth="12-05-1990", gender="Male",
                            aadhaar_number="1234 5678 9012")
PAN_FIELDS = dict(name="Ravi Kumar", father_name="Suresh Kumar", date_of_birth="12-05-1990",
                  pan_number="ABCDE1234F")

ALL_MARKERS = {"watermark": True, "hologram": True, "microprint": True}


def make_ocr(fields, security_features=None, tampering=None):
    return OcrResult(
        fields=ocr_fields(**fields),
        raw_text=" ".join(fields.values()),
        security_features=ALL_MARKERS if security_features is None else security_features,
        tampering=tampering or TamperingSignal(),
    )


def make_document(document_type=DocumentType.PAN_CARD, fields=None, application_id="KYC_1",
                  quality=None, security_features=None, tampering=None):
    fields = PAN_FIELDS if fields is None else fields
    return Document(
        application_id=application_id,
        document_type=document_type,
        fields=ocr_fields(**fields),
        ocr_confidence=0.95,
        quality=good_quality() if quality is None else quality,
        security_features=ALL_MARKERS if security_features is None else security_features,
        tampering=tampering or TamperingSignal(),
    )


def face_match_result(confidence, score=0.8, application_id="KYC_1", status=VerificationStatus.SUCCESS):
    return VerificationResult(
        application_id=application_id,
        type=VerificationType.FACE_MATCH,
        status=status,
        score=score,
        decision=status == VerificationStatus.SUCCESS,
        confidence=confidence,
    )
