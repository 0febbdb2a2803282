"""
Feature extraction adapters.

The scorers never look at pixels: they consume Capture and OcrResult records.
This module turns images into those records. The face backend uses OpenCV
(YuNet detection, SFace descriptors, LBF 68-point landmarks) and asks a vision
model for expression probabilities and spoofing indicators; the text backend
asks a vision model for structured document fields. Every failure to process an
input is raised as ExtractionError.
"""
import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Protocol, Tuple

import cv2
import numpy as np
from openai import OpenAI, OpenAIError
from config import settings as default_settings, DOCUMENT_CONFIGS, SECURITY_MARKERS

from .errors import ExtractionError
from .landmarks import estimate_head_pose
from .models import (
    Capture, DocumentType, FaceLandmarks, OcrField, OcrResult, Point,
    SpoofIndicator, SpoofIndicators, TamperingSignal,
)
from .quality import ImageQualityGate
from .utils import ImageSource, encode_image, load_image, safe_json_parse, to_bool, to_confidence

logger = logging.getLogger(__name__)


class FaceExtractor(Protocol):
    def extract_face(self, image: ImageSource) -> Capture:
        ...


class TextExtractor(Protocol):
    def extract_text(self, image: ImageSource, document_type: DocumentType) -> OcrResult:
        ...


class FaceAnalyzer(Protocol):
    def analyze(self, img: np.ndarray) -> Tuple[Dict[str, float], SpoofIndicators]:
        ...


def _chat_json(client: OpenAI, model: str, prompt: str, image_url: str) -> Dict[str, Any]:
    """Send a single-image strict-JSON prompt and parse the reply"""
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}}
                    ]
                }
            ],
            max_tokens=600,
            temperature=0
        )
    except OpenAIError as e:
        raise ExtractionError(f"Vision model request failed: {e}") from e

    text = response.choices[0].message.content
    try:
        return safe_json_parse(text)
    except (ValueError, json.JSONDecodeError) as e:
        raise ExtractionError(f"Unparseable vision model output: {e}") from e


class VisionFaceAnalyzer:
    """
    Estimates expression probabilities and presentation-attack indicators
    for a single face image using an OpenAI vision model.
    """

    PROMPT = """
You are a face capture analysis assistant for identity verification.

You will be given one image that should contain a single live person's face.

Task:
1. Estimate the probability of each facial expression:
   neutral, happy, sad, angry, fearful, disgusted, surprised.
2. Look for presentation-attack indicators:
   - screen_replay: the face is shown on a phone / monitor screen (moire, bezels, glare)
   - mask_photo: a printed photo, cut-out or mask held in front of the camera
   - deepfake: blending seams, warped edges or other synthesis artifacts

Return STRICT JSON ONLY.

Format:
{
  "expressions": {"neutral": 0.0-1.0, "happy": 0.0-1.0, "sad": 0.0-1.0, "angry": 0.0-1.0,
                  "fearful": 0.0-1.0, "disgusted": 0.0-1.0, "surprised": 0.0-1.0},
  "screen_replay": {"detected": true/false, "confidence": 0.0-1.0},
  "mask_photo": {"detected": true/false, "confidence": 0.0-1.0},
  "deepfake": {"detected": true/false, "confidence": 0.0-1.0}
}
"""

    def __init__(self, settings=None, client: Optional[OpenAI] = None):
        self.settings = settings or default_settings
        self.model = self.settings.FACE_MODEL
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.settings.OPENAI_API_KEY)
        return self._client

    def analyze(self, img: np.ndarray) -> Tuple[Dict[str, float], SpoofIndicators]:
        parsed = _chat_json(self.client, self.model, self.PROMPT, encode_image(img))
        return self.parse_expressions(parsed.get("expressions")), self.parse_indicators(parsed)

    @staticmethod
    def parse_expressions(raw) -> Dict[str, float]:
        """Normalise the reported distribution so it sums to 1"""
        if not isinstance(raw, dict):
            return {}
        values = {str(k).lower(): to_confidence(v) for k, v in raw.items()}
        total = sum(values.values())
        if total <= 0:
            return {}
        return {k: v / total for k, v in values.items()}

    @staticmethod
    def parse_indicators(parsed: Dict[str, Any]) -> SpoofIndicators:
        def _indicator(key):
            raw = parsed.get(key)
            if not isinstance(raw, dict):
                return SpoofIndicator()
            return SpoofIndicator(
                detected=to_bool(raw.get("detected")),
                confidence=to_confidence(raw.get("confidence")),
            )

        return SpoofIndicators(
            screen_replay=_indicator("screen_replay"),
            mask_photo=_indicator("mask_photo"),
            deepfake=_indicator("deepfake"),
        )


class OpenCVFaceExtractor:
    """
    Detects faces and measures the primary one.
    Models are loaded on first use from FACE_MODELS_DIR.
    """

    def __init__(self, settings=None, analyzer: Optional[FaceAnalyzer] = None,
                 quality_gate: Optional[ImageQualityGate] = None):
        self.settings = settings or default_settings
        self.analyzer = analyzer
        self.quality_gate = quality_gate or ImageQualityGate(self.settings)
        self.score_threshold = self.settings.LIVENESS_MIN_CONFIDENCE
        self._lock = threading.Lock()
        self._recognizer = None
        self._facemark = None

    def _model_path(self, name: str) -> str:
        path = os.path.join(self.settings.FACE_MODELS_DIR, name)
        if not os.path.exists(path):
            raise ExtractionError(f"Face model not found: {path}")
        return path

    def _load_models(self):
        if self._recognizer is None:
            self._recognizer = cv2.FaceRecognizerSF.create(self._model_path(self.settings.SFACE_MODEL), "")
        if self._facemark is None:
            facemark = cv2.face.createFacemarkLBF()
            facemark.loadModel(self._model_path(self.settings.LBF_MODEL))
            self._facemark = facemark

    def detect(self, img: np.ndarray) -> np.ndarray:
        """Rows: [x, y, w, h, l0x, l0y, ..., l4x, l4y, score]"""
        h, w = img.shape[:2]
        detector = cv2.FaceDetectorYN.create(
            self._model_path(self.settings.YUNET_MODEL), "", (w, h),
            score_threshold=float(self.score_threshold),
        )
        _, faces = detector.detect(img)
        if faces is None:
            return np.empty((0, 15), dtype=np.float32)
        return faces

    def extract_face(self, image: ImageSource) -> Capture:
        img = load_image(image)
        quality = self.quality_gate.assess(img)

        try:
            faces = self.detect(img)
            if len(faces) == 0:
                return Capture(face_count=0, quality=quality)

            primary = max(faces, key=lambda row: float(row[-1]))
            x, y, bw, bh = (int(v) for v in primary[:4])

            with self._lock:
                self._load_models()
                aligned = self._recognizer.alignCrop(img, primary)
                feature = self._recognizer.feature(aligned).flatten().astype(np.float64)
                gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
                ok, shapes = self._facemark.fit(gray, np.array([[x, y, bw, bh]], dtype=np.int32))
        except cv2.error as e:
            raise ExtractionError(f"Face processing failed: {e}") from e

        if not ok or not len(shapes):
            raise ExtractionError("Landmark fitting failed")

        norm = np.linalg.norm(feature)
        descriptor = tuple(float(v) for v in (feature / norm if norm else feature))
        landmarks = FaceLandmarks(points=tuple(Point(x=float(px), y=float(py)) for px, py in shapes[0][0]))

        expressions, indicators = {}, SpoofIndicators()
        if self.analyzer is not None:
            expressions, indicators = self.analyzer.analyze(img)

        capture = Capture(
            face_count=len(faces),
            detector_confidence=max(0.0, min(1.0, float(primary[-1]))),
            landmarks=landmarks,
            expressions=expressions,
            pose=estimate_head_pose(landmarks),
            descriptor=descriptor,
            quality=quality,
            spoof_indicators=indicators,
        )
        logger.info("Extracted capture %s faces=%d confidence=%.2f",
                    capture.capture_id, capture.face_count, capture.detector_confidence)
        return capture


class VisionTextExtractor:
    """
    Extracts structured fields from document images using OpenAI Vision API
    """

    def __init__(self, settings=None, client: Optional[OpenAI] = None):
        self.settings = settings or default_settings
        self.model = self.settings.OPENAI_MODEL
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.settings.OPENAI_API_KEY)
        return self._client

    def get_extraction_prompt(self, document_type: DocumentType) -> str:
        """Generate extraction prompt based on document type"""
        config = DOCUMENT_CONFIGS[document_type.value]
        fields = config["required_fields"] + config["optional_fields"]
        readable = document_type.value.replace("_", " ").title()
        field_lines = ",\n".join(
            f'    "{name}": {{"value": "string or null", "confidence": 0.0-1.0}}' for name in fields
        )
        marker_lines = ", ".join(f'"{m}": true/false' for m in SECURITY_MARKERS)

        return f"""
You are a {readable} extraction system.

Extract ALL readable information from this document.
Even if text is blurry or partially visible, infer carefully, but DO NOT guess
values that are not visible.

IMPORTANT DATE RULES:
- If a full date is visible, return it in DD-MM-YYYY format
- If ONLY the year is visible, return the year as YYYY
- If no date information is visible, return null

Also report which printed security features are visible and whether the
document shows signs of digital or physical tampering (edited text, pasted
photo, inconsistent fonts).

Return STRICT JSON only.

Expected format:
{{
  "fields": {{
{field_lines}
  }},
  "raw_text": "all text read from the document",
  "security_features": {{{marker_lines}}},
  "tampering": {{"detected": true/false, "confidence": 0.0-1.0}}
}}

Rules:
- Confidence values between 0 and 1
- If field not visible, return null value with confidence 0
"""

    def parse_result(self, parsed: Dict[str, Any]) -> OcrResult:
        fields = {}
        raw_fields = parsed.get("fields") if isinstance(parsed.get("fields"), dict) else {}
        for name, raw in raw_fields.items():
            if isinstance(raw, dict):
                value, confidence = raw.get("value"), raw.get("confidence")
            else:
                value, confidence = raw, None
            if value is not None:
                # Keep only the first line to avoid trailing model commentary
                value = " ".join(str(value).splitlines()[0].split()) if str(value).strip() else None
            fields[name] = OcrField(value=value, confidence=to_confidence(confidence))

        markers = parsed.get("security_features") if isinstance(parsed.get("security_features"), dict) else {}
        tampering = parsed.get("tampering") if isinstance(parsed.get("tampering"), dict) else {}

        return OcrResult(
            fields=fields,
            raw_text=str(parsed.get("raw_text") or ""),
            security_features={m: to_bool(markers.get(m)) for m in SECURITY_MARKERS},
            tampering=TamperingSignal(
                detected=to_bool(tampering.get("detected")),
                confidence=to_confidence(tampering.get("confidence")),
            ),
        )

    def extract_text(self, image: ImageSource, document_type: DocumentType) -> OcrResult:
        """Extract fields from a document image"""
        img = load_image(image)
        prompt = self.get_extraction_prompt(document_type)
        parsed = _chat_json(self.client, self.model, prompt, encode_image(img))
        result = self.parse_result(parsed)
        logger.info("Extracted %d fields from %s (confidence=%.2f)",
                    len(result.fields), document_type.value, result.confidence)
        return result
