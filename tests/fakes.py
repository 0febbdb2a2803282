import threading

from kyc_engine.errors import ExtractionError

from tests.factories import good_quality


class FakeFaceExtractor:
    """Returns a prepared Capture (or raises a prepared error) per image key"""

    def __init__(self, captures=None, default=None):
        self.captures = dict(captures or {})
        self.default = default
        self.calls = []
        self.on_call = None
        self._lock = threading.Lock()

    def extract_face(self, image):
        with self._lock:
            self.calls.append(image)
        if self.on_call is not None:
            self.on_call(image)
        outcome = self.captures.get(image, self.default)
        if outcome is None:
            raise ExtractionError(f"No face prepared for {image!r}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeTextExtractor:
    """Returns a prepared OcrResult per document type"""

    def __init__(self, results=None):
        self.results = dict(results or {})
        self.calls = []
        self.on_call = None
        self._lock = threading.Lock()

    def extract_text(self, image, document_type):
        with self._lock:
            self.calls.append(document_type)
        if self.on_call is not None:
            self.on_call(document_type)
        outcome = self.results.get(document_type)
        if outcome is None:
            raise ExtractionError(f"Unreadable {document_type.value}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeQualityGate:
    def __init__(self, quality=None):
        self.quality = quality or good_quality()

    def assess(self, img):
        return self.quality


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def emit(self, event, application_id, user_id, payload=None):
        self.events.append((event.value, application_id, payload or {}))

    def names(self):
        return [name for name, _, _ in self.events]


