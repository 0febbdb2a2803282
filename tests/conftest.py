from concurrent.futures import ThreadPoolExecutor

import pytest

from config import Settings
from kyc_engine.context import build_context
from kyc_engine.models import DocumentType
from kyc_engine.retry import RetryPolicy
from kyc_engine.service import KycService

from tests.factories import AADHAAR_FRONT_FIELDS, PAN_FIELDS, make_capture, make_ocr
from tests.fakes import FakeFaceExtractor, FakeQualityGate, FakeTextExtractor, RecordingNotifier


@pytest.fixture
def settings():
    return Settings(OPENAI_API_KEY="test-key")


@pytest.fixture
def face_extractor():
    return FakeFaceExtractor({
        "live": make_capture(),
        "reference": make_capture(descriptor=(1.0, 0.1)),
    })


@pytest.fixture
def text_extractor():
    return FakeTextExtractor({
        DocumentType.AADHAAR_FRONT: make_ocr(AADHAAR_FRONT_FIELDS),
        DocumentType.PAN_CARD: make_ocr(PAN_FIELDS),
    })


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def context(settings, face_extractor, text_extractor, notifier):
    executor = ThreadPoolExecutor(max_workers=4)
    ctx = build_context(
        settings,
        face_extractor=face_extractor,
        text_extractor=text_extractor,
        quality_gate=FakeQualityGate(),
        notifier=notifier,
        retry_policy=RetryPolicy(max_attempts=2, backoff=0, backoff_max=0),
        executor=executor,
    )
    yield ctx
    executor.shutdown(wait=True)


@pytest.fixture
def service(context):
    svc = KycService(context)
    yield svc
    svc.close()
