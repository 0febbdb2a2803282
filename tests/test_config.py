import pytest

from config import Settings
from kyc_engine.context import build_context, validate_settings
from kyc_engine.errors import ConfigurationError, ExtractionError
from kyc_engine.notifications import LoggingNotifier
from kyc_engine.repository import InMemoryRepository
from kyc_engine.retry import RetryPolicy


def test_default_settings_are_valid():
    validate_settings(Settings())


@pytest.mark.parametrize("overrides", [
    {"WEIGHT_ANTI_SPOOFING": 0.5},
    {"DESCRIPTOR_WEIGHT": 0.8},
    {"LIVENESS_MIN_SCORE": 1.5},
    {"POINTS_FORMAT": 25},
    {"TAMPERED_SCORE_CAP": 75},
    {"AUTO_APPROVE_MAX_RISK": 50},
    {"LIVENESS_REQUIRED_CHECKS": ["blink"]},
    {"EXTRACTION_MAX_ATTEMPTS": 0},
])
def test_inconsistent_settings_fail_fast(overrides):
    with pytest.raises(ConfigurationError):
        validate_settings(Settings(**overrides))


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("FACE_MATCH_THRESHOLD", "0.7")

    assert Settings().FACE_MATCH_THRESHOLD == 0.7


def test_build_context_refuses_bad_configuration():
    with pytest.raises(ConfigurationError):
        build_context(Settings(WEIGHT_EYES=0.9))


def test_build_context_wires_defaults(settings):
    context = build_context(settings)
    try:
        assert isinstance(context.repository, InMemoryRepository)
        assert isinstance(context.notifier, LoggingNotifier)
        assert context.retry_policy.max_attempts == settings.EXTRACTION_MAX_ATTEMPTS
        assert context.consent_client.fetch_status("KYC_1").completed is False
    finally:
        context.shutdown()


def test_retry_policy_retries_extraction_errors_only():
    policy = RetryPolicy(max_attempts=3, backoff=0, backoff_max=0)
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ExtractionError("transient")
        return "ok"

    assert policy.call(flaky) == "ok"
    assert len(calls) == 3

    def broken():
        calls.append(1)
        raise KeyError("bug")

    calls.clear()
    with pytest.raises(KeyError):
        policy.call(broken)
    assert len(calls) == 1


def test_retry_policy_reraises_last_extraction_error():
    policy = RetryPolicy(max_attempts=2, backoff=0, backoff_max=0)

    def always_fails():
        raise ExtractionError("still down")

    with pytest.raises(ExtractionError, match="still down"):
        policy.call(always_fails)
