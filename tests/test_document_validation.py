import itertools

import pytest

from kyc_engine.document_validation import DocumentValidator
from kyc_engine.models import (
    DocumentStatus, DocumentType, ImageQuality, ResolutionClass, TamperingSignal,
)

from tests.factories import PAN_FIELDS, make_document, ocr_fields


@pytest.fixture
def validator(settings):
    return DocumentValidator(settings)


def test_complete_document_scores_full_marks(validator):
    document = validator.validate(make_document())

    assert document.validation.score == 100
    assert document.validation.is_valid is True
    assert document.validation.needs_review is False
    assert document.status == DocumentStatus.VALIDATED
    assert document.validation.reasons == ()


def test_missing_required_fields_scenario(validator):
    fields = {k: v for k, v in PAN_FIELDS.items() if k not in ("name", "father_name")}
    document = make_document(fields=fields, security_features={})

    validated = validator.validate(document)

    assert validated.validation.score == 60
    assert validated.validation.is_valid is False
    assert validated.status == DocumentStatus.REJECTED
    assert any("required fields missing" in r for r in validated.validation.reasons)
    assert "REQUIRED_FIELDS_MISSING" in validated.issues
    required = validated.validation.checks[0]
    assert required.score == 0
    assert required.detail == "name, father_name"


def test_score_between_validity_and_review_needs_review(validator):
    document = validator.validate(make_document(security_features={}))

    assert document.validation.score == 85
    assert document.validation.is_valid is True
    assert document.validation.needs_review is True
    assert document.status == DocumentStatus.VALIDATED


def test_invalid_id_format_loses_format_points(validator):
    fields = dict(PAN_FIELDS, pan_number="ABC123")

    document = validator.validate(make_document(fields=fields))

    assert document.validation.checks[1].score == 0
    assert "INVALID_PAN_NUMBER_FORMAT" in document.issues
    assert document.validation.score == 80


def test_confident_tampering_forces_rejection(validator):
    document = make_document(tampering=TamperingSignal(detected=True, confidence=0.9))

    validated = validator.validate(document)

    assert validated.validation.score == 60
    assert validated.status == DocumentStatus.REJECTED
    assert "TAMPERING_DETECTED" in validated.issues
    assert any(r.startswith("anti-tampering failed") for r in validated.validation.reasons)


def test_weak_tampering_signal_is_ignored(validator):
    document = make_document(tampering=TamperingSignal(detected=True, confidence=0.4))

    assert validator.validate(document).validation.score == 100


def test_poor_quality_scales_quality_points(validator):
    quality = ImageQuality(brightness=0.4, contrast=0.4, sharpness=0.4, resolution=ResolutionClass.LOW)

    check = validator.validate(make_document(quality=quality)).validation.checks[2]

    # legibility 0.35*0.4 + 0.25*0.4*2 + 0.15*0.2 = 0.37
    assert check.score == pytest.approx(30 * 0.37 / 0.8, abs=0.01)
    assert check.passed is False


def test_documents_without_id_fields_get_format_credit(validator):
    document = make_document(document_type=DocumentType.UTILITY_BILL,
                             fields=dict(name="Ravi Kumar", address="12 MG Road, Pune"))

    assert validator.validate(document).validation.checks[1].score == 20


def test_validation_is_idempotent(validator):
    document = make_document(security_features={"watermark": True})

    first = validator.validate(document)
    second = validator.validate(document)

    assert first.validation.score == second.validation.score
    assert first.validation.checks == second.validation.checks


def test_score_is_monotonic_in_passing_checks(validator):
    """Making any failing check pass never lowers the total"""
    bad = {
        "fields": {k: v for k, v in PAN_FIELDS.items() if k != "name"},
        "format": dict(PAN_FIELDS, pan_number="BAD"),
        "quality": ImageQuality(brightness=0.1, contrast=0.1, sharpness=0.1, resolution=ResolutionClass.LOW),
        "security": {},
        "tampering": TamperingSignal(detected=True, confidence=0.95),
    }

    def score(failing):
        fields = dict(PAN_FIELDS)
        if "format" in failing:
            fields = dict(bad["format"])
        if "fields" in failing:
            fields.pop("name")
        document = make_document(
            fields=fields,
            quality=bad["quality"] if "quality" in failing else None,
            security_features=bad["security"] if "security" in failing else None,
            tampering=bad["tampering"] if "tampering" in failing else None,
        )
        return validator.validate(document).validation.score

    names = list(bad)
    for size in range(len(names) + 1):
        for failing in itertools.combinations(names, size):
            for fixed in failing:
                better = tuple(n for n in failing if n != fixed)
                assert score(better) >= score(failing), (failing, fixed)


def test_blank_field_values_count_as_missing(validator):
    document = make_document()
    document = document.model_copy(update={"fields": dict(document.fields, **ocr_fields(name="   "))})

    validated = validator.validate(document)

    assert validated.validation.checks[0].detail == "name"
