import pytest

from kyc_engine.checks import (
    AADHAAR_FRONT_BACK_MISMATCH, DOB_MISMATCH, NAME_MISMATCH, DocumentChecks,
)
from kyc_engine.models import DocumentType

from tests.factories import AADHAAR_FRONT_FIELDS, PAN_FIELDS, make_document


@pytest.fixture
def checker():
    return DocumentChecks()


@pytest.mark.parametrize("document_type,field,value,expected", [
    (DocumentType.AADHAAR_FRONT, "aadhaar_number", "1234 5678 9012", True),
    (DocumentType.AADHAAR_FRONT, "aadhaar_number", "123456789012", True),
    (DocumentType.AADHAAR_FRONT, "aadhaar_number", "XXXX XXXX 9012", True),
    (DocumentType.AADHAAR_FRONT, "aadhaar_number", "1234 5678", False),
    (DocumentType.PAN_CARD, "pan_number", "abcde1234f", True),
    (DocumentType.PAN_CARD, "pan_number", "ABCD1234F", False),
    (DocumentType.PASSPORT, "passport_number", "K1234567", True),
    (DocumentType.VOTER_ID_FRONT, "voter_id_number", "ABC1234567", True),
    (DocumentType.DRIVING_LICENSE_FRONT, "license_number", "MH12 20110012345", True),
])
def test_identity_number_formats(checker, document_type, field, value, expected):
    document = make_document(document_type=document_type, fields={field: value})

    assert checker.format_results(document) == {field: expected}


def test_absent_id_fields_are_not_checked(checker):
    document = make_document(document_type=DocumentType.AADHAAR_BACK, fields={"address": "12 MG Road"})

    assert checker.format_results(document) == {}


def test_consistent_documents_have_no_issues(checker):
    documents = [
        make_document(DocumentType.AADHAAR_FRONT, AADHAAR_FRONT_FIELDS),
        make_document(DocumentType.PAN_CARD, dict(PAN_FIELDS, name="RAVI  KUMAR", date_of_birth="1990-05-12")),
    ]

    assert checker.cross_document_consistency(documents) == []


def test_name_and_dob_mismatch(checker):
    documents = [
        make_document(DocumentType.AADHAAR_FRONT, AADHAAR_FRONT_FIELDS),
        make_document(DocumentType.PAN_CARD, dict(PAN_FIELDS, name="Ravi Sharma", date_of_birth="13-05-1990")),
    ]

    assert checker.cross_document_consistency(documents) == [NAME_MISMATCH, DOB_MISMATCH]


def test_registry_record_takes_part_in_consistency(checker):
    documents = [make_document(DocumentType.PAN_CARD, PAN_FIELDS)]

    issues = checker.cross_document_consistency(documents, {"name": "Someone Else"})

    assert issues == [NAME_MISMATCH]


def test_aadhaar_front_back_mismatch(checker):
    documents = [
        make_document(DocumentType.AADHAAR_FRONT, AADHAAR_FRONT_FIELDS),
        make_document(DocumentType.AADHAAR_BACK, {"address": "12 MG Road", "pincode": "411001",
                                                  "aadhaar_number": "9999 5678 9012"}),
    ]

    assert checker.cross_document_consistency(documents) == [AADHAAR_FRONT_BACK_MISMATCH]


@pytest.mark.parametrize("raw", ["12-05-1990", "12/05/1990", "1990-05-12", "12.05.1990"])
def test_parse_date_formats(checker, raw):
    assert checker.parse_date(raw).isoformat() == "1990-05-12"
