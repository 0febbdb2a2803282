import pytest

from kyc_engine.extractor import VisionFaceAnalyzer, VisionTextExtractor
from kyc_engine.models import DocumentType
from kyc_engine.utils import safe_json_parse, to_bool, to_confidence


@pytest.mark.parametrize("raw, expected", [
    (0.9, 0.9),
    (95, 0.95),
    ("87%", 0.87),
    ("not sure", 0.0),
    (None, 0.0),
    (True, 0.0),
    (-3, 0.0),
])
def test_to_confidence(raw, expected):
    assert to_confidence(raw) == pytest.approx(expected)


def test_to_bool():
    assert to_bool("Yes") is True
    assert to_bool("detected") is True
    assert to_bool("no") is False
    assert to_bool(None) is False
    assert to_bool(1) is True


def test_safe_json_parse_strips_fences():
    text = 'Here you go:\n```json\n{"fields": {"name": {"value": "Ravi"}}}\n```'

    assert safe_json_parse(text) == {"fields": {"name": {"value": "Ravi"}}}


def test_safe_json_parse_without_json():
    with pytest.raises(ValueError):
        safe_json_parse("I cannot read this document")


def test_parse_result(settings):
    extractor = VisionTextExtractor(settings)

    result = extractor.parse_result({
        "fields": {
            "pan_number": {"value": "ABCDE1234F\n(clearly printed)", "confidence": "95%"},
            "name": {"value": "  Ravi   Kumar ", "confidence": 0.9},
            "father_name": {"value": None, "confidence": 0},
            "date_of_birth": "12-05-1990",
        },
        "raw_text": "INCOME TAX DEPARTMENT",
        "security_features": {"hologram": "yes"},
        "tampering": {"detected": "false", "confidence": 10},
    })

    assert result.fields["pan_number"].value == "ABCDE1234F"
    assert result.fields["pan_number"].confidence == pytest.approx(0.95)
    assert result.fields["name"].value == "Ravi Kumar"
    assert result.fields["father_name"].value is None
    assert result.fields["date_of_birth"].confidence == 0.0
    assert result.security_features == {"watermark": False, "hologram": True, "microprint": False}
    assert result.tampering.detected is False
    assert result.tampering.confidence == pytest.approx(0.1)


def test_parse_result_tolerates_garbage(settings):
    result = VisionTextExtractor(settings).parse_result({"fields": "nothing", "tampering": []})

    assert result.fields == {}
    assert result.raw_text == ""
    assert result.tampering.detected is False


def test_extraction_prompt_lists_required_fields(settings):
    prompt = VisionTextExtractor(settings).get_extraction_prompt(DocumentType.PAN_CARD)

    for field in ("name", "father_name", "date_of_birth", "pan_number"):
        assert field in prompt


def test_parse_expressions_normalises():
    expressions = VisionFaceAnalyzer.parse_expressions({"Neutral": 0.6, "happy": "0.2"})

    assert expressions == pytest.approx({"neutral": 0.75, "happy": 0.25})
    assert VisionFaceAnalyzer.parse_expressions(None) == {}
    assert VisionFaceAnalyzer.parse_expressions({"neutral": 0}) == {}


def test_parse_indicators():
    indicators = VisionFaceAnalyzer.parse_indicators({
        "screen_replay": {"detected": True, "confidence": 0.8},
        "deepfake": "maybe",
    })

    assert indicators.screen_replay.detected is True
    assert indicators.screen_replay.confidence == pytest.approx(0.8)
    assert indicators.mask_photo.detected is False
    assert indicators.deepfake.detected is False
