import pytest

from kyc_engine.checks import NAME_MISMATCH
from kyc_engine.decision import RiskDecisionEngine, RiskFactor, RiskInputs
from kyc_engine.models import Disposition, RiskLevel, VerificationStatus

from tests.factories import face_match_result


@pytest.fixture
def engine(settings):
    return RiskDecisionEngine(settings)


def inputs(**overrides):
    values = dict(
        application_id="KYC_1",
        verifications=(face_match_result(0.85),),
        documents_submitted=True,
        face_verification_completed=True,
        consent_completed=True,
        consistency_issues=(),
    )
    values.update(overrides)
    return RiskInputs(**values)


def test_missing_consent_alone_auto_approves(engine):
    assessment = engine.assess(inputs(consent_completed=False))

    assert assessment.score == 15
    assert assessment.factors == ("CONSENT_NOT_COMPLETED",)
    assert assessment.level == RiskLevel.LOW
    assert assessment.disposition == Disposition.AUTO_APPROVE
    assert assessment.assigned_reviewer is None


def test_clean_application_scores_zero(engine):
    assessment = engine.assess(inputs())

    assert assessment.score == 0
    assert assessment.disposition == Disposition.AUTO_APPROVE


def test_incomplete_steps_never_auto_approve(engine):
    assessment = engine.assess(inputs(face_verification_completed=False))

    assert assessment.disposition == Disposition.MANUAL_REVIEW
    assert assessment.assigned_reviewer == "system_reviewer"


def test_identity_mismatch_forces_manual_review(engine):
    assessment = engine.assess(inputs(consistency_issues=(NAME_MISMATCH,)))

    assert assessment.score == 25
    assert assessment.identity_mismatch is True
    assert assessment.disposition == Disposition.MANUAL_REVIEW


def test_low_face_match_confidence(engine):
    assessment = engine.assess(inputs(verifications=(face_match_result(0.6),)))

    assert assessment.score == 20
    assert assessment.factors == ("LOW_FACE_MATCH_CONFIDENCE",)
    assert assessment.disposition == Disposition.AUTO_APPROVE


def test_missing_face_match_counts_as_low_confidence(engine):
    assessment = engine.assess(inputs(verifications=()))

    assert "LOW_FACE_MATCH_CONFIDENCE" in assessment.factors


def test_best_face_match_ignores_errors(engine):
    results = (
        face_match_result(0.9, score=0.95, status=VerificationStatus.ERROR),
        face_match_result(0.85, score=0.7),
        face_match_result(0.5, score=0.4, status=VerificationStatus.FAILED),
    )

    assert inputs(verifications=results).best_face_match.confidence == 0.85
    assert engine.assess(inputs(verifications=results)).score == 0


def test_all_factors_make_rejection_candidate_but_never_reject(engine):
    assessment = engine.assess(inputs(consent_completed=False, verifications=(),
                                      consistency_issues=(NAME_MISMATCH,)))

    assert assessment.score == 60
    assert assessment.level == RiskLevel.HIGH
    assert assessment.disposition == Disposition.MANUAL_REVIEW
    assert assessment.rejection_candidate is False


def test_registered_factor_pushes_over_rejection_line(settings):
    watchlist = RiskFactor("WATCHLIST_HIT", 30, lambda i: True)
    engine = RiskDecisionEngine(settings, extra_factors=[watchlist])

    assessment = engine.assess(inputs(consent_completed=False, verifications=(),
                                      consistency_issues=(NAME_MISMATCH,)))

    assert assessment.score == 90
    assert assessment.level == RiskLevel.CRITICAL
    assert assessment.rejection_candidate is True
    assert assessment.reasons == ("High risk score", "Manual review required")
    assert assessment.factors[-1] == "WATCHLIST_HIT"
    assert assessment.disposition == Disposition.MANUAL_REVIEW


def test_score_is_clamped(settings):
    engine = RiskDecisionEngine(settings, extra_factors=[RiskFactor("SANCTIONS", 150, lambda i: True)])

    assert engine.assess(inputs()).score == 100


def test_duplicate_factor_names_rejected(engine):
    with pytest.raises(ValueError):
        engine.register(RiskFactor("CONSENT_NOT_COMPLETED", 5, lambda i: True))


def test_reviewer_assigner_is_consulted(settings):
    class Assigner:
        def assign(self, application_id, assessment):
            return f"reviewer-for-{application_id}"

    engine = RiskDecisionEngine(settings, reviewer_assigner=Assigner())

    assessment = engine.assess(inputs(consistency_issues=(NAME_MISMATCH,)))

    assert assessment.assigned_reviewer == "reviewer-for-KYC_1"
