import pytest

from config import Settings

from kyc_pipeline.decision import JOURNAL_EVENT
from kyc_pipeline.interfaces import ProviderError, ProviderTimeout
from kyc_pipeline.schemas import (
    CRITICAL_REASON_CODES, FaceComparisonResult, PassportProfile, Profile, ReasonCode,
)

from tests.conftest import (
    HOLDER_NAME, FailingJournal, FailingProfileStore, FakeFaceAnalyzer, FakeTextDetector, FakeTextExtractor,
    make_face,
)


def codes(result):
    return result.details.reason_codes or []


def assert_verdict_consistent(result):
    if result.verified:
        assert not result.details.high_risk
        assert not set(codes(result)) & CRITICAL_REASON_CODES


def test_exact_match_verifies(make_engine, selfie_ref, journal):
    face_analyzer = FakeFaceAnalyzer()
    result = make_engine(face_analyzer=face_analyzer).verify(selfie_ref, "p1")

    assert result.verified is True
    assert result.details.high_risk is False
    assert result.details.reason_codes is None
    assert result.name_match.match is True
    assert result.name_match.similarity == 1.0
    assert result.face_match.similarity == 0.95
    assert result.details.faces_detected_in_selfie == 2
    assert result.details.passport_name_extracted is True
    assert len(face_analyzer.compare_calls) == 1
    assert face_analyzer.compare_calls[0][2] == 0.7
    assert_verdict_consistent(result)


def test_weak_face_match_needs_review(make_engine, selfie_ref):
    comparison = FaceComparisonResult(match=True, similarity=0.82, confidence=0.6,
                                      source_image_faces=1, target_image_faces=1)
    result = make_engine(face_analyzer=FakeFaceAnalyzer(comparison=comparison)).verify(selfie_ref, "p1")

    assert result.verified is False
    assert result.details.high_risk is True
    assert ReasonCode.LOW_CONFIDENCE in codes(result)
    assert ReasonCode.POSSIBLE_FOREIGN_PASSPORT in codes(result)
    assert_verdict_consistent(result)


def test_single_face_skips_comparison(make_engine, selfie_ref):
    face_analyzer = FakeFaceAnalyzer(faces=[make_face(50, 50, 150, 150)])
    result = make_engine(face_analyzer=face_analyzer).verify(selfie_ref, "p1")

    assert result.verified is False
    assert ReasonCode.TOO_FEW_FACES in codes(result)
    assert face_analyzer.compare_calls == []
    assert result.face_match.match is False
    assert result.face_match.source_image_faces == 0
    assert result.face_match.target_image_faces == 0
    assert result.details.faces_detected_in_selfie == 1


def test_comparison_failure_falls_back_to_review(make_engine, selfie_ref):
    face_analyzer = FakeFaceAnalyzer(compare_error=ProviderError("compare endpoint down"))
    result = make_engine(face_analyzer=face_analyzer).verify(selfie_ref, "p1")

    assert result.face_match.match is True
    assert result.face_match.similarity == 0.9
    assert result.face_match.confidence == 0.9
    assert result.details.high_risk is True
    assert ReasonCode.LOW_CONFIDENCE in codes(result)
    assert result.verified is False
    assert any("compare endpoint down" in e for e in result.details.errors)
    assert_verdict_consistent(result)


def test_fallback_confidence_defaults_when_detection_gives_none(make_engine, selfie_ref):
    faces = [make_face(50, 50, 150, 150, confidence=0.0), make_face(250, 150, 60, 60, confidence=0.0)]
    face_analyzer = FakeFaceAnalyzer(faces=faces, compare_error=ProviderTimeout("slow"))
    result = make_engine(face_analyzer=face_analyzer).verify(selfie_ref, "p1")

    assert result.face_match.confidence == 0.8


@pytest.mark.parametrize("count, code", [
    (0, ReasonCode.NO_FACES),
    (3, ReasonCode.TOO_MANY_FACES),
])
def test_face_count_reason_codes(make_engine, selfie_ref, count, code):
    faces = [make_face(10 + i * 100, 10, 80, 80) for i in range(count)]
    face_analyzer = FakeFaceAnalyzer(faces=faces)
    result = make_engine(face_analyzer=face_analyzer).verify(selfie_ref, "p1")

    assert code in codes(result)
    assert result.verified is False
    assert face_analyzer.compare_calls == []


def test_face_detection_failure_counts_as_no_faces(make_engine, selfie_ref):
    face_analyzer = FakeFaceAnalyzer(detect_error=ProviderError("quota exceeded"))
    result = make_engine(face_analyzer=face_analyzer).verify(selfie_ref, "p1")

    assert ReasonCode.NO_FACES in codes(result)
    assert result.verified is False
    assert any("quota exceeded" in e for e in result.details.errors)


def test_face_mismatch_is_high_risk(make_engine, selfie_ref):
    comparison = FaceComparisonResult(match=False, similarity=0.3, confidence=0.9,
                                      source_image_faces=1, target_image_faces=1)
    result = make_engine(face_analyzer=FakeFaceAnalyzer(comparison=comparison)).verify(selfie_ref, "p1")

    assert ReasonCode.FACE_MISMATCH in codes(result)
    assert ReasonCode.POSSIBLE_FOREIGN_PASSPORT in codes(result)
    assert result.details.high_risk is True
    assert result.verified is False


def test_no_face_found_in_document_crop(make_engine, selfie_ref):
    comparison = FaceComparisonResult(match=False, source_image_faces=1, target_image_faces=0)
    result = make_engine(face_analyzer=FakeFaceAnalyzer(comparison=comparison)).verify(selfie_ref, "p1")

    assert ReasonCode.NO_FACE_IN_PASSPORT in codes(result)
    assert result.details.faces_detected_in_passport == 0
    assert result.verified is False


def test_unreadable_passport(make_engine, selfie_ref):
    result = make_engine(text_detector=FakeTextDetector(text="")).verify(selfie_ref, "p1")

    assert codes(result).count(ReasonCode.PASSPORT_NOT_READABLE) == 1
    assert result.name_match.match is False
    assert result.details.passport_name_extracted is False
    assert result.verified is False


def test_ocr_failure_is_recorded_and_unreadable(make_engine, selfie_ref):
    text_detector = FakeTextDetector(error=ProviderError("vision unavailable"))
    result = make_engine(text_detector=text_detector).verify(selfie_ref, "p1")

    assert ReasonCode.PASSPORT_NOT_READABLE in codes(result)
    assert any("vision unavailable" in e for e in result.details.errors)
    assert result.verified is False


def test_long_text_without_name_is_readable_but_not_verified(make_engine, selfie_ref):
    text = "RUSSIAN FEDERATION\nPASSPORT OF THE CITIZEN\nDATE OF ISSUE 01.02.2015 CODE 770-001"
    result = make_engine(text_detector=FakeTextDetector(text=text)).verify(selfie_ref, "p1")

    assert ReasonCode.PASSPORT_NOT_READABLE in codes(result)
    assert result.name_match.match is False
    assert result.verified is False


def test_name_mismatch(make_engine, selfie_ref, profile_store):
    profile_store.add(Profile(ref="p2", full_name="ПЕТРОВ ПЕТР ПЕТРОВИЧ"))
    result = make_engine().verify(selfie_ref, "p2")

    assert ReasonCode.NAME_MISMATCH in codes(result)
    assert result.details.high_risk is True
    assert result.name_match.match is False
    assert result.name_match.user_name == "ПЕТРОВ ПЕТР ПЕТРОВИЧ"
    assert result.verified is False
    assert_verdict_consistent(result)


def test_profile_without_name_is_high_risk(make_engine, selfie_ref, profile_store):
    profile_store.add(Profile(ref="p3"))
    result = make_engine().verify(selfie_ref, "p3")

    assert ReasonCode.NAME_MISMATCH in codes(result)
    assert result.name_match.similarity == 0.0
    assert result.details.high_risk is True
    assert result.name_match.user_name is None
    assert result.name_match.passport_name == HOLDER_NAME
    assert result.verified is False


def test_name_built_from_profile_parts(make_engine, selfie_ref, profile_store):
    profile_store.add(Profile(ref="p4", data_in={
        "firstName": "Иван", "lastName": "Иванов", "middleName": "Иванович",
    }))
    result = make_engine().verify(selfie_ref, "p4")

    assert result.name_match.match is True
    assert result.verified is True


def test_extractor_values_preferred(make_engine, selfie_ref):
    extractor = FakeTextExtractor(PassportProfile(full_name="Иванов Иван Иванович", birthday="12.05.1990"))
    result = make_engine(text_extractor=extractor).verify(selfie_ref, "p1")

    assert extractor.calls
    assert result.name_match.passport_name == "Иванов Иван Иванович"
    assert result.details.passport_profile.full_name == "Иванов Иван Иванович"
    assert result.verified is True


def test_extractor_failure_does_not_stop_verification(make_engine, selfie_ref):
    extractor = FakeTextExtractor(error=ProviderError("model unavailable"))
    result = make_engine(text_extractor=extractor).verify(selfie_ref, "p1")

    assert result.verified is True
    assert result.name_match.passport_name == HOLDER_NAME
    assert result.details.errors


def test_birthday_overwritten_when_different(make_engine, selfie_ref, profile_store):
    profile_store.add(Profile(ref="p5", full_name=HOLDER_NAME, birthday="01.01.1980", sex="M"))
    make_engine().verify(selfie_ref, "p5")

    updated = profile_store.find_by_ref("p5")
    assert updated.birthday == "12.05.1990"
    assert updated.version == 1
    assert updated.sex == "M"


def test_birthday_left_alone_when_equal(make_engine, selfie_ref, profile_store):
    make_engine().verify(selfie_ref, "p1")

    assert profile_store.find_by_ref("p1").version == 0


def test_missing_profile_gives_error_result(make_engine, selfie_ref, journal):
    result = make_engine().verify(selfie_ref, "missing")

    assert result.verified is False
    assert result.reasons == ["Ошибка при выполнении верификации"]
    assert "missing" in result.details.errors[0]
    assert journal.events[-1]["payload"]["verificationResult"]["verified"] is False
    assert "error" in journal.events[-1]["payload"]["verificationResult"]


def test_missing_selfie_gives_error_result(make_engine):
    result = make_engine().verify("no-such-media", "p1")

    assert result.verified is False
    assert result.details.errors


def test_journal_records_verdict(make_engine, selfie_ref, journal):
    make_engine().verify(selfie_ref, "p1")

    event = journal.events[-1]
    assert event["type"] == JOURNAL_EVENT
    assert event["subject"] == "p1"
    summary = event["payload"]["verificationResult"]
    assert summary["verified"] is True
    assert summary["faceMatchConfidence"] == 0.95
    assert summary["nameMatchSimilarity"] == 1.0
    assert summary["facesDetectedInSelfie"] == 2
    assert "ИВАНОВ" in summary["passportRawText"]


def test_journal_failure_is_swallowed(make_engine, selfie_ref):
    result = make_engine(journal_override=FailingJournal()).verify(selfie_ref, "p1")

    assert result.verified is True


def test_result_serializes_camel_case(make_engine, selfie_ref):
    comparison = FaceComparisonResult(match=True, similarity=0.82, confidence=0.6,
                                      source_image_faces=1, target_image_faces=1)
    data = make_engine(face_analyzer=FakeFaceAnalyzer(comparison=comparison)).verify(selfie_ref, "p1").to_dict()

    assert data["faceMatch"]["sourceImageFaces"] == 1
    assert data["details"]["highRisk"] is True
    assert "LOW_CONFIDENCE" in data["details"]["reasonCodes"]
    assert data["nameMatch"]["passportName"] == HOLDER_NAME


def test_slow_comparison_falls_back_to_review(make_engine, selfie_ref):
    face_analyzer = FakeFaceAnalyzer(compare_delay=0.3)
    engine = make_engine(face_analyzer=face_analyzer, config=Settings(PROVIDER_TIMEOUT_SECONDS=0.05))
    result = engine.verify(selfie_ref, "p1")

    assert result.face_match.match is True
    assert result.face_match.similarity == 0.9
    assert ReasonCode.LOW_CONFIDENCE in codes(result)
    assert result.details.high_risk is True
    assert result.verified is False
    assert any("timed out" in e for e in result.details.errors)
    assert_verdict_consistent(result)


def test_slow_face_detection_counts_as_no_faces(make_engine, selfie_ref):
    face_analyzer = FakeFaceAnalyzer(detect_delay=0.3)
    engine = make_engine(face_analyzer=face_analyzer, config=Settings(PROVIDER_TIMEOUT_SECONDS=0.05))
    result = engine.verify(selfie_ref, "p1")

    assert ReasonCode.NO_FACES in codes(result)
    assert result.verified is False
    assert result.details.faces_detected_in_selfie == 0
    assert any("timed out" in e for e in result.details.errors)
    assert face_analyzer.compare_calls == []


def test_zero_timeout_waits_for_providers(make_engine, selfie_ref):
    face_analyzer = FakeFaceAnalyzer(detect_delay=0.05, compare_delay=0.05)
    engine = make_engine(face_analyzer=face_analyzer, config=Settings(PROVIDER_TIMEOUT_SECONDS=0))
    result = engine.verify(selfie_ref, "p1")

    assert result.verified is True
    assert result.face_match.similarity == 0.95
    assert not result.details.errors


def test_profile_update_failure_keeps_verdict(make_engine, selfie_ref):
    store = FailingProfileStore([Profile(ref="p6", full_name=HOLDER_NAME, birthday="01.01.1980")])
    result = make_engine(profile_store_override=store).verify(selfie_ref, "p6")

    assert result.verified is True
    assert "Не удалось сохранить данные из паспорта в профиль пользователя" in result.details.errors
    assert store.find_by_ref("p6").birthday == "01.01.1980"
