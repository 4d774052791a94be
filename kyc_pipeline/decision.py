import logging
from typing import Any, Dict, List, Optional

from config import Settings, settings

from .face_pairing import crop_face_pair, face_count_reason, pair_faces
from .interfaces import AuditJournal, BlobStore, FaceAnalyzer, ProfileStore, TextDetector, TextExtractor
from .name_match import name_similarity
from .profile import birthday_update, resolve_profile_name
from .recognition import DocumentRecognitionService
from .schemas import (
    CRITICAL_REASON_CODES, DetectedFace, DocumentRecognitionResult, FaceComparisonResult, NameMatch,
    PassportProfile, PassportSelfieVerificationResult, Profile, ReasonCode, VerificationDetails,
)
from .stores import ProfileNotFound
from .utils import attempt, call_with_timeout, submit, wait_for

logger = logging.getLogger(__name__)

JOURNAL_EVENT = "USER_JOURNAL_SELFIE_VERIFICATION"


class _Findings:
    """Reason codes, user-facing reasons, provider errors and the risk flag of one run"""

    def __init__(self):
        self.reason_codes: List[ReasonCode] = []
        self.reasons: List[str] = []
        self.errors: List[str] = []
        self.high_risk = False

    def flag(self, code: ReasonCode, reason: Optional[str] = None, high_risk: bool = False):
        if code not in self.reason_codes:
            self.reason_codes.append(code)
        if reason:
            self.reasons.append(reason)
        if high_risk:
            self.high_risk = True

    def has_critical(self) -> bool:
        return any(code in CRITICAL_REASON_CODES for code in self.reason_codes)


class DecisionEngine:
    """
    Decides whether a "selfie holding a passport" photo verifies a profile.

    Every expected failure (missing faces, unreadable text, mismatches) ends
    up as a reason code. Provider failures are recorded in ``errors`` and the
    run continues on degraded inputs. Storage failures and a missing profile
    produce a terminal not-verified result; ``verify`` does not raise.

    Policy:
    - exactly two faces (live + document) are required for a face comparison
    - a face comparison that cannot run falls back to a placeholder match
      flagged LOW_CONFIDENCE, so it never verifies on its own
    - a face match with low similarity/confidence is kept but flagged
    - a name mismatch, or a profile with no name to compare, is high risk
    - anything high risk is not verified and gets POSSIBLE_FOREIGN_PASSPORT
    """

    def __init__(self,
                 text_detector: TextDetector,
                 face_analyzer: FaceAnalyzer,
                 blob_store: BlobStore,
                 profile_store: ProfileStore,
                 journal: AuditJournal,
                 text_extractor: Optional[TextExtractor] = None,
                 config: Optional[Settings] = None):
        config = config or settings
        self.text_detector = text_detector
        self.face_analyzer = face_analyzer
        self.blob_store = blob_store
        self.profile_store = profile_store
        self.journal = journal
        self.text_extractor = text_extractor
        self.recognition = DocumentRecognitionService(text_detector, blob_store, profile_store,
                                                      timeout=config.PROVIDER_TIMEOUT_SECONDS)

        self.timeout = config.PROVIDER_TIMEOUT_SECONDS
        self.name_match_threshold = config.NAME_MATCH_THRESHOLD
        self.face_compare_threshold = config.FACE_COMPARE_THRESHOLD
        self.face_review_similarity = config.FACE_REVIEW_SIMILARITY
        self.face_review_confidence = config.FACE_REVIEW_CONFIDENCE
        self.fallback_similarity = config.FALLBACK_FACE_SIMILARITY
        self.fallback_confidence = config.FALLBACK_FACE_CONFIDENCE
        self.min_readable_text_length = config.MIN_READABLE_TEXT_LENGTH

    def verify(self, selfie_ref: str, profile_ref: str) -> PassportSelfieVerificationResult:
        """Verify the photo ``selfie_ref`` against the profile ``profile_ref``"""
        try:
            return self._verify(selfie_ref, profile_ref)
        except Exception as e:
            logger.exception("Passport selfie verification error for profile %s", profile_ref)
            self._journal(profile_ref, {
                "verificationResult": {"verified": False, "error": str(e)},
                "selfieMediaRef": selfie_ref,
            })
            return self._error_result(e)

    def _verify(self, selfie_ref: str, profile_ref: str) -> PassportSelfieVerificationResult:
        findings = _Findings()

        image_bytes = self.blob_store.get(selfie_ref)
        profile = self.profile_store.find_by_ref(profile_ref)
        if profile is None:
            raise ProfileNotFound(f"Profile not found: {profile_ref}")

        # Face detection and OCR read the same image independently
        faces_future = submit(self.face_analyzer.detect_faces, image_bytes)
        text_future = submit(self.text_detector.detect_text, image_bytes)

        faces = self._collect_faces(faces_future, findings)
        self._check_face_count(len(faces), findings)

        recognition = self._collect_recognition(text_future, findings)
        readable = self._is_readable(recognition)
        if not readable:
            findings.flag(ReasonCode.PASSPORT_NOT_READABLE,
                          "Не удалось распознать паспорт на фото. Убедитесь, что паспорт четко виден и читаем")

        passport_profile = self._refine(recognition, findings)
        name_match = self._match_name(passport_profile, profile, findings)
        face_match = self._match_faces(image_bytes, faces, findings)

        verified = bool(
            len(faces) == 2
            and readable
            and face_match.match
            and name_match.match
            and not findings.has_critical()
            and not findings.high_risk
        )
        if findings.high_risk and not verified:
            findings.flag(ReasonCode.POSSIBLE_FOREIGN_PASSPORT)

        self._apply_profile_updates(profile, passport_profile, findings)

        result = self._build_response(
            verified=verified,
            face_match=face_match,
            name_match=name_match,
            faces=faces,
            recognition=recognition,
            passport_profile=passport_profile,
            findings=findings,
        )
        logger.info("Selfie verification for profile %s: verified=%s high_risk=%s codes=%s",
                    profile_ref, verified, findings.high_risk,
                    [code.value for code in findings.reason_codes])
        self._journal(profile_ref, {
            "verificationResult": self._journal_summary(result),
            "selfieMediaRef": selfie_ref,
        })
        return result

    def _collect_faces(self, future, findings: _Findings) -> List[DetectedFace]:
        try:
            return list(wait_for(future, self.timeout, "face detection"))
        except Exception as e:
            logger.error("Face detection failed: %s", e)
            findings.errors.append(f"Face detection failed: {e}")
            return []

    def _check_face_count(self, count: int, findings: _Findings):
        code = face_count_reason(count)
        if code is ReasonCode.NO_FACES:
            findings.flag(code, "Лица не обнаружены на фото")
        elif code is ReasonCode.TOO_FEW_FACES:
            findings.flag(code, "Обнаружено только одно лицо. "
                                "На фото должно быть видно ваше лицо и лицо в паспорте")
        elif code is ReasonCode.TOO_MANY_FACES:
            findings.flag(code, f"Обнаружено слишком много лиц ({count}). "
                                "На фото должно быть только ваше лицо и лицо в паспорте")

    def _collect_recognition(self, future, findings: _Findings) -> DocumentRecognitionResult:
        try:
            ocr = wait_for(future, self.timeout, "text detection")
        except Exception as e:
            logger.error("Text detection failed: %s", e)
            findings.errors.append(f"Text recognition failed: {e}")
            return DocumentRecognitionResult(success=False, error=str(e))
        return self.recognition.from_ocr(ocr)

    def _is_readable(self, recognition: DocumentRecognitionResult) -> bool:
        if not recognition.success:
            return False
        data = recognition.recognized_data
        return bool(
            data.full_name
            or data.passport_number
            or len(recognition.raw_text or "") > self.min_readable_text_length
        )

    def _refine(self, recognition: DocumentRecognitionResult, findings: _Findings) -> PassportProfile:
        """Holder name and birthday: extraction service values first, parser values as fallback"""
        parsed = recognition.recognized_data
        refined = PassportProfile()
        if self.text_extractor is not None and recognition.success and recognition.raw_text:
            outcome = attempt("Passport text extraction",
                              lambda: call_with_timeout(self.text_extractor.extract, self.timeout,
                                                        recognition.raw_text, action="text extraction"),
                              errors=findings.errors,
                              error_message="Не удалось дополнительно распознать данные паспорта через ИИ")
            if outcome.ok and outcome.value is not None:
                refined = outcome.value

        return PassportProfile(
            full_name=(refined.full_name or parsed.full_name or "").strip() or None,
            birthday=(refined.birthday or parsed.birthday or "").strip() or None,
        )

    def _match_name(self, passport_profile: PassportProfile, profile: Profile,
                    findings: _Findings) -> NameMatch:
        passport_name = passport_profile.full_name
        if not passport_name:
            findings.flag(ReasonCode.PASSPORT_NOT_READABLE)
            return NameMatch(match=False)

        user_name = resolve_profile_name(profile)
        if not user_name:
            # nothing on file to compare against: treat as suspicious, not as a pass
            findings.flag(ReasonCode.NAME_MISMATCH,
                          "Имя из паспорта не совпадает с профилем пользователя или профиль не заполнен",
                          high_risk=True)
            # user_name stays unset rather than echoing the passport name back
            return NameMatch(match=False, passport_name=passport_name, similarity=0.0)

        similarity = name_similarity(passport_name, user_name)
        match = similarity >= self.name_match_threshold
        if not match:
            findings.flag(ReasonCode.NAME_MISMATCH,
                          f'Имя из паспорта "{passport_name}" не совпадает с именем в профиле '
                          f'"{user_name}" (совпадение: {similarity * 100:.1f}%)',
                          high_risk=True)
        return NameMatch(match=match, passport_name=passport_name, user_name=user_name, similarity=similarity)

    def _match_faces(self, image_bytes: bytes, faces: List[DetectedFace],
                     findings: _Findings) -> FaceComparisonResult:
        pair = pair_faces(faces)
        if pair is None:
            return FaceComparisonResult()

        try:
            selfie_crop, document_crop = crop_face_pair(image_bytes, pair)
            comparison = call_with_timeout(self.face_analyzer.compare_faces, self.timeout,
                                           selfie_crop, document_crop, self.face_compare_threshold,
                                           action="face comparison")
        except Exception as e:
            logger.error("Face comparison error: %s", e)
            findings.errors.append(f"Face comparison failed: {e}")
            # cannot actually compare: placeholder match, always sent to manual review
            findings.flag(ReasonCode.LOW_CONFIDENCE,
                          "Не удалось сравнить лица. Требуется ручная проверка.",
                          high_risk=True)
            return FaceComparisonResult(
                match=True,
                similarity=self.fallback_similarity,
                confidence=min(face.confidence or self.fallback_confidence for face in faces),
                source_image_faces=1,
                target_image_faces=1,
            )

        face_match = FaceComparisonResult(
            match=comparison.match,
            similarity=comparison.similarity,
            confidence=comparison.confidence,
            source_image_faces=comparison.source_image_faces or 1,
            target_image_faces=comparison.target_image_faces,
        )
        if comparison.target_image_faces == 0:
            findings.flag(ReasonCode.NO_FACE_IN_PASSPORT)

        if not comparison.match:
            findings.flag(ReasonCode.FACE_MISMATCH,
                          f"Лица не совпадают (совпадение: {comparison.similarity * 100:.1f}%). "
                          "Возможно, используется чужой паспорт.",
                          high_risk=True)
        elif (comparison.similarity < self.face_review_similarity
              or comparison.confidence < self.face_review_confidence):
            findings.flag(ReasonCode.LOW_CONFIDENCE,
                          f"Низкая уверенность в совпадении лиц (совпадение: {comparison.similarity * 100:.1f}%, "
                          f"уверенность: {comparison.confidence * 100:.1f}%). Требуется ручная проверка.",
                          high_risk=True)
        return face_match

    def _apply_profile_updates(self, profile: Profile, passport_profile: PassportProfile,
                               findings: _Findings):
        new_birthday = birthday_update(profile.birthday, passport_profile.birthday)
        if new_birthday is None:
            return
        attempt("Profile birthday update", self.profile_store.update, profile.ref, {"birthday": new_birthday},
                errors=findings.errors,
                error_message="Не удалось сохранить данные из паспорта в профиль пользователя")

    def _journal(self, profile_ref: str, payload: Dict[str, Any]):
        attempt("Selfie verification journal entry", self.journal.append, JOURNAL_EVENT, profile_ref, payload)

    def _journal_summary(self, result: PassportSelfieVerificationResult) -> Dict[str, Any]:
        return {
            "verified": result.verified,
            "faceMatch": result.face_match.match,
            "faceMatchConfidence": result.face_match.similarity,
            "nameMatch": result.name_match.match,
            "nameMatchSimilarity": result.name_match.similarity,
            "facesDetectedInSelfie": result.details.faces_detected_in_selfie,
            "facesDetectedInPassport": result.details.faces_detected_in_passport,
            "passportRawText": result.details.passport_raw_text,
            "reasonCodes": [code.value for code in result.details.reason_codes or []],
            "highRisk": result.details.high_risk,
            "reasons": result.reasons,
        }

    def _build_response(self,
                        verified: bool,
                        face_match: FaceComparisonResult,
                        name_match: NameMatch,
                        faces: List[DetectedFace],
                        recognition: DocumentRecognitionResult,
                        passport_profile: PassportProfile,
                        findings: _Findings) -> PassportSelfieVerificationResult:
        has_profile_data = passport_profile.full_name or passport_profile.birthday
        return PassportSelfieVerificationResult(
            verified=verified,
            face_match=face_match,
            name_match=name_match,
            details=VerificationDetails(
                faces_detected_in_selfie=len(faces),
                faces_detected_in_passport=face_match.target_image_faces,
                passport_name_extracted=bool(passport_profile.full_name),
                passport_raw_text=recognition.raw_text,
                errors=list(findings.errors) or None,
                passport_profile=passport_profile if has_profile_data else None,
                reason_codes=list(findings.reason_codes) or None,
                high_risk=findings.high_risk,
            ),
            reasons=list(findings.reasons) or None,
        )

    def _error_result(self, error: Exception) -> PassportSelfieVerificationResult:
        return PassportSelfieVerificationResult(
            verified=False,
            face_match=FaceComparisonResult(),
            name_match=NameMatch(match=False),
            details=VerificationDetails(errors=[str(error)]),
            reasons=["Ошибка при выполнении верификации"],
        )
