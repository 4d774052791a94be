import logging
from typing import Optional

from config import settings

from .document_parser import parse_document_text
from .interfaces import BlobStore, ProfileStore, TextDetector
from .profile import document_profile_update
from .schemas import DocumentRecognitionResult, OcrResult
from .stores import ProfileNotFound
from .utils import call_with_timeout

logger = logging.getLogger(__name__)

NO_TEXT_ERROR = "No text recognized from image"


class DocumentRecognitionService:
    """
    Recognizes text on a document image and extracts personal data from it.
    """

    def __init__(self, text_detector: TextDetector, blob_store: Optional[BlobStore] = None,
                 profile_store: Optional[ProfileStore] = None, timeout: Optional[float] = None):
        self.text_detector = text_detector
        self.blob_store = blob_store
        self.profile_store = profile_store
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS

    def from_ocr(self, ocr: OcrResult) -> DocumentRecognitionResult:
        """Parse an OCR result that has already been obtained"""
        if not ocr.full_text or not ocr.full_text.strip():
            return DocumentRecognitionResult(success=False, raw_text="", error=NO_TEXT_ERROR)
        return DocumentRecognitionResult(
            success=True,
            recognized_data=parse_document_text(ocr.full_text),
            raw_text=ocr.full_text,
            confidence=ocr.confidence,
        )

    def recognize_image(self, image_bytes: bytes) -> DocumentRecognitionResult:
        try:
            ocr = call_with_timeout(self.text_detector.detect_text, self.timeout, image_bytes,
                                    action="text detection")
        except Exception as e:
            logger.error("Document recognition error: %s", e)
            return DocumentRecognitionResult(success=False, error=f"Text recognition failed: {e}")
        return self.from_ocr(ocr)

    def recognize_document(self, image_ref: str) -> DocumentRecognitionResult:
        """Recognize a stored document image without touching any profile"""
        try:
            image_bytes = self.blob_store.get(image_ref)
        except Exception as e:
            logger.error("Document recognition error: %s", e)
            return DocumentRecognitionResult(success=False, error=str(e))
        return self.recognize_image(image_bytes)

    def recognize_and_update_profile(self, image_ref: str, profile_ref: str) -> DocumentRecognitionResult:
        """
        Recognize a stored document image and fill the profile's empty fields from it.

        Passport series/number, issue date, issuing authority and address go
        into ``data_in``; keys already present there are left untouched.
        """
        result = self.recognize_document(image_ref)
        if not result.success:
            return result

        try:
            profile = self.profile_store.find_by_ref(profile_ref)
            if profile is None:
                raise ProfileNotFound(f"Profile not found: {profile_ref}")
            update = document_profile_update(profile, result.recognized_data)
            if update:
                self.profile_store.update(profile_ref, update)
                logger.info("Profile %s filled from document: %s", profile_ref, sorted(update))
        except Exception as e:
            logger.error("Document recognition error: %s", e)
            return DocumentRecognitionResult(success=False, error=str(e))

        return result
