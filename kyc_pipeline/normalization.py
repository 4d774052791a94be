"""
Selfie normalization before storage.

Orientation is always fixed from EXIF. A mirrored front-camera shot cannot be
detected from metadata, so the mirror fix is a heuristic: the image is
flipped only when OCR on the flipped copy reads clearly more like a passport.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from config import settings

from . import imaging
from .document_parser import has_passport_number, score_ocr_result
from .interfaces import TextDetector
from .schemas import OcrResult
from .utils import call_with_timeout

logger = logging.getLogger(__name__)

ORIGINAL_STRONG = "original_strong"
FLIPPED_BETTER = "flipped_better"
NO_CLEAR_WINNER = "no_clear_winner"
OCR_ERROR = "ocr_error"

STRONG_TEXT_LENGTH = 450
STRONG_TEXT_CONFIDENCE = 0.75
STRONG_SCORE = 1.65
FLIP_MARGIN = 0.15
JPEG_QUALITY = 90


@dataclass
class NormalizationResult:
    image_bytes: bytes
    was_mirrored: bool
    decision: str
    scores: Dict[str, float] = field(default_factory=dict)


def is_strong_enough(ocr: OcrResult, score: float) -> bool:
    text = (ocr.full_text or "").strip()
    if has_passport_number(text):
        return True
    if len(text) >= STRONG_TEXT_LENGTH and ocr.confidence >= STRONG_TEXT_CONFIDENCE:
        return True
    return score >= STRONG_SCORE


class SelfieNormalizer:
    def __init__(self, text_detector: TextDetector, timeout: Optional[float] = None):
        self.text_detector = text_detector
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS

    def _detect_text(self, image_bytes: bytes) -> OcrResult:
        return call_with_timeout(self.text_detector.detect_text, self.timeout, image_bytes,
                                 action="text detection")

    def normalize(self, image_bytes: bytes, content_type: Optional[str] = "image/jpeg") -> NormalizationResult:
        """
        Rotate per EXIF, then keep either the image or its mirror, whichever
        OCR reads better by a clear margin.

        Raises ``ImageProcessingError`` only when the image cannot be decoded;
        OCR failures fall back to the rotated image.
        """
        content_type = content_type or "image/jpeg"
        rotated = imaging.exif_transpose(image_bytes, content_type, quality=JPEG_QUALITY)

        try:
            ocr_original = self._detect_text(rotated)
        except Exception as e:
            logger.warning("OCR failed during selfie normalization: %s", e)
            return NormalizationResult(rotated, was_mirrored=False, decision=OCR_ERROR)

        score_original = score_ocr_result(ocr_original)
        scores = {"original": score_original}
        if is_strong_enough(ocr_original, score_original):
            return NormalizationResult(rotated, was_mirrored=False, decision=ORIGINAL_STRONG, scores=scores)

        try:
            flipped = imaging.mirror(rotated, content_type, quality=JPEG_QUALITY)
            ocr_flipped = self._detect_text(flipped)
        except Exception as e:
            logger.warning("Mirrored OCR attempt failed: %s", e)
            return NormalizationResult(rotated, was_mirrored=False, decision=NO_CLEAR_WINNER, scores=scores)

        score_flipped = score_ocr_result(ocr_flipped)
        scores["flipped"] = score_flipped
        if score_flipped > score_original + FLIP_MARGIN:
            logger.info("Selfie mirrored: OCR score %.2f -> %.2f", score_original, score_flipped)
            return NormalizationResult(flipped, was_mirrored=True, decision=FLIPPED_BETTER, scores=scores)

        return NormalizationResult(rotated, was_mirrored=False, decision=NO_CLEAR_WINNER, scores=scores)
