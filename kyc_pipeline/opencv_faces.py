import logging
import os
from typing import List, Optional, Tuple

import cv2
import numpy as np

from config import settings

from .interfaces import ProviderError
from .schemas import BoundingBox, DetectedFace, FaceComparisonResult

logger = logging.getLogger(__name__)

SFACE_INPUT_SIZE = (112, 112)
# Confidence reported when a crop had to be embedded without a detection
UNDETECTED_CROP_CONFIDENCE = 0.5


def decode_bgr(image_bytes: bytes) -> np.ndarray:
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise ProviderError("Failed to decode image data")
    return img


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    denom = (np.linalg.norm(a) * np.linalg.norm(b)) + 1e-9
    return float(np.dot(a, b) / denom)


class OpenCVFaceAnalyzer:
    """
    Local face detection + comparison using OpenCV YuNet + SFace.
    CPU-only; model files must already be on disk.

    Cosine similarity in [-1, 1] is reported on a 0..1 scale as (cos + 1) / 2.
    """

    def __init__(self, yunet_path: Optional[str] = None, sface_path: Optional[str] = None,
                 det_score_threshold: float = 0.6):
        self.yunet_path = yunet_path or settings.YUNET_MODEL_PATH
        self.sface_path = sface_path or settings.SFACE_MODEL_PATH
        for path in (self.yunet_path, self.sface_path):
            if not os.path.exists(path):
                raise ProviderError(f"Face model not found: {path}")

        self.detector = cv2.FaceDetectorYN_create(
            self.yunet_path, "", (320, 320), det_score_threshold, 0.3, 5000
        )
        self.recognizer = cv2.FaceRecognizerSF_create(self.sface_path, "")

    def _detect(self, img_bgr: np.ndarray) -> np.ndarray:
        h, w = img_bgr.shape[:2]
        # YuNet requires setting the input size to the image size before detection
        self.detector.setInputSize((w, h))
        _, faces = self.detector.detect(img_bgr)
        return faces if faces is not None else np.empty((0, 15), dtype=np.float32)

    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        rows = self._detect(decode_bgr(image_bytes))
        return [
            DetectedFace(
                bounding_box=BoundingBox(x=float(r[0]), y=float(r[1]), width=float(r[2]), height=float(r[3])),
                confidence=float(r[14]),
            )
            for r in rows
        ]

    def _embed(self, img_bgr: np.ndarray) -> Tuple[np.ndarray, float, int]:
        """Embedding of the largest face, its detection score and the face count"""
        rows = self._detect(img_bgr)
        if len(rows) == 0:
            # comparison crops are cut tightly around the face and may not re-detect
            aligned = cv2.resize(img_bgr, SFACE_INPUT_SIZE)
            score = UNDETECTED_CROP_CONFIDENCE
        else:
            face = max(rows, key=lambda r: float(r[2] * r[3]))
            aligned = self.recognizer.alignCrop(img_bgr, face)
            score = float(face[14])
        feat = np.asarray(self.recognizer.feature(aligned), dtype=np.float32).reshape(-1)
        return feat, score, max(1, len(rows))

    def compare_faces(self, source_bytes: bytes, target_bytes: bytes,
                      similarity_threshold: float = 0.7) -> FaceComparisonResult:
        source_feat, source_score, source_count = self._embed(decode_bgr(source_bytes))
        target_feat, target_score, target_count = self._embed(decode_bgr(target_bytes))

        similarity = (cosine_similarity(source_feat, target_feat) + 1.0) / 2.0
        similarity = max(0.0, min(1.0, similarity))
        logger.debug("SFace similarity %.3f (threshold %.2f)", similarity, similarity_threshold)
        return FaceComparisonResult(
            match=similarity >= similarity_threshold,
            similarity=similarity,
            confidence=min(source_score, target_score),
            source_image_faces=source_count,
            target_image_faces=target_count,
        )
