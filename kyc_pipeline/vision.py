import base64
import logging
import math
from typing import Any, Dict, List, Optional

import requests

from config import settings

from .interfaces import ProviderError, ProviderTimeout
from .schemas import BoundingBox, DetectedFace, FaceComparisonResult, Landmark, OcrResult

logger = logging.getLogger(__name__)

# Word confidence assumed when Vision omits it
DEFAULT_TEXT_CONFIDENCE = 0.9
# Landmark distances are normalized against a typical face width in pixels
LANDMARK_NORMALIZATION_PX = 200.0
MIN_COMPARE_CONFIDENCE = 0.7


def _bounding_box(poly: Dict[str, Any]) -> BoundingBox:
    vertices = (poly or {}).get("vertices") or []
    xs = [v.get("x", 0) for v in vertices] or [0]
    ys = [v.get("y", 0) for v in vertices] or [0]
    return BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))


def landmark_similarity(first: List[Landmark], second: List[Landmark]) -> float:
    """1 - mean distance between same-type landmarks / 200px, floored at 0"""
    if not first or not second:
        return 0.0
    by_type = {lm.type: lm for lm in second}
    distances = []
    for lm in first:
        other = by_type.get(lm.type)
        if other is not None:
            distances.append(math.hypot(lm.x - other.x, lm.y - other.y))
    if not distances:
        return 0.0
    average = sum(distances) / len(distances)
    return 1.0 - min(average / LANDMARK_NORMALIZATION_PX, 1.0)


def bounding_box_similarity(first: BoundingBox, second: BoundingBox) -> float:
    if first.area == 0 or second.area == 0:
        return 0.0
    return min(first.area, second.area) / max(first.area, second.area)


class GoogleVisionProvider:
    """
    Text and face recognition through the Google Cloud Vision REST API.

    Vision has no face comparison endpoint; ``compare_faces`` detects a face
    in each image and compares landmark positions.
    """

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None,
                 url: Optional[str] = None, session: Optional[requests.Session] = None):
        api_key = (api_key or settings.GOOGLE_VISION_API_KEY or "").strip()
        if not api_key:
            raise ValueError("Google Vision API key is required and cannot be empty")
        self.api_key = api_key
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.url = url or settings.GOOGLE_VISION_URL
        self.http = session or requests

    def _annotate(self, image_bytes: bytes, feature: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "requests": [{
                "image": {"content": base64.b64encode(image_bytes).decode("utf-8")},
                "features": [feature],
            }]
        }
        try:
            response = self.http.post(self.url, params={"key": self.api_key}, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise ProviderTimeout(f"Google Vision request timed out: {e}")
        except requests.RequestException as e:
            raise ProviderError(f"Google Vision request failed: {e}")

        if not response.ok:
            raise ProviderError(f"Google Vision API error: {response.status_code} - {response.text}")

        data = response.json()
        first = (data.get("responses") or [{}])[0]
        if first.get("error"):
            raise ProviderError(f"Google Vision API error: {first['error']}")
        return first

    def detect_text(self, image_bytes: bytes) -> OcrResult:
        result = self._annotate(image_bytes, {"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1})
        full_text = (result.get("fullTextAnnotation") or {}).get("text", "")
        # the first annotation is the whole text block, the rest are words
        words = (result.get("textAnnotations") or [])[1:]
        confidences = [w.get("confidence") or DEFAULT_TEXT_CONFIDENCE for w in words]
        confidence = sum(confidences) / len(confidences) if confidences else DEFAULT_TEXT_CONFIDENCE
        return OcrResult(full_text=full_text, confidence=confidence)

    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        result = self._annotate(image_bytes, {"type": "FACE_DETECTION", "maxResults": 10})
        faces = []
        for annotation in result.get("faceAnnotations") or []:
            landmarks = [
                Landmark(type=lm.get("type", ""),
                         x=(lm.get("position") or {}).get("x", 0),
                         y=(lm.get("position") or {}).get("y", 0))
                for lm in annotation.get("landmarks") or []
            ]
            faces.append(DetectedFace(
                bounding_box=_bounding_box(annotation.get("boundingPoly")),
                confidence=annotation.get("detectionConfidence") or 0.0,
                landmarks=landmarks,
            ))
        return faces

    def compare_faces(self, source_bytes: bytes, target_bytes: bytes,
                      similarity_threshold: float = 0.8) -> FaceComparisonResult:
        source_faces = self.detect_faces(source_bytes)
        target_faces = self.detect_faces(target_bytes)
        if not source_faces or not target_faces:
            return FaceComparisonResult(source_image_faces=len(source_faces),
                                        target_image_faces=len(target_faces))

        source, target = source_faces[0], target_faces[0]
        if source.landmarks and target.landmarks:
            similarity = landmark_similarity(source.landmarks, target.landmarks)
        else:
            similarity = bounding_box_similarity(source.bounding_box, target.bounding_box)

        confidence = min(source.confidence, target.confidence)
        match = similarity >= similarity_threshold and confidence >= MIN_COMPARE_CONFIDENCE
        logger.debug("Vision face comparison: similarity=%.3f confidence=%.3f", similarity, confidence)
        return FaceComparisonResult(
            match=match,
            similarity=similarity,
            confidence=confidence,
            source_image_faces=len(source_faces),
            target_image_faces=len(target_faces),
        )
