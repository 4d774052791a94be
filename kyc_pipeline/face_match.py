import base64
import logging
from typing import Any, List, Optional

from openai import OpenAI

from config import settings

from .interfaces import FaceAnalyzer, ProviderError
from .schemas import DetectedFace, FaceComparisonResult
from .utils import safe_json_parse

logger = logging.getLogger(__name__)

FACE_MATCH_PROMPT = """
You are an identity verification assistant.

You will be given two cropped face images taken from ONE photo:
1. The face of a person holding an identity document
2. The face printed on that identity document

Task:
Determine whether both images appear to show the SAME PERSON.

Consider:
- Facial structure
- Eyes, nose, mouth
- Face shape
- Relative age (document photos may be several years old)
- Hairline (ignore hairstyle differences)
- Ignore lighting, image quality, print texture or background differences

Return STRICT JSON ONLY.

Format:
{
  "same_person": true/false,
  "confidence": 0.0-1.0,
  "reasoning_summary": "short explanation"
}
"""


def encode_image(image_bytes: bytes) -> str:
    return f"data:image/jpeg;base64,{base64.b64encode(image_bytes).decode()}"


def _to_bool(val: Any) -> Optional[bool]:
    if isinstance(val, bool):
        return val
    if val is None:
        return None
    if isinstance(val, (int, float)):
        return bool(val)
    s = str(val).strip().lower()
    if s in ("true", "yes", "y", "1"):
        return True
    if s in ("false", "no", "n", "0"):
        return False
    return None


def _to_conf(val: Any) -> float:
    if val is None:
        return 0.0
    try:
        if isinstance(val, (int, float)):
            v = float(val)
        else:
            v = float(str(val).strip().replace("%", ""))
    except ValueError:
        return 0.0
    # If the model returned a percentage like 95, convert to 0.95
    if v > 1:
        v = v / 100.0
    return max(0.0, min(1.0, v))


class OpenAIFaceComparer:
    """
    Face provider that delegates detection to ``detector`` and asks an
    OpenAI vision model whether two face crops show the same person.

    The model's confidence in its answer becomes the similarity when it says
    "same person", and 1 - confidence otherwise.
    """

    def __init__(self, detector: FaceAnalyzer, client: Optional[Any] = None, model: Optional[str] = None):
        self.detector = detector
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise ValueError("OPENAI_API_KEY is required for OpenAI face comparison")
            client = OpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client
        self.model = model or settings.FACE_MODEL

    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        return self.detector.detect_faces(image_bytes)

    def compare_faces(self, source_bytes: bytes, target_bytes: bytes,
                      similarity_threshold: float = 0.7) -> FaceComparisonResult:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": FACE_MATCH_PROMPT},
                        {"type": "image_url", "image_url": {"url": encode_image(source_bytes)}},
                        {"type": "image_url", "image_url": {"url": encode_image(target_bytes)}},
                    ]
                }
            ],
            max_tokens=600,
            temperature=0
        )
        text = response.choices[0].message.content or ""

        try:
            parsed = safe_json_parse(text)
        except ValueError as e:
            raise ProviderError(f"Unparseable face comparison output: {e}")

        same_person = _to_bool(parsed.get("same_person"))
        if same_person is None:
            raise ProviderError(f"Face comparison gave no verdict: {text[:200]}")
        confidence = _to_conf(parsed.get("confidence"))
        similarity = confidence if same_person else 1.0 - confidence
        logger.info("LLM face comparison: same_person=%s confidence=%.2f (%s)",
                    same_person, confidence, parsed.get("reasoning_summary", ""))

        return FaceComparisonResult(
            match=same_person and similarity >= similarity_threshold,
            similarity=similarity,
            confidence=confidence,
            source_image_faces=1,
            target_image_faces=1,
        )
