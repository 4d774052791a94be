import io
import time
from typing import List, Optional

import pytest
from PIL import Image

from kyc_pipeline.decision import DecisionEngine
from kyc_pipeline.interfaces import ProviderError
from kyc_pipeline.schemas import BoundingBox, DetectedFace, FaceComparisonResult, OcrResult, PassportProfile, Profile
from kyc_pipeline.stores import InMemoryAuditJournal, InMemoryBlobStore, InMemoryProfileStore

PASSPORT_TEXT = "ИВАНОВ ИВАН ИВАНОВИЧ\n12.05.1990\n4512 123456\nМУЖ\nУФМС РОССИИ ПО Г. МОСКВЕ"
HOLDER_NAME = "ИВАНОВ ИВАН ИВАНОВИЧ"


def make_image(width=400, height=300, color=(200, 180, 160), fmt="JPEG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, fmt)
    return buffer.getvalue()


def make_face(x, y, width, height, confidence=0.95) -> DetectedFace:
    return DetectedFace(bounding_box=BoundingBox(x=x, y=y, width=width, height=height), confidence=confidence)


def matching_faces() -> List[DetectedFace]:
    # document face listed first on purpose: pairing goes by size, not order
    return [make_face(250, 150, 60, 60, confidence=0.9), make_face(50, 50, 150, 150, confidence=0.95)]


class FakeTextDetector:
    def __init__(self, text: str = PASSPORT_TEXT, confidence: float = 0.95,
                 error: Optional[Exception] = None, responses: Optional[list] = None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.responses = list(responses) if responses is not None else None
        self.calls: List[bytes] = []

    def detect_text(self, image_bytes: bytes) -> OcrResult:
        self.calls.append(image_bytes)
        if self.responses is not None:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        if self.error is not None:
            raise self.error
        return OcrResult(full_text=self.text, confidence=self.confidence)


class FakeFaceAnalyzer:
    def __init__(self, faces: Optional[List[DetectedFace]] = None,
                 comparison: Optional[FaceComparisonResult] = None,
                 detect_error: Optional[Exception] = None,
                 compare_error: Optional[Exception] = None,
                 detect_delay: float = 0.0,
                 compare_delay: float = 0.0):
        self.faces = faces if faces is not None else matching_faces()
        self.comparison = comparison or FaceComparisonResult(
            match=True, similarity=0.95, confidence=0.9, source_image_faces=1, target_image_faces=1)
        self.detect_error = detect_error
        self.compare_error = compare_error
        self.detect_delay = detect_delay
        self.compare_delay = compare_delay
        self.compare_calls = []

    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        time.sleep(self.detect_delay)
        if self.detect_error is not None:
            raise self.detect_error
        return list(self.faces)

    def compare_faces(self, source_bytes: bytes, target_bytes: bytes,
                      similarity_threshold: float = 0.7) -> FaceComparisonResult:
        self.compare_calls.append((source_bytes, target_bytes, similarity_threshold))
        time.sleep(self.compare_delay)
        if self.compare_error is not None:
            raise self.compare_error
        return self.comparison


class FakeTextExtractor:
    def __init__(self, profile: Optional[PassportProfile] = None, error: Optional[Exception] = None):
        self.profile = profile or PassportProfile()
        self.error = error
        self.calls: List[str] = []

    def extract(self, raw_text: str) -> PassportProfile:
        self.calls.append(raw_text)
        if self.error is not None:
            raise self.error
        return self.profile


class FailingProfileStore(InMemoryProfileStore):
    def update(self, ref, fields):
        raise RuntimeError("db down")


class FailingJournal:
    def append(self, event_type, subject_ref, payload):
        raise ProviderError("journal is down")


@pytest.fixture
def selfie_bytes():
    return make_image()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def selfie_ref(blob_store, selfie_bytes):
    return blob_store.put(selfie_bytes, "selfie.jpg").ref


@pytest.fixture
def profile_store():
    return InMemoryProfileStore([Profile(ref="p1", full_name=HOLDER_NAME, birthday="12.05.1990")])


@pytest.fixture
def journal():
    return InMemoryAuditJournal()


@pytest.fixture
def make_engine(blob_store, profile_store, journal):
    def factory(text_detector=None, face_analyzer=None, text_extractor=None, journal_override=None,
                profile_store_override=None, config=None):
        return DecisionEngine(
            text_detector=text_detector or FakeTextDetector(),
            face_analyzer=face_analyzer or FakeFaceAnalyzer(),
            blob_store=blob_store,
            profile_store=profile_store_override or profile_store,
            journal=journal_override or journal,
            text_extractor=text_extractor,
            config=config,
        )
    return factory
