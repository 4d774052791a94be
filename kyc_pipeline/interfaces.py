"""Collaborator contracts consumed by the pipeline.

Recognition providers are split into two capability groups, ``TextDetector``
and ``FaceAnalyzer``. One concrete class may implement both (Google Vision
does). Components receive their collaborators through ``__init__``.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .schemas import DetectedFace, FaceComparisonResult, OcrResult, PassportProfile, Profile, StoredMedia


class ProviderError(Exception):
    """Base exception for recognition provider failures."""
    pass


class ProviderTimeout(ProviderError):
    """Exception raised when a provider call exceeds its time bound."""
    pass


@runtime_checkable
class TextDetector(Protocol):
    def detect_text(self, image_bytes: bytes) -> OcrResult: ...


@runtime_checkable
class FaceAnalyzer(Protocol):
    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]: ...

    def compare_faces(self, source_bytes: bytes, target_bytes: bytes,
                      similarity_threshold: float) -> FaceComparisonResult: ...


class TextExtractor(Protocol):
    """Advisory structured extraction over raw OCR text."""

    def extract(self, raw_text: str) -> PassportProfile: ...


class BlobStore(Protocol):
    def get(self, ref: str) -> bytes: ...

    def put(self, data: bytes, filename: str, content_type: str = "image/jpeg",
            owner_ref: Optional[str] = None, uploader_ref: Optional[str] = None) -> StoredMedia: ...


class ProfileStore(Protocol):
    def find_by_ref(self, ref: str) -> Optional[Profile]: ...

    def update(self, ref: str, fields: Dict[str, Any]) -> Profile: ...


class AuditJournal(Protocol):
    def append(self, event_type: str, subject_ref: Optional[str], payload: Dict[str, Any]) -> None: ...
