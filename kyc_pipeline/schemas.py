from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    """Shared config: snake_case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ReasonCode(str, Enum):
    NO_FACES = "NO_FACES"
    TOO_FEW_FACES = "TOO_FEW_FACES"
    TOO_MANY_FACES = "TOO_MANY_FACES"
    FACE_MISMATCH = "FACE_MISMATCH"
    PASSPORT_NOT_READABLE = "PASSPORT_NOT_READABLE"
    NO_FACE_IN_PASSPORT = "NO_FACE_IN_PASSPORT"
    NAME_MISMATCH = "NAME_MISMATCH"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    POSSIBLE_FOREIGN_PASSPORT = "POSSIBLE_FOREIGN_PASSPORT"


# Any of these blocks a positive verdict outright
CRITICAL_REASON_CODES = frozenset({
    ReasonCode.FACE_MISMATCH,
    ReasonCode.NAME_MISMATCH,
    ReasonCode.POSSIBLE_FOREIGN_PASSPORT,
})


class RecognizedDocumentData(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    full_name: Optional[str] = None
    birthday: Optional[str] = None  # DD.MM.YYYY as printed
    sex: Optional[str] = None  # "M" or "F"
    passport_number: Optional[str] = None
    passport_series: Optional[str] = None
    passport_issue_date: Optional[str] = None
    passport_issued_by: Optional[str] = None
    registration_address: Optional[str] = None


class OcrResult(_Model):
    full_text: str = ""
    confidence: float = 0.0


class BoundingBox(_Model):
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


class Landmark(_Model):
    type: str
    x: float
    y: float


class DetectedFace(_Model):
    bounding_box: BoundingBox
    confidence: float = 0.0
    landmarks: List[Landmark] = Field(default_factory=list)


class FaceComparisonResult(_Model):
    match: bool = False
    similarity: float = 0.0
    confidence: float = 0.0
    source_image_faces: int = 0
    target_image_faces: int = 0


class NameMatch(_Model):
    match: bool = False
    passport_name: Optional[str] = None
    user_name: Optional[str] = None
    similarity: Optional[float] = None


class PassportProfile(_Model):
    full_name: Optional[str] = None
    birthday: Optional[str] = None


class StoredMedia(_Model):
    ref: str
    filename: str
    content_type: str = "image/jpeg"
    size: int = 0
    owner_ref: Optional[str] = None
    uploader_ref: Optional[str] = None


class VerificationDetails(_Model):
    faces_detected_in_selfie: int = 0
    faces_detected_in_passport: int = 0
    passport_name_extracted: bool = False
    passport_raw_text: Optional[str] = None
    errors: Optional[List[str]] = None
    passport_profile: Optional[PassportProfile] = None
    reason_codes: Optional[List[ReasonCode]] = None
    high_risk: bool = False


class PassportSelfieVerificationResult(_Model):
    verified: bool
    face_match: FaceComparisonResult
    name_match: NameMatch
    details: VerificationDetails
    reasons: Optional[List[str]] = None
    avatar_media: Optional[StoredMedia] = None


class DocumentRecognitionResult(_Model):
    success: bool
    recognized_data: RecognizedDocumentData = Field(default_factory=RecognizedDocumentData)
    raw_text: Optional[str] = None
    confidence: Optional[float] = None
    error: Optional[str] = None


class Profile(_Model):
    """Profile record as seen by the pipeline. ``data_in`` is the free-form extension map."""
    ref: str
    full_name: Optional[str] = None
    birthday: Optional[str] = None
    sex: Optional[str] = None
    data_in: Dict[str, Any] = Field(default_factory=dict)
    version: int = 0
