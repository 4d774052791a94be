"""
Pairing of the two faces found in a "selfie holding a passport" photo.

Exactly two faces are required. The larger one is taken to be the live
face and the smaller one the photo printed in the document; this is a
size heuristic only, nothing checks which face is actually live.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from . import imaging
from .imaging import CropRect
from .schemas import BoundingBox, DetectedFace, ReasonCode

EXPECTED_FACE_COUNT = 2


@dataclass(frozen=True)
class FacePair:
    selfie: DetectedFace
    document: DetectedFace


def face_count_reason(count: int) -> Optional[ReasonCode]:
    """Reason code for a face count; None when the count is the expected two"""
    if count == 0:
        return ReasonCode.NO_FACES
    if count == 1:
        return ReasonCode.TOO_FEW_FACES
    if count > EXPECTED_FACE_COUNT:
        return ReasonCode.TOO_MANY_FACES
    return None


def sort_by_area(faces: Sequence[DetectedFace]) -> List[DetectedFace]:
    """Largest bounding box first; ties keep detection order"""
    return sorted(faces, key=lambda face: face.bounding_box.area, reverse=True)


def pair_faces(faces: Sequence[DetectedFace]) -> Optional[FacePair]:
    if len(faces) != EXPECTED_FACE_COUNT:
        return None
    larger, smaller = sort_by_area(faces)
    return FacePair(selfie=larger, document=smaller)


def crop_box(box: BoundingBox, image_width: int, image_height: int, padding: float = 0.0) -> CropRect:
    """
    Axis-aligned crop rectangle for ``box`` clamped to the image.

    ``padding`` grows width and height by that fraction, split evenly on
    both sides of the box.
    """
    expanded_width = box.width * (1 + padding)
    expanded_height = box.height * (1 + padding)

    left = max(0, math.floor(box.x - (expanded_width - box.width) / 2))
    top = max(0, math.floor(box.y - (expanded_height - box.height) / 2))
    width = min(image_width - left, math.ceil(expanded_width))
    height = min(image_height - top, math.ceil(expanded_height))
    return CropRect(left=left, top=top, width=max(0, width), height=max(0, height))


def crop_face_pair(image_bytes: bytes, pair: FacePair) -> Tuple[bytes, bytes]:
    """
    Crop both faces of ``pair`` without padding.

    Returns (selfie_jpeg, document_jpeg). Raises ``ImageProcessingError``
    when the image cannot be decoded or a crop is empty.
    """
    width, height = imaging.image_size(image_bytes)
    selfie_rect = crop_box(pair.selfie.bounding_box, width, height)
    document_rect = crop_box(pair.document.bounding_box, width, height)
    return imaging.crop(image_bytes, selfie_rect), imaging.crop(image_bytes, document_rect)
