import logging
import time
from typing import Optional

from config import Settings, settings

from . import imaging
from .face_pairing import crop_box, sort_by_area
from .interfaces import BlobStore, FaceAnalyzer
from .schemas import StoredMedia
from .utils import call_with_timeout

logger = logging.getLogger(__name__)


class AvatarExtractor:
    """
    Cuts a square profile avatar around the largest face of a selfie.

    The largest face is the live person in a passport selfie. The box is grown
    by ``AVATAR_PADDING`` around its centre, clamped to the image, and
    cover-fitted into an ``AVATAR_SIZE`` square JPEG.
    """

    def __init__(self, face_analyzer: FaceAnalyzer, blob_store: BlobStore, config: Optional[Settings] = None):
        config = config or settings
        self.face_analyzer = face_analyzer
        self.blob_store = blob_store
        self.size = config.AVATAR_SIZE
        self.padding = config.AVATAR_PADDING
        self.quality = config.AVATAR_JPEG_QUALITY
        self.timeout = config.PROVIDER_TIMEOUT_SECONDS

    def extract(self, selfie_ref: str, profile_ref: str,
                uploader_ref: Optional[str] = None) -> Optional[StoredMedia]:
        """Store an avatar for ``profile_ref``; None when there is no face or anything fails"""
        try:
            image_bytes = self.blob_store.get(selfie_ref)
            faces = call_with_timeout(self.face_analyzer.detect_faces, self.timeout, image_bytes,
                                      action="face detection")
            if not faces:
                logger.warning("No faces found for avatar extraction in %s", selfie_ref)
                return None

            face = sort_by_area(faces)[0]
            width, height = imaging.image_size(image_bytes)
            rect = crop_box(face.bounding_box, width, height, padding=self.padding)
            avatar = imaging.crop_and_resize(image_bytes, rect, self.size, quality=self.quality)

            filename = f"avatar-{profile_ref}-{int(time.time() * 1000)}.jpg"
            media = self.blob_store.put(avatar, filename, content_type="image/jpeg",
                                        owner_ref=profile_ref, uploader_ref=uploader_ref)
        except Exception as e:
            logger.error("Avatar extraction failed for %s: %s", selfie_ref, e)
            return None

        logger.info("Avatar %s extracted from %s", media.ref, selfie_ref)
        return media
