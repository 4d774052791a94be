import logging
import time
from typing import Any, Dict, Optional, Tuple

from openai import OpenAI

from config import Settings, settings

from . import imaging
from .avatar import AvatarExtractor
from .decision import DecisionEngine
from .extractor import OpenAITextExtractor
from .face_match import OpenAIFaceComparer
from .interfaces import AuditJournal, BlobStore, FaceAnalyzer, ProfileStore, TextDetector, TextExtractor
from .normalization import SelfieNormalizer
from .opencv_faces import OpenCVFaceAnalyzer
from .stores import InMemoryProfileStore, LocalBlobStore, LoggingAuditJournal
from .utils import guess_content_type
from .vision import GoogleVisionProvider

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_providers(config: Optional[Settings] = None) -> Tuple[TextDetector, FaceAnalyzer, Optional[TextExtractor]]:
    """
    Instantiate the text detector, face analyzer and optional text extractor
    selected by ``OCR_PROVIDER``, ``FACE_PROVIDER``, ``FACE_COMPARE_PROVIDER``
    and ``TEXT_EXTRACTION_ENABLED``.
    """
    config = config or settings
    vision = None

    def google_vision() -> GoogleVisionProvider:
        nonlocal vision
        if vision is None:
            vision = GoogleVisionProvider(api_key=config.GOOGLE_VISION_API_KEY,
                                          timeout=config.PROVIDER_TIMEOUT_SECONDS,
                                          url=config.GOOGLE_VISION_URL)
        return vision

    if config.OCR_PROVIDER == "google_vision":
        text_detector = google_vision()
    else:
        raise ValueError(f"Unknown OCR provider: {config.OCR_PROVIDER}")

    if config.FACE_PROVIDER == "google_vision":
        face_analyzer = google_vision()
    elif config.FACE_PROVIDER == "opencv":
        face_analyzer = OpenCVFaceAnalyzer(config.YUNET_MODEL_PATH, config.SFACE_MODEL_PATH)
    else:
        raise ValueError(f"Unknown face provider: {config.FACE_PROVIDER}")

    openai_client = OpenAI(api_key=config.OPENAI_API_KEY) if config.OPENAI_API_KEY else None

    if config.FACE_COMPARE_PROVIDER == "openai":
        if openai_client is None:
            raise ValueError("OPENAI_API_KEY is required for OpenAI face comparison")
        face_analyzer = OpenAIFaceComparer(face_analyzer, client=openai_client, model=config.FACE_MODEL)
    elif config.FACE_COMPARE_PROVIDER != "native":
        raise ValueError(f"Unknown face comparison provider: {config.FACE_COMPARE_PROVIDER}")

    text_extractor = None
    if config.TEXT_EXTRACTION_ENABLED:
        if openai_client is not None:
            text_extractor = OpenAITextExtractor(client=openai_client, model=config.OPENAI_MODEL)
        else:
            logger.info("Text extraction enabled but OPENAI_API_KEY is not set; using the regex parser only")

    return text_detector, face_analyzer, text_extractor


def build_engine(config: Optional[Settings] = None,
                 blob_store: Optional[BlobStore] = None,
                 profile_store: Optional[ProfileStore] = None,
                 journal: Optional[AuditJournal] = None) -> DecisionEngine:
    """Wire a DecisionEngine from settings; stores default to local disk, memory and the log"""
    config = config or settings
    text_detector, face_analyzer, text_extractor = build_providers(config)
    return DecisionEngine(
        text_detector=text_detector,
        face_analyzer=face_analyzer,
        blob_store=blob_store or LocalBlobStore(config.BLOB_STORE_DIR),
        profile_store=profile_store or InMemoryProfileStore(),
        journal=journal or LoggingAuditJournal(),
        text_extractor=text_extractor,
        config=config,
    )


def build_avatar_extractor(engine: DecisionEngine, config: Optional[Settings] = None) -> AvatarExtractor:
    return AvatarExtractor(engine.face_analyzer, engine.blob_store, config=config)


def run_verification(selfie_ref: str,
                     profile_ref: str,
                     engine: DecisionEngine,
                     avatar_extractor: Optional[AvatarExtractor] = None,
                     uploader_ref: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify a stored passport selfie against a profile.

    Args:
        selfie_ref: blob store reference of the selfie
        profile_ref: reference of the profile being verified
        engine: configured DecisionEngine
        avatar_extractor: when given, an avatar is cut from the selfie
            whenever at least one face was detected, whatever the verdict

    Returns:
        The camelCase verification result with ``pipeline_metadata`` added
    """
    started = time.monotonic()
    result = engine.verify(selfie_ref, profile_ref)

    avatar_attempted = avatar_extractor is not None and result.details.faces_detected_in_selfie >= 1
    if avatar_attempted:
        media = avatar_extractor.extract(selfie_ref, profile_ref, uploader_ref=uploader_ref)
        if media is not None:
            result = result.model_copy(update={"avatar_media": media})

    response = result.to_dict()
    response["pipeline_metadata"] = {
        "selfie_ref": selfie_ref,
        "profile_ref": profile_ref,
        "avatar_attempted": avatar_attempted,
        "avatar_extracted": result.avatar_media is not None,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }
    return response


def process_selfie_upload(image_bytes: bytes,
                          filename: str,
                          content_type: Optional[str],
                          profile_ref: str,
                          engine: DecisionEngine,
                          avatar_extractor: Optional[AvatarExtractor] = None,
                          uploader_ref: Optional[str] = None) -> Dict[str, Any]:
    """
    Normalize an uploaded selfie (EXIF rotation, mirror fix), store it for
    the profile and run the verification on the stored copy.

    A missing ``content_type`` is derived from the file name. Formats that
    cannot be written back (HEIC) are stored as the JPEG the normalizer made.
    """
    content_type = content_type or guess_content_type(filename)
    if content_type not in imaging.SAVE_FORMATS:
        content_type = "image/jpeg"
    normalization = SelfieNormalizer(engine.text_detector, timeout=engine.timeout).normalize(image_bytes, content_type)
    logger.info("Selfie normalization for profile %s: %s (mirrored=%s, scores=%s)",
                profile_ref, normalization.decision, normalization.was_mirrored, normalization.scores)

    media = engine.blob_store.put(normalization.image_bytes, filename, content_type=content_type,
                                  owner_ref=profile_ref, uploader_ref=uploader_ref)
    response = run_verification(media.ref, profile_ref, engine,
                                avatar_extractor=avatar_extractor, uploader_ref=uploader_ref)
    response["pipeline_metadata"]["normalization"] = {
        "decision": normalization.decision,
        "was_mirrored": normalization.was_mirrored,
        "scores": normalization.scores,
    }
    response["selfieMedia"] = media.to_dict()
    return response
