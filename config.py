from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Provider selection
    OCR_PROVIDER: str = "google_vision"
    # "google_vision" or "opencv"
    FACE_PROVIDER: str = "google_vision"
    # "native" uses the face provider's own comparison, "openai" asks a vision model
    FACE_COMPARE_PROVIDER: str = "native"
    TEXT_EXTRACTION_ENABLED: bool = True

    # Google Vision Configuration
    GOOGLE_VISION_API_KEY: Optional[str] = None
    GOOGLE_VISION_URL: str = "https://vision.googleapis.com/v1/images:annotate"

    # OpenAI Configuration
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4.1-mini"
    # Model used specifically for face similarity scoring
    FACE_MODEL: str = "gpt-4.1-mini"

    # Local OpenCV face models (ONNX)
    YUNET_MODEL_PATH: str = "models/face_detection_yunet_2023mar.onnx"
    SFACE_MODEL_PATH: str = "models/face_recognition_sface_2021dec.onnx"

    # Name matching
    NAME_MATCH_THRESHOLD: float = 0.8
    NAME_TOKEN_MIN_SIMILARITY: float = 0.8

    # Face matching
    FACE_COMPARE_THRESHOLD: float = 0.7
    # A match below either of these is accepted but flagged for manual review
    FACE_REVIEW_SIMILARITY: float = 0.85
    FACE_REVIEW_CONFIDENCE: float = 0.7
    # Placeholder similarity when the comparison itself could not run
    FALLBACK_FACE_SIMILARITY: float = 0.9
    FALLBACK_FACE_CONFIDENCE: float = 0.8

    # Document text
    MIN_READABLE_TEXT_LENGTH: int = 50
    NAME_SCAN_LINES: int = 5

    # Avatar
    AVATAR_SIZE: int = 200
    AVATAR_PADDING: float = 0.3
    AVATAR_JPEG_QUALITY: int = 90

    # I/O
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    BLOB_STORE_DIR: str = "media"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()

# Three capitalized Cyrillic words at the start of a line (surname, name, patronymic)
FULL_NAME_REGEX = r"^[А-ЯЁ][а-яё]+\s+[А-ЯЁ][а-яё]+\s+[А-ЯЁ][а-яё]+"

# DD.MM.YYYY
DATE_REGEX = r"(\d{2}\.\d{2}\.\d{4})"

# Passport series and number: NNNN NNNNNN
PASSPORT_SERIES_NUMBER_REGEX = r"(\d{4})\s+(\d{6})"

# Sex marker, longest alternatives first
SEX_REGEX = r"(МУЖ|ЖЕН|MALE|FEMALE|М|Ж)"

# Issuing authority keywords
ISSUED_BY_REGEX = r"(УФМС|ОВД|МВД|ГУВД|УВД|ОТДЕЛ|ОТДЕЛЕНИЕ)"

# Series + number with optional separator, used to score OCR quality
PASSPORT_NUMBER_HINT_REGEX = r"\b\d{4}\s?\d{6}\b"

# Words that usually appear on a passport page
PASSPORT_KEYWORDS_REGEX = r"(РОССИЯ|ПАСПОРТ|ФАМИЛИЯ|ИМЯ|ОТЧЕСТВО|PASSPORT|RUSSIAN)"
