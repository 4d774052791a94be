import logging
from typing import Any, Optional

from openai import OpenAI

from config import settings

from .interfaces import ProviderError
from .schemas import PassportProfile
from .utils import safe_json_parse

logger = logging.getLogger(__name__)

PASSPORT_EXTRACTION_PROMPT = """
You are a passport data extraction system.

Below is raw OCR text recognized from a photo of a person holding the
main page of their passport. The text may contain noise, line breaks in
the middle of words and fragments of unrelated text.

Extract the passport holder's data.

Rules:
- fullName: surname, given name and patronymic in that order, as printed,
  separated by single spaces
- birthday: the date of birth in DD.MM.YYYY format
- DO NOT confuse the date of issue with the date of birth
- If a field is not present or not readable, return null
- DO NOT guess or hallucinate

Return STRICT JSON only.

Expected format:
{
  "fullName": "string or null",
  "birthday": "string or null"
}

OCR text:
"""


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class OpenAITextExtractor:
    """
    Extracts the holder's full name and birthday from raw passport OCR text
    using an OpenAI chat model.
    """

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None):
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise ValueError("OPENAI_API_KEY is required for text extraction")
            client = OpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client
        self.model = model or settings.OPENAI_MODEL

    def get_extraction_prompt(self, raw_text: str) -> str:
        return PASSPORT_EXTRACTION_PROMPT + raw_text

    def extract(self, raw_text: str) -> PassportProfile:
        """Extract {fullName, birthday}; blank values come back as None"""
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": self.get_extraction_prompt(raw_text)}],
            max_tokens=300,
            temperature=0
        )
        text = response.choices[0].message.content or ""
        logger.debug("Passport extraction output: %s", text)

        try:
            parsed = safe_json_parse(text)
        except ValueError as e:
            raise ProviderError(f"Passport extraction returned no usable JSON: {e}")

        return PassportProfile(
            full_name=_clean(parsed.get("fullName")),
            birthday=_clean(parsed.get("birthday")),
        )
