"""
Structured field extraction from raw passport OCR text.

Each field has its own rule: a pure function taking the list of trimmed,
non-empty lines and returning the fields it found (possibly none). Rules
scan independently from the top, so a line can feed several rules. Rule
order only matters for readability; no rule depends on another.

The date rule is positional: the first date seen is taken as the birthday
and the second as the issue date. Documents that print dates in another
order will be mis-assigned.
"""

import re
from typing import Callable, Dict, List, Sequence, Tuple

from config import (
    DATE_REGEX, FULL_NAME_REGEX, ISSUED_BY_REGEX, PASSPORT_KEYWORDS_REGEX,
    PASSPORT_NUMBER_HINT_REGEX, PASSPORT_SERIES_NUMBER_REGEX, SEX_REGEX, settings,
)

from .schemas import OcrResult, RecognizedDocumentData

_full_name_re = re.compile(FULL_NAME_REGEX, re.IGNORECASE)
_date_re = re.compile(DATE_REGEX)
_series_number_re = re.compile(PASSPORT_SERIES_NUMBER_REGEX)
_sex_re = re.compile(r"\b" + SEX_REGEX + r"\b", re.IGNORECASE)
_issued_by_re = re.compile(ISSUED_BY_REGEX, re.IGNORECASE)
_number_hint_re = re.compile(PASSPORT_NUMBER_HINT_REGEX)
_keywords_re = re.compile(PASSPORT_KEYWORDS_REGEX, re.IGNORECASE)
_letters_re = re.compile(r"[A-Za-zА-Яа-яЁё]")
_cyrillic_re = re.compile(r"[А-Яа-яЁё]")

SEX_VALUES = {
    "М": "M", "МУЖ": "M", "MALE": "M",
    "Ж": "F", "ЖЕН": "F", "FEMALE": "F",
}

FieldRule = Callable[[Sequence[str]], Dict[str, str]]


def split_lines(text: str) -> List[str]:
    return [line.strip() for line in (text or "").split("\n") if line.strip()]


def extract_full_name(lines: Sequence[str]) -> Dict[str, str]:
    """Full name: first of the leading ``NAME_SCAN_LINES`` lines starting with three Cyrillic words.

    The whole line is kept, not only the matched words.
    """
    for line in lines[:settings.NAME_SCAN_LINES]:
        if _full_name_re.match(line):
            return {"full_name": line}
    return {}


def extract_dates(lines: Sequence[str]) -> Dict[str, str]:
    """Dates ``DD.MM.YYYY`` over all lines: first -> birthday, second -> issue date."""
    found = {}
    for line in lines:
        m = _date_re.search(line)
        if not m:
            continue
        if "birthday" not in found:
            found["birthday"] = m.group(1)
        elif "passport_issue_date" not in found:
            found["passport_issue_date"] = m.group(1)
            break
    return found


def extract_series_and_number(lines: Sequence[str]) -> Dict[str, str]:
    """Series and number ``NNNN NNNNNN`` over all lines, first match wins."""
    for line in lines:
        m = _series_number_re.search(line)
        if m:
            return {"passport_series": m.group(1), "passport_number": m.group(2)}
    return {}


def extract_sex(lines: Sequence[str]) -> Dict[str, str]:
    """Sex token (М, Ж, МУЖ, ЖЕН, MALE, FEMALE; any case) normalized to ``M``/``F``."""
    for line in lines:
        m = _sex_re.search(line)
        if m:
            return {"sex": SEX_VALUES[m.group(1).upper()]}
    return {}


def extract_issued_by(lines: Sequence[str]) -> Dict[str, str]:
    """Issuing authority: the first line mentioning УФМС/ОВД/МВД/..., kept verbatim."""
    for line in lines:
        if _issued_by_re.search(line):
            return {"passport_issued_by": line}
    return {}


FIELD_RULES: Tuple[FieldRule, ...] = (
    extract_full_name,
    extract_dates,
    extract_series_and_number,
    extract_sex,
    extract_issued_by,
)


def parse_document_text(text: str) -> RecognizedDocumentData:
    """Parse OCR text into document fields. Missing patterns leave fields unset."""
    lines = split_lines(text)
    fields: Dict[str, str] = {}
    for rule in FIELD_RULES:
        fields.update(rule(lines))
    return RecognizedDocumentData(**fields)


def has_passport_number(text: str) -> bool:
    return bool(_number_hint_re.search(text or ""))


def cyrillic_ratio(text: str) -> float:
    letters = _letters_re.findall(text or "")
    if not letters:
        return 0.0
    return len(_cyrillic_re.findall(text)) / len(letters)


def score_ocr_result(ocr: OcrResult) -> float:
    """Rough score of how passport-like and legible an OCR result is."""
    text = (ocr.full_text or "").strip()
    length_score = min(len(text), 2000) / 2000

    passport_bonus = 0.6 if has_passport_number(text) else 0.0
    date_bonus = 0.3 if re.search(r"\b\d{2}\.\d{2}\.\d{4}\b", text) else 0.0
    keyword_bonus = 0.2 if _keywords_re.search(text) else 0.0
    cyrillic_bonus = 0.1 if cyrillic_ratio(text) > 0.25 else 0.0

    return (ocr.confidence * 1.5 + length_score * 0.7
            + passport_bonus + date_bonus + keyword_bonus + cyrillic_bonus)
