import re
from typing import Optional

from rapidfuzz.distance import Levenshtein

from config import settings

_whitespace_re = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    """Trim, uppercase, collapse whitespace and fold Ё into Е"""
    if not name:
        return ""
    normalized = _whitespace_re.sub(" ", name.strip().upper())
    return normalized.replace("Ё", "Е").replace("ё", "е")


def levenshtein_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - distance / max length, on a 0..1 scale; two empty strings are identical"""
    return Levenshtein.normalized_similarity(a, b)


def name_similarity(first: Optional[str], second: Optional[str],
                    token_threshold: Optional[float] = None) -> float:
    """
    Position-sensitive similarity between two names.

    Equal normalized strings score 1.0. With the same number of words each
    position scores 1 for an exact match, or its edit similarity when that
    is above ``token_threshold``, else 0; the result is the mean. With
    different word counts the whole strings are compared by edit similarity.
    Swapped name parts are not realigned.
    """
    if token_threshold is None:
        token_threshold = settings.NAME_TOKEN_MIN_SIMILARITY

    a = normalize_name(first)
    b = normalize_name(second)
    if a == b:
        return 1.0

    words_a = a.split(" ")
    words_b = b.split(" ")
    if len(words_a) != len(words_b):
        return levenshtein_similarity(a, b)

    points = 0.0
    for word_a, word_b in zip(words_a, words_b):
        if word_a == word_b:
            points += 1
            continue
        similarity = levenshtein_similarity(word_a, word_b)
        if similarity > token_threshold:
            points += similarity
    return points / len(words_a)


def names_match(first: Optional[str], second: Optional[str],
                threshold: Optional[float] = None) -> bool:
    if threshold is None:
        threshold = settings.NAME_MATCH_THRESHOLD
    return name_similarity(first, second) >= threshold
