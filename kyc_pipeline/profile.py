"""
Rules for writing recognized document data back into a profile.

Profile fields are only filled when empty. The one exception is the
birthday taken from a passport during selfie verification, which replaces
a stored value that differs (see ``birthday_update``).
"""

from typing import Any, Dict, Mapping, Optional

from .schemas import Profile, RecognizedDocumentData

# Document fields that go to the profile's top-level columns
PROFILE_FIELDS = ("full_name", "birthday", "sex")

# Document fields kept in the free-form ``data_in`` map, under camelCase keys
DATA_IN_FIELDS = {
    "passport_series": "passportSeries",
    "passport_number": "passportNumber",
    "passport_issue_date": "passportIssueDate",
    "passport_issued_by": "passportIssuedBy",
    "registration_address": "registrationAddress",
}


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def merge_if_absent(existing: Optional[Mapping[str, Any]], incoming: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``existing`` with keys from ``incoming`` added where they are missing or blank"""
    merged = dict(existing or {})
    for key, value in incoming.items():
        if _is_empty(value):
            continue
        if _is_empty(merged.get(key)):
            merged[key] = value
    return merged


def birthday_update(stored: Optional[str], extracted: Optional[str]) -> Optional[str]:
    """
    New birthday to write, or None.

    Unlike every other field, a birthday read from the passport overwrites a
    stored one whenever the two differ.
    """
    if _is_empty(extracted):
        return None
    extracted = extracted.strip()
    if _is_empty(stored) or str(stored) != extracted:
        return extracted
    return None


def resolve_profile_name(profile: Profile) -> str:
    """Name to compare against the document: full name on file, else built from ``data_in`` parts"""
    full_name = (profile.full_name or "").strip()
    if full_name:
        return full_name
    data_in = profile.data_in or {}
    first_name = data_in.get("firstName") or ""
    last_name = data_in.get("lastName") or ""
    middle_name = data_in.get("middleName") or ""
    if not (first_name or last_name):
        return ""
    return " ".join(part for part in (last_name, first_name, middle_name) if part).strip()


def document_profile_update(profile: Profile, recognized: RecognizedDocumentData) -> Dict[str, Any]:
    """Partial profile update filling only empty fields from a recognized document"""
    update: Dict[str, Any] = {}
    current = profile.model_dump()
    for field in PROFILE_FIELDS:
        value = getattr(recognized, field)
        if not _is_empty(value) and _is_empty(current.get(field)):
            update[field] = value

    passport_data = {
        key: getattr(recognized, field)
        for field, key in DATA_IN_FIELDS.items()
        if not _is_empty(getattr(recognized, field))
    }
    merged = merge_if_absent(profile.data_in, passport_data)
    if merged != (profile.data_in or {}):
        update["data_in"] = merged
    return update
