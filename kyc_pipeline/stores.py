import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .schemas import Profile, StoredMedia
from .utils import get_file_extension


class StorageError(Exception):
    """Exception raised when blob or profile storage cannot serve a request."""
    pass


class ProfileNotFound(StorageError):
    pass


class InMemoryBlobStore:
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._media: Dict[str, StoredMedia] = {}

    def get(self, ref: str) -> bytes:
        try:
            return self._blobs[ref]
        except KeyError:
            raise StorageError(f"Media not found: {ref}")

    def put(self, data: bytes, filename: str, content_type: str = "image/jpeg",
            owner_ref: Optional[str] = None, uploader_ref: Optional[str] = None) -> StoredMedia:
        ref = uuid.uuid4().hex
        self._blobs[ref] = bytes(data)
        media = StoredMedia(ref=ref, filename=filename, content_type=content_type, size=len(data),
                            owner_ref=owner_ref, uploader_ref=uploader_ref)
        self._media[ref] = media
        return media

    def metadata(self, ref: str) -> Optional[StoredMedia]:
        return self._media.get(ref)


class LocalBlobStore:
    """
    Stores blobs as files under ``directory``; the ref is the file name.
    """

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, ref: str) -> str:
        # refs are generated here; reject anything that could escape the directory
        if os.path.basename(ref) != ref:
            raise StorageError(f"Invalid media ref: {ref}")
        return os.path.join(self.directory, ref)

    def get(self, ref: str) -> bytes:
        path = self._path(ref)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read media {ref}: {e}")

    def put(self, data: bytes, filename: str, content_type: str = "image/jpeg",
            owner_ref: Optional[str] = None, uploader_ref: Optional[str] = None) -> StoredMedia:
        ref = f"{uuid.uuid4().hex}{get_file_extension(filename) or '.bin'}"
        try:
            with open(self._path(ref), "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write media {filename}: {e}")
        return StoredMedia(ref=ref, filename=filename, content_type=content_type, size=len(data),
                           owner_ref=owner_ref, uploader_ref=uploader_ref)


class InMemoryProfileStore:
    """Last write wins; every update bumps ``version``."""

    def __init__(self, profiles: Optional[List[Profile]] = None):
        self._profiles: Dict[str, Profile] = {p.ref: p for p in profiles or []}

    def add(self, profile: Profile) -> Profile:
        self._profiles[profile.ref] = profile
        return profile

    def find_by_ref(self, ref: str) -> Optional[Profile]:
        return self._profiles.get(ref)

    def update(self, ref: str, fields: Dict[str, Any]) -> Profile:
        current = self._profiles.get(ref)
        if current is None:
            raise ProfileNotFound(f"Profile not found: {ref}")
        unknown = set(fields) - set(Profile.model_fields) - {"version"}
        if unknown:
            raise StorageError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        updated = current.model_copy(update={**fields, "version": current.version + 1})
        self._profiles[ref] = updated
        return updated


class InMemoryAuditJournal:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def append(self, event_type: str, subject_ref: Optional[str], payload: Dict[str, Any]) -> None:
        self.events.append({
            "type": event_type,
            "subject": subject_ref,
            "payload": payload,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })


class LoggingAuditJournal:
    """Journal that writes events to the ``kyc_pipeline.audit`` logger."""

    def __init__(self, logger_name: str = "kyc_pipeline.audit"):
        self._logger = logging.getLogger(logger_name)

    def append(self, event_type: str, subject_ref: Optional[str], payload: Dict[str, Any]) -> None:
        self._logger.info("%s subject=%s payload=%s", event_type, subject_ref, payload)
