import logging

import pytest

from kyc_pipeline.schemas import Profile
from kyc_pipeline.stores import (
    InMemoryAuditJournal, InMemoryBlobStore, InMemoryProfileStore, LocalBlobStore, LoggingAuditJournal,
    ProfileNotFound, StorageError,
)


def test_in_memory_blob_store():
    store = InMemoryBlobStore()
    media = store.put(b"abc", "a.jpg", owner_ref="p1")

    assert store.get(media.ref) == b"abc"
    assert media.size == 3
    assert store.metadata(media.ref) == media
    with pytest.raises(StorageError):
        store.get("missing")


def test_local_blob_store(tmp_path):
    store = LocalBlobStore(str(tmp_path / "media"))
    media = store.put(b"\xff\xd8data", "selfie.jpg")

    assert media.ref.endswith(".jpg")
    assert store.get(media.ref) == b"\xff\xd8data"
    assert (tmp_path / "media" / media.ref).exists()


def test_local_blob_store_rejects_paths(tmp_path):
    store = LocalBlobStore(str(tmp_path))

    with pytest.raises(StorageError):
        store.get("../etc/passwd")
    with pytest.raises(StorageError):
        store.get("absent.jpg")


def test_profile_update_bumps_version():
    store = InMemoryProfileStore([Profile(ref="p", full_name="A")])

    updated = store.update("p", {"birthday": "12.05.1990"})
    updated = store.update("p", {"birthday": "13.05.1990"})

    assert updated.birthday == "13.05.1990"
    assert updated.full_name == "A"
    assert updated.version == 2
    assert store.find_by_ref("p") == updated


def test_profile_update_errors():
    store = InMemoryProfileStore([Profile(ref="p")])

    with pytest.raises(ProfileNotFound):
        store.update("q", {"birthday": "x"})
    with pytest.raises(StorageError):
        store.update("p", {"shoe_size": 42})


def test_journals(caplog):
    journal = InMemoryAuditJournal()
    journal.append("EVENT", "p", {"k": 1})

    assert journal.events[0]["type"] == "EVENT"
    assert journal.events[0]["payload"] == {"k": 1}

    with caplog.at_level(logging.INFO, logger="kyc_pipeline.audit"):
        LoggingAuditJournal().append("EVENT", "p", {"k": 1})
    assert "EVENT subject=p" in caplog.text
