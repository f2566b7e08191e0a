"""Tests for the local stores and the file library rules."""

import json

import pytest

from audit_core.storage import (
    DeletionError,
    FileLibrary,
    FileNotFound,
    FileRecord,
    ListingError,
    LocalBlobStore,
    LocalDocumentStore,
    UploadError,
    UploadValidationError,
)

CSV = b"uuid,action\ne1,create\n"


class RecordingBlobs:
    def __init__(self, fail_upload=False, fail_delete=False):
        self.calls = []
        self.fail_upload = fail_upload
        self.fail_delete = fail_delete

    def upload(self, path, data, on_progress=None):
        self.calls.append(("upload", path))
        if self.fail_upload:
            raise OSError("network down")
        return f"http://blobs/{path}"

    def delete(self, path):
        self.calls.append(("delete", path))
        if self.fail_delete:
            raise OSError("still down")
        return True

    def open(self, path):
        raise FileNotFoundError(path)


class RecordingStore:
    def __init__(self, fail_create=False):
        self.calls = []
        self.fail_create = fail_create

    def create(self, record):
        self.calls.append("create")
        if self.fail_create:
            raise OSError("db down")
        record.id = "doc1"
        return record

    def list(self):
        raise OSError("db down")

    def get(self, record_id):
        return None

    def delete(self, record_id):
        self.calls.append("delete")


def test_upload_and_list(library):
    progress = []
    record = library.upload("INC-1", "log.csv", CSV, on_progress=progress.append)
    assert record.id
    assert record.storage_path.startswith("uploads/")
    assert record.storage_path.endswith("_log.csv")
    assert record.download_url == f"http://testserver/blobs/{record.storage_path}"
    assert record.size == len(CSV)
    assert progress[0] == 0.0
    assert progress[-1] == 1.0
    assert progress == sorted(progress)

    listed = library.list_files()
    assert [r.id for r in listed] == [record.id]
    assert library.read_content(library.get_file(record.id)) == CSV


def test_list_is_newest_first(tmp_path):
    store = LocalDocumentStore(tmp_path)
    store.create(FileRecord(name="a.csv", ticket_name="A", storage_path="p/a", uploaded_at="2024-01-01T00:00:00+00:00"))
    store.create(FileRecord(name="b.csv", ticket_name="B", storage_path="p/b", uploaded_at="2024-02-01T00:00:00+00:00"))
    assert [r.name for r in store.list()] == ["b.csv", "a.csv"]
    raw = json.loads((tmp_path / "saved_files.json").read_text(encoding="utf-8"))
    assert len(raw) == 2


def test_record_from_camel_case():
    record = FileRecord.from_dict(
        {"name": "x.csv", "ticketName": "T", "storagePath": "uploads/1_x.csv", "downloadURL": "u", "uploadedAt": "2024"},
        record_id="r1",
    )
    assert (record.id, record.ticket_name, record.storage_path, record.download_url) == ("r1", "T", "uploads/1_x.csv", "u")


@pytest.mark.parametrize(
    "ticket,filename,data,message",
    [
        ("  ", "log.csv", CSV, "Ticket name cannot be empty."),
        ("T", None, CSV, "Please provide a ticket name and select a file."),
        ("T", "log.csv", None, "Please provide a ticket name and select a file."),
        ("T", "log.txt", CSV, "Please upload a .csv file."),
    ],
)
def test_validation_happens_before_any_store_call(ticket, filename, data, message):
    blobs, store = RecordingBlobs(), RecordingStore()
    lib = FileLibrary(store, blobs)
    with pytest.raises(UploadValidationError, match=message):
        lib.upload(ticket, filename, data, content_type="text/plain")
    assert blobs.calls == []
    assert store.calls == []


def test_failed_upload_cleans_up_and_swallows_cleanup_error():
    blobs = RecordingBlobs(fail_upload=True, fail_delete=True)
    store = RecordingStore()
    lib = FileLibrary(store, blobs)
    with pytest.raises(UploadError, match="File upload failed. Please try again."):
        lib.upload("T", "log.csv", CSV)
    assert [c[0] for c in blobs.calls] == ["upload", "delete"]
    assert store.calls == []


def test_metadata_failure_is_reported():
    lib = FileLibrary(RecordingStore(fail_create=True), RecordingBlobs())
    with pytest.raises(UploadError, match="failed to save metadata"):
        lib.upload("T", "log.csv", CSV)


def test_listing_failure():
    lib = FileLibrary(RecordingStore(), RecordingBlobs())
    with pytest.raises(ListingError):
        lib.list_files()


def test_missing_record_and_content(library):
    with pytest.raises(FileNotFound, match="File not found in database."):
        library.get_file("nope")
    record = library.upload("T", "log.csv", CSV)
    library.blobs.resolve(record.storage_path).unlink()
    with pytest.raises(FileNotFound, match="File content is missing from storage."):
        library.read_content(record)


def test_delete_removes_blob_then_record(library):
    record = library.upload("T", "log.csv", CSV)
    blob_path = library.blobs.resolve(record.storage_path)
    library.delete_file(record.id, record.storage_path)
    assert not blob_path.exists()
    assert library.store.get(record.id) is None


def test_delete_tolerates_missing_blob(library):
    record = library.upload("T", "log.csv", CSV)
    library.blobs.resolve(record.storage_path).unlink()
    library.delete_file(record.id)
    assert library.list_files() == []


def test_delete_failure_is_wrapped():
    class BrokenBlobs(RecordingBlobs):
        def delete(self, path):
            raise OSError("boom")

    lib = FileLibrary(RecordingStore(), BrokenBlobs())
    with pytest.raises(DeletionError, match="Could not complete the deletion."):
        lib.delete_file("doc1", "uploads/x.csv")


def test_blob_upload_resumes_from_part_file(tmp_path):
    blobs = LocalBlobStore(tmp_path, "http://h", chunk_size=4)
    data = b"0123456789"
    target = blobs.resolve("uploads/x.csv")
    target.parent.mkdir(parents=True)
    target.with_name("x.csv.part").write_bytes(data[:6])

    progress = []
    url = blobs.upload("uploads/x.csv", data, progress.append, resume=True)
    assert url == "http://h/blobs/uploads/x.csv"
    assert target.read_bytes() == data
    assert progress[0] == pytest.approx(0.6)
    assert progress[-1] == 1.0
    assert not target.with_name("x.csv.part").exists()


def test_blob_paths_cannot_escape_root(tmp_path):
    blobs = LocalBlobStore(tmp_path / "blobs")
    with pytest.raises(ValueError):
        blobs.resolve("../outside.csv")
    assert blobs.delete("uploads/missing.csv") is False
