import pytest

from audit_core.data import load_csv_text
from audit_core.storage import FileLibrary, LocalBlobStore, LocalDocumentStore

SAMPLE_CSV = """uuid,action,created_timestamp,payload,difference_list
e1,create,2024-03-05T15:04:05Z,"{""uuid"":""e1"",""status"":""open""}",
e1,update,2024-03-06T10:00:00Z,"{""uuid"":""e1"",""status"":""closed""}","[{""field"":""status"",""oldValue"":""open"",""newValue"":""closed""}]"
e2,delete,not a date,,NULL
e1,update,2024-03-04T08:00:00Z,,"[{""field"":""owner"",""oldValue"":null,""newValue"":""ana""}]"
e3,create,2024-03-07T00:00:00Z,"[{""id"":""e3"",""n"":1},{""n"":2}]",
"""


@pytest.fixture
def sample_csv() -> str:
    return SAMPLE_CSV


@pytest.fixture
def parsed_log(sample_csv):
    return load_csv_text(sample_csv)


@pytest.fixture
def library(tmp_path) -> FileLibrary:
    store = LocalDocumentStore(tmp_path / "documents", "saved_files")
    blobs = LocalBlobStore(tmp_path / "blobs", "http://testserver", chunk_size=16)
    return FileLibrary(store, blobs, "uploads")
