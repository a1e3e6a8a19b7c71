"""Shared pytest fixtures for all tests."""

import io
import os
import tempfile
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Settings are read at import time; point them at throwaway values first.
_TMP_DIR = tempfile.mkdtemp(prefix="transfers-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(_TMP_DIR) / 'app.db'}")
os.environ.setdefault("JWT_SECRET", "test-secret-test-secret-test-secret!")
os.environ.setdefault("FRONTEND_URL", "https://share.example.test/")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from archive import ArchiveAssembler  # noqa: E402
from database import init_database  # noqa: E402
from document_store import DocumentStore, TransferRepository  # noqa: E402
from exceptions import NotFound, ProviderFailure  # noqa: E402
from grants import GrantIssuer  # noqa: E402
from storage import GrantOperation  # noqa: E402
from transfers import TransferManager, TransferSettings  # noqa: E402


class FakeClock:
    """Settable clock; starts at a fixed instant."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeBody(io.BytesIO):
    """Streaming body that reports when it is closed."""

    def __init__(self, data: bytes, storage: "FakeStorage", key: str):
        super().__init__(data)
        self._storage = storage
        self._key = key

    def close(self):
        if not self.closed:
            self._storage._closed(self._key)
        super().close()


class FailingBody(FakeBody):
    """Yields its first chunk, then fails like a dropped connection."""

    def __init__(self, data: bytes, storage: "FakeStorage", key: str):
        super().__init__(data, storage, key)
        self._reads = 0

    def read(self, size=-1):
        self._reads += 1
        if self._reads > 1:
            raise ConnectionResetError("connection reset by peer")
        return super().read(size)


class FakeStorage:
    """In-memory stand-in for StorageBackend."""

    def __init__(self):
        self.objects = {}
        self.open_delays = {}
        self.fail_grants_for = set()
        self.broken_reads = set()
        self.unavailable = set()
        self.grant_calls = []
        self.open_calls = []
        self.open_handles = 0
        self.max_open_handles = 0
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes) -> None:
        self.objects[key] = data

    def issue_grant(self, key, operation, expires_in, content_type=None, download_name=None):
        self.grant_calls.append((key, operation, expires_in, content_type, download_name))
        if key in self.fail_grants_for:
            raise ProviderFailure("object-store", f"presign refused for {key}")
        verb = "PUT" if operation == GrantOperation.WRITE else "GET"
        return f"https://bucket.test/{key}?verb={verb}&expires={expires_in}"

    def open_read_stream(self, key: str):
        self.open_calls.append(key)
        delay = self.open_delays.get(key)
        if delay:
            time.sleep(delay)
        if key in self.unavailable:
            raise ProviderFailure("object-store", "service unavailable", status=503)
        if key not in self.objects:
            raise NotFound(f"Object not found: {key}")
        body_cls = FailingBody if key in self.broken_reads else FakeBody
        with self._lock:
            self.open_handles += 1
            self.max_open_handles = max(self.max_open_handles, self.open_handles)
        return body_cls(self.objects[key], self, key)

    def _closed(self, key: str) -> None:
        with self._lock:
            self.open_handles -= 1

    def get_health(self) -> dict:
        return {"status": "healthy", "bucket": "test"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def document_store(tmp_path):
    """
    SQLite-backed document store in a per-test database file.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'documents.db'}", connect_args={"check_same_thread": False})
    init_database(bind=engine)
    yield DocumentStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


@pytest.fixture
def repository(document_store):
    return TransferRepository(document_store)


@pytest.fixture
def settings():
    return TransferSettings(
        upload_grant_ttl=timedelta(minutes=15),
        share_ttl=timedelta(hours=24),
        download_grant_ttl=timedelta(minutes=10),
        frontend_url="https://share.example.test/",
    )


@pytest.fixture
def manager(repository, fake_storage, settings, clock):
    return TransferManager(
        repository=repository,
        grants=GrantIssuer(fake_storage, clock=clock),
        assembler=ArchiveAssembler(fake_storage, prefetch=2, chunk_size=4),
        settings=settings,
        clock=clock,
    )
