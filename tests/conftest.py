import asyncio
from datetime import datetime, timezone

import pytest

from chunked_upload.models.errors import ControlPlaneError, TransientTransportError
from chunked_upload.models.upload_models import CompletedPart, FileKind, UploadSession
from chunked_upload.services.chunk_planner import CHUNK_SIZE
from chunked_upload.services.control_plane import ControlPlaneClient
from chunked_upload.services.orchestrator import UploadOrchestrator
from chunked_upload.services.retrying_uploader import RetryingPartUploader
from chunked_upload.services.session_store import FileSessionStateStore

MIB = 1024 * 1024
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeControlPlane(ControlPlaneClient):
    def __init__(self):
        self.calls = []
        self.completed_with = None
        self.complete_error = None
        self.abort_error = None
        self.initiate_error = None
        # Set initiate_gate to hold initiate open until the test releases it
        self.initiate_gate = None
        self.initiate_entered = asyncio.Event()

    async def initiate(self, kind, file_size, content_type, file_name=None):
        self.calls.append(("initiate", kind, file_size, content_type))
        self.initiate_entered.set()
        if self.initiate_gate is not None:
            await self.initiate_gate.wait()
        if self.initiate_error:
            raise self.initiate_error
        return "upload-1", "videos/user-1/1700000000000-abc.mp4"

    async def get_part_destination(self, session_id, object_key, part_number):
        self.calls.append(("getPartUrl", part_number))
        return f"https://storage.test/{object_key}?partNumber={part_number}"

    async def complete(self, session_id, object_key, parts):
        self.calls.append(("complete", [p.part_number for p in parts]))
        if self.complete_error:
            raise self.complete_error
        self.completed_with = list(parts)
        return object_key

    async def abort(self, session_id, object_key):
        self.calls.append(("abort", session_id))
        if self.abort_error:
            raise self.abort_error

    def part_urls_requested(self):
        return [c[1] for c in self.calls if c[0] == "getPartUrl"]


class FakeTransport:
    """Stands in for PartTransport; fails or hangs on chosen parts."""

    def __init__(self):
        self.puts = []
        self.failures = {}
        self.hang_on_part = None
        self.entered_hang = asyncio.Event()

    async def put(self, destination_url, data, content_type, cancel_token=None):
        part_number = int(destination_url.rsplit("=", 1)[1])
        self.puts.append((part_number, len(data)))
        if self.failures.get(part_number, 0) > 0:
            self.failures[part_number] -= 1
            raise TransientTransportError("Chunk upload failed with status 503", status_code=503)
        if part_number == self.hang_on_part:
            self.entered_hang.set()
            await cancel_token.run(asyncio.Event().wait())
        return f"etag-{part_number}"

    def parts_put(self):
        return [p for p, _ in self.puts]


class RecordingStore(FileSessionStateStore):
    def __init__(self, directory, **kwargs):
        super().__init__(directory, **kwargs)
        self.saves = []

    def save(self, logical_id, session):
        self.saves.append([p.part_number for p in session.completed_parts])
        super().save(logical_id, session)


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def control_plane():
    return FakeControlPlane()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def store(tmp_path):
    return RecordingStore(tmp_path / "upload_states", clock=lambda: NOW)


@pytest.fixture
def orchestrator(control_plane, transport, store, fake_sleep):
    uploader = RetryingPartUploader(transport, sleep=fake_sleep)
    return UploadOrchestrator(control_plane, uploader, store, clock=lambda: NOW)


@pytest.fixture
def make_file(tmp_path):
    def _make(size, name="video.mp4"):
        path = tmp_path / name
        with open(path, "wb") as f:
            f.truncate(size)
        return path

    return _make


@pytest.fixture
def make_session():
    def _make(source_ref, file_size, completed=(), created_at=NOW, **overrides):
        total_parts = -(-file_size // CHUNK_SIZE)
        fields = dict(
            session_id="upload-1",
            object_key="videos/user-1/1700000000000-abc.mp4",
            source_ref=str(source_ref),
            file_size=file_size,
            content_type="video/mp4",
            kind=FileKind.VIDEO,
            total_parts=total_parts,
            completed_parts=tuple(CompletedPart(part_number=n, integrity_tag=f"etag-{n}") for n in completed),
            created_at=created_at,
        )
        fields.update(overrides)
        return UploadSession(**fields)

    return _make


@pytest.fixture
def server_error():
    return ControlPlaneError("Multipart upload operation failed: boom", code="SERVER_ERROR", status_code=500)
