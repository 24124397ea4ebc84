# services/orchestrator.py
"""Resumable chunked upload of one local file to remote object storage.

A run walks ``planning -> initiating|resuming -> transferring -> completing
-> done``. Cancellation during transfer goes through ``aborting`` to
``aborted``; any other error ends in ``failed``. Parts are uploaded strictly
one at a time in ascending order, and the session is saved to the store
after every completed part, so a crash loses at most the part in flight.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from chunked_upload.models.errors import (
    AuthenticationError,
    FinalizationError,
    ResumeMismatchError,
    UploadCancelledError,
    UploadValidationError,
)
from chunked_upload.models.upload_models import (
    CompletedPart,
    ProgressCallback,
    UploadOptions,
    UploadProgress,
    UploadResult,
    UploadSession,
    UploadState,
)
from chunked_upload.services.cancellation import CancelToken
from chunked_upload.services.chunk_planner import CHUNK_SIZE, ChunkPlan, plan
from chunked_upload.services.control_plane import ControlPlaneClient, HttpControlPlaneClient, TokenProvider
from chunked_upload.services.part_transport import PartTransport
from chunked_upload.services.policy import parse_kind, validate_file_for_upload
from chunked_upload.services.retrying_uploader import RetryingPartUploader
from chunked_upload.services.session_store import Clock, SessionStateStore, build_session_store, utcnow

logger = logging.getLogger(__name__)


class UploadController:
    """Handle returned by ``UploadOrchestrator.start``."""

    def __init__(self, run: "_UploadRun"):
        self._run = run
        self.result: asyncio.Task = asyncio.ensure_future(run.execute())

    def cancel(self) -> None:
        self._run.token.cancel()

    def current_state(self) -> Optional[UploadSession]:
        return self._run.session

    @property
    def state(self) -> UploadState:
        return self._run.state


class UploadOrchestrator:
    def __init__(
        self,
        control_plane: ControlPlaneClient,
        uploader: RetryingPartUploader,
        store: SessionStateStore,
        chunk_size: int = CHUNK_SIZE,
        clock: Clock = utcnow,
    ):
        self.control_plane = control_plane
        self.uploader = uploader
        self.store = store
        self.chunk_size = chunk_size
        self.clock = clock

    def start(self, source_ref, options: UploadOptions) -> UploadController:
        """Start (or resume, when ``options.resume_from`` is set) an upload.

        Must be called from a running event loop.
        """
        return UploadController(_UploadRun(self, str(source_ref), options))

    async def resume(self, logical_id: str, on_progress: Optional[ProgressCallback] = None) -> UploadController:
        session = await asyncio.to_thread(self.store.load, logical_id)
        if session is None:
            raise ResumeMismatchError(f"No resumable upload for {logical_id}")
        options = UploadOptions(
            kind=session.kind,
            content_type=session.content_type,
            on_progress=on_progress,
            resume_from=session,
            logical_id=logical_id,
        )
        return self.start(session.source_ref, options)


class _UploadRun:
    """Mutable state of one upload; owns the single copy-of-record session."""

    def __init__(self, orchestrator: UploadOrchestrator, source_ref: str, options: UploadOptions):
        self.orchestrator = orchestrator
        self.control_plane = orchestrator.control_plane
        self.store = orchestrator.store
        self.source_ref = source_ref
        self.options = options
        self.logical_id = options.logical_id or source_ref
        self.token = CancelToken()
        self.state = UploadState.PLANNING
        self.session: Optional[UploadSession] = None
        self.plan: Optional[ChunkPlan] = None

    def _transition(self, state: UploadState) -> None:
        logger.debug(f"Upload {self.logical_id}: {self.state.value} -> {state.value}")
        self.state = state

    async def execute(self) -> UploadResult:
        try:
            file_size = self._plan()
            if self.options.resume_from is not None:
                self._transition(UploadState.RESUMING)
                self._adopt(self.options.resume_from, file_size)
            else:
                self._transition(UploadState.INITIATING)
                await self._initiate(file_size)

            self._transition(UploadState.TRANSFERRING)
            await self._transfer()

            self._transition(UploadState.COMPLETING)
            object_key = await self._complete()
        except UploadCancelledError:
            await self._abort()
            raise
        except Exception as e:
            self._transition(UploadState.FAILED)
            logger.error(f"Upload {self.logical_id} failed: {e}")
            raise

        self._transition(UploadState.DONE)
        logger.info(f"Upload {self.logical_id} completed as {object_key}")
        return UploadResult(object_key=object_key, final_session_state=self.session)

    def _plan(self) -> int:
        path = Path(self.source_ref)
        if not path.is_file():
            raise UploadValidationError("File does not exist", code="FILE_NOT_FOUND")
        file_size = path.stat().st_size
        validate_file_for_upload(self.options.kind, file_size, self.options.content_type)
        self.plan = plan(file_size, self.orchestrator.chunk_size)
        return file_size

    def _adopt(self, session: UploadSession, file_size: int) -> None:
        if session.source_ref != self.source_ref or session.file_size != file_size:
            raise ResumeMismatchError("Resume state does not match the file being uploaded")
        if session.total_parts != self.plan.total_parts:
            raise ResumeMismatchError(
                f"Resume state has {session.total_parts} parts, expected {self.plan.total_parts}"
            )
        if session.is_stale(self.store.staleness_window, self.orchestrator.clock()):
            raise ResumeMismatchError("Resume state has expired")
        self.session = session
        logger.info(
            f"Resuming upload {self.logical_id} ({session.session_id}) with "
            f"{len(session.completed_parts)}/{session.total_parts} parts done"
        )

    async def _initiate(self, file_size: int) -> None:
        kind = parse_kind(self.options.kind)
        # Runs to completion even when cancelled; the check below then aborts it
        session_id, object_key = await self.control_plane.initiate(
            kind, file_size, self.options.content_type, self.options.file_name
        )
        self.session = UploadSession(
            session_id=session_id,
            object_key=object_key,
            source_ref=self.source_ref,
            file_size=file_size,
            content_type=self.options.content_type,
            kind=kind,
            total_parts=self.plan.total_parts,
            created_at=self.orchestrator.clock(),
        )
        self.token.raise_if_cancelled()
        await self._persist()

    async def _transfer(self) -> None:
        skip = self.session.completed_part_numbers
        if skip:
            self._emit_progress(max(skip))

        for part_number in range(1, self.plan.total_parts + 1):
            self.token.raise_if_cancelled()

            if part_number in skip:
                self._emit_progress(part_number)
                continue

            url = await self.token.run(
                self.control_plane.get_part_destination(
                    self.session.session_id, self.session.object_key, part_number
                )
            )
            data = await self.token.run(asyncio.to_thread(self._read_part, part_number))
            integrity_tag = await self.orchestrator.uploader.upload(
                url, data, self.session.content_type, self.token, part_number=part_number
            )

            self.session = self.session.with_part(CompletedPart(part_number=part_number, integrity_tag=integrity_tag))
            await self._persist()
            logger.info(f"Upload {self.logical_id}: part {part_number}/{self.plan.total_parts} done")
            self._emit_progress(part_number)

        self.token.raise_if_cancelled()

    def _read_part(self, part_number: int) -> bytes:
        start, length = self.plan.part_range(part_number)
        with open(self.source_ref, "rb") as f:
            f.seek(start)
            data = f.read(length)
        if len(data) != length:
            raise UploadValidationError(
                f"Source file changed during upload: part {part_number} is {len(data)} bytes, expected {length}",
                code="FILE_CHANGED",
            )
        return data

    async def _complete(self) -> str:
        if not self.session.is_complete():
            raise FinalizationError(
                f"Only {len(self.session.completed_parts)}/{self.session.total_parts} parts uploaded"
            )
        try:
            object_key = await self.control_plane.complete(
                self.session.session_id, self.session.object_key, self.session.sorted_parts()
            )
        except AuthenticationError:
            raise
        except Exception as e:
            raise FinalizationError(f"Failed to complete multipart upload: {e}") from e

        await asyncio.to_thread(self.store.delete, self.logical_id)
        return object_key or self.session.object_key

    async def _abort(self) -> None:
        self._transition(UploadState.ABORTING)
        if self.session is not None:
            try:
                await self.control_plane.abort(self.session.session_id, self.session.object_key)
            except Exception as e:
                logger.warning(f"Failed to abort multipart upload {self.session.session_id}: {e}")
            await asyncio.to_thread(self.store.delete, self.logical_id)
        self._transition(UploadState.ABORTED)
        logger.info(f"Upload {self.logical_id} cancelled")

    async def _persist(self) -> None:
        await asyncio.to_thread(self.store.save, self.logical_id, self.session)

    def _emit_progress(self, current_part: int) -> None:
        callback = self.options.on_progress
        if callback is None:
            return
        bytes_uploaded = sum(self.plan.part_length(n) for n in self.session.completed_part_numbers)
        progress = UploadProgress(
            percentage=round(bytes_uploaded * 100 / self.plan.file_size),
            current_part=current_part,
            total_parts=self.plan.total_parts,
            bytes_uploaded=bytes_uploaded,
            total_bytes=self.plan.file_size,
        )
        try:
            callback(progress)
        except Exception:
            logger.exception(f"Progress callback for upload {self.logical_id} raised")


def build_orchestrator(settings, token_provider: TokenProvider, store: Optional[SessionStateStore] = None) -> UploadOrchestrator:
    """Wire an orchestrator from ``Settings`` with the HTTP control plane."""
    return UploadOrchestrator(
        control_plane=HttpControlPlaneClient(
            settings.control_plane_url, token_provider, timeout=settings.http_timeout_seconds
        ),
        uploader=RetryingPartUploader(PartTransport(timeout=settings.http_timeout_seconds)),
        store=store or build_session_store(settings),
    )
