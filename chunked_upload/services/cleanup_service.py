# services/cleanup_service.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from chunked_upload.services.control_plane import ControlPlaneClient, HttpControlPlaneClient, TokenProvider
from chunked_upload.services.session_store import SessionStateStore, build_session_store

logger = logging.getLogger(__name__)


class CleanupService:
    """Releases server-side multipart uploads behind stale persisted sessions."""

    def __init__(self, store: SessionStateStore, control_plane: ControlPlaneClient, interval_seconds: float = 6 * 60 * 60):
        self.store = store
        self.control_plane = control_plane
        self.interval_seconds = interval_seconds

    async def start_cleanup_scheduler(self):
        """Run cleanup forever, every ``interval_seconds``"""
        while True:
            try:
                await self.cleanup_stale_sessions()
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                logger.info("Cleanup scheduler cancelled")
                break
            except Exception as e:
                logger.error(f"Error in cleanup scheduler: {e}")
                await asyncio.sleep(60)

    async def cleanup_stale_sessions(self) -> int:
        """Abort and delete every stale session. Returns how many were removed."""
        stale = await asyncio.to_thread(self.store.list_stale)
        for logical_id, session in stale:
            try:
                await self.control_plane.abort(session.session_id, session.object_key)
                logger.info(f"Aborted stale upload {session.session_id} for {logical_id}")
            except Exception as e:
                logger.warning(f"Failed to abort stale upload {session.session_id}: {e}")
            await asyncio.to_thread(self.store.delete, logical_id)

        # Unreadable records have nothing to abort
        removed = await asyncio.to_thread(self.store.cleanup_stale)
        total = len(stale) + removed
        logger.info(f"Session cleanup completed. Cleaned {total} sessions")
        return total


def build_cleanup_service(settings, token_provider: TokenProvider, store: Optional[SessionStateStore] = None) -> CleanupService:
    return CleanupService(
        store=store or build_session_store(settings),
        control_plane=HttpControlPlaneClient(
            settings.control_plane_url, token_provider, timeout=settings.http_timeout_seconds
        ),
        interval_seconds=settings.cleanup_interval_seconds,
    )


@asynccontextmanager
async def cleanup_scheduler(cleanup_service: CleanupService):
    """Run the cleanup scheduler in the background for the duration of the block."""
    cleanup_task = asyncio.create_task(cleanup_service.start_cleanup_scheduler())
    try:
        yield cleanup_task
    finally:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
