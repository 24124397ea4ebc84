# services/session_store.py
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote, unquote

import redis
from pydantic import ValidationError

from chunked_upload.models.upload_models import UploadSession

logger = logging.getLogger(__name__)

STALENESS_WINDOW = timedelta(hours=24)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStateStore(ABC):
    """Durable key-value persistence of UploadSession by logical id.

    Stale records (older than the staleness window) and unreadable records
    are treated as absent and removed when encountered.
    """

    def __init__(self, staleness_window: timedelta = STALENESS_WINDOW, clock: Clock = utcnow):
        self.staleness_window = staleness_window
        self.clock = clock

    @abstractmethod
    def save(self, logical_id: str, session: UploadSession) -> None: ...

    @abstractmethod
    def delete(self, logical_id: str) -> None: ...

    @abstractmethod
    def _read(self, logical_id: str) -> Optional[bytes]:
        """Raw, undecoded record for ``logical_id`` or None."""

    @abstractmethod
    def _ids(self) -> List[str]:
        """Logical ids of every raw record, stale or not."""

    def _parse(self, logical_id: str, raw: bytes) -> Optional[UploadSession]:
        try:
            session = UploadSession.from_record(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Removing unreadable upload session {logical_id}: {e}")
            self.delete(logical_id)
            return None

        if session.is_stale(self.staleness_window, self.clock()):
            logger.info(f"Removing stale upload session {logical_id} (created {session.created_at.isoformat()})")
            self.delete(logical_id)
            return None
        return session

    def load(self, logical_id: str) -> Optional[UploadSession]:
        raw = self._read(logical_id)
        if raw is None:
            return None
        return self._parse(logical_id, raw)

    def list_all(self) -> List[Tuple[str, UploadSession]]:
        sessions = []
        for logical_id in self._ids():
            session = self.load(logical_id)
            if session is not None:
                sessions.append((logical_id, session))
        return sessions

    def list_stale(self) -> List[Tuple[str, UploadSession]]:
        """Stale records, left in place so the caller can release them first."""
        stale = []
        for logical_id in self._ids():
            raw = self._read(logical_id)
            if raw is None:
                continue
            try:
                session = UploadSession.from_record(raw)
            except (ValidationError, ValueError):
                continue
            if session.is_stale(self.staleness_window, self.clock()):
                stale.append((logical_id, session))
        return stale

    def cleanup_stale(self) -> int:
        """Remove stale and unreadable records. Returns how many were removed."""
        removed = 0
        for logical_id in self._ids():
            raw = self._read(logical_id)
            if raw is not None and self._parse(logical_id, raw) is None:
                removed += 1
        return removed

    def has_resumable_upload(self, logical_id: str) -> bool:
        return self.load(logical_id) is not None

    def get_upload_progress(self, logical_id: str) -> Optional[int]:
        session = self.load(logical_id)
        if session is None:
            return None
        return round(len(session.completed_parts) / session.total_parts * 100)


class FileSessionStateStore(SessionStateStore):
    """One JSON file per logical id inside ``directory``."""

    SUFFIX = ".json"

    def __init__(self, directory, **kwargs):
        super().__init__(**kwargs)
        self.directory = Path(directory)

    @staticmethod
    def file_stem(logical_id: str) -> str:
        """Percent-encode ``logical_id`` into a reversible, single-segment file name."""
        stem = quote(logical_id, safe="")
        # Leading dots would hide the file and could collide with temp files
        if stem.startswith("."):
            stem = "%2E" + stem[1:]
        return stem

    def _path(self, logical_id: str) -> Path:
        return self.directory / f"{self.file_stem(logical_id)}{self.SUFFIX}"

    def save(self, logical_id: str, session: UploadSession) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(logical_id)
        # Write-then-rename so a crash never leaves a truncated record
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=self.SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(session.to_record())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def delete(self, logical_id: str) -> None:
        self._path(logical_id).unlink(missing_ok=True)

    def _read(self, logical_id: str) -> Optional[bytes]:
        try:
            return self._path(logical_id).read_bytes()
        except FileNotFoundError:
            return None

    def _ids(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(
            unquote(p.name[: -len(self.SUFFIX)])
            for p in self.directory.iterdir()
            if p.name.endswith(self.SUFFIX) and not p.name.startswith(".tmp-")
        )


class RedisSessionStateStore(SessionStateStore):
    """Sessions under ``upload_session:{id}`` with a TTL matching the staleness window."""

    KEY_PREFIX = "upload_session:"

    def __init__(self, redis_client: redis.Redis, **kwargs):
        super().__init__(**kwargs)
        self.redis_client = redis_client

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "RedisSessionStateStore":
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password or None,
            db=settings.redis_db,
            decode_responses=False,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        return cls(client, **kwargs)

    def _key(self, logical_id: str) -> str:
        return f"{self.KEY_PREFIX}{logical_id}"

    def save(self, logical_id: str, session: UploadSession) -> None:
        remaining = self.staleness_window - session.age(self.clock())
        ttl = max(int(remaining.total_seconds()), 1)
        self.redis_client.setex(self._key(logical_id), ttl, session.to_record())

    def delete(self, logical_id: str) -> None:
        self.redis_client.delete(self._key(logical_id))

    def _read(self, logical_id: str) -> Optional[bytes]:
        return self.redis_client.get(self._key(logical_id))

    def _ids(self) -> List[str]:
        ids = []
        for key in self.redis_client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            ids.append(key[len(self.KEY_PREFIX):])
        return sorted(ids)


def build_session_store(settings) -> SessionStateStore:
    """Store selected by ``settings.session_store`` (``file`` or ``redis``)."""
    if settings.session_store == "redis":
        return RedisSessionStateStore.from_settings(settings)
    if settings.session_store != "file":
        raise ValueError(f"Unknown session store backend: {settings.session_store}")
    return FileSessionStateStore(settings.upload_state_dir)
