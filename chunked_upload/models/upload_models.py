# models/upload_models.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class FileKind(str, Enum):
    VIDEO = "video"
    PHOTO = "photo"


class UploadState(str, Enum):
    PLANNING = "planning"
    INITIATING = "initiating"
    RESUMING = "resuming"
    TRANSFERRING = "transferring"
    COMPLETING = "completing"
    DONE = "done"
    ABORTING = "aborting"
    ABORTED = "aborted"
    FAILED = "failed"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CompletedPart(CamelModel):
    model_config = ConfigDict(frozen=True)

    part_number: int = Field(ge=1)
    integrity_tag: str


class UploadSession(CamelModel):
    """Durable record of an in-progress or resumable upload.

    Sessions are values: every mutation returns a new instance, so a copy
    handed to a progress callback or a state snapshot can never change
    underneath its holder.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    object_key: str
    source_ref: str
    file_size: int = Field(gt=0)
    content_type: str
    kind: FileKind
    total_parts: int = Field(ge=1)
    completed_parts: Tuple[CompletedPart, ...] = ()
    created_at: datetime

    @model_validator(mode="after")
    def _check_parts(self) -> "UploadSession":
        seen = set()
        for part in self.completed_parts:
            if part.part_number > self.total_parts:
                raise ValueError(
                    f"part {part.part_number} outside [1, {self.total_parts}]"
                )
            if part.part_number in seen:
                raise ValueError(f"duplicate part {part.part_number}")
            seen.add(part.part_number)
        return self

    @property
    def completed_part_numbers(self) -> set:
        return {p.part_number for p in self.completed_parts}

    def with_part(self, part: CompletedPart) -> "UploadSession":
        """Return a copy with ``part`` appended to ``completed_parts``."""
        if part.part_number > self.total_parts:
            raise ValueError(
                f"part {part.part_number} outside [1, {self.total_parts}]"
            )
        if part.part_number in self.completed_part_numbers:
            raise ValueError(f"part {part.part_number} already recorded")
        return self.model_copy(
            update={"completed_parts": self.completed_parts + (part,)}
        )

    def sorted_parts(self) -> List[CompletedPart]:
        return sorted(self.completed_parts, key=lambda p: p.part_number)

    def is_complete(self) -> bool:
        return len(self.completed_parts) == self.total_parts

    def age(self, now: Optional[datetime] = None) -> timedelta:
        now = now or datetime.now(timezone.utc)
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return now - created_at

    def is_stale(self, window: timedelta, now: Optional[datetime] = None) -> bool:
        return self.age(now) > window

    def to_record(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_record(cls, raw) -> "UploadSession":
        """Parse a stored record; raises ValueError on anything unreadable."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.model_validate_json(raw)


class UploadProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    percentage: int
    current_part: int
    total_parts: int
    bytes_uploaded: int
    total_bytes: int


ProgressCallback = Callable[[UploadProgress], None]


class UploadOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: FileKind
    content_type: str
    file_name: Optional[str] = None
    on_progress: Optional[ProgressCallback] = None
    resume_from: Optional[UploadSession] = None
    # Key used for the session store; defaults to the source path
    logical_id: Optional[str] = None


class UploadResult(BaseModel):
    object_key: str
    final_session_state: UploadSession


# Control-plane wire models

class InitiateRequest(BaseModel):
    action: str = "initiate"
    fileType: str
    fileSize: int
    contentType: str
    fileName: Optional[str] = None


class InitiateResponse(BaseModel):
    uploadId: str
    objectKey: str


class GetPartUrlRequest(BaseModel):
    action: str = "getPartUrl"
    uploadId: str
    objectKey: str
    partNumber: int


class GetPartUrlResponse(BaseModel):
    uploadUrl: str
    partNumber: int


class WirePart(BaseModel):
    partNumber: int
    etag: str


class CompleteRequest(BaseModel):
    action: str = "complete"
    uploadId: str
    objectKey: str
    parts: List[WirePart]


class CompleteResponse(BaseModel):
    success: bool
    objectKey: str


class AbortRequest(BaseModel):
    action: str = "abort"
    uploadId: str
    objectKey: str


class ErrorResponse(BaseModel):
    error: str
    code: str
