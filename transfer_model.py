from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

DEFAULT_CONTENT_TYPE = "application/octet-stream"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TransferStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"


@dataclass
class FileRecord:
    name: str
    object_path: str
    type: str = DEFAULT_CONTENT_TYPE
    size: Optional[int] = None

    def to_document(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "size": self.size,
            "objectPath": self.object_path,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "FileRecord":
        return cls(
            name=doc.get("name") or "file",
            type=doc.get("type") or DEFAULT_CONTENT_TYPE,
            size=doc.get("size"),
            object_path=doc.get("objectPath") or "",
        )


@dataclass
class Transfer:
    id: str
    status: TransferStatus
    created_at: datetime
    files: List[FileRecord] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        """Expired is derived: ready and strictly past expires_at. Drafts never expire."""
        return (
            self.status == TransferStatus.READY
            and self.expires_at is not None
            and now > self.expires_at
        )

    def to_document(self) -> dict:
        doc = {
            "transferId": self.id,
            "status": self.status.value,
            "createdAt": to_millis(self.created_at),
            "files": [f.to_document() for f in self.files],
        }
        if self.completed_at is not None:
            doc["completedAt"] = to_millis(self.completed_at)
        if self.expires_at is not None:
            doc["expiresAt"] = to_millis(self.expires_at)
        return doc

    @classmethod
    def from_document(cls, transfer_id: str, doc: dict) -> "Transfer":
        return cls(
            id=doc.get("transferId") or transfer_id,
            status=TransferStatus(doc.get("status", TransferStatus.DRAFT.value)),
            created_at=from_millis(doc.get("createdAt")),
            completed_at=from_millis(doc.get("completedAt")),
            expires_at=from_millis(doc.get("expiresAt")),
            files=[FileRecord.from_document(f) for f in doc.get("files") or []],
        )


def to_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_millis(value) -> Optional[datetime]:
    if value is None:
        return None
    return EPOCH + timedelta(milliseconds=int(value))


def truncate_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision so a value survives a store round trip unchanged."""
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)
