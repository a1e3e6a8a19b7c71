"""
transfers.py — transfer lifecycle: draft creation, finalization, and the
ready/expired guards every download path goes through.

States are draft -> ready. "Expired" is never written; it is computed on
each read as ready and now > expiresAt.

Known gaps, kept as-is:
  * finalize() trusts the caller's file list. Object existence is only
    discovered when a download or archive actually opens the object.
  * Concurrent finalize() calls on one id are not serialized; the last
    write wins, and every call restarts the share window.
  * expiresAt is taken from the wall clock at finalize. A repeat call can
    move it earlier if that clock steps backwards between calls.
  * If saving the draft fails after upload grants were issued, anything
    uploaded with those grants is orphaned in the bucket.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, List, Optional, Sequence

import config
from archive import ArchiveAssembler
from document_store import TransferRepository
from exceptions import Expired, NotFound, NotReady, ValidationError
from file_service import object_path_for, sanitize_name, unique_names
from grants import GrantIssuer, utcnow
from storage import GrantOperation
from transfer_model import (
    DEFAULT_CONTENT_TYPE,
    FileRecord,
    Transfer,
    TransferStatus,
    truncate_millis,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferSettings:
    upload_grant_ttl: timedelta = timedelta(seconds=config.UPLOAD_GRANT_TTL_SECONDS)
    share_ttl: timedelta = timedelta(seconds=config.SHARE_TTL_SECONDS)
    download_grant_ttl: timedelta = timedelta(seconds=config.DOWNLOAD_GRANT_TTL_SECONDS)
    frontend_url: str = config.FRONTEND_URL

    def share_url(self, transfer_id: str) -> str:
        return f"{self.frontend_url.rstrip('/')}/t/{transfer_id}"


@dataclass
class FileDescriptor:
    name: str
    type: Optional[str] = None
    size: Optional[int] = None


@dataclass
class UploadGrant:
    name: str
    type: str
    size: Optional[int]
    object_path: str
    upload_url: str


@dataclass
class CreatedTransfer:
    transfer_id: str
    uploads: List[UploadGrant]
    expires_at: datetime


@dataclass
class FinalizedTransfer:
    transfer_id: str
    share_url: str
    expires_at: datetime


class TransferManager:

    def __init__(
        self,
        repository: TransferRepository,
        grants: GrantIssuer,
        assembler: ArchiveAssembler,
        settings: Optional[TransferSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repository = repository
        self._grants = grants
        self._assembler = assembler
        self.settings = settings or TransferSettings()
        self._clock = clock

    def _now(self) -> datetime:
        return truncate_millis(self._clock())

    # ─── Sender side ─────────────────────────────────────

    async def create(self, descriptors: Sequence[FileDescriptor]) -> CreatedTransfer:
        """
        Register a draft transfer and issue one write grant per file.

        Grants are requested concurrently; if any of them fails nothing is
        persisted and the failure propagates.
        """
        if not descriptors:
            raise ValidationError("At least one file is required", {"files": "must not be empty"})
        missing = {
            f"files.{i}.name": "required"
            for i, d in enumerate(descriptors)
            if not d.name or not d.name.strip()
        }
        if missing:
            raise ValidationError("Every file needs a name", missing)

        transfer_id = str(uuid.uuid4())
        now = self._now()
        upload_expires_at = now + self.settings.upload_grant_ttl

        records = [
            FileRecord(
                name=d.name,
                type=d.type or DEFAULT_CONTENT_TYPE,
                size=d.size,
                object_path=object_path_for(transfer_id, safe_name),
            )
            for d, safe_name in zip(descriptors, unique_names(d.name for d in descriptors))
        ]

        urls = await asyncio.gather(*[
            self._grants.issue(r.object_path, GrantOperation.WRITE, upload_expires_at, content_type=r.type)
            for r in records
        ])

        draft = Transfer(
            id=transfer_id,
            status=TransferStatus.DRAFT,
            created_at=now,
            files=records,
        )
        await self._repository.save(draft)
        logger.info(f"Draft transfer created: id={transfer_id} files={len(records)}")

        return CreatedTransfer(
            transfer_id=transfer_id,
            uploads=[
                UploadGrant(
                    name=r.name,
                    type=r.type,
                    size=r.size,
                    object_path=r.object_path,
                    upload_url=url,
                )
                for r, url in zip(records, urls)
            ],
            expires_at=upload_expires_at,
        )

    async def finalize(self, transfer_id: str, confirmed: Sequence[FileRecord]) -> FinalizedTransfer:
        """
        Mark a transfer ready with the caller's post-upload file list and
        start the share window. Calling again overwrites the file list and
        restarts the window.
        """
        if not confirmed:
            raise ValidationError("At least one file is required", {"files": "must not be empty"})
        bad = {}
        for i, f in enumerate(confirmed):
            if not f.name:
                bad[f"files.{i}.name"] = "required"
            if not f.object_path:
                bad[f"files.{i}.objectPath"] = "required"
        if bad:
            raise ValidationError("Invalid file list", bad)

        transfer = await self._repository.get(transfer_id)
        if transfer is None:
            raise NotFound("Transfer not found")

        completed_at = self._now()
        expires_at = completed_at + self.settings.share_ttl
        if transfer.status == TransferStatus.READY:
            logger.warning(f"Transfer {transfer_id} finalized again; share window restarts")

        transfer.status = TransferStatus.READY
        transfer.completed_at = completed_at
        transfer.expires_at = expires_at
        transfer.files = list(confirmed)
        doc = transfer.to_document()
        await self._repository.update(transfer_id, {
            "status": doc["status"],
            "completedAt": doc["completedAt"],
            "expiresAt": doc["expiresAt"],
            "files": doc["files"],
        })
        logger.info(f"Transfer ready: id={transfer_id} files={len(confirmed)} expires_at={expires_at.isoformat()}")

        return FinalizedTransfer(
            transfer_id=transfer_id,
            share_url=self.settings.share_url(transfer_id),
            expires_at=expires_at,
        )

    # ─── Recipient side ──────────────────────────────────

    async def fetch_metadata(self, transfer_id: str) -> Transfer:
        transfer = await self._repository.get(transfer_id)
        if transfer is None:
            raise NotFound("Transfer not found")
        if transfer.is_expired(self._clock()):
            raise Expired("Transfer expired")
        return transfer

    async def authorize_download(self, transfer_id: str) -> List[FileRecord]:
        """Return the file list only for a ready, unexpired transfer."""
        transfer = await self._repository.get(transfer_id)
        if transfer is None:
            raise NotFound("Transfer not found")
        if transfer.status != TransferStatus.READY:
            raise NotReady("Transfer not ready")
        if transfer.is_expired(self._clock()):
            raise Expired("Transfer expired")
        return transfer.files

    async def download_grant(self, transfer_id: str, index: int) -> str:
        files = await self.authorize_download(transfer_id)
        if index < 0:
            raise ValidationError("Invalid file index", {"index": "must be >= 0"})
        if index >= len(files):
            raise NotFound("File not found")
        record = files[index]
        if not record.object_path:
            raise NotFound("File not found")

        expires_at = self._clock() + self.settings.download_grant_ttl
        return await self._grants.issue(
            record.object_path,
            GrantOperation.READ,
            expires_at,
            download_name=sanitize_name(record.name or "download"),
        )

    async def archive(self, transfer_id: str) -> AsyncIterator[bytes]:
        files = await self.authorize_download(transfer_id)
        logger.info(f"Archive requested: id={transfer_id} files={len(files)}")
        return self._assembler.assemble(files)
