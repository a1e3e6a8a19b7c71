# transfer_routes.py

from functools import lru_cache

from fastapi import APIRouter, Depends, Path
from fastapi.responses import StreamingResponse

import config
from archive import ArchiveAssembler
from auth import require_sender
from document_store import DocumentStore, TransferRepository
from file_service import sanitize_name
from grants import GrantIssuer
from notifications import MailgunMailer, ShareNotifier
from schemas import (
    CompleteTransferRequest,
    CompleteTransferResponse,
    DownloadUrlResponse,
    FileOut,
    InitTransferRequest,
    InitTransferResponse,
    ShareEmailRequest,
    ShareEmailResponse,
    TransferOut,
    UploadOut,
)
from storage import StorageBackend
from transfer_model import FileRecord, to_millis
from transfers import FileDescriptor, TransferManager, TransferSettings

router = APIRouter(prefix="/api/transfers", tags=["Transfers"])


# ─── WIRING ─────────────────────────────────────────────

@lru_cache
def get_storage() -> StorageBackend:
    return StorageBackend()


@lru_cache
def get_document_store() -> DocumentStore:
    return DocumentStore()


@lru_cache
def get_transfer_manager() -> TransferManager:
    storage = get_storage()
    return TransferManager(
        repository=TransferRepository(get_document_store()),
        grants=GrantIssuer(storage),
        assembler=ArchiveAssembler(storage, prefetch=config.ARCHIVE_PREFETCH, chunk_size=config.ARCHIVE_CHUNK_SIZE),
        settings=TransferSettings(),
    )


@lru_cache
def get_notifier() -> ShareNotifier:
    return ShareNotifier(get_transfer_manager(), MailgunMailer())


# ─── INIT ───────────────────────────────────────────────

@router.post("/init", response_model=InitTransferResponse)
async def init_transfer(
    req: InitTransferRequest,
    sender: str = Depends(require_sender),
    manager: TransferManager = Depends(get_transfer_manager),
):
    created = await manager.create([
        FileDescriptor(name=f.name, type=f.type, size=f.size) for f in req.files
    ])
    return InitTransferResponse(
        transferId=created.transfer_id,
        uploads=[
            UploadOut(
                name=u.name,
                type=u.type,
                size=u.size,
                objectPath=u.object_path,
                uploadUrl=u.upload_url,
            )
            for u in created.uploads
        ],
        expiresAt=to_millis(created.expires_at),
    )


# ─── COMPLETE ───────────────────────────────────────────

@router.post("/complete", response_model=CompleteTransferResponse)
async def complete_transfer(
    req: CompleteTransferRequest,
    sender: str = Depends(require_sender),
    manager: TransferManager = Depends(get_transfer_manager),
):
    finalized = await manager.finalize(req.transferId, [
        FileRecord(name=f.name, type=f.type, size=f.size, object_path=f.objectPath)
        for f in req.files
    ])
    return CompleteTransferResponse(
        transferId=finalized.transfer_id,
        shareUrl=finalized.share_url,
        expiresAt=to_millis(finalized.expires_at),
    )


# ─── METADATA ───────────────────────────────────────────

@router.get("/{transfer_id}", response_model=TransferOut)
async def get_transfer(transfer_id: str, manager: TransferManager = Depends(get_transfer_manager)):
    transfer = await manager.fetch_metadata(transfer_id)
    return TransferOut(
        transferId=transfer.id,
        status=transfer.status.value,
        createdAt=to_millis(transfer.created_at),
        completedAt=to_millis(transfer.completed_at),
        expiresAt=to_millis(transfer.expires_at),
        files=[
            FileOut(name=f.name, type=f.type, size=f.size, objectPath=f.object_path)
            for f in transfer.files
        ],
    )


# ─── DOWNLOAD ───────────────────────────────────────────

@router.get("/{transfer_id}/files/{index}/download", response_model=DownloadUrlResponse)
async def download_file(
    transfer_id: str,
    index: int = Path(...),
    manager: TransferManager = Depends(get_transfer_manager),
):
    url = await manager.download_grant(transfer_id, index)
    return DownloadUrlResponse(url=url)


@router.get("/{transfer_id}/archive")
async def download_archive(transfer_id: str, manager: TransferManager = Depends(get_transfer_manager)):
    stream = await manager.archive(transfer_id)
    return StreamingResponse(
        stream,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="transfer-{sanitize_name(transfer_id)}.zip"'
        },
    )


# ─── EMAIL ──────────────────────────────────────────────

@router.post("/{transfer_id}/email", response_model=ShareEmailResponse)
async def email_share_link(
    transfer_id: str,
    req: ShareEmailRequest,
    sender: str = Depends(require_sender),
    notifier: ShareNotifier = Depends(get_notifier),
):
    share_url = await notifier.send_share_email(transfer_id, req.to, req.message)
    return ShareEmailResponse(shareUrl=share_url)
