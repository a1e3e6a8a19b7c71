from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional


class FileIn(BaseModel):
    name: str = Field(..., min_length=1)
    type: Optional[str] = "application/octet-stream"
    size: Optional[int] = Field(None, ge=0)


class InitTransferRequest(BaseModel):
    files: List[FileIn] = Field(..., min_length=1)


class UploadOut(BaseModel):
    name: str
    type: str
    size: Optional[int]
    objectPath: str
    uploadUrl: str


class InitTransferResponse(BaseModel):
    ok: bool = True
    transferId: str
    uploads: List[UploadOut]
    expiresAt: int


class ConfirmedFile(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    size: Optional[int] = None
    objectPath: str = Field(..., min_length=1)


class CompleteTransferRequest(BaseModel):
    transferId: str = Field(..., min_length=1)
    files: List[ConfirmedFile] = Field(..., min_length=1)


class CompleteTransferResponse(BaseModel):
    ok: bool = True
    transferId: str
    shareUrl: str
    expiresAt: int


class FileOut(BaseModel):
    name: str
    type: str
    size: Optional[int]
    objectPath: str


class TransferOut(BaseModel):
    ok: bool = True
    transferId: str
    status: str
    createdAt: Optional[int]
    completedAt: Optional[int]
    expiresAt: Optional[int]
    files: List[FileOut]


class DownloadUrlResponse(BaseModel):
    ok: bool = True
    url: str


class ShareEmailRequest(BaseModel):
    to: EmailStr
    message: Optional[str] = Field(None, max_length=2000)


class ShareEmailResponse(BaseModel):
    ok: bool = True
    shareUrl: str
