"""Exception classes for transfer operations."""

from typing import Optional


class TransferError(Exception):
    """
    Base exception class for all transfer errors.
    """
    code = "INTERNAL_ERROR"


class ValidationError(TransferError):
    """
    Raised when caller input is malformed. Carries a field-level report.
    """
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, fields: Optional[dict] = None):
        super().__init__(message)
        self.fields = fields or {}


class NotFound(TransferError):
    """
    Raised when a transfer, or a file index within it, does not exist.
    """
    code = "NOT_FOUND"


class NotReady(TransferError):
    """
    Raised when a download is attempted on a transfer that was never finalized.
    """
    code = "NOT_READY"


class Expired(TransferError):
    """
    Raised when a ready transfer is accessed after its expiry instant.
    """
    code = "EXPIRED"


class Unauthorized(TransferError):
    """
    Raised when a bearer credential is missing or fails verification.
    """
    code = "UNAUTHORIZED"


class ProviderFailure(TransferError):
    """
    Raised when an external dependency (object store, document store,
    email service) fails. Keeps the upstream status where one exists.
    """
    code = "PROVIDER_FAILURE"

    def __init__(self, provider: str, detail: str, status: Optional[int] = None):
        message = f"{provider} failed"
        if status is not None:
            message += f" ({status})"
        super().__init__(f"{message}: {detail}")
        self.provider = provider
        self.detail = detail
        self.status = status


class ArchiveStreamError(ProviderFailure):
    """
    Raised inside an archive stream when a member cannot be read. The
    archive is left without its central directory, so clients see it as
    truncated.
    """
    code = "ARCHIVE_ABORTED"

    def __init__(self, member: str, detail: str):
        super().__init__("archive", f"member {member!r}: {detail}")
        self.member = member
