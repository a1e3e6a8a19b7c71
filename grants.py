"""
Time-bounded single-object access URLs.

Nothing is persisted here. The object store enforces the expiry itself and
most stores do not limit how many times a URL is used before then, so
callers must not treat a grant as single-use.
"""

import asyncio
import math
from datetime import datetime, timezone
from typing import Callable, Optional

from exceptions import ValidationError
from storage import GrantOperation, StorageBackend
from transfer_model import DEFAULT_CONTENT_TYPE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GrantIssuer:

    def __init__(self, storage: StorageBackend, clock: Callable[[], datetime] = utcnow):
        self._storage = storage
        self._clock = clock

    async def issue(
        self,
        object_path: str,
        operation: GrantOperation,
        expires_at: datetime,
        content_type: Optional[str] = None,
        download_name: Optional[str] = None,
    ) -> str:
        if not object_path:
            raise ValidationError("objectPath must not be empty", {"objectPath": "required"})

        seconds = (expires_at - self._clock()).total_seconds()
        if seconds <= 0:
            raise ValidationError("Grant expiry must be in the future", {"expiry": "in the past"})

        if operation == GrantOperation.WRITE:
            # bound into the signature so the store rejects uploads of any other type
            content_type = content_type or DEFAULT_CONTENT_TYPE

        # whole seconds, rounded down; only a sub-second window is stretched to 1s
        return await asyncio.to_thread(
            self._storage.issue_grant,
            object_path,
            operation,
            max(1, math.floor(seconds)),
            content_type,
            download_name,
        )
