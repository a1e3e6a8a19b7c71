"""
Stream many stored objects out as one ZIP.

Members are read from the object store in chunks and compressed straight
into the response; no member is ever held in memory whole. Up to
`prefetch` objects are opened ahead of the one being written, but bytes
always leave in input order.

A ZIP is only valid once its end-of-central-directory record is written,
which happens after the last member. If a member cannot be opened or read
the stream raises instead, so the response ends without that record and
clients reject it as truncated.
"""

import asyncio
import logging
import time
import zipfile
from collections import deque
from typing import AsyncIterator, List, Sequence

import config
from exceptions import ArchiveStreamError, NotFound, ValidationError
from file_service import unique_names
from storage import StorageBackend
from transfer_model import FileRecord

logger = logging.getLogger(__name__)


class _ZipSink:
    """Write-only target for zipfile; bytes are handed out with drain()."""

    def __init__(self):
        self._buffer = bytearray()
        self._discarded = False

    def write(self, data) -> int:
        if not self._discarded:
            self._buffer += data
        return len(data)

    def flush(self):
        pass

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    def discard(self):
        self._discarded = True
        self._buffer.clear()


def _release_body(task: asyncio.Task) -> None:
    if task.cancelled() or task.exception() is not None:
        return
    task.result().close()


class ArchiveAssembler:

    def __init__(
        self,
        storage: StorageBackend,
        prefetch: int = config.ARCHIVE_PREFETCH,
        chunk_size: int = config.ARCHIVE_CHUNK_SIZE,
    ):
        self._storage = storage
        self._prefetch = max(1, prefetch)
        self._chunk_size = chunk_size

    @staticmethod
    def member_names(files: Sequence[FileRecord]) -> List[str]:
        return unique_names(f.name for f in files)

    def assemble(self, files: Sequence[FileRecord]) -> AsyncIterator[bytes]:
        """
        Validate eagerly, then return a lazy, single-use byte stream.

        The caller must already have passed the ready/expiry guard.
        """
        if not files:
            raise ValidationError("Cannot build an archive with no files", {"files": "must not be empty"})
        return self._stream(list(files), self.member_names(files))

    async def _open(self, record: FileRecord):
        return await asyncio.to_thread(self._storage.open_read_stream, record.object_path)

    async def _stream(self, files: List[FileRecord], names: List[str]) -> AsyncIterator[bytes]:
        sink = _ZipSink()
        archive = zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED)
        date_time = time.localtime()[:6]
        upcoming = iter(files)
        pending = deque()
        completed = False

        def prefetch():
            while len(pending) < self._prefetch:
                record = next(upcoming, None)
                if record is None:
                    return
                pending.append(asyncio.ensure_future(self._open(record)))

        try:
            prefetch()
            for name in names:
                try:
                    # shield: a cancelled response must not orphan an in-flight open
                    body = await asyncio.shield(pending[0])
                except NotFound as e:
                    raise ArchiveStreamError(name, "object not found") from e
                except Exception as e:
                    raise ArchiveStreamError(name, str(e)) from e
                pending.popleft()
                prefetch()

                info = zipfile.ZipInfo(name, date_time=date_time)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                try:
                    with archive.open(info, mode="w", force_zip64=True) as member:
                        while True:
                            try:
                                chunk = await asyncio.to_thread(body.read, self._chunk_size)
                            except Exception as e:
                                raise ArchiveStreamError(name, str(e)) from e
                            if not chunk:
                                break
                            member.write(chunk)
                            data = sink.drain()
                            if data:
                                yield data
                finally:
                    body.close()

                data = sink.drain()
                if data:
                    yield data

            archive.close()
            completed = True
            yield sink.drain()

        except ArchiveStreamError as e:
            logger.error(f"Archive aborted after partial output: {e}")
            raise
        finally:
            if not completed:
                # nothing zipfile writes while being torn down may reach the client
                sink.discard()
                for task in pending:
                    task.add_done_callback(_release_body)
