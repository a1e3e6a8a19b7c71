"""Tests for the transfer lifecycle: draft -> ready, expiry, and download guards."""

from datetime import timedelta

import pytest

from exceptions import Expired, NotFound, NotReady, ProviderFailure, ValidationError
from transfer_model import FileRecord, TransferStatus, truncate_millis
from transfers import FileDescriptor


async def _ready_transfer(manager, names=("x.txt",)):
    created = await manager.create([FileDescriptor(name=n, type="text/plain") for n in names])
    confirmed = [
        FileRecord(name=u.name, type=u.type, size=u.size, object_path=u.object_path)
        for u in created.uploads
    ]
    await manager.finalize(created.transfer_id, confirmed)
    return created.transfer_id, confirmed


class TestCreate:

    @pytest.mark.asyncio
    async def test_one_grant_per_file_and_unique_paths(self, manager, fake_storage):
        descriptors = [
            FileDescriptor(name="a.txt"),
            FileDescriptor(name="a.txt", type="text/plain", size=3),
            FileDescriptor(name="b/c.txt"),
        ]
        created = await manager.create(descriptors)

        assert len(created.uploads) == 3
        paths = [u.object_path for u in created.uploads]
        assert len(set(paths)) == 3
        assert paths == [
            f"uploads/{created.transfer_id}/a.txt",
            f"uploads/{created.transfer_id}/a (2).txt",
            f"uploads/{created.transfer_id}/b_c.txt",
        ]
        assert len(fake_storage.grant_calls) == 3

    @pytest.mark.asyncio
    async def test_persists_draft_without_grant_urls(self, manager, repository, document_store):
        created = await manager.create([FileDescriptor(name="x.txt")])

        transfer = await repository.get(created.transfer_id)
        assert transfer.status == TransferStatus.DRAFT
        assert transfer.completed_at is None
        assert transfer.expires_at is None
        assert [f.object_path for f in transfer.files] == [f"uploads/{created.transfer_id}/x.txt"]
        assert "uploadUrl" not in document_store.get(created.transfer_id)["files"][0]

    @pytest.mark.asyncio
    async def test_all_grants_share_one_upload_expiry(self, manager, fake_storage, clock):
        created = await manager.create([FileDescriptor(name="a"), FileDescriptor(name="b")])

        assert created.expires_at == truncate_millis(clock()) + timedelta(minutes=15)
        # now is truncated to whole ms, so the window is a few microseconds short of 900s
        assert {call[2] for call in fake_storage.grant_calls} == {899}

    @pytest.mark.asyncio
    async def test_missing_type_defaults_to_binary(self, manager):
        created = await manager.create([FileDescriptor(name="blob")])
        assert created.uploads[0].type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_zero_files_rejected_before_any_grant(self, manager, fake_storage):
        with pytest.raises(ValidationError) as exc_info:
            await manager.create([])
        assert "files" in exc_info.value.fields
        assert fake_storage.grant_calls == []

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, manager, fake_storage):
        with pytest.raises(ValidationError) as exc_info:
            await manager.create([FileDescriptor(name="ok.txt"), FileDescriptor(name="  ")])
        assert exc_info.value.fields == {"files.1.name": "required"}
        assert fake_storage.grant_calls == []

    @pytest.mark.asyncio
    async def test_grant_failure_persists_nothing(self, manager, fake_storage, document_store, monkeypatch):
        monkeypatch.setattr("transfers.uuid.uuid4", lambda: "fixed-id")
        fake_storage.fail_grants_for.add("uploads/fixed-id/b.txt")

        with pytest.raises(ProviderFailure):
            await manager.create([FileDescriptor(name="a.txt"), FileDescriptor(name="b.txt")])

        assert document_store.get("fixed-id") is None

    @pytest.mark.asyncio
    async def test_draft_save_failure_is_reported_after_grants(self, manager, repository, fake_storage, monkeypatch):
        async def failing_save(transfer):
            raise ProviderFailure("document-store", "write rejected")

        monkeypatch.setattr(repository, "save", failing_save)

        with pytest.raises(ProviderFailure) as exc_info:
            await manager.create([FileDescriptor(name="x.txt")])

        assert exc_info.value.provider == "document-store"
        assert len(fake_storage.grant_calls) == 1


class TestFinalize:

    @pytest.mark.asyncio
    async def test_unknown_transfer_is_not_found(self, manager):
        with pytest.raises(NotFound):
            await manager.finalize("missing", [FileRecord(name="x", object_path="uploads/missing/x")])

    @pytest.mark.asyncio
    async def test_empty_file_list_rejected(self, manager):
        created = await manager.create([FileDescriptor(name="x.txt")])
        with pytest.raises(ValidationError):
            await manager.finalize(created.transfer_id, [])

    @pytest.mark.asyncio
    async def test_sets_ready_and_exact_expiry(self, manager, repository, clock):
        created = await manager.create([FileDescriptor(name="x.txt")])
        clock.advance(minutes=3)

        result = await manager.finalize(created.transfer_id, [
            FileRecord(name="x.txt", type="text/plain", object_path=f"uploads/{created.transfer_id}/x.txt")
        ])

        transfer = await repository.get(created.transfer_id)
        assert transfer.status == TransferStatus.READY
        assert transfer.expires_at == transfer.completed_at + timedelta(hours=24)
        assert result.expires_at == transfer.expires_at
        assert result.share_url == f"https://share.example.test/t/{created.transfer_id}"

    @pytest.mark.asyncio
    async def test_replaces_file_list(self, manager, repository):
        created = await manager.create([FileDescriptor(name="a"), FileDescriptor(name="b")])
        confirmed = [FileRecord(name="b", type="text/plain", size=9, object_path=created.uploads[1].object_path)]

        await manager.finalize(created.transfer_id, confirmed)

        transfer = await repository.get(created.transfer_id)
        assert transfer.files == confirmed

    @pytest.mark.asyncio
    async def test_second_finalize_restarts_window(self, manager, repository, clock):
        transfer_id, confirmed = await _ready_transfer(manager)
        first = (await repository.get(transfer_id)).expires_at

        clock.advance(hours=2)
        await manager.finalize(transfer_id, confirmed)

        second = (await repository.get(transfer_id)).expires_at
        assert second == first + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_repeat_finalize_follows_a_clock_that_steps_back(self, manager, repository, clock):
        transfer_id, confirmed = await _ready_transfer(manager)
        first = (await repository.get(transfer_id)).expires_at

        clock.advance(seconds=-30)
        await manager.finalize(transfer_id, confirmed)

        assert (await repository.get(transfer_id)).expires_at == first - timedelta(seconds=30)


class TestFetchMetadata:

    @pytest.mark.asyncio
    async def test_unknown_transfer(self, manager):
        with pytest.raises(NotFound):
            await manager.fetch_metadata("missing")

    @pytest.mark.asyncio
    async def test_draft_is_never_expired(self, manager, clock):
        created = await manager.create([FileDescriptor(name="x.txt")])
        clock.advance(days=3650)

        transfer = await manager.fetch_metadata(created.transfer_id)
        assert transfer.status == TransferStatus.DRAFT

    @pytest.mark.asyncio
    async def test_ready_is_expired_only_strictly_after_expiry(self, manager, clock):
        transfer_id, _ = await _ready_transfer(manager)
        transfer = await manager.fetch_metadata(transfer_id)

        clock.now = transfer.expires_at
        assert (await manager.fetch_metadata(transfer_id)).status == TransferStatus.READY

        clock.advance(milliseconds=1)
        with pytest.raises(Expired):
            await manager.fetch_metadata(transfer_id)

    @pytest.mark.asyncio
    async def test_expired_is_never_written_back(self, manager, clock, document_store):
        transfer_id, _ = await _ready_transfer(manager)
        clock.advance(days=2)

        with pytest.raises(Expired):
            await manager.fetch_metadata(transfer_id)
        assert document_store.get(transfer_id)["status"] == "ready"


class TestAuthorizeDownload:

    @pytest.mark.asyncio
    async def test_draft_rejected_even_far_in_future(self, manager, clock):
        created = await manager.create([FileDescriptor(name="x.txt")])
        clock.advance(days=10000)
        with pytest.raises(NotReady):
            await manager.authorize_download(created.transfer_id)

    @pytest.mark.asyncio
    async def test_unknown_transfer(self, manager):
        with pytest.raises(NotFound):
            await manager.authorize_download("missing")

    @pytest.mark.asyncio
    async def test_single_file_scenario(self, manager, clock):
        created = await manager.create([FileDescriptor(name="x.txt")])
        assert len(created.uploads) == 1

        await manager.finalize(created.transfer_id, [
            FileRecord(name="x.txt", type="text/plain", object_path=f"uploads/{created.transfer_id}/x.txt")
        ])

        files = await manager.authorize_download(created.transfer_id)
        assert [f.name for f in files] == ["x.txt"]

        clock.advance(hours=24, milliseconds=1)
        with pytest.raises(Expired):
            await manager.authorize_download(created.transfer_id)


class TestDownloadGrant:

    @pytest.mark.asyncio
    async def test_issues_read_grant_by_index(self, manager, fake_storage):
        transfer_id, confirmed = await _ready_transfer(manager, names=("a.txt", "b.txt"))
        fake_storage.grant_calls.clear()

        url = await manager.download_grant(transfer_id, 1)

        assert "verb=GET" in url
        key, _, expires_in, _, download_name = fake_storage.grant_calls[0]
        assert key == confirmed[1].object_path
        assert expires_in == 600
        assert download_name == "b.txt"

    @pytest.mark.asyncio
    async def test_out_of_range_index(self, manager):
        transfer_id, _ = await _ready_transfer(manager)
        with pytest.raises(NotFound):
            await manager.download_grant(transfer_id, 5)

    @pytest.mark.asyncio
    async def test_negative_index(self, manager):
        transfer_id, _ = await _ready_transfer(manager)
        with pytest.raises(ValidationError):
            await manager.download_grant(transfer_id, -1)

    @pytest.mark.asyncio
    async def test_draft_has_no_download(self, manager):
        created = await manager.create([FileDescriptor(name="x.txt")])
        with pytest.raises(NotReady):
            await manager.download_grant(created.transfer_id, 0)

    @pytest.mark.asyncio
    async def test_expired_has_no_archive(self, manager, clock):
        transfer_id, _ = await _ready_transfer(manager)
        clock.advance(days=2)
        with pytest.raises(Expired):
            await manager.archive(transfer_id)
