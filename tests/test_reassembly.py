"""Tests for chunk reassembly and upload-data release."""

import pytest

from fileportal.core.exceptions import MissingChunk, StorageError
from fileportal.models.upload_session import UploadSession, UploadVariant
from fileportal.services import keys
from fileportal.services.reassembly import ChunkReassembler
from fileportal.services.session_store import BlobSessionStore


async def seed(storage, chunks, declared_size=None):
    store = BlobSessionStore(storage)
    session = UploadSession(
        session_id="lazy_test",
        variant=UploadVariant.LAZY,
        file_name="notes final.txt",
        declared_size=declared_size or sum(len(c) for c in chunks if c is not None),
        mime_type="text/plain",
        chunk_size=4,
        total_chunks=len(chunks),
    )
    await store.create(session)
    for index, chunk in enumerate(chunks):
        if chunk is not None:
            await storage.put_object(keys.chunk_key(session.session_id, index), chunk)
    return ChunkReassembler(storage, store), session


@pytest.mark.asyncio
async def test_chunks_joined_in_index_order(storage):
    reassembler, session = await seed(storage, [b"abcd", b"efgh", b"ij"])

    result = await reassembler.reassemble(session)

    assert storage.objects[result.file_key][0] == b"abcdefghij"
    assert result.file_size == 10
    assert result.mime_type == "text/plain"
    assert "notes_final.txt" in result.file_key
    assert keys.session_key(session.session_id) not in storage.objects


@pytest.mark.asyncio
async def test_missing_chunk_aborts_without_writing(storage):
    reassembler, session = await seed(storage, [b"abcd", None, b"ij"], declared_size=10)

    with pytest.raises(MissingChunk) as exc:
        await reassembler.reassemble(session)

    assert exc.value.error == "Chunk 1 not found"
    assert exc.value.status_code == 404
    assert [k for k in storage.objects if k.startswith("files/")] == []
    # Nothing released: the upload can still be completed
    assert keys.chunk_key(session.session_id, 0) in storage.objects
    assert keys.session_key(session.session_id) in storage.objects


@pytest.mark.asyncio
async def test_failed_final_write_keeps_chunks(storage, monkeypatch):
    reassembler, session = await seed(storage, [b"abcd", b"ef"])
    monkeypatch.setattr(keys, "final_file_key", lambda name: "files/fixed-key")
    storage.fail("put", "files/fixed-key")

    with pytest.raises(StorageError):
        await reassembler.reassemble(session)

    assert len(await storage.list_all_objects(keys.chunk_prefix(session.session_id))) == 2


@pytest.mark.asyncio
async def test_cleanup_failure_does_not_fail_reassembly(storage):
    reassembler, session = await seed(storage, [b"abcd", b"ef"])
    storage.fail("delete", keys.chunk_key(session.session_id, 1))

    result = await reassembler.reassemble(session)

    assert storage.objects[result.file_key][0] == b"abcdef"
    assert keys.chunk_key(session.session_id, 0) not in storage.objects
    assert keys.chunk_key(session.session_id, 1) in storage.objects


@pytest.mark.asyncio
async def test_release_counts_removed_chunks(storage):
    reassembler, session = await seed(storage, [b"abcd", b"efgh", b"ij"])

    assert await reassembler.release(session.session_id) == 3
    assert storage.objects == {}
