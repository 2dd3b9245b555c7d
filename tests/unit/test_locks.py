import asyncio

import pytest

from core.utils.locks import AsyncReadWriteLock


@pytest.mark.asyncio
async def test_readers_share_the_lock():
    lock = AsyncReadWriteLock()
    await lock.acquire_read()
    await asyncio.wait_for(lock.acquire_read(), 0.1)

    assert lock.readers == 2
    await lock.release_read()
    await lock.release_read()
    assert lock.readers == 0


@pytest.mark.asyncio
async def test_writer_waits_for_readers_and_blocks_new_ones():
    lock = AsyncReadWriteLock()
    order = []

    await lock.acquire_read()

    async def writer():
        async with lock.write():
            order.append("write")

    async def late_reader():
        async with lock.read():
            order.append("read")

    writer_task = asyncio.create_task(writer())
    await asyncio.sleep(0)
    reader_task = asyncio.create_task(late_reader())
    await asyncio.sleep(0.01)

    assert order == []
    await lock.release_read()
    await asyncio.gather(writer_task, reader_task)

    assert order == ["write", "read"]


@pytest.mark.asyncio
async def test_cancelled_writer_does_not_strand_readers():
    lock = AsyncReadWriteLock()
    await lock.acquire_read()

    writer_task = asyncio.create_task(lock.acquire_write())
    await asyncio.sleep(0.01)
    writer_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await writer_task

    await asyncio.wait_for(lock.acquire_read(), 0.1)
    assert lock.readers == 2
    assert not lock.write_locked
