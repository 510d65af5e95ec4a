"""Supervised line streaming from long-running engine subprocesses.

One reader task per pipe feeds a bounded queue; readers block when the consumer
falls behind. A watcher kills the process when the stop event fires. However
the consumer leaves the generator, the process is killed and every worker is
joined before control returns.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

_EOF = object()


@dataclass(frozen=True)
class StreamLine:
    """One decoded output line tagged with the pipe it came from."""

    stream: str
    text: str


async def stream_process(
    process: asyncio.subprocess.Process,
    *,
    stop: asyncio.Event | None = None,
    queue_size: int = 256,
    shutdown_timeout: float = 5.0,
    skip_empty: bool = False,
) -> AsyncIterator[StreamLine]:
    """Yield lines from a process's stdout and stderr until both close.

    Line order is preserved per pipe; there is no ordering between pipes.

    Args:
        process: Live process with piped stdout and stderr
        stop: Optional external cancellation signal
        queue_size: Bound of the delivery channel
        shutdown_timeout: Seconds workers get to exit after shutdown starts
        skip_empty: Drop blank lines (pull progress)
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
    readers = [
        asyncio.create_task(_pump(pipe, name, queue, skip_empty), name=f"stream-{name}")
        for name, pipe in (("stdout", process.stdout), ("stderr", process.stderr))
        if pipe is not None
    ]
    workers = list(readers)
    if stop is not None:
        workers.append(asyncio.create_task(_kill_on_stop(process, stop), name="stream-watch"))

    open_readers = len(readers)
    try:
        while open_readers:
            if stop is not None and stop.is_set():
                # Buffered lines are discarded once cancellation fires
                break
            item = await queue.get()
            if item is _EOF:
                open_readers -= 1
                continue
            yield item
    finally:
        await _shutdown(process, workers, shutdown_timeout, drained=open_readers == 0)


async def _pump(
    pipe: asyncio.StreamReader, name: str, queue: asyncio.Queue, skip_empty: bool
) -> None:
    try:
        while True:
            raw = await _read_line(pipe)
            if not raw:
                break
            text = raw.decode(errors="replace").rstrip("\r\n")
            if skip_empty and not text.strip():
                continue
            await queue.put(StreamLine(name, text))
    except ConnectionError as e:
        logger.warning("Stream reader stopped", stream=name, error=str(e))
    await queue.put(_EOF)


async def _read_line(pipe: asyncio.StreamReader) -> bytes:
    """Read one full line, however far it runs past the reader's buffer limit."""
    chunks: list[bytes] = []
    while True:
        try:
            chunks.append(await pipe.readuntil(b"\n"))
            break
        except asyncio.LimitOverrunError as e:
            chunks.append(await pipe.read(e.consumed))
        except asyncio.IncompleteReadError as e:
            chunks.append(e.partial)
            break
    return b"".join(chunks)


async def _kill_on_stop(process: asyncio.subprocess.Process, stop: asyncio.Event) -> None:
    await stop.wait()
    _kill(process)


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def _shutdown(
    process: asyncio.subprocess.Process,
    workers: list[asyncio.Task],
    timeout: float,
    drained: bool,
) -> None:
    if drained:
        # Both pipes closed: let the process report its own exit status
        try:
            await asyncio.wait_for(asyncio.shield(process.wait()), timeout=timeout)
        except asyncio.TimeoutError:
            pass
    _kill(process)
    for task in workers:
        if not task.done():
            task.cancel()
    if workers:
        _, pending = await asyncio.wait(workers, timeout=timeout)
        if pending:
            logger.warning("Stream workers did not exit in time", pending=len(pending))
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Streamed process was not reaped in time", pid=process.pid)
