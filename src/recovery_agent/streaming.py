"""Server-Sent Events transport for live ReAct runs.

Turns the controller's event sequence into the text/event-stream wire
format:

    data: {"type": "thought", "iteration": 1, "thought": "...", ...}\\n\\n
    data: {"type": "action", "iteration": 1, "tool": "...", "args": {...}}\\n\\n
    ...
    data: [DONE]\\n\\n

The agent runs in its own producer task and pushes events onto a bounded
queue; ``stream_sse`` consumes the queue and formats frames. The queue
bound is the backpressure: a slow client pauses the agent at its next
event instead of letting events pile up in memory.

``data: [DONE]`` is always the last frame of a stream that ran to the end,
whether the run finished with an answer, hit its iteration limit, or
failed. When the client goes away (``is_disconnected`` reports True, or
the response generator is closed) the producer task is cancelled, so no
further model calls are made for an abandoned request.
"""


from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable

from recovery_agent.config import STREAM_QUEUE_SIZE
from recovery_agent.schemas import EventType, StreamEvent

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"

# How often the consumer checks for a disconnected client while idle
DISCONNECT_POLL_SECONDS = 0.5


def encode_frame(event: StreamEvent) -> str:
    """Serialize one event as a single SSE ``data:`` record."""
    return f"data: {json.dumps(event.to_wire(), ensure_ascii=False)}\n\n"


async def _produce(
    events: AsyncGenerator[StreamEvent, None],
    queue: asyncio.Queue[StreamEvent | None],
) -> None:
    """Copy events onto the queue, then None as the end marker.

    The event generator is always closed, so a cancelled producer also
    ends the controller's run.
    """
    try:
        async with contextlib.aclosing(events) as stream:
            async for event in stream:
                await queue.put(event)
    except Exception as exc:
        # The controller reports its own failures as error events; this is anything else
        logger.exception("Agent event stream raised")
        await queue.put(StreamEvent(type=EventType.ERROR, iteration=0, error=str(exc)))
    await queue.put(None)


async def _stop_producer(
    producer: asyncio.Task[None],
    queue: asyncio.Queue[StreamEvent | None],
    poll_interval: float,
) -> None:
    """Cancel the producer and wait until it has finished.

    Nobody reads the queue any more, so it is drained on every pass; a
    producer blocked on a full queue would otherwise never see the
    cancellation. Cancellation is repeated until the task is done.
    """
    while not producer.done():
        producer.cancel()
        while not queue.empty():
            queue.get_nowait()
        await asyncio.wait({producer}, timeout=poll_interval)


async def stream_sse(
    events: AsyncGenerator[StreamEvent, None],
    *,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    queue_size: int = STREAM_QUEUE_SIZE,
    poll_interval: float = DISCONNECT_POLL_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for ``events``, ending with ``data: [DONE]``.

    Args:
        events: The controller's event stream (consumed exactly once).
        is_disconnected: Async callable returning True once the client has
            gone, e.g. Starlette's ``request.is_disconnected``.
        queue_size: Max events buffered between producer and consumer.
        poll_interval: Seconds between disconnect checks while waiting.
    """
    queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue(maxsize=queue_size)
    producer = asyncio.create_task(_produce(events, queue))
    disconnected = False

    try:
        while True:
            if is_disconnected is not None and await is_disconnected():
                logger.info("Client disconnected; cancelling agent run")
                disconnected = True
                break
            try:
                async with asyncio.timeout(poll_interval):
                    item = await queue.get()
            except TimeoutError:
                continue
            if item is None:
                break
            yield encode_frame(item)

        if not disconnected:
            yield DONE_FRAME
    finally:
        await _stop_producer(producer, queue, poll_interval)
