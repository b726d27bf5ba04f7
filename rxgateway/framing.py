"""
Event framing for streamed answers.

Every stream is ``metadata`` first, any number of ``chunk`` records, then
exactly one of ``done`` or ``error``. Records are SSE ``data:`` lines
carrying one JSON object and ending with a blank line, so a reader can
buffer arbitrary network reads and split on the blank line.
"""

import json
import codecs
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterable, Awaitable, Callable, Dict, List, Optional

from .errors import ErrorKind, GatewayError


logger = logging.getLogger(__name__)

RECORD_PREFIX = "data: "
RECORD_END = "\n\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

DisconnectCheck = Callable[[], Awaitable[bool]]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_record(event: Dict[str, Any]) -> str:
    # json.dumps escapes raw newlines, so a record never contains RECORD_END.
    return f"{RECORD_PREFIX}{json.dumps(event, ensure_ascii=False)}{RECORD_END}"


def metadata_event(**fields: Any) -> Dict[str, Any]:
    event = {k: v for k, v in fields.items() if v is not None}
    event.setdefault("timestamp", utc_timestamp())
    event["type"] = "metadata"
    return event


def chunk_event(text: str) -> Dict[str, Any]:
    return {"type": "chunk", "content": text}


def done_event(**fields: Any) -> Dict[str, Any]:
    event = {"type": "done", "timestamp": utc_timestamp()}
    event.update({k: v for k, v in fields.items() if v is not None})
    return event


def error_event(err: GatewayError, **fields: Any) -> Dict[str, Any]:
    event = {"type": "error", "error": err.message, "kind": err.kind.value, "retryable": err.retryable}
    event.update({k: v for k, v in fields.items() if v is not None})
    return event


class EventDecoder:
    """Incremental reader for the framed stream; tolerates split reads."""

    def __init__(self):
        self._buffer = ""
        self._bytes = codecs.getincrementaldecoder("utf-8")()

    def feed(self, data) -> List[Dict[str, Any]]:
        if isinstance(data, bytes):
            data = self._bytes.decode(data)
        self._buffer += data
        events = []
        while RECORD_END in self._buffer:
            record, self._buffer = self._buffer.split(RECORD_END, 1)
            for line in record.splitlines():
                if line.startswith(RECORD_PREFIX):
                    events.append(json.loads(line[len(RECORD_PREFIX):]))
        return events

    @property
    def pending(self) -> str:
        return self._buffer


async def frame_stream(
    fragments: AsyncIterable[str],
    metadata: Dict[str, Any],
    terminal_fields: Optional[Dict[str, Any]] = None,
    is_disconnected: Optional[DisconnectCheck] = None,
    timeout: Optional[float] = None,
):
    """
    Turn a source of text deltas into framed records.

    Metadata is yielded before the source is first awaited. A failure after
    that point becomes an in-band error record because the HTTP status has
    already been sent. If the client goes away the source is closed and
    nothing more is emitted. ``timeout`` bounds the whole stream.
    """
    terminal_fields = terminal_fields or {}
    yield encode_record(metadata)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None
    iterator = fragments.__aiter__()

    try:
        while True:
            try:
                if deadline is None:
                    fragment = await iterator.__anext__()
                else:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    fragment = await asyncio.wait_for(iterator.__anext__(), remaining)
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError:
                logger.warning("Stream exceeded %.1fs, abandoning", timeout)
                yield encode_record(error_event(
                    GatewayError(ErrorKind.UPSTREAM_UNAVAILABLE, "AI response timed out. Please try again."),
                    **terminal_fields,
                ))
                return

            if is_disconnected is not None and await is_disconnected():
                logger.info("Client disconnected mid-stream, abandoning")
                return

            # Empty fragments are heartbeats from non-text upstream events.
            if fragment:
                yield encode_record(chunk_event(fragment))

    except GatewayError as err:
        logger.warning("Stream failed after metadata (%s)", err.kind.value)
        yield encode_record(error_event(err, **terminal_fields))
        return
    except Exception:
        logger.exception("Unexpected streaming error")
        yield encode_record(error_event(GatewayError(ErrorKind.INTERNAL_ERROR), **terminal_fields))
        return
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()

    yield encode_record(done_event(**terminal_fields))
