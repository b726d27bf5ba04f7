"""Fakes for the Responses API client and stream decoding helpers."""

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import fitz
import httpx

from rxgateway.framing import EventDecoder


PNG_2KB = b"\x89PNG\r\n\x1a\n" + b"\x00" * 2040


def make_pdf(pages: int = 1) -> bytes:
    doc = fitz.open()
    try:
        for _ in range(pages):
            doc.new_page()
        return doc.tobytes()
    finally:
        doc.close()


def delta(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="response.output_text.delta", delta=text)


def completed() -> SimpleNamespace:
    return SimpleNamespace(type="response.completed")


def status_error(cls, status: int):
    request = httpx.Request("POST", "https://api.test/v1/responses")
    return cls("boom", response=httpx.Response(status, request=request), body=None)


class FakeStream:
    def __init__(self, events: List[Any], error: Optional[BaseException] = None, delay: float = 0.0):
        self.events = events
        self.error = error
        self.delay = delay
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield event
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class FakeResponses:
    def __init__(
        self,
        text: str = "",
        events: Optional[List[Any]] = None,
        error: Optional[BaseException] = None,
        stream_error: Optional[BaseException] = None,
        delay: float = 0.0,
    ):
        self.text = text
        self.delay = delay
        self.events = events if events is not None else []
        self.error = error
        self.stream_error = stream_error
        self.calls: List[Dict[str, Any]] = []
        self.last_stream: Optional[FakeStream] = None

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            self.last_stream = FakeStream(self.events, self.stream_error, self.delay)
            return self.last_stream
        return SimpleNamespace(output_text=self.text)


class FakeClient:
    def __init__(self, **kwargs):
        self.responses = FakeResponses(**kwargs)


def decode_events(body) -> List[Dict[str, Any]]:
    decoder = EventDecoder()
    events = decoder.feed(body)
    assert decoder.pending == ""
    return events


def joined_chunks(events: List[Dict[str, Any]]) -> str:
    return "".join(e["content"] for e in events if e["type"] == "chunk")


def event_types(events: List[Dict[str, Any]]) -> List[str]:
    return [e["type"] for e in events]
