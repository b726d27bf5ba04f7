"""
Remote model invocation over the OpenAI Responses API.

One remote call per request: the SDK client is built with ``max_retries=0``
and nothing here retries. SDK exceptions are translated into GatewayError
kinds by type, not by message text.
"""

import asyncio
import base64
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .config import Settings
from .errors import ErrorKind, GatewayError
from .prompts import ConversationMessage, PromptContext, Role
from .uploads import UploadedDocument


logger = logging.getLogger(__name__)


# ----------------------------
# Error translation
# ----------------------------

def classify_remote_error(exc: BaseException) -> GatewayError:
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return GatewayError(ErrorKind.INVALID_ARGUMENT)
    if isinstance(exc, openai.RateLimitError):
        return GatewayError(ErrorKind.QUOTA_EXCEEDED)
    if isinstance(exc, (openai.APIConnectionError, openai.APIStatusError, openai.APIError)):
        # Connection, timeout, 5xx, auth and unexpected response shapes.
        return GatewayError(ErrorKind.UPSTREAM_UNAVAILABLE)
    return GatewayError(ErrorKind.INTERNAL_ERROR)


# ----------------------------
# Prompt -> Responses API input
# ----------------------------

def document_block(document: UploadedDocument) -> Dict[str, Any]:
    b64 = base64.b64encode(document.data).decode("utf-8")
    data_url = f"data:{document.media_type};base64,{b64}"
    if document.is_pdf:
        return {"type": "input_file", "filename": document.filename, "file_data": data_url}
    return {"type": "input_image", "image_url": data_url}


def message_item(message: ConversationMessage) -> Dict[str, Any]:
    if message.document is None:
        return {"role": message.role.value, "content": message.text}

    blocks: List[Dict[str, Any]] = []
    if message.text:
        blocks.append({"type": "input_text", "text": message.text})
    blocks.append(document_block(message.document))
    return {"role": Role.USER.value, "content": blocks}


def build_input(prompt: PromptContext) -> List[Dict[str, Any]]:
    return [message_item(m) for m in prompt.messages]


# ----------------------------
# Invoker
# ----------------------------

class ModelInvoker:
    """
    Wraps an explicitly passed AsyncOpenAI client.

    ``client`` is None when no credential is configured; callers check
    ``configured`` and route to the fallback instead of invoking.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        model_name: str,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        pre_call_delay: float = 0.0,
    ):
        self.client = client
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.pre_call_delay = pre_call_delay

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _request_kwargs(self, prompt: PromptContext) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": self.model_name, "input": build_input(prompt)}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.max_output_tokens:
            kwargs["max_output_tokens"] = self.max_output_tokens
        return kwargs

    async def _before_call(self) -> None:
        if not self.configured:
            raise GatewayError(ErrorKind.UPSTREAM_UNAVAILABLE, "AI model is not configured")
        # Best-effort burst damping; not backpressure.
        if self.pre_call_delay > 0:
            await asyncio.sleep(self.pre_call_delay)

    async def generate(self, prompt: PromptContext) -> str:
        """Unary mode: wait for the whole answer."""
        await self._before_call()
        try:
            resp = await self.client.responses.create(**self._request_kwargs(prompt))
        except Exception as exc:
            err = classify_remote_error(exc)
            logger.warning("Model call failed (%s): %r", err.kind.value, exc)
            raise err from exc

        text = getattr(resp, "output_text", None)
        if not isinstance(text, str):
            logger.warning("Model response had no output_text: %r", type(resp))
            raise GatewayError(ErrorKind.UPSTREAM_UNAVAILABLE)
        return text

    async def stream(self, prompt: PromptContext) -> AsyncIterator[str]:
        """
        Streaming mode: yield text deltas as they arrive. Each yielded string
        is only the new text since the previous one; other upstream events
        yield "" so the consumer regains control between them.
        """
        await self._before_call()
        try:
            stream = await self.client.responses.create(stream=True, **self._request_kwargs(prompt))
        except Exception as exc:
            err = classify_remote_error(exc)
            logger.warning("Model stream failed to open (%s): %r", err.kind.value, exc)
            raise err from exc

        try:
            async for event in stream:
                kind = getattr(event, "type", None)
                if kind == "response.output_text.delta":
                    yield getattr(event, "delta", "") or ""
                elif kind in ("response.completed", "response.incomplete"):
                    break
                elif kind in ("error", "response.failed"):
                    logger.warning("Model stream reported %s", kind)
                    raise GatewayError(ErrorKind.UPSTREAM_UNAVAILABLE)
                else:
                    yield ""
        except GatewayError:
            raise
        except Exception as exc:
            err = classify_remote_error(exc)
            logger.warning("Model stream broke (%s): %r", err.kind.value, exc)
            raise err from exc
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()


def build_invoker(settings: Settings) -> ModelInvoker:
    client = None
    if settings.model_configured:
        client = AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            max_retries=0,
        )
    return ModelInvoker(
        client,
        settings.model_name,
        temperature=settings.temperature,
        max_output_tokens=settings.max_output_tokens,
        pre_call_delay=settings.pre_call_delay,
    )
