"""
HTTP surface of the gateway.

Document analysis and chat, each in unary (one JSON object) and streaming
(framed SSE records) form. Input problems are answered with a JSON error
before any model call; problems after a stream has started arrive as an
in-band error record.
"""

import logging
from typing import Any, AsyncIterable, Dict, Optional, Tuple

from fastapi import APIRouter, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as StarletteUploadFile

from .config import Settings, load_settings
from .errors import ErrorKind, GatewayError
from .fallback import analysis_fallback_text, chat_fallback_text, fallback_fragments
from .framing import STREAM_HEADERS, frame_stream, metadata_event
from .invoker import ModelInvoker, build_invoker
from .prompts import PromptContext, assemble_analysis_prompt, assemble_chat_prompt
from .schemas import ChatRequest, chat_result, parse_chat_request
from .threads import resolve_thread_id
from .uploads import MAX_UPLOAD_BYTES, UploadedDocument, check_size, read_upload, safe_filename, validate_upload


logger = logging.getLogger(__name__)

router = APIRouter()


def error_response(err: GatewayError) -> JSONResponse:
    return JSONResponse(err.to_dict(), status_code=err.status_code)


def internal_error() -> JSONResponse:
    logger.exception("Unhandled error while serving request")
    return error_response(GatewayError(ErrorKind.INTERNAL_ERROR))


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def app_invoker(request: Request) -> ModelInvoker:
    return request.app.state.invoker


def event_stream(body: AsyncIterable[str]) -> StreamingResponse:
    return StreamingResponse(body, media_type="text/event-stream", headers=STREAM_HEADERS)


# ----------------------------
# Document analysis
# ----------------------------

async def load_document(file: Any) -> UploadedDocument:
    if not isinstance(file, StarletteUploadFile) or not file.filename:
        raise GatewayError(ErrorKind.INVALID_PAYLOAD, "No file provided")

    check_size(file.size)
    data = await read_upload(file)
    # PDF parsing is blocking.
    return await run_in_threadpool(validate_upload, data, file.filename, file.content_type, declared_size=file.size)


async def analyze_unary(request: Request, document: UploadedDocument) -> Dict[str, str]:
    settings = app_settings(request)
    invoker = app_invoker(request)

    if not invoker.configured:
        logger.info("No API key configured, answering %s with fallback", safe_filename(document.filename))
        return {"result": analysis_fallback_text(document.filename, document.media_type, document.size)}

    prompt = assemble_analysis_prompt(settings.analysis_prompt, document)
    return {"result": await invoker.generate(prompt)}


def analyze_streaming(request: Request, document: UploadedDocument) -> StreamingResponse:
    settings = app_settings(request)
    invoker = app_invoker(request)

    prompt = assemble_analysis_prompt(settings.analysis_prompt, document)
    metadata = metadata_event(
        filename=document.filename,
        fileType=document.media_type,
        fileSize=document.size,
        pages=document.pages,
    )

    if invoker.configured:
        fragments = invoker.stream(prompt)
    else:
        logger.info("No API key configured, streaming fallback for %s", safe_filename(document.filename))
        text = analysis_fallback_text(document.filename, document.media_type, document.size)
        fragments = fallback_fragments(text, settings.fallback_word_delay)

    return event_stream(frame_stream(
        fragments,
        metadata,
        terminal_fields={"filename": document.filename},
        is_disconnected=request.is_disconnected,
        timeout=settings.stream_timeout,
    ))


@router.post("/analyze")
async def analyze(request: Request, file: Optional[UploadFile] = File(None)):
    try:
        document = await load_document(file)
        return await analyze_unary(request, document)
    except GatewayError as err:
        return error_response(err)
    except Exception:
        return internal_error()


@router.post("/analyze_stream")
async def analyze_stream(request: Request, file: Optional[UploadFile] = File(None)):
    try:
        document = await load_document(file)
        return analyze_streaming(request, document)
    except GatewayError as err:
        return error_response(err)
    except Exception:
        return internal_error()


# ----------------------------
# Chat
# ----------------------------

async def read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise GatewayError(ErrorKind.INVALID_PAYLOAD, "Invalid JSON in request body") from None


def prepare_chat(request: Request, body: ChatRequest) -> Tuple[str, PromptContext]:
    settings = app_settings(request)
    prompt = assemble_chat_prompt(
        settings.system_prompt,
        body.current_message(),
        prescription_context=body.prescriptionContext,
        history=body.conversationHistory,
        max_history_messages=settings.max_history_messages,
    )
    thread_id = resolve_thread_id(body.threadId)
    logger.info(
        "Chat request thread=%s history=%d context=%s",
        thread_id, len(body.conversationHistory), body.prescriptionContext is not None,
    )
    return thread_id, prompt


def chat_fallback(thread_id: str, body: ChatRequest) -> str:
    return chat_fallback_text(
        thread_id,
        history_count=len(body.conversationHistory),
        has_context=body.prescriptionContext is not None,
    )


def chat_streaming(request: Request, body: ChatRequest) -> StreamingResponse:
    settings = app_settings(request)
    invoker = app_invoker(request)
    thread_id, prompt = prepare_chat(request, body)

    if invoker.configured:
        fragments = invoker.stream(prompt)
    else:
        logger.info("No API key configured, streaming chat fallback for thread=%s", thread_id)
        fragments = fallback_fragments(chat_fallback(thread_id, body), settings.fallback_word_delay)

    return event_stream(frame_stream(
        fragments,
        metadata_event(threadId=thread_id),
        terminal_fields={"threadId": thread_id},
        is_disconnected=request.is_disconnected,
        timeout=settings.stream_timeout,
    ))


@router.post("/chat")
async def chat(request: Request):
    try:
        body = parse_chat_request(await read_json(request))
        thread_id, prompt = prepare_chat(request, body)
        invoker = app_invoker(request)
        if not invoker.configured:
            return chat_result(chat_fallback(thread_id, body), thread_id)
        return chat_result(await invoker.generate(prompt), thread_id)
    except GatewayError as err:
        return error_response(err)
    except Exception:
        return internal_error()


@router.post("/chat_stream")
async def chat_stream(request: Request):
    try:
        body = parse_chat_request(await read_json(request))
        return chat_streaming(request, body)
    except GatewayError as err:
        return error_response(err)
    except Exception:
        return internal_error()


# ----------------------------
# Combined endpoint (multipart -> analysis, JSON -> chat)
# ----------------------------

@router.post("/api/ai")
async def ai(request: Request):
    try:
        content_type = request.headers.get("content-type", "")
        if "multipart/form-data" in content_type:
            async with request.form() as form:
                document = await load_document(form.get("file"))
            return analyze_streaming(request, document)

        body = parse_chat_request(await read_json(request))
        return chat_streaming(request, body)
    except GatewayError as err:
        return error_response(err)
    except Exception:
        return internal_error()


# ----------------------------
# Info
# ----------------------------

@router.get("/")
def root(request: Request):
    settings = app_settings(request)
    return {
        "ok": True,
        "service": "Rx Gateway API",
        "model": settings.model_name,
        "model_configured": app_invoker(request).configured,
        "max_upload_mb": MAX_UPLOAD_BYTES // (1024 * 1024),
    }


@router.get("/health")
def health():
    return {"ok": True}


def create_app(settings: Optional[Settings] = None, invoker: Optional[ModelInvoker] = None) -> FastAPI:
    settings = settings or load_settings()
    invoker = invoker or build_invoker(settings)

    app = FastAPI(title="Rx Gateway", docs_url="/swagger", redoc_url=None)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.invoker = invoker
    app.include_router(router)

    logger.info("Gateway ready (model=%s, configured=%s)", settings.model_name, invoker.configured)
    return app
