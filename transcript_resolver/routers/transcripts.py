"""
API Router for transcript resolution endpoints.
"""
import asyncio
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.requests import HTTPConnection

from ..models import ProgressEvent, ProviderContext, ProviderResult, ResolveRequest
from ..services.pipeline import build_fetch_options, fetch_transcript
from ..services.transcriber import TranscriptionEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["transcripts"])


def get_http_client(conn: HTTPConnection) -> httpx.AsyncClient:
    return conn.app.state.http_client


def get_engine(conn: HTTPConnection) -> TranscriptionEngine:
    return conn.app.state.engine


@router.post("/transcripts/resolve", response_model=ProviderResult)
async def resolve_transcript(
    request: ResolveRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
    engine: TranscriptionEngine = Depends(get_engine),
):
    """
    Resolve a transcript for a podcast feed, platform page or media URL.
    Failures are reported in the result (text is null, notes/metadata explain why).
    """
    context = ProviderContext(url=request.url, html=request.html)
    options = build_fetch_options(client, engine=engine)
    return await fetch_transcript(context, options)


@router.websocket("/ws/resolve")
async def websocket_resolve(
    websocket: WebSocket,
    client: httpx.AsyncClient = Depends(get_http_client),
    engine: TranscriptionEngine = Depends(get_engine),
):
    """
    WebSocket endpoint streaming progress while a transcript is resolved.

    The client sends one ResolveRequest message; the server replies with
    {"type": "progress", "event": ...} messages and a final
    {"type": "result", "result": ...} message, then closes.
    """
    await websocket.accept()
    try:
        request = ResolveRequest.model_validate(await websocket.receive_json())
    except (ValidationError, ValueError) as e:
        await websocket.send_json({"type": "error", "detail": str(e)})
        await websocket.close(code=1003)
        return
    except WebSocketDisconnect:
        return

    queue: asyncio.Queue[Optional[ProgressEvent]] = asyncio.Queue()

    async def send_progress():
        while True:
            event = await queue.get()
            if event is None:
                break
            try:
                await websocket.send_json({"type": "progress", "event": event.model_dump()})
            except (WebSocketDisconnect, RuntimeError):
                # Socket closed; drain the remaining events
                continue

    sender = asyncio.create_task(send_progress())
    context = ProviderContext(url=request.url, html=request.html)
    options = build_fetch_options(client, on_progress=queue.put_nowait, engine=engine)
    try:
        result = await fetch_transcript(context, options)
    finally:
        queue.put_nowait(None)
        await sender

    try:
        await websocket.send_json({"type": "result", "result": result.model_dump(mode="json")})
        await websocket.close()
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info(f"Client disconnected before result for {request.url}: {e}")
