"""
FastAPI application: the observer side of chatwire.

Endpoints:
  GET /api/health                      liveness
  GET /api/sessions                    discovery listing, most recent first
  GET /api/sessions/{name}             one session's metadata (404 if unknown)
  GET /api/sessions/{name}/messages    stored history
  GET /api/stream/{name}               SSE: history replay, then live events

The app is built around the same relay and storage the chat session uses,
so it is served from the chat process (see chatwire.repl).
"""

import json
import logging
from contextlib import aclosing
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from chatwire.errors import StorageError
from chatwire.models import ConversationEvent, EventKind
from chatwire.relay import EventRelay
from chatwire.storage import SessionStorage, validate_session_name

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def setup_logging(cfg: dict, console: bool = True):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def sse_frame(event: ConversationEvent) -> str:
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


def _checked_name(name: str) -> str:
    try:
        return validate_session_name(name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def create_app(relay: EventRelay, storage: SessionStorage) -> FastAPI:
    app = FastAPI(title="chatwire", docs_url=None, redoc_url=None)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "durable": storage.durable}

    @app.get("/api/sessions")
    async def list_sessions():
        try:
            sessions = await storage.registry.list()
        except StorageError as e:
            logger.error("Failed to fetch sessions: %s", e)
            return JSONResponse({"error": "Failed to fetch sessions"}, status_code=500)
        return [s.to_dict() for s in sessions]

    @app.get("/api/sessions/{name}")
    async def get_session(name: str):
        name = _checked_name(name)
        try:
            record = await storage.registry.get(name)
        except StorageError as e:
            logger.error("Failed to fetch session %s: %s", name, e)
            return JSONResponse({"error": "Failed to fetch session"}, status_code=500)
        if record is None:
            return JSONResponse({"error": f"Session '{name}' not found"}, status_code=404)
        return record.to_dict()

    @app.get("/api/sessions/{name}/messages")
    async def get_messages(name: str):
        name = _checked_name(name)
        try:
            messages = await storage.history.read_all(name)
        except StorageError as e:
            logger.error("Failed to fetch messages for session %s: %s", name, e)
            return JSONResponse({"error": "Failed to fetch messages"}, status_code=500)
        return [m.to_dict() for m in messages]

    @app.get("/api/stream/{name}")
    async def stream(name: str):
        name = _checked_name(name)

        async def event_stream():
            yield sse_frame(ConversationEvent(kind=EventKind.SYSTEM, content="Connected to stream"))
            logger.info("[SSE] Observer connected to %s", name)
            try:
                async with aclosing(relay.subscribe(name)) as events:
                    async for event in events:
                        yield sse_frame(event)
            except StorageError as e:
                logger.error("[SSE] Replay for %s failed: %s", name, e)
                yield sse_frame(ConversationEvent(kind=EventKind.ERROR, content="History unavailable"))
            finally:
                logger.info("[SSE] Observer left %s", name)

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    return app
