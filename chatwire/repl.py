"""
Terminal chat loop and the wiring behind it.

build_runtime() turns resolved config into a ready ChatSession: provider
backend, storage (durable, or in-memory with a warning), relay, sinks and
broadcaster. run_chat() adds the observer HTTP server to the same event loop
and drives the REPL until /quit or end of input.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import uvicorn

from chatwire.backends import BaseBackend, make_backend
from chatwire.broadcaster import Broadcaster
from chatwire.main import create_app
from chatwire.models import ChatOptions, EventKind
from chatwire.relay import EventRelay
from chatwire.session import ChatSession
from chatwire.sinks import ConsoleSink, EventSink, RelaySink, WireTapSink
from chatwire.storage import SessionStorage, generate_session_name, open_storage
from chatwire.wiretap import WireLog

logger = logging.getLogger(__name__)

USER_PROMPT = "\033[92mYou: \033[0m"


def backend_from_config(cfg: dict, provider: str | None = None, model: str | None = None) -> BaseBackend:
    provider = provider or cfg["defaults"]["provider"]
    section = cfg["providers"].get(provider) or {}
    params = {
        "url": section.get("url", ""),
        "model": model or section.get("model", ""),
        "timeout": section.get("timeout", 120),
    }
    if provider == "openrouter":
        params["api_key"] = section.get("api_key", "")
    return make_backend(provider, **params)


@dataclass
class Runtime:
    session: ChatSession
    backend: BaseBackend
    broadcaster: Broadcaster
    storage: SessionStorage
    relay: EventRelay
    warnings: list[str] = field(default_factory=list)

    async def aclose(self):
        await self.broadcaster.close()
        await self.backend.aclose()
        self.storage.close()


def build_runtime(
    cfg: dict,
    provider: str | None = None,
    model: str | None = None,
    session_name: str | None = None,
    backend: BaseBackend | None = None,
    console: EventSink | None = None,
) -> Runtime:
    warnings: list[str] = []

    storage_cfg = cfg.get("storage", {})
    sqlite_path = storage_cfg.get("sqlite_path") if storage_cfg.get("enabled") else None
    storage, warning = open_storage(sqlite_path, ttl=storage_cfg.get("ttl"))
    if warning:
        warnings.append(warning)

    relay_cfg = cfg.get("relay", {})
    relay = EventRelay(storage.history, max_queue=relay_cfg.get("max_queue", 256))

    name = session_name or cfg.get("session", {}).get("name") or generate_session_name()

    sinks: list[EventSink] = [console or ConsoleSink()]
    if relay_cfg.get("enabled", True):
        sinks.append(RelaySink(relay, name))
    wire_cfg = cfg.get("wiretap", {})
    if wire_cfg.get("enabled"):
        sinks.append(WireTapSink(WireLog(wire_cfg.get("path", "./data/wire.jsonl")), name))

    broadcaster = Broadcaster(sinks, sink_timeout=cfg.get("broadcast", {}).get("sink_timeout"))

    gen_cfg = cfg.get("generation", {})
    options = ChatOptions(
        model=model or "",
        temperature=gen_cfg.get("temperature"),
        max_tokens=gen_cfg.get("max_tokens"),
    )
    backend = backend or backend_from_config(cfg, provider, model)
    session = ChatSession(name, backend, broadcaster, storage, options)
    logger.info(
        "Session '%s' on %s (%s storage, %d sinks)",
        name, backend.name, "durable" if storage.durable else "memory", len(sinks),
    )
    return Runtime(session, backend, broadcaster, storage, relay, warnings)


async def _read_line(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


class REPL:
    """Read lines from the user and hand them to the session."""

    def __init__(
        self,
        session: ChatSession,
        read_line: Callable[[str], Awaitable[str]] = _read_line,
    ):
        self.session = session
        self.read_line = read_line

    async def run(self):
        while True:
            try:
                line = await self.read_line(USER_PROMPT)
            except EOFError:
                await self.session.notify(EventKind.SYSTEM, "Goodbye!")
                return
            if not await self.session.handle_input(line):
                return


async def run_chat(
    cfg: dict,
    provider: str | None = None,
    model: str | None = None,
    session_name: str | None = None,
    serve: bool | None = None,
    port: int | None = None,
):
    runtime = build_runtime(cfg, provider, model, session_name)
    session = runtime.session

    server_cfg = cfg.get("server", {})
    serve = server_cfg.get("enabled", False) if serve is None else serve
    server: uvicorn.Server | None = None
    server_task: asyncio.Task | None = None

    try:
        await session.welcome()
        for warning in runtime.warnings:
            await session.notify(EventKind.WARNING, warning)

        if serve:
            host = server_cfg.get("host", "127.0.0.1")
            port = port or server_cfg.get("port", 8765)
            app = create_app(runtime.relay, runtime.storage)
            server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
            server_task = asyncio.create_task(server.serve())
            await session.notify(
                EventKind.INFO,
                f"Observers: http://{host}:{port}/api/stream/{session.name}",
            )

        await session.resume()
        await REPL(session).run()
    finally:
        if server is not None:
            server.should_exit = True
            await server_task
        await runtime.aclose()
