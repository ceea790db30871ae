"""
Chunk decoders: raw provider bytes in, text fragments out.

Providers stream their answers in one of two line-oriented encodings:

  NDJSONDecoder  one JSON object per line (Ollama /api/chat)
                 {"message": {"content": "Hi"}, "done": false}

  SSEDecoder     text/event-stream frames (OpenRouter, OpenAI-compatible)
                 data: {"choices": [{"delta": {"content": "Hi"}, "finish_reason": null}]}
                 data: [DONE]

Network reads are not aligned to lines, so both decoders keep a carry-over
buffer of undecoded bytes and only interpret newline-terminated records.
Bytes are decoded to text per complete line, which keeps multi-byte UTF-8
sequences split across reads intact.

A malformed record is logged and skipped. A failure of the byte source
itself surfaces as TransportError; fragments already yielded stay valid.
"""

from __future__ import annotations

import abc
import json
import logging
from typing import AsyncIterable, AsyncIterator

from chatwire.errors import DecodeError, TransportError

logger = logging.getLogger(__name__)


class ChunkDecoder(abc.ABC):
    """
    Base decoder. Subclasses implement _parse_record(line), returning
    (fragment or None, done).

    A decoder instance decodes exactly one stream.
    """

    name = "base"

    def __init__(self):
        self._buffer = bytearray()
        self._done = False
        self._used = False
        self.skipped = 0

    @property
    def done(self) -> bool:
        """True once the provider signalled completion."""
        return self._done

    @abc.abstractmethod
    def _parse_record(self, line: str) -> tuple[str | None, bool]:
        """Interpret one complete line. Raise DecodeError if malformed."""
        ...

    def feed(self, data: bytes) -> list[str]:
        """
        Add bytes from one read and return the fragments they complete.
        Once a completion marker is seen, remaining input is ignored.
        """
        if self._done:
            return []
        self._buffer.extend(data)
        fragments: list[str] = []
        while not self._done:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            try:
                line = raw.decode("utf-8").rstrip("\r")
                if not line.strip():
                    continue
                fragment, done = self._parse_record(line)
            except (DecodeError, UnicodeDecodeError) as e:
                self.skipped += 1
                logger.warning("%s decoder skipped malformed record: %s", self.name, e)
                continue
            if fragment:
                fragments.append(fragment)
            if done:
                self._done = True
        return fragments

    async def decode(self, source: AsyncIterable[bytes]) -> AsyncIterator[str]:
        """
        Lazily decode an async byte source into fragments.
        Ends on the provider's completion marker or on end of source,
        whichever comes first.
        """
        if self._used:
            raise RuntimeError("a ChunkDecoder decodes a single stream")
        self._used = True

        reader = source.__aiter__()
        while not self._done:
            try:
                data = await reader.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                raise TransportError(f"{self.name} stream failed: {e}") from e
            for fragment in self.feed(data):
                yield fragment

        if self._buffer and not self._done:
            logger.debug(
                "%s decoder dropped %d bytes of unterminated trailing data",
                self.name, len(self._buffer),
            )


class NDJSONDecoder(ChunkDecoder):
    """Line-delimited JSON, as streamed by Ollama's /api/chat."""

    name = "ndjson"

    def _parse_record(self, line: str) -> tuple[str | None, bool]:
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise DecodeError(f"invalid JSON: {e}", record=line) from e
        if not isinstance(data, dict):
            raise DecodeError("record is not an object", record=line)

        message = data.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return (content if isinstance(content, str) else None), data.get("done") is True


class SSEDecoder(ChunkDecoder):
    """Server-sent event frames carrying OpenAI-style delta chunks."""

    name = "sse"
    MARKER = "data:"
    END_TOKEN = "[DONE]"

    def _parse_record(self, line: str) -> tuple[str | None, bool]:
        # Comments (": keep-alive") and other SSE fields carry no text
        if not line.startswith(self.MARKER):
            return None, False

        payload = line[len(self.MARKER):].strip()
        if payload == self.END_TOKEN:
            return None, True

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise DecodeError(f"invalid JSON: {e}", record=line) from e
        if not isinstance(data, dict):
            raise DecodeError("record is not an object", record=line)

        choices = data.get("choices")
        if not choices:
            return None, False
        if not isinstance(choices, list):
            raise DecodeError("choices is not a list", record=line)
        choice = choices[0] if isinstance(choices[0], dict) else {}
        delta = choice.get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        finished = bool(choice.get("finish_reason"))
        return (content if isinstance(content, str) else None), finished
