# aiclient/infra/llm/sse.py
"""
Decoder for OpenAI-style server-sent event streams.

Each event line looks like ``data: {...chunk json...}``; the stream ends with
``data: [DONE]``. Non-data lines (blank separators, ``event:``, ``id:``,
``: keep-alive`` comments) are ignored. A chunk that cannot be decoded is
skipped and counted; it never aborts the stream.
"""
from __future__ import annotations
import json
import logging
from typing import Any, Dict, Iterable, Iterator, Optional

from .base import Usage, first_choice
from .errors import MalformedChunk, RemoteError

log = logging.getLogger("llm.sse")

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def decode_chunk(payload: str) -> Dict[str, Any]:
    """
    JSON-decode one chunk. Raises MalformedChunk for undecodable payloads and
    RemoteError when the server reports an error inside the stream.
    """
    try:
        obj = json.loads(payload)
    except ValueError as exc:
        raise MalformedChunk(payload, str(exc)) from exc
    if not isinstance(obj, dict):
        raise MalformedChunk(payload, "chunk is not an object")
    if obj.get("error"):
        err = obj["error"]
        msg = err.get("message") if isinstance(err, dict) else str(err)
        raise RemoteError(None, payload, message=f"Stream error: {msg}")
    return obj


def delta_content(obj: Dict[str, Any], payload: str = "") -> Optional[str]:
    """choices[0].delta.content, or None when the chunk carries no content."""
    choices = obj.get("choices")
    if choices is not None and not isinstance(choices, list):
        raise MalformedChunk(payload, "choices is not a list")
    delta = first_choice(obj).get("delta")
    if delta is None:
        return None
    if not isinstance(delta, dict):
        raise MalformedChunk(payload, "delta is not an object")
    content = delta.get("content")
    if content is not None and not isinstance(content, str):
        raise MalformedChunk(payload, "delta.content is not a string")
    return content


class StreamDecoder:
    """Folds event lines into increments and the accumulated reply text."""

    def __init__(self):
        self._parts: list[str] = []
        self.done = False
        self.discarded = 0
        self.finish_reason: Optional[str] = None
        self.usage: Optional[Usage] = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, line: str) -> Optional[str]:
        """Consume one line; returns the new increment, if any."""
        if self.done or not line or not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            return None
        try:
            obj = decode_chunk(payload)
            content = delta_content(obj, payload)
        except MalformedChunk:
            self.discarded += 1
            log.debug("Skipping malformed stream chunk: %.200s", payload)
            return None

        # finish_reason / usage are informational
        reason = first_choice(obj).get("finish_reason")
        if reason:
            self.finish_reason = reason
        usage = Usage.from_dict(obj.get("usage"))
        if usage is not None:
            self.usage = usage

        if not content:
            return None
        self._parts.append(content)
        return content

    def decode(self, lines: Iterable[str]) -> Iterator[str]:
        """Yield increments until the [DONE] sentinel or the lines run out."""
        for line in lines:
            piece = self.feed(line)
            if piece:
                yield piece
            if self.done:
                break
