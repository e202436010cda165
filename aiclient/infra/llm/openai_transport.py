# aiclient/infra/llm/openai_transport.py
from __future__ import annotations
import logging
import threading
from typing import Dict, Iterator, Tuple

import httpx
import openai
from openai import OpenAI

from aiclient.constants import CONNECT_TIMEOUT, READ_TIMEOUT, WRITE_TIMEOUT
from .base import GenerationRequest, GenerationResult, Transport, parse_completion
from .errors import RateLimitedError, RemoteError, RequestCancelled, TransportFailure

log = logging.getLogger("llm.transport")


def _retry_after(exc: openai.APIStatusError):
    raw = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None


def translate_error(exc: openai.OpenAIError) -> Exception:
    """Map an SDK exception onto our taxonomy."""
    if isinstance(exc, openai.RateLimitError):
        return RateLimitedError(body=_body_text(exc), retry_after=_retry_after(exc))
    if isinstance(exc, openai.APIStatusError):
        return RemoteError(exc.status_code, _body_text(exc))
    if isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError)):
        return TransportFailure(f"Request failed: {exc}")
    return TransportFailure(str(exc))


def _body_text(exc: openai.APIStatusError) -> str:
    resp = exc.response
    if resp is None:
        return ""
    try:
        return resp.text or ""
    except httpx.ResponseNotRead:
        return ""


class OpenAITransport(Transport):
    """
    Transport over the official openai SDK. SDK retries are disabled; the
    RetryGovernor owns the 429 policy. One SDK client per (endpoint, key).
    """
    def __init__(self, timeout: httpx.Timeout | None = None):
        self.timeout = timeout or httpx.Timeout(READ_TIMEOUT, connect=CONNECT_TIMEOUT, write=WRITE_TIMEOUT)
        self._clients: Dict[Tuple[str, str], OpenAI] = {}
        self._lock = threading.Lock()

    def client_for(self, endpoint: str, api_key: str) -> OpenAI:
        key = (endpoint.rstrip("/"), api_key)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = OpenAI(api_key=api_key, base_url=key[0], timeout=self.timeout, max_retries=0)
                self._clients[key] = client
            return client

    def complete(self, request: GenerationRequest, *, endpoint: str, api_key: str,
                 cancel=None) -> GenerationResult:
        if cancel is not None and cancel.cancelled:
            raise RequestCancelled()
        client = self.client_for(endpoint, api_key)
        try:
            completion = client.chat.completions.create(**request.with_stream(False).to_payload())
        except openai.OpenAIError as exc:
            raise translate_error(exc) from exc
        return parse_completion(completion.model_dump())

    def stream_lines(self, request: GenerationRequest, *, endpoint: str, api_key: str,
                     cancel=None) -> Iterator[str]:
        if cancel is not None and cancel.cancelled:
            raise RequestCancelled()
        client = self.client_for(endpoint, api_key)
        payload = request.with_stream(True).to_payload()
        try:
            # Raw SSE lines; decoding stays with StreamDecoder
            with client.chat.completions.with_streaming_response.create(**payload) as response:
                for line in response.iter_lines():
                    if cancel is not None and cancel.cancelled:
                        raise RequestCancelled()
                    if line:
                        yield line
        except openai.OpenAIError as exc:
            raise translate_error(exc) from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Stream interrupted: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            client.close()
