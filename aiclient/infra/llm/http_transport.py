# aiclient/infra/llm/http_transport.py
from __future__ import annotations
import json
import logging
from typing import Iterator, Optional

import requests

from aiclient.constants import CONNECT_TIMEOUT, READ_TIMEOUT
from .base import GenerationRequest, GenerationResult, Transport, auth_headers, completions_url, parse_completion
from .errors import RateLimitedError, RemoteError, RequestCancelled, TransportFailure

log = logging.getLogger("llm.transport")


def _retry_after(resp: requests.Response) -> Optional[float]:
    raw = resp.headers.get("Retry-After")
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None


def raise_for_status(resp: requests.Response) -> None:
    """Map a non-2xx reply onto the error taxonomy (429 is retryable)."""
    if resp.status_code == 429:
        raise RateLimitedError(body=_safe_text(resp), retry_after=_retry_after(resp))
    if not resp.ok:
        raise RemoteError(resp.status_code, _safe_text(resp))


def _safe_text(resp: requests.Response) -> str:
    try:
        return resp.text or ""
    except (requests.RequestException, UnicodeDecodeError):
        return ""


class HttpTransport(Transport):
    """
    Plain requests-based transport. One Session (and its connection pool) is
    shared by every call made through this instance.
    """
    def __init__(self, session: requests.Session | None = None,
                 connect_timeout: float = CONNECT_TIMEOUT, read_timeout: float = READ_TIMEOUT):
        self.session = session or requests.Session()
        # requests has no separate write timeout; connect bounds the handshake
        self.timeout = (connect_timeout, read_timeout)

    def complete(self, request: GenerationRequest, *, endpoint: str, api_key: str,
                 cancel=None) -> GenerationResult:
        if cancel is not None and cancel.cancelled:
            raise RequestCancelled()
        url = completions_url(endpoint)
        payload = request.with_stream(False).to_payload()
        log.debug("POST %s model=%s messages=%d", url, request.model, len(request.messages))
        try:
            resp = self.session.post(url, json=payload, headers=auth_headers(api_key), timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportFailure(f"Request failed: {exc}") from exc
        with resp:
            raise_for_status(resp)
            body = _safe_text(resp)
        try:
            data = json.loads(body) if body else {}
        except ValueError as exc:
            raise RemoteError(resp.status_code, body, message=f"Invalid JSON in response: {exc}") from exc
        return parse_completion(data)

    def stream_lines(self, request: GenerationRequest, *, endpoint: str, api_key: str,
                     cancel=None) -> Iterator[str]:
        if cancel is not None and cancel.cancelled:
            raise RequestCancelled()
        url = completions_url(endpoint)
        payload = request.with_stream(True).to_payload()
        log.debug("POST %s (stream) model=%s messages=%d", url, request.model, len(request.messages))
        try:
            resp = self.session.post(url, json=payload, headers=auth_headers(api_key, stream=True),
                                     timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise TransportFailure(f"Streaming request failed: {exc}") from exc
        with resp:
            raise_for_status(resp)
            # text/event-stream without a charset would otherwise decode as latin-1
            resp.encoding = "utf-8"
            # closing the response unblocks a read stalled inside iter_lines
            release = cancel.on_cancel(resp.close) if cancel is not None else None
            try:
                for line in resp.iter_lines(decode_unicode=True):
                    if cancel is not None and cancel.cancelled:
                        raise RequestCancelled()
                    if line:
                        yield line
            except requests.RequestException as exc:
                if cancel is not None and cancel.cancelled:
                    raise RequestCancelled() from exc
                raise TransportFailure(f"Stream interrupted: {exc}") from exc
            except (OSError, ValueError) as exc:
                # reads on a response closed by cancel() fail below requests
                if cancel is not None and cancel.cancelled:
                    raise RequestCancelled() from exc
                raise
            finally:
                if release is not None:
                    release()
            if cancel is not None and cancel.cancelled:
                raise RequestCancelled()

    def close(self) -> None:
        self.session.close()
