# aiclient/infra/llm/errors.py
from __future__ import annotations
from typing import Optional


class AiClientError(Exception):
    """Base for every failure the client can report."""
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotConfiguredError(AiClientError):
    kind = "not_configured"

    def __init__(self, message: str = "API key not configured. Set it in the keyring or AICLIENT_API_KEY"):
        super().__init__(message)


class RemoteError(AiClientError):
    """Non-2xx reply (other than a retryable 429) or an error signaled inside the stream."""
    kind = "remote"

    def __init__(self, status: Optional[int], body: str = "", message: str | None = None):
        self.status = status
        self.body = body or ""
        if message is None:
            message = f"API error: {status}" if status is not None else "API error"
            if self.body:
                message += f". {self.body}"
        super().__init__(message)


class RateLimitedError(RemoteError):
    kind = "rate_limited"

    def __init__(self, body: str = "", retry_after: Optional[float] = None, attempts: int = 1):
        self.retry_after = retry_after
        self.attempts = attempts
        msg = "Rate limited (429)"
        if attempts > 1:
            msg += f" after {attempts} attempts"
        super().__init__(429, body, message=msg)


class TransportFailure(AiClientError):
    """Connection, timeout or IO failure; nothing usable came back."""
    kind = "transport"


class MalformedChunk(AiClientError):
    """A streamed chunk that could not be decoded. Skipped by the decoder."""
    kind = "malformed_chunk"

    def __init__(self, payload: str, reason: str = ""):
        self.payload = payload
        super().__init__(f"Malformed stream chunk{': ' + reason if reason else ''}")


class RequestCancelled(AiClientError):
    kind = "cancelled"

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)
