# aiclient/infra/llm/factory.py
from __future__ import annotations
from .base import Transport

TRANSPORTS = ("http", "openai")

def make_transport(name: str = "http") -> Transport:
    name = (name or "http").lower()
    if name == "http":
        from .http_transport import HttpTransport
        return HttpTransport()
    if name == "openai":
        from .openai_transport import OpenAITransport
        return OpenAITransport()
    raise ValueError(f"Unknown transport {name!r}; expected one of {', '.join(TRANSPORTS)}")
