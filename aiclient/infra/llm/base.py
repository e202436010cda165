# aiclient/infra/llm/base.py
from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from .errors import AiClientError


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str

    def __post_init__(self):
        # Role("bogus") raises ValueError; plain strings are normalised
        object.__setattr__(self, "role", Role(self.role))
        object.__setattr__(self, "content", self.content or "")

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(Role.ASSISTANT, content)

    def to_wire(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Usage"]:
        if not isinstance(data, dict):
            return None
        def _int(key):
            try:
                return int(data.get(key) or 0)
            except (TypeError, ValueError):
                return 0
        return cls(_int("prompt_tokens"), _int("completion_tokens"), _int("total_tokens"))


@dataclass(frozen=True)
class GenerationRequest:
    model: str
    messages: Tuple[ChatMessage, ...]
    temperature: float
    max_tokens: int
    stream: bool = False

    def __post_init__(self):
        object.__setattr__(self, "messages", tuple(self.messages))

    def with_stream(self, stream: bool) -> "GenerationRequest":
        return replace(self, stream=stream)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": self.stream,
        }


@dataclass
class GenerationResult:
    text: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    error: Optional[AiClientError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: AiClientError, text: str = "") -> "GenerationResult":
        return cls(text=text, error=error)

    def display_text(self) -> str:
        if self.error is not None:
            return f"[Error: {self.error.message}]"
        return self.text


@dataclass
class StreamEvent:
    type: str               # "start" | "delta" | "end" | "error"
    text: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    error: Optional[AiClientError] = None


def first_choice(body: Any) -> Dict[str, Any]:
    """choices[0] as a dict, or {} when the shape is missing."""
    if not isinstance(body, dict):
        return {}
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    return choices[0]


def parse_completion(body: Any) -> GenerationResult:
    choice = first_choice(body)
    message = choice.get("message") or {}
    text = message.get("content") if isinstance(message, dict) else None
    return GenerationResult(
        text=text or "",
        finish_reason=choice.get("finish_reason"),
        usage=Usage.from_dict(body.get("usage")) if isinstance(body, dict) else None,
    )


class Transport:
    """
    Executes one chat-completions POST. Implementations raise the errors in
    .errors (RateLimitedError for 429) and never retry on their own.
    """
    def complete(self, request: GenerationRequest, *, endpoint: str, api_key: str,
                 cancel=None) -> GenerationResult:
        raise NotImplementedError

    def stream_lines(self, request: GenerationRequest, *, endpoint: str, api_key: str,
                     cancel=None) -> Iterator[str]:
        raise NotImplementedError

    def close(self) -> None:
        pass


def completions_url(endpoint: str) -> str:
    return f"{endpoint.rstrip('/')}/chat/completions"


def auth_headers(api_key: str, *, stream: bool = False) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    if stream:
        headers["Accept"] = "text/event-stream"
    return headers
