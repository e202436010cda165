# aiclient/infra/llm/assembler.py
from __future__ import annotations
from typing import TYPE_CHECKING

from aiclient.constants import CODE_TEMPERATURE, HISTORY_WINDOW
from .base import ChatMessage, GenerationRequest

if TYPE_CHECKING:
    from aiclient.core.history import ConversationHistory
    from aiclient.core.settings import ClientSettings

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI programming assistant. You help developers "
    "understand, write, and improve code. Be concise but thorough."
)

CODE_SYSTEM_PROMPT = (
    "You are an expert programming assistant. Analyze the provided code "
    "and respond helpfully. Format code blocks with appropriate language tags."
)


def code_user_message(code: str, instruction: str) -> str:
    return f"{instruction}\n\n```\n{code}\n```"


class RequestAssembler:
    def __init__(self, window: int = HISTORY_WINDOW, code_temperature: float = CODE_TEMPERATURE):
        self.window = window
        self.code_temperature = code_temperature

    @staticmethod
    def system_prompt(settings: "ClientSettings") -> str:
        prompt = settings.system_prompt or ""
        return prompt if prompt.strip() else DEFAULT_SYSTEM_PROMPT

    def conversation(self, settings: "ClientSettings", history: "ConversationHistory", *,
                     stream: bool = False) -> GenerationRequest:
        """[system] ++ the trailing window of history."""
        messages = [ChatMessage.system(self.system_prompt(settings))]
        messages.extend(history.windowed_view(self.window))
        return GenerationRequest(
            model=settings.model,
            messages=messages,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            stream=stream,
        )

    def code_question(self, settings: "ClientSettings", code: str, instruction: str, *,
                      stream: bool = False) -> GenerationRequest:
        # One-off: never reads history; temperature pinned low for analysis prompts
        return GenerationRequest(
            model=settings.model,
            messages=[
                ChatMessage.system(CODE_SYSTEM_PROMPT),
                ChatMessage.user(code_user_message(code, instruction)),
            ],
            temperature=self.code_temperature,
            max_tokens=settings.max_tokens,
            stream=stream,
        )
