# aiclient/core/client.py
"""
AiClient: the one entry point callers use to talk to the model.

Buffered calls (`send_message`, `ask_about_code`) block and return a
GenerationResult; failures come back as values, never as exceptions.
Streamed calls (`stream_message`, `stream_about_code`) yield StreamEvents:
"start", any number of "delta", then exactly one "end" or "error".
`send_message_streaming` is the three-callback form of `stream_message`.

Every network-bearing call may block; the *_async variants queue the work on
a single-flight RequestBroker so turns of one conversation run in order.
Callbacks fire on the broker's worker thread.
"""
from __future__ import annotations
import logging
import threading
from contextlib import closing
from typing import Callable, Iterator, Optional

from aiclient.core.history import ConversationHistory
from aiclient.core.settings import ClientSettings, SettingsProvider
from aiclient.infra.llm.assembler import RequestAssembler
from aiclient.infra.llm.base import ChatMessage, GenerationRequest, GenerationResult, StreamEvent, Transport
from aiclient.infra.llm.errors import AiClientError, NotConfiguredError, RequestCancelled, TransportFailure
from aiclient.infra.llm.factory import TRANSPORTS, make_transport
from aiclient.infra.llm.retry import RetryGovernor
from aiclient.infra.llm.sse import StreamDecoder
from aiclient.infra.llm.thread_broker import CancelToken, RequestBroker

log = logging.getLogger("client")

IncrementFn = Callable[[str], None]
CompleteFn = Callable[[GenerationResult], None]
ErrorFn = Callable[[str], None]
ResultFn = Callable[[GenerationResult], None]


class AiClient:
    def __init__(self, settings: SettingsProvider, transport: Transport | None = None, *,
                 assembler: RequestAssembler | None = None,
                 retry: RetryGovernor | None = None,
                 history: ConversationHistory | None = None,
                 broker: RequestBroker | None = None):
        self.settings = settings
        self.assembler = assembler or RequestAssembler()
        self.retry = retry or RetryGovernor()
        self.history = history if history is not None else ConversationHistory()
        self.broker = broker or RequestBroker()
        self._transport = transport
        self._transport_name: Optional[str] = None
        self._transport_lock = threading.Lock()

    # -------- conversation --------
    def send_message(self, text: str, *, cancel: CancelToken | None = None) -> GenerationResult:
        try:
            settings = self._configured_settings()
        except NotConfiguredError as exc:
            log.warning("send_message refused: %s", exc.message)
            return GenerationResult.failure(exc)

        self.history.append(ChatMessage.user(text))
        request = self.assembler.conversation(settings, self.history, stream=False)
        result = self._execute(request, settings, cancel)
        if result.ok and result.text:
            self.history.append(ChatMessage.assistant(result.text))
        return result

    def stream_message(self, text: str, *, cancel: CancelToken | None = None) -> Iterator[StreamEvent]:
        try:
            settings = self._configured_settings()
        except NotConfiguredError as exc:
            log.warning("stream_message refused: %s", exc.message)
            yield StreamEvent(type="error", error=exc)
            return

        self.history.append(ChatMessage.user(text))
        request = self.assembler.conversation(settings, self.history, stream=True)

        def record(reply: str) -> None:
            self.history.append(ChatMessage.assistant(reply))

        yield from self._stream(request, settings, cancel, on_done=record)

    def send_message_streaming(self, text: str, on_increment: IncrementFn, on_complete: CompleteFn,
                               on_error: ErrorFn, *, cancel: CancelToken | None = None) -> None:
        deliver_events(self.stream_message(text, cancel=cancel), on_increment, on_complete, on_error)

    def clear_history(self) -> None:
        self.history.clear()
        log.info("Conversation history cleared")

    # -------- one-off code questions (history untouched) --------
    def ask_about_code(self, code: str, instruction: str, *,
                       cancel: CancelToken | None = None) -> GenerationResult:
        try:
            settings = self._configured_settings()
        except NotConfiguredError as exc:
            return GenerationResult.failure(exc)
        request = self.assembler.code_question(settings, code, instruction, stream=False)
        return self._execute(request, settings, cancel)

    def stream_about_code(self, code: str, instruction: str, *,
                          cancel: CancelToken | None = None) -> Iterator[StreamEvent]:
        try:
            settings = self._configured_settings()
        except NotConfiguredError as exc:
            yield StreamEvent(type="error", error=exc)
            return
        request = self.assembler.code_question(settings, code, instruction, stream=True)
        yield from self._stream(request, settings, cancel)

    # -------- background variants (single-flight queue) --------
    def send_message_async(self, text: str, on_result: ResultFn) -> int:
        return self.broker.submit(_call_then, self.send_message, on_result, text)

    def send_message_streaming_async(self, text: str, on_increment: IncrementFn,
                                     on_complete: CompleteFn, on_error: ErrorFn) -> int:
        return self.broker.submit(self.send_message_streaming, text, on_increment, on_complete, on_error)

    def ask_about_code_async(self, code: str, instruction: str, on_result: ResultFn) -> int:
        return self.broker.submit(_call_then, self.ask_about_code, on_result, code, instruction)

    def cancel(self, ticket: int | None = None) -> None:
        """Cancel one queued/running ticket, or whatever is running now."""
        if ticket is None:
            self.broker.stop_active()
        else:
            self.broker.cancel_ticket(ticket)

    def close(self) -> None:
        self.broker.shutdown(wait=False)
        if self._transport is not None:
            self._transport.close()

    # -------- internals --------
    def _configured_settings(self) -> ClientSettings:
        try:
            settings = self.settings.get()
        except (OSError, ValueError) as exc:
            raise NotConfiguredError(f"Settings unavailable: {exc}") from exc
        if not settings.is_configured:
            raise NotConfiguredError()
        if (self._transport is None or self._transport_name) and settings.transport not in TRANSPORTS:
            raise NotConfiguredError(f"Unknown transport {settings.transport!r} in settings")
        return settings

    def transport_for(self, settings: ClientSettings) -> Transport:
        # An injected transport is kept; one built from settings follows settings.transport
        with self._transport_lock:
            if self._transport is None or (self._transport_name and self._transport_name != settings.transport):
                if self._transport is not None:
                    self._transport.close()
                self._transport = make_transport(settings.transport)
                self._transport_name = settings.transport
                log.info("Using %s transport", settings.transport)
            return self._transport

    def _execute(self, request: GenerationRequest, settings: ClientSettings,
                 cancel: CancelToken | None) -> GenerationResult:
        transport = self.transport_for(settings)

        def attempt() -> GenerationResult:
            return transport.complete(request, endpoint=settings.api_endpoint,
                                      api_key=settings.api_key, cancel=cancel)
        try:
            result = self.retry.run(attempt, cancel=cancel)
        except AiClientError as exc:
            _log_failure(exc)
            return GenerationResult.failure(exc)
        log.debug("Reply: %d chars, finish_reason=%s", len(result.text), result.finish_reason)
        return result

    def _stream(self, request: GenerationRequest, settings: ClientSettings, cancel: CancelToken | None,
                on_done: Callable[[str], None] | None = None) -> Iterator[StreamEvent]:
        transport = self.transport_for(settings)
        decoder = StreamDecoder()
        yield StreamEvent(type="start")
        try:
            lines = iter(transport.stream_lines(request, endpoint=settings.api_endpoint,
                                                api_key=settings.api_key, cancel=cancel))
            try:
                for piece in decoder.decode(lines):
                    if cancel is not None and cancel.cancelled:
                        raise RequestCancelled()
                    yield StreamEvent(type="delta", text=piece)
            finally:
                # releases the HTTP connection even when the caller stops early
                close = getattr(lines, "close", None)
                if close:
                    close()
            if not decoder.done:
                if cancel is not None and cancel.cancelled:
                    raise RequestCancelled()
                raise TransportFailure("Stream closed before completion")
        except AiClientError as exc:
            _log_failure(exc)
            yield StreamEvent(type="error", text=decoder.text, error=exc)
            return

        if decoder.discarded:
            log.info("Skipped %d malformed stream chunk(s)", decoder.discarded)
        if on_done is not None and decoder.text:
            on_done(decoder.text)
        yield StreamEvent(type="end", text=decoder.text,
                          finish_reason=decoder.finish_reason, usage=decoder.usage)


def deliver_events(events: Iterator[StreamEvent], on_increment: IncrementFn,
                   on_complete: CompleteFn, on_error: ErrorFn) -> None:
    """Drive a StreamEvent iterator into the increment/complete/error callbacks."""
    with closing(events):
        for ev in events:
            if ev.type == "delta":
                on_increment(ev.text)
            elif ev.type == "end":
                on_complete(GenerationResult(text=ev.text, finish_reason=ev.finish_reason, usage=ev.usage))
            elif ev.type == "error" and ev.error is not None:
                on_error(ev.error.message)


def _call_then(fn, on_result: ResultFn, *args, cancel: CancelToken | None = None):
    result = fn(*args, cancel=cancel)
    on_result(result)
    return result


def _log_failure(exc: AiClientError) -> None:
    if isinstance(exc, RequestCancelled):
        log.info("Request cancelled")
    elif isinstance(exc, NotConfiguredError):
        log.warning("%s", exc.message)
    else:
        log.error("Request failed (%s): %s", exc.kind, exc.message)
