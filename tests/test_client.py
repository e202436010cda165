"""Tests for the AiClient facade."""

import json
import threading
from unittest.mock import patch

import pytest

from aiclient.core.client import AiClient
from aiclient.core.settings import FileSettingsProvider, StaticSettingsProvider
from aiclient.infra.llm.base import GenerationResult, Role
from aiclient.infra.llm.errors import (
    NotConfiguredError,
    RateLimitedError,
    RemoteError,
    RequestCancelled,
    TransportFailure,
)
from aiclient.infra.llm.thread_broker import CancelToken

from conftest import FakeTransport, sse_line


class TestSendMessage:
    def test_each_success_adds_user_and_assistant(self, client, transport):
        transport.outcomes = [GenerationResult(text=f"reply {i}") for i in range(3)]
        for i in range(3):
            result = client.send_message(f"question {i}")
            assert result.ok
            assert len(client.history) == 2 * (i + 1)

        roles = [m.role for m in client.history.snapshot()]
        assert roles == [Role.USER, Role.ASSISTANT] * 3
        assert [m.content for m in client.history.snapshot()][-2:] == ["question 2", "reply 2"]

    def test_request_carries_settings_and_history(self, client, transport, settings):
        client.send_message("first")
        client.send_message("second")
        request, endpoint, api_key = transport.complete_calls[-1]
        assert endpoint == settings.api_endpoint
        assert api_key == settings.api_key
        assert request.stream is False
        assert [m.content for m in request.messages[1:]] == ["first", "ok", "second"]

    def test_failure_keeps_only_user_message(self, client, transport):
        transport.outcomes = [RemoteError(500, "server exploded")]
        result = client.send_message("hello")
        assert not result.ok
        assert isinstance(result.error, RemoteError)
        assert result.display_text().startswith("[Error: API error: 500")
        assert [(m.role, m.content) for m in client.history.snapshot()] == [(Role.USER, "hello")]

    def test_failed_turn_is_visible_to_next_request(self, client, transport):
        transport.outcomes = [TransportFailure("reset"), GenerationResult(text="second try")]
        client.send_message("lost")
        client.send_message("again")
        request = transport.complete_calls[-1][0]
        assert [m.content for m in request.messages[1:]] == ["lost", "again"]

    def test_rate_limit_retried_then_success(self, client, transport, waits):
        transport.outcomes = [RateLimitedError(), RateLimitedError(), GenerationResult(text="finally")]
        result = client.send_message("hi")
        assert result.text == "finally"
        assert len(transport.complete_calls) == 3
        assert waits == [2.0, 4.0]
        assert len(client.history) == 2

    def test_rate_limit_exhausted_surfaces_failure(self, client, transport):
        transport.outcomes = [RateLimitedError()] * 5
        result = client.send_message("hi")
        assert isinstance(result.error, RateLimitedError)
        assert len(transport.complete_calls) == 3
        assert len(client.history) == 1

    def test_blank_key_fails_without_transport_call(self, transport, retry):
        client = AiClient(StaticSettingsProvider(api_key="  "), transport, retry=retry)
        result = client.send_message("hi")
        assert isinstance(result.error, NotConfiguredError)
        assert transport.calls == 0
        assert len(client.history) == 0

    def test_settings_read_failure_is_reported(self, transport, retry):
        class Broken(StaticSettingsProvider):
            def get(self):
                raise OSError("disk gone")

        client = AiClient(Broken(), transport, retry=retry)
        result = client.send_message("hi")
        assert isinstance(result.error, NotConfiguredError)
        assert "disk gone" in result.error.message
        assert transport.calls == 0

    def test_empty_reply_not_recorded(self, client, transport):
        transport.outcomes = [GenerationResult(text="")]
        result = client.send_message("hi")
        assert result.ok
        assert [(m.role, m.content) for m in client.history.snapshot()] == [(Role.USER, "hi")]

    def test_cancelled_before_send(self, client, transport):
        token = CancelToken()
        token.cancel()
        result = client.send_message("hi", cancel=token)
        assert isinstance(result.error, RequestCancelled)
        assert transport.calls == 0
        assert len(client.history) == 1


class TestAskAboutCode:
    def test_success_does_not_touch_history(self, client, transport):
        client.send_message("warm up")
        before = len(client.history)
        transport.outcomes = [GenerationResult(text="It adds numbers.")]
        result = client.ask_about_code("a + b", "Explain")
        assert result.text == "It adds numbers."
        assert len(client.history) == before
        request = transport.complete_calls[-1][0]
        assert len(request.messages) == 2
        assert request.temperature == 0.3

    def test_failure_is_inline_error_and_history_untouched(self, client, transport):
        transport.outcomes = [RemoteError(401, "bad key")]
        result = client.ask_about_code("x", "Explain")
        assert result.display_text() == "[Error: API error: 401. bad key]"
        assert len(client.history) == 0

    def test_blank_key_fails_without_transport_call(self, transport, retry):
        client = AiClient(StaticSettingsProvider(api_key=""), transport, retry=retry)
        result = client.ask_about_code("x", "Explain")
        assert result.display_text().startswith("[Error: API key not configured")
        assert transport.calls == 0


class TestStreaming:
    def test_events_and_history(self, client, transport):
        transport.streams = [[sse_line("Hel"), sse_line("lo"), "data: [DONE]"]]
        events = list(client.stream_message("greet me"))
        assert [e.type for e in events] == ["start", "delta", "delta", "end"]
        assert events[-1].text == "Hello"
        assert [(m.role, m.content) for m in client.history.snapshot()] == [
            (Role.USER, "greet me"), (Role.ASSISTANT, "Hello")]
        assert transport.stream_calls[0][0].stream is True

    def test_callbacks(self, client, transport):
        transport.streams = [[sse_line("a"), "data: {broken", sse_line("b"), "data: [DONE]"]]
        pieces, done, errors = [], [], []
        client.send_message_streaming("go", pieces.append, done.append, errors.append)
        assert pieces == ["a", "b"]
        assert [r.text for r in done] == ["ab"]
        assert errors == []

    def test_empty_reply_not_recorded(self, client, transport):
        transport.streams = [["data: [DONE]"]]
        events = list(client.stream_message("hi"))
        assert events[-1].type == "end"
        assert len(client.history) == 1

    def test_stream_closed_without_sentinel_is_error(self, client, transport):
        transport.streams = [[sse_line("half")]]
        pieces, done, errors = [], [], []
        client.send_message_streaming("go", pieces.append, done.append, errors.append)
        assert pieces == ["half"]
        assert done == []
        assert errors == ["Stream closed before completion"]
        assert len(client.history) == 1

    def test_connect_failure_goes_to_error_callback(self, client, transport):
        transport.streams = [TransportFailure("Streaming request failed: refused")]
        errors = []
        client.send_message_streaming("go", lambda s: None, lambda r: None, errors.append)
        assert errors == ["Streaming request failed: refused"]
        assert len(client.history) == 1

    def test_streaming_429_is_not_retried(self, client, transport, waits):
        transport.streams = [RateLimitedError()]
        events = list(client.stream_message("hi"))
        assert events[-1].type == "error"
        assert isinstance(events[-1].error, RateLimitedError)
        assert len(transport.stream_calls) == 1
        assert waits == []

    def test_mid_stream_remote_error(self, client, transport):
        transport.streams = [[sse_line("par"), 'data: {"error": {"message": "overloaded"}}']]
        events = list(client.stream_message("hi"))
        assert [e.type for e in events] == ["start", "delta", "error"]
        assert "overloaded" in events[-1].error.message
        assert events[-1].text == "par"

    def test_blank_key_streaming(self, transport, retry):
        client = AiClient(StaticSettingsProvider(api_key=""), transport, retry=retry)
        errors = []
        client.send_message_streaming("go", lambda s: None, lambda r: None, errors.append)
        assert len(errors) == 1
        assert transport.calls == 0
        assert len(client.history) == 0

    def test_cancel_mid_stream(self, client, transport):
        token = CancelToken()
        transport.streams = [[sse_line("a"), sse_line("b"), sse_line("c"), "data: [DONE]"]]
        seen = []
        for ev in client.stream_message("hi", cancel=token):
            seen.append(ev)
            if ev.type == "delta":
                token.cancel()
        assert [e.type for e in seen] == ["start", "delta", "error"]
        assert isinstance(seen[-1].error, RequestCancelled)
        assert len(client.history) == 1

    def test_stream_about_code_leaves_history_alone(self, client, transport):
        transport.streams = [[sse_line("fine"), "data: [DONE]"]]
        events = list(client.stream_about_code("x = 1", "Explain"))
        assert events[-1].text == "fine"
        assert len(client.history) == 0
        assert transport.stream_calls[0][0].temperature == 0.3


class TestHistoryReset:
    def test_clear_history(self, client):
        client.send_message("a")
        client.clear_history()
        assert client.history.windowed_view(20) == []

    def test_window_applied_to_long_conversations(self, client, transport):
        for i in range(15):
            client.send_message(f"q{i}")
        request = transport.complete_calls[-1][0]
        # 29 stored entries at assembly time; system + last 20 sent
        assert len(request.messages) == 21
        assert request.messages[-1].content == "q14"


class TestAsync:
    def test_send_message_async_runs_in_order(self, client, transport):
        transport.outcomes = [GenerationResult(text="one"), GenerationResult(text="two")]
        results = []
        done = threading.Event()

        def collect(result):
            results.append(result.text)
            if len(results) == 2:
                done.set()

        client.send_message_async("first", collect)
        client.send_message_async("second", collect)
        assert done.wait(5)
        assert results == ["one", "two"]
        assert [m.content for m in client.history.snapshot()] == ["first", "one", "second", "two"]

    def test_streaming_async_callbacks_run_off_caller_thread(self, client, transport):
        transport.streams = [[sse_line("x"), "data: [DONE]"]]
        threads = []
        done = threading.Event()

        def on_complete(result):
            threads.append(threading.current_thread())
            done.set()

        client.send_message_streaming_async("hi", lambda s: None, on_complete, lambda e: None)
        assert done.wait(5)
        assert threads[0] is not threading.current_thread()

    def test_ask_about_code_async(self, client, transport):
        transport.outcomes = [GenerationResult(text="explained")]
        got = []
        done = threading.Event()
        client.ask_about_code_async("x", "Explain", lambda r: (got.append(r.text), done.set()))
        assert done.wait(5)
        assert got == ["explained"]
        assert len(client.history) == 0


class TestTransportSelection:
    def test_transport_built_from_settings(self, retry, monkeypatch):
        built = []

        def fake_make(name):
            built.append(name)
            return FakeTransport()

        monkeypatch.setattr("aiclient.core.client.make_transport", fake_make)
        provider = StaticSettingsProvider(api_key="k", transport="openai")
        client = AiClient(provider, retry=retry)
        client.send_message("hi")
        client.send_message("again")
        assert built == ["openai"]

        provider.update(transport="http")
        client.send_message("switch")
        assert built == ["openai", "http"]

    def test_unknown_transport_is_not_configured(self, retry):
        client = AiClient(StaticSettingsProvider(api_key="k", transport="carrier-pigeon"), retry=retry)
        result = client.send_message("hi")
        assert isinstance(result.error, NotConfiguredError)
        assert len(client.history) == 0

    @pytest.mark.parametrize("name", ["http", "openai"])
    def test_close_closes_transport(self, name, retry, monkeypatch):
        fake = FakeTransport()
        monkeypatch.setattr("aiclient.core.client.make_transport", lambda n: fake)
        client = AiClient(StaticSettingsProvider(api_key="k", transport=name), retry=retry)
        client.send_message("hi")
        client.close()
        assert fake.closed


class TestMalformedSettingsFile:
    @pytest.fixture
    def file_client(self, tmp_path, transport, retry):
        path = tmp_path / "app.json"

        def make(client_section):
            path.write_text(json.dumps({"client": client_section}), encoding="utf-8")
            return AiClient(FileSettingsProvider(path), transport, retry=retry)

        with patch("aiclient.core.settings.keyring.get_password", return_value="sk-file"):
            yield make

    @pytest.mark.parametrize("section", [
        {"temperature": None},
        {"max_tokens": None},
        {"max_tokens": "lots"},
        "oops",
        ["not", "an", "object"],
    ])
    def test_buffered_calls_return_failure(self, file_client, transport, section):
        client = file_client(section)
        result = client.send_message("hi")
        assert isinstance(result.error, NotConfiguredError)
        assert result.display_text().startswith("[Error: Settings unavailable")
        assert isinstance(client.ask_about_code("x = 1", "Explain").error, NotConfiguredError)
        assert transport.calls == 0
        assert len(client.history) == 0

    @pytest.mark.parametrize("section", [{"max_tokens": None}, {"temperature": None}, "oops"])
    def test_streaming_reports_through_error_callback(self, file_client, transport, section):
        client = file_client(section)
        pieces, done, errors = [], [], []
        client.send_message_streaming("go", pieces.append, done.append, errors.append)
        assert pieces == [] and done == []
        assert len(errors) == 1 and errors[0].startswith("Settings unavailable")
        assert transport.calls == 0

    def test_valid_file_still_works(self, file_client, transport):
        client = file_client({"model": "file-model", "temperature": 0.2})
        assert client.send_message("hi").ok
        request, _, api_key = transport.complete_calls[0]
        assert request.model == "file-model"
        assert api_key == "sk-file"
