"""Pytest configuration and shared fixtures."""

import json

import pytest

from aiclient.core.client import AiClient
from aiclient.core.settings import ClientSettings, StaticSettingsProvider
from aiclient.infra.llm.base import GenerationResult, Transport
from aiclient.infra.llm.retry import RetryGovernor


def sse_line(content):
    """One `data:` line carrying a delta chunk."""
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


class FakeTransport(Transport):
    """
    Scripted transport. `outcomes` feeds complete(): each item is either a
    GenerationResult or an exception to raise. `streams` feeds stream_lines():
    each item is a list of lines or an exception.
    """

    def __init__(self, outcomes=None, streams=None):
        self.outcomes = list(outcomes or [])
        self.streams = list(streams or [])
        self.complete_calls = []
        self.stream_calls = []
        self.closed = False

    @property
    def calls(self):
        return len(self.complete_calls) + len(self.stream_calls)

    def complete(self, request, *, endpoint, api_key, cancel=None):
        self.complete_calls.append((request, endpoint, api_key))
        outcome = self.outcomes.pop(0) if self.outcomes else GenerationResult(text="ok")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def stream_lines(self, request, *, endpoint, api_key, cancel=None):
        self.stream_calls.append((request, endpoint, api_key))
        script = self.streams.pop(0) if self.streams else [sse_line("ok"), "data: [DONE]"]
        if isinstance(script, Exception):
            raise script
        for line in script:
            if isinstance(line, Exception):
                raise line
            yield line

    def close(self):
        self.closed = True


@pytest.fixture
def settings():
    return ClientSettings(api_key="sk-test-1234567890", api_endpoint="https://llm.example/v1",
                          model="test-model", temperature=0.7, max_tokens=512)


@pytest.fixture
def settings_provider(settings):
    return StaticSettingsProvider(settings)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def waits():
    return []


@pytest.fixture
def retry(waits):
    def _sleep(delay, cancel=None):
        waits.append(delay)
        return False
    return RetryGovernor(max_retries=3, base_delay=2.0, sleep=_sleep)


@pytest.fixture
def client(settings_provider, transport, retry):
    c = AiClient(settings_provider, transport, retry=retry)
    yield c
    c.close()
