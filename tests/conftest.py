"""Pytest configuration and fixtures for Ascendancy tests."""

import json
import os

# Keep the real database and any local .env keys out of the tests.
# This must happen before ascendancy.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import httpx
import pytest

from ascendancy import config
from ascendancy.council import MODERATOR_SYSTEM, SKEPTIC_SYSTEM_CRITIQUE, SKEPTIC_SYSTEM_FACT_CHECK, VISIONARY_SYSTEM
from ascendancy.storage_db import DocumentStore

MODERATOR_TEXT = "Moderator: studies are mixed, autonomy helps focus work."
SKEPTIC_TEXT = "Skeptic: the cited productivity study was self-reported."
VISIONARY_TEXT = "Visionary: hybrid setups capture most of the benefit."
SOLO_TEXT = "Solo answer."


def _request_text(payload: dict) -> str:
    """Flatten an OpenAI-style or Google-style request body into one string."""
    if "messages" in payload:
        return "\n".join(m["content"] for m in payload["messages"])
    return "\n".join(p["text"] for c in payload["contents"] for p in c["parts"])


class FakeUpstream:
    """
    Stands in for every outbound HTTP service the app talks to.

    Model replies are chosen from the request text, so tests do not depend
    on call order: classification calls get `tool_decision`, query calls
    get `search_query`, council roles get their fixed texts.
    """

    def __init__(self):
        self.requests = []
        self.tool_decision = "NONE"
        self.search_query = "paris weather today"
        self.model_status = 200
        self.search_status = 200
        # Raw JSON body for Serper, overriding serper_results when set
        self.serper_body = None
        # Reasoning text attached to OpenAI-style replies
        self.reasoning = None
        self.serper_results = [
            {"title": "Paris forecast", "link": "https://weather.example/paris", "snippet": "Sunny, 21C"},
        ]
        self.tavily_results = [
            {"title": "Paris weather", "url": "https://tavily.example/paris", "content": "Light rain"},
        ]

    def reply_for(self, text: str) -> str:
        if "Reply with exactly one word" in text:
            return self.tool_decision
        if "search engine query" in text or "search keywords" in text:
            return self.search_query
        if VISIONARY_SYSTEM in text:
            return VISIONARY_TEXT
        if SKEPTIC_SYSTEM_FACT_CHECK in text or SKEPTIC_SYSTEM_CRITIQUE in text:
            return SKEPTIC_TEXT
        if MODERATOR_SYSTEM in text:
            return MODERATOR_TEXT
        return SOLO_TEXT

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url == config.GOOGLE_TOKEN_URL:
            return httpx.Response(200, json={"access_token": "ya29.access", "expires_in": 3599})

        if url == config.SERPER_API_URL:
            if self.search_status != 200:
                return httpx.Response(self.search_status, text="search down")
            if self.serper_body is not None:
                return httpx.Response(200, json=self.serper_body)
            return httpx.Response(200, json={"organic": self.serper_results})

        if url == config.TAVILY_API_URL:
            if self.search_status != 200:
                return httpx.Response(self.search_status, text="search down")
            return httpx.Response(200, json={"results": self.tavily_results})

        payload = json.loads(request.content)
        if self.model_status != 200:
            return httpx.Response(self.model_status, text="upstream exploded")

        text = self.reply_for(_request_text(payload))
        if "contents" in payload:
            return httpx.Response(200, json={
                "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}],
            })
        message = {"role": "assistant", "content": text}
        if self.reasoning:
            message["reasoning_content"] = self.reasoning
        return httpx.Response(200, json={"choices": [{"message": message}]})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def urls(self):
        return [str(r.url) for r in self.requests]

    @property
    def model_calls(self):
        """JSON bodies of every model completion request, in order."""
        model_urls = {config.LIGHTNING_API_URL, config.OPENAI_API_URL}
        return [
            json.loads(r.content)
            for r in self.requests
            if str(r.url) in model_urls or ":generateContent" in str(r.url)
        ]

    @property
    def search_calls(self):
        return [r for r in self.requests if str(r.url) in (config.SERPER_API_URL, config.TAVILY_API_URL)]


@pytest.fixture(autouse=True)
def no_server_keys(monkeypatch):
    """Start every test without server-wide keys; tests opt in."""
    for name in (
        "LIGHTNING_API_KEY",
        "OPENAI_API_KEY",
        "SERPER_API_KEY",
        "TAVILY_API_KEY",
        "GOOGLE_ANTIGRAVITY_SECRET",
        "GOOGLE_CLI_SECRET",
    ):
        monkeypatch.setattr(config, name, None)


@pytest.fixture
def server_keys(monkeypatch):
    monkeypatch.setattr(config, "LIGHTNING_API_KEY", "srv-lightning")
    monkeypatch.setattr(config, "OPENAI_API_KEY", "srv-openai")
    monkeypatch.setattr(config, "SERPER_API_KEY", "srv-serper")
    monkeypatch.setattr(config, "TAVILY_API_KEY", "srv-tavily")


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def store(tmp_path):
    return DocumentStore(f"sqlite:///{tmp_path}/ascendancy-test.db")
