"""Tests for tool routing and the search tools."""

import httpx
import pytest

from ascendancy import config
from ascendancy.council import ModelInvoker
from ascendancy.credentials import ServerSecrets, parse_model_ref
from ascendancy.errors import SearchError
from ascendancy.models import SearchProvider, ToolDecision
from ascendancy.tools import ToolRouter, format_web_results, library_search, parse_tool_decision, web_search


def _add_chunk(store, user_id, file_name, content):
    store.create_document(config.COLLECTIONS["library"], {
        "userId": user_id,
        "fileId": file_name,
        "fileName": file_name,
        "content": content,
    })


class TestParseToolDecision:
    """Tests for parse_tool_decision."""

    @pytest.mark.parametrize("reply,expected", [
        ("WEB", ToolDecision.WEB),
        ("web", ToolDecision.NONE),
        ("NONE - no need to search the web", ToolDecision.NONE),
        ("I think LIBRARY", ToolDecision.LIBRARY),
        ("NONE", ToolDecision.NONE),
        ("", ToolDecision.NONE),
        ("No idea.", ToolDecision.NONE),
    ])
    def test_decisions(self, reply, expected):
        assert parse_tool_decision(reply) == expected

    def test_web_checked_before_library(self):
        """Test a reply naming both tools picks WEB."""
        assert parse_tool_decision("LIBRARY or maybe WEB") == ToolDecision.WEB


class TestWebSearch:
    """Tests for the web search providers."""

    async def test_serper_formatting(self, upstream, server_keys):
        async with upstream.client() as client:
            result = await web_search("paris weather", SearchProvider.SERPER, client)

        assert result == "[1] Paris forecast\nLink: https://weather.example/paris\nSnippet: Sunny, 21C"
        request = upstream.search_calls[0]
        assert request.headers["X-API-KEY"] == "srv-serper"

    async def test_tavily_formatting(self, upstream, server_keys):
        async with upstream.client() as client:
            result = await web_search("paris weather", SearchProvider.TAVILY, client)

        assert result == "[1] Paris weather\nLink: https://tavily.example/paris\nSnippet: Light rain"

    async def test_results_capped_at_five(self, upstream, server_keys):
        upstream.serper_results = [
            {"title": f"t{i}", "link": f"l{i}", "snippet": f"s{i}"} for i in range(8)
        ]
        async with upstream.client() as client:
            result = await web_search("q", SearchProvider.SERPER, client)
        assert "[5] t4" in result
        assert "[6]" not in result

    async def test_missing_key_is_error_value(self, upstream):
        async with upstream.client() as client:
            result = await web_search("q", SearchProvider.SERPER, client)
        assert isinstance(result, SearchError)
        assert "SERPER_API_KEY" in str(result)
        assert upstream.requests == []

    async def test_non_2xx_is_error_value(self, upstream, server_keys):
        upstream.search_status = 502
        async with upstream.client() as client:
            result = await web_search("q", SearchProvider.TAVILY, client)
        assert isinstance(result, SearchError)
        assert "502" in str(result)

    async def test_transport_failure_is_error_value(self, server_keys):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await web_search("q", SearchProvider.SERPER, client)
        assert isinstance(result, SearchError)

    async def test_non_object_body_is_error_value(self, server_keys):
        def handler(request):
            return httpx.Response(200, json=["rate limited"])

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await web_search("q", SearchProvider.SERPER, client)
        assert isinstance(result, SearchError)
        assert "unexpected response body" in str(result)

    async def test_malformed_items_skipped(self, upstream, server_keys):
        upstream.tavily_results = ["junk", {"title": "Paris weather", "url": "u", "content": "c"}]
        async with upstream.client() as client:
            result = await web_search("q", SearchProvider.TAVILY, client)
        assert result == "[1] Paris weather\nLink: u\nSnippet: c"

    def test_empty_results(self):
        assert format_web_results([]) == "No results found."


class TestLibrarySearch:
    """Tests for library_search."""

    def test_scoped_to_user(self, store):
        _add_chunk(store, "alice", "alice-notes.md", "Quarterly revenue grew in Lisbon.")
        _add_chunk(store, "bob", "bob-notes.md", "Revenue targets for Lisbon office.")

        result = library_search("revenue lisbon", store, "alice")

        assert "Source: alice-notes.md" in result
        assert "bob-notes.md" not in result

    def test_guest_search_is_unscoped(self, store):
        _add_chunk(store, "alice", "alice-notes.md", "Quarterly revenue grew in Lisbon.")
        _add_chunk(store, "bob", "bob-notes.md", "Revenue targets for Lisbon office.")

        result = library_search("revenue lisbon", store, None)

        assert "alice-notes.md" in result
        assert "bob-notes.md" in result
        assert "\n\n---\n\n" in result

    def test_no_match(self, store):
        assert library_search("volcano", store, "alice") == "No matching information found in your library."

    def test_limited_to_five(self, store):
        for i in range(7):
            _add_chunk(store, "alice", f"doc{i}.md", f"chunk {i} about kittens")
        result = library_search("kittens", store, "alice")
        assert result.count("Source:") == 5


class TestToolRouter:
    """Tests for ToolRouter.route."""

    async def _route(self, upstream, store, prompt, user_id="alice", provider=SearchProvider.SERPER):
        async with upstream.client() as client:
            invoker = ModelInvoker(client, {}, user_id=user_id, server=ServerSecrets(openai_api_key="srv"))
            router = ToolRouter(invoker, store, provider)
            return await router.route(prompt, parse_model_ref("gpt-4o-mini"))

    async def test_none_makes_single_call(self, upstream, store):
        """Test NONE returns nothing and skips query derivation."""
        upstream.tool_decision = "NONE"
        augmentation = await self._route(upstream, store, "Tell me a joke")

        assert augmentation == ""
        assert len(upstream.model_calls) == 1
        assert upstream.search_calls == []

    async def test_web_never_touches_library(self, upstream, store, server_keys, monkeypatch):
        upstream.tool_decision = "WEB"
        monkeypatch.setattr(store, "search_documents", lambda *a, **k: pytest.fail("library searched"))

        augmentation = await self._route(upstream, store, "What's the weather in Paris today?")

        assert augmentation.startswith("\n\nWEB SEARCH RESULTS:\n")
        assert "Paris forecast" in augmentation
        assert len(upstream.model_calls) == 2
        assert len(upstream.search_calls) == 1

    async def test_library_never_touches_web(self, upstream, store, server_keys):
        upstream.tool_decision = "LIBRARY"
        upstream.search_query = "lisbon revenue"
        _add_chunk(store, "alice", "notes.md", "Lisbon revenue was 4M.")

        augmentation = await self._route(upstream, store, "What did my notes say about Lisbon?")

        assert augmentation.startswith("\n\nLIBRARY CONTEXT:\n")
        assert "Source: notes.md\nContent: Lisbon revenue was 4M." in augmentation
        assert upstream.search_calls == []
        assert len(upstream.model_calls) == 2

    async def test_search_failure_degrades_inline(self, upstream, store):
        """Test a missing search key yields an inline error instead of raising."""
        upstream.tool_decision = "WEB"
        augmentation = await self._route(upstream, store, "Latest news?")

        assert "WEB SEARCH RESULTS" in augmentation
        assert "Error:" in augmentation

    async def test_malformed_search_body_degrades_inline(self, upstream, store, server_keys):
        upstream.tool_decision = "WEB"
        upstream.serper_body = ["rate limited"]
        augmentation = await self._route(upstream, store, "Latest news?")

        assert augmentation.startswith("\n\nWEB SEARCH RESULTS:\nError: serper search failed")

    async def test_uses_selected_search_provider(self, upstream, store, server_keys):
        upstream.tool_decision = "WEB"
        await self._route(upstream, store, "Weather?", provider=SearchProvider.TAVILY)
        assert [str(r.url) for r in upstream.search_calls] == [config.TAVILY_API_URL]
