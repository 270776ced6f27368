"""Tool routing: decide whether a prompt needs web search or library context, then fetch it."""

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Union

import httpx
from sqlalchemy.exc import SQLAlchemyError

from . import config
from .errors import SearchError
from .models import ModelRef, SearchProvider, ToolDecision
from .storage_db import DocumentStore

if TYPE_CHECKING:
    from .council import ModelInvoker

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = """Decide what extra information is needed to answer the user's message.

Reply with exactly one word:
WEB - it needs current or external facts (news, prices, weather, recent events, anything after your training data)
LIBRARY - it refers to the user's own uploaded documents, notes or files
NONE - it can be answered from general knowledge or is conversational

User message: {prompt}

Answer:"""

WEB_QUERY_PROMPT = """Write a short search engine query (a few words) that would find the information needed to answer this message.
Reply with the query only, no quotes or explanation.

Message: {prompt}

Query:"""

LIBRARY_QUERY_PROMPT = """Extract the key search keywords for looking up this message in the user's personal document library.
Reply with the keywords only, separated by spaces.

Message: {prompt}

Keywords:"""


def parse_tool_decision(reply: str) -> ToolDecision:
    """WEB is checked before LIBRARY; anything else is NONE. Matching is case-sensitive."""
    text = reply or ""
    if "WEB" in text:
        return ToolDecision.WEB
    if "LIBRARY" in text:
        return ToolDecision.LIBRARY
    return ToolDecision.NONE


def _clean_query(reply: str) -> str:
    query = reply.strip().splitlines()[0] if reply.strip() else ""
    return query.strip().strip('"\'')


def _result_items(source: str, data, key: str) -> List[Dict[str, str]]:
    """Pull the result list out of a search response body, skipping malformed entries."""
    if not isinstance(data, dict):
        raise SearchError(source, f"unexpected response body: {str(data)[:200]}")
    items = data.get(key)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def format_web_results(results: List[Dict[str, str]]) -> str:
    if not results:
        return "No results found."
    return "\n\n".join(
        f"[{i}] {r['title']}\nLink: {r['link']}\nSnippet: {r['snippet']}"
        for i, r in enumerate(results, start=1)
    )


async def _serper_search(query: str, client: httpx.AsyncClient) -> List[Dict[str, str]]:
    if not config.SERPER_API_KEY:
        raise SearchError("serper", "SERPER_API_KEY is not configured on server")

    response = await client.post(
        config.SERPER_API_URL,
        headers={"X-API-KEY": config.SERPER_API_KEY, "Content-Type": "application/json"},
        json={"q": query, "num": config.SEARCH_RESULT_LIMIT},
        timeout=config.SEARCH_TIMEOUT,
    )
    if response.status_code != 200:
        raise SearchError("serper", f"Serper API error: {response.status_code}")

    organic = _result_items("serper", response.json(), "organic")
    return [
        {"title": item.get("title", ""), "link": item.get("link", ""), "snippet": item.get("snippet", "")}
        for item in organic[:config.SEARCH_RESULT_LIMIT]
    ]


async def _tavily_search(query: str, client: httpx.AsyncClient) -> List[Dict[str, str]]:
    if not config.TAVILY_API_KEY:
        raise SearchError("tavily", "TAVILY_API_KEY is not configured on server")

    response = await client.post(
        config.TAVILY_API_URL,
        json={"api_key": config.TAVILY_API_KEY, "query": query, "max_results": config.SEARCH_RESULT_LIMIT},
        timeout=config.SEARCH_TIMEOUT,
    )
    if response.status_code != 200:
        raise SearchError("tavily", f"Tavily API error: {response.status_code}")

    results = _result_items("tavily", response.json(), "results")
    return [
        {"title": item.get("title", ""), "link": item.get("url", ""), "snippet": item.get("content", "")}
        for item in results[:config.SEARCH_RESULT_LIMIT]
    ]


async def web_search(
    query: str,
    provider: SearchProvider,
    client: httpx.AsyncClient,
) -> Union[str, SearchError]:
    """Run a web search and return the formatted result list, or the error."""
    logger.info(f"[Tool:Search] {provider.value} query: {query}")
    try:
        if provider == SearchProvider.TAVILY:
            results = await _tavily_search(query, client)
        else:
            results = await _serper_search(query, client)
    except SearchError as e:
        return e
    except (httpx.HTTPError, ValueError) as e:
        return SearchError(provider.value, str(e))
    return format_web_results(results)


def library_search(
    query: str,
    store: DocumentStore,
    user_id: Optional[str],
) -> Union[str, SearchError]:
    """Full-text search over library chunks. Guests search every user's chunks."""
    logger.info(f"[Tool:Library] Searching for: {query}")
    try:
        docs = store.search_documents(
            config.COLLECTIONS["library"],
            "content",
            query,
            user_id=user_id,
            limit=config.SEARCH_RESULT_LIMIT,
        )
    except SQLAlchemyError as e:
        return SearchError("library", str(e))

    if not docs:
        return "No matching information found in your library."

    return "\n\n---\n\n".join(
        f"Source: {doc.get('fileName', 'unknown')}\nContent: {doc.get('content', '')}"
        for doc in docs
    )


def _render(result: Union[str, SearchError]) -> str:
    # Search failures never fail the chat request; the model sees the error instead
    if isinstance(result, SearchError):
        logger.warning(f"Tool search failed: {result}")
        return f"Error: {result}"
    return result


class ToolRouter:
    """Classify a prompt's information need and fetch the matching context."""

    def __init__(
        self,
        invoker: "ModelInvoker",
        store: DocumentStore,
        search_provider: SearchProvider = SearchProvider.SERPER,
    ):
        self.invoker = invoker
        self.store = store
        self.search_provider = search_provider

    async def classify(self, prompt: str, ref: ModelRef) -> ToolDecision:
        reply = await self.invoker.complete(ref, [
            {"role": "user", "content": CLASSIFY_PROMPT.format(prompt=prompt)},
        ])
        decision = parse_tool_decision(reply.content)
        logger.info(f"Tool decision for {ref.model_id}: {decision.value}")
        return decision

    async def _derive_query(self, template: str, prompt: str, ref: ModelRef) -> str:
        reply = await self.invoker.complete(ref, [
            {"role": "user", "content": template.format(prompt=prompt)},
        ])
        return _clean_query(reply.content) or prompt

    async def route(self, prompt: str, ref: ModelRef) -> str:
        """
        Return the text block to append to the outgoing prompt, or "".

        Makes one classification call, plus one query call and one search
        when the decision is WEB or LIBRARY.
        """
        decision = await self.classify(prompt, ref)

        if decision == ToolDecision.WEB:
            query = await self._derive_query(WEB_QUERY_PROMPT, prompt, ref)
            result = await web_search(query, self.search_provider, self.invoker.client)
            return f"\n\nWEB SEARCH RESULTS:\n{_render(result)}"

        if decision == ToolDecision.LIBRARY:
            query = await self._derive_query(LIBRARY_QUERY_PROMPT, prompt, ref)
            result = library_search(query, self.store, self.invoker.user_id)
            return f"\n\nLIBRARY CONTEXT:\n{_render(result)}"

        return ""
