"""HTTP client for the model providers (OpenAI-compatible and Google generation APIs)."""

import asyncio
import logging
import random
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from . import config
from .credentials import ResolvedCredential
from .errors import UpstreamError
from .models import ChatReply, Message, ModelRef, Provider

logger = logging.getLogger(__name__)

# Status codes worth another attempt when retries are enabled
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _openai_payload(ref: ModelRef, messages: List[Message], max_tokens: Optional[int]) -> Dict[str, Any]:
    payload = {
        "model": ref.name,
        "messages": messages,
        "temperature": config.TEMPERATURE,
    }
    if max_tokens:
        payload["max_tokens"] = max_tokens
    return payload


def to_google_contents(messages: List[Message]) -> List[Dict[str, Any]]:
    """
    Translate role-tagged messages into Google content parts.

    Google has no system role: system text is prepended to the first user
    turn (or becomes one if the conversation has no user turn).
    """
    system_text = "\n\n".join(m["content"] for m in messages if m.get("role") == "system" and m.get("content"))

    contents = []
    for msg in messages:
        if msg.get("role") == "system":
            continue
        role = "model" if msg.get("role") == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": msg.get("content", "")}]})

    if system_text:
        first_user = next((c for c in contents if c["role"] == "user"), None)
        if first_user is None:
            contents.insert(0, {"role": "user", "parts": [{"text": system_text}]})
        else:
            first_user["parts"][0]["text"] = f"{system_text}\n\n{first_user['parts'][0]['text']}"

    return contents


def _google_payload(ref: ModelRef, messages: List[Message], max_tokens: Optional[int]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"contents": to_google_contents(messages)}
    if max_tokens:
        payload["generationConfig"] = {"maxOutputTokens": max_tokens}
    return payload


def decode_openai(data: Dict[str, Any]) -> ChatReply:
    """Decode an OpenAI-style completion. Lightning reports reasoning as `reasoning_content`."""
    message = data["choices"][0]["message"]
    reasoning = message.get("reasoning") or message.get("reasoning_content")
    return ChatReply(content=message.get("content") or "", reasoning=reasoning)


def decode_google(data: Dict[str, Any]) -> ChatReply:
    parts = data["candidates"][0]["content"]["parts"]
    content = parts[0].get("text", "") if parts else ""
    # Thinking models mark their thought parts; keep them as reasoning
    thoughts = [p.get("text", "") for p in parts[1:] if p.get("thought")]
    return ChatReply(content=content, reasoning="\n".join(thoughts) or None)


PayloadBuilder = Callable[[ModelRef, List[Message], Optional[int]], Dict[str, Any]]
Decoder = Callable[[Dict[str, Any]], ChatReply]

# One (url, payload builder, decoder) entry per provider
_ENDPOINTS: Dict[Provider, Tuple[Callable[[ModelRef], str], PayloadBuilder, Decoder]] = {
    Provider.LIGHTNING: (lambda ref: config.LIGHTNING_API_URL, _openai_payload, decode_openai),
    Provider.OPENAI: (lambda ref: config.OPENAI_API_URL, _openai_payload, decode_openai),
    Provider.GOOGLE_ANTIGRAVITY: (lambda ref: config.GOOGLE_GENERATE_URL.format(model=ref.name), _google_payload, decode_google),
    Provider.GOOGLE_CLI: (lambda ref: config.GOOGLE_GENERATE_URL.format(model=ref.name), _google_payload, decode_google),
}


async def _post_once(
    client: httpx.AsyncClient,
    url: str,
    credential: ResolvedCredential,
    payload: Dict[str, Any],
    timeout: float,
) -> httpx.Response:
    headers = {
        "Authorization": f"Bearer {credential.value}",
        "Content-Type": "application/json",
    }
    try:
        return await client.post(url, headers=headers, json=payload, timeout=timeout)
    except httpx.TimeoutException as e:
        raise UpstreamError(credential.provider.value, 504, f"timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        raise UpstreamError(credential.provider.value, 0, str(e)) from e


async def query_model(
    credential: ResolvedCredential,
    ref: ModelRef,
    messages: List[Message],
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None,
    max_tokens: Optional[int] = None,
) -> ChatReply:
    """
    Send one conversation to a model and return its reply.

    Args:
        credential: Bearer credential for ref.provider
        ref: Parsed model reference
        messages: List of message dicts with 'role' and 'content'
        client: Shared httpx client (a temporary one is created if omitted)
        timeout: Request timeout in seconds
        max_retries: Extra attempts on transport errors, 429 and 5xx
        max_tokens: Optional cap on the reply length

    Returns:
        ChatReply with the assistant content and optional reasoning

    Raises:
        UpstreamError: non-2xx status, unreachable endpoint or unreadable body
    """
    timeout = config.MODEL_TIMEOUT if timeout is None else timeout
    max_retries = config.MODEL_MAX_RETRIES if max_retries is None else max_retries
    url_for, build_payload, decode = _ENDPOINTS[ref.provider]
    url = url_for(ref)
    payload = build_payload(ref, messages, max_tokens)

    if client is None:
        async with httpx.AsyncClient() as own_client:
            return await query_model(credential, ref, messages, own_client, timeout, max_retries, max_tokens)

    attempt = 0
    while True:
        try:
            response = await _post_once(client, url, credential, payload, timeout)
            if response.status_code in RETRYABLE_STATUS and attempt < max_retries:
                raise UpstreamError(ref.provider.value, response.status_code, response.text)
            break
        except UpstreamError as e:
            if e.status not in RETRYABLE_STATUS | {0} or attempt >= max_retries:
                raise
            attempt += 1
            delay = min(8.0, 0.5 * 2 ** attempt) * random.uniform(0.5, 1.0)
            logger.warning(f"{ref.model_id} attempt {attempt} failed ({e.status}), retrying in {delay:.1f}s")
            await asyncio.sleep(delay)

    if not response.is_success:
        logger.error(f"Error querying model {ref.model_id}: {response.status_code}")
        raise UpstreamError(ref.provider.value, response.status_code, response.text)

    try:
        return decode(response.json())
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise UpstreamError(ref.provider.value, response.status_code, f"unexpected response shape: {e}") from e
