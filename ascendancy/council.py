"""Solo chat and three-role debate orchestration."""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from .council_config import load_council
from .credentials import ServerSecrets, check_credential, parse_model_ref, resolve_credential
from .errors import PersistenceError, RequestCancelled
from .gateway import query_model
from .models import (
    CallRecord,
    ChatReply,
    CouncilBinding,
    DEFAULT_COUNCIL,
    DebateResult,
    Message,
    ModelRef,
    OrchestrationResult,
    RoleOutput,
    SearchProvider,
)
from .storage_db import DocumentStore, add_chat_message, save_debate
from .tools import ToolRouter

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], Awaitable[bool]]

DEFAULT_SYSTEM_PROMPT = "You are a helpful, knowledgeable assistant."

MODERATOR_SYSTEM = (
    "You are the Moderator of a council of AI models. Give a factual, balanced "
    "and well-structured answer. Present the main perspectives fairly, separate "
    "established facts from opinion, and use any provided context."
)

SKEPTIC_SYSTEM_FACT_CHECK = (
    "You are the Skeptic of a council of AI models. Your job is to fact-check. "
    "Identify claims that are false, unsupported, outdated or likely hallucinated, "
    "and say what is actually known. Do not invent sources."
)

SKEPTIC_SYSTEM_CRITIQUE = (
    "You are the Skeptic of a council of AI models. Challenge the answer you are "
    "given: find weak arguments, missing perspectives, hidden assumptions and risks."
)

VISIONARY_SYSTEM = (
    "You are the Visionary of a council of AI models. Reconcile the Moderator's "
    "answer with the Skeptic's critique into one final, authoritative answer for the user."
)


def moderator_messages(prompt: str, augmentation: str = "") -> List[Message]:
    return [
        {"role": "system", "content": MODERATOR_SYSTEM},
        {"role": "user", "content": f"{prompt}{augmentation}"},
    ]


def skeptic_messages(prompt: str, mod_response: str, anti_hallucination: bool = True) -> List[Message]:
    if anti_hallucination:
        system = SKEPTIC_SYSTEM_FACT_CHECK
        task = "Fact-check the Moderator's answer. List every inaccurate or unverifiable claim and correct it."
    else:
        system = SKEPTIC_SYSTEM_CRITIQUE
        task = "Critique the Moderator's answer. Point out its weaknesses and what it overlooks."

    content = f"""Question: {prompt}

MODERATOR'S ANSWER:
{mod_response}

{task}"""
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": content},
    ]


def visionary_messages(prompt: str, mod_response: str, skeptic_response: str) -> List[Message]:
    content = f"""ORIGINAL QUESTION: {prompt}

MODERATOR'S ANSWER:
{mod_response}

SKEPTIC'S CRITIQUE:
{skeptic_response}

Synthesize a single final answer to the original question. Keep what survives the critique, fix what does not, and add forward-looking insight where it helps."""
    return [
        {"role": "system", "content": VISIONARY_SYSTEM},
        {"role": "user", "content": content},
    ]


def prepare_solo_messages(prompt: str, messages: Optional[List[Message]], role: Optional[str]) -> List[Message]:
    """
    Copy the conversation, guarantee one leading system message and make sure
    the last message is the current user prompt.
    """
    conversation = [dict(m) for m in (messages or [])]

    if not conversation or conversation[0].get("role") != "system":
        system = f"You are {role}." if role else DEFAULT_SYSTEM_PROMPT
        conversation.insert(0, {"role": "system", "content": system})

    last = conversation[-1]
    if last.get("role") != "user" or last.get("content") != prompt:
        conversation.append({"role": "user", "content": prompt})

    return conversation


class ModelInvoker:
    """
    Makes model calls on behalf of one request.

    Every call re-resolves its credential (Google access tokens are never
    reused) and is recorded for the debug echo.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_secrets: Dict[str, str],
        user_id: Optional[str] = None,
        server: Optional[ServerSecrets] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.user_secrets = user_secrets
        self.user_id = user_id
        self.server = server or ServerSecrets.from_config()
        self.timeout = timeout
        self.calls: List[CallRecord] = []

    def preflight(self, *refs: ModelRef) -> None:
        """Fail with MissingCredential before any network call is made."""
        for ref in refs:
            check_credential(ref, self.user_secrets, self.server)

    async def complete(self, ref: ModelRef, messages: List[Message]) -> ChatReply:
        credential = await resolve_credential(ref, self.user_secrets, self.client, self.server)
        self.calls.append(CallRecord(
            model=ref.model_id,
            provider=ref.provider.value,
            credential_source=credential.source,
        ))
        return await query_model(credential, ref, messages, client=self.client, timeout=self.timeout)


async def _checkpoint(is_cancelled: Optional[CancelCheck], stage: str) -> None:
    if is_cancelled is not None and await is_cancelled():
        logger.info(f"Client disconnected, stopping before {stage}")
        raise RequestCancelled(stage)


def _log_if_failed(result, what: str) -> None:
    # Persistence is best-effort: a failed write is logged and otherwise ignored
    if isinstance(result, PersistenceError):
        logger.error(f"Could not save {what}: {result}")


async def run_solo(
    prompt: str,
    ref: ModelRef,
    invoker: ModelInvoker,
    store: DocumentStore,
    messages: Optional[List[Message]] = None,
    role: Optional[str] = None,
    search_provider: SearchProvider = SearchProvider.SERPER,
    is_cancelled: Optional[CancelCheck] = None,
) -> OrchestrationResult:
    """
    Single-model chat: tool routing, one generation call, then persistence.

    Args:
        prompt: The user's message
        ref: Model to answer with (also used for tool routing)
        invoker: Per-request model caller
        store: Document store for library search and chat history
        messages: Prior conversation, optionally ending with the current prompt
        role: Persona for the synthesized system message

    Returns:
        OrchestrationResult with the model's content
    """
    invoker.preflight(ref)
    conversation = prepare_solo_messages(prompt, messages, role)

    await _checkpoint(is_cancelled, "tool routing")
    augmentation = await ToolRouter(invoker, store, search_provider).route(prompt, ref)
    if augmentation:
        conversation[-1]["content"] += augmentation

    await _checkpoint(is_cancelled, "generation")
    reply = await invoker.complete(ref, conversation)

    if invoker.user_id:
        _log_if_failed(add_chat_message(store, invoker.user_id, "assistant", reply.content), "chat message")

    return OrchestrationResult(
        content=reply.content,
        model=ref.model_id,
        reasoning=reply.reasoning,
        calls=invoker.calls,
    )


async def run_debate(
    prompt: str,
    invoker: ModelInvoker,
    store: DocumentStore,
    search_provider: SearchProvider = SearchProvider.SERPER,
    anti_hallucination: bool = True,
    defaults: CouncilBinding = DEFAULT_COUNCIL,
    is_cancelled: Optional[CancelCheck] = None,
) -> OrchestrationResult:
    """
    Moderator -> Skeptic -> Visionary, strictly in sequence.

    Only the moderator stage gets tool augmentation. The skeptic sees the
    moderator's text; the visionary sees the prompt and both texts.
    """
    council = load_council(store, invoker.user_id, defaults=defaults)
    mod_ref = parse_model_ref(council.moderator)
    skeptic_ref = parse_model_ref(council.skeptic)
    visionary_ref = parse_model_ref(council.visionary)
    invoker.preflight(mod_ref, skeptic_ref, visionary_ref)

    logger.info(f"Debate council: {council.to_dict()}")

    await _checkpoint(is_cancelled, "moderator")
    augmentation = await ToolRouter(invoker, store, search_provider).route(prompt, mod_ref)
    mod_reply = await invoker.complete(mod_ref, moderator_messages(prompt, augmentation))

    await _checkpoint(is_cancelled, "skeptic")
    skeptic_reply = await invoker.complete(
        skeptic_ref, skeptic_messages(prompt, mod_reply.content, anti_hallucination)
    )

    await _checkpoint(is_cancelled, "visionary")
    visionary_reply = await invoker.complete(
        visionary_ref, visionary_messages(prompt, mod_reply.content, skeptic_reply.content)
    )

    await _checkpoint(is_cancelled, "persistence")
    debate = DebateResult(
        topic=prompt,
        moderator=RoleOutput(council.moderator, mod_reply.content),
        skeptic=RoleOutput(council.skeptic, skeptic_reply.content),
        visionary=RoleOutput(council.visionary, visionary_reply.content),
        user_id=invoker.user_id,
    )
    _log_if_failed(save_debate(store, debate), "debate")
    if invoker.user_id:
        _log_if_failed(
            add_chat_message(store, invoker.user_id, "assistant", visionary_reply.content),
            "chat message",
        )

    return OrchestrationResult(
        content=visionary_reply.content,
        debate=debate,
        council=council,
        calls=invoker.calls,
    )
