"""Provider classification and credential resolution for model ids."""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from . import config
from .errors import MissingCredential, UpstreamError
from .models import ModelRef, Provider, SecretName

logger = logging.getLogger(__name__)

LIGHTNING_PREFIX = "lightning-ai/"

# User secret holding the OAuth refresh token for each Google variant
_REFRESH_SECRETS = {
    Provider.GOOGLE_ANTIGRAVITY: SecretName.GOOGLE_ANTIGRAVITY_REFRESH,
    Provider.GOOGLE_CLI: SecretName.GOOGLE_CLI_REFRESH,
}


@dataclass(frozen=True)
class ServerSecrets:
    """Server-wide fallback keys, read from the environment."""
    lightning_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    google_antigravity_secret: Optional[str] = None
    google_cli_secret: Optional[str] = None

    @classmethod
    def from_config(cls) -> "ServerSecrets":
        return cls(
            lightning_api_key=config.LIGHTNING_API_KEY,
            openai_api_key=config.OPENAI_API_KEY,
            google_antigravity_secret=config.GOOGLE_ANTIGRAVITY_SECRET,
            google_cli_secret=config.GOOGLE_CLI_SECRET,
        )

    @property
    def has_model_keys(self) -> bool:
        """True if guests can be served with server-side keys."""
        return bool(self.lightning_api_key or self.openai_api_key)

    def client_secret(self, provider: Provider) -> Optional[str]:
        if provider == Provider.GOOGLE_ANTIGRAVITY:
            return self.google_antigravity_secret
        return self.google_cli_secret


@dataclass(frozen=True)
class ResolvedCredential:
    """A usable bearer credential. `source` is one of user/server/oauth."""
    provider: Provider
    value: str
    source: str

    def __repr__(self) -> str:
        return f"ResolvedCredential(provider={self.provider.value!r}, source={self.source!r})"


def classify_provider(model_id: str) -> Provider:
    """Pick the provider family from the shape of a model id. First match wins."""
    if model_id.startswith("antigravity/"):
        return Provider.GOOGLE_ANTIGRAVITY
    if model_id.startswith("cli/"):
        return Provider.GOOGLE_CLI
    if model_id.startswith(("gpt-", "o1-", "openai/")):
        return Provider.OPENAI
    if model_id.startswith(("gemini-", "google-")):
        if "antigravity" in model_id:
            return Provider.GOOGLE_ANTIGRAVITY
        return Provider.GOOGLE_CLI
    return Provider.LIGHTNING


def parse_model_ref(model_id: str) -> ModelRef:
    """
    Parse a raw model id into a ModelRef.

    Google ids lose their `antigravity/` or `cli/` routing prefix, Lightning
    ids gain the `lightning-ai/` prefix. OpenAI ids are used as given.
    """
    model_id = model_id.strip()
    provider = classify_provider(model_id)

    name = model_id
    if provider.is_google:
        for prefix in ("antigravity/", "cli/"):
            if name.startswith(prefix):
                name = name[len(prefix):]
                break
    elif provider == Provider.LIGHTNING and not name.startswith(LIGHTNING_PREFIX):
        name = LIGHTNING_PREFIX + name

    return ModelRef(provider=provider, name=name, model_id=model_id)


def lightning_composite_key(key: str, username: Optional[str], teamspace: Optional[str]) -> str:
    """Lightning accepts "{key}/{username}/{teamspace}" to bill a specific teamspace."""
    if key and username and teamspace:
        return f"{key}/{username}/{teamspace}"
    return key


def _static_credential(
    ref: ModelRef,
    user_secrets: Mapping[str, str],
    server: ServerSecrets,
) -> Optional[ResolvedCredential]:
    """Resolve API-key providers without touching the network."""
    if ref.provider == Provider.LIGHTNING:
        user_key = user_secrets.get(SecretName.LIGHTNING_API_KEY.value)
        if user_key:
            value = lightning_composite_key(
                user_key,
                user_secrets.get(SecretName.LIGHTNING_USERNAME.value),
                user_secrets.get(SecretName.LIGHTNING_TEAMSPACE.value),
            )
            return ResolvedCredential(ref.provider, value, "user")
        if server.lightning_api_key:
            return ResolvedCredential(ref.provider, server.lightning_api_key, "server")
        return None

    if ref.provider == Provider.OPENAI:
        user_key = user_secrets.get(SecretName.OPENAI_API_KEY.value)
        if user_key:
            return ResolvedCredential(ref.provider, user_key, "user")
        if server.openai_api_key:
            return ResolvedCredential(ref.provider, server.openai_api_key, "server")
        return None

    raise ValueError(f"{ref.provider.value} has no static credential")


def check_credential(
    ref: ModelRef,
    user_secrets: Mapping[str, str],
    server: Optional[ServerSecrets] = None,
) -> None:
    """Raise MissingCredential if `ref` cannot be called. Makes no network calls."""
    server = server or ServerSecrets.from_config()
    if ref.provider.is_google:
        if not user_secrets.get(_REFRESH_SECRETS[ref.provider].value):
            raise MissingCredential(ref.provider.value)
        return
    if _static_credential(ref, user_secrets, server) is None:
        raise MissingCredential(ref.provider.value)


async def exchange_refresh_token(
    provider: Provider,
    refresh_token: str,
    client: httpx.AsyncClient,
    server: ServerSecrets,
) -> str:
    """Trade a Google refresh token for a short-lived access token."""
    data = {
        "client_id": config.GOOGLE_CLIENT_IDS[provider.value],
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    client_secret = server.client_secret(provider)
    if client_secret:
        data["client_secret"] = client_secret

    try:
        response = await client.post(config.GOOGLE_TOKEN_URL, data=data, timeout=config.AUTH_TIMEOUT)
    except httpx.HTTPError as e:
        raise UpstreamError(provider.value, 0, f"token exchange failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"Token refresh for {provider.value} failed with {response.status_code}")
        raise UpstreamError(provider.value, response.status_code, response.text)

    access_token = response.json().get("access_token")
    if not access_token:
        raise UpstreamError(provider.value, response.status_code, "no access_token in token response")
    return access_token


async def resolve_credential(
    ref: ModelRef,
    user_secrets: Mapping[str, str],
    client: httpx.AsyncClient,
    server: Optional[ServerSecrets] = None,
) -> ResolvedCredential:
    """
    Find the credential to call `ref` with.

    Order is the user's stored secret, then the server-wide key. Google
    providers only accept the user's refresh token, which is exchanged for a
    fresh access token on every call.

    Raises:
        MissingCredential: nothing usable is configured for the provider
        UpstreamError: the OAuth exchange was rejected
    """
    server = server or ServerSecrets.from_config()
    check_credential(ref, user_secrets, server)

    if ref.provider.is_google:
        refresh_token = user_secrets[_REFRESH_SECRETS[ref.provider].value]
        access_token = await exchange_refresh_token(ref.provider, refresh_token, client, server)
        return ResolvedCredential(ref.provider, access_token, "oauth")

    return _static_credential(ref, user_secrets, server)
