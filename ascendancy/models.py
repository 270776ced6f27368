"""Shared types for the chat and debate pipeline."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# A message is a plain {"role": ..., "content": ...} dict; a list of them is a conversation.
Message = Dict[str, str]


class Provider(str, Enum):
    """Upstream model-serving backends."""
    LIGHTNING = "lightning"
    OPENAI = "openai"
    GOOGLE_ANTIGRAVITY = "google-antigravity"
    GOOGLE_CLI = "google-cli"

    @property
    def is_google(self) -> bool:
        return self in (Provider.GOOGLE_ANTIGRAVITY, Provider.GOOGLE_CLI)


class Role(str, Enum):
    MODERATOR = "moderator"
    SKEPTIC = "skeptic"
    VISIONARY = "visionary"


class ToolDecision(str, Enum):
    WEB = "WEB"
    LIBRARY = "LIBRARY"
    NONE = "NONE"


class SearchProvider(str, Enum):
    SERPER = "serper"
    TAVILY = "tavily"


class SecretName(str, Enum):
    """Key names a user may store in the secrets collection."""
    LIGHTNING_API_KEY = "lightning_api_key"
    LIGHTNING_USERNAME = "lightning_username"
    LIGHTNING_TEAMSPACE = "lightning_teamspace"
    OPENAI_API_KEY = "openai_api_key"
    GOOGLE_ANTIGRAVITY_REFRESH = "google_antigravity_refresh"
    GOOGLE_CLI_REFRESH = "google_cli_refresh"


@dataclass(frozen=True)
class ModelRef:
    """A model identifier parsed into its provider and provider-native name.

    `model_id` keeps the string the caller sent, for display and persistence.
    """
    provider: Provider
    name: str
    model_id: str


@dataclass(frozen=True)
class ChatReply:
    content: str
    reasoning: Optional[str] = None


@dataclass(frozen=True)
class CouncilBinding:
    """Role -> model id bindings for one debate."""
    moderator: str
    skeptic: str
    visionary: str

    def model_for(self, role: Role) -> str:
        return getattr(self, role.value)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


# Process-wide default council. Frozen, and passed into the loader explicitly.
DEFAULT_COUNCIL = CouncilBinding(
    moderator="lightning-ai/llama-3.3-70b",
    skeptic="lightning-ai/deepseek-v3",
    visionary="gpt-4o-mini",
)


@dataclass(frozen=True)
class RoleOutput:
    model: str
    content: str


@dataclass(frozen=True)
class DebateResult:
    """One completed debate. Created once and never updated."""
    topic: str
    moderator: RoleOutput
    skeptic: RoleOutput
    visionary: RoleOutput
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def transcript(self) -> Dict[str, Dict[str, str]]:
        return {
            "moderator": asdict(self.moderator),
            "skeptic": asdict(self.skeptic),
            "visionary": asdict(self.visionary),
        }

    def to_document(self) -> Dict[str, Any]:
        return {
            "debateId": f"debate_{int(self.timestamp.timestamp() * 1000)}",
            "topic": self.topic,
            "result": self.transcript(),
            "timestamp": self.timestamp.isoformat(),
            "userId": self.user_id,
        }


@dataclass
class CallRecord:
    """Diagnostics for one upstream model call (never includes the secret)."""
    model: str
    provider: str
    credential_source: str


@dataclass
class OrchestrationResult:
    content: str
    model: Optional[str] = None
    debate: Optional[DebateResult] = None
    council: Optional[CouncilBinding] = None
    reasoning: Optional[str] = None
    calls: List[CallRecord] = field(default_factory=list)
