"""Configuration for Ascendancy."""

import os
import logging
from dotenv import load_dotenv, find_dotenv

# Load .env file, override=True ensures .env takes precedence over shell environment
load_dotenv(find_dotenv(), override=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Server-wide provider keys, used when the user has not stored their own.
# None of them is required at startup; requests fail per provider instead.
LIGHTNING_API_KEY = os.getenv("LIGHTNING_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Web search providers
SERPER_API_KEY = os.getenv("SERPER_API_KEY")
TAVILY_API_KEY = os.getenv("TAVILY_API_KEY")

# Client secrets for the Google OAuth refresh-token exchange
GOOGLE_ANTIGRAVITY_SECRET = os.getenv("GOOGLE_ANTIGRAVITY_SECRET")
GOOGLE_CLI_SECRET = os.getenv("GOOGLE_CLI_SECRET")

# Public OAuth client ids, one per Google provider variant
GOOGLE_CLIENT_IDS = {
    "google-antigravity": "1071006060591-tmhssin2h21lcre235vtolojh4g403ep.apps.googleusercontent.com",
    "google-cli": "681255809395-oo8ft2oprdrnp9e3aqf6av3hmdib135j.apps.googleusercontent.com",
}

# Upstream endpoints
LIGHTNING_API_URL = os.getenv("LIGHTNING_API_URL", "https://lightning.ai/api/v1/chat/completions")
OPENAI_API_URL = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1/chat/completions")
GOOGLE_GENERATE_URL = os.getenv(
    "GOOGLE_GENERATE_URL",
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)
GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
SERPER_API_URL = os.getenv("SERPER_API_URL", "https://google.serper.dev/search")
TAVILY_API_URL = os.getenv("TAVILY_API_URL", "https://api.tavily.com/search")

# Hosted identity provider (sessions are validated against its account endpoint)
IDENTITY_ENDPOINT = os.getenv("IDENTITY_ENDPOINT", "https://cloud.appwrite.io/v1")
IDENTITY_PROJECT_ID = os.getenv("IDENTITY_PROJECT_ID", "")

# Document store
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/ascendancy.db")

# Collection names inside the document store
COLLECTIONS = {
    "secrets": "user_secrets",
    "council_config": "council_config",
    "chat_history": "chat_history",
    "debate_history": "debate_history",
    "library": "library_chunks",
}

# CORS origins (comma-separated list)
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000"
).split(",")

# Timeouts in seconds
MODEL_TIMEOUT = float(os.getenv("MODEL_TIMEOUT", "60"))
SEARCH_TIMEOUT = float(os.getenv("SEARCH_TIMEOUT", "30"))
AUTH_TIMEOUT = float(os.getenv("AUTH_TIMEOUT", "15"))

# Extra attempts for a failed model call (transport errors, 429 and 5xx only).
# 0 keeps every upstream call try-once.
MODEL_MAX_RETRIES = int(os.getenv("MODEL_MAX_RETRIES", "0"))

# Sampling temperature sent to the OpenAI-compatible providers
TEMPERATURE = 0.7

# Number of results requested from web search and library search
SEARCH_RESULT_LIMIT = 5
