"""FastAPI backend for Ascendancy."""

from dataclasses import asdict
from typing import AsyncIterator, List, Literal, Optional
import time

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
import httpx

from .auth import router as auth_router, get_current_user, get_user_resolver, UserResolver
from .config import CORS_ORIGINS, logger
from .council import ModelInvoker, run_debate, run_solo
from .council_config import load_council, save_council
from .credentials import ResolvedCredential, ServerSecrets, parse_model_ref, resolve_credential
from .errors import AscendancyError, AuthError, RequestCancelled, SearchError, UpstreamError, ValidationError
from .gateway import query_model
from .models import CouncilBinding, SearchProvider
from .storage_db import DocumentStore, get_store, get_user_secrets, list_debates
from .tools import library_search, web_search

app = FastAPI(title="Ascendancy API")

# Enable CORS (configurable via CORS_ORIGINS env var)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include auth router
app.include_router(auth_router)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"message": message}})


@app.exception_handler(AscendancyError)
async def ascendancy_error_handler(request: Request, exc: AscendancyError):
    if isinstance(exc, RequestCancelled):
        logger.info(str(exc))
    elif exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.message}")
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', []) if p != 'body')}: {err.get('msg')}"
        for err in errors
    ) or "Invalid request"
    return _error(400, message)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return _error(500, "Internal Server Error")


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Request body for /api/chat."""
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    model: Optional[str] = None
    mode: Optional[Literal["debate", "solo"]] = None
    messages: List[ChatMessage] = []
    role: Optional[str] = None
    search_provider: SearchProvider = Field(SearchProvider.SERPER, alias="searchProvider")
    anti_hallucination: bool = Field(True, alias="antiHallucination")
    debug: bool = False


class CouncilRequest(BaseModel):
    moderator: str
    skeptic: str
    visionary: str


class PingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model: str
    api_key: Optional[str] = Field(None, alias="apiKey")


class ToolQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    search_provider: SearchProvider = Field(SearchProvider.SERPER, alias="searchProvider")


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """One connection pool per request, closed when the response is sent."""
    async with httpx.AsyncClient() as client:
        yield client


def get_document_store() -> DocumentStore:
    return get_store()


def resolve_mode(body: ChatRequest) -> str:
    """Explicit mode wins; otherwise a model means solo and no model means debate."""
    if body.mode:
        return body.mode
    return "solo" if body.model else "debate"


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Ascendancy API"}


@app.post("/api/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    resolve_user: UserResolver = Depends(get_user_resolver),
    store: DocumentStore = Depends(get_document_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Answer a prompt with one model (solo) or the three-role council (debate).
    """
    if not body.prompt or not body.prompt.strip():
        raise ValidationError("Prompt is required")

    mode = resolve_mode(body)
    if mode == "solo" and not body.model:
        raise ValidationError("A model is required in solo mode")

    # Identity is looked up only for requests that passed validation
    user_id = await resolve_user()
    server = ServerSecrets.from_config()
    if user_id is None and not server.has_model_keys:
        raise AuthError("Sign in to chat: no server-side model keys are configured for guests")

    invoker = ModelInvoker(client, get_user_secrets(store, user_id), user_id=user_id, server=server)

    if mode == "solo":
        result = await run_solo(
            body.prompt,
            parse_model_ref(body.model),
            invoker,
            store,
            messages=[m.model_dump() for m in body.messages],
            role=body.role,
            search_provider=body.search_provider,
            is_cancelled=request.is_disconnected,
        )
        response = {"content": result.content, "model": result.model}
        if result.reasoning:
            response["reasoning"] = result.reasoning
    else:
        result = await run_debate(
            body.prompt,
            invoker,
            store,
            search_provider=body.search_provider,
            anti_hallucination=body.anti_hallucination,
            is_cancelled=request.is_disconnected,
        )
        response = {
            "content": result.content,
            "debate": {role: out["content"] for role, out in result.debate.transcript().items()},
            "models": result.council.to_dict(),
        }

    if body.debug:
        response["debug"] = {
            "mode": mode,
            "guest": user_id is None,
            "calls": [asdict(call) for call in result.calls],
        }

    return response


@app.get("/api/council")
async def get_council(
    user_id: Optional[str] = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    """Get the council bindings debate mode would use for this session."""
    return load_council(store, user_id).to_dict()


@app.put("/api/council")
async def update_council(
    body: CouncilRequest,
    user_id: Optional[str] = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    """Replace the signed-in user's council bindings."""
    if user_id is None:
        raise AuthError("Sign in to configure your council")

    binding = CouncilBinding(
        moderator=body.moderator.strip(),
        skeptic=body.skeptic.strip(),
        visionary=body.visionary.strip(),
    )
    if not all(binding.to_dict().values()):
        raise ValidationError("Every council role needs a model")

    save_council(store, binding, config_id=user_id)
    return binding.to_dict()


@app.get("/api/debates")
async def get_debates(
    limit: int = 20,
    offset: int = 0,
    user_id: Optional[str] = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    """List past debates, newest first."""
    limit = max(1, min(limit, 100))
    return {"debates": list_debates(store, user_id, limit=limit, offset=max(0, offset))}


@app.post("/api/ping")
async def ping(
    body: PingRequest,
    user_id: Optional[str] = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Check that a model answers with the given (or stored) key, and how fast."""
    ref = parse_model_ref(body.model)
    messages = [{"role": "user", "content": "respond with OK"}]

    start = time.monotonic()
    try:
        if body.api_key:
            credential = ResolvedCredential(ref.provider, body.api_key, "request")
        else:
            credential = await resolve_credential(ref, get_user_secrets(store, user_id), client)
        await query_model(credential, ref, messages, client=client, max_tokens=5)
    except UpstreamError as e:
        return JSONResponse(status_code=500, content={"success": False, "error": e.message})

    latency = int((time.monotonic() - start) * 1000)
    return {"success": True, "latency": latency}


@app.post("/api/tools/search")
async def tool_search(
    body: ToolQueryRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Run the web search tool directly."""
    if not body.query:
        raise ValidationError("Query is required")

    result = await web_search(body.query, body.search_provider, client)
    if isinstance(result, SearchError):
        return _error(500, str(result))
    return {"results": result}


@app.post("/api/tools/library")
async def tool_library(
    body: ToolQueryRequest,
    user_id: Optional[str] = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    """Run the library search tool directly."""
    if not body.query:
        raise ValidationError("Query is required")

    result = library_search(body.query, store, user_id)
    if isinstance(result, SearchError):
        return _error(500, str(result))
    return {"results": result}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
