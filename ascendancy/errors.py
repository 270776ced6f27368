"""Error types for the chat pipeline.

Errors that end a request carry the HTTP status they map to. `PersistenceError`
and `SearchError` are returned as values by best-effort collaborators rather
than raised.
"""


class AscendancyError(Exception):
    """Base class for errors rendered as {"error": {"message": ...}}."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AscendancyError):
    status_code = 400


class AuthError(AscendancyError):
    status_code = 401


class MissingCredential(AscendancyError):
    """No usable key or token for the provider a model belongs to."""
    status_code = 400

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"No credentials configured for provider '{provider}'. "
            f"Add your {provider} key in settings and try again."
        )


class UpstreamError(AscendancyError):
    """Non-2xx (or unreachable) response from a model, search or OAuth endpoint."""
    status_code = 500

    def __init__(self, provider: str, status: int, body: str = ""):
        self.provider = provider
        self.status = status
        self.body = body[:500]
        super().__init__(f"{provider} request failed ({status}): {self.body}")


class RequestCancelled(AscendancyError):
    """The client went away; the pipeline stops at the next stage boundary."""
    status_code = 499

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Request cancelled before {stage}")


class PersistenceError(Exception):
    """A document store write failed. Logged, never surfaced."""

    def __init__(self, collection: str, reason: str):
        super().__init__(f"Failed to write to {collection}: {reason}")
        self.collection = collection
        self.reason = reason


class SearchError(Exception):
    """A retrieval tool failed. Rendered inline in the tool block."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} search failed: {reason}")
        self.source = source
        self.reason = reason
