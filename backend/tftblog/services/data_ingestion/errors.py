"""
Error taxonomy for the fetch pipeline.

Transient errors are retried by the orchestrator; parse errors are handled
inside adapters; persistence errors are counted per item; authorization
errors stop a run before any network activity.
"""


class FetchError(Exception):
    """Base class for failures while fetching one target."""


class TransientFetchError(FetchError):
    """Timeout, non-200 response or wrong content type. Retried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(TransientFetchError):
    """Upstream explicitly rejected the request as bot traffic."""


class AllInstancesExhaustedError(TransientFetchError):
    """Every configured proxy instance was tried and failed."""

    def __init__(self, target: str, errors: list[str]):
        detail = "; ".join(errors) if errors else "no instances configured"
        super().__init__(f"All proxy instances failed for {target}: {detail}")
        self.errors = errors


class ParseError(FetchError):
    """Payload shape was not what the adapter expected."""


class PersistenceError(Exception):
    """A single article could not be upserted."""

    def __init__(self, article_id: str, cause: Exception):
        super().__init__(f"Failed to save {article_id}: {cause}")
        self.article_id = article_id
        self.cause = cause


class AuthorizationError(Exception):
    """Caller is not allowed to trigger a run."""
