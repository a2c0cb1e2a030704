"""Request context management using contextvars.

Each request gets an ID plus optional user and correlation identifiers that
every log line picks up without passing them through the call stack. Background
tasks spawned from a request copy the context, so a notification sent after a
payment still logs the request that caused it.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context, generating one if missing."""
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    return user_id_var.get()


def set_user_id(user_id: str | UUID | None) -> None:
    user_id_var.set(str(user_id) if user_id is not None else None)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID (e.g. a gateway order id) for related operations."""
    correlation_id_var.set(correlation_id)


def get_context() -> dict[str, Any]:
    """Get the non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    user_id = get_user_id()
    if user_id:
        context["user_id"] = user_id

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    return context


def clear_context() -> None:
    """Clear all context variables at the end of a request."""
    request_id_var.set("")
    user_id_var.set(None)
    correlation_id_var.set(None)


class RequestContext:
    """Context manager for an explicit scope outside of HTTP requests.

    Usage:
        with RequestContext(correlation_id="seed:courses.json"):
            await seed(service, definitions)
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | UUID | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.request_id = request_id
        self.user_id = user_id
        self.correlation_id = correlation_id
        self._tokens: list[tuple[ContextVar[Any], Any]] = []

    def __enter__(self) -> "RequestContext":
        self._tokens.append(
            (request_id_var, request_id_var.set(self.request_id or generate_request_id()))
        )
        if self.user_id is not None:
            self._tokens.append((user_id_var, user_id_var.set(str(self.user_id))))
        if self.correlation_id is not None:
            self._tokens.append(
                (correlation_id_var, correlation_id_var.set(self.correlation_id))
            )
        return self

    def __exit__(self, *_: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
