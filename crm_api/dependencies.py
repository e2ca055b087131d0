"""
Request-scoped dependencies: the acting user and the transaction runner.

Authentication is an external collaborator; it is expected to have
resolved the user before the request reaches this service and to pass
it on as ``X-User-Id`` / ``X-Company-Id`` headers.
"""

from collections.abc import Callable
from typing import Optional, TypeVar
from uuid import UUID

from fastapi import Header, Request

from crm_kernel.domain.actors import ActingUser
from crm_kernel.exceptions import AuthenticationError
from crm_kernel.logging_config import LogContext, get_logger
from crm_services.lifecycle_orchestrator import LifecycleOrchestrator

logger = get_logger("api.dependencies")

T = TypeVar("T")


def _parse_uuid(value: Optional[str], header: str) -> UUID:
    if not value:
        raise AuthenticationError()
    try:
        return UUID(value)
    except ValueError:
        raise AuthenticationError(f"Malformed {header} header") from None


def get_acting_user(
    x_user_id: Optional[str] = Header(default=None),
    x_company_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> ActingUser:
    return ActingUser(
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
        company_id=_parse_uuid(x_company_id, "X-Company-Id"),
        full_name=x_user_name or "",
        email=x_user_email,
    )


def client_details(request: Request) -> tuple[Optional[str], Optional[str]]:
    """(ip_address, user_agent) for signature capture."""
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else None
    if ip is None and request.client is not None:
        ip = request.client.host
    return ip, request.headers.get("user-agent")


class LifecycleRunner:
    """
    Runs one operation in its own transaction.

    Commits on success and then dispatches queued notifications; rolls
    back and discards them on any error, which then propagates to the
    error handlers.
    """

    def __init__(self, request: Request):
        self._state = request.app.state

    def __call__(
        self,
        operation: Callable[[LifecycleOrchestrator], T],
        actor: ActingUser | None = None,
    ) -> T:
        session = self._state.session_factory()
        lifecycle = LifecycleOrchestrator(
            session,
            self._state.config,
            clock=self._state.clock,
            notifier=self._state.notifier,
            renderer=self._state.renderer,
        )
        bound = {}
        if actor is not None:
            bound = {"company_id": actor.company_id, "actor_id": actor.user_id}
        with LogContext.bind(**bound):
            try:
                result = operation(lifecycle)
                session.commit()
            except Exception:
                session.rollback()
                lifecycle.after_rollback()
                raise
            finally:
                session.close()
            lifecycle.after_commit()
        return result


def get_runner(request: Request) -> LifecycleRunner:
    return LifecycleRunner(request)
