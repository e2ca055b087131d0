"""
crm_services.notifications -- the best-effort boundary around outbound collaborators.

Responsibility:
    Email dispatch and PDF rendering are external collaborators.  Their
    failures must never unwind a committed signature, contract, invoice or
    payment, so every call goes through ``BestEffortDispatcher``: bounded
    by a timeout, logged on failure, reported as a boolean.

Architecture position:
    Services -- cross-module orchestration.  Module services never import
    this; the lifecycle hooks and document delivery do.

Invariants enforced:
    - ``dispatch`` never raises; a failed or timed-out send is logged at
      WARNING as ``notification_dispatch_failed`` and returns False.
    - Every collaborator call is bounded by ``timeout_seconds``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Protocol, TypeVar, runtime_checkable

from crm_kernel.exceptions import (
    DispatchTimeoutError,
    DocumentRenderError,
    DownstreamFailure,
    NotificationDispatchError,
)
from crm_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

T = TypeVar("T")

EXECUTED_CONTRACT = "executed_contract"
EXECUTED_CHANGE_ORDER = "executed_change_order"
QUOTE_EMAIL = "quote"
CHANGE_ORDER_EMAIL = "change_order"
INVOICE_EMAIL = "invoice"


@runtime_checkable
class NotificationDispatcher(Protocol):
    """The email collaborator.

    Must tolerate partial payloads (a missing recipient or total).
    Returns False, or raises, when the message was not accepted.
    """

    def send(
        self,
        document_kind: str,
        recipient: str | None,
        payload: Mapping[str, Any],
    ) -> bool:
        ...


@runtime_checkable
class DocumentRenderer(Protocol):
    """The PDF collaborator."""

    def to_pdf(self, document_data: Mapping[str, Any]) -> bytes:
        ...


class LoggingDispatcher:
    """Dispatcher used when no email collaborator is configured."""

    def send(
        self,
        document_kind: str,
        recipient: str | None,
        payload: Mapping[str, Any],
    ) -> bool:
        logger.info(
            "notification_logged",
            extra={"document_kind": document_kind, "recipient": recipient},
        )
        return True


class BestEffortDispatcher:
    """
    Bounded, non-raising wrapper around the outbound collaborators.

    Usage:
        notifier = BestEffortDispatcher(dispatcher, timeout_seconds=20)
        notifier.dispatch("executed_contract", "jane@example.com", {...})
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher | None = None,
        timeout_seconds: float = 20.0,
        max_workers: int = 4,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._dispatcher = dispatcher or LoggingDispatcher()
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="crm-notify"
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def call(self, collaborator: str, fn: Callable[..., T], *args: Any) -> T:
        """
        Run ``fn(*args)`` with the configured timeout.

        Raises:
            DispatchTimeoutError: the call did not finish in time.
        """
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            raise DispatchTimeoutError(collaborator, self._timeout) from None

    def render(self, renderer: DocumentRenderer, document_data: Mapping[str, Any]) -> bytes:
        """Render a PDF, raising DocumentRenderError (or a timeout) on failure."""
        try:
            return self.call("document_renderer", renderer.to_pdf, document_data)
        except DownstreamFailure:
            raise
        except Exception as exc:
            raise DocumentRenderError(str(exc)) from exc

    def dispatch(
        self,
        document_kind: str,
        recipient: str | None,
        payload: Mapping[str, Any],
    ) -> bool:
        """Send through the collaborator.  Never raises."""
        try:
            accepted = self.call(
                "notification_dispatcher",
                self._dispatcher.send,
                document_kind,
                recipient,
                payload,
            )
            if not accepted:
                raise NotificationDispatchError(f"{document_kind} was not accepted")
        except Exception as exc:
            logger.warning(
                "notification_dispatch_failed",
                extra={
                    "document_kind": document_kind,
                    "recipient": recipient,
                    "error": type(exc).__name__,
                    "reason": str(exc),
                },
            )
            return False

        logger.info(
            "notification_dispatched",
            extra={"document_kind": document_kind, "recipient": recipient},
        )
        return True

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
