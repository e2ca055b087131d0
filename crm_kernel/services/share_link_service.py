"""
ShareLinkService -- issues and resolves public share tokens.

Responsibility:
    A share token is the capability a customer uses to view and sign a
    quote, change order or invoice without logging in.  Tokens are
    URL-safe random strings, unique per document table, and expire after
    a configured number of days (30 by default).

Invariants enforced:
    - An existing unexpired token is reused; a new one is issued only when
      none exists or the old one has expired.
    - Uniqueness is the database's job (unique column).  A collision
      rolls back a savepoint and retries with a fresh token.
    - ``resolve`` distinguishes "no such token" (ShareTokenNotFoundError)
      from "token past expiry" (LinkExpiredError).
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_kernel.db.base import ShareLinkMixin
from crm_kernel.domain.clock import Clock
from crm_kernel.exceptions import LinkExpiredError, ShareTokenNotFoundError
from crm_kernel.logging_config import get_logger

logger = get_logger("services.share_link")

DocT = TypeVar("DocT", bound=ShareLinkMixin)

TOKEN_BYTES = 24
MAX_ISSUE_ATTEMPTS = 3


@dataclass(frozen=True)
class ShareLink:
    token: str
    expires_at: datetime
    reused: bool


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class ShareLinkService:
    """Generates or reuses share tokens on any ShareLinkMixin model."""

    def __init__(self, session: Session, clock: Clock, ttl_days: int = 30):
        self._session = session
        self._clock = clock
        self._ttl = timedelta(days=ttl_days)

    def ensure(self, document: ShareLinkMixin, document_type: str) -> ShareLink:
        now = self._clock.now()
        if (
            document.share_token
            and document.share_link_expires_at is not None
            and document.share_link_expires_at > now
        ):
            return ShareLink(
                token=document.share_token,
                expires_at=document.share_link_expires_at,
                reused=True,
            )

        expires_at = now + self._ttl
        for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
            savepoint = self._session.begin_nested()
            try:
                document.share_token = new_token()
                document.share_token_created_at = now
                document.share_link_expires_at = expires_at
                self._session.flush()
                savepoint.commit()
                break
            except IntegrityError:
                savepoint.rollback()
                logger.warning(
                    "share_token_collision_retry",
                    extra={"document_type": document_type, "attempt": attempt},
                )
                if attempt == MAX_ISSUE_ATTEMPTS:
                    raise

        logger.info(
            "share_link_issued",
            extra={
                "document_type": document_type,
                "document_id": str(document.id),
                "expires_at": expires_at,
            },
        )
        return ShareLink(token=document.share_token, expires_at=expires_at, reused=False)

    def resolve(self, model: type[DocT], token: str, document_type: str) -> DocT:
        """
        Load the document behind ``token`` with a row lock.

        Raises:
            ShareTokenNotFoundError: unknown token or soft-deleted document.
            LinkExpiredError: the token exists but is past expiry.
        """
        if not token:
            raise ShareTokenNotFoundError(document_type)
        document = self._session.execute(
            select(model).where(model.share_token == token).with_for_update()
        ).scalar_one_or_none()
        if document is None or getattr(document, "deleted_at", None) is not None:
            raise ShareTokenNotFoundError(document_type)
        self.check_not_expired(document, document_type)
        return document

    def check_not_expired(self, document: ShareLinkMixin, document_type: str) -> None:
        expires_at = document.share_link_expires_at
        if expires_at is not None and expires_at < self._clock.now():
            raise LinkExpiredError(document_type, document.id, expires_at)
