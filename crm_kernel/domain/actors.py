"""Who is performing an operation."""

from dataclasses import dataclass
from uuid import UUID

# created_by_id for rows written through a public share link.
PUBLIC_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


@dataclass(frozen=True)
class ActingUser:
    """An authenticated company user, as resolved by the auth collaborator."""

    user_id: UUID
    company_id: UUID
    full_name: str = ""
    email: str | None = None
