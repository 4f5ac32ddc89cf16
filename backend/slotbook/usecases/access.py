from dataclasses import dataclass

from ..domain.errors import UnauthorizedError
from ..models import UserRole


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the HTTP layer."""

    user_id: int
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def ensure_admin(actor: Actor, *, what: str) -> None:
    if not actor.is_admin:
        raise UnauthorizedError(f"Only admins can {what}.")


def ensure_creator(actor: Actor, created_by: int, *, what: str) -> None:
    if actor.user_id != created_by:
        raise UnauthorizedError(f"Only the series creator can {what}.")


def ensure_creator_or_admin(actor: Actor, created_by: int, *, what: str) -> None:
    if actor.user_id != created_by and not actor.is_admin:
        raise UnauthorizedError(f"Only the event creator or an admin can {what}.")
