from dataclasses import dataclass

from lab_ledger.errors import UnauthorizedError
from lab_ledger.models import Role, User


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as handed over by the HTTP layer."""

    id: int
    username: str
    role: str = Role.MEMBER.value

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, username=user.username, role=user.role)


def ensure_admin(actor: Actor, what: str) -> None:
    if not actor.is_admin:
        raise UnauthorizedError(f"Only admins can {what}")
