"""User-related data models."""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Platform roles as issued by the auth provider."""

    PLAYER = "player"
    ORGANIZER = "organizer"
    MODERATOR = "moderator"
    ADMIN = "admin"


@dataclass(frozen=True)
class CurrentUser:
    """The signed-in user, as exposed by the auth/session provider."""

    id: str
    display_name: str
    role: Role = Role.PLAYER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_moderator(self) -> bool:
        return self.role == Role.MODERATOR
