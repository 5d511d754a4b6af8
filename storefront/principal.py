from dataclasses import dataclass
from typing import Optional

from .errors import AdminRequired, Forbidden


@dataclass(frozen=True)
class Principal:
    """The already-authenticated caller of an operation."""

    user_id: Optional[str] = None
    session_id: Optional[str] = None
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def require_user(self) -> str:
        if not self.user_id:
            raise Forbidden("Sign in required")
        return self.user_id

    def require_admin(self) -> str:
        if not self.is_admin or not self.user_id:
            raise AdminRequired()
        return self.user_id

    def can_access(self, owner_id: Optional[str]) -> bool:
        return self.is_admin or (bool(self.user_id) and self.user_id == owner_id)
