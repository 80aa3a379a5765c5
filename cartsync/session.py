"""Session identity passed explicitly into the cart engine."""
from dataclasses import dataclass
from typing import Optional

from cartsync.errors import UnauthenticatedError


@dataclass(frozen=True)
class SessionContext:
    """Identity of the current session, as supplied by the identity provider."""

    user_id: Optional[str] = None
    authenticated: bool = False

    @classmethod
    def anonymous(cls) -> "SessionContext":
        return cls()

    @classmethod
    def for_user(cls, user_id: str) -> "SessionContext":
        return cls(user_id=user_id, authenticated=True)

    @property
    def is_authenticated(self) -> bool:
        return self.authenticated and bool(self.user_id)

    def require_user_id(self) -> str:
        """Return the user id or raise UnauthenticatedError."""
        if not self.is_authenticated:
            raise UnauthenticatedError()
        return self.user_id  # type: ignore[return-value]
