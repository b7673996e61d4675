# orderflow/domain/identity.py
from dataclasses import dataclass

from orderflow.domain.errors import Unauthorized, ValidationError


@dataclass(frozen=True)
class Owner:
    """Who a cart or order belongs to: an authenticated user or a guest session, never both."""

    user_id: str | None = None
    session_id: str | None = None

    def __post_init__(self):
        if bool(self.user_id) == bool(self.session_id):
            raise ValidationError("Exactly one of user id or session id is required")

    @classmethod
    def user(cls, user_id: str) -> "Owner":
        return cls(user_id=user_id)

    @classmethod
    def guest(cls, session_id: str) -> "Owner":
        return cls(session_id=session_id)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def key(self) -> str:
        return f"user:{self.user_id}" if self.user_id else f"session:{self.session_id}"

    def owns(self, resource) -> bool:
        """True when ``resource`` (anything with user_id/session_id) was created by this owner."""
        if self.user_id:
            return resource.user_id == self.user_id
        return resource.user_id is None and resource.session_id == self.session_id

    def ensure_owns(self, resource) -> None:
        if not self.owns(resource):
            raise Unauthorized("Resource belongs to another buyer")
