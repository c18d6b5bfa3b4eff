"""
Identity providers.

The authorizer never inspects sessions or tokens. It asks an identity
provider for the current user and treats the answer as opaque.
"""
from dataclasses import dataclass
from typing import Optional

from apps.core.exceptions import UnauthorizedError
from apps.core.middleware.request_tracking import get_current_request


@dataclass(frozen=True)
class Identity:
    """The authenticated actor."""

    id: int
    company_id: Optional[int]
    role_hint: Optional[str] = None

    @classmethod
    def from_user(cls, user):
        return cls(id=user.id, company_id=user.company_id, role_hint=user.role)


class IdentityProvider:
    """Interface for identity providers."""

    def current_user(self) -> Identity:
        """Return the current identity or raise UnauthorizedError."""
        raise NotImplementedError


class RequestIdentityProvider(IdentityProvider):
    """Reads the authenticated user of the request being processed."""

    def current_user(self) -> Identity:
        request = get_current_request()
        user = getattr(request, 'user', None) if request is not None else None
        if user is None or not getattr(user, 'is_authenticated', False):
            raise UnauthorizedError()
        if not user.is_active or user.company_id is None:
            raise UnauthorizedError()
        return Identity.from_user(user)


class StaticIdentityProvider(IdentityProvider):
    """Always returns the same identity (or none). Used by tasks and tests."""

    def __init__(self, identity: Optional[Identity] = None):
        self.identity = identity

    def current_user(self) -> Identity:
        if self.identity is None:
            raise UnauthorizedError()
        return self.identity
