"""
Admin gate for the trigger surface.

Only the role lookup lives here; identity management belongs to whatever
sits in front of the API.
"""
import hmac
from abc import ABC, abstractmethod
from typing import Optional

from tftblog.models.domain import Role
from tftblog.services.data_ingestion.errors import AuthorizationError

API_KEY_HEADER = "x-api-key"


class AuthGate(ABC):
    """Resolves the role of the caller behind a set of request headers."""

    @abstractmethod
    def current_principal_role(self, headers: dict) -> Optional[Role]:
        pass

    def require_admin(self, headers: dict) -> None:
        """
        Raises:
            AuthorizationError: caller is not an admin
        """
        if self.current_principal_role(headers) != Role.ADMIN:
            raise AuthorizationError("Admin role required")


class ApiKeyAuthGate(AuthGate):
    """Admin iff the `x-api-key` header matches the configured key."""

    def __init__(self, admin_api_key: Optional[str]):
        self.admin_api_key = admin_api_key

    def current_principal_role(self, headers: dict) -> Optional[Role]:
        if not self.admin_api_key:
            return None
        provided = headers.get(API_KEY_HEADER)
        if not provided:
            return None
        if hmac.compare_digest(provided.encode(), self.admin_api_key.encode()):
            return Role.ADMIN
        return Role.USER
