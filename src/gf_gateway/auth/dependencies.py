"""FastAPI dependencies: get_current_principal, require_admin.

Usage in any protected router:
    from src.gf_gateway.auth.dependencies import require_admin

    @router.get("/protected")
    async def protected(principal: Principal = Depends(require_admin)):
        ...
"""

from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.gf_common.errors import AuthenticationError, AuthorizationError
from src.gf_gateway.auth.jwt_handler import ROLE_ADMIN, decode_token

# auto_error=False so a missing header becomes AuthenticationError (401 envelope)
_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    subject: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Principal:
    """Extract and validate the JWT Bearer token.

    Raises AuthenticationError (401) if the token is missing, invalid, or expired.
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    payload = decode_token(credentials.credentials)
    return Principal(subject=payload["sub"], role=payload.get("role", ""))


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Raises AuthorizationError (403) unless the caller holds the admin role."""
    if not principal.is_admin:
        raise AuthorizationError()
    return principal
