"""JWT token creation and verification.

Tokens carry `sub` (operator or service identity) and `role`. Only the
"admin" role may run recovery operations or move funding-account money;
the fulfillment provider authenticates with the per-order webhook token
instead of a JWT.

MVP NOTE: Using HS256 (symmetric HMAC). All services share one JWT_SECRET.
MVP NOTE: No token revocation. Once issued, tokens are valid until expiry.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from config.settings import settings
from src.gf_common.errors import AuthenticationError

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"
_ACCESS_EXPIRE = timedelta(minutes=settings.JWT_EXPIRE_MINUTES)

ROLE_ADMIN = "admin"
ROLE_SERVICE = "service"


def create_access_token(subject: str, role: str = ROLE_SERVICE) -> str:
    """Issue a short-lived access token (default: 30 min)."""
    now = datetime.now(UTC)
    payload = {
        "sub": subject,
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + _ACCESS_EXPIRE,
    }
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_token(token: str) -> dict[str, str]:
    """Decode and validate an access token.

    Raises:
        AuthenticationError: Token invalid, expired, or not an access token.
    """
    try:
        payload: dict[str, str] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise AuthenticationError() from None

    if payload.get("type") != "access" or not payload.get("sub"):
        raise AuthenticationError()
    return payload
