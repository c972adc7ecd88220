import hmac

from fastapi import Header

from flashdeck.config import settings
from flashdeck.errors import UnauthorizedError


async def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject requests without the configured ``X-API-Key``. No-op when no key is set."""
    expected = settings.api_key
    if expected is None:
        return
    if not x_api_key:
        raise UnauthorizedError("Missing API key")
    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise UnauthorizedError("Invalid API key")
