from fastapi import Header, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader

from ..core.config import get_settings
from ..services.events import EventDispatcher, get_event_dispatcher
from ..services.orchestrator import Caller
from ..services.storage import ObjectStore, get_object_store

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    settings = get_settings()
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        # In non-dev environments, missing config is treated as misconfiguration
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_caller(
    x_organization_id: str | None = Header(default=None, alias="X-Organization-Id"),
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> Caller:
    """Caller identity forwarded by the authenticating gateway."""
    org = (x_organization_id or "").strip()
    if not org:
        raise HTTPException(status_code=401, detail="Missing X-Organization-Id header")
    return Caller(organization_id=org, user_id=(x_user_id or "").strip() or None)


def get_dispatcher() -> EventDispatcher:
    return get_event_dispatcher()


def get_store() -> ObjectStore:
    return get_object_store()
